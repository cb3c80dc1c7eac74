"""マークダウン報告の生成です。 / Markdown report builder."""

from __future__ import annotations

import csv
from pathlib import Path

from ..base import KayakBaseModel
from ..judge.service import JudgeResponse
from ..risk.thresholds import ThresholdChecker

_STATUS_MARK = {"OK": "✅", "注意": "⚠️", "NG": "⛔"}

LOG_HEADERS = [
    "at",
    "lat",
    "lon",
    "preset",
    "label",
    "score",
    "reasons",
    "provenance",
]


class MarkdownReport(KayakBaseModel):
    """マークダウン報告です。 / Markdown report data."""

    content: str
    path: Path


def _coordinate(value: float | None) -> str:
    return "-" if value is None else f"{value:.5f}"


def format_markdown(response: JudgeResponse) -> str:
    """マークダウン文字列を作ります。 / Build markdown string."""

    result = response.result
    used = response.used_vars
    thresholds = response.thresholds
    lines = [
        f"# Launch Check: {result.label} ({result.score})",
        "",
        "## Inputs",
        f"- At: {response.at.isoformat()}",
        f"- Location: {_coordinate(response.lat)}, {_coordinate(response.lon)}",
        f"- Source: {response.provenance}",
        "",
        "## Verdict",
        f"- Label: {result.label}",
        f"- Score: {result.score}",
    ]
    if result.reasons:
        lines.append("- Reasons:")
        lines.extend(f"  - {reason}" for reason in result.reasons)
    else:
        lines.append("- Reasons: none")
    lines.extend(["", "### Conditions"])
    checker = ThresholdChecker(thresholds=thresholds)
    for check in checker.checks(used):
        lines.append(f"- {_STATUS_MARK[check.status]} {check.code}: {check.reason}")
    if used.thunder:
        lines.append("- ⛔ thunder: reported")
    if used.advisory is not None and (used.advisory.gale or used.advisory.thunder):
        lines.append("- ⛔ advisory: active")
    lines.extend(
        [
            "",
            "## Thresholds",
            f"- Max Wind: {thresholds.max_wind_ok:.1f} m/s",
            f"- Max Wave: {thresholds.max_wave_ok:.1f} m",
            f"- Max Swell: {thresholds.max_swell_ok:.1f} m",
            f"- Min Swell Period: {thresholds.min_swell_tp_ok:.0f} s",
            f"- Rain Warning: {thresholds.rain_warn:.1f} mm/h",
            f"- Min Visibility: {thresholds.min_visibility_ok:.1f} km",
        ]
    )
    return "\n".join(lines).strip() + "\n"


def build_report(response: JudgeResponse, directory: Path) -> MarkdownReport:
    """報告ファイルを作ります。 / Build markdown report file."""

    directory.mkdir(parents=True, exist_ok=True)
    report_id = f"judge_{response.at:%Y%m%dT%H%M}"
    if response.lat is not None and response.lon is not None:
        report_id += f"_{response.lat:.3f}_{response.lon:.3f}"
    path = directory / f"{report_id}.md"
    content = format_markdown(response)
    path.write_text(content, encoding="utf-8")
    return MarkdownReport(content=content, path=path)


def append_log(
    response: JudgeResponse, path: Path, preset_id: str | None = None
) -> None:
    """判定ログを追記します。 / Append a CSV judge log row."""

    path.parent.mkdir(parents=True, exist_ok=True)
    row = [
        response.at.isoformat(),
        "" if response.lat is None else f"{response.lat:.5f}",
        "" if response.lon is None else f"{response.lon:.5f}",
        preset_id or "",
        response.result.label,
        response.result.score,
        " / ".join(response.result.reasons),
        response.provenance,
    ]
    write_header = not path.exists()
    with path.open("a", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        if write_header:
            writer.writerow(LOG_HEADERS)
        writer.writerow(row)
