"""運用者向け CLI です。 / Operator-facing CLI."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, NoReturn, Optional

import typer

from .batch.runner import judge_spots, nearby_spots, top_spots
from .config import AppConfig, load_app_config
from .errors import InputValidationError
from .judge.service import JudgeRequest, JudgeResponse, judge
from .presets.store import PresetStore
from .reporting.markdown import append_log, build_report
from .weather.models import VariableSnapshot
from .weather.providers import VariableService, VariableSourceError, build_service

app = typer.Typer(help="Kayak go/no-go CLI")

LOG_PATH = Path("outputs/judge_log.csv")


def _configure_logging(config: AppConfig, verbose: bool) -> None:
    level = logging.DEBUG if verbose else config.log_level.upper()
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s"
    )


def _resolve_when(argument: str) -> datetime:
    """時刻指定を解決します。 / Resolve ``now``, ``+N`` hours or ISO text."""

    base = datetime.now(timezone.utc).replace(microsecond=0)
    if argument == "now":
        return base
    try:
        if argument.startswith("+"):
            return base + timedelta(hours=int(argument[1:]))
        parsed = datetime.fromisoformat(argument.replace("Z", "+00:00"))
    except ValueError as exc:
        raise typer.BadParameter(f"cannot parse time {argument!r}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _build_service(config: AppConfig) -> VariableService:
    return build_service(config.providers, config.provider_order)


def _build_store(config: AppConfig) -> PresetStore:
    return PresetStore(config.presets, defaults=config.thresholds)


def _parse_overrides(pairs: List[str]) -> Dict[str, Any]:
    """key=value を辞書にします。 / Parse ``key=value`` threshold overrides."""

    overrides: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"expected key=value, got {pair!r}")
        overrides[key.strip()] = value.strip()
    return overrides


def _fail(message: str) -> NoReturn:
    typer.secho(f"error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _print_response(response: JudgeResponse) -> None:
    result = response.result
    used = response.used_vars
    lines = [
        f"Verdict: {result.label}  Score: {result.score}",
        "Wind (m/s) | Wave (m) | Swell (m) | Period (s) | Rain (mm/h) | Vis (km)",
        "-----------|----------|-----------|------------|-------------|---------",
        (
            f"{used.wind_ms:.1f} | {used.wave_h_m:.1f} | {used.swell_h_m:.1f} | "
            f"{used.swell_tp_s:.0f} | {used.rain_mmph:.1f} | "
            f"{used.visibility_km:.1f}"
        ),
        f"Source: {response.provenance}",
    ]
    lines.extend(f"- {reason}" for reason in result.reasons)
    typer.echo("\n".join(lines))


@app.command("judge")
def judge_command(
    lat: Optional[float] = typer.Option(None, help="Latitude for lookup"),
    lon: Optional[float] = typer.Option(None, help="Longitude for lookup"),
    at: str = typer.Option("now", "--at", help="now, +N hours or ISO time"),
    preset: Optional[str] = typer.Option(None, help="Preset id"),
    wind: Optional[float] = typer.Option(None, help="Wind speed (m/s)"),
    wave: Optional[float] = typer.Option(None, help="Wave height (m)"),
    swell_h: Optional[float] = typer.Option(None, "--swell-h", help="Swell (m)"),
    swell_tp: Optional[float] = typer.Option(None, "--swell-tp", help="Period (s)"),
    rain: Optional[float] = typer.Option(None, help="Rain rate (mm/h)"),
    visibility: Optional[float] = typer.Option(None, help="Visibility (km)"),
    thunder: bool = typer.Option(False, "--thunder", help="Lightning reported"),
    gale: bool = typer.Option(False, "--gale", help="Gale advisory active"),
    threshold: List[str] = typer.Option([], "--threshold", help="key=value"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
    report: Optional[Path] = typer.Option(None, help="Markdown report directory"),
    save: bool = typer.Option(False, "--save", help="Append to judge log"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """出艇可否を判定します。 / Judge launch conditions."""

    config = load_app_config()
    _configure_logging(config, verbose)
    readings = {
        "wind_ms": wind,
        "wave_h_m": wave,
        "swell_h_m": swell_h,
        "swell_tp_s": swell_tp,
        "rain_mmph": rain,
        "visibility_km": visibility,
    }
    manual = any(value is not None for value in readings.values()) or thunder or gale
    variables: Optional[Dict[str, Any]] = None
    if manual:
        variables = {key: value for key, value in readings.items() if value is not None}
        variables["thunder"] = thunder
        variables["advisory"] = {"gale": gale} if gale else None
    request = JudgeRequest(
        variables=variables,
        lat=lat,
        lon=lon,
        at=_resolve_when(at),
        preset_id=preset or config.default_preset,
        thresholds=_parse_overrides(threshold) or None,
    )
    service = None if manual else _build_service(config)
    try:
        response = asyncio.run(judge(request, service, _build_store(config)))
    except (InputValidationError, VariableSourceError) as exc:
        _fail(str(exc))
    if as_json:
        typer.echo(json.dumps(response.model_dump_jsonable(), ensure_ascii=False))
    else:
        _print_response(response)
    if report is not None:
        built = build_report(response, report)
        typer.echo(f"\nReport saved to {built.path}")
    if save:
        append_log(response, LOG_PATH, request.preset_id)


@app.command("fetch-vars")
def fetch_vars(
    lat: float,
    lon: float,
    at: str = typer.Option("now", "--at"),
) -> None:
    """変数を取得します。 / Fetch the variables used for judging."""

    config = load_app_config()
    _configure_logging(config, False)
    service = _build_service(config)

    async def _run() -> VariableSnapshot:
        return await service.fetch(lat, lon, _resolve_when(at))

    try:
        snapshot = asyncio.run(_run())
    except VariableSourceError as exc:
        _fail(str(exc))
    typer.echo(json.dumps(snapshot.model_dump_jsonable(), ensure_ascii=False, indent=2))


@app.command("presets")
def list_presets() -> None:
    """プリセット一覧です。 / List threshold presets."""

    config = load_app_config()
    for preset in _build_store(config).presets():
        th = preset.thresholds
        marker = "*" if preset.id == config.default_preset else " "
        typer.echo(
            f"{marker} {preset.id} ({preset.name}): wind<={th.max_wind_ok:g} "
            f"wave<={th.max_wave_ok:g} swell<={th.max_swell_ok:g} "
            f"period>={th.min_swell_tp_ok:g} rain<={th.rain_warn:g} "
            f"vis>={th.min_visibility_ok:g}"
        )


@app.command("spots")
def spots_command(
    lat: float = typer.Option(..., help="Center latitude"),
    lon: float = typer.Option(..., help="Center longitude"),
    at: str = typer.Option("now", "--at"),
    radius: Optional[float] = typer.Option(None, help="Search radius (km)"),
    pool: Optional[int] = typer.Option(None, help="Spots to judge"),
    preset: Optional[str] = typer.Option(None, help="Preset id"),
) -> None:
    """周辺スポットを一括判定します。 / Judge configured spots nearby."""

    config = load_app_config()
    _configure_logging(config, False)
    batch = config.batch
    try:
        thresholds = _build_store(config).resolve(preset or config.default_preset)
    except InputValidationError as exc:
        _fail(str(exc))
    candidates = nearby_spots(
        lat, lon, config.spots, radius or batch.radius_km, pool or batch.pool
    )
    if not candidates:
        typer.echo("No spots within radius")
        return
    outcomes = asyncio.run(
        judge_spots(
            candidates,
            _resolve_when(at),
            thresholds,
            _build_service(config),
            concurrency=batch.concurrency,
            timeout_seconds=batch.timeout_seconds,
        )
    )
    for outcome in outcomes:
        if outcome.result is not None:
            status = f"{outcome.result.label} {outcome.result.score}"
        else:
            status = f"ERROR {outcome.error}"
        typer.echo(f"- {outcome.spot.name} ({outcome.distance_km:.1f} km): {status}")
    best = top_spots(outcomes, batch.top_n)
    if best:
        typer.echo("\nTop spots:")
        for rank, outcome in enumerate(best, start=1):
            typer.echo(f"{rank}. {outcome.spot.name} SCORE {outcome.result.score}")  # type: ignore[union-attr]


def main() -> None:
    """CLI エントリポイントです。 / CLI entry point."""

    app()


if __name__ == "__main__":  # pragma: no cover - CLI guard
    main()
