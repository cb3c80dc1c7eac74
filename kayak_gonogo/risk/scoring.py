"""出艇リスクの採点です。 / Launch risk scoring.

The verdict is a weighted blend of five soft-ramp sub-scores. Each ramp is
100 up to its threshold and decays linearly with the excess, normalised by a
fixed tolerance band. Lightning or an external advisory bypasses scoring.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal, localcontext
from enum import Enum
from typing import List, Tuple

from pydantic import Field

from ..base import KayakBaseModel
from ..config import Thresholds
from ..weather.models import WeatherVars

WIND_BAND = 4.0
WAVE_BAND = 0.7
SWELL_BAND = 1.2
RAIN_BAND = 5.0

SHORT_PERIOD_FACTOR = 1.0
LONG_PERIOD_FACTOR = 0.5

WIND_WEIGHT = 0.35
WAVE_WEIGHT = 0.25
SWELL_WEIGHT = 0.20
RAIN_WEIGHT = 0.10
VISIBILITY_WEIGHT = 0.10

OK_CUTOFF = 70
ABORT_CUTOFF = 40

MAX_REASONS = 3
OVERRIDE_REASON = "雷/警報により中止"


class Label(str, Enum):
    """判定ラベルです。 / Traffic-light label."""

    OK = "OK"
    CAUTION = "注意"
    ABORT = "中止"


class SubScores(KayakBaseModel):
    """項目別スコアです。 / Per-dimension sub-scores."""

    wind: float
    wave: float
    swell: float
    rain: float
    visibility: float


class JudgeResult(KayakBaseModel):
    """判定結果です。 / Verdict for one set of conditions."""

    label: Label
    score: int = Field(ge=0, le=100)
    reasons: List[str] = Field(default_factory=list, max_length=MAX_REASONS)


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    """範囲内に丸めます。 / Clamp value into [low, high]."""

    return max(low, min(high, value))


def _ramp(actual: float, limit: float, band: float) -> float:
    return clamp(100 * (1 - max(0.0, actual - limit) / band))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _fixed(value: float, digits: int) -> str:
    # exact binary value, half rounded away from zero; -0.0 prints as 0.0
    with localcontext() as context:
        context.prec = 400
        quantum = Decimal(1).scaleb(-digits)
        return str(Decimal(value + 0.0).quantize(quantum, rounding=ROUND_HALF_UP))


def is_forced_abort(variables: WeatherVars) -> bool:
    """雷または警報の有無です。 / Whether lightning or an advisory is active."""

    advisory = variables.advisory
    return bool(
        variables.thunder
        or (advisory is not None and (advisory.gale or advisory.thunder))
    )


def sub_scores(variables: WeatherVars, thresholds: Thresholds) -> SubScores:
    """項目別スコアを計算します。 / Compute per-dimension sub-scores."""

    period_factor = (
        SHORT_PERIOD_FACTOR
        if variables.swell_tp_s < thresholds.min_swell_tp_ok
        else LONG_PERIOD_FACTOR
    )
    swell_penalty = (
        max(0.0, variables.swell_h_m - thresholds.max_swell_ok) * period_factor
    )
    return SubScores(
        wind=_ramp(
            variables.wind_ms,
            thresholds.max_wind_ok,
            thresholds.max_wind_ok + WIND_BAND,
        ),
        wave=_ramp(
            variables.wave_h_m,
            thresholds.max_wave_ok,
            thresholds.max_wave_ok + WAVE_BAND,
        ),
        swell=clamp(100 * (1 - swell_penalty / SWELL_BAND)),
        rain=_ramp(
            variables.rain_mmph,
            thresholds.rain_warn,
            thresholds.rain_warn + RAIN_BAND,
        ),
        # capped at the minimum: extra visibility earns no extra credit
        visibility=clamp(
            100 * min(1.0, variables.visibility_km / thresholds.min_visibility_ok)
        ),
    )


def composite_score(scores: SubScores) -> int:
    """加重合計スコアです。 / Weighted composite score, rounded half up."""

    total = (
        scores.wind * WIND_WEIGHT
        + scores.wave * WAVE_WEIGHT
        + scores.swell * SWELL_WEIGHT
        + scores.rain * RAIN_WEIGHT
        + scores.visibility * VISIBILITY_WEIGHT
    )
    return int(clamp(_round_half_up(total)))


def label_for(score: int) -> Label:
    """スコアからラベルを決めます。 / Map a score to its label."""

    if score >= OK_CUTOFF:
        return Label.OK
    if score >= ABORT_CUTOFF:
        return Label.CAUTION
    return Label.ABORT


def rank_reasons(
    variables: WeatherVars, scores: SubScores, limit: int = MAX_REASONS
) -> List[str]:
    """減点の大きい順に理由を並べます。 / Rank reasons by score loss."""

    candidates: List[Tuple[float, str]] = [
        (100 - scores.wind, f"風速 {_fixed(variables.wind_ms, 1)} m/s"),
        (100 - scores.wave, f"波高 {_fixed(variables.wave_h_m, 1)} m"),
        (
            100 - scores.swell,
            f"うねり {_fixed(variables.swell_h_m, 1)} m / "
            f"{_fixed(variables.swell_tp_s, 0)} s",
        ),
        (100 - scores.rain, f"降水 {_fixed(variables.rain_mmph, 1)} mm/h"),
        (100 - scores.visibility, f"視程 {_fixed(variables.visibility_km, 1)} km"),
    ]
    losing = [item for item in candidates if item[0] > 0]
    # sorted() is stable, so equal losses keep dimension order
    ranked = sorted(losing, key=lambda item: item[0], reverse=True)
    return [text for _, text in ranked[:limit]]


def evaluate(variables: WeatherVars, thresholds: Thresholds) -> JudgeResult:
    """条件を判定します。 / Judge launch conditions."""

    if is_forced_abort(variables):
        return JudgeResult(label=Label.ABORT, score=0, reasons=[OVERRIDE_REASON])
    scores = sub_scores(variables, thresholds)
    score = composite_score(scores)
    return JudgeResult(
        label=label_for(score),
        score=score,
        reasons=rank_reasons(variables, scores),
    )
