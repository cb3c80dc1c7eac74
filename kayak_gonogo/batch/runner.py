"""複数スポットの一括判定です。 / Batch judging of launch spots.

Spots are judged in waves of ``concurrency`` calls. Each call has its own
timeout and a failing call only marks its own spot as ``error``.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..base import KayakBaseModel
from ..config import Spot, Thresholds
from ..risk.scoring import JudgeResult, evaluate
from ..weather.providers import VariableService, VariableSourceError

LOGGER = logging.getLogger("batch.runner")

EARTH_RADIUS_KM = 6371.0


class SpotState(str, Enum):
    """判定状態です。 / Per-spot state."""

    OK = "ok"
    ERROR = "error"


class SpotOutcome(KayakBaseModel):
    """スポットごとの結果です。 / Outcome for one spot."""

    spot: Spot
    distance_km: float
    state: SpotState
    result: Optional[JudgeResult] = None
    error: Optional[str] = None


def distance_km(a_lat: float, a_lon: float, b_lat: float, b_lon: float) -> float:
    """大円距離です。 / Haversine distance in kilometres."""

    d_lat = math.radians(b_lat - a_lat)
    d_lon = math.radians(b_lon - a_lon)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a_lat))
        * math.cos(math.radians(b_lat))
        * math.sin(d_lon / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, h)))


def nearby_spots(
    center_lat: float,
    center_lon: float,
    spots: Iterable[Spot],
    radius_km: float,
    pool: Optional[int] = None,
) -> List[Tuple[Spot, float]]:
    """近いスポットを選びます。 / Spots within radius, nearest first."""

    ranked = sorted(
        (
            (spot, distance_km(center_lat, center_lon, spot.lat, spot.lon))
            for spot in spots
        ),
        key=lambda pair: pair[1],
    )
    within = [pair for pair in ranked if pair[1] <= radius_km]
    return within[:pool] if pool is not None else within


async def judge_spot(
    spot: Spot,
    distance: float,
    at: datetime,
    thresholds: Thresholds,
    service: VariableService,
    timeout_seconds: float,
) -> SpotOutcome:
    """一地点を判定します。 / Judge one spot, capturing its failure."""

    try:
        snapshot = await asyncio.wait_for(
            service.fetch(spot.lat, spot.lon, at), timeout=timeout_seconds
        )
    except asyncio.TimeoutError:
        LOGGER.warning("spot_failed", extra={"spot": spot.id, "error": "timeout"})
        return SpotOutcome(
            spot=spot,
            distance_km=distance,
            state=SpotState.ERROR,
            error=f"timed out after {timeout_seconds:g}s",
        )
    except VariableSourceError as exc:
        LOGGER.warning("spot_failed", extra={"spot": spot.id, "error": str(exc)})
        return SpotOutcome(
            spot=spot, distance_km=distance, state=SpotState.ERROR, error=str(exc)
        )
    except Exception as exc:  # noqa: BLE001 - one spot never aborts its wave
        LOGGER.exception("spot_failed", extra={"spot": spot.id, "error": str(exc)})
        return SpotOutcome(
            spot=spot,
            distance_km=distance,
            state=SpotState.ERROR,
            error=str(exc) or type(exc).__name__,
        )
    return SpotOutcome(
        spot=spot,
        distance_km=distance,
        state=SpotState.OK,
        result=evaluate(snapshot.variables, thresholds),
    )


async def judge_spots(
    spots: Sequence[Tuple[Spot, float]],
    at: datetime,
    thresholds: Thresholds,
    service: VariableService,
    concurrency: int = 5,
    timeout_seconds: float = 15.0,
) -> List[SpotOutcome]:
    """ウェーブ単位で判定します。 / Judge spots wave by wave, in input order."""

    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")
    outcomes: List[SpotOutcome] = []
    for start in range(0, len(spots), concurrency):
        wave = spots[start : start + concurrency]
        outcomes.extend(
            await asyncio.gather(
                *(
                    judge_spot(spot, distance, at, thresholds, service, timeout_seconds)
                    for spot, distance in wave
                )
            )
        )
    return outcomes


async def retry_spot(
    outcome: SpotOutcome,
    at: datetime,
    thresholds: Thresholds,
    service: VariableService,
    timeout_seconds: float = 15.0,
) -> SpotOutcome:
    """一地点だけ再判定します。 / Re-judge a single spot."""

    return await judge_spot(
        outcome.spot, outcome.distance_km, at, thresholds, service, timeout_seconds
    )


def top_spots(outcomes: Iterable[SpotOutcome], n: int = 3) -> List[SpotOutcome]:
    """スコア上位です。 / Best successful spots by score."""

    judged = [
        outcome
        for outcome in outcomes
        if outcome.state == SpotState.OK and outcome.result is not None
    ]
    judged.sort(key=lambda outcome: outcome.result.score, reverse=True)  # type: ignore[union-attr]
    return judged[:n]


def label_statuses(outcomes: Iterable[SpotOutcome]) -> Dict[str, str]:
    """スポット ID とラベルの対応です。 / Map spot id to label."""

    return {
        outcome.spot.id: outcome.result.label
        for outcome in outcomes
        if outcome.state == SpotState.OK and outcome.result is not None
    }
