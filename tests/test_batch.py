"""一括判定のテストです。 / Batch judging tests."""

from __future__ import annotations

from datetime import datetime

import pytest
import respx
from conftest import FakeVariableService

from kayak_gonogo.batch.runner import (
    SpotState,
    distance_km,
    judge_spots,
    label_statuses,
    nearby_spots,
    retry_spot,
    top_spots,
)
from kayak_gonogo.config import CacheSettings, ProviderSettings, Spot, Thresholds
from kayak_gonogo.weather.models import WeatherVars
from kayak_gonogo.weather.providers import OpenMeteoAdapter, VariableService


def _spot(index: int, lat: float, lon: float = 139.6) -> Spot:
    return Spot(id=f"s{index}", name=f"Spot {index}", lat=lat, lon=lon)


def _windy(wind: float) -> WeatherVars:
    return WeatherVars(
        wind_ms=wind,
        wave_h_m=0.4,
        swell_h_m=0.5,
        swell_tp_s=11.0,
        rain_mmph=0.0,
        visibility_km=10.0,
    )


def test_distance_km_one_degree_latitude() -> None:
    """緯度一度の距離です。 / One degree of latitude is ~111.19 km."""

    assert distance_km(35.0, 139.0, 36.0, 139.0) == pytest.approx(111.19, abs=0.01)
    assert distance_km(35.0, 139.0, 35.0, 139.0) == 0.0


def test_nearby_spots_filters_sorts_and_caps() -> None:
    """半径・距離順・件数です。 / Radius filter, nearest first, pool cap."""

    spots = [_spot(1, 35.5), _spot(2, 35.1), _spot(3, 36.5), _spot(4, 35.2)]
    nearby = nearby_spots(35.0, 139.6, spots, radius_km=60)
    assert [spot.id for spot, _ in nearby] == ["s2", "s4", "s1"]
    assert nearby[0][1] < nearby[1][1] < nearby[2][1]
    capped = nearby_spots(35.0, 139.6, spots, radius_km=60, pool=2)
    assert [spot.id for spot, _ in capped] == ["s2", "s4"]


@pytest.mark.asyncio
async def test_judge_spots_runs_in_bounded_waves(when: datetime) -> None:
    """同時実行数を守ります。 / Concurrency never exceeds the wave size."""

    spots = [(_spot(index, 35.0 + index / 100), float(index)) for index in range(12)]
    service = FakeVariableService()
    outcomes = await judge_spots(
        spots, when, Thresholds(), service, concurrency=5, timeout_seconds=1.0
    )
    assert len(outcomes) == 12
    assert service.max_active <= 5
    assert [outcome.spot.id for outcome in outcomes] == [f"s{i}" for i in range(12)]
    assert all(outcome.state == SpotState.OK for outcome in outcomes)


@pytest.mark.asyncio
async def test_failures_are_isolated(when: datetime) -> None:
    """失敗は個別です。 / One failure or timeout spares its siblings."""

    spots = [(_spot(1, 35.1), 1.0), (_spot(2, 35.2), 2.0), (_spot(3, 35.3), 3.0)]
    service = FakeVariableService(failing={35.1}, slow={35.2})
    outcomes = await judge_spots(
        spots, when, Thresholds(), service, concurrency=3, timeout_seconds=0.05
    )
    states = [outcome.state for outcome in outcomes]
    assert states == ["error", "error", "ok"]
    assert "upstream down" in (outcomes[0].error or "")
    assert "timed out" in (outcomes[1].error or "")
    assert outcomes[2].result is not None
    assert outcomes[2].result.score == 100


@pytest.mark.asyncio
async def test_retry_spot_recovers_single_unit(when: datetime) -> None:
    """単独で再試行できます。 / A failed unit can be retried alone."""

    service = FakeVariableService(failing={35.1})
    [failed] = await judge_spots(
        [(_spot(1, 35.1), 4.0)], when, Thresholds(), service, timeout_seconds=1.0
    )
    assert failed.state == SpotState.ERROR
    service.failing.clear()
    recovered = await retry_spot(failed, when, Thresholds(), service)
    assert recovered.state == SpotState.OK
    assert recovered.distance_km == 4.0
    assert service.calls == [35.1, 35.1]


@pytest.mark.asyncio
async def test_top_spots_and_statuses(when: datetime) -> None:
    """上位と状態表です。 / Top spots by score and label map."""

    readings = {35.1: _windy(12.0), 35.2: _windy(3.0), 35.3: _windy(8.0)}
    spots = [
        (_spot(1, 35.1), 1.0),
        (_spot(2, 35.2), 2.0),
        (_spot(3, 35.3), 3.0),
        (_spot(4, 35.4), 4.0),
    ]
    service = FakeVariableService(readings=readings, failing={35.4})
    outcomes = await judge_spots(spots, when, Thresholds(), service)
    best = top_spots(outcomes, n=2)
    assert [outcome.spot.id for outcome in best] == ["s2", "s3"]
    statuses = label_statuses(outcomes)
    assert set(statuses) == {"s1", "s2", "s3"}
    assert statuses["s2"] == "OK"


@pytest.mark.asyncio
async def test_invalid_concurrency_rejected(when: datetime) -> None:
    """同時数 0 は不可です。 / Zero concurrency is rejected."""

    with pytest.raises(ValueError):
        await judge_spots([], when, Thresholds(), FakeVariableService(), concurrency=0)


@pytest.mark.asyncio
async def test_malformed_payload_spares_siblings(when: datetime) -> None:
    """壊れた応答も個別です。 / A malformed upstream payload fails only its spot."""

    settings = ProviderSettings(
        name="open-meteo",
        base_url="https://api.test",
        marine_base_url="https://marine.test",
        retries=0,
        cache=CacheSettings(ttl_seconds=0),
    )
    service = VariableService([OpenMeteoAdapter(settings)])
    valid = {
        "hourly": {
            "time": ["2025-07-01T10:00"],
            "wind_speed_10m": [3.0],
            "precipitation": [0.0],
            "visibility": [20000.0],
            "weather_code": [1],
        }
    }
    marine = {
        "hourly": {
            "time": ["2025-07-01T10:00"],
            "wave_height": [0.4],
            "swell_wave_height": [0.5],
            "swell_wave_period": [11.0],
        }
    }
    spots = [(_spot(1, 35.1), 1.0), (_spot(2, 35.2), 2.0)]
    with respx.mock() as mock:
        mock.get(
            "https://api.test/v1/forecast", params={"latitude": "35.1000"}
        ).respond(json={"hourly": {"time": [1234567890]}})
        mock.get(
            "https://api.test/v1/forecast", params={"latitude": "35.2000"}
        ).respond(json=valid)
        mock.get("https://marine.test/v1/marine").respond(json=marine)
        outcomes = await judge_spots(
            spots, when, Thresholds(), service, concurrency=2, timeout_seconds=1.0
        )
    assert [outcome.state for outcome in outcomes] == ["error", "ok"]
    assert "Malformed timestamp" in (outcomes[0].error or "")
    assert outcomes[1].result is not None
    assert outcomes[1].result.label == "OK"


@pytest.mark.asyncio
async def test_unexpected_error_stays_with_its_spot(when: datetime) -> None:
    """想定外の例外も個別です。 / An unexpected exception marks only its spot."""

    class BrokenService(FakeVariableService):
        async def fetch(self, lat, lon, at):
            if lat == 35.1:
                raise AttributeError("no such field")
            return await super().fetch(lat, lon, at)

    spots = [(_spot(1, 35.1), 1.0), (_spot(2, 35.2), 2.0)]
    outcomes = await judge_spots(
        spots, when, Thresholds(), BrokenService(), timeout_seconds=1.0
    )
    assert [outcome.state for outcome in outcomes] == ["error", "ok"]
    assert outcomes[0].error == "no such field"
