"""共通フィクスチャです。 / Shared test fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

import pytest

from kayak_gonogo.weather.models import VariableSnapshot, WeatherVars
from kayak_gonogo.weather.providers import VariableSourceError

CALM = WeatherVars(
    wind_ms=3.0,
    wave_h_m=0.4,
    swell_h_m=0.5,
    swell_tp_s=11.0,
    rain_mmph=0.0,
    visibility_km=10.0,
)


class FakeVariableService:
    """固定応答の変数ソースです。 / Variable source with canned answers.

    Readings are keyed by latitude; listed latitudes fail or stall.
    """

    def __init__(
        self,
        readings: Optional[Dict[float, WeatherVars]] = None,
        failing: Optional[Set[float]] = None,
        slow: Optional[Set[float]] = None,
        delay: float = 0.01,
    ) -> None:
        self.readings = readings or {}
        self.failing = failing or set()
        self.slow = slow or set()
        self.delay = delay
        self.calls: List[float] = []
        self.active = 0
        self.max_active = 0

    async def fetch(self, lat: float, lon: float, when: datetime) -> VariableSnapshot:
        self.calls.append(lat)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(5.0 if lat in self.slow else self.delay)
            if lat in self.failing:
                raise VariableSourceError(f"upstream down for {lat}")
            return VariableSnapshot(
                variables=self.readings.get(lat, CALM),
                requested_at=when,
                provenance="fake",
            )
        finally:
            self.active -= 1


@pytest.fixture
def when() -> datetime:
    return datetime(2025, 7, 1, 10, 0, tzinfo=timezone.utc)
