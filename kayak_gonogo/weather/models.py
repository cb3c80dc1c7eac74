"""正規化された気象モデルです。 / Normalized weather models."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import ConfigDict, Field

from ..base import KayakBaseModel

DEFAULT_MAGNITUDE = 0.0
DEFAULT_VISIBILITY_KM = 20.0

# canonical key -> legacy short key accepted from older clients
_LEGACY_KEYS: Dict[str, str] = {
    "wind_ms": "wind",
    "wave_h_m": "wave",
    "swell_h_m": "swellH",
    "swell_tp_s": "swellTp",
    "rain_mmph": "rain",
    "visibility_km": "visibility",
}


class Advisory(KayakBaseModel):
    """外部警報フラグです。 / External warning flags."""

    gale: bool = False
    thunder: bool = False


class WeatherVars(KayakBaseModel):
    """判定用の変数ベクトルです。 / Variable vector used for judging."""

    model_config = ConfigDict(allow_inf_nan=False)

    wind_ms: float
    wave_h_m: float
    swell_h_m: float
    swell_tp_s: float
    rain_mmph: float
    visibility_km: float
    thunder: bool = False
    advisory: Optional[Advisory] = None


class HourlySeries(KayakBaseModel):
    """毎時の時系列です。 / Hourly time series from one stream."""

    time: List[datetime] = Field(default_factory=list)
    values: Dict[str, List[Optional[float]]] = Field(default_factory=dict)

    def nearest_index(self, target: datetime) -> int:
        """最も近い時刻の添字です。 / Index of the closest timestamp."""

        return pick_nearest_index(self.time, target)

    def value_at(self, key: str, index: int, default: float) -> float:
        """添字の値を返します。 / Value at index, or the default."""

        column = self.values.get(key) or []
        if index >= len(column):
            return default
        return _to_number(column[index], default)


class VariableSnapshot(KayakBaseModel):
    """解決済みの変数です。 / Resolved variables with their provenance."""

    variables: WeatherVars
    requested_at: datetime
    atmosphere_time: Optional[datetime] = None
    marine_time: Optional[datetime] = None
    provenance: str


def ensure_utc(value: datetime) -> datetime:
    """タイムゾーンを UTC に揃えます。 / Treat naive values as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def pick_nearest_index(times: Sequence[datetime], target: datetime) -> int:
    """時間差が最小の添字を選びます。 / Pick index with the smallest gap.

    Ties keep the first occurrence; an empty series yields 0.
    """

    target = ensure_utc(target)
    best_index = 0
    best_gap = math.inf
    for index, stamp in enumerate(times):
        gap = abs((ensure_utc(stamp) - target).total_seconds())
        if gap < best_gap:
            best_gap = gap
            best_index = index
    return best_index


def _to_number(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return number


def _lookup(raw: Mapping[str, Any], key: str) -> Any:
    value = raw.get(key)
    if value is None:
        value = raw.get(_LEGACY_KEYS[key])
    return value


def _coerce_advisory(value: Any) -> Optional[Advisory]:
    if not isinstance(value, Mapping):
        return None
    return Advisory(gale=bool(value.get("gale")), thunder=bool(value.get("thunder")))


def coerce_vars(raw: Mapping[str, Any]) -> WeatherVars:
    """入力値を安全に変換します。 / Coerce caller-supplied values.

    Malformed or missing magnitudes become 0 and visibility becomes 20 km,
    so a verdict is always produced for a structurally valid request.
    """

    numbers = {
        key: _to_number(
            _lookup(raw, key),
            DEFAULT_VISIBILITY_KM if key == "visibility_km" else DEFAULT_MAGNITUDE,
        )
        for key in _LEGACY_KEYS
    }
    return WeatherVars(
        **numbers,
        thunder=bool(raw.get("thunder") or False),
        advisory=_coerce_advisory(raw.get("advisory")),
    )
