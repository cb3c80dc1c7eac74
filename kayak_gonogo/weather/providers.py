"""気象変数プロバイダのアダプタです。 / Weather variable provider adapters."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Tuple

import httpx
from pydantic import ConfigDict, ValidationError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..base import KayakBaseModel
from ..config import ProviderSettings
from .models import (
    DEFAULT_MAGNITUDE,
    HourlySeries,
    VariableSnapshot,
    WeatherVars,
    ensure_utc,
)

LOGGER = logging.getLogger("weather.providers")

ATMOSPHERE_FIELDS = ("wind_speed_10m", "precipitation", "visibility", "weather_code")
MARINE_FIELDS = ("wave_height", "swell_wave_height", "swell_wave_period")
DEFAULT_VISIBILITY_M = 20000.0
THUNDERSTORM_CODES = frozenset({95, 96, 99})


class VariableSourceError(Exception):
    """変数取得の失敗です。 / Variable source failure."""


class RateLimitExceededError(VariableSourceError):
    """レート制限超過です。 / Rate limit exceeded error."""


class CircuitBreakerOpenError(VariableSourceError):
    """サーキットブレーカー開放中です。 / Circuit breaker open error."""


@dataclass
class CacheEntry:
    """キャッシュ項目です。 / Cache entry structure."""

    value: VariableSnapshot
    expires_at: float


class TTLCache:
    """TTL キャッシュです。 / TTL cache container."""

    def __init__(self) -> None:
        self._store: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[VariableSnapshot]:
        """キャッシュから取得します。 / Retrieve value from cache."""

        async with self._lock:
            entry = self._store.get(key)
            if not entry:
                return None
            if entry.expires_at < time.monotonic():
                self._store.pop(key, None)
                return None
            return entry.value

    async def set(
        self,
        key: str,
        value: VariableSnapshot,
        ttl_seconds: int,
    ) -> None:
        """キャッシュへ保存します。 / Store value in cache."""

        if ttl_seconds <= 0:
            return
        async with self._lock:
            expires_at = time.monotonic() + ttl_seconds
            self._store[key] = CacheEntry(value=value, expires_at=expires_at)


class RateLimiter:
    """スライディングウィンドウ制限です。 / Sliding window rate guard."""

    def __init__(self, capacity: int, period_seconds: float) -> None:
        self.capacity = capacity
        self.period_seconds = period_seconds
        self._events: Deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """トークンを取得します。 / Acquire rate limit token."""

        async with self._lock:
            now = time.monotonic()
            while self._events and now - self._events[0] > self.period_seconds:
                self._events.popleft()
            if len(self._events) >= self.capacity:
                raise RateLimitExceededError("Rate limit exceeded")
            self._events.append(now)


class CircuitBreaker(KayakBaseModel):
    """サーキットブレーカーの状態です。 / Circuit breaker state."""

    model_config = ConfigDict(
        frozen=False,
        populate_by_name=True,
        use_enum_values=True,
        validate_assignment=True,
    )
    failure_threshold: int
    reset_seconds: float
    failure_count: int = 0
    opened_at: Optional[float] = None

    def check(self) -> None:
        """状態を確認します。 / Check breaker state."""

        if self.opened_at is None:
            return
        if time.monotonic() - self.opened_at >= self.reset_seconds:
            self.failure_count = 0
            self.opened_at = None

    def record_failure(self) -> None:
        """失敗を記録します。 / Record failure event."""

        self.failure_count += 1
        if self.failure_count >= self.failure_threshold:
            self.opened_at = time.monotonic()

    def record_success(self) -> None:
        """成功を記録します。 / Record success event."""

        self.failure_count = 0
        self.opened_at = None

    def ensure_closed(self) -> None:
        """閉じていることを確認します。 / Ensure breaker closed."""

        self.check()
        if self.opened_at is not None:
            raise CircuitBreakerOpenError("Circuit breaker is open")


class VariableProvider(ABC):
    """変数プロバイダのインターフェースです。 / Variable provider interface."""

    def __init__(self, settings: ProviderSettings) -> None:
        self.settings = settings
        self.cache = TTLCache()
        self.rate_limiter = RateLimiter(
            capacity=settings.rate_limit.requests_per_minute,
            period_seconds=60.0,
        )
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.circuit_breaker_failures,
            reset_seconds=60.0,
        )

    @property
    def name(self) -> str:
        """プロバイダ名です。 / Return provider name."""

        return self.settings.name

    async def fetch_variables(
        self,
        lat: float,
        lon: float,
        when: datetime,
    ) -> VariableSnapshot:
        """変数を取得します。 / Fetch variables for a place and time."""

        when = ensure_utc(when)
        cache_key = f"{self.name}:{lat:.4f}:{lon:.4f}:{when.isoformat()}"
        cached = await self.cache.get(cache_key)
        if cached:
            return cached
        self.circuit_breaker.ensure_closed()
        await self.rate_limiter.acquire()
        try:
            result = await self._request_with_retry(lat, lon, when)
        except (
            httpx.HTTPError,
            AttributeError,
            KeyError,
            TypeError,
            ValueError,
        ) as exc:
            self.circuit_breaker.record_failure()
            LOGGER.exception(
                "provider_error",
                extra={"provider": self.name, "error": str(exc)},
            )
            raise VariableSourceError(str(exc) or type(exc).__name__) from exc
        self.circuit_breaker.record_success()
        await self.cache.set(cache_key, result, self.settings.cache.ttl_seconds)
        return result

    async def _request_with_retry(
        self,
        lat: float,
        lon: float,
        when: datetime,
    ) -> VariableSnapshot:
        """再試行付きで要求します。 / Perform request with retry."""

        retryer = AsyncRetrying(
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            stop=stop_after_attempt(self.settings.retries + 1),
            retry=retry_if_exception_type(httpx.HTTPError),
            reraise=True,
        )
        try:
            snapshot: VariableSnapshot | None = None
            async for attempt in retryer:
                with attempt:
                    snapshot = await self._fetch_remote(lat, lon, when)
        except RetryError as exc:
            raise VariableSourceError(str(exc)) from exc
        if snapshot is None:  # pragma: no cover
            raise VariableSourceError("Retry loop produced no result")
        return snapshot

    @abstractmethod
    async def _fetch_remote(
        self,
        lat: float,
        lon: float,
        when: datetime,
    ) -> VariableSnapshot:
        """リモートから取得します。 / Fetch remote data."""


class OpenMeteoAdapter(VariableProvider):
    """Open-Meteo アダプタです。 / Open-Meteo forecast and marine adapter.

    Atmospheric and marine streams come from separate endpoints; each is
    matched to the requested time independently.
    """

    forecast_path: str = "/v1/forecast"
    marine_path: str = "/v1/marine"

    async def _fetch_remote(
        self,
        lat: float,
        lon: float,
        when: datetime,
    ) -> VariableSnapshot:
        """二系統を並行取得します。 / Fetch both streams concurrently."""

        timeout = httpx.Timeout(self.settings.timeout_seconds)
        headers = {"accept": "application/json"}
        async with httpx.AsyncClient(timeout=timeout, headers=headers) as client:
            atmosphere_payload, marine_payload = await asyncio.gather(
                self._get_json(
                    client,
                    self.settings.base_url + self.forecast_path,
                    self.build_params(lat, lon, ATMOSPHERE_FIELDS, wind_in_ms=True),
                ),
                self._get_json(
                    client,
                    self.settings.marine_base_url + self.marine_path,
                    self.build_params(lat, lon, MARINE_FIELDS),
                ),
            )
        return self.parse_payloads(atmosphere_payload, marine_payload, when)

    async def _get_json(
        self, client: httpx.AsyncClient, url: str, params: Dict[str, Any]
    ) -> Dict[str, Any]:
        response = await client.get(url, params=params)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"Unexpected payload from {url}")
        return payload

    def build_params(
        self,
        lat: float,
        lon: float,
        fields: Tuple[str, ...],
        wind_in_ms: bool = False,
    ) -> Dict[str, Any]:
        """要求パラメータを組み立てます。 / Build request parameters."""

        params: Dict[str, Any] = {
            "latitude": f"{lat:.4f}",
            "longitude": f"{lon:.4f}",
            "hourly": ",".join(fields),
            "timezone": "UTC",
        }
        if wind_in_ms:
            params["wind_speed_unit"] = "ms"
        if self.settings.api_key:
            params["apikey"] = self.settings.api_key
        return params

    def parse_payloads(
        self,
        atmosphere_payload: Dict[str, Any],
        marine_payload: Dict[str, Any],
        when: datetime,
    ) -> VariableSnapshot:
        """応答を変数へ変換します。 / Transform responses into variables."""

        atmosphere = parse_hourly(atmosphere_payload, ATMOSPHERE_FIELDS)
        marine = parse_hourly(marine_payload, MARINE_FIELDS)
        ai = atmosphere.nearest_index(when)
        mi = marine.nearest_index(when)
        thunder = False
        if self.settings.thunder_from_weather_code:
            code = atmosphere.value_at("weather_code", ai, -1.0)
            thunder = int(code) in THUNDERSTORM_CODES
        variables = WeatherVars(
            wind_ms=atmosphere.value_at("wind_speed_10m", ai, DEFAULT_MAGNITUDE),
            rain_mmph=atmosphere.value_at("precipitation", ai, DEFAULT_MAGNITUDE),
            visibility_km=atmosphere.value_at("visibility", ai, DEFAULT_VISIBILITY_M)
            / 1000,
            wave_h_m=marine.value_at("wave_height", mi, DEFAULT_MAGNITUDE),
            swell_h_m=marine.value_at("swell_wave_height", mi, DEFAULT_MAGNITUDE),
            swell_tp_s=marine.value_at("swell_wave_period", mi, DEFAULT_MAGNITUDE),
            thunder=thunder,
            advisory=None,
        )
        return VariableSnapshot(
            variables=variables,
            requested_at=when,
            atmosphere_time=_time_at(atmosphere, ai),
            marine_time=_time_at(marine, mi),
            provenance=self.name,
        )


def parse_hourly(payload: Dict[str, Any], fields: Tuple[str, ...]) -> HourlySeries:
    """hourly ブロックを解析します。 / Parse an ``hourly`` block."""

    hourly = payload.get("hourly") or {}
    if not isinstance(hourly, dict):
        raise ValueError("Malformed hourly block: expected an object")
    times = hourly.get("time") or []
    if not isinstance(times, list):
        raise ValueError("Malformed hourly block: time is not a list")
    try:
        return HourlySeries(
            time=[_parse_timestamp(value) for value in times],
            values={field: _as_list(hourly.get(field), field) for field in fields},
        )
    except ValidationError as exc:
        raise ValueError(f"Malformed hourly block: {exc}") from exc


def _as_list(value: Any, field: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"Malformed hourly block: {field} is not a list")
    return value


def _time_at(series: HourlySeries, index: int) -> Optional[datetime]:
    if index < len(series.time):
        return series.time[index]
    return None


def _parse_timestamp(value: Any) -> datetime:
    """時刻を解析します。 / Parse timestamp value, assuming UTC."""

    if not isinstance(value, str):
        raise ValueError(f"Malformed timestamp: {value!r}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


ADAPTER_REGISTRY: Dict[str, type[VariableProvider]] = {
    "open_meteo": OpenMeteoAdapter,
}


class VariableService:
    """変数取得のファサードです。 / Variable source facade."""

    def __init__(self, providers: List[VariableProvider]) -> None:
        self.providers = providers

    async def fetch(self, lat: float, lon: float, when: datetime) -> VariableSnapshot:
        """フォールバックで取得します。 / Perform fallback chain."""

        errors: List[str] = []
        for provider in self.providers:
            try:
                LOGGER.info("provider_attempt", extra={"provider": provider.name})
                return await provider.fetch_variables(lat, lon, when)
            except VariableSourceError as exc:
                LOGGER.warning(
                    "provider_failed",
                    extra={"provider": provider.name, "error": str(exc)},
                )
                errors.append(f"{provider.name}: {exc}")
        raise VariableSourceError("; ".join(errors) or "All providers failed")


def create_provider(settings: ProviderSettings) -> VariableProvider:
    """設定からプロバイダを作ります。 / Build provider from settings."""

    try:
        adapter_cls = ADAPTER_REGISTRY[settings.adapter]
    except KeyError as exc:
        raise ValueError(f"Unknown adapter: {settings.adapter}") from exc
    return adapter_cls(settings)


def build_service(
    settings: List[ProviderSettings], order: List[str]
) -> VariableService:
    """順序どおりにサービスを作ります。 / Build service in provider order."""

    by_name = {provider.name: provider for provider in settings}
    providers: List[VariableProvider] = []
    for name in order:
        if name not in by_name:
            raise KeyError(f"Unknown provider: {name}")
        providers.append(create_provider(by_name[name]))
    return VariableService(providers)
