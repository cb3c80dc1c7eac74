"""環境および設定ローダーです。 / Environment and configuration loader."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import ConfigDict, Field, SecretStr, ValidationError, model_validator

from .base import KayakBaseModel

DEFAULT_CONFIG_PATH = Path("config.yaml")
CONFIG_ENV_VAR = "KAYAK_CONFIG"
SECRET_ENV_PREFIX = "KAYAK_API_KEY_"


class CacheSettings(KayakBaseModel):
    """キャッシュ設定です。 / Cache settings definition."""

    ttl_seconds: int = Field(default=300, ge=0)


class RateLimitSettings(KayakBaseModel):
    """レート制限設定です。 / Rate limit settings definition."""

    requests_per_minute: int = Field(default=60, ge=1)


class ProviderSettings(KayakBaseModel):
    """個別プロバイダ設定です。 / Individual provider settings."""

    name: str
    adapter: str = "open_meteo"
    base_url: str = "https://api.open-meteo.com"
    marine_base_url: str = "https://marine-api.open-meteo.com"
    timeout_seconds: float = Field(default=15.0, gt=0)
    retries: int = Field(default=2, ge=0)
    circuit_breaker_failures: int = Field(default=5, ge=1)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    thunder_from_weather_code: bool = True
    api_key: str | None = None
    secret_suffix: str | None = Field(default=None, exclude=True)


class Thresholds(KayakBaseModel):
    """判定しきい値です。 / Launch thresholds.

    The camelCase aliases are the wire names used by presets and requests.
    """

    model_config = ConfigDict(allow_inf_nan=False)

    max_wind_ok: float = Field(default=6.0, ge=0, alias="maxWindOk")
    max_wave_ok: float = Field(default=1.0, ge=0, alias="maxWaveOk")
    max_swell_ok: float = Field(default=1.2, ge=0, alias="maxSwellOk")
    min_swell_tp_ok: float = Field(default=9.0, ge=0, alias="minSwellTpOk")
    rain_warn: float = Field(default=4.0, ge=0, alias="rainWarn")
    min_visibility_ok: float = Field(default=2.0, gt=0, alias="minVisibilityOk")

    def with_overrides(
        self, overrides: Optional[Mapping[str, Any]] = None
    ) -> "Thresholds":
        """部分上書きを適用します。 / Apply partial overrides.

        Keys may be either attribute names or aliases; ``None`` values are
        ignored so a partially filled form keeps the base value.
        """

        if not overrides:
            return self
        fields = type(self).model_fields
        data = self.model_dump(by_alias=True)
        for key, value in overrides.items():
            if value is None:
                continue
            field = fields.get(key)
            alias = field.alias if field is not None and field.alias else key
            data[alias] = value
        return Thresholds.model_validate(data)


class Preset(KayakBaseModel):
    """しきい値プリセットです。 / Named threshold preset."""

    id: str
    name: str
    thresholds: Thresholds = Field(default_factory=Thresholds)


class Spot(KayakBaseModel):
    """出艇スポットです。 / Launch spot."""

    id: str
    name: str
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)


class BatchSettings(KayakBaseModel):
    """一括判定設定です。 / Batch judging settings."""

    concurrency: int = Field(default=5, ge=1)
    timeout_seconds: float = Field(default=15.0, gt=0)
    radius_km: float = Field(default=60.0, gt=0)
    pool: int = Field(default=12, ge=1)
    top_n: int = Field(default=3, ge=1)


class ProviderSecret(KayakBaseModel):
    """プロバイダのシークレットです。 / Provider secret wrapper."""

    api_key: SecretStr | None = None


def _default_providers() -> List[ProviderSettings]:
    return [ProviderSettings(name="open-meteo")]


class AppConfig(KayakBaseModel):
    """アプリケーション全体の設定です。 / Application wide configuration."""

    providers: List[ProviderSettings] = Field(default_factory=_default_providers)
    provider_order: List[str] = Field(default_factory=lambda: ["open-meteo"])
    thresholds: Thresholds = Field(default_factory=Thresholds)
    default_preset: Optional[str] = None
    presets: List[Preset] = Field(default_factory=list)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    spots: List[Spot] = Field(default_factory=list)
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_provider_order(self) -> "AppConfig":
        known = {provider.name for provider in self.providers}
        unknown = [name for name in self.provider_order if name not in known]
        if unknown:
            raise ValueError(f"provider_order names unknown providers: {unknown}")
        return self

    def provider_by_name(self, name: str) -> ProviderSettings:
        """名前でプロバイダを探します。 / Find provider by name."""

        for provider in self.providers:
            if provider.name == name:
                return provider
        raise KeyError(f"Unknown provider: {name}")


def load_yaml_config(path: Path) -> Dict[str, Any]:
    """YAML 設定を読み込みます。 / Load YAML configuration."""

    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError("Config root must be a mapping")
    return data


def load_secrets_from_env(suffixes: List[str]) -> Dict[str, ProviderSecret]:
    """環境変数からシークレットを読み込みます。 / Load secrets from environment."""

    mapping: Dict[str, ProviderSecret] = {}
    for suffix in suffixes:
        raw_value = os.getenv(f"{SECRET_ENV_PREFIX}{suffix}")
        secret = SecretStr(raw_value) if raw_value else None
        mapping[suffix] = ProviderSecret(api_key=secret)
    return mapping


def merge_config(
    raw: Dict[str, Any], secrets: Dict[str, ProviderSecret]
) -> Dict[str, Any]:
    """ファイル設定とシークレットを統合します。 / Merge file config with secrets."""

    for provider in raw.get("providers", []):
        suffix = provider.get("secret_suffix")
        if suffix and suffix in secrets:
            secret_value = secrets[suffix].api_key
            if secret_value:
                provider["api_key"] = secret_value.get_secret_value()
    return raw


def load_app_config(path: Path | None = None) -> AppConfig:
    """最終的なアプリ設定を返します。 / Return final app configuration."""

    config_path = path or Path(os.getenv(CONFIG_ENV_VAR, str(DEFAULT_CONFIG_PATH)))
    raw = load_yaml_config(config_path)
    suffixes = [
        str(provider["secret_suffix"])
        for provider in raw.get("providers", [])
        if isinstance(provider, dict) and provider.get("secret_suffix")
    ]
    merged = merge_config(raw, load_secrets_from_env(suffixes))
    try:
        return AppConfig.model_validate(merged)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc
