"""しきい値プリセットの管理です。 / Threshold preset store."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from ..config import Preset, Thresholds
from ..errors import InputValidationError

SEED_PRESETS: tuple[Preset, ...] = (
    Preset(
        id="inner-bay",
        name="内湾ライト",
        thresholds=Thresholds(
            max_wind_ok=6,
            max_wave_ok=1.0,
            max_swell_ok=1.2,
            min_swell_tp_ok=9,
            rain_warn=4,
            min_visibility_ok=2,
        ),
    ),
    Preset(
        id="outer-moderate",
        name="外洋控えめ",
        thresholds=Thresholds(
            max_wind_ok=5,
            max_wave_ok=0.8,
            max_swell_ok=1.0,
            min_swell_tp_ok=10,
            rain_warn=3,
            min_visibility_ok=3,
        ),
    ),
    Preset(
        id="expert",
        name="ベテラン",
        thresholds=Thresholds(
            max_wind_ok=7,
            max_wave_ok=1.2,
            max_swell_ok=1.4,
            min_swell_tp_ok=8,
            rain_warn=5,
            min_visibility_ok=2,
        ),
    ),
)


class UnknownPresetError(InputValidationError):
    """未知のプリセットです。 / Unknown preset id."""


class PresetStore:
    """プリセットの保管庫です。 / In-memory preset registry.

    Seeds come first; configured presets replace a seed with the same id or
    are appended after them.
    """

    def __init__(
        self,
        presets: Optional[Iterable[Preset]] = None,
        defaults: Optional[Thresholds] = None,
    ) -> None:
        self.defaults = defaults or Thresholds()
        self._presets: Dict[str, Preset] = {preset.id: preset for preset in SEED_PRESETS}
        for preset in presets or ():
            self.upsert(preset)

    def presets(self) -> List[Preset]:
        """プリセット一覧です。 / All presets in insertion order."""

        return list(self._presets.values())

    def get(self, preset_id: str) -> Preset:
        """ID で取得します。 / Look up a preset by id."""

        try:
            return self._presets[preset_id]
        except KeyError as exc:
            raise UnknownPresetError(f"Unknown preset: {preset_id}") from exc

    def upsert(self, preset: Preset) -> None:
        """追加または置換します。 / Add or replace a preset."""

        self._presets[preset.id] = preset

    def resolve(
        self,
        preset_id: Optional[str] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> Thresholds:
        """既定値・プリセット・上書きを統合します。 / Merge defaults, preset and overrides."""

        base = self.get(preset_id).thresholds if preset_id else self.defaults
        try:
            return base.with_overrides(overrides)
        except ValidationError as exc:
            raise InputValidationError(f"Invalid thresholds: {exc}") from exc
