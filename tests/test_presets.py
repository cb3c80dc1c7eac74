"""プリセットのテストです。 / Preset store tests."""

from __future__ import annotations

import pytest

from kayak_gonogo.config import Preset, Thresholds
from kayak_gonogo.errors import InputValidationError
from kayak_gonogo.presets.store import PresetStore, UnknownPresetError


def test_seed_presets_available() -> None:
    """初期プリセットがあります。 / Seed presets are present."""

    store = PresetStore()
    assert [preset.id for preset in store.presets()] == [
        "inner-bay",
        "outer-moderate",
        "expert",
    ]
    outer = store.get("outer-moderate").thresholds
    assert outer.max_wind_ok == 5
    assert outer.min_visibility_ok == 3
    assert store.get("inner-bay").thresholds == Thresholds()


def test_configured_presets_override_and_extend() -> None:
    """設定で上書き・追加します。 / Configured presets replace or append."""

    store = PresetStore(
        [
            Preset(id="expert", name="上級", thresholds=Thresholds(maxWindOk=8)),
            Preset(id="calm", name="凪", thresholds=Thresholds(maxWindOk=3)),
        ]
    )
    assert [preset.id for preset in store.presets()][-1] == "calm"
    assert store.get("expert").name == "上級"
    assert store.get("expert").thresholds.max_wind_ok == 8


def test_resolve_merges_defaults_preset_and_overrides() -> None:
    """既定・プリセット・上書きの順です。 / Defaults, preset, then overrides."""

    store = PresetStore(defaults=Thresholds(rainWarn=2))
    assert store.resolve().rain_warn == 2
    merged = store.resolve(
        "outer-moderate", {"maxWindOk": 4.5, "rain_warn": 1, "minVisibilityOk": None}
    )
    assert merged.max_wind_ok == pytest.approx(4.5)
    assert merged.rain_warn == pytest.approx(1.0)
    assert merged.min_visibility_ok == pytest.approx(3.0)
    assert merged.max_wave_ok == pytest.approx(0.8)


def test_unknown_preset_is_input_error() -> None:
    """未知 ID は入力エラーです。 / Unknown id is an input error."""

    store = PresetStore()
    with pytest.raises(UnknownPresetError):
        store.get("nope")
    with pytest.raises(InputValidationError):
        store.resolve("nope")


def test_invalid_override_is_input_error() -> None:
    """不正な上書きは入力エラーです。 / Invalid override is rejected."""

    store = PresetStore()
    with pytest.raises(InputValidationError):
        store.resolve(None, {"minVisibilityOk": 0})
    with pytest.raises(InputValidationError):
        store.resolve(None, {"maxWindOk": "strong"})
