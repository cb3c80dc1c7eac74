"""しきい値確認のテストです。 / Threshold check tests."""

from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from kayak_gonogo.config import Thresholds
from kayak_gonogo.risk.thresholds import CheckStatus, ThresholdChecker
from kayak_gonogo.weather.models import WeatherVars


def _vars(**overrides: float) -> WeatherVars:
    base = {
        "wind_ms": 3.0,
        "wave_h_m": 0.4,
        "swell_h_m": 0.5,
        "swell_tp_s": 11.0,
        "rain_mmph": 0.0,
        "visibility_km": 10.0,
    }
    base.update(overrides)
    return WeatherVars(**base)


def test_checks_follow_warning_margins() -> None:
    """注意帯を判定します。 / Values just past a limit are warnings."""

    checker = ThresholdChecker(thresholds=Thresholds())
    statuses = checker.evaluate(
        _vars(
            wind_ms=7.5,
            wave_h_m=1.3,
            swell_h_m=1.2,
            swell_tp_s=8.0,
            rain_mmph=6.5,
            visibility_km=1.5,
        )
    )
    assert statuses == {
        "wind": CheckStatus.WARN,
        "wave": CheckStatus.NG,
        "swell_height": CheckStatus.OK,
        "swell_period": CheckStatus.WARN,
        "rain": CheckStatus.NG,
        "visibility": CheckStatus.WARN,
    }


def test_check_records_in_display_order() -> None:
    """表示順の記録です。 / Records keep display order and reasons."""

    checker = ThresholdChecker(thresholds=Thresholds())
    records = checker.checks(_vars(visibility_km=0.5))
    assert [record.code for record in records] == [
        "wind",
        "wave",
        "swell_height",
        "swell_period",
        "rain",
        "visibility",
    ]
    assert records[-1].status == "NG"
    assert records[-1].reason == "0.50 !>= 2.00"
    assert records[0].reason == "3.00 <= 6.00"


@given(
    wind=st.floats(min_value=0.0, max_value=30.0),
    wave=st.floats(min_value=0.0, max_value=5.0),
    period=st.floats(min_value=0.0, max_value=20.0),
    visibility=st.floats(min_value=0.0, max_value=20.0),
)
def test_threshold_reasons_align(
    wind: float, wave: float, period: float, visibility: float
) -> None:
    """理由と判定が一致します。 / Threshold reasons align with status."""

    checker = ThresholdChecker(thresholds=Thresholds())
    variables = _vars(
        wind_ms=wind, wave_h_m=wave, swell_tp_s=period, visibility_km=visibility
    )
    results = checker.evaluate(variables)
    reasons = checker.reasons(variables)
    for key, status in results.items():
        if status == CheckStatus.OK:
            assert "!" not in reasons[key]
        else:
            assert "!" in reasons[key]
