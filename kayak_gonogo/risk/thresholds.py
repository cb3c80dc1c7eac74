"""しきい値ごとの確認です。 / Per-variable threshold checks."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Tuple

from ..base import KayakBaseModel
from ..config import Thresholds
from ..weather.models import WeatherVars

# key -> (variable attribute, threshold attribute, is upper bound, warning margin)
_CHECKS: Dict[str, Tuple[str, str, bool, float]] = {
    "wind": ("wind_ms", "max_wind_ok", True, 1.5),
    "wave": ("wave_h_m", "max_wave_ok", True, 0.2),
    "swell_height": ("swell_h_m", "max_swell_ok", True, 0.2),
    "swell_period": ("swell_tp_s", "min_swell_tp_ok", False, 1.0),
    "rain": ("rain_mmph", "rain_warn", True, 2.0),
    "visibility": ("visibility_km", "min_visibility_ok", False, 0.5),
}


class CheckStatus(str, Enum):
    """項目の状態です。 / Status of a single variable."""

    OK = "OK"
    WARN = "注意"
    NG = "NG"


class VariableCheck(KayakBaseModel):
    """項目ごとの確認結果です。 / Check result for one variable."""

    code: str
    status: CheckStatus
    actual: float
    limit: float
    reason: str


class ThresholdChecker(KayakBaseModel):
    """しきい値確認器です。 / Threshold checker."""

    thresholds: Thresholds

    def evaluate(self, variables: WeatherVars) -> Dict[str, CheckStatus]:
        """各項目を確認します。 / Rate each variable."""

        return {
            code: self._status(variables, code) for code in _CHECKS
        }

    def reasons(self, variables: WeatherVars) -> Dict[str, str]:
        """確認理由を生成します。 / Produce check reasons."""

        messages: Dict[str, str] = {}
        for code, status in self.evaluate(variables).items():
            actual, limit, upper, _ = self._pair(variables, code)
            comparator = "<=" if upper else ">="
            messages[code] = (
                f"{actual:.2f} {comparator} {limit:.2f}"
                if status == CheckStatus.OK
                else f"{actual:.2f} !{comparator} {limit:.2f}"
            )
        return messages

    def checks(self, variables: WeatherVars) -> List[VariableCheck]:
        """確認結果の一覧です。 / List of check records in display order."""

        statuses = self.evaluate(variables)
        reasons = self.reasons(variables)
        records: List[VariableCheck] = []
        for code, status in statuses.items():
            actual, limit, _, _ = self._pair(variables, code)
            records.append(
                VariableCheck(
                    code=code,
                    status=status,
                    actual=actual,
                    limit=limit,
                    reason=reasons[code],
                )
            )
        return records

    def _pair(
        self, variables: WeatherVars, code: str
    ) -> Tuple[float, float, bool, float]:
        attribute, limit_attribute, upper, margin = _CHECKS[code]
        actual = getattr(variables, attribute)
        limit = getattr(self.thresholds, limit_attribute)
        return actual, limit, upper, margin

    def _status(self, variables: WeatherVars, code: str) -> CheckStatus:
        actual, limit, upper, margin = self._pair(variables, code)
        if upper:
            if actual <= limit:
                return CheckStatus.OK
            return CheckStatus.WARN if actual <= limit + margin else CheckStatus.NG
        if actual >= limit:
            return CheckStatus.OK
        return CheckStatus.WARN if actual >= limit - margin else CheckStatus.NG
