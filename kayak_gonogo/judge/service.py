"""判定エントリポイントです。 / Judge entry point."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from pydantic import Field

from ..base import KayakBaseModel
from ..config import Thresholds
from ..errors import InputValidationError
from ..presets.store import PresetStore
from ..risk.scoring import JudgeResult, evaluate
from ..weather.models import VariableSnapshot, WeatherVars, coerce_vars, ensure_utc
from ..weather.providers import VariableService

LOGGER = logging.getLogger("judge.service")

MANUAL_PROVENANCE = "manual"


class JudgeRequest(KayakBaseModel):
    """判定要求です。 / Judge request.

    Either ``vars`` (literal readings) or ``lat``/``lon`` must be given.
    """

    variables: Optional[Dict[str, Any]] = Field(default=None, alias="vars")
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lon: Optional[float] = Field(default=None, ge=-180, le=180)
    at: Optional[datetime] = None
    preset_id: Optional[str] = Field(default=None, alias="presetId")
    thresholds: Optional[Dict[str, Any]] = None


class JudgeResponse(KayakBaseModel):
    """判定応答です。 / Judge response."""

    ok: bool = True
    result: JudgeResult
    used_vars: WeatherVars = Field(alias="usedVars")
    thresholds: Thresholds
    provenance: str
    at: datetime
    lat: Optional[float] = None
    lon: Optional[float] = None


async def resolve_variables(
    request: JudgeRequest,
    service: Optional[VariableService],
) -> Tuple[WeatherVars, str, datetime]:
    """判定に使う変数を決めます。 / Resolve the variables to judge."""

    at = ensure_utc(request.at) if request.at else datetime.now(timezone.utc)
    if request.variables is not None:
        return coerce_vars(request.variables), MANUAL_PROVENANCE, at
    if request.lat is None or request.lon is None:
        raise InputValidationError("missing vars or lat/lon")
    if service is None:
        raise InputValidationError("no variable source configured for lat/lon")
    snapshot: VariableSnapshot = await service.fetch(request.lat, request.lon, at)
    return snapshot.variables, snapshot.provenance, at


async def judge(
    request: JudgeRequest,
    service: Optional[VariableService],
    presets: PresetStore,
) -> JudgeResponse:
    """条件を取得して判定します。 / Resolve conditions and judge them."""

    thresholds = presets.resolve(request.preset_id, request.thresholds)
    variables, provenance, at = await resolve_variables(request, service)
    response = build_response(
        variables,
        thresholds,
        provenance=provenance,
        at=at,
        lat=request.lat,
        lon=request.lon,
    )
    LOGGER.info(
        "judge_complete",
        extra={
            "provenance": provenance,
            "label": response.result.label,
            "score": response.result.score,
        },
    )
    return response


def build_response(
    variables: WeatherVars,
    thresholds: Thresholds,
    provenance: str,
    at: datetime,
    lat: Optional[float] = None,
    lon: Optional[float] = None,
) -> JudgeResponse:
    """判定応答を組み立てます。 / Evaluate and wrap into a response."""

    return JudgeResponse(
        result=evaluate(variables, thresholds),
        used_vars=variables,
        thresholds=thresholds,
        provenance=provenance,
        at=at,
        lat=lat,
        lon=lon,
    )
