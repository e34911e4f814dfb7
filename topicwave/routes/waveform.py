"""Waveform configuration endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter

from ..api_models import WaveformConfigRequest, WaveformConfigResponse
from ..config import WaveformConfig

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_waveform_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/api/waveform-config", response_model=WaveformConfigResponse)
    async def get_waveform_config() -> WaveformConfigResponse:
        return state.waveform_config.to_dict()

    @router.put("/api/waveform-config", response_model=WaveformConfigResponse)
    async def set_waveform_config(req: WaveformConfigRequest) -> WaveformConfigResponse:
        applied = state.apply_waveform_config(
            WaveformConfig(
                field_path=req.field_path,
                max_points=req.max_points,
                throttle_ms=req.throttle_ms,
            )
        )
        return applied.to_dict()

    return router
