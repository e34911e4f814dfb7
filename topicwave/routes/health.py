"""Health check endpoint."""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

from fastapi import APIRouter

from .. import __version__
from ..api_models import HealthResponse

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_health_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        states = Counter(status.state.value for status in state.supervisor.statuses())
        return {
            "status": "ok",
            "version": __version__,
            "active_channels": len(state.supervisor.active_channels()),
            "subscriptions": dict(states),
            "store": state.store.stats(),
            "panel_connections": state.ws_hub.connection_count,
            "draws": state.scheduler.draw_count,
        }

    return router
