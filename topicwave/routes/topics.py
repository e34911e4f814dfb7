"""Topic discovery endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter

from ..api_models import TopicsResponse

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_topic_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    def _response(error: str | None) -> dict:
        return {
            "topics": [topic.to_dict() for topic in state.catalog.topics],
            "error": error,
        }

    @router.get("/api/topics", response_model=TopicsResponse)
    async def get_topics() -> TopicsResponse:
        return _response(state.catalog.last_error)

    @router.post("/api/topics/refresh", response_model=TopicsResponse)
    async def refresh_topics() -> TopicsResponse:
        return _response(await state.refresh_topics())

    return router
