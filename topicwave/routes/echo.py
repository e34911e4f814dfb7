"""Echo subscription and per-channel sample endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException

from ..api_models import (
    ChannelSamplesResponse,
    EchoStateResponse,
    EchoToggleRequest,
    ForgetChannelResponse,
    SubscriptionStatusModel,
)
from ..topics import normalize_topic_name

if TYPE_CHECKING:
    from ..app import RuntimeState


def _normalize_topic(topic: str) -> str:
    name = normalize_topic_name(topic)
    if not name:
        raise HTTPException(status_code=400, detail="topic must not be empty")
    return name


def create_echo_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    def _echo_state() -> dict:
        return {
            "active": state.supervisor.active_channels(),
            "subscriptions": [status.to_dict() for status in state.supervisor.statuses()],
        }

    @router.get("/api/echo", response_model=EchoStateResponse)
    async def get_echo_state() -> EchoStateResponse:
        return _echo_state()

    @router.post("/api/echo", response_model=SubscriptionStatusModel)
    async def set_echo(req: EchoToggleRequest) -> SubscriptionStatusModel:
        topic = _normalize_topic(req.topic)
        status = await state.set_echo(topic, req.checked)
        if status is None:
            raise HTTPException(status_code=404, detail=f"No echo subscription for {topic}")
        return status.to_dict()

    @router.get("/api/channels/{topic:path}/samples", response_model=ChannelSamplesResponse)
    async def get_channel_samples(topic: str) -> ChannelSamplesResponse:
        channel = _normalize_topic(topic)
        if channel not in state.store and not state.supervisor.is_active(channel):
            raise HTTPException(status_code=404, detail=f"Unknown channel {channel}")
        return {
            "channel": channel,
            "active": state.supervisor.is_active(channel),
            "samples": [sample.to_dict() for sample in state.store.get(channel)],
        }

    @router.delete("/api/channels/{topic:path}", response_model=ForgetChannelResponse)
    async def forget_channel(topic: str) -> ForgetChannelResponse:
        channel = _normalize_topic(topic)
        forgotten = await state.forget_channel(channel)
        if not forgotten:
            raise HTTPException(status_code=404, detail=f"Unknown channel {channel}")
        return {"channel": channel, "forgotten": True}

    return router
