"""Pydantic request/response models for the topicwave HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from .constants import MIN_MAX_POINTS

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class EchoToggleRequest(BaseModel):
    topic: str = Field(min_length=1)
    checked: bool


class WaveformConfigRequest(BaseModel):
    field_path: str = Field(default="", max_length=512)
    max_points: int = Field(ge=MIN_MAX_POINTS, le=1_000_000)
    throttle_ms: int = Field(ge=0, le=60_000)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    version: str
    active_channels: int
    subscriptions: dict[str, int]
    store: dict[str, Any]
    panel_connections: int
    draws: int


class TopicModel(BaseModel):
    name: str
    type: str | None = None
    publishers: list[str] = []
    subscribers: list[str] = []


class TopicsResponse(BaseModel):
    topics: list[TopicModel]
    error: str | None = None


class SubscriptionStatusModel(BaseModel):
    channel: str
    state: str
    pid: int | None = None
    started_at: float | None = None
    finished_at: float | None = None
    exit_code: int | None = None
    signal: str | None = None
    error: str | None = None
    warning: str | None = None
    samples: int = 0
    records: int = 0


class EchoStateResponse(BaseModel):
    active: list[str]
    subscriptions: list[SubscriptionStatusModel]


class SampleModel(BaseModel):
    t: float
    v: float


class ChannelSamplesResponse(BaseModel):
    channel: str
    active: bool
    samples: list[SampleModel]


class ForgetChannelResponse(BaseModel):
    channel: str
    forgotten: bool


class WaveformConfigResponse(BaseModel):
    field_path: str
    max_points: int
    throttle_ms: int
