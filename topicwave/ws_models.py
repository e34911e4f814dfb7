"""Pydantic models for the panel WebSocket message contract.

Every message is a JSON object with a ``type`` discriminator.  Outgoing
messages are produced by the server; incoming ones come from the panel
and are validated with :func:`parse_incoming`, which ignores anything it
does not recognise.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

# Bump this when a message shape changes in a backwards-incompatible way.
SCHEMA_VERSION: str = "1"


# ---------------------------------------------------------------------------
# Server -> panel
# ---------------------------------------------------------------------------


class TopicEntry(BaseModel):
    name: str
    type: str | None = None


class WaveformConfigPayload(BaseModel):
    field_path: str = ""
    max_points: int
    throttle_ms: int


class AppendLogMessage(BaseModel):
    type: Literal["appendLog"] = "appendLog"
    text: str
    channel: str | None = None
    stream: str | None = None


class SetStatusMessage(BaseModel):
    type: Literal["setStatus"] = "setStatus"
    text: str


class HelloMessage(BaseModel):
    type: Literal["hello"] = "hello"
    text: str
    schema_version: str = SCHEMA_VERSION


class SetTopicsMessage(BaseModel):
    type: Literal["setTopics"] = "setTopics"
    topics: list[TopicEntry]


class SetEchoActiveMessage(BaseModel):
    type: Literal["setEchoActive"] = "setEchoActive"
    topics: list[str]


class SetWaveformConfigMessage(BaseModel):
    type: Literal["setWaveformConfig"] = "setWaveformConfig"
    config: WaveformConfigPayload


class AppendSampleMessage(BaseModel):
    type: Literal["appendSample"] = "appendSample"
    topic: str
    t: float | None = None
    v: float


class WaveformMessage(BaseModel):
    """Render-ready frame; see ``waveform.frame.WaveformFrame.to_dict``."""

    model_config = ConfigDict(extra="allow")

    type: Literal["waveform"] = "waveform"
    frame: dict[str, Any]


class SubscriptionStateMessage(BaseModel):
    type: Literal["subscriptionState"] = "subscriptionState"
    status: dict[str, Any]


# ---------------------------------------------------------------------------
# Panel -> server
# ---------------------------------------------------------------------------


class ReadyMessage(BaseModel):
    type: Literal["ready"]


class RequestStateMessage(BaseModel):
    type: Literal["requestState"]


class SetEchoMessage(BaseModel):
    type: Literal["setEcho"]
    topic: str = Field(min_length=1)
    checked: bool


IncomingMessage = Annotated[
    ReadyMessage | RequestStateMessage | SetEchoMessage,
    Field(discriminator="type"),
]

_INCOMING_ADAPTER: TypeAdapter[IncomingMessage] = TypeAdapter(IncomingMessage)


def parse_incoming(payload: Any) -> ReadyMessage | RequestStateMessage | SetEchoMessage | None:
    """Validate a decoded panel message; ``None`` for anything malformed."""
    try:
        return _INCOMING_ADAPTER.validate_python(payload)
    except ValidationError:
        return None
