"""Runtime orchestration for echo subprocesses -> samples -> waveform -> panel.

Boundary note for maintainers:
- Keep this module focused on orchestration, not parsing or drawing details.
- Decoding/parsing/extraction belongs in ``echo/*``.
- Buffering and frame building belong in ``waveform/*``.
- API schemas belong in ``api_models.py`` and ``ws_models.py``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

import uvicorn
from fastapi import FastAPI, WebSocket
from pydantic import BaseModel

from . import __version__
from .config import AppConfig, WaveformConfig, load_config
from .echo.extractor import Sample
from .ros2_cli import CommandRunner, ProcessHost
from .routes import create_router
from .supervisor import EchoSupervisor, SubscriptionState, SubscriptionStatus
from .topics import TopicCatalog, TopicDiscoveryError, normalize_topic_name
from .waveform.frame import WaveformFrame, build_waveform_frame
from .waveform.render import RenderScheduler
from .waveform.store import ChannelSampleStore
from .ws_hub import WebSocketHub
from .ws_models import (
    AppendLogMessage,
    AppendSampleMessage,
    HelloMessage,
    ReadyMessage,
    RequestStateMessage,
    SetEchoActiveMessage,
    SetEchoMessage,
    SetStatusMessage,
    SetTopicsMessage,
    SetWaveformConfigMessage,
    SubscriptionStateMessage,
    TopicEntry,
    WaveformConfigPayload,
    WaveformMessage,
)

LOGGER = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(slots=True)
class RuntimeState:
    config: AppConfig
    waveform_config: WaveformConfig
    store: ChannelSampleStore
    supervisor: EchoSupervisor
    catalog: TopicCatalog
    ws_hub: WebSocketHub
    scheduler: RenderScheduler
    tasks: list[asyncio.Task] = field(default_factory=list)
    last_status: str = ""

    # -- panel output ---------------------------------------------------------

    def set_status(self, text: str) -> None:
        self.last_status = text
        self.ws_hub.publish(SetStatusMessage(text=text))

    def on_log(self, channel: str, stream: str, text: str) -> None:
        self.ws_hub.publish(AppendLogMessage(text=text, channel=channel, stream=stream))

    def on_sample(self, channel: str, sample: Sample) -> None:
        self.ws_hub.publish(AppendSampleMessage(topic=channel, t=sample.t, v=sample.v))
        self.scheduler.request_draw()

    def on_subscription_status(self, status: SubscriptionStatus) -> None:
        self.ws_hub.publish(SubscriptionStateMessage(status=status.to_dict()))
        if status.state == SubscriptionState.ERRORED and status.error:
            self.ws_hub.publish(
                AppendLogMessage(text=f"[error] {status.error}\n", channel=status.channel)
            )
            self.set_status(status.error)
        elif status.warning:
            self.set_status(status.warning)
        self.ws_hub.publish(self.echo_active_message())
        self.scheduler.request_draw()

    def echo_active_message(self) -> SetEchoActiveMessage:
        return SetEchoActiveMessage(topics=self.supervisor.active_channels())

    def topics_message(self) -> SetTopicsMessage:
        return SetTopicsMessage(
            topics=[TopicEntry(name=topic.name, type=topic.type) for topic in self.catalog.topics]
        )

    def waveform_config_message(self) -> SetWaveformConfigMessage:
        return SetWaveformConfigMessage(
            config=WaveformConfigPayload(**self.waveform_config.to_dict())
        )

    def build_frame(self) -> WaveformFrame:
        return build_waveform_frame(
            self.store.snapshot(),
            self.supervisor.active_channels(),
            self.waveform_config.field_path,
        )

    def draw(self) -> None:
        self.ws_hub.publish(WaveformMessage(frame=self.build_frame().to_dict()))

    def state_messages(self) -> list[BaseModel]:
        messages: list[BaseModel] = [
            self.topics_message(),
            self.echo_active_message(),
            self.waveform_config_message(),
        ]
        messages.extend(
            SubscriptionStateMessage(status=status.to_dict())
            for status in self.supervisor.statuses()
        )
        messages.append(WaveformMessage(frame=self.build_frame().to_dict()))
        return messages

    # -- operations -------------------------------------------------------------

    def apply_waveform_config(self, waveform_config: WaveformConfig) -> WaveformConfig:
        self.waveform_config = waveform_config
        self.store.set_capacity(waveform_config.max_points)
        self.scheduler.set_throttle_ms(waveform_config.throttle_ms)
        self.supervisor.field_path = waveform_config.field_path
        LOGGER.info("Applied waveform config %s", waveform_config.to_dict())
        self.ws_hub.publish(self.waveform_config_message())
        self.scheduler.request_draw()
        return waveform_config

    async def set_echo(self, topic: str, checked: bool) -> SubscriptionStatus | None:
        if checked:
            status = await self.supervisor.start(topic)
        else:
            status = await self.supervisor.stop(topic)
        self.ws_hub.publish(self.echo_active_message())
        self.scheduler.request_draw()
        return status

    async def forget_channel(self, topic: str) -> bool:
        forgotten = await self.supervisor.forget(topic)
        self.ws_hub.publish(self.echo_active_message())
        self.scheduler.request_draw()
        return forgotten

    async def refresh_topics(self) -> str | None:
        """Re-run topic discovery; returns the user-facing error, if any."""
        try:
            await self.catalog.refresh()
        except TopicDiscoveryError as exc:
            LOGGER.warning("Topic discovery failed: %s", exc)
            self.ws_hub.publish(AppendLogMessage(text=f"[error] {exc}\n"))
            self.set_status(str(exc))
            self.ws_hub.publish(self.topics_message())
            return str(exc)
        self.set_status(f"{len(self.catalog.topics)} topics")
        self.ws_hub.publish(self.topics_message())
        return None

    async def handle_panel_message(
        self,
        websocket: WebSocket,
        message: ReadyMessage | RequestStateMessage | SetEchoMessage,
    ) -> None:
        if isinstance(message, ReadyMessage):
            await self.ws_hub.mark_ready(websocket)
            if self.last_status:
                await self.ws_hub.send(websocket, SetStatusMessage(text=self.last_status))
            await self.ws_hub.send(websocket, HelloMessage(text=f"topicwave {__version__}"))
            await self._send_state(websocket)
        elif isinstance(message, RequestStateMessage):
            await self._send_state(websocket)
        elif isinstance(message, SetEchoMessage):
            topic = normalize_topic_name(message.topic)
            if not topic:
                LOGGER.debug("Ignoring setEcho with a blank topic")
                return
            await self.set_echo(topic, message.checked)

    async def _send_state(self, websocket: WebSocket) -> None:
        for message in self.state_messages():
            if not await self.ws_hub.send(websocket, message):
                return


def create_app(
    config_path: Path | None = None,
    *,
    process_host: ProcessHost | None = None,
    command_runner: CommandRunner | None = None,
) -> FastAPI:
    config = load_config(config_path)
    store = ChannelSampleStore(config.waveform.max_points)
    ws_hub = WebSocketHub()
    catalog = TopicCatalog(
        command_runner or CommandRunner(config.ros2.command, config.ros2.env),
        list_timeout_s=config.ros2.list_timeout_s,
        participants_enabled=config.ros2.participants.enabled,
        participants_max_topics=config.ros2.participants.max_topics,
        participants_timeout_s=config.ros2.participants.timeout_s,
    )
    supervisor = EchoSupervisor(
        process_host or ProcessHost(config.ros2.command, config.ros2.env),
        store,
        output_encoding=config.ros2.output_encoding,
        field_path=config.waveform.field_path,
        on_log=lambda channel, stream, text: runtime.on_log(channel, stream, text),
        on_sample=lambda channel, sample: runtime.on_sample(channel, sample),
        on_status=lambda status: runtime.on_subscription_status(status),
    )
    scheduler = RenderScheduler(lambda: runtime.draw(), config.waveform.throttle_ms)
    runtime = RuntimeState(
        config=config,
        waveform_config=config.waveform,
        store=store,
        supervisor=supervisor,
        catalog=catalog,
        ws_hub=ws_hub,
        scheduler=scheduler,
    )

    async def start_runtime() -> None:
        runtime.tasks = [
            asyncio.create_task(runtime.ws_hub.run(), name="panel-broadcast"),
            # Best-effort: a missing ros2 must not keep the server from starting.
            asyncio.create_task(runtime.refresh_topics(), name="topic-discovery"),
        ]

    async def stop_runtime() -> None:
        try:
            await runtime.supervisor.stop_all()
        except Exception:
            LOGGER.warning("Error stopping echo subscriptions", exc_info=True)
        runtime.scheduler.close()
        for task in runtime.tasks:
            task.cancel()
        await asyncio.gather(*runtime.tasks, return_exceptions=True)
        runtime.tasks.clear()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await start_runtime()
        try:
            yield
        finally:
            await stop_runtime()

    app = FastAPI(title="topicwave", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(create_router(runtime))
    return app


app: FastAPI | None = (
    create_app()
    if __name__ != "__main__" and os.getenv("TOPICWAVE_DISABLE_AUTO_APP", "0") != "1"
    else None
)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run topicwave server")
    parser.add_argument("--config", type=Path, default=None, help="Path to config YAML")
    args = parser.parse_args()

    runtime_app = create_app(config_path=args.config)
    runtime: RuntimeState = runtime_app.state.runtime
    level = runtime.config.logging.level
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    uvicorn.run(
        runtime_app,
        host=runtime.config.server.host,
        port=runtime.config.server.port,
        log_level=level,
    )


if __name__ == "__main__":
    main()
