"""Lifecycle of one ``ros2 topic echo`` subprocess per active channel.

Each subscription owns its own decoders (stdout and stderr), record parser
and reader tasks.  Stopping escalates from SIGINT to SIGKILL with bounded
waits; when the process still cannot be confirmed gone the subscription
stays in ``stopping`` with a warning rather than pretending it stopped.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .constants import ENCODING_AUTO, INTERRUPT_TIMEOUT_S, KILL_TIMEOUT_S, ROS2_NOT_FOUND_HINT
from .echo.decoder import StreamDecoder
from .echo.extractor import Sample, extract_sample
from .echo.parser import Record, RecordParser
from .ros2_cli import ProcessHost, describe_failure, signal_name
from .waveform.store import ChannelSampleStore

LOGGER = logging.getLogger(__name__)

_READ_CHUNK_BYTES = 4096
_DRAIN_TIMEOUT_S = 1.0
_STDERR_TAIL_CHARS = 2000

STREAM_STDOUT = "stdout"
STREAM_STDERR = "stderr"


class SubscriptionState(enum.StrEnum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERRORED = "errored"


TERMINAL_STATES = frozenset({SubscriptionState.STOPPED, SubscriptionState.ERRORED})
ACTIVE_STATES = frozenset({SubscriptionState.STARTING, SubscriptionState.RUNNING})


@dataclass(slots=True)
class SubscriptionStatus:
    channel: str
    state: SubscriptionState = SubscriptionState.STARTING
    pid: int | None = None
    started_at: float | None = None
    finished_at: float | None = None
    exit_code: int | None = None
    signal: str | None = None
    error: str | None = None
    warning: str | None = None
    samples: int = 0
    records: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "state": self.state.value,
            "pid": self.pid,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "exit_code": self.exit_code,
            "signal": self.signal,
            "error": self.error,
            "warning": self.warning,
            "samples": self.samples,
            "records": self.records,
        }


@dataclass(slots=True)
class Subscription:
    channel: str
    status: SubscriptionStatus
    stdout_decoder: StreamDecoder
    stderr_decoder: StreamDecoder
    parser: RecordParser = field(default_factory=RecordParser)
    process: Any = None
    pumps: list[asyncio.Task] = field(default_factory=list)
    watcher: asyncio.Task | None = None
    exited: asyncio.Event = field(default_factory=asyncio.Event)
    stop_requested: bool = False
    stderr_tail: str = ""

    def release(self) -> None:
        self.parser.reset()
        self.stdout_decoder = StreamDecoder(self.stdout_decoder.mode)
        self.stderr_decoder = StreamDecoder(self.stderr_decoder.mode)


LogCallback = Callable[[str, str, str], None]
SampleCallback = Callable[[str, Sample], None]
StatusCallback = Callable[[SubscriptionStatus], None]


def _noop(*_args: Any) -> None:
    return None


class EchoSupervisor:
    def __init__(
        self,
        host: ProcessHost,
        store: ChannelSampleStore,
        *,
        output_encoding: str = ENCODING_AUTO,
        field_path: str = "",
        on_log: LogCallback | None = None,
        on_sample: SampleCallback | None = None,
        on_status: StatusCallback | None = None,
        interrupt_timeout_s: float = INTERRUPT_TIMEOUT_S,
        kill_timeout_s: float = KILL_TIMEOUT_S,
        clock: Callable[[], float] = time.time,
    ):
        self._host = host
        self._store = store
        self.output_encoding = output_encoding
        self.field_path = field_path
        self._on_log = on_log or _noop
        self._on_sample = on_sample or _noop
        self._on_status = on_status or _noop
        self._interrupt_timeout_s = interrupt_timeout_s
        self._kill_timeout_s = kill_timeout_s
        self._clock = clock
        self._subs: dict[str, Subscription] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # -- queries -------------------------------------------------------------

    def status(self, channel: str) -> SubscriptionStatus | None:
        sub = self._subs.get(channel)
        return sub.status if sub is not None else None

    def statuses(self) -> list[SubscriptionStatus]:
        return [sub.status for sub in self._subs.values()]

    def active_channels(self) -> list[str]:
        return [
            channel for channel, sub in self._subs.items() if sub.status.state in ACTIVE_STATES
        ]

    def is_active(self, channel: str) -> bool:
        sub = self._subs.get(channel)
        return sub is not None and sub.status.state in ACTIVE_STATES

    # -- lifecycle -----------------------------------------------------------

    def _lock_for(self, channel: str) -> asyncio.Lock:
        lock = self._locks.get(channel)
        if lock is None:
            lock = self._locks[channel] = asyncio.Lock()
        return lock

    def _set_state(self, sub: Subscription, state: SubscriptionState) -> None:
        sub.status.state = state
        if state in TERMINAL_STATES:
            sub.status.finished_at = self._clock()
        try:
            self._on_status(sub.status)
        except Exception:
            LOGGER.warning(
                "Subscription status callback failed for %s", sub.channel, exc_info=True
            )

    async def start(self, channel: str) -> SubscriptionStatus:
        """Start echoing *channel*; a no-op when it is already live."""
        async with self._lock_for(channel):
            existing = self._subs.get(channel)
            if existing is not None and existing.status.state not in TERMINAL_STATES:
                return existing.status

            sub = Subscription(
                channel=channel,
                status=SubscriptionStatus(channel=channel, started_at=self._clock()),
                stdout_decoder=StreamDecoder(self.output_encoding),
                stderr_decoder=StreamDecoder(self.output_encoding),
            )
            self._subs[channel] = sub
            self._set_state(sub, SubscriptionState.STARTING)
            try:
                process = await self._host.spawn(channel)
            except FileNotFoundError:
                LOGGER.error("Cannot echo %s: ros2 executable not found", channel)
                sub.status.error = ROS2_NOT_FOUND_HINT
                self._set_state(sub, SubscriptionState.ERRORED)
                return sub.status
            except OSError as exc:
                LOGGER.error("Cannot echo %s: %s", channel, exc)
                sub.status.error = f"Failed to start ros2 topic echo {channel}: {exc}"
                self._set_state(sub, SubscriptionState.ERRORED)
                return sub.status

            sub.process = process
            sub.status.pid = getattr(process, "pid", None)
            LOGGER.info("Echo for %s running (pid=%s)", channel, sub.status.pid)
            self._set_state(sub, SubscriptionState.RUNNING)
            sub.pumps = [
                asyncio.create_task(self._pump(sub, process.stdout, STREAM_STDOUT)),
                asyncio.create_task(self._pump(sub, process.stderr, STREAM_STDERR)),
            ]
            sub.watcher = asyncio.create_task(self._watch_exit(sub))
            return sub.status

    async def stop(self, channel: str) -> SubscriptionStatus | None:
        """Stop *channel*: SIGINT, then SIGKILL, each with a bounded wait."""
        async with self._lock_for(channel):
            sub = self._subs.get(channel)
            if sub is None or sub.status.state in TERMINAL_STATES:
                return sub.status if sub is not None else None
            sub.stop_requested = True
            sub.status.warning = None
            self._set_state(sub, SubscriptionState.STOPPING)

            if await self._signal_and_wait(sub, kill=False, timeout_s=self._interrupt_timeout_s):
                await self._await_watcher(sub)
                return sub.status
            LOGGER.warning(
                "Echo for %s did not exit %.1fs after SIGINT; sending SIGKILL",
                channel,
                self._interrupt_timeout_s,
            )
            if await self._signal_and_wait(sub, kill=True, timeout_s=self._kill_timeout_s):
                await self._await_watcher(sub)
                return sub.status

            sub.status.warning = (
                f"Could not confirm that ros2 topic echo {channel} "
                f"(pid {sub.status.pid}) has stopped"
            )
            LOGGER.warning("%s", sub.status.warning)
            self._set_state(sub, SubscriptionState.STOPPING)
            return sub.status

    async def stop_all(self) -> None:
        live = [c for c, sub in self._subs.items() if sub.status.state not in TERMINAL_STATES]
        if live:
            await asyncio.gather(*(self.stop(c) for c in live), return_exceptions=True)

    async def forget(self, channel: str) -> bool:
        """Stop *channel* if needed and drop its sample history."""
        status = await self.stop(channel)
        if status is not None and status.state in TERMINAL_STATES:
            self._subs.pop(channel, None)
        return self._store.forget(channel) or status is not None

    # -- internals -----------------------------------------------------------

    async def _signal_and_wait(self, sub: Subscription, *, kill: bool, timeout_s: float) -> bool:
        if sub.exited.is_set():
            return True
        action = "SIGKILL" if kill else "SIGINT"
        try:
            if kill:
                sub.process.kill()
            else:
                sub.process.send_signal(signal.SIGINT)
        except ProcessLookupError:
            pass  # exited between checks; the watcher will notice
        except (OSError, ValueError):
            LOGGER.warning("Sending %s to echo %s failed", action, sub.channel, exc_info=True)
            return sub.exited.is_set()
        try:
            await asyncio.wait_for(sub.exited.wait(), timeout=timeout_s)
        except TimeoutError:
            return False
        return True

    async def _await_watcher(self, sub: Subscription) -> None:
        if sub.watcher is not None:
            await asyncio.gather(sub.watcher, return_exceptions=True)

    async def _pump(self, sub: Subscription, reader: asyncio.StreamReader, stream: str) -> None:
        decoder = sub.stdout_decoder if stream == STREAM_STDOUT else sub.stderr_decoder
        try:
            while True:
                chunk = await reader.read(_READ_CHUNK_BYTES)
                if not chunk:
                    break
                self._handle_text(sub, stream, decoder.write(chunk).text)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.warning("Reading %s of echo %s failed", stream, sub.channel, exc_info=True)
        self._handle_text(sub, stream, decoder.end().text)
        if stream == STREAM_STDOUT:
            self._handle_records(sub, sub.parser.flush())

    def _handle_text(self, sub: Subscription, stream: str, text: str) -> None:
        if not text:
            return
        self._on_log(sub.channel, stream, text)
        if stream == STREAM_STDERR:
            sub.stderr_tail = (sub.stderr_tail + text)[-_STDERR_TAIL_CHARS:]
            return
        self._handle_records(sub, sub.parser.feed(text))

    def _handle_records(self, sub: Subscription, records: list[Record]) -> None:
        for record in records:
            sub.status.records += 1
            try:
                sample = extract_sample(record, self.field_path, self._clock())
                if sample is None or not self._store.append(sub.channel, sample):
                    continue
                sub.status.samples += 1
                self._on_sample(sub.channel, sample)
            except Exception:
                LOGGER.warning("Skipping record from echo %s", sub.channel, exc_info=True)

    async def _watch_exit(self, sub: Subscription) -> None:
        returncode = await sub.process.wait()
        sub.status.exit_code = returncode
        sub.status.signal = signal_name(returncode)
        sub.exited.set()
        if sub.pumps:
            _done, pending = await asyncio.wait(sub.pumps, timeout=_DRAIN_TIMEOUT_S)
            for task in pending:
                task.cancel()
        sub.release()
        if sub.stop_requested:
            LOGGER.info("Echo for %s stopped (code=%s)", sub.channel, returncode)
            self._set_state(sub, SubscriptionState.STOPPED)
        else:
            sub.status.error = describe_failure(
                returncode, sub.stderr_tail, f"ros2 topic echo {sub.channel}"
            )
            LOGGER.warning("Echo for %s exited unexpectedly: %s", sub.channel, sub.status.error)
            self._set_state(sub, SubscriptionState.ERRORED)
