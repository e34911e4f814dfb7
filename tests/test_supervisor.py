from __future__ import annotations

import signal
import time

import pytest
from conftest import async_wait_until
from fakes import FakeHost

from topicwave.constants import ROS2_NOT_FOUND_HINT
from topicwave.supervisor import EchoSupervisor, SubscriptionState
from topicwave.waveform.store import ChannelSampleStore


def _make(host: FakeHost, **kwargs) -> tuple[EchoSupervisor, ChannelSampleStore, dict]:
    store = ChannelSampleStore(capacity=100)
    seen: dict = {"logs": [], "samples": [], "states": []}
    supervisor = EchoSupervisor(
        host,
        store,
        output_encoding="utf8",
        on_log=lambda channel, stream, text: seen["logs"].append((channel, stream, text)),
        on_sample=lambda channel, sample: seen["samples"].append((channel, sample)),
        on_status=lambda status: seen["states"].append((status.channel, status.state)),
        clock=lambda: 1000.0,
        **kwargs,
    )
    return supervisor, store, seen


@pytest.mark.asyncio
async def test_start_streams_samples_into_store() -> None:
    host = FakeHost()
    supervisor, store, seen = _make(host)

    status = await supervisor.start("/chatter")
    assert status.state == SubscriptionState.RUNNING
    assert status.pid == 1001

    proc = host.processes["/chatter"]
    proc.emit(b"data: 1.5\n---\nda")
    proc.emit(b"ta: 2\n---\n")
    assert await async_wait_until(lambda: len(store.get("/chatter")) == 2)

    assert [s.v for s in store.get("/chatter")] == [1.5, 2.0]
    assert [s.t for s in store.get("/chatter")] == [1000.0, 1000.0]
    assert [ch for ch, _ in seen["samples"]] == ["/chatter", "/chatter"]
    assert "".join(text for _, stream, text in seen["logs"] if stream == "stdout").startswith(
        "data: 1.5"
    )
    assert supervisor.active_channels() == ["/chatter"]
    assert status.samples == 2
    assert status.records == 2
    await supervisor.stop_all()


@pytest.mark.asyncio
async def test_start_twice_is_a_no_op() -> None:
    host = FakeHost()
    supervisor, _store, _seen = _make(host)
    first = await supervisor.start("/chatter")
    second = await supervisor.start("/chatter")
    assert first is second
    assert host.spawned == ["/chatter"]
    await supervisor.stop_all()


@pytest.mark.asyncio
async def test_stop_with_sigint() -> None:
    host = FakeHost()
    supervisor, store, seen = _make(host)
    await supervisor.start("/chatter")
    proc = host.processes["/chatter"]
    proc.emit(b"data: 4\n---\n")
    assert await async_wait_until(lambda: len(store.get("/chatter")) == 1)

    status = await supervisor.stop("/chatter")

    assert status.state == SubscriptionState.STOPPED
    assert proc.signals == [signal.SIGINT]
    assert status.signal == "SIGINT"
    assert status.error is None
    assert supervisor.active_channels() == []
    # the last waveform stays available after the subscription ends
    assert [s.v for s in store.get("/chatter")] == [4.0]
    assert [state for _, state in seen["states"]] == [
        SubscriptionState.STARTING,
        SubscriptionState.RUNNING,
        SubscriptionState.STOPPING,
        SubscriptionState.STOPPED,
    ]


@pytest.mark.asyncio
async def test_stop_escalates_to_kill() -> None:
    host = FakeHost(ignore_sigint=True)
    supervisor, _store, _seen = _make(host, interrupt_timeout_s=0.05, kill_timeout_s=0.5)
    await supervisor.start("/chatter")

    status = await supervisor.stop("/chatter")

    proc = host.processes["/chatter"]
    assert proc.signals == [signal.SIGINT, signal.SIGKILL]
    assert status.state == SubscriptionState.STOPPED
    assert status.signal == "SIGKILL"


@pytest.mark.asyncio
async def test_stop_escalation_uses_default_timeouts() -> None:
    host = FakeHost(ignore_sigint=True)
    supervisor, _store, _seen = _make(host)
    await supervisor.start("/chatter")

    started = time.monotonic()
    status = await supervisor.stop("/chatter")
    elapsed = time.monotonic() - started

    assert status.state == SubscriptionState.STOPPED
    assert 1.4 <= elapsed < 2.6


@pytest.mark.asyncio
async def test_unkillable_process_stays_stopping_with_warning() -> None:
    host = FakeHost(ignore_sigint=True, ignore_kill=True)
    supervisor, _store, _seen = _make(host, interrupt_timeout_s=0.02, kill_timeout_s=0.02)
    await supervisor.start("/chatter")

    status = await supervisor.stop("/chatter")

    assert status.state == SubscriptionState.STOPPING
    assert "Could not confirm" in status.warning
    # still non-terminal, so a new start does not spawn a second process
    await supervisor.start("/chatter")
    assert host.spawned == ["/chatter"]

    # the process finally going away is still observed
    host.processes["/chatter"].exit(-9)
    assert await async_wait_until(
        lambda: supervisor.status("/chatter").state == SubscriptionState.STOPPED
    )


@pytest.mark.asyncio
async def test_spawn_failure_reports_hint() -> None:
    host = FakeHost(error=FileNotFoundError("ros2"))
    supervisor, _store, seen = _make(host)

    status = await supervisor.start("/chatter")

    assert status.state == SubscriptionState.ERRORED
    assert status.error == ROS2_NOT_FOUND_HINT
    assert seen["states"][-1] == ("/chatter", SubscriptionState.ERRORED)
    assert supervisor.active_channels() == []


@pytest.mark.asyncio
async def test_unexpected_exit_is_an_error() -> None:
    host = FakeHost()
    supervisor, _store, _seen = _make(host)
    await supervisor.start("/chatter")
    proc = host.processes["/chatter"]
    proc.emit_stderr(b"Traceback...\nRuntimeError: rclpy not initialised\n")
    proc.exit(1)

    assert await async_wait_until(
        lambda: supervisor.status("/chatter").state == SubscriptionState.ERRORED
    )
    status = supervisor.status("/chatter")
    assert status.exit_code == 1
    assert status.error.endswith("RuntimeError: rclpy not initialised")


@pytest.mark.asyncio
async def test_exit_127_reports_not_found_hint() -> None:
    host = FakeHost()
    supervisor, _store, _seen = _make(host)
    await supervisor.start("/chatter")
    host.processes["/chatter"].exit(127)
    assert await async_wait_until(
        lambda: supervisor.status("/chatter").state == SubscriptionState.ERRORED
    )
    assert supervisor.status("/chatter").error == ROS2_NOT_FOUND_HINT


@pytest.mark.asyncio
async def test_restart_after_stop_spawns_fresh_process() -> None:
    host = FakeHost()
    supervisor, store, _seen = _make(host)
    await supervisor.start("/chatter")
    host.processes["/chatter"].emit(b"data: 1\n---\ndata: 99\n")
    assert await async_wait_until(lambda: len(store.get("/chatter")) == 1)
    await supervisor.stop("/chatter")

    status = await supervisor.start("/chatter")
    assert status.state == SubscriptionState.RUNNING
    assert host.spawned == ["/chatter", "/chatter"]
    # the partial record from the first process was discarded
    host.processes["/chatter"].emit(b"---\n")
    assert await async_wait_until(lambda: status.records == 1)
    assert [s.v for s in store.get("/chatter")] == [1.0]
    await supervisor.stop_all()


@pytest.mark.asyncio
async def test_field_path_change_applies_to_running_subscription() -> None:
    host = FakeHost()
    supervisor, store, _seen = _make(host)
    await supervisor.start("/cmd_vel")
    proc = host.processes["/cmd_vel"]
    supervisor.field_path = "linear.x"
    proc.emit(b"linear:\n  x: 0.5\nangular:\n  z: 2.0\n---\n")
    assert await async_wait_until(lambda: len(store.get("/cmd_vel")) == 1)
    assert store.get("/cmd_vel")[0].v == 0.5
    await supervisor.stop_all()


@pytest.mark.asyncio
async def test_forget_stops_and_drops_history() -> None:
    host = FakeHost()
    supervisor, store, _seen = _make(host)
    await supervisor.start("/chatter")
    host.processes["/chatter"].emit(b"data: 1\n---\n")
    assert await async_wait_until(lambda: len(store.get("/chatter")) == 1)

    assert await supervisor.forget("/chatter") is True

    assert store.get("/chatter") == []
    assert supervisor.status("/chatter") is None
    assert await supervisor.forget("/unknown") is False


@pytest.mark.asyncio
async def test_stop_all_stops_every_channel() -> None:
    host = FakeHost()
    supervisor, _store, _seen = _make(host)
    await supervisor.start("/a")
    await supervisor.start("/b")
    await supervisor.stop_all()
    assert {s.state for s in supervisor.statuses()} == {SubscriptionState.STOPPED}


@pytest.mark.asyncio
async def test_record_closed_at_end_of_stream_is_sampled() -> None:
    host = FakeHost()
    supervisor, store, _seen = _make(host)
    await supervisor.start("/chatter")
    proc = host.processes["/chatter"]
    proc.emit(b"data: 4\n---")
    proc.exit(0)

    assert await async_wait_until(
        lambda: supervisor.status("/chatter").state == SubscriptionState.ERRORED
    )
    assert [s.v for s in store.get("/chatter")] == [4.0]


@pytest.mark.asyncio
async def test_bad_record_does_not_stop_the_channel() -> None:
    host = FakeHost()
    supervisor, store, _seen = _make(host)
    await supervisor.start("/chatter")
    proc = host.processes["/chatter"]
    huge_sec = "9" * 400
    proc.emit(f"stamp:\n  sec: {huge_sec}\n  nanosec: 0\ndata: 1\n---\n".encode())
    proc.emit(b"data: 2\n---\n")

    assert await async_wait_until(lambda: len(store.get("/chatter")) == 2)
    assert [s.v for s in store.get("/chatter")] == [1.0, 2.0]
    assert [s.t for s in store.get("/chatter")] == [1000.0, 1000.0]
    assert supervisor.status("/chatter").state == SubscriptionState.RUNNING
    await supervisor.stop_all()


@pytest.mark.asyncio
async def test_failing_sample_callback_costs_one_sample() -> None:
    host = FakeHost()
    store = ChannelSampleStore(capacity=100)
    seen: list[float] = []

    def _on_sample(_channel, sample) -> None:
        if sample.v == 1.0:
            raise RuntimeError("panel went away")
        seen.append(sample.v)

    supervisor = EchoSupervisor(host, store, output_encoding="utf8", on_sample=_on_sample)
    await supervisor.start("/chatter")
    host.processes["/chatter"].emit(b"data: 1\n---\ndata: 2\n---\n")

    assert await async_wait_until(lambda: seen == [2.0])
    await supervisor.stop_all()


@pytest.mark.asyncio
async def test_failed_interrupt_escalates_to_kill() -> None:
    host = FakeHost(signal_error=PermissionError("operation not permitted"))
    supervisor, _store, _seen = _make(host, interrupt_timeout_s=0.05, kill_timeout_s=0.5)
    await supervisor.start("/chatter")

    status = await supervisor.stop("/chatter")

    assert host.processes["/chatter"].signals == [signal.SIGKILL]
    assert status.state == SubscriptionState.STOPPED
    assert status.signal == "SIGKILL"


@pytest.mark.asyncio
async def test_failed_interrupt_and_kill_leaves_warning() -> None:
    host = FakeHost(signal_error=ValueError("unsupported signal"), ignore_kill=True)
    supervisor, _store, _seen = _make(host, interrupt_timeout_s=0.02, kill_timeout_s=0.02)
    await supervisor.start("/chatter")

    status = await supervisor.stop("/chatter")

    assert status.state == SubscriptionState.STOPPING
    assert "Could not confirm" in status.warning
    host.processes["/chatter"].exit(-9)
    assert await async_wait_until(
        lambda: supervisor.status("/chatter").state == SubscriptionState.STOPPED
    )
