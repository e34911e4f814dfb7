"""Thin asyncio wrappers around the ``ros2`` command line."""

from __future__ import annotations

import asyncio
import logging
import os
import signal

from .constants import ROS2_NOT_FOUND_HINT

LOGGER = logging.getLogger(__name__)

COMMAND_NOT_FOUND_EXIT_CODE = 127
COMMAND_TIMEOUT_EXIT_CODE = 124


def is_command_not_found(returncode: int | None, stderr: str) -> bool:
    if returncode == COMMAND_NOT_FOUND_EXIT_CODE:
        return True
    lowered = (stderr or "").lower()
    return "not found" in lowered or "is not recognized" in lowered


def signal_name(returncode: int | None) -> str | None:
    """Return ``SIGTERM`` style names for negative asyncio return codes."""
    if returncode is None or returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"signal {-returncode}"


class CommandRunner:
    """Run short ``ros2`` commands to completion.  Override for testing."""

    def __init__(self, command: list[str] | None = None, env: dict[str, str] | None = None):
        self.command = list(command or ["ros2"])
        self.env = dict(env or {})

    async def run(self, args: list[str], *, timeout: float = 5.0) -> tuple[int, str, str]:
        """Return (returncode, stdout, stderr)."""
        argv = [*self.command, *args]
        proc: asyncio.subprocess.Process | None = None
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self.env},
            )
            stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            return (
                proc.returncode or 0,
                stdout_bytes.decode(errors="replace"),
                stderr_bytes.decode(errors="replace"),
            )
        except TimeoutError:
            if proc is not None:
                try:
                    proc.kill()
                    await proc.wait()
                except ProcessLookupError:
                    pass  # process already exited
            LOGGER.warning("Command timed out after %.1fs: %s", timeout, " ".join(argv))
            return (COMMAND_TIMEOUT_EXIT_CODE, "", "Command timed out")
        except FileNotFoundError:
            return (COMMAND_NOT_FOUND_EXIT_CODE, "", f"Command not found: {argv[0]}")
        except OSError as exc:
            LOGGER.warning("Command failed to start: %s: %s", " ".join(argv), exc)
            return (1, "", str(exc))


class ProcessHost:
    """Spawn long-running ``ros2 topic echo`` processes.  Override for testing.

    The returned handle must offer what :class:`asyncio.subprocess.Process`
    does: ``pid``, ``stdout``/``stderr`` stream readers, ``returncode``,
    ``wait()``, ``send_signal()`` and ``kill()``.
    """

    def __init__(self, command: list[str] | None = None, env: dict[str, str] | None = None):
        self.command = list(command or ["ros2"])
        self.env = dict(env or {})

    def echo_args(self, channel: str) -> list[str]:
        return [*self.command, "topic", "echo", channel]

    async def spawn(self, channel: str) -> asyncio.subprocess.Process:
        """Start the echo process; raises ``FileNotFoundError``/``OSError``."""
        argv = self.echo_args(channel)
        LOGGER.info("Starting %s", " ".join(argv))
        return await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env={**os.environ, **self.env},
        )


def describe_failure(returncode: int | None, stderr: str, what: str) -> str:
    """Human-actionable message for a failed ``ros2`` invocation."""
    if is_command_not_found(returncode, stderr):
        return ROS2_NOT_FOUND_HINT
    sig = signal_name(returncode)
    if sig is not None:
        return f"{what} was terminated by {sig}"
    detail = (stderr or "").strip().splitlines()
    suffix = f": {detail[-1]}" if detail else ""
    return f"{what} exited with code {returncode}{suffix}"
