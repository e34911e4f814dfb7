from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field

from fastapi import WebSocket
from pydantic import BaseModel

LOGGER = logging.getLogger(__name__)


_SEND_TIMEOUT_S: float = 0.5
"""Per-connection send timeout; connections exceeding this are dropped."""

_LOG_INTERVAL_S: float = 10.0
"""Minimum interval between repeated warnings to avoid log spam."""

_PENDING_LIMIT: int = 2000
"""Messages kept for a connection that has not reported ``ready`` yet."""


@dataclass(slots=True)
class WSConnection:
    websocket: WebSocket
    ready: bool = False
    pending: deque[str] = field(default_factory=lambda: deque(maxlen=_PENDING_LIMIT))
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class WebSocketHub:
    """Fan out panel messages to every connected panel.

    Producers call :meth:`publish` synchronously; :meth:`run` drains the
    queue and sends.  Until a panel reports ``ready`` its messages are held
    back and flushed in order by :meth:`mark_ready`.
    """

    def __init__(self, queue_maxsize: int = 4096):
        self._connections: dict[int, WSConnection] = {}
        self._lock = asyncio.Lock()
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max(1, queue_maxsize))
        self._send_timeout_s = _SEND_TIMEOUT_S
        self._last_send_error_log_ts = 0.0
        self._last_drop_log_ts = 0.0
        self._suppressed_drop_warnings = 0
        self.dropped_messages = 0

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def add(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections[id(websocket)] = WSConnection(websocket=websocket)

    async def remove(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.pop(id(websocket), None)

    async def _snapshot(self) -> list[WSConnection]:
        async with self._lock:
            return list(self._connections.values())

    async def _get(self, websocket: WebSocket) -> WSConnection | None:
        async with self._lock:
            return self._connections.get(id(websocket))

    def publish(self, message: BaseModel) -> bool:
        text = message.model_dump_json()
        try:
            self._queue.put_nowait(text)
            return True
        except asyncio.QueueFull:
            self.dropped_messages += 1
            now = asyncio.get_running_loop().time()
            if (now - self._last_drop_log_ts) >= _LOG_INTERVAL_S:
                suppressed = self._suppressed_drop_warnings
                self._suppressed_drop_warnings = 0
                self._last_drop_log_ts = now
                LOGGER.warning(
                    "Panel message queue full; dropping message "
                    "(suppressed %d additional drop warnings)",
                    suppressed,
                )
            else:
                self._suppressed_drop_warnings += 1
            return False

    async def _send_text(self, conn: WSConnection, text: str) -> bool:
        try:
            await asyncio.wait_for(conn.websocket.send_text(text), timeout=self._send_timeout_s)
            return True
        except Exception:
            now = asyncio.get_running_loop().time()
            if (now - self._last_send_error_log_ts) >= _LOG_INTERVAL_S:
                self._last_send_error_log_ts = now
                LOGGER.warning(
                    "WebSocket send failed; connection will be removed.",
                    exc_info=True,
                )
            return False

    async def broadcast(self, text: str) -> None:
        conns = await self._snapshot()
        if not conns:
            return

        async def _deliver(conn: WSConnection) -> WebSocket | None:
            async with conn.send_lock:
                if not conn.ready:
                    conn.pending.append(text)
                    return None
                ok = await self._send_text(conn, text)
            return None if ok else conn.websocket

        dead_ws = await asyncio.gather(*(_deliver(conn) for conn in conns))
        for ws in dead_ws:
            if ws is not None:
                await self.remove(ws)

    async def send(self, websocket: WebSocket, message: BaseModel) -> bool:
        """Send *message* to one connection, bypassing the ready gate."""
        conn = await self._get(websocket)
        if conn is None:
            return False
        async with conn.send_lock:
            ok = await self._send_text(conn, message.model_dump_json())
        if not ok:
            await self.remove(websocket)
        return ok

    async def mark_ready(self, websocket: WebSocket) -> int:
        """Open the ready gate and flush held-back messages; returns the count."""
        conn = await self._get(websocket)
        if conn is None:
            return 0
        async with conn.send_lock:
            conn.ready = True
            flushed = 0
            while conn.pending:
                if not await self._send_text(conn, conn.pending.popleft()):
                    break
                flushed += 1
            else:
                return flushed
        await self.remove(websocket)
        return flushed

    async def run(self) -> None:
        while True:
            text = await self._queue.get()
            try:
                await self.broadcast(text)
            except Exception:
                LOGGER.warning("Panel broadcast failed; will continue.", exc_info=True)
