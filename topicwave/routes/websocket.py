"""Panel WebSocket endpoint."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..ws_models import parse_incoming

if TYPE_CHECKING:
    from ..app import RuntimeState

LOGGER = logging.getLogger(__name__)


def create_websocket_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.websocket("/ws")
    async def ws_endpoint(ws: WebSocket) -> None:
        await ws.accept()
        await state.ws_hub.add(ws)
        try:
            while True:
                raw = await ws.receive_text()
                try:
                    payload = json.loads(raw)
                except json.JSONDecodeError:
                    LOGGER.debug("Ignoring malformed WS message (not valid JSON)")
                    continue
                message = parse_incoming(payload)
                if message is None:
                    LOGGER.debug("Ignoring unrecognised WS message %r", payload)
                    continue
                try:
                    await state.handle_panel_message(ws, message)
                except Exception:
                    LOGGER.warning("Error processing WS message %s", message.type, exc_info=True)
        except WebSocketDisconnect:
            LOGGER.debug("WebSocket client disconnected")
        except Exception:
            LOGGER.warning("WebSocket handler error", exc_info=True)
        finally:
            await state.ws_hub.remove(ws)

    return router
