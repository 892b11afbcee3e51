"""WebSocket transport for outbound events."""

import json
from typing import Any, Dict

import structlog
from fastapi import WebSocket
from starlette.websockets import WebSocketState

from ..core.errors import TransportError

logger = structlog.get_logger(__name__)


class WebSocketTransport:
    """Sends JSON events over a FastAPI WebSocket, raising TransportError on failure."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send(self, event: Dict[str, Any]) -> None:
        if not self.is_open:
            raise TransportError("WebSocket is not connected")
        try:
            await self.websocket.send_text(json.dumps(event))
        except Exception as e:
            # WebSocketDisconnect, ClientDisconnected, RuntimeError after close
            raise TransportError(f"WebSocket send failed: {e}") from e
