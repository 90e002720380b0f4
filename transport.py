import json
from typing import Protocol

from fastapi import WebSocket
from fastapi.websockets import WebSocketState


class Transport(Protocol):
    """What the relay needs from a peer channel; the channel's lifetime is owned by the caller."""

    @property
    def is_open(self) -> bool: ...

    async def send_json(self, data: dict) -> None: ...

    async def probe(self) -> bool: ...

    async def close(self, code: int, reason: str = "") -> None: ...


class WebSocketTransport:
    """Transport over a FastAPI WebSocket.

    Protocol ping/pong is run by the server itself (uvicorn's
    ``ws_ping_interval``/``ws_ping_timeout``, see ``entrypoint.py``), which
    closes the socket when a pong is missed. A probe therefore sends nothing
    on the wire: the channel still being open is the acknowledgement.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_json(self, data: dict) -> None:
        await self.websocket.send_text(json.dumps(data))

    async def probe(self) -> bool:
        return self.is_open

    async def close(self, code: int, reason: str = "") -> None:
        await self.websocket.close(code=code, reason=reason)
