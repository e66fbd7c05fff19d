"""
Peer connection abstraction shared by hardware clients and observers.

The registry and the broadcast hub only need "is it ready" and "send a
frame"; keeping that behind a Protocol lets tests use in-memory fakes.
"""

from __future__ import annotations

from typing import Protocol

from fastapi.websockets import WebSocket, WebSocketState


class PeerConnection(Protocol):
    """A connected socket that can receive text and binary frames."""

    @property
    def is_ready(self) -> bool:
        ...

    async def send_text(self, text: str) -> None:
        ...

    async def send_bytes(self, data: bytes) -> None:
        ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        ...


class WebSocketPeer:
    """PeerConnection backed by a FastAPI/Starlette WebSocket."""

    def __init__(self, ws: WebSocket) -> None:
        self._ws = ws
        self._closed = False

    @property
    def is_ready(self) -> bool:
        return (
            not self._closed
            and self._ws.client_state is WebSocketState.CONNECTED
            and self._ws.application_state is WebSocketState.CONNECTED
        )

    async def send_text(self, text: str) -> None:
        await self._ws.send_text(text)

    async def send_bytes(self, data: bytes) -> None:
        await self._ws.send_bytes(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        if self._closed:
            return
        self._closed = True
        if self._ws.application_state is WebSocketState.CONNECTED:
            await self._ws.close(code=code, reason=reason)

    def mark_closed(self) -> None:
        """Record that the remote side went away."""
        self._closed = True
