"""
DashScope duplex WebSocket transport.

Core model:
- One WebSocket per recognition attempt. The session runtime opens a
  new transport for every (re)connect and closes the old one.
- Control messages (run-task / finish-task and the server events) are
  JSON text frames; audio is raw PCM in binary frames.
- Authentication is a bearer token in the upgrade request headers.

The transport knows nothing about tasks or session state; it only moves
frames.
"""

from __future__ import annotations

from typing import AsyncIterator

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed

from adapters.asr.base import CloudTransport, TransportFactory
from constants import DASHSCOPE_WS_URL


# DashScope pushes sentence results well under this; audio frames we send
# are small, so this only bounds inbound control frames.
_MAX_FRAME_BYTES = 2**22


class TransportNotOpen(RuntimeError):
    """Raised when sending on a transport that is not connected."""


class DashScopeTransport(CloudTransport):
    """
    WebSocket connection to the DashScope inference endpoint.

    Usage:
        transport = DashScopeTransport(api_key=key)
        await transport.open()
        await transport.send_text(encode_run_task(task_id, params))
        async for frame in transport.receive():
            ...
    """

    def __init__(
        self,
        *,
        api_key: str,
        url: str = DASHSCOPE_WS_URL,
        data_inspection: bool = True,
        open_timeout_s: float | None = 10.0,
    ) -> None:
        self._api_key = api_key
        self._url = url
        self._data_inspection = data_inspection
        self._open_timeout_s = open_timeout_s

        self._ws: ClientConnection | None = None
        self._closed = False

    def _headers(self) -> dict[str, str]:
        headers = {"Authorization": f"bearer {self._api_key}"}
        if self._data_inspection:
            headers["X-DashScope-DataInspection"] = "enable"
        return headers

    # -------------------------------------------------------------------------
    # CloudTransport
    # -------------------------------------------------------------------------

    async def open(self) -> None:
        if self._ws is not None:
            return
        if self._closed:
            raise TransportNotOpen("transport already closed")

        self._ws = await ws_connect(
            self._url,
            additional_headers=self._headers(),
            max_size=_MAX_FRAME_BYTES,
            open_timeout=self._open_timeout_s,
            # DashScope keeps the task alive with its own heartbeat flag.
            ping_interval=None,
        )

    async def send_text(self, text: str) -> None:
        await self._require_ws().send(text)

    async def send_bytes(self, data: bytes) -> None:
        await self._require_ws().send(data)

    async def receive(self) -> AsyncIterator[str | bytes]:
        ws = self._require_ws()
        try:
            async for frame in ws:
                yield frame
        except ConnectionClosed:
            # Abnormal closes end the stream like normal ones; the caller
            # only needs to know the transport is gone.
            return

    async def close(self) -> None:
        self._closed = True
        ws = self._ws
        if ws is None:
            return
        await ws.close()

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    def _require_ws(self) -> ClientConnection:
        if self._ws is None or self._closed:
            raise TransportNotOpen("transport is not open")
        return self._ws


def dashscope_transport_factory(
    *,
    api_key: str,
    url: str = DASHSCOPE_WS_URL,
) -> TransportFactory:
    """Factory handed to each session; builds one transport per attempt."""

    def _factory() -> CloudTransport:
        return DashScopeTransport(api_key=api_key, url=url)

    return _factory
