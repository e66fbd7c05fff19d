# pylint: disable=missing-module-docstring,missing-function-docstring
from __future__ import annotations

from typing import Any

import pytest
from websockets.asyncio.server import ServerConnection, serve

from adapters.asr.dashscope_streaming import (
    DashScopeTransport,
    TransportNotOpen,
    dashscope_transport_factory,
)


def _url(server: Any) -> str:
    port = server.sockets[0].getsockname()[1]
    return f"ws://127.0.0.1:{port}/api-ws/v1/inference/"


@pytest.mark.asyncio
async def test_open_sends_bearer_and_inspection_headers():
    seen: dict[str, str | None] = {}

    async def handler(conn: ServerConnection) -> None:
        seen["auth"] = conn.request.headers.get("Authorization")
        seen["inspection"] = conn.request.headers.get("X-DashScope-DataInspection")
        await conn.close()

    async with serve(handler, "127.0.0.1", 0) as server:
        transport = DashScopeTransport(api_key="sk-test", url=_url(server))
        await transport.open()
        assert transport.is_open
        frames = [f async for f in transport.receive()]
        await transport.close()

    assert seen == {"auth": "bearer sk-test", "inspection": "enable"}
    assert frames == []
    assert not transport.is_open


@pytest.mark.asyncio
async def test_frame_types_are_preserved_both_ways():
    async def echo(conn: ServerConnection) -> None:
        async for message in conn:
            await conn.send(message)

    async with serve(echo, "127.0.0.1", 0) as server:
        transport = DashScopeTransport(api_key="k", url=_url(server))
        await transport.open()
        await transport.send_text('{"header": {}}')
        await transport.send_bytes(b"\x00\x01")

        received: list[str | bytes] = []
        async for frame in transport.receive():
            received.append(frame)
            if len(received) == 2:
                break
        await transport.close()

    assert received == ['{"header": {}}', b"\x00\x01"]


@pytest.mark.asyncio
async def test_inspection_header_can_be_disabled():
    seen: dict[str, str | None] = {}

    async def handler(conn: ServerConnection) -> None:
        seen["inspection"] = conn.request.headers.get("X-DashScope-DataInspection")
        await conn.close()

    async with serve(handler, "127.0.0.1", 0) as server:
        transport = DashScopeTransport(api_key="k", url=_url(server), data_inspection=False)
        await transport.open()
        await transport.close()

    assert seen == {"inspection": None}


@pytest.mark.asyncio
async def test_send_before_open_raises():
    transport = DashScopeTransport(api_key="k")

    with pytest.raises(TransportNotOpen):
        await transport.send_text("x")
    assert not transport.is_open


@pytest.mark.asyncio
async def test_closed_transport_cannot_be_reopened():
    transport = DashScopeTransport(api_key="k")

    await transport.close()
    await transport.close()

    with pytest.raises(TransportNotOpen):
        await transport.open()


def test_factory_builds_a_fresh_transport_each_call():
    factory = dashscope_transport_factory(api_key="k", url="ws://localhost:1/")

    first, second = factory(), factory()

    assert isinstance(first, DashScopeTransport)
    assert first is not second
