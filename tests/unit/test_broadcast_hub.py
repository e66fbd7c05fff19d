# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio
import json

import pytest

from fakes import FakePeer, wait_until
from session.broadcast import BroadcastHub


CONFIG_EVENT = {"type": "config", "sampleRate": 16000, "channels": 1, "bitDepth": 16}


@pytest.mark.asyncio
async def test_subscribe_sends_config_event_first():
    hub = BroadcastHub()
    peer = FakePeer()

    hub.subscribe(peer)
    hub.publish_audio(b"\x01\x02")
    await hub.wait_idle()

    assert json.loads(peer.messages[0]) == CONFIG_EVENT
    assert peer.messages[1] == b"\x01\x02"

    await hub.close()


@pytest.mark.asyncio
async def test_publish_preserves_order_per_observer():
    hub = BroadcastHub()
    peer = FakePeer()
    hub.subscribe(peer)

    hub.publish_audio(b"a")
    hub.publish_event({"type": "asr_result", "text": "你好", "isEnd": True, "clientId": "client_1"})
    hub.publish_audio(b"b")
    await hub.wait_idle()

    assert peer.messages[1] == b"a"
    assert json.loads(peer.messages[2])["text"] == "你好"
    assert "你好" in peer.messages[2]
    assert peer.messages[3] == b"b"

    await hub.close()


@pytest.mark.asyncio
async def test_failed_observer_is_removed_and_others_still_receive():
    hub = BroadcastHub()
    healthy = [FakePeer() for _ in range(3)]
    broken = FakePeer(fail_send=True)
    for peer in (*healthy, broken):
        hub.subscribe(peer)

    await wait_until(lambda: hub.observer_count == 3)
    hub.publish_audio(b"frame")
    await hub.wait_idle()

    for peer in healthy:
        assert peer.binaries == [b"frame"]
    assert broken.messages == []
    assert hub.observer_count == 3

    await hub.close()


@pytest.mark.asyncio
async def test_closed_observer_is_skipped():
    hub = BroadcastHub()
    open_peers = [FakePeer(), FakePeer()]
    closed_peer = FakePeer()
    for peer in (*open_peers, closed_peer):
        hub.subscribe(peer)
    await hub.wait_idle()

    closed_peer.ready = False
    hub.publish_audio(b"x")
    await hub.wait_idle()

    for peer in open_peers:
        assert peer.binaries == [b"x"]
    assert closed_peer.binaries == []

    await hub.close()


@pytest.mark.asyncio
async def test_slow_observer_drops_only_its_own_messages(log_records):
    hub = BroadcastHub(queue_max=2)
    gate = asyncio.Event()
    slow = FakePeer(gate=gate)
    fast = FakePeer()
    hub.subscribe(slow)
    hub.subscribe(fast)

    # Slow writer is parked on the config event; its queue holds 2 more
    await wait_until(lambda: len(fast.messages) == 1)
    for i in range(5):
        hub.publish_audio(bytes([i]))
        await asyncio.sleep(0)

    await wait_until(lambda: len(fast.binaries) == 5)
    gate.set()
    await hub.wait_idle()

    assert fast.binaries == [bytes([i]) for i in range(5)]
    assert len(slow.binaries) == 2
    assert slow.binaries == [b"\x00", b"\x01"]
    assert any(r.get("event_type") == "OBSERVER_QUEUE_FULL" for r in log_records)

    await hub.close()


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent_and_stops_delivery():
    hub = BroadcastHub()
    peer = FakePeer()
    hub.subscribe(peer)
    await hub.wait_idle()

    hub.unsubscribe(peer)
    hub.unsubscribe(peer)
    hub.publish_audio(b"after")
    await hub.wait_idle()

    assert hub.observer_count == 0
    assert peer.binaries == []


@pytest.mark.asyncio
async def test_subscribe_twice_keeps_one_channel():
    hub = BroadcastHub()
    peer = FakePeer()

    first = hub.subscribe(peer)
    second = hub.subscribe(peer)
    await hub.wait_idle()

    assert first == second
    assert hub.observer_count == 1
    assert len(peer.messages) == 1

    await hub.close()


@pytest.mark.asyncio
async def test_publish_with_no_observers_is_a_noop():
    hub = BroadcastHub()

    hub.publish_audio(b"nobody")
    hub.publish_event({"type": "asr_result"})
    await hub.wait_idle()

    assert hub.observer_count == 0


@pytest.mark.asyncio
async def test_close_removes_everyone():
    hub = BroadcastHub()
    peers = [FakePeer(), FakePeer()]
    for peer in peers:
        hub.subscribe(peer)

    await hub.close()

    assert hub.observer_count == 0
