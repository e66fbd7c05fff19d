"""
Broadcast hub: fan-out of live audio and recognition events to observers.

Rules:
- Publishing is synchronous: it never awaits network IO and never raises.
- Every observer has its own bounded FIFO queue and writer task, so a
  slow observer delays only itself.
- Iteration always happens over a snapshot of the observer set.
- A send failure removes only the failing observer.
- A full queue drops the message for that observer only (counted).
"""

from __future__ import annotations

import asyncio
import itertools
import json
import time
from dataclasses import dataclass
from typing import Any

from constants import AUDIO_FORMAT_V1, OBSERVER_QUEUE_MAX, AudioFormat
from observability.logger import log_event
from session.peer import PeerConnection


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


Message = str | bytes


@dataclass
class _ObserverChannel:
    observer_id: str
    peer: PeerConnection
    queue: asyncio.Queue[Message]
    writer: asyncio.Task[None] | None = None
    dropped: int = 0
    sent: int = 0


class BroadcastHub:
    """
    Observer registry plus per-observer delivery.

    Usage:
        hub = BroadcastHub()
        hub.subscribe(peer)                 # config event queued first
        hub.publish_audio(pcm_bytes)
        hub.publish_event({"type": "asr_result", ...})
        hub.unsubscribe(peer)
    """

    # Log the first drop, then every Nth, per observer
    _DROP_LOG_EVERY = 100

    def __init__(
        self,
        *,
        audio_format: AudioFormat = AUDIO_FORMAT_V1,
        queue_max: int = OBSERVER_QUEUE_MAX,
    ) -> None:
        if queue_max <= 0:
            raise ValueError("queue_max must be > 0")

        self._format = audio_format
        self._queue_max = queue_max
        self._observers: dict[int, _ObserverChannel] = {}
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def subscribe(self, peer: PeerConnection) -> str:
        """
        Add an observer and queue the playback config event for it.

        Idempotent per peer. Must be called from the event loop.
        """
        existing = self._observers.get(id(peer))
        if existing is not None:
            return existing.observer_id

        channel = _ObserverChannel(
            observer_id=f"observer_{next(self._ids)}",
            peer=peer,
            queue=asyncio.Queue(maxsize=self._queue_max),
        )
        channel.queue.put_nowait(json.dumps(self._format.config_event()))
        channel.writer = asyncio.create_task(self._write_loop(channel))
        self._observers[id(peer)] = channel

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "OBSERVER_SUBSCRIBED",
            "observer_id": channel.observer_id,
            "observers": len(self._observers),
        })
        return channel.observer_id

    def unsubscribe(self, peer: PeerConnection) -> None:
        """Remove an observer. Idempotent."""
        channel = self._observers.get(id(peer))
        if channel is None or channel.peer is not peer:
            return
        self._remove(channel, reason="unsubscribed")

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish_audio(self, frame: bytes) -> None:
        """Fan out one raw audio frame as a binary message."""
        self._publish(bytes(frame))

    def publish_event(self, event: dict[str, Any]) -> None:
        """Fan out one JSON event as a text message."""
        try:
            text = json.dumps(event, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            log_event({
                "ts_ms": _now_ms(),
                "level": "error",
                "event_type": "BROADCAST_EVENT_UNSERIALIZABLE",
                "error": repr(e),
            })
            return
        self._publish(text)

    def _publish(self, message: Message) -> None:
        for channel in list(self._observers.values()):
            if not channel.peer.is_ready:
                continue
            try:
                channel.queue.put_nowait(message)
            except asyncio.QueueFull:
                channel.dropped += 1
                if channel.dropped == 1 or channel.dropped % self._DROP_LOG_EVERY == 0:
                    log_event({
                        "ts_ms": _now_ms(),
                        "level": "warning",
                        "event_type": "OBSERVER_QUEUE_FULL",
                        "observer_id": channel.observer_id,
                        "dropped_total": channel.dropped,
                    })

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _write_loop(self, channel: _ObserverChannel) -> None:
        while True:
            message = await channel.queue.get()
            try:
                if isinstance(message, bytes):
                    await channel.peer.send_bytes(message)
                else:
                    await channel.peer.send_text(message)
                channel.sent += 1
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": _now_ms(),
                    "level": "warning",
                    "event_type": "OBSERVER_SEND_FAILED",
                    "observer_id": channel.observer_id,
                    "error": repr(e),
                })
                self._remove(channel, reason="send_failed")
                return
            finally:
                channel.queue.task_done()

    def _remove(self, channel: _ObserverChannel, *, reason: str) -> None:
        if self._observers.get(id(channel.peer)) is channel:
            del self._observers[id(channel.peer)]

        # Unblock wait_idle(): nothing queued for this observer will be sent
        while not channel.queue.empty():
            channel.queue.get_nowait()
            channel.queue.task_done()

        writer = channel.writer
        if writer is not None and not writer.done() and writer is not asyncio.current_task():
            writer.cancel()

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "OBSERVER_REMOVED",
            "observer_id": channel.observer_id,
            "reason": reason,
            "sent": channel.sent,
            "dropped": channel.dropped,
            "observers": len(self._observers),
        })

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def wait_idle(self) -> None:
        """Wait until every current observer's queue has been written out."""
        for channel in list(self._observers.values()):
            await channel.queue.join()

    async def close(self) -> None:
        """Remove all observers and wait for their writers to stop."""
        channels = list(self._observers.values())
        for channel in channels:
            self._remove(channel, reason="hub_closed")

        writers = [c.writer for c in channels if c.writer is not None]
        if writers:
            await asyncio.gather(*writers, return_exceptions=True)
