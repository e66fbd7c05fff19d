"""
Session registry (one per process).

Responsibilities:
- Allocate client ids and own every live HardwareSession
- Wire each ASR session's callbacks to the broadcast hub and the
  originating hardware socket
- Route inbound hardware frames: accumulation buffer -> hub -> ASR
- Hand drained buffers to the persistence sink without blocking routing
- Periodic flush and orderly shutdown

NOT responsible for:
- Any ASR state machine logic (recognition.reducer)
- Observer delivery (session.broadcast)
- Socket accept/close handshakes (server.routes)
"""

from __future__ import annotations

import asyncio
import itertools
import time

from adapters.asr.base import TransportFactory
from audio.buffer import AccumulationBuffer
from audio.persistence import NullSink, PersistenceSink
from constants import (
    ASR_NO_INPUT_AUDIO_ERROR,
    AUDIO_FORMAT_V1,
    BUFFER_SIZE_BYTES,
    MAX_SESSIONS_DEFAULT,
    AudioFormat,
)
from observability.logger import log_event
from observability.metrics import timed
from protocol.asr_codec import RecognitionParameters
from recognition.runtime import AsrCallbacks, AsrSession
from recognition.state_dataclass import SessionSettings
from recognition.transcription import TranscriptionEvent
from session.broadcast import BroadcastHub
from session.connection_status import ConnectionStatus
from session.hardware_session import HardwareSession
from session.peer import PeerConnection


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class RegistryFullError(RuntimeError):
    """Raised by register() when max_sessions live sessions already exist."""


class SessionRegistry:
    """
    Map of client_id -> HardwareSession.

    All mutation happens on the event loop thread. Iteration always uses a
    snapshot of the map so unregister() during a flush cycle is safe.
    """

    def __init__(
        self,
        *,
        hub: BroadcastHub,
        transport_factory: TransportFactory,
        params: RecognitionParameters,
        settings: SessionSettings | None = None,
        sink: PersistenceSink | None = None,
        max_sessions: int = MAX_SESSIONS_DEFAULT,
        buffer_threshold_bytes: int = BUFFER_SIZE_BYTES,
        audio_format: AudioFormat = AUDIO_FORMAT_V1,
    ) -> None:
        self._hub = hub
        self._transport_factory = transport_factory
        self._params = params
        self._settings = settings or SessionSettings()
        self._sink: PersistenceSink = sink or NullSink()
        self._max_sessions = max_sessions
        self._buffer_threshold_bytes = buffer_threshold_bytes
        self._format = audio_format

        self._sessions: dict[str, HardwareSession] = {}
        self._ids = itertools.count(1)
        self._flushes: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, client_id: str) -> HardwareSession | None:
        return self._sessions.get(client_id)

    def client_ids(self) -> list[str]:
        return list(self._sessions.keys())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def register(self, peer: PeerConnection) -> str:
        """
        Create a session for a newly connected hardware client and start
        its first recognition attempt.

        Raises:
            RegistryFullError when max_sessions is reached.
            Whatever the transport factory raises; the entry is rolled back.
        """
        if len(self._sessions) >= self._max_sessions:
            log_event({
                "ts_ms": _now_ms(),
                "level": "error",
                "event_type": "SESSION_REJECTED",
                "reason": "registry_full",
                "max_sessions": self._max_sessions,
            })
            raise RegistryFullError(
                f"session limit reached ({self._max_sessions} live sessions)"
            )

        client_id = f"client_{next(self._ids)}"

        asr = AsrSession(
            client_id=client_id,
            callbacks=self._callbacks_for(client_id, peer),
            transport_factory=self._transport_factory,
            params=self._params,
            settings=self._settings,
        )
        session = HardwareSession(
            client_id=client_id,
            peer=peer,
            asr=asr,
            buffer=AccumulationBuffer(
                threshold_bytes=self._buffer_threshold_bytes,
                audio_format=self._format,
            ),
        )
        self._sessions[client_id] = session

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SESSION_REGISTERED",
            "client_id": client_id,
            "sessions": len(self._sessions),
        })

        try:
            await asr.connect()
        except Exception as e:
            self._sessions.pop(client_id, None)
            log_event({
                "ts_ms": _now_ms(),
                "level": "error",
                "event_type": "SESSION_REGISTER_FAILED",
                "client_id": client_id,
                "error": repr(e),
                "sessions": len(self._sessions),
            })
            await asr.destroy()
            raise

        return client_id

    async def unregister(self, client_id: str, *, reason: str = "disconnect") -> None:
        """
        Flush remaining audio, destroy the ASR session, drop the entry.

        Idempotent: unknown or already removed ids are a no-op.
        """
        session = self._sessions.pop(client_id, None)
        if session is None:
            return

        session.connection_status = ConnectionStatus.CLOSING
        self._schedule_flush(session, session.buffer.drain())

        await session.asr.destroy()
        session.connection_status = ConnectionStatus.DOWN

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SESSION_UNREGISTERED",
            "client_id": client_id,
            "reason": reason,
            "chunks_received": session.chunks_received,
            "bytes_received": session.bytes_received,
            "lifetime_s": round(time.time() - session.created_at, 3),
            "sessions": len(self._sessions),
        })

    async def shutdown(self) -> None:
        """Unregister every session, then wait for pending flushes."""
        for client_id in list(self._sessions.keys()):
            await self.unregister(client_id, reason="shutdown")
        await self.wait_for_flushes()

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def route_frame(self, client_id: str, frame: bytes) -> None:
        """
        Route one inbound hardware frame.

        Order: accumulation buffer, observers, ASR session. The caller
        awaits each frame before reading the next one, which preserves
        per-client order end to end.
        """
        session = self._sessions.get(client_id)
        if session is None:
            log_event({
                "ts_ms": _now_ms(),
                "level": "debug",
                "event_type": "ROUTE_UNKNOWN_CLIENT",
                "client_id": client_id,
                "bytes": len(frame),
            })
            return

        session.record_chunk(frame)

        if session.buffer.append(frame):
            self._schedule_flush(session, session.buffer.drain())

        self._hub.publish_audio(frame)
        await session.asr.append_audio_chunk(frame)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def flush_all(self) -> int:
        """Drain every non-empty buffer to the sink. Returns flushes scheduled."""
        scheduled = 0
        for session in list(self._sessions.values()):
            if session.buffer.is_empty():
                continue
            self._schedule_flush(session, session.buffer.drain())
            scheduled += 1
        return scheduled

    async def run_periodic_flush(self, interval_s: float) -> None:
        """Flush loop owned by the app lifespan; runs until cancelled."""
        while True:
            await asyncio.sleep(interval_s)
            scheduled = self.flush_all()
            if scheduled:
                log_event({
                    "ts_ms": _now_ms(),
                    "level": "debug",
                    "event_type": "PERIODIC_FLUSH",
                    "flushes": scheduled,
                })

    async def wait_for_flushes(self) -> None:
        """Wait for every in-flight persistence flush to finish."""
        while self._flushes:
            await asyncio.gather(*list(self._flushes), return_exceptions=True)

    def _schedule_flush(self, session: HardwareSession, data: bytes) -> None:
        # Fire-and-forget from the routing path's point of view
        if not data:
            return
        session.flushes_scheduled += 1
        task = asyncio.create_task(self._flush(session.client_id, data))
        self._flushes.add(task)
        task.add_done_callback(self._flushes.discard)

    async def _flush(self, client_id: str, data: bytes) -> None:
        try:
            with timed("audio_flush_ms", client_id=client_id, details={"bytes": len(data)}):
                await asyncio.to_thread(self._sink.flush, client_id, data)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "level": "error",
                "event_type": "AUDIO_FLUSH_FAILED",
                "client_id": client_id,
                "bytes": len(data),
                "error": repr(e),
            })

    # ------------------------------------------------------------------
    # ASR callbacks
    # ------------------------------------------------------------------

    def _callbacks_for(self, client_id: str, peer: PeerConnection) -> AsrCallbacks:
        async def on_result(transcription: TranscriptionEvent) -> None:
            self._hub.publish_event(transcription.to_broadcast(client_id))

            if not transcription.is_final:
                return
            if not peer.is_ready:
                log_event({
                    "ts_ms": _now_ms(),
                    "level": "debug",
                    "event_type": "FINAL_TEXT_NOT_DELIVERED",
                    "client_id": client_id,
                    "reason": "peer_not_ready",
                })
                return
            try:
                await peer.send_text(transcription.text)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": _now_ms(),
                    "level": "warning",
                    "event_type": "FINAL_TEXT_SEND_FAILED",
                    "client_id": client_id,
                    "error": repr(e),
                })

        async def on_complete() -> None:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "ASR_TASK_COMPLETE",
                "client_id": client_id,
            })

        async def on_error(error_code: str, error_message: str) -> None:
            event = {
                "ts_ms": _now_ms(),
                "level": "error",
                "event_type": "ASR_ERROR",
                "client_id": client_id,
                "error_code": error_code,
                "error_message": error_message,
            }
            if error_code == ASR_NO_INPUT_AUDIO_ERROR:
                session = self._sessions.get(client_id)
                event["chunks_received"] = (
                    session.chunks_received if session is not None else None
                )
            log_event(event)

        return AsrCallbacks(
            on_result=on_result,
            on_complete=on_complete,
            on_error=on_error,
        )
