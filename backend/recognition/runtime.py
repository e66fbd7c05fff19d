"""
Runtime execution shell for a single ASR session.

Responsibilities:
- Own the authoritative session state
- Call the pure reducer
- Execute commands with side effects (transport IO, timers, callbacks)
- Convert transport frames and timer expiry into events
- Generate fresh task ids for every (re)connect attempt

Non-responsibilities:
- No transition logic (see recognition.reducer)
- No audio persistence or observer fan-out (see session.registry)
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from adapters.asr.base import CloudTransport, TransportFactory
from constants import SESSION_CLOSE_TIMEOUT_S
from observability.logger import log_event
from observability.metrics import record_metric
from protocol.asr_codec import (
    EVENT_RESULT_GENERATED,
    EVENT_TASK_FAILED,
    EVENT_TASK_FINISHED,
    EVENT_TASK_STARTED,
    AsrMessage,
    MalformedMessage,
    RecognitionParameters,
    decode_message,
    encode_finish_task,
    encode_run_task,
    is_audio_frame,
)
from recognition.commands import (
    CancelTimer,
    CloseTransport,
    Command,
    LogEvent,
    NotifyComplete,
    NotifyError,
    NotifyResult,
    OpenTransport,
    RecordMetric,
    SendAudio,
    SendFinishTask,
    SendRunTask,
    StartTimer,
)
from recognition.events import (
    AudioChunk,
    ConnectRequested,
    DestroyRequested,
    Event,
    EventType,
    ReconnectDue,
    ResultGenerated,
    TaskFailed,
    TaskFinished,
    TaskStarted,
    TaskStartTimeout,
    TransportClosed,
    TransportOpened,
    UnknownServerEvent,
)
from recognition.reducer import reduce
from recognition.state_dataclass import AsrSessionState, SessionSettings
from recognition.task_ids import new_task_id
from recognition.transcription import TranscriptionEvent


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


# Outbound queue marker: close the transport once everything before it is sent
_CLOSE = object()


async def _noop_result(transcription: TranscriptionEvent) -> None:
    return None


async def _noop_complete() -> None:
    return None


async def _noop_error(error_code: str, error_message: str) -> None:
    return None


@dataclass(frozen=True)
class AsrCallbacks:
    """
    Owner notifications.

    Delivered in the order the reducer emitted them, outside the session's
    state lock, so a callback may call back into the session (e.g. destroy).
    Exceptions are logged and swallowed at this boundary.
    """
    on_result: Callable[[TranscriptionEvent], Awaitable[None]] = _noop_result
    on_complete: Callable[[], Awaitable[None]] = _noop_complete
    on_error: Callable[[str, str], Awaitable[None]] = _noop_error


class AsrSession:
    """
    Runtime execution boundary for one hardware client's recognition.

    Guarantees:
    - Reducer is called exactly once per incoming event
    - State transitions are serialized (one event at a time)
    - Side effects run after the state swap, in reducer-emitted order
    - No network IO under the state lock: sends go to a per-connection
      outbound queue drained by that connection's writer task
    - Timers and transport readers re-enter handle_event() only
    - Owner notifications are delivered in emission order

    Usage:
        session = AsrSession(
            client_id="client_1",
            callbacks=AsrCallbacks(on_result=..., on_complete=..., on_error=...),
            transport_factory=dashscope_transport_factory(api_key=key),
            params=RecognitionParameters(model="paraformer-realtime-v2"),
        )
        await session.connect()
        await session.append_audio_chunk(pcm)
        ...
        await session.destroy()
    """

    def __init__(
        self,
        *,
        client_id: str,
        callbacks: AsrCallbacks,
        transport_factory: TransportFactory,
        params: RecognitionParameters,
        settings: SessionSettings | None = None,
        task_id_factory: Callable[[], str] = new_task_id,
        close_timeout_s: float = SESSION_CLOSE_TIMEOUT_S,
    ) -> None:
        self._client_id = client_id
        self._callbacks = callbacks
        self._transport_factory = transport_factory
        self._params = params
        self._new_task_id = task_id_factory
        self._close_timeout_s = close_timeout_s

        self._state = AsrSessionState(settings=settings or SessionSettings())
        self._lock = asyncio.Lock()

        self._timers: dict[str, asyncio.Task[None]] = {}
        self._transports: dict[str, CloudTransport] = {}
        self._readers: dict[str, asyncio.Task[None]] = {}
        self._outbound: dict[str, asyncio.Queue[tuple[Any, str | bytes | None]]] = {}
        self._writers: dict[str, asyncio.Task[None]] = {}
        self._closers: set[asyncio.Task[None]] = set()

        self._outbox: deque[Command] = deque()
        self._delivering = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def state(self) -> AsrSessionState:
        """Current immutable session state. Read-only for consumers."""
        return self._state

    async def connect(self) -> None:
        """Start a new recognition attempt (no-op unless DISCONNECTED)."""
        await self.handle_event(
            ConnectRequested(
                event_type=EventType.CONNECT_REQUESTED,
                ts_ms=_now_ms(),
                task_id=self._new_task_id(),
            )
        )

    async def append_audio_chunk(self, pcm_bytes: bytes) -> None:
        """Forward one hardware chunk; dropped unless the task is streaming."""
        await self.handle_event(
            AudioChunk(
                event_type=EventType.AUDIO_CHUNK,
                ts_ms=_now_ms(),
                pcm_bytes=pcm_bytes,
            )
        )

    async def destroy(self) -> None:
        """
        Terminal teardown. Idempotent.

        Queues finish-task if a task is live, closes the transport, cancels
        every timer, then waits (bounded) for transport tasks to wind down.
        A writer stuck in a send is cancelled after close_timeout_s, which
        closes its transport without the queued finish-task.
        """
        await self.handle_event(
            DestroyRequested(event_type=EventType.DESTROY_REQUESTED, ts_ms=_now_ms())
        )

        for timer_id in list(self._timers.keys()):
            self._cancel_timer(timer_id)

        current = asyncio.current_task()
        writers = [t for t in self._writers.values() if t is not current and not t.done()]
        if writers:
            _, stalled = await asyncio.wait(writers, timeout=self._close_timeout_s)
            for task in stalled:
                task.cancel()
            if stalled:
                log_event({
                    "ts_ms": _now_ms(),
                    "level": "warning",
                    "event_type": "ASR_SEND_STALLED",
                    "client_id": self._client_id,
                    "cancelled_writers": len(stalled),
                })

        pending = [
            t for t in (*self._readers.values(), *self._writers.values(), *self._closers)
            if t is not current and not t.done()
        ]
        if not pending:
            return

        _, not_done = await asyncio.wait(pending, timeout=self._close_timeout_s)
        for task in not_done:
            task.cancel()
        if not_done:
            log_event({
                "ts_ms": _now_ms(),
                "level": "warning",
                "event_type": "ASR_SESSION_CLOSE_TIMEOUT",
                "client_id": self._client_id,
                "cancelled_tasks": len(not_done),
            })

    async def handle_event(self, event: Event) -> None:
        """
        Process a single event through the session pipeline.

        1. Reduce (state, event) under the session lock
        2. Swap in the new state
        3. Execute emitted commands in order
        4. Deliver owner notifications after the lock is released
        """
        async with self._lock:
            new_state, commands = reduce(self._state, event)
            self._state = new_state

            for cmd in commands:
                self._execute_command(cmd)

        await self._deliver_notifications()

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    def _execute_command(self, cmd: Command) -> None:
        if isinstance(cmd, LogEvent):
            log_event({**cmd.event, "client_id": self._client_id})

        elif isinstance(cmd, SendAudio):
            self._send(cmd.connection_id, cmd.pcm_bytes, kind="audio")

        elif isinstance(cmd, SendRunTask):
            self._send(
                cmd.connection_id,
                encode_run_task(cmd.task_id, self._params),
                kind="run-task",
            )

        elif isinstance(cmd, SendFinishTask):
            self._send(
                cmd.connection_id,
                encode_finish_task(cmd.task_id),
                kind="finish-task",
            )

        elif isinstance(cmd, OpenTransport):
            self._open_transport(cmd.connection_id)

        elif isinstance(cmd, CloseTransport):
            self._close_transport(cmd.connection_id, cmd.reason)

        elif isinstance(cmd, StartTimer):
            self._start_timer(
                timer_id=cmd.timer_id,
                duration_ms=cmd.duration_ms,
                timeout_event_type=cmd.timeout_event_type,
                task_id=cmd.task_id,
            )

        elif isinstance(cmd, CancelTimer):
            self._cancel_timer(cmd.timer_id)

        elif isinstance(cmd, (NotifyResult, NotifyComplete, NotifyError)):
            self._outbox.append(cmd)

        elif isinstance(cmd, RecordMetric):
            record_metric(
                cmd.name,
                cmd.value,
                client_id=self._client_id,
                state=self._state.state.value,
            )

        else:
            raise TypeError(f"Unhandled command: {type(cmd).__name__}")

    def _send(self, connection_id: str, payload: str | bytes, *, kind: str) -> None:
        transport = self._transports.get(connection_id)
        outbound = self._outbound.get(connection_id)
        if transport is None or outbound is None or not transport.is_open:
            self._log_send_skipped(connection_id, kind)
            return
        outbound.put_nowait((kind, payload))

    def _log_send_skipped(self, connection_id: str, kind: str) -> None:
        log_event({
            "ts_ms": _now_ms(),
            "level": "warning",
            "event_type": "ASR_SEND_SKIPPED",
            "client_id": self._client_id,
            "connection_id": connection_id,
            "kind": kind,
        })

    async def _write_loop(
        self,
        connection_id: str,
        transport: CloudTransport,
        outbound: asyncio.Queue[tuple[Any, str | bytes | None]],
    ) -> None:
        """
        Writer for one transport. Drains the outbound queue in order.

        Ends on the close marker or the first failed send, closing the
        transport either way; the reader then reports TransportClosed.
        """
        try:
            while True:
                kind, payload = await outbound.get()
                if kind is _CLOSE:
                    return
                if not transport.is_open:
                    self._log_send_skipped(connection_id, kind)
                    continue
                try:
                    if isinstance(payload, bytes):
                        await transport.send_bytes(payload)
                    else:
                        await transport.send_text(payload)
                except Exception as e:  # pylint: disable=broad-exception-caught
                    log_event({
                        "ts_ms": _now_ms(),
                        "level": "error",
                        "event_type": "ASR_SEND_FAILED",
                        "client_id": self._client_id,
                        "connection_id": connection_id,
                        "kind": kind,
                        "error": repr(e),
                    })
                    return
        finally:
            if self._outbound.get(connection_id) is outbound:
                del self._outbound[connection_id]
            if self._writers.get(connection_id) is asyncio.current_task():
                del self._writers[connection_id]
            await self._close_quietly(transport, connection_id)

    async def _deliver_notifications(self) -> None:
        # A single deliverer drains the outbox; re-entrant and concurrent
        # callers only enqueue, which keeps notifications in emission order.
        if self._delivering:
            return
        self._delivering = True
        try:
            while self._outbox:
                await self._notify(self._outbox.popleft())
        finally:
            self._delivering = False

    async def _notify(self, cmd: Command) -> None:
        try:
            if isinstance(cmd, NotifyResult):
                await self._callbacks.on_result(cmd.transcription)
            elif isinstance(cmd, NotifyComplete):
                await self._callbacks.on_complete()
            elif isinstance(cmd, NotifyError):
                await self._callbacks.on_error(cmd.error_code, cmd.error_message)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "level": "error",
                "event_type": "ASR_CALLBACK_FAILED",
                "client_id": self._client_id,
                "command_type": cmd.command_type.value,
                "error": repr(e),
            })

    # ------------------------------------------------------------------
    # Transport management
    # ------------------------------------------------------------------

    def _open_transport(self, connection_id: str) -> None:
        transport = self._transport_factory()
        outbound: asyncio.Queue[tuple[Any, str | bytes | None]] = asyncio.Queue()
        self._transports[connection_id] = transport
        self._outbound[connection_id] = outbound
        self._readers[connection_id] = asyncio.create_task(
            self._run_transport(connection_id, transport)
        )
        self._writers[connection_id] = asyncio.create_task(
            self._write_loop(connection_id, transport, outbound)
        )

    def _close_transport(self, connection_id: str, reason: str) -> None:
        """
        Request a close without awaiting the close handshake.

        The close is queued behind any pending sends for the connection.
        The reader task ends once the transport closes and reports
        TransportClosed for that connection.
        """
        transport = self._transports.get(connection_id)
        if transport is None:
            return

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "ASR_TRANSPORT_CLOSE_REQUESTED",
            "client_id": self._client_id,
            "connection_id": connection_id,
            "reason": reason,
        })

        outbound = self._outbound.get(connection_id)
        if outbound is not None:
            outbound.put_nowait((_CLOSE, None))
            return

        task = asyncio.create_task(self._close_quietly(transport, connection_id))
        self._closers.add(task)
        task.add_done_callback(self._closers.discard)

    async def _close_quietly(self, transport: CloudTransport, connection_id: str) -> None:
        try:
            await transport.close()
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "level": "warning",
                "event_type": "ASR_TRANSPORT_CLOSE_FAILED",
                "client_id": self._client_id,
                "connection_id": connection_id,
                "error": repr(e),
            })

    async def _run_transport(self, connection_id: str, transport: CloudTransport) -> None:
        """
        Reader loop for one transport.

        open -> TransportOpened -> frames -> TransportClosed.
        A failed open is reported as TransportClosed as well.
        """
        reason = "closed"
        cancelled = False
        try:
            try:
                await transport.open()
            except Exception as e:  # pylint: disable=broad-exception-caught
                reason = f"connect_failed: {e!r}"
                log_event({
                    "ts_ms": _now_ms(),
                    "level": "error",
                    "event_type": "ASR_CONNECT_FAILED",
                    "client_id": self._client_id,
                    "connection_id": connection_id,
                    "error": repr(e),
                })
                return

            log_event({
                "ts_ms": _now_ms(),
                "event_type": "ASR_TRANSPORT_OPENED",
                "client_id": self._client_id,
                "connection_id": connection_id,
            })
            await self.handle_event(
                TransportOpened(
                    event_type=EventType.TRANSPORT_OPENED,
                    ts_ms=_now_ms(),
                    connection_id=connection_id,
                )
            )

            async for frame in transport.receive():
                await self._on_frame(connection_id, frame)

        except asyncio.CancelledError:
            cancelled = True
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            reason = f"receive_failed: {e!r}"
            log_event({
                "ts_ms": _now_ms(),
                "level": "error",
                "event_type": "ASR_RECEIVE_FAILED",
                "client_id": self._client_id,
                "connection_id": connection_id,
                "error": repr(e),
            })
        finally:
            self._transports.pop(connection_id, None)
            self._readers.pop(connection_id, None)
            outbound = self._outbound.get(connection_id)
            if outbound is not None:
                outbound.put_nowait((_CLOSE, None))
            await self._close_quietly(transport, connection_id)
            if not cancelled:
                await self.handle_event(
                    TransportClosed(
                        event_type=EventType.TRANSPORT_CLOSED,
                        ts_ms=_now_ms(),
                        connection_id=connection_id,
                        reason=reason,
                    )
                )

    async def _on_frame(self, connection_id: str, frame: str | bytes) -> None:
        if is_audio_frame(frame):
            log_event({
                "ts_ms": _now_ms(),
                "level": "debug",
                "event_type": "ASR_BINARY_FRAME_IGNORED",
                "client_id": self._client_id,
                "connection_id": connection_id,
                "size": len(frame),
            })
            return

        try:
            message = decode_message(frame)
        except MalformedMessage as e:
            log_event({
                "ts_ms": _now_ms(),
                "level": "warning",
                "event_type": "ASR_MESSAGE_DISCARDED",
                "client_id": self._client_id,
                "connection_id": connection_id,
                "error": str(e),
            })
            return

        event = self._event_from_message(message)
        if event is not None:
            await self.handle_event(event)

    def _event_from_message(self, message: AsrMessage) -> Event | None:
        header = message.header
        ts = _now_ms()

        if header.event == EVENT_TASK_STARTED:
            return TaskStarted(
                event_type=EventType.TASK_STARTED,
                ts_ms=ts,
                task_id=header.task_id,
            )

        if header.event == EVENT_RESULT_GENERATED:
            sentence = message.sentence
            if sentence is None:
                # Heartbeat-style results carry no sentence block.
                log_event({
                    "ts_ms": ts,
                    "level": "debug",
                    "event_type": "ASR_RESULT_WITHOUT_SENTENCE",
                    "client_id": self._client_id,
                    "task_id": header.task_id,
                })
                return None
            return ResultGenerated(
                event_type=EventType.RESULT_GENERATED,
                ts_ms=ts,
                task_id=header.task_id,
                text=sentence.text,
                sentence_end=sentence.sentence_end,
                begin_time_ms=sentence.begin_time,
                end_time_ms=sentence.end_time,
                usage_duration_s=message.usage_duration,
            )

        if header.event == EVENT_TASK_FINISHED:
            return TaskFinished(
                event_type=EventType.TASK_FINISHED,
                ts_ms=ts,
                task_id=header.task_id,
            )

        if header.event == EVENT_TASK_FAILED:
            return TaskFailed(
                event_type=EventType.TASK_FAILED,
                ts_ms=ts,
                task_id=header.task_id,
                error_code=header.error_code,
                error_message=header.error_message,
            )

        return UnknownServerEvent(
            event_type=EventType.UNKNOWN_SERVER_EVENT,
            ts_ms=ts,
            task_id=header.task_id,
            name=header.event,
        )

    # ------------------------------------------------------------------
    # Timer management
    # ------------------------------------------------------------------

    def _start_timer(
        self,
        *,
        timer_id: str,
        duration_ms: int,
        timeout_event_type: EventType,
        task_id: str | None,
    ) -> None:
        """
        Start or replace a timer that emits a timeout event.

        Timer tasks re-enter handle_event() when they expire.
        """
        self._cancel_timer(timer_id)

        async def _timer_task() -> None:
            try:
                await asyncio.sleep(duration_ms / 1000.0)
                event = self._construct_timeout_event(
                    timeout_event_type=timeout_event_type,
                    task_id=task_id,
                )
                await self.handle_event(event)
            except asyncio.CancelledError:
                return
            finally:
                if self._timers.get(timer_id) is asyncio.current_task():
                    del self._timers[timer_id]

        self._timers[timer_id] = asyncio.create_task(_timer_task())

    def _cancel_timer(self, timer_id: str) -> None:
        """
        Cancel an in-flight timer if it exists. Idempotent.

        A timer that is itself delivering its event is only forgotten,
        never cancelled, so its event finishes processing.
        """
        task = self._timers.pop(timer_id, None)
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()

    def _construct_timeout_event(
        self,
        *,
        timeout_event_type: EventType,
        task_id: str | None,
    ) -> Event:
        ts = _now_ms()

        if timeout_event_type is EventType.TASK_START_TIMEOUT:
            assert task_id is not None, "task start timer without task_id"
            return TaskStartTimeout(
                event_type=EventType.TASK_START_TIMEOUT,
                ts_ms=ts,
                task_id=task_id,
            )

        if timeout_event_type is EventType.RECONNECT_DUE:
            return ReconnectDue(
                event_type=EventType.RECONNECT_DUE,
                ts_ms=ts,
                task_id=self._new_task_id(),
            )

        raise ValueError(f"Unknown timeout event type: {timeout_event_type}")
