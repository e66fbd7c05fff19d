"""
Pure ASR session reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks, no id generation.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).
- Version-safe: protocol events are checked against the live task_id and
  transport events against the live connection_id; stale ones are ignored.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

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
from recognition.enums.state import SessionState
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
from recognition.retry import (
    get_timeout_ms,
    next_attempt,
    reset_attempt,
    should_retry,
)
from recognition.state_dataclass import AsrSessionState
from recognition.task_ids import AsrTask
from recognition.transcription import TranscriptionEvent


# =============================================================================
# Timer IDs
# =============================================================================

TIMER_TASK_START = "task_start_timeout"
TIMER_RECONNECT = "reconnect"

ERROR_TASK_START_TIMEOUT = "TASK_START_TIMEOUT"
ERROR_UNKNOWN = "UNKNOWN_ERROR"

METRIC_TASK_START_LATENCY = "task_start_latency_ms"

Transition = tuple[AsrSessionState, tuple[Command, ...]]


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: AsrSessionState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
    *,
    level: str = "info",
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "level": level,
            "state": state.state.value,
            "event_type": event.event_type.value,
            "decision": decision,
            "task_id": state.task.task_id if state.task is not None else None,
            "connection_id": state.connection_id,
            "details": details or {},
        }
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _state_changed(
    old: AsrSessionState,
    new: AsrSessionState,
    event: Event,
    source: str,
) -> LogEvent:
    return _log(
        new,
        event,
        "state_changed",
        {
            "from_state": old.state.value,
            "to_state": new.state.value,
            "source": source,
        },
    )


def _ignore(
    state: AsrSessionState,
    event: Event,
    reason: str,
    details: dict[str, Any] | None = None,
    *,
    level: str = "info",
) -> Transition:
    return state, (
        _log(state, event, "ignore", {"reason": reason, **(details or {})}, level=level),
    )


def _is_current_task(state: AsrSessionState, task_id: str) -> bool:
    return state.task is not None and state.task.task_id == task_id


def _clear_task_fields(state: AsrSessionState) -> AsrSessionState:
    """Reset everything scoped to a single task (pure)."""
    return replace(
        state,
        task=None,
        start_attempt=reset_attempt(),
        pending_audio=(),
        pending_audio_bytes=0,
    )


# =============================================================================
# Attempt lifecycle
# =============================================================================

def _begin_attempt(
    state: AsrSessionState,
    event: ConnectRequested | ReconnectDue,
    source: str,
) -> Transition:
    """
    DISCONNECTED -> CONNECTING with the fresh task_id carried by the event.

    The new task_id doubles as the connection_id of the transport opened
    for it, so closures of older transports are recognizably stale.
    """
    cmds: list[Command] = []

    if state.reconnect_scheduled:
        cmds.append(CancelTimer(timer_id=TIMER_RECONNECT))

    # A transport kept open after task-finished/task-failed is superseded.
    if state.connection_id is not None:
        cmds.append(CloseTransport(connection_id=state.connection_id, reason="superseded"))

    new_state = replace(
        state,
        state=SessionState.CONNECTING,
        task=AsrTask(task_id=event.task_id, created_ts_ms=event.ts_ms),
        connection_id=event.task_id,
        reconnect_scheduled=False,
        start_attempt=reset_attempt(),
        pending_audio=(),
        pending_audio_bytes=0,
        audio_chunks_sent=0,
        audio_chunks_dropped=0,
    )

    cmds.append(OpenTransport(connection_id=event.task_id))
    cmds.append(_log(new_state, event, "open_transport", {"source": source}))
    cmds.append(_state_changed(state, new_state, event, source))

    return new_state, _logs_last(tuple(cmds))


def _end_task(
    state: AsrSessionState,
    event: Event,
    *,
    decision: str,
    close_reason: str,
    notify: Command,
    details: dict[str, Any] | None = None,
    level: str = "info",
    last_error: str | None = None,
) -> Transition:
    """
    Abandon the live task: -> DISCONNECTED, notify the owner, close the
    transport. The reconnect is scheduled when the transport close is
    observed (TransportClosed), not here.
    """
    new_state = replace(
        _clear_task_fields(state),
        state=SessionState.DISCONNECTED,
        last_error=last_error if last_error is not None else state.last_error,
    )

    cmds: list[Command] = [
        CancelTimer(timer_id=TIMER_TASK_START),
        notify,
    ]
    if state.connection_id is not None:
        cmds.append(CloseTransport(connection_id=state.connection_id, reason=close_reason))

    cmds.append(_log(state, event, decision, details, level=level))
    cmds.append(_state_changed(state, new_state, event, decision))

    return new_state, _logs_last(tuple(cmds))


# =============================================================================
# Per-event handlers
# =============================================================================

def _on_connect_requested(state: AsrSessionState, event: ConnectRequested) -> Transition:
    if state.state is SessionState.CLOSING:
        return _ignore(state, event, "session_closed")
    if state.state is not SessionState.DISCONNECTED:
        return _ignore(state, event, "already_active")
    return _begin_attempt(state, event, "connect")


def _on_reconnect_due(state: AsrSessionState, event: ReconnectDue) -> Transition:
    if state.state is SessionState.CLOSING:
        return _ignore(state, event, "session_closed")
    if state.state is not SessionState.DISCONNECTED or not state.reconnect_scheduled:
        return _ignore(state, event, "reconnect_not_pending")
    return _begin_attempt(state, event, "reconnect")


def _on_transport_opened(state: AsrSessionState, event: TransportOpened) -> Transition:
    if state.state is SessionState.CLOSING:
        return state, (
            CloseTransport(connection_id=event.connection_id, reason="session_closed"),
            _log(state, event, "ignore", {"reason": "session_closed"}),
        )

    if (
        event.connection_id != state.connection_id
        or state.state is not SessionState.CONNECTING
        or state.task is None
    ):
        return state, (
            CloseTransport(connection_id=event.connection_id, reason="stale_connection"),
            _log(
                state,
                event,
                "ignore",
                {"reason": "stale_connection", "event_connection_id": event.connection_id},
                level="warning",
            ),
        )

    timeout_ms = get_timeout_ms(state.settings.start_retry, state.start_attempt)
    new_state = replace(state, state=SessionState.AWAITING_TASK_START)

    return new_state, _logs_last((
        SendRunTask(connection_id=event.connection_id, task_id=state.task.task_id),
        StartTimer(
            timer_id=TIMER_TASK_START,
            duration_ms=timeout_ms,
            timeout_event_type=EventType.TASK_START_TIMEOUT,
            task_id=state.task.task_id,
        ),
        _log(new_state, event, "send_run_task", {"attempt": 0, "timeout_ms": timeout_ms}),
        _state_changed(state, new_state, event, "transport_opened"),
    ))


def _on_transport_closed(state: AsrSessionState, event: TransportClosed) -> Transition:
    if state.state is SessionState.CLOSING:
        return _ignore(state, event, "session_closed")

    if event.connection_id != state.connection_id:
        return _ignore(
            state,
            event,
            "stale_connection",
            {"event_connection_id": event.connection_id, "reason_text": event.reason},
        )

    delay_ms = state.settings.reconnect_delay_ms
    new_state = replace(
        _clear_task_fields(state),
        state=SessionState.DISCONNECTED,
        connection_id=None,
        reconnect_scheduled=True,
    )

    cmds: list[Command] = [
        CancelTimer(timer_id=TIMER_TASK_START),
        StartTimer(
            timer_id=TIMER_RECONNECT,
            duration_ms=delay_ms,
            timeout_event_type=EventType.RECONNECT_DUE,
        ),
        _log(
            new_state,
            event,
            "schedule_reconnect",
            {"reason": event.reason, "delay_ms": delay_ms},
            level="warning",
        ),
    ]
    if state.state is not new_state.state:
        cmds.append(_state_changed(state, new_state, event, "transport_closed"))

    return new_state, _logs_last(tuple(cmds))


def _on_task_started(state: AsrSessionState, event: TaskStarted) -> Transition:
    if not _is_current_task(state, event.task_id):
        return _ignore(state, event, "stale_task_id", {"event_task_id": event.task_id})
    if state.state is not SessionState.AWAITING_TASK_START:
        return _ignore(state, event, "unexpected_task_started")

    assert state.task is not None
    assert state.connection_id is not None

    pending = state.pending_audio
    new_state = replace(
        state,
        state=SessionState.STREAMING,
        pending_audio=(),
        pending_audio_bytes=0,
        audio_chunks_sent=state.audio_chunks_sent + len(pending),
    )

    cmds: list[Command] = [
        CancelTimer(timer_id=TIMER_TASK_START),
        RecordMetric(
            name=METRIC_TASK_START_LATENCY,
            value=event.ts_ms - state.task.created_ts_ms,
        ),
    ]
    cmds.extend(
        SendAudio(connection_id=state.connection_id, pcm_bytes=chunk)
        for chunk in pending
    )
    cmds.append(
        _log(
            new_state,
            event,
            "task_started",
            {
                "retries": state.start_attempt.attempt,
                "dropped_before_start": state.audio_chunks_dropped,
                "flushed_pending": len(pending),
            },
        )
    )
    cmds.append(_state_changed(state, new_state, event, "task_started"))

    return new_state, _logs_last(tuple(cmds))


def _on_result_generated(state: AsrSessionState, event: ResultGenerated) -> Transition:
    if not _is_current_task(state, event.task_id):
        return _ignore(state, event, "stale_task_id", {"event_task_id": event.task_id})
    if state.state is not SessionState.STREAMING:
        return _ignore(state, event, "result_outside_streaming")

    transcription = TranscriptionEvent(
        text=event.text,
        is_final=event.sentence_end,
        begin_time_ms=event.begin_time_ms,
        end_time_ms=event.end_time_ms,
        task_id=event.task_id,
        usage_duration_s=event.usage_duration_s,
    )

    if event.sentence_end:
        log = _log(
            state,
            event,
            "sentence_final",
            {
                "text": event.text,
                "begin_time_ms": event.begin_time_ms,
                "end_time_ms": event.end_time_ms,
            },
        )
    else:
        log = _log(state, event, "result_partial", {"chars": len(event.text)}, level="debug")

    return state, (NotifyResult(transcription=transcription), log)


def _on_task_finished(state: AsrSessionState, event: TaskFinished) -> Transition:
    if state.state is SessionState.CLOSING:
        return _ignore(state, event, "session_closed")
    if not _is_current_task(state, event.task_id):
        return _ignore(state, event, "stale_task_id", {"event_task_id": event.task_id})

    return _end_task(
        state,
        event,
        decision="task_finished",
        close_reason="task_finished",
        notify=NotifyComplete(task_id=event.task_id),
        details={"audio_chunks_sent": state.audio_chunks_sent},
    )


def _on_task_failed(state: AsrSessionState, event: TaskFailed) -> Transition:
    if state.state is SessionState.CLOSING:
        return _ignore(state, event, "session_closed")
    if not _is_current_task(state, event.task_id):
        return _ignore(state, event, "stale_task_id", {"event_task_id": event.task_id})

    code = event.error_code or ERROR_UNKNOWN
    message = event.error_message or ""

    return _end_task(
        state,
        event,
        decision="task_failed",
        close_reason="task_failed",
        notify=NotifyError(error_code=code, error_message=message),
        details={
            "error_code": code,
            "error_message": message,
            "audio_chunks_sent": state.audio_chunks_sent,
        },
        level="error",
        last_error=f"{code}: {message}",
    )


def _on_task_start_timeout(state: AsrSessionState, event: TaskStartTimeout) -> Transition:
    if (
        not _is_current_task(state, event.task_id)
        or state.state is not SessionState.AWAITING_TASK_START
    ):
        return _ignore(state, event, "stale_timer", {"event_task_id": event.task_id})

    assert state.task is not None
    assert state.connection_id is not None
    policy = state.settings.start_retry

    if should_retry(policy, state.start_attempt):
        attempt = next_attempt(state.start_attempt)
        timeout_ms = get_timeout_ms(policy, attempt)
        new_state = replace(state, start_attempt=attempt)
        return new_state, _logs_last((
            SendRunTask(connection_id=state.connection_id, task_id=state.task.task_id),
            StartTimer(
                timer_id=TIMER_TASK_START,
                duration_ms=timeout_ms,
                timeout_event_type=EventType.TASK_START_TIMEOUT,
                task_id=state.task.task_id,
            ),
            _log(
                new_state,
                event,
                "retry_run_task",
                {"attempt": attempt.attempt, "timeout_ms": timeout_ms},
                level="warning",
            ),
        ))

    attempts = state.start_attempt.attempt + 1
    message = f"task-started not received after {attempts} run-task attempt(s)"
    return _end_task(
        state,
        event,
        decision="task_start_gave_up",
        close_reason="task_start_timeout",
        notify=NotifyError(error_code=ERROR_TASK_START_TIMEOUT, error_message=message),
        details={"attempts": attempts},
        level="error",
        last_error=f"{ERROR_TASK_START_TIMEOUT}: {message}",
    )


def _on_audio_chunk(state: AsrSessionState, event: AudioChunk) -> Transition:
    if state.state is SessionState.STREAMING and state.connection_id is not None:
        new_state = replace(state, audio_chunks_sent=state.audio_chunks_sent + 1)
        return new_state, (
            SendAudio(connection_id=state.connection_id, pcm_bytes=event.pcm_bytes),
        )

    if state.state is SessionState.CLOSING:
        return _ignore(state, event, "session_closed", level="debug")

    if state.settings.buffer_pre_start_audio and state.state in (
        SessionState.CONNECTING,
        SessionState.AWAITING_TASK_START,
    ):
        pending = state.pending_audio + (event.pcm_bytes,)
        pending_bytes = state.pending_audio_bytes + len(event.pcm_bytes)
        evicted = 0
        # Bounded: evict oldest first
        while pending and pending_bytes > state.settings.pre_start_audio_max_bytes:
            pending_bytes -= len(pending[0])
            pending = pending[1:]
            evicted += 1

        new_state = replace(
            state,
            pending_audio=pending,
            pending_audio_bytes=pending_bytes,
            audio_chunks_dropped=state.audio_chunks_dropped + evicted,
        )
        return new_state, (
            _log(
                new_state,
                event,
                "hold_pre_start_audio",
                {"pending_chunks": len(pending), "evicted": evicted},
                level="debug",
            ),
        )

    new_state = replace(state, audio_chunks_dropped=state.audio_chunks_dropped + 1)
    return new_state, (
        _log(
            new_state,
            event,
            "drop_audio",
            {"dropped_total": new_state.audio_chunks_dropped},
            level="debug",
        ),
    )


def _on_destroy_requested(state: AsrSessionState, event: DestroyRequested) -> Transition:
    if state.state is SessionState.CLOSING:
        return _ignore(state, event, "already_closing")

    cmds: list[Command] = [
        CancelTimer(timer_id=TIMER_TASK_START),
        CancelTimer(timer_id=TIMER_RECONNECT),
    ]

    # A run-task is live once the transport is open
    if (
        state.state in (SessionState.AWAITING_TASK_START, SessionState.STREAMING)
        and state.task is not None
        and state.connection_id is not None
    ):
        cmds.append(
            SendFinishTask(connection_id=state.connection_id, task_id=state.task.task_id)
        )

    if state.connection_id is not None:
        cmds.append(CloseTransport(connection_id=state.connection_id, reason="destroyed"))

    new_state = replace(
        _clear_task_fields(state),
        state=SessionState.CLOSING,
        connection_id=None,
        reconnect_scheduled=False,
    )

    cmds.append(
        _log(
            state,
            event,
            "destroy",
            {
                "audio_chunks_sent": state.audio_chunks_sent,
                "audio_chunks_dropped": state.audio_chunks_dropped,
            },
        )
    )
    cmds.append(_state_changed(state, new_state, event, "destroy"))

    return new_state, _logs_last(tuple(cmds))


# =============================================================================
# Reducer entrypoint
# =============================================================================

def reduce(state: AsrSessionState, event: Event) -> Transition:
    """
    Pure reducer for the ASR session state machine.

    Given the current session state and a single event, returns:
    - the next state
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (state, event) pair is handled or explicitly ignored
    - CLOSING is terminal: nothing but ignore logs (and closing of late
      transports) is ever emitted once it is reached
    """
    if isinstance(event, AudioChunk):
        return _on_audio_chunk(state, event)

    if isinstance(event, ResultGenerated):
        return _on_result_generated(state, event)

    if isinstance(event, ConnectRequested):
        return _on_connect_requested(state, event)

    if isinstance(event, ReconnectDue):
        return _on_reconnect_due(state, event)

    if isinstance(event, TransportOpened):
        return _on_transport_opened(state, event)

    if isinstance(event, TransportClosed):
        return _on_transport_closed(state, event)

    if isinstance(event, TaskStarted):
        return _on_task_started(state, event)

    if isinstance(event, TaskFinished):
        return _on_task_finished(state, event)

    if isinstance(event, TaskFailed):
        return _on_task_failed(state, event)

    if isinstance(event, TaskStartTimeout):
        return _on_task_start_timeout(state, event)

    if isinstance(event, DestroyRequested):
        return _on_destroy_requested(state, event)

    if isinstance(event, UnknownServerEvent):
        return _ignore(
            state,
            event,
            "unknown_server_event",
            {"name": event.name, "event_task_id": event.task_id},
            level="warning",
        )

    return _ignore(state, event, "unhandled_event")
