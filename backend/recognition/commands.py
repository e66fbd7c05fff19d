"""
Side-effect command definitions for the ASR session.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from recognition.events import EventType
from recognition.transcription import TranscriptionEvent

# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    Stable discriminants used for logging and runtime dispatch.
    """

    # Transport
    OPEN_TRANSPORT = "OPEN_TRANSPORT"
    CLOSE_TRANSPORT = "CLOSE_TRANSPORT"

    # Cloud protocol
    SEND_RUN_TASK = "SEND_RUN_TASK"
    SEND_FINISH_TASK = "SEND_FINISH_TASK"
    SEND_AUDIO = "SEND_AUDIO"

    # Owner notifications
    NOTIFY_RESULT = "NOTIFY_RESULT"
    NOTIFY_COMPLETE = "NOTIFY_COMPLETE"
    NOTIFY_ERROR = "NOTIFY_ERROR"

    # Timers
    START_TIMER = "START_TIMER"
    CANCEL_TIMER = "CANCEL_TIMER"

    # Observability
    LOG_EVENT = "LOG_EVENT"
    RECORD_METRIC = "RECORD_METRIC"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Transport Commands
# =============================================================================

@dataclass(frozen=True)
class OpenTransport(Command):
    """Open a new cloud transport for the attempt identified by connection_id."""
    connection_id: str
    command_type: CommandType = CommandType.OPEN_TRANSPORT


@dataclass(frozen=True)
class CloseTransport(Command):
    connection_id: str
    reason: str
    command_type: CommandType = CommandType.CLOSE_TRANSPORT


# =============================================================================
# Cloud Protocol Commands
# =============================================================================

@dataclass(frozen=True)
class SendRunTask(Command):
    connection_id: str
    task_id: str
    command_type: CommandType = CommandType.SEND_RUN_TASK


@dataclass(frozen=True)
class SendFinishTask(Command):
    connection_id: str
    task_id: str
    command_type: CommandType = CommandType.SEND_FINISH_TASK


@dataclass(frozen=True)
class SendAudio(Command):
    """Forward one audio chunk verbatim as a binary frame."""
    connection_id: str
    pcm_bytes: bytes
    command_type: CommandType = CommandType.SEND_AUDIO


# =============================================================================
# Owner Notifications
# =============================================================================

@dataclass(frozen=True)
class NotifyResult(Command):
    transcription: TranscriptionEvent
    command_type: CommandType = CommandType.NOTIFY_RESULT


@dataclass(frozen=True)
class NotifyComplete(Command):
    task_id: str
    command_type: CommandType = CommandType.NOTIFY_COMPLETE


@dataclass(frozen=True)
class NotifyError(Command):
    error_code: str
    error_message: str
    command_type: CommandType = CommandType.NOTIFY_ERROR


# =============================================================================
# Timer Commands
# =============================================================================

@dataclass(frozen=True)
class StartTimer(Command):
    """
    Request to start (or replace) a named timer.

    On expiration, the runtime must inject the specified timeout event.
    task_id is carried into TASK_START_TIMEOUT events; RECONNECT_DUE
    events get a fresh id from the runtime instead.
    """
    timer_id: str
    duration_ms: int
    timeout_event_type: EventType
    task_id: str | None = None
    command_type: CommandType = CommandType.START_TIMER


@dataclass(frozen=True)
class CancelTimer(Command):
    """Request to cancel a previously scheduled timer."""
    timer_id: str
    command_type: CommandType = CommandType.CANCEL_TIMER


# =============================================================================
# Observability Commands
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Request to emit a structured observability event."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT


@dataclass(frozen=True)
class RecordMetric(Command):
    """Request to record a metric value."""
    name: str
    value: float
    command_type: CommandType = CommandType.RECORD_METRIC
