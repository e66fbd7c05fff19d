"""
Event definitions for the ASR session reducer.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Correlation:
- Cloud protocol events carry the task_id they were sent for.
- Transport events carry the connection_id of the attempt that opened the
  transport (equal to that attempt's task_id).
- Events that create a new attempt (ConnectRequested, ReconnectDue) carry
  the freshly generated task_id, injected by the runtime.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Owner requests
    # ------------------------------------------------------------------
    CONNECT_REQUESTED = "CONNECT_REQUESTED"
    AUDIO_CHUNK = "AUDIO_CHUNK"
    DESTROY_REQUESTED = "DESTROY_REQUESTED"

    # ------------------------------------------------------------------
    # Cloud transport
    # ------------------------------------------------------------------
    TRANSPORT_OPENED = "TRANSPORT_OPENED"
    TRANSPORT_CLOSED = "TRANSPORT_CLOSED"

    # ------------------------------------------------------------------
    # Cloud protocol
    # ------------------------------------------------------------------
    TASK_STARTED = "TASK_STARTED"
    RESULT_GENERATED = "RESULT_GENERATED"
    TASK_FINISHED = "TASK_FINISHED"
    TASK_FAILED = "TASK_FAILED"
    UNKNOWN_SERVER_EVENT = "UNKNOWN_SERVER_EVENT"

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    TASK_START_TIMEOUT = "TASK_START_TIMEOUT"
    RECONNECT_DUE = "RECONNECT_DUE"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


@dataclass(frozen=True)
class TaskScopedEvent(Event):
    """Event bound to a specific recognition task."""
    task_id: str


# =============================================================================
# Owner Requests
# =============================================================================

@dataclass(frozen=True)
class ConnectRequested(TaskScopedEvent):
    """connect(): open a transport for a new task (task_id is fresh)."""


@dataclass(frozen=True)
class AudioChunk(Event):
    """One inbound hardware audio chunk, opaque bytes."""
    pcm_bytes: bytes


@dataclass(frozen=True)
class DestroyRequested(Event):
    """destroy(): terminal teardown."""


# =============================================================================
# Transport Events
# =============================================================================

@dataclass(frozen=True)
class TransportOpened(Event):
    connection_id: str


@dataclass(frozen=True)
class TransportClosed(Event):
    """Transport closed or failed (including failure to open)."""
    connection_id: str
    reason: str | None = None


# =============================================================================
# Cloud Protocol Events
# =============================================================================

@dataclass(frozen=True)
class TaskStarted(TaskScopedEvent):
    pass


@dataclass(frozen=True)
class ResultGenerated(TaskScopedEvent):
    text: str
    sentence_end: bool
    begin_time_ms: int | None = None
    end_time_ms: int | None = None
    usage_duration_s: float | None = None


@dataclass(frozen=True)
class TaskFinished(TaskScopedEvent):
    pass


@dataclass(frozen=True)
class TaskFailed(TaskScopedEvent):
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class UnknownServerEvent(TaskScopedEvent):
    """Well-formed control frame with an event name the reducer does not know."""
    name: str | None = None


# =============================================================================
# Timer Events
# =============================================================================

@dataclass(frozen=True)
class TaskStartTimeout(TaskScopedEvent):
    """task-started did not arrive in time for task_id."""


@dataclass(frozen=True)
class ReconnectDue(TaskScopedEvent):
    """Reconnect delay elapsed; task_id is the fresh id for the new attempt."""
