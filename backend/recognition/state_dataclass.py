"""
Authoritative ASR session state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need, including the
  immutable per-session settings.
- No behavior beyond construction helpers.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from constants import (
    BUFFER_PRE_START_AUDIO_DEFAULT,
    PRE_START_AUDIO_MAX_BYTES,
    RECONNECT_DELAY_MS,
)
from recognition.enums.state import SessionState
from recognition.retry import RetryAttempt, StartRetryPolicy
from recognition.task_ids import AsrTask

if TYPE_CHECKING:
    from config import AppConfig


# =============================================================================
# Settings
# =============================================================================

@dataclass(frozen=True)
class SessionSettings:
    """Per-session behavior knobs, fixed for the lifetime of the session."""

    start_retry: StartRetryPolicy = field(default_factory=StartRetryPolicy)
    reconnect_delay_ms: int = RECONNECT_DELAY_MS

    # Hold audio that arrives before task-started and send it right after.
    buffer_pre_start_audio: bool = BUFFER_PRE_START_AUDIO_DEFAULT
    pre_start_audio_max_bytes: int = PRE_START_AUDIO_MAX_BYTES

    @staticmethod
    def from_config(config: AppConfig) -> SessionSettings:
        return SessionSettings(
            start_retry=StartRetryPolicy(
                timeout_ms=config.task_start_timeout_ms,
                max_retries=config.task_start_max_retries,
                backoff_factor=config.task_start_backoff_factor,
                max_timeout_ms=config.task_start_max_timeout_ms,
            ),
            reconnect_delay_ms=config.reconnect_delay_ms,
            buffer_pre_start_audio=config.buffer_pre_start_audio,
            pre_start_audio_max_bytes=config.pre_start_audio_max_bytes,
        )


# =============================================================================
# Session State
# =============================================================================

@dataclass(frozen=True)
class AsrSessionState:
    """Immutable snapshot of one ASR session."""

    settings: SessionSettings = field(default_factory=SessionSettings)

    # ------------------------------------------------------------------
    # Control state
    # ------------------------------------------------------------------
    state: SessionState = SessionState.DISCONNECTED

    # The live task; None when no task may be correlated.
    task: AsrTask | None = None

    # Attempt that owns the currently open (or opening) transport.
    # Outlives `task` after task-finished / task-failed until the
    # transport actually closes.
    connection_id: str | None = None

    reconnect_scheduled: bool = False

    # ------------------------------------------------------------------
    # Task start
    # ------------------------------------------------------------------
    start_attempt: RetryAttempt = RetryAttempt(attempt=0)

    # ------------------------------------------------------------------
    # Audio accounting (per task)
    # ------------------------------------------------------------------
    pending_audio: tuple[bytes, ...] = ()
    pending_audio_bytes: int = 0
    audio_chunks_sent: int = 0
    audio_chunks_dropped: int = 0

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------
    last_error: str | None = None
