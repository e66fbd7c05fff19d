"""
Task-start retry policy.

Purpose:
- Decide whether run-task is re-sent after a start timeout
- Compute the timeout to arm for each attempt
- Keep reducer pure

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass

from constants import (
    TASK_START_BACKOFF_FACTOR,
    TASK_START_MAX_RETRIES,
    TASK_START_MAX_TIMEOUT_MS,
    TASK_START_TIMEOUT_MS,
)


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable retry attempt counter.

    Semantics:
    - attempt == 0 represents the initial run-task (no retry yet).
    - attempt >= 1 represents the Nth re-send.
    """
    attempt: int


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """Return a new RetryAttempt with attempt incremented by 1."""
    return RetryAttempt(attempt=current.attempt + 1)


def reset_attempt() -> RetryAttempt:
    """Returns a fresh retry attempt counter."""
    return RetryAttempt(attempt=0)


# =============================================================================
# Policy
# =============================================================================

@dataclass(frozen=True)
class StartRetryPolicy:
    """
    How long to wait for task-started and how often to re-send run-task.

    max_retries:
        None retries for as long as the transport stays open.
    backoff_factor:
        Multiplier applied to the timeout on every retry (1.0 = fixed).
    max_timeout_ms:
        Ceiling for the grown timeout.
    """
    timeout_ms: int = TASK_START_TIMEOUT_MS
    max_retries: int | None = TASK_START_MAX_RETRIES
    backoff_factor: float = TASK_START_BACKOFF_FACTOR
    max_timeout_ms: int = TASK_START_MAX_TIMEOUT_MS


def should_retry(policy: StartRetryPolicy, attempt: RetryAttempt) -> bool:
    """
    Returns True if run-task may be sent again.

    attempt = number of re-sends already performed
    """
    if policy.max_retries is None:
        return True
    return attempt.attempt < policy.max_retries


def get_timeout_ms(policy: StartRetryPolicy, attempt: RetryAttempt) -> int:
    """Start timeout to arm for the given attempt."""
    if policy.backoff_factor <= 1.0:
        return policy.timeout_ms
    # Clamp before exponentiation grows without bound
    grown = policy.timeout_ms * (policy.backoff_factor ** min(attempt.attempt, 32))
    return int(min(grown, max(policy.max_timeout_ms, policy.timeout_ms)))
