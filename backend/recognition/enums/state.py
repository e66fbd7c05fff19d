"""
ASR session state enumeration.

Rules:
- This enum defines ONLY the recognition lifecycle states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class SessionState(str, Enum):
    """
    Lifecycle of one hardware client's cloud recognition task.

    "Reconnecting" is not a separate member: it is DISCONNECTED with a
    reconnect timer pending (AsrSessionState.reconnect_scheduled).
    CLOSING is terminal.
    """

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    AWAITING_TASK_START = "AWAITING_TASK_START"
    STREAMING = "STREAMING"
    CLOSING = "CLOSING"
