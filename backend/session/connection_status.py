"""
Connection status tracking for hardware sessions.

Connection lifecycle is tracked separately from the ASR state machine:
the hardware socket can be UP while the cloud task is reconnecting.

This is pure data owned by the SessionRegistry, not by ASR session state.
"""
from enum import Enum

class ConnectionStatus(Enum):
    """
    Hardware socket lifecycle status.

    Independent of recognition.enums.state.SessionState.
    """
    UP = "UP"              # Socket accepted, frames being routed
    CLOSING = "CLOSING"    # Unregister in progress (flush + ASR teardown)
    DOWN = "DOWN"          # Removed from the registry
