"""
Hardware session container.

- Owns one ASR session, one accumulation buffer, one hardware peer
- Owned and mutated by SessionRegistry
- NOT a state machine
- Contains no routing logic
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from audio.buffer import AccumulationBuffer
from recognition.runtime import AsrSession
from session.connection_status import ConnectionStatus
from session.peer import PeerConnection


@dataclass
class HardwareSession:
    """Mutable runtime container for a single hardware client."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    client_id: str
    peer: PeerConnection
    asr: AsrSession
    buffer: AccumulationBuffer
    created_at: float = field(default_factory=time.time)

    connection_status: ConnectionStatus = ConnectionStatus.UP

    # ------------------------------------------------------------------
    # Counters (observability)
    # ------------------------------------------------------------------

    chunks_received: int = 0
    bytes_received: int = 0
    flushes_scheduled: int = 0

    def record_chunk(self, chunk: bytes) -> None:
        self.chunks_received += 1
        self.bytes_received += len(chunk)
