"""
Cloud ASR transport contract.

This module defines the *interface only*: no task correlation, retries,
timers, or state machine decisions live here.

Key invariants:
- One transport instance = one cloud connection. Instances are never
  reopened; a reconnect asks the factory for a fresh one.
- Task ids are owned by the session runtime. Transports never generate
  or inspect them.
- Text frames carry JSON control messages; binary frames carry audio.
  The transport preserves the frame type in both directions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable


class CloudTransport(ABC):
    """
    Abstract duplex connection to the cloud recognition service.

    Implementations are responsible for:
    - Authenticating while opening the connection
    - Sending text (control) and binary (audio) frames
    - Yielding inbound frames, preserving text vs binary

    Non-responsibilities:
    - No JSON parsing (see protocol.asr_codec)
    - No reconnect policy
    - No buffering of audio while disconnected
    """

    @abstractmethod
    async def open(self) -> None:
        """
        Open the connection.

        Raises on failure; the caller treats that as a closed transport.
        """
        raise NotImplementedError

    @abstractmethod
    async def send_text(self, text: str) -> None:
        """Send one text frame. Raises if the connection is not open."""
        raise NotImplementedError

    @abstractmethod
    async def send_bytes(self, data: bytes) -> None:
        """Send one binary frame. Raises if the connection is not open."""
        raise NotImplementedError

    @abstractmethod
    def receive(self) -> AsyncIterator[str | bytes]:
        """
        Iterate inbound frames until the connection closes.

        A normal close ends the iteration. Abnormal failures may raise.
        """
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """
        Close the connection.

        Contract:
        - Idempotent: repeated calls are safe.
        - Ends any pending receive() iteration.
        """
        raise NotImplementedError

    @property
    @abstractmethod
    def is_open(self) -> bool:
        raise NotImplementedError


TransportFactory = Callable[[], CloudTransport]
