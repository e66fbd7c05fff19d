# backend/audio/buffer.py
"""
Per-client accumulation buffer for audio persistence.

Requirements:
- Append only, preserving receipt order
- Depth measured in seconds as well as bytes
- Threshold crossing is reported to the caller, which decides when to
  drain and hand the bytes to a persistence sink
- Deterministic, synchronous behavior (no IO)
"""

from __future__ import annotations

from constants import AUDIO_FORMAT_V1, BUFFER_SIZE_BYTES, AudioFormat


class AccumulationBuffer:
    """
    Growable byte buffer with a flush threshold.

    The buffer never drops audio: it only grows until drained. Callers
    drain it when append() reports the threshold was reached, on the
    periodic flush, and at teardown.
    """

    def __init__(
        self,
        *,
        threshold_bytes: int = BUFFER_SIZE_BYTES,
        audio_format: AudioFormat = AUDIO_FORMAT_V1,
    ) -> None:
        if threshold_bytes <= 0:
            raise ValueError("threshold_bytes must be > 0")

        self._threshold_bytes = threshold_bytes
        self._format = audio_format
        self._data = bytearray()
        self.chunks_appended: int = 0

    # -------------------------
    # Core operations
    # -------------------------

    def append(self, chunk: bytes) -> bool:
        """
        Append one chunk.

        Returns:
            True if the buffer is at or above the flush threshold.
        """
        self._data.extend(chunk)
        self.chunks_appended += 1
        return len(self._data) >= self._threshold_bytes

    def drain(self) -> bytes:
        """Return everything buffered and reset to empty."""
        data = bytes(self._data)
        self._data.clear()
        return data

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return len(self._data)

    def is_empty(self) -> bool:
        return not self._data

    @property
    def size(self) -> int:
        return len(self._data)

    @property
    def threshold_bytes(self) -> int:
        return self._threshold_bytes

    def depth_seconds(self) -> float:
        """Buffered audio duration in seconds."""
        return len(self._data) / self._format.bytes_per_second
