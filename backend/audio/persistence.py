# backend/audio/persistence.py
"""
Persistence sinks for accumulated hardware audio.

A sink receives a drained accumulation buffer and stores it. Sinks are
synchronous; the session registry runs them in a worker thread so the
event loop never blocks on disk IO.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import soundfile as sf

from audio.pcm import (
    InvalidPcmBuffer,
    duration_seconds,
    peak_dbfs,
    to_int16_samples,
    validate_pcm_buffer,
)
from constants import AUDIO_FORMAT_V1, AudioFormat
from observability.logger import log_event


class PersistenceSink(Protocol):
    """flush(client_id, data) stores data and returns where it went (or None)."""

    def flush(self, client_id: str, data: bytes) -> Path | None:
        ...


def _timestamp(now: datetime) -> str:
    # 2024-05-01T12-30-45
    return now.strftime("%Y-%m-%dT%H-%M-%S")


def _finite_or_none(value: float) -> float | None:
    # Silence is -inf dBFS, which is not valid JSON
    return round(value, 1) if math.isfinite(value) else None


class WavFileSink:
    """
    Writes each flush as a 16-bit PCM WAV file:

        <output_dir>/audio_<client_id>_<timestamp>.wav

    Empty and odd-length buffers are refused (logged, nothing written).
    Flushes landing in the same second get a numeric suffix instead of
    overwriting.
    """

    def __init__(
        self,
        output_dir: str | Path,
        *,
        audio_format: AudioFormat = AUDIO_FORMAT_V1,
    ) -> None:
        self._output_dir = Path(output_dir)
        self._format = audio_format

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def flush(self, client_id: str, data: bytes) -> Path | None:
        try:
            validate_pcm_buffer(data, self._format)
        except InvalidPcmBuffer as e:
            log_event({
                "level": "warning",
                "event_type": "AUDIO_FLUSH_REFUSED",
                "client_id": client_id,
                "bytes": len(data),
                "reason": str(e),
            })
            return None

        self._output_dir.mkdir(parents=True, exist_ok=True)
        path = self._unique_path(client_id, datetime.now(timezone.utc))

        samples = to_int16_samples(data)
        if self._format.channels > 1:
            samples = samples.reshape(-1, self._format.channels)

        try:
            sf.write(
                str(path),
                samples,
                self._format.sample_rate_hz,
                subtype="PCM_16",
                format="WAV",
            )
        except Exception:
            path.unlink(missing_ok=True)
            raise

        log_event({
            "event_type": "AUDIO_SAVED",
            "client_id": client_id,
            "path": str(path),
            "bytes": len(data),
            "duration_s": round(duration_seconds(data, self._format), 3),
            "peak_dbfs": _finite_or_none(peak_dbfs(data)),
        })
        return path

    def _unique_path(self, client_id: str, now: datetime) -> Path:
        """Claim an unused file name; the empty file is created here."""
        stem = f"audio_{client_id}_{_timestamp(now)}"
        n = 0
        while True:
            path = self._output_dir / (f"{stem}.wav" if n == 0 else f"{stem}_{n}.wav")
            try:
                with open(path, "xb"):
                    pass
                return path
            except FileExistsError:
                n += 1


class NullSink:
    """Discards audio. Used when persistence is disabled."""

    def flush(self, client_id: str, data: bytes) -> Path | None:
        return None
