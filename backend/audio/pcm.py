"""PCM16 helpers used by audio persistence."""
import numpy as np

from constants import AUDIO_FORMAT_V1, AudioFormat


class InvalidPcmBuffer(ValueError):
    """Raised when a buffer cannot be interpreted as whole PCM16 samples."""


def validate_pcm_buffer(pcm_bytes: bytes, audio_format: AudioFormat = AUDIO_FORMAT_V1) -> None:
    """
    Reject buffers that cannot be written as audio.

    Empty buffers and buffers that end mid-sample are refused.
    """
    if not pcm_bytes:
        raise InvalidPcmBuffer("empty audio buffer")
    if len(pcm_bytes) % audio_format.bytes_per_sample != 0:
        raise InvalidPcmBuffer(
            f"buffer length {len(pcm_bytes)} is not a multiple of "
            f"{audio_format.bytes_per_sample} bytes per sample"
        )


def to_int16_samples(pcm_bytes: bytes) -> np.ndarray:
    """
    View PCM16 little-endian bytes as int16 samples.

    No resampling. No channel mixing. Caller validates length first.
    """
    return np.frombuffer(pcm_bytes, dtype="<i2")


def duration_seconds(pcm_bytes: bytes, audio_format: AudioFormat = AUDIO_FORMAT_V1) -> float:
    return len(pcm_bytes) / audio_format.bytes_per_second


def peak_dbfs(pcm_bytes: bytes) -> float:
    """Peak level of the buffer in dBFS (-inf for digital silence)."""
    samples = to_int16_samples(pcm_bytes)
    if samples.size == 0:
        return float("-inf")
    peak = int(np.max(np.abs(samples.astype(np.int32))))
    if peak == 0:
        return float("-inf")
    return float(20.0 * np.log10(peak / 32768.0))
