"""
CONSTANTS
---------
Single source of truth for behavioral numbers in the relay.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- Deployment overrides go through config.AppConfig, whose defaults come from here.
- No magic numbers elsewhere in the codebase.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final

# =============================================================================
# Audio Format (PCM16 mono @ 16kHz, as captured by the hardware clients)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_BIT_DEPTH: Final[int] = 16

# =============================================================================
# Accumulation buffer / persistence
# =============================================================================

BUFFER_DURATION_MS: Final[int] = 10_000
FLUSH_INTERVAL_S: Final[float] = 30.0
AUDIO_DIR_DEFAULT: Final[str] = "public/audio"

# =============================================================================
# Cloud ASR (DashScope realtime recognition)
# =============================================================================

DASHSCOPE_WS_URL: Final[str] = "wss://dashscope.aliyuncs.com/api-ws/v1/inference/"
ASR_MODEL_DEFAULT: Final[str] = "paraformer-realtime-v2"
ASR_HEARTBEAT_DEFAULT: Final[bool] = True

# Control-message vocabulary
ASR_STREAMING_MODE: Final[str] = "duplex"
ASR_TASK_GROUP: Final[str] = "audio"
ASR_TASK: Final[str] = "asr"
ASR_FUNCTION: Final[str] = "recognition"
ASR_AUDIO_FORMAT: Final[str] = "pcm"

TASK_ID_HEX_LEN: Final[int] = 32

# =============================================================================
# Session timing
# =============================================================================

TASK_START_TIMEOUT_MS: Final[int] = 5_000
# None = retry run-task forever while the transport stays open
TASK_START_MAX_RETRIES: Final[int | None] = None
TASK_START_BACKOFF_FACTOR: Final[float] = 1.0
TASK_START_MAX_TIMEOUT_MS: Final[int] = 30_000

RECONNECT_DELAY_MS: Final[int] = 3_000

# Upper bound for waiting on transport readers during destroy()
SESSION_CLOSE_TIMEOUT_S: Final[float] = 2.0

# =============================================================================
# Pre-start audio (held only when BUFFER_PRE_START_AUDIO is enabled)
# =============================================================================

BUFFER_PRE_START_AUDIO_DEFAULT: Final[bool] = False
PRE_START_AUDIO_MAX_BYTES: Final[int] = 5 * AUDIO_SAMPLE_RATE_HZ * 2  # ~5s

# =============================================================================
# Registry / fan-out limits
# =============================================================================

MAX_SESSIONS_DEFAULT: Final[int] = 64
OBSERVER_QUEUE_MAX: Final[int] = 256

# Close code sent to hardware clients when the registry is full (try again later)
WS_CLOSE_TRY_AGAIN_LATER: Final[int] = 1013

# Known cloud error code worth extra diagnostics
ASR_NO_INPUT_AUDIO_ERROR: Final[str] = "NO_INPUT_AUDIO_ERROR"


# =============================================================================
# Convenience Bundles
# =============================================================================

@dataclass(frozen=True)
class AudioFormat:
    """
    Immutable bundle describing the PCM audio format.

    This is a convenience wrapper for passing format metadata around;
    it is NOT a second source of truth.
    """
    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ
    channels: int = AUDIO_CHANNELS
    bit_depth: int = AUDIO_BIT_DEPTH

    @property
    def bytes_per_sample(self) -> int:
        """Bytes per sample across all channels."""
        return self.channels * (self.bit_depth // 8)

    @property
    def bytes_per_second(self) -> int:
        return self.sample_rate_hz * self.bytes_per_sample

    def bytes_for_ms(self, duration_ms: int) -> int:
        """Byte length of `duration_ms` of audio in this format."""
        return (duration_ms * self.bytes_per_second) // 1000

    def config_event(self) -> dict[str, Any]:
        """Playback configuration sent to every new observer."""
        return {
            "type": "config",
            "sampleRate": self.sample_rate_hz,
            "channels": self.channels,
            "bitDepth": self.bit_depth,
        }


AUDIO_FORMAT_V1: Final[AudioFormat] = AudioFormat()

BUFFER_SIZE_BYTES: Final[int] = AUDIO_FORMAT_V1.bytes_for_ms(BUFFER_DURATION_MS)
