"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No session logic
- No protocol constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    ASR_HEARTBEAT_DEFAULT,
    ASR_MODEL_DEFAULT,
    AUDIO_DIR_DEFAULT,
    BUFFER_PRE_START_AUDIO_DEFAULT,
    DASHSCOPE_WS_URL,
    FLUSH_INTERVAL_S,
    MAX_SESSIONS_DEFAULT,
    OBSERVER_QUEUE_MAX,
    PRE_START_AUDIO_MAX_BYTES,
    RECONNECT_DELAY_MS,
    TASK_START_BACKOFF_FACTOR,
    TASK_START_MAX_RETRIES,
    TASK_START_MAX_TIMEOUT_MS,
    TASK_START_TIMEOUT_MS,
)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_optional_int(name: str, default: int | None) -> int | None:
    """Empty or negative values mean "no limit"."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    raw = raw.strip()
    if raw == "":
        return None
    value = int(raw)
    return value if value >= 0 else None


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the app factory, registry and session settings.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3000

    # ------------------------------------------------------------------
    # Cloud ASR
    # ------------------------------------------------------------------

    dashscope_api_key: str | None = None
    dashscope_ws_url: str = DASHSCOPE_WS_URL
    asr_model: str = ASR_MODEL_DEFAULT
    asr_heartbeat: bool = ASR_HEARTBEAT_DEFAULT

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    task_start_timeout_ms: int = TASK_START_TIMEOUT_MS
    task_start_max_retries: int | None = TASK_START_MAX_RETRIES
    task_start_backoff_factor: float = TASK_START_BACKOFF_FACTOR
    task_start_max_timeout_ms: int = TASK_START_MAX_TIMEOUT_MS
    reconnect_delay_ms: int = RECONNECT_DELAY_MS
    buffer_pre_start_audio: bool = BUFFER_PRE_START_AUDIO_DEFAULT
    pre_start_audio_max_bytes: int = PRE_START_AUDIO_MAX_BYTES
    max_sessions: int = MAX_SESSIONS_DEFAULT

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    persist_audio: bool = False
    audio_dir: str = AUDIO_DIR_DEFAULT
    flush_interval_s: float = FLUSH_INTERVAL_S

    # ------------------------------------------------------------------
    # Fan-out / observability
    # ------------------------------------------------------------------

    observer_queue_max: int = OBSERVER_QUEUE_MAX
    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            host=os.environ.get("HOST", "0.0.0.0"),
            port=int(os.environ.get("PORT", "3000")),

            dashscope_api_key=os.environ.get("DASHSCOPE_API_KEY") or None,
            dashscope_ws_url=os.environ.get("DASHSCOPE_WS_URL", DASHSCOPE_WS_URL),
            asr_model=os.environ.get("ASR_MODEL", ASR_MODEL_DEFAULT),
            asr_heartbeat=_env_flag("ASR_HEARTBEAT", ASR_HEARTBEAT_DEFAULT),

            task_start_timeout_ms=int(
                os.environ.get("TASK_START_TIMEOUT_MS", str(TASK_START_TIMEOUT_MS))
            ),
            task_start_max_retries=_env_optional_int(
                "TASK_START_MAX_RETRIES", TASK_START_MAX_RETRIES
            ),
            task_start_backoff_factor=float(
                os.environ.get("TASK_START_BACKOFF_FACTOR", str(TASK_START_BACKOFF_FACTOR))
            ),
            task_start_max_timeout_ms=int(
                os.environ.get("TASK_START_MAX_TIMEOUT_MS", str(TASK_START_MAX_TIMEOUT_MS))
            ),
            reconnect_delay_ms=int(
                os.environ.get("RECONNECT_DELAY_MS", str(RECONNECT_DELAY_MS))
            ),
            buffer_pre_start_audio=_env_flag(
                "BUFFER_PRE_START_AUDIO", BUFFER_PRE_START_AUDIO_DEFAULT
            ),
            pre_start_audio_max_bytes=int(
                os.environ.get("PRE_START_AUDIO_MAX_BYTES", str(PRE_START_AUDIO_MAX_BYTES))
            ),
            max_sessions=int(os.environ.get("MAX_SESSIONS", str(MAX_SESSIONS_DEFAULT))),

            persist_audio=_env_flag("PERSIST_AUDIO", False),
            audio_dir=os.environ.get("AUDIO_DIR", AUDIO_DIR_DEFAULT),
            flush_interval_s=float(os.environ.get("FLUSH_INTERVAL_S", str(FLUSH_INTERVAL_S))),

            observer_queue_max=int(
                os.environ.get("OBSERVER_QUEUE_MAX", str(OBSERVER_QUEUE_MAX))
            ),
            enable_json_logs=_env_flag("ENABLE_JSON_LOGS", True),
        )
