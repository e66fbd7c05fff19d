# pylint: disable=missing-module-docstring,missing-function-docstring
import pytest

from config import AppConfig
from constants import BUFFER_SIZE_BYTES, DASHSCOPE_WS_URL, RECONNECT_DELAY_MS
from recognition.state_dataclass import SessionSettings


_ENV_VARS = (
    "ENV", "LOG_LEVEL", "HOST", "PORT",
    "DASHSCOPE_API_KEY", "DASHSCOPE_WS_URL", "ASR_MODEL", "ASR_HEARTBEAT",
    "TASK_START_TIMEOUT_MS", "TASK_START_MAX_RETRIES", "TASK_START_BACKOFF_FACTOR",
    "TASK_START_MAX_TIMEOUT_MS", "RECONNECT_DELAY_MS", "BUFFER_PRE_START_AUDIO",
    "PRE_START_AUDIO_MAX_BYTES", "MAX_SESSIONS", "PERSIST_AUDIO", "AUDIO_DIR",
    "FLUSH_INTERVAL_S", "OBSERVER_QUEUE_MAX", "ENABLE_JSON_LOGS",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults_without_environment(clean_env):
    config = AppConfig.load_from_env()

    assert config.port == 3000
    assert config.dashscope_api_key is None
    assert config.dashscope_ws_url == DASHSCOPE_WS_URL
    assert config.asr_model == "paraformer-realtime-v2"
    assert config.task_start_max_retries is None
    assert config.reconnect_delay_ms == RECONNECT_DELAY_MS
    assert config.persist_audio is False
    assert config.buffer_pre_start_audio is False
    assert config.enable_json_logs is True


def test_environment_overrides(clean_env):
    clean_env.setenv("PORT", "8080")
    clean_env.setenv("DASHSCOPE_API_KEY", "sk-abc")
    clean_env.setenv("ASR_MODEL", "paraformer-realtime-8k-v2")
    clean_env.setenv("TASK_START_TIMEOUT_MS", "2500")
    clean_env.setenv("TASK_START_MAX_RETRIES", "3")
    clean_env.setenv("TASK_START_BACKOFF_FACTOR", "2")
    clean_env.setenv("RECONNECT_DELAY_MS", "500")
    clean_env.setenv("MAX_SESSIONS", "4")
    clean_env.setenv("PERSIST_AUDIO", "yes")
    clean_env.setenv("AUDIO_DIR", "/tmp/audio")
    clean_env.setenv("ASR_HEARTBEAT", "off")

    config = AppConfig.load_from_env()

    assert config.port == 8080
    assert config.dashscope_api_key == "sk-abc"
    assert config.asr_model == "paraformer-realtime-8k-v2"
    assert config.task_start_timeout_ms == 2500
    assert config.task_start_max_retries == 3
    assert config.task_start_backoff_factor == 2.0
    assert config.reconnect_delay_ms == 500
    assert config.max_sessions == 4
    assert config.persist_audio is True
    assert config.audio_dir == "/tmp/audio"
    assert config.asr_heartbeat is False


@pytest.mark.parametrize("raw", ["", "-1"])
def test_retry_cap_can_be_unlimited(clean_env, raw: str):
    clean_env.setenv("TASK_START_MAX_RETRIES", raw)

    assert AppConfig.load_from_env().task_start_max_retries is None


def test_empty_api_key_counts_as_missing(clean_env):
    clean_env.setenv("DASHSCOPE_API_KEY", "")

    assert AppConfig.load_from_env().dashscope_api_key is None


def test_bad_number_raises(clean_env):
    clean_env.setenv("PORT", "eighty")

    with pytest.raises(ValueError):
        AppConfig.load_from_env()


def test_config_is_immutable():
    config = AppConfig()

    with pytest.raises(AttributeError):
        config.port = 1  # type: ignore[misc]


def test_session_settings_follow_config():
    config = AppConfig(
        task_start_timeout_ms=1_000,
        task_start_max_retries=2,
        reconnect_delay_ms=250,
        buffer_pre_start_audio=True,
    )

    settings = SessionSettings.from_config(config)

    assert settings.start_retry.timeout_ms == 1_000
    assert settings.start_retry.max_retries == 2
    assert settings.reconnect_delay_ms == 250
    assert settings.buffer_pre_start_audio is True


def test_default_buffer_holds_ten_seconds_of_audio():
    assert BUFFER_SIZE_BYTES == 320_000
