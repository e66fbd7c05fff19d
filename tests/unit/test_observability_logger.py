# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger, metrics


@pytest.fixture
def captured(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    return lines


def test_log_event_emits_valid_jsonl(captured: list[str]) -> None:
    """
    Contract:
    - log_event emits exactly one JSONL line
    - payload is serialized as-is, plus ts_ms when missing
    - output sink is patchable
    """
    payload: dict[str, Any] = {
        "event_type": "TEST",
        "value": 123,
    }

    logger.log_event(payload)

    assert len(captured) == 1
    decoded = json.loads(captured[0])
    assert isinstance(decoded.pop("ts_ms"), int)
    assert decoded == payload
    assert "\n" not in captured[0]


def test_caller_timestamp_is_kept(captured: list[str]) -> None:
    logger.log_event({"ts_ms": 42, "event_type": "TEST"})

    assert json.loads(captured[0])["ts_ms"] == 42


def test_non_ascii_text_is_written_verbatim(captured: list[str]) -> None:
    logger.log_event({"event_type": "TEST", "text": "你好"})

    assert "你好" in captured[0]


def test_events_below_configured_level_are_dropped(captured: list[str]) -> None:
    logger.configure_logging(level="WARNING")

    logger.log_event({"event_type": "QUIET", "level": "debug"})
    logger.log_event({"event_type": "DEFAULT"})
    logger.log_event({"event_type": "LOUD", "level": "error"})

    assert [json.loads(line)["event_type"] for line in captured] == ["LOUD"]


def test_unknown_level_name_falls_back_to_info(captured: list[str]) -> None:
    logger.configure_logging(level="chatty")

    logger.log_event({"event_type": "QUIET", "level": "debug"})
    logger.log_event({"event_type": "SHOWN"})

    assert len(captured) == 1


def test_text_mode_writes_one_readable_line(captured: list[str]) -> None:
    logger.configure_logging(enable_json=False)

    logger.log_event({"ts_ms": 1, "event_type": "SESSION_REGISTERED", "client_id": "client_1"})

    assert captured == ["1 INFO SESSION_REGISTERED client_id='client_1'"]


def test_unserializable_event_falls_back_instead_of_raising(captured: list[str]) -> None:
    logger.log_event({"ts_ms": 5, "event_type": "BAD", "obj": object()})

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"
    assert decoded["ts_ms"] == 5
    assert "BAD" in decoded["original_event_repr"]


# ---------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------

def test_record_metric_emits_metric_event(captured: list[str]) -> None:
    metrics.record_metric("task_start_latency_ms", 120, client_id="client_1", state="STREAMING")

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "METRIC"
    assert decoded["metric"] == "task_start_latency_ms"
    assert decoded["value"] == 120
    assert decoded["client_id"] == "client_1"
    assert decoded["details"] == {}


def test_timed_emits_once_even_when_block_raises(captured: list[str]) -> None:
    with pytest.raises(OSError):
        with metrics.timed("audio_flush_ms", client_id="client_2", details={"bytes": 10}):
            raise OSError("disk full")

    assert len(captured) == 1
    decoded = json.loads(captured[0])
    assert decoded["metric"] == "audio_flush_ms"
    assert decoded["value"] >= 0
    assert decoded["details"] == {"bytes": 10}
