# backend/protocol/asr_codec.py
"""
Control-message codec for the cloud ASR duplex protocol.

Wire form (text frames, JSON):

    {
      "header":  {"action" | "event": ..., "task_id": ..., "streaming": "duplex",
                  "error_code"?: ..., "error_message"?: ...},
      "payload": {...}
    }

Outbound actions: run-task, finish-task.
Inbound events:   task-started, result-generated, task-finished, task-failed.

Audio travels as raw binary frames on the same transport. Control and
audio frames are told apart by transport frame type (text vs binary),
never by sniffing content.

Usage example:

    text = encode_run_task(task_id, RecognitionParameters(model="paraformer-realtime-v2"))
    await transport.send_text(text)

    try:
        message = decode_message(raw)
    except MalformedMessage as e:
        log_event({"event_type": "ASR_MESSAGE_DISCARDED", "error": str(e)})
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from constants import (
    ASR_AUDIO_FORMAT,
    ASR_FUNCTION,
    ASR_STREAMING_MODE,
    ASR_TASK,
    ASR_TASK_GROUP,
    AUDIO_SAMPLE_RATE_HZ,
)


ACTION_RUN_TASK = "run-task"
ACTION_FINISH_TASK = "finish-task"

EVENT_TASK_STARTED = "task-started"
EVENT_RESULT_GENERATED = "result-generated"
EVENT_TASK_FINISHED = "task-finished"
EVENT_TASK_FAILED = "task-failed"


# -------------------------
# Exceptions
# -------------------------

class AsrProtocolError(Exception):
    """Base class for cloud ASR protocol errors."""


class MalformedMessage(AsrProtocolError):
    """
    Raised when an inbound text frame is not a usable control message
    (invalid JSON, not an object, missing header or task_id).

    Callers log and discard; it never changes session state.
    """


# -------------------------
# Message model
# -------------------------

@dataclass(frozen=True)
class RecognitionParameters:
    """Model and audio parameters carried by run-task."""
    model: str
    sample_rate: int = AUDIO_SAMPLE_RATE_HZ
    audio_format: str = ASR_AUDIO_FORMAT
    heartbeat: bool | None = True


@dataclass(frozen=True)
class AsrHeader:
    task_id: str
    action: str | None = None
    event: str | None = None
    streaming: str | None = None
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class Sentence:
    """Sentence block of a result-generated payload (times in ms)."""
    text: str
    sentence_end: bool
    begin_time: int | None
    end_time: int | None


@dataclass(frozen=True)
class AsrMessage:
    header: AsrHeader
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def sentence(self) -> Sentence | None:
        """payload.output.sentence, or None when absent or unusable."""
        output = self.payload.get("output")
        if not isinstance(output, dict):
            return None
        raw = output.get("sentence")
        if not isinstance(raw, dict):
            return None
        text = raw.get("text")
        return Sentence(
            text=text if isinstance(text, str) else "",
            sentence_end=bool(raw.get("sentence_end", False)),
            begin_time=_optional_int(raw.get("begin_time")),
            end_time=_optional_int(raw.get("end_time")),
        )

    @property
    def usage_duration(self) -> float | None:
        """payload.usage.duration (seconds of audio billed), if present."""
        usage = self.payload.get("usage")
        if not isinstance(usage, dict):
            return None
        duration = usage.get("duration")
        if isinstance(duration, (int, float)) and not isinstance(duration, bool):
            return float(duration)
        return None


# -------------------------
# Low-level helpers
# -------------------------

def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _header(action: str, task_id: str) -> dict[str, Any]:
    return {
        "action": action,
        "task_id": task_id,
        "streaming": ASR_STREAMING_MODE,
    }


def _dumps(message: dict[str, Any]) -> str:
    return json.dumps(message, ensure_ascii=False, separators=(",", ":"))


# -------------------------
# Outbound (server → cloud)
# -------------------------

def encode_run_task(task_id: str, params: RecognitionParameters) -> str:
    """Encode the run-task control message that opens a recognition task."""
    parameters: dict[str, Any] = {
        "format": params.audio_format,
        "sample_rate": params.sample_rate,
    }
    if params.heartbeat is not None:
        parameters["heartbeat"] = params.heartbeat

    return _dumps({
        "header": _header(ACTION_RUN_TASK, task_id),
        "payload": {
            "task_group": ASR_TASK_GROUP,
            "task": ASR_TASK,
            "function": ASR_FUNCTION,
            "model": params.model,
            "parameters": parameters,
            "input": {},
        },
    })


def encode_finish_task(task_id: str) -> str:
    """Encode the finish-task control message (graceful end of audio)."""
    return _dumps({
        "header": _header(ACTION_FINISH_TASK, task_id),
        "payload": {"input": {}},
    })


# -------------------------
# Inbound (cloud → server)
# -------------------------

def decode_message(raw: str | bytes) -> AsrMessage:
    """
    Decode an inbound control frame.

    Raises:
        MalformedMessage if the frame cannot be interpreted.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedMessage(f"expected JSON object, got {type(data).__name__}")

    header = data.get("header")
    if not isinstance(header, dict):
        raise MalformedMessage("missing header")

    task_id = header.get("task_id")
    if not isinstance(task_id, str) or not task_id:
        raise MalformedMessage("missing header.task_id")

    payload = data.get("payload")

    return AsrMessage(
        header=AsrHeader(
            task_id=task_id,
            action=_optional_str(header.get("action")),
            event=_optional_str(header.get("event")),
            streaming=_optional_str(header.get("streaming")),
            error_code=_optional_str(header.get("error_code")),
            error_message=_optional_str(header.get("error_message")),
        ),
        payload=payload if isinstance(payload, dict) else {},
    )


def is_audio_frame(frame: str | bytes | bytearray | memoryview) -> bool:
    """True for binary transport frames (audio), False for text (control)."""
    return isinstance(frame, (bytes, bytearray, memoryview))
