# pylint: disable=missing-module-docstring,missing-function-docstring
import json

import pytest

from protocol.asr_codec import (
    AsrProtocolError,
    MalformedMessage,
    RecognitionParameters,
    decode_message,
    encode_finish_task,
    encode_run_task,
    is_audio_frame,
)


TASK_ID = "0123456789abcdef0123456789abcdef"


# ---------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------

def test_run_task_has_duplex_header_and_recognition_payload():
    text = encode_run_task(TASK_ID, RecognitionParameters(model="paraformer-realtime-v2"))
    msg = json.loads(text)

    assert msg["header"] == {
        "action": "run-task",
        "task_id": TASK_ID,
        "streaming": "duplex",
    }
    assert msg["payload"] == {
        "task_group": "audio",
        "task": "asr",
        "function": "recognition",
        "model": "paraformer-realtime-v2",
        "parameters": {"format": "pcm", "sample_rate": 16000, "heartbeat": True},
        "input": {},
    }


def test_run_task_omits_heartbeat_when_unset():
    params = RecognitionParameters(model="m", sample_rate=8000, heartbeat=None)
    parameters = json.loads(encode_run_task(TASK_ID, params))["payload"]["parameters"]

    assert parameters == {"format": "pcm", "sample_rate": 8000}


def test_finish_task_carries_task_id_and_empty_input():
    msg = json.loads(encode_finish_task(TASK_ID))

    assert msg["header"]["action"] == "finish-task"
    assert msg["header"]["task_id"] == TASK_ID
    assert msg["header"]["streaming"] == "duplex"
    assert msg["payload"] == {"input": {}}


def test_encoding_keeps_non_ascii_model_names_readable():
    text = encode_run_task(TASK_ID, RecognitionParameters(model="模型"))
    assert "模型" in text


# ---------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------

def test_decode_result_generated_exposes_sentence_and_usage():
    raw = json.dumps({
        "header": {"event": "result-generated", "task_id": TASK_ID},
        "payload": {
            "output": {
                "sentence": {
                    "text": "你好",
                    "sentence_end": True,
                    "begin_time": 170,
                    "end_time": 920,
                }
            },
            "usage": {"duration": 3},
        },
    })

    message = decode_message(raw)

    assert message.header.event == "result-generated"
    assert message.header.task_id == TASK_ID
    sentence = message.sentence
    assert sentence is not None
    assert sentence.text == "你好"
    assert sentence.sentence_end is True
    assert sentence.begin_time == 170
    assert sentence.end_time == 920
    assert message.usage_duration == 3.0


def test_decode_task_failed_exposes_error_fields():
    raw = json.dumps({
        "header": {
            "event": "task-failed",
            "task_id": TASK_ID,
            "error_code": "NO_INPUT_AUDIO_ERROR",
            "error_message": "no audio",
        },
        "payload": {},
    })

    header = decode_message(raw).header

    assert header.error_code == "NO_INPUT_AUDIO_ERROR"
    assert header.error_message == "no audio"


def test_missing_sentence_and_usage_are_none():
    raw = json.dumps({"header": {"event": "task-started", "task_id": TASK_ID}})

    message = decode_message(raw)

    assert message.payload == {}
    assert message.sentence is None
    assert message.usage_duration is None


def test_null_end_time_is_none():
    raw = json.dumps({
        "header": {"event": "result-generated", "task_id": TASK_ID},
        "payload": {"output": {"sentence": {"text": "a", "end_time": None}}},
    })

    sentence = decode_message(raw).sentence

    assert sentence is not None
    assert sentence.end_time is None
    assert sentence.sentence_end is False


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        "[1, 2, 3]",
        '"just a string"',
        json.dumps({"payload": {}}),
        json.dumps({"header": "nope"}),
        json.dumps({"header": {"event": "task-started"}}),
        json.dumps({"header": {"event": "task-started", "task_id": ""}}),
    ],
)
def test_malformed_messages_raise(raw: str):
    with pytest.raises(MalformedMessage):
        decode_message(raw)


def test_malformed_message_is_a_protocol_error():
    assert issubclass(MalformedMessage, AsrProtocolError)


def test_frame_classification_is_by_type_not_content():
    assert is_audio_frame(b'{"header": {}}')
    assert is_audio_frame(bytearray(b"\x00\x01"))
    assert not is_audio_frame('{"header": {}}')
    assert not is_audio_frame("\x00\x01")
