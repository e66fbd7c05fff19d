# pylint: disable=missing-module-docstring,missing-function-docstring
import re
import wave
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

import pytest

from audio import persistence
from audio.buffer import AccumulationBuffer
from audio.pcm import InvalidPcmBuffer, duration_seconds, peak_dbfs, validate_pcm_buffer
from audio.persistence import NullSink, WavFileSink
from constants import AudioFormat


PCM = (b"\x10\x00\xf0\xff" * 800)  # 1600 samples = 0.1 s at 16 kHz


# ---------------------------------------------------------------------
# WAV sink
# ---------------------------------------------------------------------

def test_wav_sink_writes_readable_pcm16_mono(tmp_path: Path):
    sink = WavFileSink(tmp_path)

    path = sink.flush("client_1", PCM)

    assert path is not None
    with wave.open(str(path), "rb") as wav:
        assert wav.getnchannels() == 1
        assert wav.getsampwidth() == 2
        assert wav.getframerate() == 16000
        assert wav.getnframes() == 1600
        assert wav.readframes(1600) == PCM


def test_wav_sink_file_name_has_client_and_timestamp(tmp_path: Path):
    path = WavFileSink(tmp_path).flush("client_7", PCM)

    assert path is not None
    assert path.parent == tmp_path
    assert re.fullmatch(r"audio_client_7_\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}\.wav", path.name)


def test_wav_sink_creates_missing_directory(tmp_path: Path):
    target = tmp_path / "nested" / "audio"

    path = WavFileSink(target).flush("client_1", PCM)

    assert path is not None
    assert path.exists()


def test_flushes_in_the_same_second_do_not_overwrite(tmp_path: Path):
    sink = WavFileSink(tmp_path)
    now = datetime(2024, 5, 1, 12, 30, 45, tzinfo=timezone.utc)

    first = sink._unique_path("client_1", now)  # pylint: disable=protected-access
    second = sink._unique_path("client_1", now)  # pylint: disable=protected-access

    assert first.name == "audio_client_1_2024-05-01T12-30-45.wav"
    assert second.name == "audio_client_1_2024-05-01T12-30-45_1.wav"
    assert first.exists() and second.exists()


def test_concurrent_flushes_in_the_same_second_get_distinct_files(tmp_path: Path, monkeypatch):
    frozen = datetime(2024, 5, 1, 12, 30, 45, tzinfo=timezone.utc)

    class FrozenClock(datetime):
        @classmethod
        def now(cls, tz=None):
            return frozen

    monkeypatch.setattr(persistence, "datetime", FrozenClock)
    sink = WavFileSink(tmp_path)

    with ThreadPoolExecutor(max_workers=8) as pool:
        paths = list(pool.map(lambda _: sink.flush("client_1", PCM), range(8)))

    assert len({p.name for p in paths}) == 8
    for path in paths:
        with wave.open(str(path), "rb") as wav:
            assert wav.readframes(1600) == PCM


def test_failed_write_releases_the_claimed_name(tmp_path: Path, monkeypatch):
    def broken_write(*args, **kwargs):
        raise RuntimeError("disk gone")

    monkeypatch.setattr(persistence.sf, "write", broken_write)

    with pytest.raises(RuntimeError):
        WavFileSink(tmp_path).flush("client_1", PCM)

    assert list(tmp_path.iterdir()) == []


@pytest.mark.parametrize("data", [b"", b"\x01\x02\x03"])
def test_wav_sink_refuses_unwritable_buffers(tmp_path: Path, data: bytes, log_records):
    path = WavFileSink(tmp_path).flush("client_1", data)

    assert path is None
    assert list(tmp_path.iterdir()) == []
    refused = [r for r in log_records if r.get("event_type") == "AUDIO_FLUSH_REFUSED"]
    assert len(refused) == 1
    assert refused[0]["bytes"] == len(data)


def test_wav_sink_logs_saved_file(tmp_path: Path, log_records):
    path = WavFileSink(tmp_path).flush("client_3", PCM)

    saved = [r for r in log_records if r.get("event_type") == "AUDIO_SAVED"]
    assert len(saved) == 1
    assert saved[0]["path"] == str(path)
    assert saved[0]["duration_s"] == 0.1
    assert saved[0]["peak_dbfs"] < -60


def test_silent_flush_logs_null_peak(tmp_path: Path, log_records):
    WavFileSink(tmp_path).flush("client_3", b"\x00\x00" * 100)

    saved = next(r for r in log_records if r.get("event_type") == "AUDIO_SAVED")
    assert saved["peak_dbfs"] is None


def test_null_sink_discards(tmp_path: Path):
    assert NullSink().flush("client_1", PCM) is None
    assert list(tmp_path.iterdir()) == []


# ---------------------------------------------------------------------
# PCM helpers
# ---------------------------------------------------------------------

def test_validate_respects_stereo_frame_size():
    stereo = AudioFormat(channels=2)

    validate_pcm_buffer(b"\x00" * 8, stereo)
    with pytest.raises(InvalidPcmBuffer):
        validate_pcm_buffer(b"\x00" * 6, stereo)


def test_duration_and_peak():
    assert duration_seconds(b"\x00" * 32000) == 1.0
    assert peak_dbfs(b"\x00\x00" * 10) == float("-inf")
    assert peak_dbfs(b"\x00\x80") == pytest.approx(0.0)


# ---------------------------------------------------------------------
# Accumulation buffer
# ---------------------------------------------------------------------

def test_buffer_reports_threshold_and_drains_in_order():
    buf = AccumulationBuffer(threshold_bytes=6)

    assert buf.append(b"ab") is False
    assert buf.append(b"cd") is False
    assert buf.append(b"ef") is True
    assert buf.size == 6
    assert buf.chunks_appended == 3

    assert buf.drain() == b"abcdef"
    assert buf.is_empty()
    assert len(buf) == 0
    assert buf.drain() == b""


def test_buffer_never_drops_past_threshold():
    buf = AccumulationBuffer(threshold_bytes=4)

    for _ in range(5):
        buf.append(b"xx")

    assert len(buf) == 10


def test_buffer_depth_in_seconds():
    buf = AccumulationBuffer(threshold_bytes=64_000)
    buf.append(b"\x00" * 16_000)

    assert buf.depth_seconds() == 0.5


def test_buffer_rejects_non_positive_threshold():
    with pytest.raises(ValueError):
        AccumulationBuffer(threshold_bytes=0)
