# pylint: disable=missing-module-docstring,missing-function-docstring
from __future__ import annotations

import time
from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from config import AppConfig
from fakes import FakeTransportFactory, RecordingSink
from server.app import create_app


def make_client(**overrides: Any) -> tuple[TestClient, FakeTransportFactory]:
    factory = FakeTransportFactory()
    config = AppConfig(**overrides)
    app = create_app(config, transport_factory=factory, sink=RecordingSink())
    return TestClient(app), factory


def poll(predicate: Callable[[], bool], timeout_s: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_create_app_requires_api_key_without_injected_transport():
    with pytest.raises(RuntimeError, match="DASHSCOPE_API_KEY"):
        create_app(AppConfig(dashscope_api_key=None))


def test_create_app_with_api_key_builds_without_connecting():
    app = create_app(AppConfig(dashscope_api_key="sk-test"))

    assert app.state.registry.session_count == 0
    assert app.state.config.dashscope_api_key == "sk-test"


def test_health_reports_counts():
    client, _ = make_client()

    with client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "sessions": 0, "observers": 0}


def test_playback_receives_config_event_first():
    client, _ = make_client()

    with client:
        with client.websocket_connect("/api/playback") as ws:
            assert ws.receive_json() == {
                "type": "config",
                "sampleRate": 16000,
                "channels": 1,
                "bitDepth": 16,
            }
            assert client.get("/health").json()["observers"] == 1

        assert poll(lambda: client.get("/health").json()["observers"] == 0)


def test_hardware_audio_is_relayed_to_observers():
    client, factory = make_client()

    with client:
        with client.websocket_connect("/api/playback") as observer:
            observer.receive_json()

            with client.websocket_connect("/api/audio") as hardware:
                hardware.send_bytes(b"\x01\x00\x02\x00")
                assert observer.receive_bytes() == b"\x01\x00\x02\x00"
                assert client.get("/health").json()["sessions"] == 1
                assert len(factory.transports) == 1

        assert poll(lambda: client.get("/health").json()["sessions"] == 0)
        assert factory.latest.closed


def test_hardware_text_frames_are_ignored():
    client, _ = make_client()

    with client:
        with client.websocket_connect("/api/playback") as observer:
            observer.receive_json()

            with client.websocket_connect("/api/audio") as hardware:
                hardware.send_text("hello")
                hardware.send_bytes(b"\x00\x00")
                assert observer.receive_bytes() == b"\x00\x00"


def test_hardware_rejected_when_registry_full():
    client, factory = make_client(max_sessions=0)

    with client:
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/api/audio") as hardware:
                hardware.receive_bytes()

        assert exc.value.code == 1013
        assert client.get("/health").json()["sessions"] == 0
        assert factory.transports == []


def test_second_hardware_client_gets_its_own_session():
    client, factory = make_client()

    with client:
        with client.websocket_connect("/api/audio") as first:
            first.send_bytes(b"\x00\x00")
            with client.websocket_connect("/api/audio") as second:
                second.send_bytes(b"\x00\x00")
                assert poll(lambda: client.get("/health").json()["sessions"] == 2)
                assert len(factory.transports) == 2
