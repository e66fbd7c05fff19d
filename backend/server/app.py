"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Initialize shared resources (broadcast hub, session registry)
- Run the periodic audio flush for the lifetime of the app
- Register routes
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.asr.base import TransportFactory
from adapters.asr.dashscope_streaming import dashscope_transport_factory
from audio.persistence import NullSink, PersistenceSink, WavFileSink
from config import AppConfig
from observability.logger import configure_logging, log_event
from protocol.asr_codec import RecognitionParameters
from recognition.state_dataclass import SessionSettings
from session.broadcast import BroadcastHub
from session.registry import SessionRegistry

from server.routes import register_routes


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def create_app(
    config: AppConfig | None = None,
    *,
    transport_factory: TransportFactory | None = None,
    sink: PersistenceSink | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with different configurations
    - Injecting a fake cloud transport and persistence sink
    - ASGI server compatibility

    Raises:
        RuntimeError if no transport_factory is given and
        DASHSCOPE_API_KEY is not configured.
    """
    config = config or AppConfig.load_from_env()
    configure_logging(level=config.log_level, enable_json=config.enable_json_logs)

    # Cloud transport is created per attempt; the factory is shared
    if transport_factory is None:
        if not config.dashscope_api_key:
            raise RuntimeError("DASHSCOPE_API_KEY environment variable not set")
        transport_factory = dashscope_transport_factory(
            api_key=config.dashscope_api_key,
            url=config.dashscope_ws_url,
        )

    if sink is None:
        sink = WavFileSink(config.audio_dir) if config.persist_audio else NullSink()

    hub = BroadcastHub(queue_max=config.observer_queue_max)
    registry = SessionRegistry(
        hub=hub,
        transport_factory=transport_factory,
        params=RecognitionParameters(
            model=config.asr_model,
            heartbeat=config.asr_heartbeat,
        ),
        settings=SessionSettings.from_config(config),
        sink=sink,
        max_sessions=config.max_sessions,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        flush_task = asyncio.create_task(
            registry.run_periodic_flush(config.flush_interval_s)
        )
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SERVER_STARTED",
            "env": config.env,
            "asr_model": config.asr_model,
            "persist_audio": config.persist_audio,
        })
        try:
            yield
        finally:
            flush_task.cancel()
            try:
                await flush_task
            except asyncio.CancelledError:
                pass
            await registry.shutdown()
            await hub.close()
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "SERVER_STOPPED",
            })

    app = FastAPI(title="ASR Relay", lifespan=lifespan)

    app.state.config = config
    app.state.hub = hub
    app.state.registry = registry

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app
