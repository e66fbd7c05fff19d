"""
Route registration for the ASR relay API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire hardware sockets to the session registry
- Wire browser sockets to the broadcast hub
- Pull dependencies from app.state
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from constants import WS_CLOSE_TRY_AGAIN_LATER
from observability.logger import log_event
from session.broadcast import BroadcastHub
from session.peer import WebSocketPeer
from session.registry import RegistryFullError, SessionRegistry


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        registry: SessionRegistry = app.state.registry
        hub: BroadcastHub = app.state.hub
        return {
            "status": "ok",
            "sessions": registry.session_count,
            "observers": hub.observer_count,
        }

    @app.websocket("/api/audio")
    async def hardware_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        """
        Hardware microphone clients.

        Binary frames in (raw PCM), final sentence text out.
        One connection = one session.
        """
        await ws.accept()

        registry: SessionRegistry = app.state.registry
        peer = WebSocketPeer(ws)

        try:
            client_id = await registry.register(peer)
        except RegistryFullError as exc:
            log_event({
                "event_type": "HARDWARE_REJECTED",
                "level": "warning",
                "message": str(exc),
            })
            await peer.close(code=WS_CLOSE_TRY_AGAIN_LATER, reason="session limit reached")
            return

        reason = "client_disconnect"
        try:
            while True:
                msg = await ws.receive()

                if msg["type"] == "websocket.disconnect":
                    break

                data = msg.get("bytes")
                if data is not None:
                    await registry.route_frame(client_id, data)
                elif msg.get("text") is not None:
                    log_event({
                        "event_type": "HARDWARE_TEXT_IGNORED",
                        "level": "debug",
                        "client_id": client_id,
                    })

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            reason = "server_error"
            log_event({
                "event_type": "WS_FATAL_ERROR",
                "level": "error",
                "client_id": client_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            peer.mark_closed()
            await registry.unregister(client_id, reason=reason)

    @app.websocket("/api/playback")
    async def playback_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        """
        Browser observers.

        Receives the config event, then live binary audio and asr_result
        JSON events. Anything the browser sends is ignored.
        """
        await ws.accept()

        hub: BroadcastHub = app.state.hub
        peer = WebSocketPeer(ws)
        hub.subscribe(peer)

        try:
            while True:
                msg = await ws.receive()
                if msg["type"] == "websocket.disconnect":
                    break

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "WS_FATAL_ERROR",
                "level": "error",
                "endpoint": "playback",
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            peer.mark_closed()
            hub.unsubscribe(peer)
