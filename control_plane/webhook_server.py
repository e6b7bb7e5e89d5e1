"""
Control Plane HTTP/WebSocket server.

- POST /webhook, POST /api/answer : voice agent event posts (same gate)
- WS   /ws (and /)                : broadcast channel for UI connections
- GET  /health
- voice session API from control_api
"""
import json
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from logging_setup import get_logger, Component
from .config import ControlPlaneConfig, get_config
from .control_api import router as voice_router
from .runtime import VoiceRuntime, build_runtime

logger = get_logger(Component.WEBHOOK_SERVER)


async def handle_webhook(request: Request):
    """
    Voice agent webhook endpoint.

    Always answers 200 so the provider does not retry; the outcome says what
    the gate did with the post.
    """
    runtime: VoiceRuntime = request.app.state.runtime
    body = await request.body()

    try:
        raw = json.loads(body) if body else None
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Failed to parse webhook body as JSON", body_size=len(body))
        raw = None

    outcome = runtime.gate.accept_event(raw)
    logger.debug("Webhook processed", outcome=outcome.value, body_size=len(body))
    return JSONResponse(content={"success": True, "outcome": outcome.value})


async def broadcast_channel(websocket: WebSocket):
    """Register the connection with the hub until the client goes away."""
    hub = websocket.app.state.runtime.hub
    await websocket.accept()
    hub.register(websocket)
    try:
        while True:
            # Inbound frames are ignored; this only waits for the close.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning("WebSocket error", error=str(e), error_type=type(e).__name__)
    finally:
        hub.unregister(websocket)


async def health(request: Request):
    """Health check endpoint."""
    runtime: VoiceRuntime = request.app.state.runtime
    return {
        "status": "ok",
        "component": "control_plane",
        "clients": runtime.hub.connection_count,
        "provisioningConfigured": runtime.manager.provisioner.is_configured,
        "activeSessions": len(runtime.manager.store),
    }


def create_app(
    config: Optional[ControlPlaneConfig] = None,
    runtime: Optional[VoiceRuntime] = None,
) -> FastAPI:
    """
    Build the FastAPI app around one VoiceRuntime.

    Shutdown (SIGINT/SIGTERM under uvicorn) ends every session so no room
    keeps billing past the process.
    """
    config = config or (runtime.config if runtime else get_config())
    runtime = runtime or build_runtime(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not runtime.manager.provisioner.is_configured:
            logger.error(
                "Configuration error: PIPECAT_API_KEY not set; voice sessions will be refused",
                error_type="ConfigurationError",
            )
        logger.info(
            "Control plane started",
            agent=config.pipecat_agent_name,
            webhook_url=config.webhook_url,
            session_ttl_seconds=config.session_ttl_seconds,
            debounce_ms=config.debounce_ms,
        )
        yield
        logger.info("Control plane shutting down, ending all sessions")
        await runtime.shutdown()

    app = FastAPI(title="Voice Session Control Plane", lifespan=lifespan)
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_api_route("/webhook", handle_webhook, methods=["POST"])
    app.add_api_route("/api/answer", handle_webhook, methods=["POST"])
    app.add_api_route("/health", health, methods=["GET"])
    app.add_api_websocket_route("/ws", broadcast_channel)
    app.add_api_websocket_route("/", broadcast_channel)
    app.include_router(voice_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_config().port)
