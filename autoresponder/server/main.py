"""
FastAPI application factory for the admin server.

Provides:
- Application creation with lifecycle management of the responder
- Router registration
- WebSocket stream of logs, connection status and login QR codes
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from autoresponder import __version__
from autoresponder.server.logstream import LogBroadcaster
from autoresponder.server.manager import ResponderManager
from autoresponder.server.routers import chats_router, config_router, system_router

if TYPE_CHECKING:
    from autoresponder.config.schema import Config


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown:
    - Startup: Attach the log stream, start the responder
    - Shutdown: Stop the responder and release clients
    """
    broadcaster: LogBroadcaster = app.state.broadcaster
    manager: ResponderManager = app.state.manager

    broadcaster.install(manager.config.logging.level)
    logger.info("Starting autoresponder server...")

    if app.state.autostart:
        await manager.start()
    logger.info(f"Responder state: {manager.state.value}")

    yield

    logger.info("Shutting down autoresponder server...")
    await manager.shutdown()
    broadcaster.uninstall()


def create_app(
    config: "Config",
    manager: ResponderManager | None = None,
    config_path: Path | None = None,
    autostart: bool = True,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Root configuration.
        manager: Prebuilt responder manager (built from config if None).
        config_path: Where PUT /api/config persists changes.
        autostart: Start the responder in the lifespan.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="autoresponder admin API",
        description="WhatsApp AI auto-responder administration",
        version=__version__,
        lifespan=lifespan,
    )

    broadcaster = LogBroadcaster()
    if manager is None:
        manager = ResponderManager(config, config_path=config_path, broadcaster=broadcaster)
    elif manager.broadcaster is None:
        manager.broadcaster = broadcaster

    app.state.manager = manager
    app.state.broadcaster = broadcaster
    app.state.autostart = autostart

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(system_router, prefix="/api/system", tags=["System"])
    app.include_router(config_router, prefix="/api/config", tags=["Config"])
    app.include_router(chats_router, prefix="/api/chats", tags=["Chats"])

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return JSONResponse({"status": "ok"})

    _add_websocket_routes(app)

    return app


def _add_websocket_routes(app: FastAPI):
    """Add the live event stream."""

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """
        Stream events to an admin client.

        On connect the client gets recent logs, the connection status and
        any pending QR code. Client actions: connect-whatsapp,
        disconnect-whatsapp, status, ping.
        """
        await websocket.accept()
        client_id = str(uuid.uuid4())[:8]
        logger.info(f"WebSocket client connected: {client_id}")

        manager: ResponderManager = websocket.app.state.manager
        broadcaster: LogBroadcaster = websocket.app.state.broadcaster
        queue = broadcaster.subscribe()

        async def pump():
            while True:
                await websocket.send_json(await queue.get())

        pump_task = asyncio.create_task(pump())
        try:
            for entry in list(broadcaster.recent):
                await websocket.send_json(entry)
            status = manager.transport.get_status()
            await websocket.send_json({"event": "connection-status", "data": status})
            if status.get("qr"):
                await websocket.send_json({"event": "qr", "data": status["qr"]})

            while True:
                data = await websocket.receive_json()
                action = data.get("action", "")

                if action == "connect-whatsapp":
                    await manager.connect()
                elif action == "disconnect-whatsapp":
                    await manager.disconnect()
                elif action == "status":
                    await websocket.send_json({"event": "status", "data": manager.get_status()})
                elif action == "ping":
                    await websocket.send_json({"event": "pong"})
                else:
                    await websocket.send_json({"event": "error", "error": f"Unknown action: {action}"})

        except WebSocketDisconnect:
            logger.info(f"WebSocket client disconnected: {client_id}")
        except Exception as e:
            logger.error(f"WebSocket error: {e}")
        finally:
            pump_task.cancel()
            broadcaster.unsubscribe(queue)
