"""Retro Chat Backend Application.

This is the main entry point for the Retro Chat backend service: a single
default room where clients exchange short text messages over WebSockets,
with a bounded history replay for newcomers.

Modules:
    - chat.pipeline: payload decoding, validation and enrichment
    - chat.rooms: room membership and bounded history
    - chat.sessions: live session registry
    - chat.broadcast: room fan-out
    - chat.lifecycle: per-connection state machine
    - chat.router: WebSocket and HTTP endpoints
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from retrochat import __version__
from retrochat.chat.broadcast import BroadcastEngine
from retrochat.chat.lifecycle import ConnectionController
from retrochat.chat.pipeline import MessagePipeline
from retrochat.chat.rooms import RoomStore
from retrochat.chat.router import router as chat_router
from retrochat.chat.sessions import SessionRegistry
from retrochat.config import AppSettings, get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Connection events are already logged with the [WS] prefix.
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def build_controller(settings: AppSettings) -> ConnectionController:
    """Create the chat stores and wire them into a ConnectionController.

    The default room is created here, once, for the lifetime of the process.
    """
    chat_cfg = settings.chat
    rooms = RoomStore(history_capacity=chat_cfg.history_capacity)
    rooms.get_or_create(chat_cfg.default_room_id, chat_cfg.default_room_name)
    sessions = SessionRegistry()

    return ConnectionController(
        settings=chat_cfg,
        rooms=rooms,
        sessions=sessions,
        broadcaster=BroadcastEngine(sessions),
        pipeline=MessagePipeline(chat_cfg),
    )


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Explicit settings. When omitted, settings are loaded from
            retrochat.settings.yaml and the environment at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        # Startup
        config = settings or get_config()

        configured_level = getattr(logging, config.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", config.logging.level.upper())

        app.state.settings = config
        app.state.chat = build_controller(config)
        logger.info(
            f"Chat ready: default room '{config.chat.default_room_id}', "
            f"history capacity {config.chat.history_capacity}"
        )

        yield  # Application runs here

        # Shutdown
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Retro Chat API",
        description="Room-scoped real-time text chat over WebSockets",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(chat_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status plus the number of rooms and live connections.
        """
        controller: ConnectionController = app.state.chat
        return {
            "status": "ok",
            "rooms": len(controller.rooms.room_ids()),
            "connections": len(controller.sessions),
        }

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn on the configured port."""
    config = get_config()
    logger.info(f"Retro Chat server starting on {config.server.host}:{config.server.port}")
    uvicorn.run(
        "retrochat.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level,
    )


if __name__ == "__main__":
    run()
