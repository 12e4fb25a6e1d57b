"""Neon Chat Backend Application.

This is the main entry point for the Neon Chat backend service: accounts,
chatrooms and a realtime presence and messaging core for the Neon Chat
mobile app.

Modules:
    - auth: Accounts, password hashing and identity tokens
    - chat: Rooms, messages, reactions and the realtime WebSocket core
    - store: DuckDB-backed persistence
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.auth.router import router as auth_router
from app.chat.router import router as chat_router
from app.chat.socket_router import router as socket_router
from app.config import AppSettings, get_config
from app.errors import install_error_handlers
from app.services import build_services
from app.store.database import Database

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence per-request transport logs
for _noisy in ("httpx", "httpcore", "multipart"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    settings: AppSettings = app.state.services.settings

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in neon.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, settings.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", settings.logging.level.upper())

    logger.info(
        f"Neon Chat running on http://{settings.server.host}:{settings.server.port} "
        f"(database={settings.database.path})"
    )

    yield  # Application runs here

    # Shutdown
    app.state.services.db.close()
    logger.info("Application shutdown complete")


def create_app(settings: Optional[AppSettings] = None, db: Optional[Database] = None) -> FastAPI:
    """Build the FastAPI application and its service container.

    Args:
        settings: Settings to use; loaded from the YAML files when omitted.
        db: Store to use; opened from ``settings.database.path`` when omitted.
    """
    settings = settings or get_config()

    app = FastAPI(
        title="Neon Chat API",
        description="Backend service for Neon Chat - realtime chatrooms for the Neon Chat app",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = build_services(settings, db)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    # Register all routers
    app.include_router(auth_router)
    app.include_router(chat_router)
    app.include_router(socket_router)

    @app.get("/")
    async def index() -> dict:
        """API banner listing the available endpoint groups."""
        return {
            "message": "Welcome to Neon Chat API",
            "version": app.version,
            "endpoints": {
                "auth": "/api/auth",
                "chat": "/api/chat",
                "realtime": "/ws",
                "health": "/health",
            },
        }

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
