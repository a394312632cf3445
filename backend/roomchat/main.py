"""Roomchat Backend Application.

This is the main entry point for the roomchat service: authenticated users
join named rooms and exchange real-time messages with presence, typing
indicators and read receipts.

Modules:
    - auth: registration, login and token verification
    - chat: real-time session, presence and room-broadcast engine
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from roomchat.auth.router import router as auth_router
from roomchat.auth.service import IdentityVerifier, UserDirectory
from roomchat.chat.engine import ChatEngine
from roomchat.chat.rooms_router import router as rooms_router
from roomchat.chat.router import router as chat_router
from roomchat.config import AppConfig, get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence per-request access logs and websocket frame tracing.
for _noisy in ("uvicorn.access", "websockets", "httpx", "httpcore"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager: builds and tears down the chat engine."""
    # Startup
    config: AppConfig = app.state.config

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in roomchat.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    users = UserDirectory()
    verifier = IdentityVerifier(
        secret_key=config.secrets.jwt.secret_key,
        algorithm=config.auth.algorithm,
        expire_minutes=config.auth.token_expire_minutes,
        directory=users,
    )
    app.state.users = users
    app.state.verifier = verifier
    app.state.engine = ChatEngine(verifier, config.chat)
    logger.info(
        "Chat engine ready (default room=%s, typing timeout=%dms)",
        config.chat.default_room_id,
        config.chat.typing_timeout_ms,
    )

    yield  # Application runs here

    # Shutdown
    await app.state.engine.shutdown()
    logger.info("Application shutdown complete")


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Configuration to use; the process-wide config when omitted.
    """
    config = config or get_config()

    app = FastAPI(
        title="Roomchat API",
        description="Real-time rooms with presence, typing indicators and read receipts",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register all routers
    app.include_router(auth_router)
    app.include_router(rooms_router)
    app.include_router(chat_router)

    @app.get("/health")
    async def health(request: Request) -> dict:
        """Health check endpoint.

        Returns:
            dict: Status plus live user and room counts.
        """
        engine: ChatEngine = request.app.state.engine
        return {
            "status": "ok",
            "online_users": len(engine.registry.online_user_ids()),
            "rooms": len(engine.list_rooms()),
        }

    return app


app = create_app()


def main() -> None:
    """Main entry point for the server."""
    import uvicorn

    config = get_config()
    uvicorn.run(
        "roomchat.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level,
    )


if __name__ == "__main__":
    main()
