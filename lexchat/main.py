"""FastAPI application factory for the chat service."""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from lexchat.dependencies import ChatDependencies
from lexchat.routers import chat as chat_router
from lexlibs.common.logging import configure_logging
from lexlibs.common.settings import Settings, get_settings

logger = structlog.get_logger(__name__)


def create_app(deps: Optional[ChatDependencies] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Create the FastAPI app.

    Args:
        deps: Prebuilt collaborators; tool registries are supplied by the
            embedding service, so the app cannot build them itself
        settings: Overrides the cached environment settings
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        chat = getattr(app.state, "chat", None)
        if chat is not None:
            chat.start()
        logger.info("Chat service started", app_env=settings.app_env, configured=chat is not None)
        yield
        if chat is not None:
            await chat.close()
        logger.info("Chat service stopped")

    app = FastAPI(
        title="LexChat",
        description="Legal research chat orchestration with streamed tool use",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.chat = deps
    app.include_router(chat_router.router, prefix="/api", tags=["Chat"])

    @app.get("/healthz", tags=["Health"])
    async def health_check():
        return {"status": "ok", "chat_configured": app.state.chat is not None}

    return app
