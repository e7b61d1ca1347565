"""
FastAPI application entry point for the identity sync service.

Startup is fail-closed: without CLERK_WEBHOOK_SECRET the lifespan raises
and the process refuses to serve, rather than accepting unverifiable
webhooks.
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from identity_sync.api.routes import health, profile, webhooks_clerk
from identity_sync.auth.clerk_verifier import ClerkJWTVerifier
from identity_sync.config.settings import Settings, load_settings
from identity_sync.database.session import (
    create_engine_from_settings,
    create_session_factory,
    init_schema,
)
from identity_sync.webhooks.signature import ClerkWebhookVerifier

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting identity sync API")

    # Raises WebhookConfigurationError when the secret is missing
    settings: Settings = getattr(app.state, "settings", None) or load_settings()
    app.state.settings = settings
    logging.getLogger().setLevel(settings.log_level)

    app.state.webhook_verifier = ClerkWebhookVerifier(settings.webhook_secret)

    engine: Optional[Engine] = getattr(app.state, "engine", None)
    owns_engine = engine is None
    if owns_engine:
        engine = create_engine_from_settings(settings)
        app.state.engine = engine
    init_schema(engine)
    app.state.session_factory = create_session_factory(engine)

    app.state.jwt_verifier = None
    if settings.clerk_issuer_url:
        app.state.jwt_verifier = ClerkJWTVerifier(issuer=settings.clerk_issuer_url)
    else:
        logger.warning(
            "CLERK_ISSUER_URL not set. Authenticated endpoints will return 503."
        )

    logger.info(
        "Identity sync API ready",
        extra={
            "dialect": engine.dialect.name,
            "auth_enabled": app.state.jwt_verifier is not None,
        },
    )

    yield

    logger.info("Shutting down identity sync API")
    if owns_engine:
        engine.dispose()


def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Preloaded settings (read from the environment at startup
            when omitted)
        engine: Preconfigured engine (created from settings when omitted)
    """
    app = FastAPI(
        title="Identity Sync API",
        description="Mirrors Clerk users, organizations and memberships into the local store",
        version="1.0.0",
        lifespan=lifespan,
    )
    if settings is not None:
        app.state.settings = settings
    if engine is not None:
        app.state.engine = engine

    cors_origins = settings.cors_origins if settings else os.getenv(
        "CORS_ORIGINS", "http://localhost:3000"
    ).split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include health route (bypasses authentication)
    app.include_router(health.router)

    # Include Clerk webhook routes (uses Svix signature verification, not JWT)
    app.include_router(webhooks_clerk.router)

    # Include profile routes (requires authentication)
    app.include_router(profile.router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unhandled exceptions with proper logging."""
        logger.error(
            "Unhandled exception",
            extra={
                "error": str(exc),
                "error_type": type(exc).__name__,
                "path": request.url.path,
            },
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": "An unexpected error occurred",
            },
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
