"""
Main FastAPI application entry point.
Responsibilities: App setup, router registration, startup/shutdown hooks.
"""
import asyncio
from typing import Optional

from fastapi import FastAPI

from .config import Settings
from .context import ServiceContext, build_context
from .db.migrations import run_sql_migrations
from .embedding import LocalEmbedder
from .logging_config import logger, setup_logging
from .routes import chat, documents, models


def create_app(ctx: Optional[ServiceContext] = None) -> FastAPI:
    """
    Build the application.

    Args:
        ctx: prebuilt services; when None they are built from the environment
             at startup
    """
    app = FastAPI(title="Manual QA", version="0.1.0")

    # Register routers
    app.include_router(documents.router)
    app.include_router(chat.router)
    app.include_router(models.router)

    @app.get("/api/health")
    async def health():
        return {"ok": True}

    @app.on_event("startup")
    async def startup_event():
        """Build services, run database migrations and warm up the embedder."""
        if ctx is not None:
            app.state.ctx = ctx
            return

        settings = Settings.from_env()
        setup_logging(settings.log_level, settings.json_logs)
        services = build_context(settings)

        if services.engine is not None:
            logger.info("Running database migrations...")
            await asyncio.to_thread(run_sql_migrations, services.engine, settings.embed_dim)
            logger.info("Database migrations completed")

        if isinstance(services.embedder, LocalEmbedder):
            logger.info("Preloading embedding model...")
            await asyncio.to_thread(services.embedder.preload_model)
            logger.info("Embedding model ready")

        app.state.ctx = services

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown."""
        services = getattr(app.state, "ctx", None)
        if services is not None and services.engine is not None:
            services.engine.dispose()
        logger.info("Application shutting down")

    return app


app = create_app()
