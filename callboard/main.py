"""FastAPI application entry point for Callboard."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api.deps import ConnectionManager
from .api.routes import calls, establishments, favorites, session, websocket
from .config import Settings, get_settings
from .core.cache import EstablishmentCache
from .core.session import SessionManager
from .logging_config import configure_logging
from .models import create_engine, create_session_factory, init_db
from .store import SqlAlchemyRemoteStore

logger = logging.getLogger(__name__)


def build_session_manager(settings: Settings, store) -> SessionManager:
    """Session manager configured from application settings."""
    return SessionManager(
        store,
        EstablishmentCache(),
        settings.default_establishment_settings(),
        poll_interval=settings.poll_interval_seconds,
        fetch_timeout=settings.fetch_timeout_seconds,
        max_favorites=settings.max_favorites,
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """Application lifespan handler for startup/shutdown."""
        configure_logging(settings.log_level)
        logger.info("Starting %s...", settings.app_name)

        engine = create_engine(settings.database_url, echo=settings.debug)
        await init_db(engine)
        logger.info("Database initialized")

        store = SqlAlchemyRemoteStore(create_session_factory(engine))
        sessions = build_session_manager(settings, store)
        connections = ConnectionManager()
        sessions.on_refresh(websocket.broadcaster(sessions, connections))

        app.state.sessions = sessions
        app.state.connections = connections

        yield

        logger.info("Shutting down...")
        await sessions.sign_out()
        await store.close()
        await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        description="Table call synchronization and escalation service",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(session.router, prefix=settings.api_prefix)
    app.include_router(establishments.router, prefix=settings.api_prefix)
    app.include_router(calls.router, prefix=settings.api_prefix)
    app.include_router(favorites.router, prefix=settings.api_prefix)
    app.include_router(websocket.router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.app_name,
            "version": __version__,
            "status": "running",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "callboard.main:app",
        host="0.0.0.0",
        port=8000,
        reload=_settings.debug,
    )
