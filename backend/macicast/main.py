"""
Macicast backend service: stream ingestion jobs.

Run with:
    uvicorn macicast.main:create_app --factory --app-dir backend --port 3000
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .config import Settings
from .jobs.store import JobStore
from .persistence.manager import PersistenceManager
from .routes import health
from .routes import streams
from .services.streams import StreamService
from .sources.registry import AdapterRegistry

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    )


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[AdapterRegistry] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Runtime settings (defaults to Settings.from_env())
        registry: Adapter registry (built from settings when omitted)

    Raises:
        ProviderAuthError: The selected provider is missing credentials
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    settings.ensure_directories()

    persistence = PersistenceManager(db_path=settings.db_path)
    store = JobStore(persistence_manager=persistence)

    # Fail fast on provider misconfiguration, before serving requests
    registry = registry or AdapterRegistry(settings)
    service = StreamService(settings, store, registry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Macicast backend starting (provider: {registry.upload_adapter.name}, "
            f"db: {settings.db_path})"
        )
        yield
        await service.shutdown()

    app = FastAPI(title="Macicast Backend", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.job_store = store
    app.state.adapter_registry = registry
    app.state.stream_service = service

    app.include_router(health.router)
    app.include_router(streams.router)

    @app.get("/")
    async def root():
        return {"service": "macicast-backend", "status": "running"}

    return app

