"""FastAPI application entry point for tracklinks."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from tracklinks import __version__
from tracklinks.api import router as enrichment_router
from tracklinks.api import setup_exception_handlers
from tracklinks.config import AppConfig
from tracklinks.db import init_db
from tracklinks.dependencies import EnrichmentServices, build_services, get_app_config
from tracklinks.logging import configure_logging, get_logger
from tracklinks.logging_events import log_event

logger = get_logger(__name__)

API_BASE_PATH = "/api/v1"

ServicesFactory = Callable[[AppConfig], EnrichmentServices]


def create_app(
    config: AppConfig | None = None,
    *,
    services_factory: ServicesFactory | None = None,
    initialize_database: bool = True,
) -> FastAPI:
    """Build the application; services are created during lifespan startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        active_config = config or get_app_config()
        configure_logging(active_config.logging.level, active_config.logging.log_file)
        if initialize_database:
            init_db(active_config.database.url)
        factory = services_factory or build_services
        services = factory(active_config)
        app.state.config_snapshot = active_config
        app.state.enrichment = services
        log_event(logger, "app.startup", component="main", status="ok", version=__version__)
        try:
            yield
        finally:
            await services.resolution.shutdown()
            log_event(logger, "app.shutdown", component="main", status="ok")

    app = FastAPI(title="tracklinks", version=__version__, lifespan=lifespan)
    setup_exception_handlers(app)
    app.include_router(enrichment_router, prefix=API_BASE_PATH)
    return app


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""

    config = get_app_config()
    uvicorn.run(create_app(config), host=config.server.host, port=config.server.port)


__all__ = ["API_BASE_PATH", "create_app", "run"]


if __name__ == "__main__":
    run()
