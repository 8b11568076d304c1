from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from classbook.api.routes.bookings import router as bookings_router
from classbook.api.routes.health import router as health_router
from classbook.api.routes.payments import router as payments_router
from classbook.api.routes.sessions import router as sessions_router
from classbook.api.routes.user_tickets import router as user_tickets_router
from classbook.core.config import Settings, get_settings
from classbook.core.logging import configure_logging
from classbook.db.schema import create_schema
from classbook.services.container import Services, build_services

logger = structlog.get_logger(__name__)


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, sql_echo=settings.database_echo)
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if settings.database_auto_create:
            await create_schema(services.engine)
            logger.info("database_schema_ensured")
        yield
        await services.engine.dispose()

    app = FastAPI(
        title="Classbook API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services
    app.include_router(health_router)
    app.include_router(payments_router)
    app.include_router(bookings_router)
    app.include_router(sessions_router)
    app.include_router(user_tickets_router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "classbook.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_env == "dev",
    )


if __name__ == "__main__":
    run()
