from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from dbvault.api.routes.health import router as health_router
from dbvault.api.routes.history import router as history_router
from dbvault.api.routes.schedules import router as schedules_router
from dbvault.api.routes.tasks import router as tasks_router
from dbvault.core.config import get_settings
from dbvault.core.container import ServiceContainer, build_services
from dbvault.core.logging import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    services: ServiceContainer = app.state.services
    configure_logging(services.settings.log_level)
    if services.settings.scheduler_enabled:
        services.runner.start()
    try:
        yield
    finally:
        services.runner.stop()


def create_app(services: ServiceContainer | None = None) -> FastAPI:
    settings = services.settings if services is not None else get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.services = services or build_services(settings)
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(schedules_router, prefix="/api/v1")
    app.include_router(history_router, prefix="/api/v1")
    app.include_router(tasks_router, prefix="/api/v1")
    return app
