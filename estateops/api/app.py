from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from estateops.api.routes.backups import router as backups_router
from estateops.api.routes.health import router as health_router
from estateops.api.routes.imports import router as imports_router
from estateops.api.routes.jobs import router as jobs_router
from estateops.api.routes.maintenance import router as maintenance_router
from estateops.api.routes.restores import router as restores_router
from estateops.core.config import get_settings
from estateops.core.logging import configure_logging
from estateops.db.init_db import initialize_database
from estateops.db.session import get_session_factory
from estateops.jobs.engine import JobEngine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    initialize_database()
    engine: JobEngine = app.state.engine
    reconciled = engine.reconcile_interrupted_jobs()
    logger.info("%s started (%d interrupted jobs reconciled)", settings.app_name, reconciled)
    yield
    engine.shutdown()


def create_app(engine: JobEngine | None = None) -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.engine = engine or JobEngine(settings, get_session_factory())
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(backups_router, prefix="/api/v1")
    app.include_router(restores_router, prefix="/api/v1")
    app.include_router(imports_router, prefix="/api/v1")
    app.include_router(jobs_router, prefix="/api/v1")
    app.include_router(maintenance_router, prefix="/api/v1")
    return app
