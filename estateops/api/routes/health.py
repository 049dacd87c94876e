from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from estateops.api.dependencies import get_engine
from estateops.db.models import JobKind
from estateops.jobs.engine import JobEngine

router = APIRouter(tags=["health"])


@router.get("/health")
def get_health(engine: JobEngine = Depends(get_engine)) -> dict[str, object]:
    settings = engine.settings
    admission = engine.runtime.admission
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "active_jobs": {kind.value: admission.active_count(kind) for kind in JobKind},
        "timestamp": datetime.now(tz=timezone.utc),
    }
