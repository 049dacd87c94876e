from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from estateops.api.dependencies import get_engine
from estateops.api.schemas.jobs import (
    ActivityPageResponse,
    ActivityResponse,
    JobHistoryResponse,
    JobProgressResponse,
    JobResponse,
)
from estateops.db.models import JobKind
from estateops.jobs.activity import activity_to_dict
from estateops.jobs.engine import JobEngine
from estateops.jobs.errors import JobNotFoundError
from estateops.jobs.progress import progress_to_dict
from estateops.jobs.store import snapshot_to_dict

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("", response_model=JobHistoryResponse)
def list_jobs(
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1),
    kind: JobKind | None = None,
    engine: JobEngine = Depends(get_engine),
) -> JobHistoryResponse:
    history = engine.list_history(page=page, page_size=page_size, kind=kind)
    return JobHistoryResponse(
        items=[JobResponse.model_validate(snapshot_to_dict(item)) for item in history.items],
        total=history.total,
        page=history.page,
        page_size=history.page_size,
    )


@router.get("/active", response_model=list[JobProgressResponse])
def list_active_jobs(kind: JobKind | None = None, engine: JobEngine = Depends(get_engine)) -> list[JobProgressResponse]:
    return [JobProgressResponse.model_validate(progress_to_dict(item)) for item in engine.list_active(kind)]


@router.get("/activity", response_model=ActivityPageResponse)
def list_activity(
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1),
    job_id: str | None = None,
    engine: JobEngine = Depends(get_engine),
) -> ActivityPageResponse:
    activity = engine.list_activity(page=page, page_size=page_size, job_id=job_id)
    return ActivityPageResponse(
        items=[ActivityResponse.model_validate(activity_to_dict(item)) for item in activity.items],
        total=activity.total,
        page=activity.page,
        page_size=activity.page_size,
    )


@router.get("/{job_id}", response_model=JobResponse)
def get_job(job_id: str, engine: JobEngine = Depends(get_engine)) -> JobResponse:
    try:
        job = engine.get_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobResponse.model_validate(snapshot_to_dict(job))
