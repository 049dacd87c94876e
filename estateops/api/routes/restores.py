from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from estateops.api.dependencies import get_actor, get_engine
from estateops.api.schemas.backups import CreateRestoreRequest
from estateops.api.schemas.jobs import JobProgressResponse, SubmitJobResponse
from estateops.db.models import JobKind
from estateops.jobs.engine import JobEngine
from estateops.jobs.errors import AdmissionRejectedError, InvalidJobStateError, JobNotFoundError, JobParameterError
from estateops.jobs.progress import progress_to_dict

router = APIRouter(prefix="/restores", tags=["restores"])


@router.post("", response_model=SubmitJobResponse, status_code=status.HTTP_202_ACCEPTED)
def create_restore(
    request: CreateRestoreRequest,
    engine: JobEngine = Depends(get_engine),
    actor: str = Depends(get_actor),
) -> SubmitJobResponse:
    try:
        job_id = engine.submit(JobKind.RESTORE, request.model_dump(), actor)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except AdmissionRejectedError as exc:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(exc)) from exc
    except JobParameterError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return SubmitJobResponse(job_id=job_id, message="Restore started")


@router.get("/{job_id}/progress", response_model=JobProgressResponse)
def get_restore_progress(job_id: str, engine: JobEngine = Depends(get_engine)) -> JobProgressResponse:
    try:
        progress = engine.get_progress(job_id, kind=JobKind.RESTORE)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobProgressResponse.model_validate(progress_to_dict(progress))


@router.post("/{job_id}/cancel", response_model=JobProgressResponse)
def cancel_restore(
    job_id: str,
    engine: JobEngine = Depends(get_engine),
    actor: str = Depends(get_actor),
) -> JobProgressResponse:
    try:
        progress = engine.cancel(job_id, actor, kind=JobKind.RESTORE)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidJobStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return JobProgressResponse.model_validate(progress_to_dict(progress))
