from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from estateops.api.dependencies import get_actor, get_engine
from estateops.api.schemas.backups import BackupSettingsResponse, CreateBackupRequest, StorageUsageResponse
from estateops.api.schemas.jobs import JobHistoryResponse, JobProgressResponse, JobResponse, SubmitJobResponse, ValidationResponse
from estateops.db.models import JobKind
from estateops.integrity.validator import validation_to_dict
from estateops.jobs.engine import JobEngine
from estateops.jobs.errors import AdmissionRejectedError, InvalidJobStateError, JobNotFoundError, JobParameterError
from estateops.jobs.progress import progress_to_dict
from estateops.jobs.store import snapshot_to_dict

router = APIRouter(prefix="/backups", tags=["backups"])


@router.post("", response_model=SubmitJobResponse, status_code=status.HTTP_202_ACCEPTED)
def create_backup(
    request: CreateBackupRequest,
    engine: JobEngine = Depends(get_engine),
    actor: str = Depends(get_actor),
) -> SubmitJobResponse:
    try:
        job_id = engine.submit(JobKind.BACKUP, request.model_dump(exclude_none=True), actor)
    except AdmissionRejectedError as exc:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(exc)) from exc
    except JobParameterError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return SubmitJobResponse(job_id=job_id, message="Backup started")


@router.get("/history", response_model=JobHistoryResponse)
def list_backup_history(
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1),
    engine: JobEngine = Depends(get_engine),
) -> JobHistoryResponse:
    history = engine.list_history(page=page, page_size=page_size, kind=JobKind.BACKUP)
    return JobHistoryResponse(
        items=[JobResponse.model_validate(snapshot_to_dict(item)) for item in history.items],
        total=history.total,
        page=history.page,
        page_size=history.page_size,
    )


@router.get("/settings", response_model=BackupSettingsResponse)
def get_backup_settings(engine: JobEngine = Depends(get_engine)) -> BackupSettingsResponse:
    settings = engine.settings
    return BackupSettingsResponse(
        default_compression_level=settings.default_compression_level,
        default_retention_days=settings.default_retention_days,
        failed_job_retention_days=settings.failed_job_retention_days,
        max_concurrent_backups=settings.max_concurrent_backups,
        max_concurrent_restores=settings.max_concurrent_restores,
        max_backup_size_bytes=settings.max_backup_size_bytes,
        job_timeout_seconds=settings.job_timeout_seconds,
    )


@router.get("/storage", response_model=StorageUsageResponse)
def get_storage_usage(engine: JobEngine = Depends(get_engine)) -> StorageUsageResponse:
    usage = engine.storage_usage()
    return StorageUsageResponse(
        artifact_count=usage.artifact_count,
        total_bytes=usage.total_bytes,
        max_backup_size_bytes=usage.max_backup_size_bytes,
    )


@router.get("/{job_id}/progress", response_model=JobProgressResponse)
def get_backup_progress(job_id: str, engine: JobEngine = Depends(get_engine)) -> JobProgressResponse:
    try:
        progress = engine.get_progress(job_id, kind=JobKind.BACKUP)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobProgressResponse.model_validate(progress_to_dict(progress))


@router.post("/{job_id}/cancel", response_model=JobProgressResponse)
def cancel_backup(
    job_id: str,
    engine: JobEngine = Depends(get_engine),
    actor: str = Depends(get_actor),
) -> JobProgressResponse:
    try:
        progress = engine.cancel(job_id, actor, kind=JobKind.BACKUP)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidJobStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return JobProgressResponse.model_validate(progress_to_dict(progress))


@router.get("/{job_id}/validate", response_model=ValidationResponse)
def validate_backup(job_id: str, engine: JobEngine = Depends(get_engine)) -> ValidationResponse:
    try:
        result = engine.validate(job_id, kind=JobKind.BACKUP)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return ValidationResponse.model_validate(validation_to_dict(result))
