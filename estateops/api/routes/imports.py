from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import PlainTextResponse

from estateops.api.dependencies import get_actor, get_engine
from estateops.api.schemas.imports import CreateImportRequest, CsvValidationResponse, ValidateImportRequest
from estateops.api.schemas.jobs import JobHistoryResponse, JobProgressResponse, JobResponse, SubmitJobResponse, ValidationResponse
from estateops.db.models import JobKind
from estateops.imports.records import csv_template
from estateops.integrity.validator import validation_to_dict
from estateops.jobs.engine import JobEngine
from estateops.jobs.errors import AdmissionRejectedError, InvalidJobStateError, JobNotFoundError, JobParameterError
from estateops.jobs.progress import progress_to_dict
from estateops.jobs.store import snapshot_to_dict

router = APIRouter(prefix="/imports", tags=["imports"])


@router.post("", response_model=SubmitJobResponse, status_code=status.HTTP_202_ACCEPTED)
def create_import(
    request: CreateImportRequest,
    engine: JobEngine = Depends(get_engine),
    actor: str = Depends(get_actor),
) -> SubmitJobResponse:
    try:
        job_id = engine.submit(JobKind.IMPORT, request.model_dump(exclude_none=True), actor)
    except AdmissionRejectedError as exc:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(exc)) from exc
    except JobParameterError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return SubmitJobResponse(job_id=job_id, message="Import started")


@router.post("/validate", response_model=CsvValidationResponse)
def validate_import_file(
    request: ValidateImportRequest,
    engine: JobEngine = Depends(get_engine),
    actor: str = Depends(get_actor),
) -> CsvValidationResponse:
    try:
        report = engine.validate_import_file(request.source_path, actor)
    except JobParameterError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return CsvValidationResponse.model_validate(report.to_dict())


@router.get("/active", response_model=list[JobProgressResponse])
def list_active_imports(engine: JobEngine = Depends(get_engine)) -> list[JobProgressResponse]:
    return [JobProgressResponse.model_validate(progress_to_dict(item)) for item in engine.list_active(JobKind.IMPORT)]


@router.get("/history", response_model=JobHistoryResponse)
def list_import_history(
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1),
    engine: JobEngine = Depends(get_engine),
) -> JobHistoryResponse:
    history = engine.list_history(page=page, page_size=page_size, kind=JobKind.IMPORT)
    return JobHistoryResponse(
        items=[JobResponse.model_validate(snapshot_to_dict(item)) for item in history.items],
        total=history.total,
        page=history.page,
        page_size=history.page_size,
    )


@router.get("/template", response_class=PlainTextResponse)
def download_import_template() -> PlainTextResponse:
    return PlainTextResponse(
        csv_template(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="land-registry-template.csv"'},
    )


@router.get("/{job_id}/progress", response_model=JobProgressResponse)
def get_import_progress(job_id: str, engine: JobEngine = Depends(get_engine)) -> JobProgressResponse:
    try:
        progress = engine.get_progress(job_id, kind=JobKind.IMPORT)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobProgressResponse.model_validate(progress_to_dict(progress))


@router.post("/{job_id}/cancel", response_model=JobProgressResponse)
def cancel_import(
    job_id: str,
    engine: JobEngine = Depends(get_engine),
    actor: str = Depends(get_actor),
) -> JobProgressResponse:
    try:
        progress = engine.cancel(job_id, actor, kind=JobKind.IMPORT)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidJobStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return JobProgressResponse.model_validate(progress_to_dict(progress))


@router.get("/{job_id}/validate", response_model=ValidationResponse)
def validate_import(job_id: str, engine: JobEngine = Depends(get_engine)) -> ValidationResponse:
    try:
        result = engine.validate(job_id, kind=JobKind.IMPORT)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return ValidationResponse.model_validate(validation_to_dict(result))
