from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class SubmitJobResponse(BaseModel):
    job_id: str
    message: str


class JobResponse(BaseModel):
    id: str
    kind: str
    status: str
    created_by: str
    parameters: dict[str, Any]
    artifact_name: str | None
    size_bytes: int | None
    checksum: str | None
    result: dict[str, Any]
    error_message: str | None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    duration_ms: int | None


class JobHistoryResponse(BaseModel):
    items: list[JobResponse]
    total: int
    page: int
    page_size: int


class JobProgressResponse(BaseModel):
    job_id: str
    kind: str
    status: str
    percent: float
    current_step: str
    step_index: int
    total_steps: int
    start_time: datetime
    updated_at: datetime
    estimated_completion: datetime | None
    error_message: str | None


class ValidationMetadataResponse(BaseModel):
    version: str
    created_at: datetime
    size: int
    checksum: str
    tables: list[str]


class ValidationResponse(BaseModel):
    job_id: str
    valid: bool
    errors: list[str]
    warnings: list[str]
    metadata: ValidationMetadataResponse


class ActivityResponse(BaseModel):
    id: int
    action: str
    actor: str
    job_id: str | None
    details: str
    metadata: dict[str, Any]
    created_at: datetime


class ActivityPageResponse(BaseModel):
    items: list[ActivityResponse]
    total: int
    page: int
    page_size: int
