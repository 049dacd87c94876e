from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from estateops.db.models import JobKind, JobStatus


@dataclass(slots=True)
class JobSnapshot:
    id: str
    kind: JobKind
    status: JobStatus
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


@dataclass(slots=True)
class JobProgress:
    job_id: str
    kind: JobKind
    status: JobStatus
    percent: float
    current_step: str
    step_index: int
    total_steps: int
    start_time: datetime
    updated_at: datetime
    estimated_completion: datetime | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class JobHistoryPage:
    items: list[JobSnapshot]
    total: int
    page: int
    page_size: int


@dataclass(frozen=True)
class AdmissionDecision:
    granted: bool
    reason: str | None = None


@dataclass(slots=True)
class ValidationMetadata:
    version: str
    created_at: datetime
    size: int
    checksum: str
    tables: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ValidationResult:
    job_id: str
    valid: bool
    errors: list[str]
    warnings: list[str]
    metadata: ValidationMetadata


@dataclass(frozen=True)
class StorageUsage:
    artifact_count: int
    total_bytes: int
    max_backup_size_bytes: int


@dataclass(slots=True)
class ActivitySnapshot:
    id: int
    action: str
    actor: str
    job_id: str | None
    details: str
    metadata: dict[str, Any]
    created_at: datetime


@dataclass(frozen=True)
class ActivityPage:
    items: list[ActivitySnapshot]
    total: int
    page: int
    page_size: int
