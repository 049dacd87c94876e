from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class CreateBackupRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="Manual backup", min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2048)
    compression_level: int | None = Field(default=None, ge=0, le=9)
    included_tables: list[str] = Field(default_factory=list)


class CreateRestoreRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backup_id: str = Field(min_length=1, max_length=36)
    restore_type: Literal["full", "partial"] = "full"
    selected_tables: list[str] = Field(default_factory=list)
    create_backup_before_restore: bool = False


class BackupSettingsResponse(BaseModel):
    default_compression_level: int
    default_retention_days: int
    failed_job_retention_days: int | None
    max_concurrent_backups: int
    max_concurrent_restores: int
    max_backup_size_bytes: int
    job_timeout_seconds: int


class StorageUsageResponse(BaseModel):
    artifact_count: int
    total_bytes: int
    max_backup_size_bytes: int
