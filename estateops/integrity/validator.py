from __future__ import annotations

import logging

from estateops.db.models import JobStatus
from estateops.jobs.artifacts import ARTIFACT_FORMAT_VERSION, ArtifactStore
from estateops.jobs.store import JobRecordStore
from estateops.jobs.types import JobSnapshot, ValidationMetadata, ValidationResult

logger = logging.getLogger(__name__)

ARTIFACT_MISSING = "Artifact file not found"
SIZE_MISMATCH = "File size mismatch"
CHECKSUM_MISMATCH = "Checksum mismatch - file may be corrupted"


class IntegrityValidator:
    """Recomputes size and SHA-256 of a finished job's artifact and compares them with the record.

    Problems are reported through ``ValidationResult.errors``; the only
    exception raised is ``JobNotFoundError`` for an unknown job id.
    """

    def __init__(self, store: JobRecordStore, artifacts: ArtifactStore):
        self._store = store
        self._artifacts = artifacts

    def validate(self, job_id: str) -> ValidationResult:
        job = self._store.get(job_id)
        errors: list[str] = []
        warnings: list[str] = []
        label = job.kind.value.capitalize()

        if job.status != JobStatus.COMPLETED:
            errors.append(f"{label} is not completed (status: {job.status.value})")
            return self._result(job, errors, warnings, size=0, checksum="")

        if not job.artifact_name:
            errors.append(f"{label} jobs produce no artifact")
            return self._result(job, errors, warnings, size=0, checksum="")

        try:
            if not self._artifacts.exists(job.artifact_name):
                errors.append(ARTIFACT_MISSING)
                return self._result(job, errors, warnings, size=0, checksum="")
            actual_size = self._artifacts.size(job.artifact_name)
            actual_checksum = self._artifacts.digest(job.artifact_name)
        except OSError as exc:
            logger.warning("Could not read artifact of job %s: %s", job_id, exc)
            errors.append(f"Artifact could not be read: {exc}")
            return self._result(job, errors, warnings, size=0, checksum="")

        if job.size_bytes is None:
            warnings.append("No size recorded; size comparison skipped")
        elif actual_size != job.size_bytes:
            errors.append(SIZE_MISMATCH)

        if not job.checksum:
            warnings.append("No checksum recorded; digest comparison skipped")
        elif actual_checksum != job.checksum:
            errors.append(CHECKSUM_MISMATCH)

        if errors:
            logger.warning("Integrity check failed for job %s: %s", job_id, ", ".join(errors))
        return self._result(job, errors, warnings, size=actual_size, checksum=actual_checksum)

    def _result(
        self,
        job: JobSnapshot,
        errors: list[str],
        warnings: list[str],
        *,
        size: int,
        checksum: str,
    ) -> ValidationResult:
        tables = job.result.get("included_tables") or job.parameters.get("included_tables") or []
        return ValidationResult(
            job_id=job.id,
            valid=not errors,
            errors=errors,
            warnings=warnings,
            metadata=ValidationMetadata(
                version=str(job.result.get("format_version") or ARTIFACT_FORMAT_VERSION),
                created_at=job.created_at,
                size=size,
                checksum=checksum,
                tables=list(tables),
            ),
        )


def validation_to_dict(result: ValidationResult) -> dict[str, object]:
    return {
        "job_id": result.job_id,
        "valid": result.valid,
        "errors": list(result.errors),
        "warnings": list(result.warnings),
        "metadata": {
            "version": result.metadata.version,
            "created_at": result.metadata.created_at,
            "size": result.metadata.size,
            "checksum": result.metadata.checksum,
            "tables": list(result.metadata.tables),
        },
    }
