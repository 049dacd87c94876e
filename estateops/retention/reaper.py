from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from estateops.core.config import Settings
from estateops.db.models import JobStatus
from estateops.jobs.activity import ActivityLogService
from estateops.jobs.artifacts import ArtifactStore
from estateops.jobs.store import JobRecordStore
from estateops.jobs.types import JobSnapshot

logger = logging.getLogger(__name__)


class RetentionReaper:
    """Deletes finished jobs (artifact first, then record) older than a retention horizon.

    Completed jobs are reaped after ``retention_days``. Failed and cancelled
    jobs are only reaped when ``failed_job_retention_days`` is configured.
    Pending and running jobs are never touched.
    """

    def __init__(
        self,
        settings: Settings,
        store: JobRecordStore,
        artifacts: ArtifactStore,
        activity: ActivityLogService,
    ):
        self._settings = settings
        self._store = store
        self._artifacts = artifacts
        self._activity = activity

    def sweep(self, retention_days: int | None = None, *, actor: str = "system", now: datetime | None = None) -> int:
        days = self._settings.default_retention_days if retention_days is None else retention_days
        if days < 1:
            raise ValueError("retention_days must be >= 1")
        now = now or datetime.now(tz=timezone.utc)

        candidates = self._store.list_reapable(cutoff=now - timedelta(days=days), statuses=[JobStatus.COMPLETED])
        failed_days = self._settings.failed_job_retention_days
        if failed_days is not None:
            candidates.extend(
                self._store.list_reapable(
                    cutoff=now - timedelta(days=failed_days),
                    statuses=[JobStatus.FAILED, JobStatus.CANCELLED],
                )
            )

        removed = 0
        for job in candidates:
            if self._reap(job):
                removed += 1

        logger.info("Retention sweep removed %d of %d candidate jobs (retention %d days)", removed, len(candidates), days)
        self._activity.record(
            "retention_sweep",
            actor=actor,
            details=f"Retention sweep removed {removed} jobs older than {days} days",
            metadata={"retention_days": days, "removed": removed, "candidates": len(candidates)},
        )
        return removed

    def _reap(self, job: JobSnapshot) -> bool:
        if job.artifact_name:
            try:
                self._artifacts.delete(job.artifact_name)
            except OSError:
                logger.exception("Failed to delete artifact %s of job %s; keeping record", job.artifact_name, job.id)
                return False
        try:
            return self._store.delete(job.id)
        except Exception:
            logger.exception("Failed to delete record of job %s", job.id)
            return False
