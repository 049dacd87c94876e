from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from estateops.db.models import ACTIVE_STATUSES, JobKind, JobStatus
from estateops.jobs.errors import JobNotFoundError
from estateops.jobs.types import JobProgress

_UPDATABLE_FIELDS = frozenset(
    {"status", "percent", "current_step", "step_index", "total_steps", "error_message"}
)


class ProgressTracker:
    """Live, process-local view of job progress.

    Entries are seeded at submission and kept until the process exits, so the
    last known state of a finished job stays queryable. Percent never moves
    backwards for a given job.
    """

    def __init__(self) -> None:
        self._entries: dict[str, JobProgress] = {}
        self._lock = threading.Lock()

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def seed(self, job_id: str, *, kind: JobKind, total_steps: int, current_step: str) -> JobProgress:
        now = self._now()
        entry = JobProgress(
            job_id=job_id,
            kind=kind,
            status=JobStatus.PENDING,
            percent=0.0,
            current_step=current_step,
            step_index=0,
            total_steps=total_steps,
            start_time=now,
            updated_at=now,
        )
        with self._lock:
            self._entries[job_id] = entry
            return replace(entry)

    def get(self, job_id: str) -> JobProgress:
        with self._lock:
            entry = self._entries.get(job_id)
            if entry is None:
                raise JobNotFoundError(f"Job operation not found: {job_id}")
            return replace(entry)

    def contains(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._entries

    def update(self, job_id: str, **fields: Any) -> JobProgress:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown progress fields: {sorted(unknown)}")

        with self._lock:
            entry = self._entries.get(job_id)
            if entry is None:
                raise JobNotFoundError(f"Job operation not found: {job_id}")

            now = self._now()
            if "percent" in fields:
                requested = min(100.0, max(0.0, float(fields.pop("percent"))))
                entry.percent = max(entry.percent, requested)
            for name, value in fields.items():
                setattr(entry, name, value)
            entry.updated_at = now
            entry.estimated_completion = self._estimate_completion(entry, now)
            return replace(entry)

    def list(self, *, active_only: bool = False, kind: JobKind | None = None) -> list[JobProgress]:
        with self._lock:
            entries = [replace(entry) for entry in self._entries.values()]
        if active_only:
            entries = [entry for entry in entries if entry.status in ACTIVE_STATUSES]
        if kind is not None:
            entries = [entry for entry in entries if entry.kind == kind]
        entries.sort(key=lambda entry: entry.start_time, reverse=True)
        return entries

    def _estimate_completion(self, entry: JobProgress, now: datetime) -> datetime | None:
        if entry.status not in ACTIVE_STATUSES:
            return None
        if entry.percent <= 0.0:
            return None
        elapsed = (now - entry.start_time).total_seconds()
        remaining = elapsed * (100.0 - entry.percent) / entry.percent
        return now + timedelta(seconds=remaining)


def progress_to_dict(progress: JobProgress) -> dict[str, Any]:
    return {
        "job_id": progress.job_id,
        "kind": progress.kind.value,
        "status": progress.status.value,
        "percent": progress.percent,
        "current_step": progress.current_step,
        "step_index": progress.step_index,
        "total_steps": progress.total_steps,
        "start_time": progress.start_time,
        "updated_at": progress.updated_at,
        "estimated_completion": progress.estimated_completion,
        "error_message": progress.error_message,
    }
