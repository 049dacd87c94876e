from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from estateops.db.models import ACTIVE_STATUSES, TERMINAL_STATUSES, Job, JobKind, JobStatus
from estateops.jobs.errors import InvalidJobStateError, JobNotFoundError
from estateops.jobs.types import JobSnapshot

ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.CANCELLED, JobStatus.FAILED},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
    JobStatus.CANCELLED: set(),
}


class JobRecordStore:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def _coerce_utc(self, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def _enforce_transition(self, from_status: JobStatus, to_status: JobStatus) -> None:
        if to_status not in ALLOWED_TRANSITIONS[from_status]:
            raise InvalidJobStateError(f"Illegal transition: {from_status.value} -> {to_status.value}")

    def _load(self, session: Session, job_id: str) -> Job:
        job = session.get(Job, job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    def create(
        self,
        *,
        job_id: str,
        kind: JobKind,
        created_by: str,
        parameters: dict[str, Any] | None = None,
        artifact_name: str | None = None,
    ) -> JobSnapshot:
        now = self._now()
        with self._session_factory() as session:
            job = Job(
                id=job_id,
                kind=kind,
                status=JobStatus.PENDING,
                created_by=created_by,
                parameters=parameters or {},
                artifact_name=artifact_name,
                result={},
                created_at=now,
                updated_at=now,
            )
            session.add(job)
            session.commit()
            session.refresh(job)
            return self._to_snapshot(job)

    def get(self, job_id: str) -> JobSnapshot:
        with self._session_factory() as session:
            return self._to_snapshot(self._load(session, job_id))

    def list_page(self, *, page: int = 1, page_size: int = 20, kind: JobKind | None = None) -> tuple[list[JobSnapshot], int]:
        if page < 1:
            raise ValueError("page must be >= 1")
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        with self._session_factory() as session:
            stmt = select(Job).order_by(Job.created_at.desc(), Job.id.desc())
            count_stmt = select(func.count()).select_from(Job)
            if kind is not None:
                stmt = stmt.where(Job.kind == kind)
                count_stmt = count_stmt.where(Job.kind == kind)
            total = int(session.scalar(count_stmt) or 0)
            rows = session.scalars(stmt.offset((page - 1) * page_size).limit(page_size)).all()
            return [self._to_snapshot(row) for row in rows], total

    def mark_running(self, job_id: str) -> JobSnapshot:
        with self._session_factory() as session:
            job = self._load(session, job_id)
            self._enforce_transition(job.status, JobStatus.RUNNING)
            now = self._now()
            job.status = JobStatus.RUNNING
            job.started_at = now
            job.updated_at = now
            session.commit()
            session.refresh(job)
            return self._to_snapshot(job)

    def mark_completed(
        self,
        job_id: str,
        *,
        size_bytes: int | None,
        checksum: str | None,
        artifact_name: str | None,
        result: dict[str, Any],
    ) -> JobSnapshot:
        with self._session_factory() as session:
            job = self._load(session, job_id)
            self._finish(job, JobStatus.COMPLETED, error_message=None)
            job.size_bytes = size_bytes
            job.checksum = checksum
            job.artifact_name = artifact_name
            job.result = result
            session.commit()
            session.refresh(job)
            return self._to_snapshot(job)

    def mark_failed(self, job_id: str, error_message: str, *, result: dict[str, Any] | None = None) -> JobSnapshot:
        return self._mark_terminal(job_id, JobStatus.FAILED, error_message, result)

    def mark_cancelled(self, job_id: str, error_message: str, *, result: dict[str, Any] | None = None) -> JobSnapshot:
        return self._mark_terminal(job_id, JobStatus.CANCELLED, error_message, result)

    def _mark_terminal(
        self,
        job_id: str,
        status: JobStatus,
        error_message: str,
        result: dict[str, Any] | None,
    ) -> JobSnapshot:
        with self._session_factory() as session:
            job = self._load(session, job_id)
            self._finish(job, status, error_message=error_message)
            if result:
                job.result = {**(job.result or {}), **result}
            session.commit()
            session.refresh(job)
            return self._to_snapshot(job)

    def _finish(self, job: Job, status: JobStatus, *, error_message: str | None) -> None:
        self._enforce_transition(job.status, status)
        now = self._now()
        started = self._coerce_utc(job.started_at) or self._coerce_utc(job.created_at) or now
        job.status = status
        job.error_message = error_message
        job.completed_at = now
        job.duration_ms = max(0, int((now - started).total_seconds() * 1000))
        job.updated_at = now

    def list_reapable(self, *, cutoff: datetime, statuses: Iterable[JobStatus]) -> list[JobSnapshot]:
        wanted = [status for status in statuses if status in TERMINAL_STATUSES]
        if not wanted:
            return []
        with self._session_factory() as session:
            rows = session.scalars(
                select(Job)
                .where(Job.status.in_(wanted), Job.created_at < cutoff)
                .order_by(Job.created_at.asc(), Job.id.asc())
            ).all()
            return [self._to_snapshot(row) for row in rows]

    def delete(self, job_id: str) -> bool:
        with self._session_factory() as session:
            job = session.get(Job, job_id)
            if job is None:
                return False
            session.delete(job)
            session.commit()
            return True

    def reconcile_interrupted(self, *, error_message: str, exclude: Iterable[str] = ()) -> int:
        excluded = set(exclude)
        with self._session_factory() as session:
            stale = [
                job
                for job in session.scalars(select(Job).where(Job.status.in_(list(ACTIVE_STATUSES)))).all()
                if job.id not in excluded
            ]
            for job in stale:
                self._finish(job, JobStatus.FAILED, error_message=error_message)
            if stale:
                session.commit()
            return len(stale)

    def storage_usage(self) -> tuple[int, int]:
        with self._session_factory() as session:
            count, total = session.execute(
                select(func.count(), func.coalesce(func.sum(Job.size_bytes), 0)).where(
                    Job.status == JobStatus.COMPLETED,
                    Job.artifact_name.is_not(None),
                )
            ).one()
            return int(count or 0), int(total or 0)

    def _to_snapshot(self, job: Job) -> JobSnapshot:
        return JobSnapshot(
            id=job.id,
            kind=job.kind,
            status=job.status,
            created_by=job.created_by,
            parameters=dict(job.parameters or {}),
            artifact_name=job.artifact_name,
            size_bytes=job.size_bytes,
            checksum=job.checksum,
            result=dict(job.result or {}),
            error_message=job.error_message,
            created_at=self._coerce_utc(job.created_at),  # type: ignore[arg-type]
            updated_at=self._coerce_utc(job.updated_at),  # type: ignore[arg-type]
            started_at=self._coerce_utc(job.started_at),
            completed_at=self._coerce_utc(job.completed_at),
            duration_ms=job.duration_ms,
        )


def snapshot_to_dict(snapshot: JobSnapshot) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "kind": snapshot.kind.value,
        "status": snapshot.status.value,
        "created_by": snapshot.created_by,
        "parameters": snapshot.parameters,
        "artifact_name": snapshot.artifact_name,
        "size_bytes": snapshot.size_bytes,
        "checksum": snapshot.checksum,
        "result": snapshot.result,
        "error_message": snapshot.error_message,
        "created_at": snapshot.created_at,
        "updated_at": snapshot.updated_at,
        "started_at": snapshot.started_at,
        "completed_at": snapshot.completed_at,
        "duration_ms": snapshot.duration_ms,
    }
