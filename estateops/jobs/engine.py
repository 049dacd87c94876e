from __future__ import annotations

import logging
import threading
import uuid
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from estateops.backups.backup import BackupPipeline
from estateops.backups.executor import CommandExecutor, SubprocessCommandExecutor
from estateops.backups.restore import RestorePipeline
from estateops.core.config import Settings
from estateops.db.models import TERMINAL_STATUSES, JobKind, JobStatus
from estateops.imports.pipeline import ImportPipeline
from estateops.imports.sink import ImportSink, SqlPropertySaleSink
from estateops.imports.types import CsvValidationReport
from estateops.integrity.validator import IntegrityValidator
from estateops.jobs.activity import ActivityLogService
from estateops.jobs.artifacts import ArtifactStore
from estateops.jobs.cancellation import cannot_cancel_message
from estateops.jobs.errors import AdmissionRejectedError, InvalidJobStateError, JobNotFoundError
from estateops.jobs.pipeline import JobPipeline
from estateops.jobs.runner import INTERRUPTED_MESSAGE, JobRunner, JobRuntime
from estateops.jobs.store import JobRecordStore
from estateops.jobs.types import (
    ActivityPage,
    JobHistoryPage,
    JobProgress,
    JobSnapshot,
    StorageUsage,
    ValidationResult,
)
from estateops.retention.reaper import RetentionReaper

logger = logging.getLogger(__name__)


class JobEngine:
    """Entry point for submitting, observing, cancelling and reaping jobs.

    Each accepted job runs on its own daemon thread; admission control bounds
    how many threads of each kind exist at once. Methods taking ``kind``
    treat a record of another kind as missing.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        *,
        executor: CommandExecutor | None = None,
        sink: ImportSink | None = None,
    ):
        self._settings = settings
        self._store = JobRecordStore(session_factory)
        self._activity = ActivityLogService(session_factory)
        self._artifacts = ArtifactStore(settings.resolved_artifacts_root, chunk_bytes=settings.checksum_chunk_bytes)
        self._runtime = JobRuntime.create(
            {
                JobKind.BACKUP: settings.max_concurrent_backups,
                JobKind.RESTORE: settings.max_concurrent_restores,
                JobKind.IMPORT: settings.max_concurrent_imports,
            }
        )
        self._executor = executor or SubprocessCommandExecutor(settings.command_timeout_seconds)
        self._validator = IntegrityValidator(self._store, self._artifacts)
        self._reaper = RetentionReaper(settings, self._store, self._artifacts, self._activity)
        self._imports = ImportPipeline(settings, self._artifacts, sink or SqlPropertySaleSink(session_factory))
        self._pipelines: dict[JobKind, JobPipeline] = {
            JobKind.BACKUP: BackupPipeline(settings, self._artifacts, self._executor),
            JobKind.RESTORE: RestorePipeline(
                settings,
                self._store,
                self._artifacts,
                self._executor,
                self._validator,
                self._run_nested_backup,
            ),
            JobKind.IMPORT: self._imports,
        }
        self._threads: dict[str, threading.Thread] = {}
        self._threads_lock = threading.Lock()

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def store(self) -> JobRecordStore:
        return self._store

    @property
    def artifacts(self) -> ArtifactStore:
        return self._artifacts

    @property
    def runtime(self) -> JobRuntime:
        return self._runtime

    def submit(self, kind: JobKind | str, parameters: dict[str, Any] | None = None, actor: str = "system") -> str:
        kind = JobKind(kind)
        pipeline = self._pipelines[kind]
        normalized = pipeline.normalize_parameters(parameters)

        job_id = str(uuid.uuid4())
        admission = self._runtime.admission
        decision = admission.try_admit(kind, job_id)
        if not decision.granted:
            logger.warning("Rejected %s submission by %s: %s", kind.value, actor, decision.reason)
            raise AdmissionRejectedError(decision.reason)

        artifact_name: str | None = None
        try:
            artifact_name = pipeline.stage(job_id, normalized)
            self._store.create(
                job_id=job_id,
                kind=kind,
                created_by=actor,
                parameters=normalized,
                artifact_name=artifact_name,
            )
            self._runtime.tracker.seed(
                job_id,
                kind=kind,
                total_steps=pipeline.total_steps(),
                current_step=pipeline.initial_label,
            )
        except Exception:
            admission.release(kind, job_id)
            pipeline.unstage(artifact_name)
            raise

        self._activity.record(
            f"{kind.value}_submitted",
            actor=actor,
            job_id=job_id,
            details=f"{kind.value} {job_id} submitted",
            metadata={"parameters": normalized},
        )
        self._start(kind, job_id, pipeline)
        logger.info("Submitted %s job %s for %s", kind.value, job_id, actor)
        return job_id

    def _start(self, kind: JobKind, job_id: str, pipeline: JobPipeline) -> None:
        runner = JobRunner(
            runtime=self._runtime,
            store=self._store,
            activity=self._activity,
            pipeline=pipeline,
            timeout_seconds=self._settings.job_timeout_seconds,
        )
        thread = threading.Thread(
            target=runner.run,
            args=(job_id,),
            name=f"estateops-{kind.value}-{job_id[:8]}",
            daemon=True,
        )
        with self._threads_lock:
            self._prune_threads()
            self._threads[job_id] = thread
        try:
            thread.start()
        except RuntimeError as exc:
            logger.exception("Could not start worker thread for job %s", job_id)
            self._store.mark_failed(job_id, f"Worker could not be started: {exc}")
            self._runtime.tracker.update(job_id, status=JobStatus.FAILED, error_message=str(exc))
            self._runtime.admission.release(kind, job_id)
            raise

    def _prune_threads(self) -> None:
        finished = [job_id for job_id, thread in self._threads.items() if thread.ident and not thread.is_alive()]
        for job_id in finished:
            del self._threads[job_id]

    def _check_kind(self, job_id: str, actual: JobKind, expected: JobKind | None) -> None:
        if expected is not None and actual != JobKind(expected):
            raise JobNotFoundError(f"{JobKind(expected).value.capitalize()} not found: {job_id}")

    def get_progress(self, job_id: str, kind: JobKind | None = None) -> JobProgress:
        tracker = self._runtime.tracker
        if tracker.contains(job_id):
            progress = tracker.get(job_id)
        else:
            progress = self._progress_from_record(job_id)
        self._check_kind(job_id, progress.kind, kind)
        return progress

    def _progress_from_record(self, job_id: str) -> JobProgress:
        try:
            job = self._store.get(job_id)
        except JobNotFoundError as exc:
            raise JobNotFoundError(f"Job operation not found: {job_id}") from exc
        pipeline = self._pipelines[job.kind]
        total = pipeline.total_steps()
        completed = job.status == JobStatus.COMPLETED
        return JobProgress(
            job_id=job.id,
            kind=job.kind,
            status=job.status,
            percent=100.0 if completed else 0.0,
            current_step=pipeline.completed_label if completed else job.status.value,
            step_index=total if completed else 0,
            total_steps=total,
            start_time=job.started_at or job.created_at,
            updated_at=job.updated_at,
            error_message=job.error_message,
        )

    def list_active(self, kind: JobKind | None = None) -> list[JobProgress]:
        return self._runtime.tracker.list(active_only=True, kind=JobKind(kind) if kind is not None else None)

    def cancel(self, job_id: str, actor: str = "system", kind: JobKind | None = None) -> JobProgress:
        tracker = self._runtime.tracker
        if not tracker.contains(job_id):
            job = self.get_job(job_id, kind)
            if job.status in TERMINAL_STATUSES:
                raise InvalidJobStateError(cannot_cancel_message(job.kind.value))
            raise JobNotFoundError(f"Job operation not found: {job_id}")

        self._check_kind(job_id, tracker.get(job_id).kind, kind)
        self._runtime.broker.request_cancel(job_id)
        logger.info("Cancellation of job %s requested by %s", job_id, actor)
        self._activity.record(
            "job_cancel_requested",
            actor=actor,
            job_id=job_id,
            details=f"Cancellation requested for job {job_id}",
        )
        return tracker.get(job_id)

    def get_job(self, job_id: str, kind: JobKind | None = None) -> JobSnapshot:
        try:
            job = self._store.get(job_id)
        except JobNotFoundError as exc:
            if kind is None:
                raise
            raise JobNotFoundError(f"{JobKind(kind).value.capitalize()} not found: {job_id}") from exc
        self._check_kind(job_id, job.kind, kind)
        return job

    def list_history(
        self,
        page: int = 1,
        page_size: int | None = None,
        kind: JobKind | None = None,
    ) -> JobHistoryPage:
        size = self._settings.default_page_size if page_size is None else min(page_size, self._settings.max_page_size)
        items, total = self._store.list_page(
            page=page,
            page_size=size,
            kind=JobKind(kind) if kind is not None else None,
        )
        return JobHistoryPage(items=items, total=total, page=page, page_size=size)

    def validate(self, job_id: str, kind: JobKind | None = None) -> ValidationResult:
        self.get_job(job_id, kind)
        return self._validator.validate(job_id)

    def validate_import_file(self, source_path: str, actor: str = "system") -> CsvValidationReport:
        report = self._imports.dry_run(source_path)
        logger.info(
            "Validated %s for %s: %d records, %d errors", report.source_path, actor, report.record_count, len(report.errors)
        )
        self._activity.record(
            "csv_validation",
            actor=actor,
            details=(
                f"Validated CSV file {report.source_path}: {report.record_count} records, "
                f"{len(report.errors)} errors, {len(report.warnings)} warnings"
            ),
            metadata={
                "source_path": report.source_path,
                "record_count": report.record_count,
                "errors": len(report.errors),
                "warnings": len(report.warnings),
            },
        )
        return report

    def sweep(self, retention_days: int | None = None, actor: str = "system") -> int:
        return self._reaper.sweep(retention_days, actor=actor)

    def reconcile_interrupted_jobs(self, actor: str = "system") -> int:
        # Admission is granted before the record exists, so it covers half-submitted jobs too.
        admission = self._runtime.admission
        owned = [job_id for kind in JobKind for job_id in admission.active(kind)]
        count = self._store.reconcile_interrupted(error_message=INTERRUPTED_MESSAGE, exclude=owned)
        if count:
            logger.warning("Marked %d interrupted jobs as failed", count)
            self._activity.record(
                "jobs_reconciled",
                actor=actor,
                details=f"Marked {count} interrupted jobs as failed",
                metadata={"count": count},
            )
        return count

    def storage_usage(self) -> StorageUsage:
        count, total = self._store.storage_usage()
        return StorageUsage(
            artifact_count=count,
            total_bytes=total,
            max_backup_size_bytes=self._settings.max_backup_size_bytes,
        )

    def list_activity(self, page: int = 1, page_size: int | None = None, job_id: str | None = None) -> ActivityPage:
        size = self._settings.default_page_size if page_size is None else min(page_size, self._settings.max_page_size)
        return self._activity.list_page(page=page, page_size=size, job_id=job_id)

    def wait(self, job_id: str, timeout: float | None = None) -> JobSnapshot:
        with self._threads_lock:
            thread = self._threads.get(job_id)
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                raise TimeoutError(f"Job {job_id} still running after {timeout} seconds")
        return self._store.get(job_id)

    def shutdown(self, timeout: float | None = 5.0, *, cancel_active: bool = True) -> None:
        if cancel_active:
            for progress in self._runtime.tracker.list(active_only=True):
                try:
                    self._runtime.broker.request_cancel(progress.job_id)
                except (InvalidJobStateError, JobNotFoundError):
                    continue
        with self._threads_lock:
            threads = list(self._threads.values())
        for thread in threads:
            if thread.ident:
                thread.join(timeout)

    def _run_nested_backup(self, parameters: dict[str, Any], actor: str) -> JobSnapshot:
        job_id = self.submit(JobKind.BACKUP, parameters, actor)
        return self.wait(job_id)
