from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from functools import partial

from estateops.db.models import JobKind, JobStatus
from estateops.jobs.activity import ActivityLogService
from estateops.jobs.admission import AdmissionController
from estateops.jobs.cancellation import CancellationBroker
from estateops.jobs.errors import JobCancelled, StepFailure
from estateops.jobs.pipeline import JobPipeline, StepContext
from estateops.jobs.progress import ProgressTracker
from estateops.jobs.store import JobRecordStore

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "cancelled by user"
INTERRUPTED_MESSAGE = "Interrupted by process restart"


@dataclass
class JobRuntime:
    """Process-scoped state shared by every runner of one engine."""

    tracker: ProgressTracker
    broker: CancellationBroker
    admission: AdmissionController

    @classmethod
    def create(cls, limits: dict[JobKind, int]) -> "JobRuntime":
        tracker = ProgressTracker()
        return cls(tracker=tracker, broker=CancellationBroker(tracker), admission=AdmissionController(limits))


class JobRunner:
    """Drives one job through ``pending -> running -> terminal``.

    ``run`` never raises: whatever happens, it tries to leave a terminal job
    record behind, clears the cancel flag and releases the admission slot.
    """

    def __init__(
        self,
        *,
        runtime: JobRuntime,
        store: JobRecordStore,
        activity: ActivityLogService,
        pipeline: JobPipeline,
        timeout_seconds: int,
    ):
        self._runtime = runtime
        self._store = store
        self._activity = activity
        self._pipeline = pipeline
        self._timeout_seconds = timeout_seconds

    def run(self, job_id: str) -> None:
        kind = self._pipeline.kind
        tracker = self._runtime.tracker
        deadline = time.monotonic() + self._timeout_seconds
        ctx: StepContext | None = None
        actor = "system"
        try:
            job = self._store.get(job_id)
            actor = job.created_by
            ctx = StepContext(
                job=job,
                parameters=dict(job.parameters),
                report=partial(self._report, job_id),
                checkpoint=partial(self._checkpoint, job_id, deadline),
            )
            self._checkpoint(job_id, deadline)

            ctx.job = self._store.mark_running(job_id)
            tracker.update(job_id, status=JobStatus.RUNNING)
            logger.info("Job %s (%s) started", job_id, kind.value)

            steps = self._pipeline.steps()
            for index, step in enumerate(steps, start=1):
                self._checkpoint(job_id, deadline)
                tracker.update(job_id, current_step=step.label, step_index=index)
                logger.debug("Job %s step %d/%d: %s", job_id, index, len(steps) + 1, step.label)
                step.action(ctx)
                tracker.update(job_id, percent=step.percent)

            self._checkpoint(job_id, deadline)
            tracker.update(job_id, current_step=self._pipeline.finalize_label, step_index=len(steps) + 1)
            outcome = self._pipeline.outcome(ctx)
            if not self._runtime.broker.seal(job_id):
                raise JobCancelled(CANCELLED_MESSAGE)
            self._store.mark_completed(
                job_id,
                size_bytes=outcome.size_bytes,
                checksum=outcome.checksum,
                artifact_name=outcome.artifact_name,
                result=outcome.result,
            )
            self._release(job_id)
            tracker.update(
                job_id,
                status=JobStatus.COMPLETED,
                percent=100.0,
                current_step=self._pipeline.completed_label,
            )
            logger.info("Job %s (%s) completed", job_id, kind.value)
            self._audit(job_id, actor, "job_completed", f"{kind.value} {job_id} completed", outcome.result)
        except JobCancelled:
            logger.info("Job %s (%s) cancelled", job_id, kind.value)
            self._discard(ctx)
            self._finish(job_id, actor, JobStatus.CANCELLED, CANCELLED_MESSAGE, ctx)
        except Exception as exc:
            logger.exception("Job %s (%s) failed", job_id, kind.value)
            self._discard(ctx)
            self._finish(job_id, actor, JobStatus.FAILED, str(exc) or exc.__class__.__name__, ctx)
        finally:
            self._runtime.broker.clear(job_id)
            self._runtime.admission.release(kind, job_id)

    def _release(self, job_id: str) -> None:
        # The slot must be free before any terminal status is observable.
        self._runtime.admission.release(self._pipeline.kind, job_id)

    def _checkpoint(self, job_id: str, deadline: float) -> None:
        if self._runtime.broker.is_cancelled(job_id):
            raise JobCancelled(CANCELLED_MESSAGE)
        if time.monotonic() > deadline:
            raise StepFailure(f"Job exceeded the configured timeout of {self._timeout_seconds} seconds")

    def _report(self, job_id: str, percent: float, label: str | None = None) -> None:
        if label is None:
            self._runtime.tracker.update(job_id, percent=percent)
        else:
            self._runtime.tracker.update(job_id, percent=percent, current_step=label)

    def _discard(self, ctx: StepContext | None) -> None:
        if ctx is None:
            return
        try:
            self._pipeline.discard(ctx)
        except OSError:
            logger.exception("Failed to discard partial output of job %s", ctx.job_id)

    def _finish(self, job_id: str, actor: str, status: JobStatus, message: str, ctx: StepContext | None) -> None:
        partial_result = self._pipeline.partial_result(ctx) if ctx is not None else {}
        try:
            if status == JobStatus.CANCELLED:
                self._store.mark_cancelled(job_id, message, result=partial_result)
            else:
                self._store.mark_failed(job_id, message, result=partial_result)
        except Exception:
            logger.exception("Failed to persist %s state for job %s", status.value, job_id)
        self._release(job_id)
        if self._runtime.tracker.contains(job_id):
            self._runtime.tracker.update(job_id, status=status, error_message=message)
        self._audit(job_id, actor, f"job_{status.value}", f"{self._pipeline.kind.value} {job_id} {status.value}: {message}", {})

    def _audit(self, job_id: str, actor: str, action: str, details: str, metadata: dict[str, object]) -> None:
        self._activity.record(action, actor=actor, job_id=job_id, details=details, metadata=dict(metadata))
