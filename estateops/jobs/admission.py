from __future__ import annotations

import threading

from estateops.db.models import JobKind
from estateops.jobs.types import AdmissionDecision


class AdmissionController:
    """Caps how many jobs of each kind may be active at once.

    Every granted admission must be paired with one ``release``. Releasing a
    job id that is not active is a no-op, so the runner and the submission
    rollback path may both release without double counting.
    """

    def __init__(self, limits: dict[JobKind, int]):
        for kind, limit in limits.items():
            if limit < 1:
                raise ValueError(f"Concurrency limit for {kind.value} must be >= 1")
        self._limits = dict(limits)
        self._active: dict[JobKind, set[str]] = {kind: set() for kind in JobKind}
        self._lock = threading.Lock()

    def limit(self, kind: JobKind) -> int:
        return self._limits.get(kind, 1)

    def try_admit(self, kind: JobKind, job_id: str) -> AdmissionDecision:
        with self._lock:
            active = self._active[kind]
            if job_id in active:
                return AdmissionDecision(granted=True)
            limit = self.limit(kind)
            if len(active) >= limit:
                return AdmissionDecision(
                    granted=False,
                    reason=f"Too many concurrent {kind.value} operations (limit {limit})",
                )
            active.add(job_id)
            return AdmissionDecision(granted=True)

    def release(self, kind: JobKind, job_id: str) -> bool:
        with self._lock:
            active = self._active[kind]
            if job_id not in active:
                return False
            active.discard(job_id)
            return True

    def active(self, kind: JobKind) -> set[str]:
        with self._lock:
            return set(self._active[kind])

    def active_count(self, kind: JobKind) -> int:
        with self._lock:
            return len(self._active[kind])
