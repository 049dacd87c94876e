from __future__ import annotations

import threading

from estateops.db.models import TERMINAL_STATUSES
from estateops.jobs.errors import InvalidJobStateError
from estateops.jobs.progress import ProgressTracker


def cannot_cancel_message(kind_label: str) -> str:
    return f"Cannot cancel completed or failed {kind_label}."


class CancellationBroker:
    """Cooperative cancel flags, polled by the runner between steps.

    A request only takes effect at the next step boundary; a step that is
    already executing (an external export command, for example) runs to the
    end first. Once the runner has sealed a job on its way to ``completed``,
    further requests are refused as if the job were already terminal.
    """

    def __init__(self, tracker: ProgressTracker):
        self._tracker = tracker
        self._requested: set[str] = set()
        self._sealed: set[str] = set()
        self._lock = threading.Lock()

    def request_cancel(self, job_id: str) -> None:
        with self._lock:
            progress = self._tracker.get(job_id)
            if progress.status in TERMINAL_STATUSES or job_id in self._sealed:
                raise InvalidJobStateError(cannot_cancel_message(progress.kind.value))
            self._requested.add(job_id)

    def is_cancelled(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._requested

    def seal(self, job_id: str) -> bool:
        """Close the job to cancellation; returns False if a request is already pending."""
        with self._lock:
            if job_id in self._requested:
                return False
            self._sealed.add(job_id)
            return True

    def clear(self, job_id: str) -> None:
        with self._lock:
            self._requested.discard(job_id)
            self._sealed.discard(job_id)
