from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from estateops.db.models import JobKind
from estateops.jobs.types import JobSnapshot


@dataclass
class StepContext:
    """State shared by the steps of one job run.

    ``scratch`` carries values between steps (artifact names, parsed rows).
    ``report`` raises intra-step progress; ``checkpoint`` lets long steps
    honour cancellation between batches.
    """

    job: JobSnapshot
    parameters: dict[str, Any]
    report: Callable[[float, str | None], None]
    checkpoint: Callable[[], None]
    scratch: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def job_id(self) -> str:
        return self.job.id


@dataclass(frozen=True)
class Step:
    label: str
    percent: float
    action: Callable[[StepContext], None]


@dataclass(frozen=True)
class StepOutcome:
    artifact_name: str | None = None
    size_bytes: int | None = None
    checksum: str | None = None
    result: dict[str, Any] = field(default_factory=dict)


class JobPipeline(ABC):
    kind: JobKind
    initial_label: str = "Initializing"
    finalize_label: str = "Finalizing"
    completed_label: str = "Completed"

    @abstractmethod
    def normalize_parameters(self, raw: dict[str, Any] | None) -> dict[str, Any]:
        """Validate submitted parameters; raise ``JobParameterError`` on bad input."""

    @abstractmethod
    def steps(self) -> list[Step]:
        raise NotImplementedError

    @abstractmethod
    def outcome(self, ctx: StepContext) -> StepOutcome:
        raise NotImplementedError

    def stage(self, job_id: str, parameters: dict[str, Any]) -> str | None:
        """Prepare inputs at submission time; returns the artifact name, if any."""
        return None

    def unstage(self, artifact_name: str | None) -> None:
        pass

    def discard(self, ctx: StepContext) -> None:
        """Remove partial output after a cancelled or failed run."""

    def partial_result(self, ctx: StepContext) -> dict[str, Any]:
        return {}

    def total_steps(self) -> int:
        return len(self.steps()) + 1
