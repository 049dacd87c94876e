from __future__ import annotations


class AdmissionRejectedError(RuntimeError):
    pass


class JobNotFoundError(RuntimeError):
    pass


class InvalidJobStateError(RuntimeError):
    pass


class StepFailure(RuntimeError):
    pass


class JobCancelled(RuntimeError):
    pass


class JobParameterError(ValueError):
    pass
