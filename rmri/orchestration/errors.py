"""Orchestration-specific error definitions."""

from typing import Optional


class OrchestratorError(Exception):
    """Base exception for orchestration errors."""
    pass


class JobTimeoutError(OrchestratorError):
    """Exception raised when a job exceeds its time budget."""

    def __init__(self, job_id: str, timeout_s: float):
        self.job_id = job_id
        self.timeout_s = timeout_s
        super().__init__(f"Job '{job_id}' timed out after {timeout_s}s")


class PhaseToleranceExceeded(OrchestratorError):
    """Exception raised when too few jobs of a phase succeeded."""

    def __init__(self, phase: str, succeeded: int, total: int, required_fraction: float):
        self.phase = phase
        self.succeeded = succeeded
        self.total = total
        self.required_fraction = required_fraction

        message = (
            f"{phase} phase below tolerance: {succeeded}/{total} succeeded, "
            f"at least {required_fraction:.0%} required"
        )
        super().__init__(message)


class FatalOrchestrationError(OrchestratorError):
    """Exception raised when a run cannot continue."""

    def __init__(self, run_id: str, reason: str, original_error: Optional[Exception] = None):
        self.run_id = run_id
        self.reason = reason
        self.original_error = original_error
        super().__init__(f"Run '{run_id}' failed: {reason}")


class RunNotFoundError(OrchestratorError):
    """Exception raised for unknown run ids."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run '{run_id}' not found")


class RunAlreadyActiveError(OrchestratorError):
    """Exception raised when starting a run that is already executing."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run '{run_id}' is already active")


class RunAlreadyExistsError(OrchestratorError):
    """Exception raised when starting a run whose id is already recorded."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run '{run_id}' already exists")


class RunNotActiveError(OrchestratorError):
    """Exception raised when cancelling a run that is not executing."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run '{run_id}' is not active")
