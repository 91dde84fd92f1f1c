"""Run orchestration: queues, phases, lifecycle and status."""

from .errors import (
    FatalOrchestrationError,
    JobTimeoutError,
    OrchestratorError,
    PhaseToleranceExceeded,
    RunAlreadyActiveError,
    RunAlreadyExistsError,
    RunNotActiveError,
    RunNotFoundError,
)
from .options import OrchestrationConfig
from .orchestrator import RMRIOrchestrator
from .queue import JobOutcome, JobQueue, JobStatus
from .reports import OrchestrationStarted, RunOutcome, RunStatusReport

__all__ = [
    # Core orchestration
    "RMRIOrchestrator",
    "OrchestrationConfig",
    "OrchestrationStarted",
    "RunOutcome",
    "RunStatusReport",

    # Job queues
    "JobQueue",
    "JobOutcome",
    "JobStatus",

    # Errors
    "OrchestratorError",
    "JobTimeoutError",
    "PhaseToleranceExceeded",
    "FatalOrchestrationError",
    "RunNotFoundError",
    "RunAlreadyActiveError",
    "RunAlreadyExistsError",
    "RunNotActiveError",
]
