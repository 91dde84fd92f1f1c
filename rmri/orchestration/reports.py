"""Values returned by the orchestrator's lifecycle and status operations."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.records import LogEntry, RunStatus


class OrchestrationStarted(BaseModel):
    """Acknowledgement returned as soon as a run has been scheduled."""

    run_id: str
    status: RunStatus
    total_items: int
    config: Dict[str, Any] = Field(default_factory=dict)


class RunOutcome(BaseModel):
    """Terminal state of a run, returned by ``wait_for_completion``."""

    run_id: str
    status: RunStatus
    iterations: int = 0
    converged: Optional[bool] = None
    error_message: Optional[str] = None
    elapsed_ms: int = 0
    final_report: Optional[Dict[str, Any]] = None


class RunStatusReport(BaseModel):
    """Progress snapshot of a run."""

    run_id: str
    status: RunStatus
    progress: int = Field(0, description="Completed agents over total agents, in percent")
    current_iteration: int = 0
    total_items: int = 0
    agents_by_status: Dict[str, int] = Field(default_factory=dict)
    agents_by_tier: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    elapsed_ms: int = 0
    error_message: Optional[str] = None
    converged: Optional[bool] = None
    recent_logs: List[LogEntry] = Field(default_factory=list)
