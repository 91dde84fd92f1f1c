"""Durable records of a run: the run itself, its agents, results and log stream."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .generation import AgentTier


class RunStatus(str, Enum):
    INITIALIZING = "initializing"
    PLANNING = "planning"
    EXECUTING = "executing"
    SYNTHESIZING = "synthesizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


class AgentStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ResultType(str, Enum):
    ANALYSIS = "analysis"
    SYNTHESIS = "synthesis"
    FINAL_REPORT = "final_report"


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class RunRecord(BaseModel):
    """One orchestration run."""
    id: str
    query: str = ""
    status: RunStatus = RunStatus.INITIALIZING
    config: Dict[str, Any] = Field(default_factory=dict)
    current_iteration: int = 0
    total_items: int = 0
    error_message: Optional[str] = None
    converged: Optional[bool] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AgentRecord(BaseModel):
    """
    One agent of a run.

    Agents live in an id-indexed table. ``parent_id`` links a Meta agent to
    the Meso agent of the same iteration; Micro and Meso agents have none.
    """
    id: str
    run_id: str
    tier: AgentTier
    name: str
    iteration: int
    parent_id: Optional[str] = None
    item_id: Optional[str] = None
    status: AgentStatus = AgentStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    execution_time_ms: Optional[int] = None
    confidence: Optional[float] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ResultRecord(BaseModel):
    id: str
    run_id: str
    agent_id: Optional[str] = None
    iteration: int
    result_type: ResultType
    content: Dict[str, Any]
    confidence: Optional[float] = None
    is_final: bool = False
    created_at: datetime = Field(default_factory=datetime.now)


class LogEntry(BaseModel):
    id: str
    run_id: str
    agent_id: Optional[str] = None
    level: LogLevel = LogLevel.INFO
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)
