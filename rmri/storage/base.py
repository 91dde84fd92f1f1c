"""
Storage interfaces.

The orchestrator depends only on these two interfaces; the in-process
implementations in this package are the reference backends.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models.generation import AgentTier
from ..models.records import (
    AgentRecord,
    LogEntry,
    LogLevel,
    ResultRecord,
    ResultType,
    RunRecord,
)
from .models import ArtifactContent, ArtifactMetadata, ArtifactWriteResult, WriteMode


class ContextStore(ABC):
    """Versioned artifact store keyed by (run_id, agent_id, key)."""

    @abstractmethod
    async def write(
        self,
        run_id: str,
        agent_id: str,
        key: str,
        data: Any,
        mode: WriteMode = "overwrite",
        metadata: Optional[Dict[str, Any]] = None
    ) -> ArtifactWriteResult:
        """
        Store a new version of an artifact.

        In ``append`` mode the new data is merged with the active version
        before it is stored. Every write produces version = previous + 1.

        Raises:
            ArtifactTooLargeError: Serialized artifact above the size ceiling
            ValueError: Missing identifiers or unknown mode
        """
        pass

    @abstractmethod
    async def read(
        self,
        run_id: str,
        agent_id: str,
        key: str,
        summary_only: bool = False,
        version: Optional[int] = None
    ) -> Optional[ArtifactContent]:
        """Read the active version (or a given version); None when absent."""
        pass

    @abstractmethod
    async def list(self, run_id: str, agent_id: Optional[str] = None) -> List[ArtifactMetadata]:
        """Active artifacts of a run, optionally restricted to one agent."""
        pass

    @abstractmethod
    async def versions(self, run_id: str, agent_id: str, key: str) -> List[ArtifactMetadata]:
        """Version history of one artifact, newest first."""
        pass


class RecordStore(ABC):
    """Durable store for runs, agents, results and log entries."""

    # Runs
    @abstractmethod
    async def create_run(self, run: RunRecord) -> RunRecord:
        pass

    @abstractmethod
    async def get_run(self, run_id: str) -> RunRecord:
        pass

    @abstractmethod
    async def update_run(self, run_id: str, **changes: Any) -> RunRecord:
        pass

    # Agents
    @abstractmethod
    async def create_agent(self, agent: AgentRecord) -> AgentRecord:
        pass

    @abstractmethod
    async def get_agent(self, agent_id: str) -> AgentRecord:
        pass

    @abstractmethod
    async def update_agent(self, agent_id: str, **changes: Any) -> AgentRecord:
        pass

    @abstractmethod
    async def list_agents(
        self,
        run_id: str,
        tier: Optional[AgentTier] = None,
        iteration: Optional[int] = None
    ) -> List[AgentRecord]:
        pass

    @abstractmethod
    async def children(self, agent_id: str) -> List[AgentRecord]:
        pass

    # Results
    @abstractmethod
    async def add_result(self, result: ResultRecord) -> ResultRecord:
        pass

    @abstractmethod
    async def list_results(
        self,
        run_id: str,
        result_type: Optional[ResultType] = None,
        final_only: bool = False
    ) -> List[ResultRecord]:
        pass

    # Logs
    @abstractmethod
    async def add_log(self, entry: LogEntry) -> LogEntry:
        pass

    @abstractmethod
    async def list_logs(
        self,
        run_id: str,
        limit: Optional[int] = None,
        level: Optional[LogLevel] = None
    ) -> List[LogEntry]:
        """Log entries oldest first; with ``limit`` only the most recent ones."""
        pass
