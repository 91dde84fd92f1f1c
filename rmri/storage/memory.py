"""In-process record store."""

import asyncio
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
from .base import RecordStore
from .errors import RecordNotFoundError


class InMemoryRecordStore(RecordStore):
    """
    Record store keeping everything in dictionaries.

    Agents are kept in an id-indexed table; the parent/child relation is
    resolved by scanning ``parent_id``. Returned records are copies, so
    callers cannot mutate stored state.
    """

    def __init__(self):
        self._runs: Dict[str, RunRecord] = {}
        self._agents: Dict[str, AgentRecord] = {}
        self._results: Dict[str, List[ResultRecord]] = {}
        self._logs: Dict[str, List[LogEntry]] = {}
        self._lock = asyncio.Lock()

    # Runs

    async def create_run(self, run: RunRecord) -> RunRecord:
        async with self._lock:
            self._runs[run.id] = run.model_copy(deep=True)
        return run

    async def get_run(self, run_id: str) -> RunRecord:
        run = self._runs.get(run_id)
        if run is None:
            raise RecordNotFoundError("Run", run_id)
        return run.model_copy(deep=True)

    async def update_run(self, run_id: str, **changes: Any) -> RunRecord:
        async with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                raise RecordNotFoundError("Run", run_id)
            updated = run.model_copy(update=changes)
            self._runs[run_id] = updated
        return updated.model_copy(deep=True)

    # Agents

    async def create_agent(self, agent: AgentRecord) -> AgentRecord:
        if agent.parent_id is not None and agent.parent_id not in self._agents:
            raise RecordNotFoundError("Agent", agent.parent_id)
        async with self._lock:
            self._agents[agent.id] = agent.model_copy(deep=True)
        return agent

    async def get_agent(self, agent_id: str) -> AgentRecord:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise RecordNotFoundError("Agent", agent_id)
        return agent.model_copy(deep=True)

    async def update_agent(self, agent_id: str, **changes: Any) -> AgentRecord:
        async with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None:
                raise RecordNotFoundError("Agent", agent_id)
            updated = agent.model_copy(update=changes)
            self._agents[agent_id] = updated
        return updated.model_copy(deep=True)

    async def list_agents(
        self,
        run_id: str,
        tier: Optional[AgentTier] = None,
        iteration: Optional[int] = None
    ) -> List[AgentRecord]:
        return [
            a.model_copy(deep=True) for a in self._agents.values()
            if a.run_id == run_id
            and (tier is None or a.tier == tier)
            and (iteration is None or a.iteration == iteration)
        ]

    async def children(self, agent_id: str) -> List[AgentRecord]:
        return [a.model_copy(deep=True) for a in self._agents.values() if a.parent_id == agent_id]

    # Results

    async def add_result(self, result: ResultRecord) -> ResultRecord:
        async with self._lock:
            self._results.setdefault(result.run_id, []).append(result.model_copy(deep=True))
        return result

    async def list_results(
        self,
        run_id: str,
        result_type: Optional[ResultType] = None,
        final_only: bool = False
    ) -> List[ResultRecord]:
        return [
            r.model_copy(deep=True) for r in self._results.get(run_id, [])
            if (result_type is None or r.result_type == result_type)
            and (not final_only or r.is_final)
        ]

    # Logs

    async def add_log(self, entry: LogEntry) -> LogEntry:
        async with self._lock:
            self._logs.setdefault(entry.run_id, []).append(entry.model_copy(deep=True))
        return entry

    async def list_logs(
        self,
        run_id: str,
        limit: Optional[int] = None,
        level: Optional[LogLevel] = None
    ) -> List[LogEntry]:
        entries = [
            e.model_copy(deep=True) for e in self._logs.get(run_id, [])
            if level is None or e.level == level
        ]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries
