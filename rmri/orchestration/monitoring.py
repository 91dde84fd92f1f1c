"""Status, queue and health reporting over run records and live queues."""

from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterable, List

from ..config.constants import QUEUE_DEGRADED_FAILED_JOBS
from ..models.generation import AgentTier
from ..models.records import AgentRecord, AgentStatus, LogEntry, RunRecord
from .reports import RunStatusReport
from .state import RunState

TIERS = (AgentTier.MICRO, AgentTier.MESO, AgentTier.META)


def elapsed_ms(run: RunRecord) -> int:
    if run.started_at is None:
        return 0
    end = run.completed_at or datetime.now()
    return max(0, int((end - run.started_at).total_seconds() * 1000))


def build_status_report(run: RunRecord, agents: List[AgentRecord], logs: List[LogEntry]) -> RunStatusReport:
    by_status = Counter(a.status.value for a in agents)
    by_tier: Dict[str, Dict[str, int]] = {}
    for agent in agents:
        tier_counts = by_tier.setdefault(agent.tier.value, {})
        tier_counts[agent.status.value] = tier_counts.get(agent.status.value, 0) + 1

    completed = by_status.get(AgentStatus.COMPLETED.value, 0)
    progress = round(completed / len(agents) * 100) if agents else 0

    return RunStatusReport(
        run_id=run.id,
        status=run.status,
        progress=progress,
        current_iteration=run.current_iteration,
        total_items=run.total_items,
        agents_by_status=dict(by_status),
        agents_by_tier=by_tier,
        elapsed_ms=elapsed_ms(run),
        error_message=run.error_message,
        converged=run.converged,
        recent_logs=logs,
    )


def _sum_stats(stats: Iterable[Dict[str, int]]) -> Dict[str, int]:
    total: Counter = Counter()
    for entry in stats:
        total.update(entry)
    return {key: total.get(key, 0) for key in ("waiting", "active", "completed", "failed", "timed_out", "cancelled")}


def queue_stats(states: Iterable[RunState]) -> Dict[str, Any]:
    states = list(states)
    runs = {
        state.run_id: {tier.value: state.queues[tier].stats() for tier in TIERS}
        for state in states
    }
    totals = {
        tier.value: _sum_stats(state.queues[tier].stats() for state in states)
        for tier in TIERS
    }
    return {"timestamp": datetime.now().isoformat(), "totals": totals, "runs": runs}


def queue_health(states: Iterable[RunState]) -> Dict[str, Any]:
    """Active and waiting counts over active runs; degraded above the failed-job ceiling."""
    states = list(states)
    active_runs = [s for s in states if not s.done]

    tiers = {}
    for tier in TIERS:
        stats = _sum_stats(s.queues[tier].stats() for s in active_runs)
        tiers[tier.value] = {"active": stats["active"], "waiting": stats["waiting"]}

    all_stats = _sum_stats(s.queues[t].stats() for s in states for t in TIERS)
    failed = all_stats["failed"] + all_stats["timed_out"]

    return {
        "status": "degraded" if failed > QUEUE_DEGRADED_FAILED_JOBS else "healthy",
        "active_runs": len(active_runs),
        "failed_jobs": failed,
        "queues": tiers,
    }
