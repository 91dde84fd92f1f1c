"""
Recursive Micro-Meso-Meta orchestrator.

Each run iterates a wave of Micro jobs (one per input item), a single Meso
job over the Micro outputs and a single Meta job over the Meso output. The
Meta verdict decides whether another iteration runs. Phases are separated
by barriers: a phase only starts once every job of the previous phase has
reached a terminal state.
"""

import asyncio
import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..agents.base import TierWorker, WorkerResult
from ..agents.meso import MesoWorker
from ..agents.meta import MetaWorker
from ..agents.micro import MicroWorker
from ..config.constants import FINAL_REPORT_TOP_GAPS, FINISHED_RUN_RETENTION, STATUS_LOG_LIMIT
from ..confidence.engine import ConfidenceEngine
from ..convergence.detector import ConvergenceDetector
from ..llm.call_layer import ModelCallLayer
from ..models.analysis import (
    InputItem,
    MesoInput,
    MesoOutput,
    MetaInput,
    MetaOutput,
    MicroInput,
    MicroOutput,
)
from ..models.generation import AgentTier, CallOptions
from ..models.records import (
    AgentRecord,
    AgentStatus,
    LogEntry,
    LogLevel,
    ResultRecord,
    ResultType,
    RunRecord,
    RunStatus,
)
from ..observability.logging import RunLogger
from ..storage.base import ContextStore, RecordStore
from ..storage.context import VersionedContextStore
from ..storage.errors import RecordNotFoundError
from ..storage.memory import InMemoryRecordStore
from .errors import (
    FatalOrchestrationError,
    PhaseToleranceExceeded,
    RunAlreadyActiveError,
    RunAlreadyExistsError,
    RunNotActiveError,
    RunNotFoundError,
)
from .monitoring import build_status_report, elapsed_ms, queue_health, queue_stats
from .options import OrchestrationConfig
from .queue import JobOutcome, JobQueue, JobStatus
from .reports import OrchestrationStarted, RunOutcome, RunStatusReport
from .state import RunState

_RESULT_TYPES = {
    AgentTier.MICRO: ResultType.ANALYSIS,
    AgentTier.MESO: ResultType.ANALYSIS,
    AgentTier.META: ResultType.SYNTHESIS,
}


class RMRIOrchestrator:
    """
    Runs and supervises recursive multi-agent analyses.

    The orchestrator owns the run lifecycle: it creates agent records,
    schedules jobs on per-run tier queues, persists artifacts and results,
    applies the phase failure policy and decides when a run stops.
    """

    def __init__(
        self,
        call_layer: Optional[ModelCallLayer] = None,
        confidence_engine: Optional[ConfidenceEngine] = None,
        record_store: Optional[RecordStore] = None,
        context_store: Optional[ContextStore] = None,
        workers: Optional[Mapping[AgentTier, TierWorker]] = None,
        config: Optional[OrchestrationConfig] = None,
        finished_run_retention: int = FINISHED_RUN_RETENTION
    ):
        """
        Initialize the orchestrator.

        Args:
            call_layer: Model call layer shared by every worker
            confidence_engine: Engine used by workers to score outputs
            record_store: Store for runs, agents, results and logs
            context_store: Versioned artifact store
            workers: Worker overrides per tier; missing tiers are built from the run config
            config: Default config for runs started without one
            finished_run_retention: Finished runs kept in memory; older ones are
                served from the record store only
        """
        self.call_layer = call_layer or ModelCallLayer()
        self.confidence_engine = confidence_engine or ConfidenceEngine()
        self.record_store = record_store or InMemoryRecordStore()
        self.context_store = context_store or VersionedContextStore()
        self.worker_overrides: Dict[AgentTier, TierWorker] = dict(workers or {})
        self.default_config = config or OrchestrationConfig()
        self.finished_run_retention = finished_run_retention
        self._runs: Dict[str, RunState] = {}

    # Lifecycle

    async def start_orchestration(
        self,
        run_id: str,
        items: Sequence[Union[InputItem, Mapping[str, Any]]],
        model_config: Optional[Mapping[str, Any]] = None,
        query: str = "",
        config: Optional[Union[OrchestrationConfig, Mapping[str, Any]]] = None
    ) -> OrchestrationStarted:
        """
        Validate the request and schedule a run.

        Returns as soon as the run task has been spawned.

        Raises:
            ValueError: If there are no items or item ids collide
            RunAlreadyActiveError: If the run is still executing
            RunAlreadyExistsError: If a finished run already holds the id
            pydantic.ValidationError: If the config or model config is invalid
        """
        if not run_id:
            raise ValueError("run_id is required")
        if not items:
            raise ValueError("At least one input item is required")

        parsed = [item if isinstance(item, InputItem) else InputItem.model_validate(item) for item in items]
        counts = Counter(item.id for item in parsed)
        duplicates = sorted(item_id for item_id, count in counts.items() if count > 1)
        if duplicates:
            raise ValueError(f"Duplicate item ids: {', '.join(duplicates)}")

        existing = self._runs.get(run_id)
        if existing is not None and not existing.done:
            raise RunAlreadyActiveError(run_id)
        try:
            await self.record_store.get_run(run_id)
        except RecordNotFoundError:
            pass
        else:
            raise RunAlreadyExistsError(run_id)

        if config is None:
            config = self.default_config
        elif not isinstance(config, OrchestrationConfig):
            config = OrchestrationConfig(**config)

        call_options = CallOptions(**{
            "min_providers": config.ensemble_min_providers,
            "aggregation": config.aggregation,
            **(model_config or {}),
        })

        await self.record_store.create_run(RunRecord(
            id=run_id,
            query=query,
            status=RunStatus.INITIALIZING,
            config=config.model_dump(mode="json"),
            total_items=len(parsed),
            started_at=datetime.now(),
        ))

        state = RunState(
            run_id=run_id,
            items=sorted(parsed, key=lambda item: item.id),
            config=config,
            workers=self._build_workers(config, call_options),
            queues={
                AgentTier.MICRO: JobQueue(f"{run_id}:micro", config.micro_concurrency),
                AgentTier.MESO: JobQueue(f"{run_id}:meso", config.meso_concurrency),
                AgentTier.META: JobQueue(f"{run_id}:meta", config.meta_concurrency),
            },
            logger=RunLogger(run_id),
        )
        self._prune_finished()
        self._runs[run_id] = state
        state.task = asyncio.create_task(self._execute(state), name=f"rmri-run:{run_id}")

        state.logger.info("Run scheduled", items=len(parsed), max_iterations=config.max_iterations)
        return OrchestrationStarted(
            run_id=run_id,
            status=RunStatus.INITIALIZING,
            total_items=len(parsed),
            config=config.model_dump(mode="json"),
        )

    async def wait_for_completion(self, run_id: str) -> RunOutcome:
        """Await the run task and return the run's terminal state."""
        state = self._runs.get(run_id)
        if state is not None and state.task is not None:
            return await asyncio.shield(state.task)
        # Pruned runs are already terminal
        try:
            await self.record_store.get_run(run_id)
        except RecordNotFoundError:
            raise RunNotFoundError(run_id) from None
        return await self._outcome(run_id)

    async def cancel_orchestration(self, run_id: str) -> RunRecord:
        """
        Cancel an executing run.

        Sets the run's cancel flag, cancels in-flight jobs and marks the run
        cancelled. The run loop stops at the next phase boundary.

        Raises:
            RunNotActiveError: If the run is unknown or already finished
        """
        state = self._runs.get(run_id)
        if state is None or state.done or state.cancelled:
            raise RunNotActiveError(run_id)

        state.cancel_event.set()
        signalled = sum(queue.cancel_all() for queue in state.queues.values())

        run = await self.record_store.get_run(run_id)
        run = await self.record_store.update_run(
            run_id,
            status=RunStatus.CANCELLED,
            completed_at=datetime.now(),
            metadata={**run.metadata, "cancelled_at_iteration": state.iteration},
        )
        await self._log(
            state,
            LogLevel.WARNING,
            f"Run cancelled at iteration {state.iteration}",
            cancelled_jobs=signalled,
        )
        return run

    # Status

    async def get_status(self, run_id: str) -> RunStatusReport:
        """Progress of a run; finished runs are served from the record store."""
        try:
            run = await self.record_store.get_run(run_id)
        except RecordNotFoundError:
            raise RunNotFoundError(run_id) from None
        agents = await self.record_store.list_agents(run_id)
        logs = await self.record_store.list_logs(run_id, limit=STATUS_LOG_LIMIT)
        return build_status_report(run, agents, logs)

    def health_check(self) -> Dict[str, Any]:
        health = queue_health(self._runs.values())
        health["providers"] = self.call_layer.health.snapshot()
        health["timestamp"] = datetime.now().isoformat()
        return health

    def get_queue_stats(self) -> Dict[str, Any]:
        return queue_stats(self._runs.values())

    def _prune_finished(self) -> None:
        """Drop the oldest finished runs beyond the retention limit."""
        finished = [run_id for run_id, state in self._runs.items() if state.done]
        for run_id in finished[:max(0, len(finished) - self.finished_run_retention)]:
            del self._runs[run_id]

    # Run loop

    def _build_workers(self, config: OrchestrationConfig, call_options: CallOptions) -> Dict[AgentTier, TierWorker]:
        workers: Dict[AgentTier, TierWorker] = {
            AgentTier.MICRO: MicroWorker(call_options, call_mode=config.micro_call_mode),
            AgentTier.MESO: MesoWorker(
                call_options,
                cluster_count=config.cluster_count,
                min_cluster_size=config.min_cluster_size,
            ),
            AgentTier.META: MetaWorker(
                call_options,
                detector=ConvergenceDetector(top_k=config.top_k, threshold=config.convergence_threshold),
            ),
        }
        workers.update(self.worker_overrides)
        return workers

    async def _execute(self, state: RunState) -> RunOutcome:
        config = state.config
        try:
            await self._set_status(state, RunStatus.PLANNING)
            await self._log(
                state,
                LogLevel.INFO,
                f"Planning {len(state.items)} items over at most {config.max_iterations} iterations",
            )
            await self._set_status(state, RunStatus.EXECUTING)

            for iteration in range(1, config.max_iterations + 1):
                if state.cancelled:
                    break
                state.iteration = iteration
                await self.record_store.update_run(state.run_id, current_iteration=iteration)
                await self._log(state, LogLevel.INFO, f"Iteration {iteration} started")

                micro_outputs = await self._run_micro_phase(state, iteration)
                if state.cancelled:
                    break
                meso_output, meso_agent_id = await self._run_meso_phase(state, iteration, micro_outputs)
                if state.cancelled:
                    break
                meta_output = await self._run_meta_phase(state, iteration, meso_output, meso_agent_id)
                if state.cancelled:
                    break

                state.meta_history = state.meta_history + (meta_output,)
                verdict = meta_output.verdict
                await self._log(
                    state,
                    LogLevel.INFO,
                    f"Iteration {iteration} finished: {verdict.reason}",
                    similarity=round(verdict.similarity, 4),
                )
                if verdict.converged or iteration == config.max_iterations:
                    break
                await self._pause(state)

            if not state.cancelled:
                await self._synthesize(state)

        except FatalOrchestrationError as e:
            await self._fail(state, e)
        except Exception as e:
            await self._fail(state, FatalOrchestrationError(state.run_id, f"Unexpected error: {e}", e))

        return await self._outcome(state.run_id)

    async def _pause(self, state: RunState) -> None:
        delay = state.config.inter_iteration_delay_s
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(state.cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return

    def _context_hints(self, state: RunState) -> List[str]:
        latest = state.latest_meta
        if latest is None:
            return []
        return [gap.gap for gap in latest.ranked_gaps[:5]]

    async def _run_micro_phase(self, state: RunState, iteration: int) -> List[MicroOutput]:
        queue = state.queues[AgentTier.MICRO]
        worker = state.workers[AgentTier.MICRO]
        hints = self._context_hints(state)

        jobs: List[Tuple[AgentRecord, MicroInput]] = []
        for item in state.items:
            agent = await self._create_agent(state, AgentTier.MICRO, f"micro-{iteration}-{item.id}", iteration, item_id=item.id)
            jobs.append((agent, MicroInput(item=item, iteration=iteration, domain=state.config.domain, context_hints=hints)))

        tasks = [
            queue.submit(
                agent.id,
                self._job_factory(state, agent, worker, micro_input, f"micro_output_{iteration}_{micro_input.item.id}", "append"),
                state.config.job_timeout_s,
            )
            for agent, micro_input in jobs
        ]
        outcomes = await queue.join(tasks)
        await self._record_failures(state, outcomes)
        if state.cancelled:
            return []

        outputs = sorted((o.result.output for o in outcomes if o.succeeded), key=lambda out: out.item_id)
        total = len(outcomes)
        await self._log(state, LogLevel.INFO, f"Micro phase: {len(outputs)}/{total} succeeded", iteration=iteration)

        if total == 0 or len(outputs) / total < state.config.min_micro_success_fraction:
            tolerance = PhaseToleranceExceeded("Micro", len(outputs), total, state.config.min_micro_success_fraction)
            raise FatalOrchestrationError(state.run_id, str(tolerance), tolerance)
        return outputs

    async def _run_meso_phase(
        self,
        state: RunState,
        iteration: int,
        micro_outputs: List[MicroOutput]
    ) -> Tuple[Optional[MesoOutput], Optional[str]]:
        agent = await self._create_agent(state, AgentTier.MESO, f"meso-{iteration}", iteration)
        meso_input = MesoInput(iteration=iteration, micro_outputs=micro_outputs, domain=state.config.domain)
        outcome = await self._run_single(state, AgentTier.MESO, agent, meso_input, f"meso_output_{iteration}")
        if state.cancelled:
            return None, None
        if not outcome.succeeded:
            raise FatalOrchestrationError(state.run_id, f"Meso phase failed: {outcome.error_message}", outcome.error)
        return outcome.result.output, agent.id

    async def _run_meta_phase(
        self,
        state: RunState,
        iteration: int,
        meso_output: MesoOutput,
        meso_agent_id: str
    ) -> Optional[MetaOutput]:
        agent = await self._create_agent(state, AgentTier.META, f"meta-{iteration}", iteration, parent_id=meso_agent_id)
        meta_input = MetaInput(
            iteration=iteration,
            max_iterations=state.config.max_iterations,
            meso_output=meso_output,
            previous_meta=state.latest_meta,
            domain=state.config.domain,
        )
        outcome = await self._run_single(state, AgentTier.META, agent, meta_input, f"meta_output_{iteration}")
        if state.cancelled:
            return None
        if not outcome.succeeded:
            raise FatalOrchestrationError(state.run_id, f"Meta phase failed: {outcome.error_message}", outcome.error)
        state.final_confidence = outcome.result.confidence
        return outcome.result.output

    async def _run_single(
        self,
        state: RunState,
        tier: AgentTier,
        agent: AgentRecord,
        input: Any,
        key: str
    ) -> JobOutcome:
        queue = state.queues[tier]
        task = queue.submit(
            agent.id,
            self._job_factory(state, agent, state.workers[tier], input, key, "overwrite"),
            state.config.job_timeout_s,
        )
        outcomes = await queue.join([task])
        await self._record_failures(state, outcomes)
        return outcomes[0]

    def _job_factory(self, state: RunState, agent: AgentRecord, worker: TierWorker, input: Any, key: str, mode: str):
        async def job() -> WorkerResult:
            return await self._run_agent(state, agent, worker, input, key, mode)
        return job

    async def _run_agent(
        self,
        state: RunState,
        agent: AgentRecord,
        worker: TierWorker,
        input: Any,
        key: str,
        mode: str
    ) -> WorkerResult:
        """Execute one worker and persist its output, result and agent state."""
        log = state.logger.for_agent(agent.id, agent.tier.value)
        started = datetime.now()
        await self.record_store.update_agent(agent.id, status=AgentStatus.ACTIVE, started_at=started)
        log.debug("Agent started")

        result = await worker.run(input, self.call_layer, self.confidence_engine)
        output = result.output.model_dump(mode="json")

        await self.context_store.write(
            state.run_id,
            agent.id,
            key,
            output,
            mode=mode,
            metadata={"tier": agent.tier.value, "iteration": agent.iteration},
        )
        await self.record_store.add_result(ResultRecord(
            id=str(uuid.uuid4()),
            run_id=state.run_id,
            agent_id=agent.id,
            iteration=agent.iteration,
            result_type=_RESULT_TYPES[agent.tier],
            content={
                "output": output,
                "confidence_level": result.confidence_level,
                "metadata": result.metadata,
            },
            confidence=result.confidence,
        ))

        completed = datetime.now()
        await self.record_store.update_agent(
            agent.id,
            status=AgentStatus.COMPLETED,
            completed_at=completed,
            execution_time_ms=int((completed - started).total_seconds() * 1000),
            confidence=result.confidence,
            metadata={**agent.metadata, **result.metadata},
        )
        log.info("Agent completed", confidence=round(result.confidence, 3))
        return result

    async def _create_agent(
        self,
        state: RunState,
        tier: AgentTier,
        name: str,
        iteration: int,
        parent_id: Optional[str] = None,
        item_id: Optional[str] = None
    ) -> AgentRecord:
        return await self.record_store.create_agent(AgentRecord(
            id=str(uuid.uuid4()),
            run_id=state.run_id,
            tier=tier,
            name=name,
            iteration=iteration,
            parent_id=parent_id,
            item_id=item_id,
        ))

    async def _record_failures(self, state: RunState, outcomes: List[JobOutcome]) -> None:
        for outcome in outcomes:
            if outcome.succeeded:
                continue
            if outcome.status == JobStatus.CANCELLED:
                await self.record_store.update_agent(
                    outcome.job_id,
                    status=AgentStatus.SKIPPED,
                    completed_at=datetime.now(),
                    error_message="cancelled",
                )
                continue
            message = outcome.error_message
            await self.record_store.update_agent(
                outcome.job_id,
                status=AgentStatus.FAILED,
                completed_at=datetime.now(),
                error_message=message,
            )
            await self._log(
                state,
                LogLevel.ERROR,
                f"Agent failed: {message}",
                agent_id=outcome.job_id,
                status=outcome.status.value,
                error_type=type(outcome.error).__name__,
            )

    async def _synthesize(self, state: RunState) -> None:
        await self._set_status(state, RunStatus.SYNTHESIZING)
        final_meta = state.latest_meta
        report = self._final_report(state, final_meta)

        await self.record_store.add_result(ResultRecord(
            id=str(uuid.uuid4()),
            run_id=state.run_id,
            iteration=state.iteration,
            result_type=ResultType.FINAL_REPORT,
            content=report,
            confidence=state.final_confidence,
            is_final=True,
        ))
        if state.cancelled:
            return
        await self.record_store.update_run(
            state.run_id,
            status=RunStatus.COMPLETED,
            converged=final_meta.verdict.converged,
            completed_at=datetime.now(),
        )
        await self._log(
            state,
            LogLevel.INFO,
            f"Run completed after {state.iteration} iterations",
            reason=final_meta.verdict.reason,
        )

    def _final_report(self, state: RunState, final_meta: MetaOutput) -> Dict[str, Any]:
        clusters = final_meta.statistics.get("clusters", 0)
        top_gaps = final_meta.ranked_gaps[:FINAL_REPORT_TOP_GAPS]
        return {
            "summary": {
                "total_iterations": state.iteration,
                "converged": final_meta.verdict.converged,
                "convergence_reason": final_meta.verdict.reason,
                "final_similarity": final_meta.verdict.similarity,
                "total_items": len(state.items),
                "total_clusters": clusters,
                "top_gap_count": len(top_gaps),
            },
            "top_gaps": [gap.model_dump(mode="json") for gap in top_gaps],
            "research_directions": [d.model_dump(mode="json") for d in final_meta.research_directions],
            "frontiers": [f.model_dump(mode="json") for f in final_meta.frontiers],
            "patterns": [p.model_dump(mode="json") for p in final_meta.patterns],
            "synthesis": final_meta.synthesis,
            "final_confidence": state.final_confidence,
        }

    async def _fail(self, state: RunState, error: FatalOrchestrationError) -> None:
        if state.cancelled:
            return
        await self.record_store.update_run(
            state.run_id,
            status=RunStatus.FAILED,
            error_message=error.reason,
            completed_at=datetime.now(),
        )
        await self._log(state, LogLevel.ERROR, error.reason, iteration=state.iteration)

    async def _set_status(self, state: RunState, status: RunStatus) -> None:
        if state.cancelled:
            return
        await self.record_store.update_run(state.run_id, status=status)
        state.logger.debug(f"Status {status.value}")

    async def _log(
        self,
        state: RunState,
        level: LogLevel,
        message: str,
        agent_id: Optional[str] = None,
        **context: Any
    ) -> None:
        await self.record_store.add_log(LogEntry(
            id=str(uuid.uuid4()),
            run_id=state.run_id,
            agent_id=agent_id,
            level=level,
            message=message,
            context=context,
        ))
        if level in (LogLevel.ERROR, LogLevel.CRITICAL):
            state.logger.error(message, agent=agent_id, **context)
        elif level == LogLevel.WARNING:
            state.logger.warning(message, agent=agent_id, **context)
        else:
            state.logger.info(message, agent=agent_id, **context)

    async def _outcome(self, run_id: str) -> RunOutcome:
        run = await self.record_store.get_run(run_id)
        final = await self.record_store.list_results(run_id, ResultType.FINAL_REPORT, final_only=True)
        return RunOutcome(
            run_id=run.id,
            status=run.status,
            iterations=run.current_iteration,
            converged=run.converged,
            error_message=run.error_message,
            elapsed_ms=elapsed_ms(run),
            final_report=final[-1].content if final else None,
        )
