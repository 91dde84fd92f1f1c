"""Unit tests for the RMRI orchestrator run lifecycle."""

import asyncio
import itertools
import json

import pytest
from pydantic import ValidationError

from rmri.agents.base import TierWorker
from rmri.agents.micro import MicroWorker
from rmri.llm.call_layer import ModelCallLayer
from rmri.models.generation import AgentTier, ProviderType
from rmri.models.records import AgentStatus, LogLevel, ResultType, RunStatus
from rmri.orchestration.errors import (
    RunAlreadyActiveError,
    RunAlreadyExistsError,
    RunNotActiveError,
    RunNotFoundError,
)
from rmri.orchestration.orchestrator import RMRIOrchestrator
from rmri.storage.errors import RecordNotFoundError
from tests.helpers.fake_providers import ScriptedProvider, failing_for, research_responder, sample_items


async def _wait_until(predicate, timeout: float = 2.0):
    """Poll an async predicate until it holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not await predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def _layer(health_registry, responder, delay: float = 0.0) -> ModelCallLayer:
    provider = ScriptedProvider(ProviderType.OPENAI, default=responder, delay=delay, confidence=0.8)
    return ModelCallLayer(providers={ProviderType.OPENAI: provider}, health=health_registry)


class ExplodingWorker(TierWorker):
    """Worker that always fails."""

    def __init__(self, tier: AgentTier, message: str):
        super().__init__()
        self.tier = tier
        self.message = message

    async def run(self, input, call_layer, confidence_engine):
        raise RuntimeError(self.message)


class SlowMicroWorker(MicroWorker):
    """Micro worker that stalls on selected items."""

    def __init__(self, slow_ids, delay: float):
        super().__init__()
        self.slow_ids = set(slow_ids)
        self.delay = delay

    async def run(self, input, call_layer, confidence_engine):
        if input.item.id in self.slow_ids:
            await asyncio.sleep(self.delay)
        return await super().run(input, call_layer, confidence_engine)


def drifting_responder():
    """Micro replies whose gaps change on every call, so rankings never settle."""
    counter = itertools.count()

    def respond(prompt):
        if prompt.startswith("Analyze the following research item"):
            return json.dumps({"gaps": [{"text": f"Unresolved question number {next(counter)}", "priority": "high"}]})
        return research_responder(prompt)
    return respond


@pytest.fixture
def orchestrator(call_layer, confidence_engine, record_store, context_store, fast_config):
    return RMRIOrchestrator(
        call_layer=call_layer,
        confidence_engine=confidence_engine,
        record_store=record_store,
        context_store=context_store,
        config=fast_config,
    )


class TestStartValidation:
    """Test request validation in start_orchestration."""

    @pytest.mark.asyncio
    async def test_empty_items(self, orchestrator):
        with pytest.raises(ValueError, match="At least one input item"):
            await orchestrator.start_orchestration("run-1", [])

    @pytest.mark.asyncio
    async def test_duplicate_ids(self, orchestrator, record_store):
        items = sample_items(2) + [sample_items(1)[0]]

        with pytest.raises(ValueError, match="Duplicate item ids: item-00"):
            await orchestrator.start_orchestration("run-1", items)

        with pytest.raises(RecordNotFoundError):
            await record_store.get_run("run-1")

    @pytest.mark.asyncio
    async def test_missing_run_id(self, orchestrator):
        with pytest.raises(ValueError):
            await orchestrator.start_orchestration("", sample_items(1))

    @pytest.mark.asyncio
    async def test_invalid_config(self, orchestrator):
        with pytest.raises(ValidationError):
            await orchestrator.start_orchestration("run-1", sample_items(1), config={"max_iterations": 0})

    @pytest.mark.asyncio
    async def test_started_acknowledgement(self, orchestrator):
        started = await orchestrator.start_orchestration(
            "run-1", sample_items(2), config={"max_iterations": 1, "inter_iteration_delay_s": 0}
        )

        assert started.run_id == "run-1"
        assert started.status == RunStatus.INITIALIZING
        assert started.total_items == 2
        assert started.config["max_iterations"] == 1

        outcome = await orchestrator.wait_for_completion("run-1")
        assert outcome.status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_already_active(self, health_registry, fast_config):
        orchestrator = RMRIOrchestrator(call_layer=_layer(health_registry, research_responder, delay=1.0), config=fast_config)
        await orchestrator.start_orchestration("run-1", sample_items(2))

        with pytest.raises(RunAlreadyActiveError):
            await orchestrator.start_orchestration("run-1", sample_items(2))

        await orchestrator.cancel_orchestration("run-1")
        await orchestrator.wait_for_completion("run-1")

    @pytest.mark.asyncio
    async def test_finished_run_id_is_rejected(self, orchestrator, record_store):
        config = {"max_iterations": 1, "inter_iteration_delay_s": 0}
        await orchestrator.start_orchestration("run-1", sample_items(2), config=config)
        first = await orchestrator.wait_for_completion("run-1")
        agents_before = len(await record_store.list_agents("run-1"))

        with pytest.raises(RunAlreadyExistsError):
            await orchestrator.start_orchestration("run-1", sample_items(3), config=config)

        run = await record_store.get_run("run-1")
        assert run.status == RunStatus.COMPLETED
        assert run.total_items == 2
        assert len(await record_store.list_agents("run-1")) == agents_before
        outcome = await orchestrator.wait_for_completion("run-1")
        assert outcome.final_report == first.final_report

    @pytest.mark.asyncio
    async def test_run_id_known_only_to_store_is_rejected(self, orchestrator, record_store):
        """A run recorded by an earlier process cannot be started again."""
        config = {"max_iterations": 1, "inter_iteration_delay_s": 0}
        await orchestrator.start_orchestration("run-1", sample_items(2), config=config)
        await orchestrator.wait_for_completion("run-1")
        orchestrator._runs.clear()

        with pytest.raises(RunAlreadyExistsError):
            await orchestrator.start_orchestration("run-1", sample_items(2), config=config)
        assert "run-1" not in orchestrator._runs


class TestConvergence:
    """Test iteration control."""

    @pytest.mark.asyncio
    async def test_stable_rankings_converge_at_second_iteration(
        self, orchestrator, record_store, context_store, research_provider
    ):
        await orchestrator.start_orchestration("run-1", sample_items(3), query="What is missing?")
        outcome = await orchestrator.wait_for_completion("run-1")

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.iterations == 2
        assert outcome.converged is True
        summary = outcome.final_report["summary"]
        assert summary["total_iterations"] == 2
        assert summary["convergence_reason"] == "similarity_threshold_met"
        assert summary["final_similarity"] == 1.0

        run = await record_store.get_run("run-1")
        assert run.current_iteration == 2
        assert run.query == "What is missing?"
        assert run.completed_at is not None

        # Second-iteration Micro prompts carry the previous top gaps
        iteration_two = [p for p, _ in research_provider.calls if "Focus on these open questions" in p]
        assert len(iteration_two) == 3

    @pytest.mark.asyncio
    async def test_agent_tree_and_artifacts(self, orchestrator, record_store, context_store):
        await orchestrator.start_orchestration("run-1", sample_items(3))
        await orchestrator.wait_for_completion("run-1")

        agents = await record_store.list_agents("run-1")
        assert len(agents) == 10
        assert all(a.status == AgentStatus.COMPLETED for a in agents)
        assert all(a.confidence is not None and a.execution_time_ms is not None for a in agents)

        micro = await record_store.list_agents("run-1", tier=AgentTier.MICRO, iteration=1)
        assert sorted(a.name for a in micro) == ["micro-1-item-00", "micro-1-item-01", "micro-1-item-02"]
        assert all(a.parent_id is None for a in micro)

        for iteration in (1, 2):
            [meso] = await record_store.list_agents("run-1", tier=AgentTier.MESO, iteration=iteration)
            [meta] = await record_store.list_agents("run-1", tier=AgentTier.META, iteration=iteration)
            assert meta.parent_id == meso.id
            assert [c.id for c in await record_store.children(meso.id)] == [meta.id]

        [meta_one] = await record_store.list_agents("run-1", tier=AgentTier.META, iteration=1)
        artifact = await context_store.read("run-1", meta_one.id, "meta_output_1")
        assert artifact.data["verdict"]["reason"] == "first_iteration"
        assert artifact.metadata.metadata == {"tier": "meta", "iteration": 1}

        keys = {m.key for m in await context_store.list("run-1")}
        assert {"micro_output_1_item-00", "meso_output_1", "meta_output_2"} <= keys

        assert len(await record_store.list_results("run-1", ResultType.ANALYSIS)) == 8
        assert len(await record_store.list_results("run-1", ResultType.SYNTHESIS)) == 2
        [final] = await record_store.list_results("run-1", ResultType.FINAL_REPORT)
        assert final.is_final is True
        assert final.agent_id is None

    @pytest.mark.asyncio
    async def test_max_iterations_reached(self, health_registry, fast_config, record_store):
        orchestrator = RMRIOrchestrator(
            call_layer=_layer(health_registry, drifting_responder()),
            record_store=record_store,
            config=fast_config.model_copy(update={"max_iterations": 3}),
        )

        await orchestrator.start_orchestration("run-1", sample_items(3))
        outcome = await orchestrator.wait_for_completion("run-1")

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.iterations == 3
        assert outcome.final_report["summary"]["convergence_reason"] == "max_iterations_reached"
        assert len(await record_store.list_agents("run-1", tier=AgentTier.META)) == 3

    @pytest.mark.asyncio
    async def test_single_iteration_budget(self, orchestrator):
        await orchestrator.start_orchestration("run-1", sample_items(2), config={"max_iterations": 1, "inter_iteration_delay_s": 0})
        outcome = await orchestrator.wait_for_completion("run-1")

        assert outcome.iterations == 1
        assert outcome.final_report["summary"]["convergence_reason"] == "max_iterations_reached"

    @pytest.mark.asyncio
    async def test_final_report_content(self, orchestrator):
        await orchestrator.start_orchestration("run-1", sample_items(4))
        outcome = await orchestrator.wait_for_completion("run-1")
        report = outcome.final_report

        assert set(report) == {
            "summary", "top_gaps", "research_directions", "frontiers", "patterns", "synthesis", "final_confidence"
        }
        assert 0 < len(report["top_gaps"]) <= 10
        assert report["top_gaps"][0]["rank"] == 1
        assert report["research_directions"]
        assert report["synthesis"] == "The field converges on evaluation methodology as the main open problem."
        assert 0.0 <= report["final_confidence"] <= 1.0
        assert report["summary"]["total_items"] == 4
        assert report["summary"]["total_clusters"] == 2

    @pytest.mark.asyncio
    async def test_model_config_reaches_providers(self, orchestrator, research_provider):
        await orchestrator.start_orchestration(
            "run-1",
            sample_items(2),
            model_config={"temperature": 0.1, "max_tokens": 500},
            config={"max_iterations": 1, "inter_iteration_delay_s": 0},
        )
        await orchestrator.wait_for_completion("run-1")

        assert all(options.temperature == 0.1 for _, options in research_provider.calls)
        assert all(options.max_tokens == 500 for _, options in research_provider.calls)


class TestFailurePolicy:
    """Test phase tolerance and fatal phases."""

    @pytest.mark.asyncio
    async def test_micro_failure_within_tolerance(self, health_registry, fast_config, record_store, context_store):
        items = sample_items(5)
        orchestrator = RMRIOrchestrator(
            call_layer=_layer(health_registry, failing_for(items[2]["title"], RuntimeError("provider exploded"))),
            record_store=record_store,
            context_store=context_store,
            config=fast_config.model_copy(update={"max_iterations": 1}),
        )

        await orchestrator.start_orchestration("run-1", items)
        outcome = await orchestrator.wait_for_completion("run-1")

        assert outcome.status == RunStatus.COMPLETED
        micro = await record_store.list_agents("run-1", tier=AgentTier.MICRO)
        failed = [a for a in micro if a.status == AgentStatus.FAILED]
        assert [a.item_id for a in failed] == ["item-02"]
        assert "provider exploded" in failed[0].error_message

        [meso] = await record_store.list_agents("run-1", tier=AgentTier.MESO)
        artifact = await context_store.read("run-1", meso.id, "meso_output_1")
        assert artifact.data["statistics"]["total_items"] == 4

        errors = await record_store.list_logs("run-1", level=LogLevel.ERROR)
        assert any(e.agent_id == failed[0].id for e in errors)

    @pytest.mark.asyncio
    async def test_micro_failure_below_tolerance(self, health_registry, fast_config, record_store):
        items = sample_items(4)
        survivor = items[0]["title"]

        def responder(prompt):
            if prompt.startswith("Analyze") and f"Title: {survivor}\n" not in prompt:
                return RuntimeError("down")
            return research_responder(prompt)

        orchestrator = RMRIOrchestrator(
            call_layer=_layer(health_registry, responder),
            record_store=record_store,
            config=fast_config,
        )

        await orchestrator.start_orchestration("run-1", items)
        outcome = await orchestrator.wait_for_completion("run-1")

        assert outcome.status == RunStatus.FAILED
        assert outcome.error_message == "Micro phase below tolerance: 1/4 succeeded, at least 50% required"
        assert outcome.final_report is None
        assert await record_store.list_agents("run-1", tier=AgentTier.MESO) == []

    @pytest.mark.asyncio
    async def test_meso_failure_is_fatal(self, call_layer, fast_config, record_store):
        orchestrator = RMRIOrchestrator(
            call_layer=call_layer,
            record_store=record_store,
            workers={AgentTier.MESO: ExplodingWorker(AgentTier.MESO, "clustering exploded")},
            config=fast_config,
        )

        await orchestrator.start_orchestration("run-1", sample_items(3))
        outcome = await orchestrator.wait_for_completion("run-1")

        assert outcome.status == RunStatus.FAILED
        assert outcome.error_message == "Meso phase failed: clustering exploded"
        assert outcome.iterations == 1
        [meso] = await record_store.list_agents("run-1", tier=AgentTier.MESO)
        assert meso.status == AgentStatus.FAILED
        assert await record_store.list_agents("run-1", tier=AgentTier.META) == []

    @pytest.mark.asyncio
    async def test_meta_failure_is_fatal(self, call_layer, fast_config, record_store):
        orchestrator = RMRIOrchestrator(
            call_layer=call_layer,
            record_store=record_store,
            workers={AgentTier.META: ExplodingWorker(AgentTier.META, "ranking exploded")},
            config=fast_config,
        )

        await orchestrator.start_orchestration("run-1", sample_items(3))
        outcome = await orchestrator.wait_for_completion("run-1")

        assert outcome.status == RunStatus.FAILED
        assert outcome.error_message == "Meta phase failed: ranking exploded"

    @pytest.mark.asyncio
    async def test_job_timeout_recorded(self, call_layer, fast_config, record_store):
        orchestrator = RMRIOrchestrator(
            call_layer=call_layer,
            record_store=record_store,
            workers={AgentTier.MICRO: SlowMicroWorker(["item-01"], delay=2.0)},
            config=fast_config.model_copy(update={"job_timeout_s": 0.2, "max_iterations": 1}),
        )

        await orchestrator.start_orchestration("run-1", sample_items(3))
        outcome = await orchestrator.wait_for_completion("run-1")

        assert outcome.status == RunStatus.COMPLETED
        [slow] = [a for a in await record_store.list_agents("run-1", tier=AgentTier.MICRO) if a.item_id == "item-01"]
        assert slow.status == AgentStatus.FAILED
        assert "timed out after 0.2s" in slow.error_message

        errors = await record_store.list_logs("run-1", level=LogLevel.ERROR)
        [entry] = [e for e in errors if e.agent_id == slow.id]
        assert entry.context["status"] == "timed_out"
        assert entry.context["error_type"] == "JobTimeoutError"


class TestCancellation:
    """Test cancelling runs."""

    @pytest.mark.asyncio
    async def test_cancel_during_micro_phase(self, health_registry, fast_config, record_store):
        orchestrator = RMRIOrchestrator(
            call_layer=_layer(health_registry, research_responder, delay=1.0),
            record_store=record_store,
            config=fast_config,
        )
        await orchestrator.start_orchestration("run-1", sample_items(3))

        async def micro_active():
            agents = await record_store.list_agents("run-1", tier=AgentTier.MICRO)
            return any(a.status == AgentStatus.ACTIVE for a in agents)

        await _wait_until(micro_active)
        run = await orchestrator.cancel_orchestration("run-1")

        assert run.status == RunStatus.CANCELLED
        assert run.metadata["cancelled_at_iteration"] == 1

        outcome = await asyncio.wait_for(orchestrator.wait_for_completion("run-1"), timeout=2.0)
        assert outcome.status == RunStatus.CANCELLED
        assert outcome.final_report is None

        micro = await record_store.list_agents("run-1", tier=AgentTier.MICRO)
        assert all(a.status == AgentStatus.SKIPPED for a in micro)
        assert await record_store.list_agents("run-1", tier=AgentTier.MESO) == []

        warnings = await record_store.list_logs("run-1", level=LogLevel.WARNING)
        assert warnings[-1].message == "Run cancelled at iteration 1"

    @pytest.mark.asyncio
    async def test_cancel_cuts_inter_iteration_pause(self, call_layer, fast_config, record_store):
        orchestrator = RMRIOrchestrator(
            call_layer=call_layer,
            record_store=record_store,
            config=fast_config.model_copy(update={"inter_iteration_delay_s": 30}),
        )
        await orchestrator.start_orchestration("run-1", sample_items(3))

        async def first_iteration_done():
            logs = await record_store.list_logs("run-1")
            return any(e.message.startswith("Iteration 1 finished") for e in logs)

        await _wait_until(first_iteration_done)
        await orchestrator.cancel_orchestration("run-1")
        outcome = await asyncio.wait_for(orchestrator.wait_for_completion("run-1"), timeout=2.0)

        assert outcome.status == RunStatus.CANCELLED
        assert outcome.iterations == 1
        assert await record_store.list_agents("run-1", iteration=2) == []

    @pytest.mark.asyncio
    async def test_cancel_twice(self, health_registry, fast_config):
        orchestrator = RMRIOrchestrator(call_layer=_layer(health_registry, research_responder, delay=1.0), config=fast_config)
        await orchestrator.start_orchestration("run-1", sample_items(2))

        await orchestrator.cancel_orchestration("run-1")
        with pytest.raises(RunNotActiveError):
            await orchestrator.cancel_orchestration("run-1")
        await orchestrator.wait_for_completion("run-1")

    @pytest.mark.asyncio
    async def test_cancel_unknown_or_finished(self, orchestrator):
        with pytest.raises(RunNotActiveError):
            await orchestrator.cancel_orchestration("missing")

        await orchestrator.start_orchestration("run-1", sample_items(2), config={"max_iterations": 1, "inter_iteration_delay_s": 0})
        await orchestrator.wait_for_completion("run-1")
        with pytest.raises(RunNotActiveError):
            await orchestrator.cancel_orchestration("run-1")


class TestMonitoring:
    """Test status, queue statistics and health."""

    @pytest.mark.asyncio
    async def test_status_after_completion(self, orchestrator):
        await orchestrator.start_orchestration("run-1", sample_items(3))
        await orchestrator.wait_for_completion("run-1")

        report = await orchestrator.get_status("run-1")

        assert report.status == RunStatus.COMPLETED
        assert report.progress == 100
        assert report.current_iteration == 2
        assert report.total_items == 3
        assert report.converged is True
        assert report.agents_by_status == {"completed": 10}
        assert report.agents_by_tier == {"micro": {"completed": 6}, "meso": {"completed": 2}, "meta": {"completed": 2}}
        assert 0 < len(report.recent_logs) <= 10
        assert report.recent_logs[-1].message.startswith("Run completed after 2 iterations")

    @pytest.mark.asyncio
    async def test_status_progress_with_failures(self, health_registry, fast_config):
        items = sample_items(4)
        orchestrator = RMRIOrchestrator(
            call_layer=_layer(health_registry, failing_for(items[0]["title"], RuntimeError("down"))),
            config=fast_config.model_copy(update={"max_iterations": 1}),
        )
        await orchestrator.start_orchestration("run-1", items)
        await orchestrator.wait_for_completion("run-1")

        report = await orchestrator.get_status("run-1")

        # 5 of 6 agents completed
        assert report.progress == 83
        assert report.agents_by_status == {"completed": 5, "failed": 1}

    @pytest.mark.asyncio
    async def test_unknown_run(self, orchestrator):
        with pytest.raises(RunNotFoundError):
            await orchestrator.get_status("missing")
        with pytest.raises(RunNotFoundError):
            await orchestrator.wait_for_completion("missing")

    @pytest.mark.asyncio
    async def test_queue_stats_and_health(self, orchestrator):
        await orchestrator.start_orchestration("run-1", sample_items(3), config={"max_iterations": 1, "inter_iteration_delay_s": 0})
        await orchestrator.wait_for_completion("run-1")

        stats = orchestrator.get_queue_stats()
        assert stats["totals"]["micro"]["completed"] == 3
        assert stats["totals"]["meso"]["completed"] == 1
        assert stats["runs"]["run-1"]["meta"]["completed"] == 1

        health = orchestrator.health_check()
        assert health["status"] == "healthy"
        assert health["active_runs"] == 0
        assert health["failed_jobs"] == 0
        assert health["queues"]["micro"] == {"active": 0, "waiting": 0}
        assert health["providers"]["openai"]["status"] == "healthy"
        assert "timestamp" in health

    @pytest.mark.asyncio
    async def test_finished_runs_beyond_retention_are_released(
        self, call_layer, confidence_engine, record_store, context_store, fast_config
    ):
        orchestrator = RMRIOrchestrator(
            call_layer=call_layer,
            confidence_engine=confidence_engine,
            record_store=record_store,
            context_store=context_store,
            config=fast_config.model_copy(update={"max_iterations": 1}),
            finished_run_retention=1,
        )
        for run_id in ("run-a", "run-b", "run-c"):
            await orchestrator.start_orchestration(run_id, sample_items(2))
            await orchestrator.wait_for_completion(run_id)

        assert list(orchestrator.get_queue_stats()["runs"]) == ["run-b", "run-c"]

        outcome = await orchestrator.wait_for_completion("run-a")
        assert outcome.status == RunStatus.COMPLETED
        assert outcome.final_report is not None
        report = await orchestrator.get_status("run-a")
        assert report.status == RunStatus.COMPLETED
        with pytest.raises(RunNotActiveError):
            await orchestrator.cancel_orchestration("run-a")
        with pytest.raises(RunAlreadyExistsError):
            await orchestrator.start_orchestration("run-a", sample_items(2))
