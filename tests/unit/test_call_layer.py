"""Unit tests for the model call layer."""

import pytest

from rmri.llm.call_layer import ModelCallLayer
from rmri.llm.errors import AllProvidersFailedError, InsufficientProvidersError
from rmri.models.generation import CallOptions, ProviderType
from rmri.providers.base import ProviderError, RateLimitError, ValidationError
from tests.helpers.fake_providers import ScriptedProvider

CEREBRAS = ProviderType.CEREBRAS
OPENAI = ProviderType.OPENAI
ANTHROPIC = ProviderType.ANTHROPIC
HUGGINGFACE = ProviderType.HUGGINGFACE


def _layer(health_registry, *providers, **kwargs):
    return ModelCallLayer(
        providers={p.provider_type: p for p in providers},
        health=health_registry,
        **kwargs
    )


class TestValidation:
    """Test prompt validation before any provider is contacted."""

    @pytest.mark.asyncio
    async def test_empty_prompt_rejected(self, health_registry):
        provider = ScriptedProvider(OPENAI)
        layer = _layer(health_registry, provider)

        with pytest.raises(ValidationError):
            await layer.call_with_fallback("   ", CallOptions(preferred_order=[OPENAI]))
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_prompt_above_token_ceiling_rejected(self, health_registry):
        provider = ScriptedProvider(OPENAI)
        layer = _layer(health_registry, provider, max_prompt_tokens=10)

        with pytest.raises(ValidationError, match="Prompt too long"):
            await layer.call_single(OPENAI, "x" * 100)
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_call_single_unconfigured(self, health_registry):
        layer = _layer(health_registry, ScriptedProvider(OPENAI, available=False))

        with pytest.raises(ProviderError, match="not configured"):
            await layer.call_single(OPENAI, "Hello")


class TestCallSingle:
    """Test single-provider calls."""

    @pytest.mark.asyncio
    async def test_success_records_health(self, health_registry):
        layer = _layer(health_registry, ScriptedProvider(OPENAI, default="answer"))

        response = await layer.call_single(OPENAI, "Hello")

        assert response.output == "answer"
        assert response.provider == OPENAI
        assert health_registry.get(OPENAI).status == "healthy"

    @pytest.mark.asyncio
    async def test_unknown_exception_is_mapped(self, health_registry):
        layer = _layer(health_registry, ScriptedProvider(OPENAI, default=RuntimeError("kaput")))

        with pytest.raises(ProviderError) as exc_info:
            await layer.call_single(OPENAI, "Hello")

        assert "kaput" in str(exc_info.value)
        assert isinstance(exc_info.value.original_error, RuntimeError)
        assert health_registry.get(OPENAI).consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_timeout_is_retryable_provider_error(self, health_registry):
        layer = _layer(health_registry, ScriptedProvider(OPENAI, delay=0.5))

        with pytest.raises(ProviderError, match="timed out") as exc_info:
            await layer.call_single(OPENAI, "Hello", CallOptions(timeout_s=0.01))

        assert exc_info.value.is_retryable is True
        assert health_registry.get(OPENAI).consecutive_failures == 1


class TestFallback:
    """Test ordered fallback across providers."""

    @pytest.mark.asyncio
    async def test_falls_back_after_rate_limit(self, health_registry):
        first = ScriptedProvider(CEREBRAS, default=RateLimitError("slow down", provider="cerebras"))
        second = ScriptedProvider(OPENAI, default="from openai")
        layer = _layer(health_registry, first, second)

        response = await layer.call_with_fallback("Hello", CallOptions(preferred_order=[CEREBRAS, OPENAI]))

        assert response.provider == OPENAI
        assert response.output == "from openai"
        assert len(first.calls) == 1
        assert health_registry.get(CEREBRAS).consecutive_failures == 1
        assert health_registry.get(OPENAI).status == "healthy"

    @pytest.mark.asyncio
    async def test_all_providers_failed(self, health_registry):
        first = ScriptedProvider(CEREBRAS, default=RateLimitError("slow down", provider="cerebras"))
        second = ScriptedProvider(OPENAI, default=ProviderError("server down", provider="openai"))
        layer = _layer(health_registry, first, second)

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await layer.call_with_fallback("Hello", preferred_order=[CEREBRAS, OPENAI])

        failures = exc_info.value.failures
        assert set(failures) == {"cerebras", "openai"}
        assert "slow down" in failures["cerebras"]
        assert "server down" in failures["openai"]
        assert [a.rate_limited for a in exc_info.value.attempts] == [True, False]

    @pytest.mark.asyncio
    async def test_unconfigured_providers_skipped(self, health_registry):
        missing = ScriptedProvider(CEREBRAS, available=False)
        present = ScriptedProvider(OPENAI, default="ok")
        layer = _layer(health_registry, missing, present)

        response = await layer.call_with_fallback("Hello", CallOptions(preferred_order=[CEREBRAS, OPENAI]))

        assert response.provider == OPENAI
        assert missing.calls == []

    @pytest.mark.asyncio
    async def test_provider_missing_from_registry_fails_as_unconfigured(self, health_registry):
        layer = _layer(health_registry, ScriptedProvider(OPENAI, available=False))

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await layer.call_with_fallback("Hello", CallOptions(preferred_order=[ANTHROPIC, OPENAI]))

        assert exc_info.value.failures == {"anthropic": "not configured", "openai": "not configured"}

    @pytest.mark.asyncio
    async def test_degraded_provider_tried_last(self, health_registry):
        for _ in range(health_registry.degraded_threshold + 1):
            health_registry.record_failure(CEREBRAS)
        degraded = ScriptedProvider(CEREBRAS, default="from cerebras")
        healthy = ScriptedProvider(OPENAI, default="from openai")
        layer = _layer(health_registry, degraded, healthy)

        response = await layer.call_with_fallback("Hello", CallOptions(preferred_order=[CEREBRAS, OPENAI]))

        assert response.provider == OPENAI
        assert degraded.calls == []

    @pytest.mark.asyncio
    async def test_degraded_provider_still_used_when_alone(self, health_registry):
        for _ in range(health_registry.degraded_threshold + 1):
            health_registry.record_failure(CEREBRAS)
        layer = _layer(health_registry, ScriptedProvider(CEREBRAS, default="still here"))

        response = await layer.call_with_fallback("Hello", CallOptions(preferred_order=[CEREBRAS]))

        assert response.output == "still here"
        assert health_registry.get(CEREBRAS).consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_second_round_retries_rate_limited_last(self, health_registry):
        limited = ScriptedProvider(
            CEREBRAS,
            replies=[RateLimitError("slow down", provider="cerebras")],
            default="from cerebras",
        )
        flaky = ScriptedProvider(
            OPENAI,
            replies=[ProviderError("blip", provider="openai")],
            default="from openai",
        )
        layer = _layer(health_registry, limited, flaky)

        response = await layer.call_with_fallback(
            "Hello",
            CallOptions(preferred_order=[CEREBRAS, OPENAI], max_rounds=2),
        )

        assert response.provider == OPENAI
        assert len(limited.calls) == 1
        assert len(flaky.calls) == 2

    @pytest.mark.asyncio
    async def test_default_order_follows_agent_tier(self, health_registry):
        providers = [ScriptedProvider(p, default=p.value) for p in ProviderType]
        layer = _layer(health_registry, *providers)

        response = await layer.call_with_fallback("Hello", CallOptions(agent_type="meta"))

        assert response.provider == ANTHROPIC


class TestEnsemble:
    """Test parallel ensemble calls."""

    def _providers(self):
        return [
            ScriptedProvider(OPENAI, default="graph learning gaps remain open", confidence=0.7),
            ScriptedProvider(ANTHROPIC, default="graph learning gaps remain open widely", confidence=0.9),
            ScriptedProvider(CEREBRAS, default="completely different answer", confidence=0.95),
        ]

    @pytest.mark.asyncio
    async def test_consensus_prefers_agreeing_response(self, health_registry):
        layer = _layer(health_registry, *self._providers())

        result = await layer.call_ensemble("Hello", CallOptions(min_providers=2, aggregation="consensus"))

        assert result.selected.provider == ANTHROPIC
        assert result.output == "graph learning gaps remain open widely"
        assert result.metrics.providers_used == 3
        assert len(result.metrics.similarity_matrix) == 3
        assert 0.0 < result.metrics.agreement < 1.0

    @pytest.mark.asyncio
    async def test_best_picks_highest_confidence(self, health_registry):
        layer = _layer(health_registry, *self._providers())

        result = await layer.call_ensemble("Hello", CallOptions(aggregation="best"))

        assert result.selected.provider == CEREBRAS
        assert result.confidence == 0.95

    @pytest.mark.asyncio
    async def test_all_returns_every_output(self, health_registry):
        layer = _layer(health_registry, *self._providers())

        result = await layer.call_ensemble("Hello", CallOptions(aggregation="all"))

        assert isinstance(result.output, list)
        assert len(result.output) == 3
        assert result.selected is None
        assert result.confidence == pytest.approx((0.7 + 0.9 + 0.95) / 3)

    @pytest.mark.asyncio
    async def test_ties_go_to_requested_order(self, health_registry):
        layer = _layer(
            health_registry,
            ScriptedProvider(OPENAI, default="same text", confidence=0.8),
            ScriptedProvider(ANTHROPIC, default="same text", confidence=0.8),
        )

        result = await layer.call_ensemble(
            "Hello",
            CallOptions(providers=[ANTHROPIC, OPENAI], aggregation="best"),
        )

        assert result.selected.provider == ANTHROPIC

    @pytest.mark.asyncio
    async def test_insufficient_providers_carries_successes(self, health_registry):
        layer = _layer(
            health_registry,
            ScriptedProvider(OPENAI, default="the only answer", confidence=0.8),
            ScriptedProvider(ANTHROPIC, default=RuntimeError("overloaded")),
            ScriptedProvider(CEREBRAS, default=RateLimitError("slow down", provider="cerebras")),
        )

        with pytest.raises(InsufficientProvidersError) as exc_info:
            await layer.call_ensemble("Hello", CallOptions(min_providers=2))

        error = exc_info.value
        assert error.required == 2
        assert [r.provider for r in error.responses] == [OPENAI]
        assert len(error.attempts) == 3
        assert [a.provider for a in error.attempts if not a.success] == [ANTHROPIC, CEREBRAS]
        assert health_registry.get(ANTHROPIC).consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_single_response_has_no_agreement(self, health_registry):
        layer = _layer(
            health_registry,
            ScriptedProvider(OPENAI, default="alone", confidence=0.6),
            ScriptedProvider(HUGGINGFACE, available=False),
        )

        result = await layer.call_ensemble(
            "Hello",
            CallOptions(providers=[OPENAI, HUGGINGFACE], min_providers=1),
        )

        assert result.metrics.agreement is None
        assert result.metrics.providers_requested == 2
        unconfigured = [a for a in result.attempts if a.provider == HUGGINGFACE][0]
        assert unconfigured.error == "not configured"


class TestProviderStatus:
    """Test provider status reporting."""

    def test_status_combines_availability_and_health(self, health_registry):
        layer = _layer(
            health_registry,
            ScriptedProvider(OPENAI),
            ScriptedProvider(ANTHROPIC, available=False),
        )
        health_registry.record_success(OPENAI)

        status = layer.get_provider_status()

        assert status["openai"]["available"] is True
        assert status["openai"]["health"]["status"] == "healthy"
        assert status["anthropic"]["available"] is False
        assert status["anthropic"]["health"] == {"status": "unknown"}
        assert layer.available_providers() == [OPENAI]
