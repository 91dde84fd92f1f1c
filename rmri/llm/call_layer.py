"""
Multi-provider model call layer.

Three call modes share one set of provider adapters and one health registry:

- ``call_single``: one provider, errors propagate
- ``call_with_fallback``: providers tried in order, first success wins
- ``call_ensemble``: providers called in parallel, responses aggregated
"""

import asyncio
import logging
import math
from typing import Dict, List, Optional, Sequence

from ..config.constants import CHARS_PER_TOKEN, DEFAULT_MAX_PROMPT_TOKENS
from ..config.providers import get_default_order
from ..models.generation import (
    CallOptions,
    EnsembleResult,
    ProviderAttempt,
    ProviderResponse,
    ProviderType,
)
from ..providers import build_default_providers
from ..providers.base import ProviderAdapter, ProviderError, RateLimitError, ValidationError
from ..providers.errors import ErrorMapper
from .aggregation import aggregate_responses
from .errors import AllProvidersFailedError, InsufficientProvidersError
from .health import ProviderHealthRegistry, get_global_health_registry

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "not configured"


def _dedupe(providers: Sequence[ProviderType]) -> List[ProviderType]:
    seen = set()
    ordered = []
    for provider in providers:
        provider = ProviderType(provider)
        if provider not in seen:
            seen.add(provider)
            ordered.append(provider)
    return ordered


class ModelCallLayer:
    """Entry point for every language-model call made by the tier workers."""

    def __init__(
        self,
        providers: Optional[Dict[ProviderType, ProviderAdapter]] = None,
        health: Optional[ProviderHealthRegistry] = None,
        max_prompt_tokens: int = DEFAULT_MAX_PROMPT_TOKENS
    ):
        self.providers = providers if providers is not None else build_default_providers()
        self.health = health if health is not None else get_global_health_registry()
        self.max_prompt_tokens = max_prompt_tokens

    def validate_prompt(self, prompt: str) -> None:
        """Reject empty prompts and prompts above the token ceiling."""
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValidationError("Prompt must be a non-empty string", field="prompt")
        estimated_tokens = math.ceil(len(prompt) / CHARS_PER_TOKEN)
        if estimated_tokens > self.max_prompt_tokens:
            raise ValidationError(
                f"Prompt too long: ~{estimated_tokens} tokens exceeds limit of {self.max_prompt_tokens}",
                field="prompt"
            )

    def is_configured(self, provider: ProviderType) -> bool:
        adapter = self.providers.get(provider)
        return adapter is not None and adapter.is_available()

    def available_providers(self) -> List[ProviderType]:
        return [p for p in self.providers if self.is_configured(p)]

    def get_provider_status(self) -> Dict[str, Dict[str, object]]:
        """Availability plus health for every registered provider."""
        health = self.health.snapshot()
        return {
            provider.value: {
                "available": self.is_configured(provider),
                "health": health.get(provider.value, {"status": "unknown"}),
            }
            for provider in self.providers
        }

    async def _attempt(
        self,
        provider: ProviderType,
        prompt: str,
        options: CallOptions
    ) -> ProviderResponse:
        """Call one provider with its timeout and record the outcome in the health registry."""
        adapter = self.providers[provider]
        try:
            response = await asyncio.wait_for(adapter.call(prompt, options), timeout=options.timeout_s)
        except ProviderError as e:
            self.health.record_failure(provider, e)
            raise
        except asyncio.TimeoutError as e:
            error = ProviderError(
                f"{provider.value} timed out after {options.timeout_s}s",
                provider=provider.value
            )
            error.is_retryable = True
            error.original_error = e
            self.health.record_failure(provider, error)
            raise error
        except Exception as e:
            error = ErrorMapper.map_error(e, provider.value)
            self.health.record_failure(provider, error)
            raise error
        self.health.record_success(provider)
        return response

    async def call_single(
        self,
        provider: ProviderType,
        prompt: str,
        options: Optional[CallOptions] = None
    ) -> ProviderResponse:
        """
        Call exactly one provider.

        Raises:
            ValidationError: Invalid prompt
            ProviderError: Provider unconfigured or the call failed
        """
        options = options or CallOptions()
        self.validate_prompt(prompt)
        provider = ProviderType(provider)
        if not self.is_configured(provider):
            raise ProviderError(f"{provider.value} is {NOT_CONFIGURED}", provider=provider.value)
        return await self._attempt(provider, prompt, options)

    async def call_with_fallback(
        self,
        prompt: str,
        options: Optional[CallOptions] = None,
        preferred_order: Optional[Sequence[ProviderType]] = None
    ) -> ProviderResponse:
        """
        Try providers in order and return the first success.

        Degraded providers are moved to the end of the order, never dropped.
        With ``options.max_rounds > 1`` failed providers are retried in later
        rounds, rate-limited ones behind the rest.

        Raises:
            ValidationError: Invalid prompt
            AllProvidersFailedError: Every provider failed; carries each reason
        """
        options = options or CallOptions()
        self.validate_prompt(prompt)

        order = preferred_order or options.preferred_order or get_default_order(options.agent_type)
        remaining = self.health.order(_dedupe(order))

        failures: Dict[str, str] = {}
        attempts: List[ProviderAttempt] = []
        rate_limited = set()

        for round_index in range(options.max_rounds):
            if round_index > 0:
                remaining = (
                    [p for p in remaining if p not in rate_limited]
                    + [p for p in remaining if p in rate_limited]
                )
                logger.info(f"Fallback round {round_index + 1} over {[p.value for p in remaining]}")

            retry_next: List[ProviderType] = []
            for provider in remaining:
                if not self.is_configured(provider):
                    failures[provider.value] = NOT_CONFIGURED
                    continue
                try:
                    response = await self._attempt(provider, prompt, options)
                except ProviderError as e:
                    rate_limit = isinstance(e, RateLimitError)
                    if rate_limit:
                        rate_limited.add(provider)
                    failures[provider.value] = str(e)
                    attempts.append(ProviderAttempt(
                        provider=provider, success=False, error=str(e), rate_limited=rate_limit
                    ))
                    retry_next.append(provider)
                    logger.warning(f"Provider {provider.value} failed, trying next: {e}")
                    continue

                attempts.append(ProviderAttempt(provider=provider, success=True, response=response))
                if attempts[:-1]:
                    logger.info(
                        f"Fallback succeeded with {provider.value} after {len(attempts) - 1} failed attempts"
                    )
                return response

            remaining = retry_next
            if not remaining:
                break

        raise AllProvidersFailedError(failures, attempts)

    async def call_ensemble(
        self,
        prompt: str,
        options: Optional[CallOptions] = None
    ) -> EnsembleResult:
        """
        Call several providers in parallel and aggregate their responses.

        Raises:
            ValidationError: Invalid prompt
            InsufficientProvidersError: Fewer than ``options.min_providers`` succeeded
        """
        options = options or CallOptions()
        self.validate_prompt(prompt)

        targets = _dedupe(options.providers or self.available_providers())
        attempts: Dict[ProviderType, ProviderAttempt] = {}
        dispatched = []
        for provider in targets:
            if self.is_configured(provider):
                dispatched.append(provider)
            else:
                attempts[provider] = ProviderAttempt(provider=provider, success=False, error=NOT_CONFIGURED)

        results = await asyncio.gather(
            *(self._attempt(provider, prompt, options) for provider in dispatched),
            return_exceptions=True
        )

        for provider, result in zip(dispatched, results):
            if isinstance(result, ProviderResponse):
                attempts[provider] = ProviderAttempt(provider=provider, success=True, response=result)
            elif isinstance(result, Exception):
                attempts[provider] = ProviderAttempt(
                    provider=provider,
                    success=False,
                    error=str(result),
                    rate_limited=isinstance(result, RateLimitError),
                )
            else:
                raise result

        ordered_attempts = [attempts[p] for p in targets]
        responses = [a.response for a in ordered_attempts if a.success and a.response is not None]

        if len(responses) < options.min_providers:
            logger.warning(
                f"Ensemble got {len(responses)}/{len(targets)} responses, needed {options.min_providers}"
            )
            raise InsufficientProvidersError(options.min_providers, responses, ordered_attempts)

        return aggregate_responses(responses, ordered_attempts, options.aggregation, targets)
