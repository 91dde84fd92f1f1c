"""Errors raised by the model call layer once provider recovery is exhausted."""

from typing import Dict, List, Optional

from ..models.generation import ProviderAttempt, ProviderResponse


class AllProvidersFailedError(Exception):
    """Every provider in a fallback order failed."""

    def __init__(self, failures: Dict[str, str], attempts: Optional[List[ProviderAttempt]] = None):
        self.failures = failures
        self.attempts = attempts or []
        reasons = "; ".join(f"{provider}: {reason}" for provider, reason in failures.items())
        super().__init__(f"All providers failed ({reasons})" if reasons else "No providers to try")


class InsufficientProvidersError(Exception):
    """An ensemble call produced fewer successful responses than required."""

    def __init__(
        self,
        required: int,
        responses: List[ProviderResponse],
        attempts: List[ProviderAttempt]
    ):
        self.required = required
        self.responses = responses
        self.attempts = attempts
        failed = [a.provider.value for a in attempts if not a.success]
        message = (
            f"Ensemble needed {required} successful providers, got {len(responses)}"
        )
        if failed:
            message += f" (failed: {', '.join(failed)})"
        super().__init__(message)
