"""
Base Provider Adapter Interface

This module defines the abstract base class for all LLM provider adapters
and the errors they raise. Every provider in the closed ``ProviderType`` set
has exactly one adapter implementing this interface.
"""

import re
from abc import ABC, abstractmethod
from typing import Optional

from ..config.constants import RESEARCH_KEYWORDS
from ..config.providers import PROVIDER_SETTINGS
from ..core.similarity import word_count
from ..models.generation import CallOptions, ProviderResponse, ProviderType

_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+\.)\s+", re.MULTILINE)


class ProviderAdapter(ABC):
    """
    Abstract base class for LLM provider adapters.

    The adapter is responsible for:
    - Translating ``CallOptions`` to provider-specific parameters
    - Making the API call
    - Normalizing the reply to a ``ProviderResponse``
    - Mapping provider-specific errors to ``ProviderError``

    Provider adapters should NOT contain:
    - Fallback or ensemble logic (see ``rmri.llm.call_layer``)
    - Health bookkeeping (see ``rmri.llm.health``)
    """

    provider_type: ProviderType

    @abstractmethod
    async def call(self, prompt: str, options: CallOptions) -> ProviderResponse:
        """
        Send one prompt to the provider.

        Args:
            prompt: The already-validated prompt text
            options: Call options; ``options.resolve_model`` picks the model

        Returns:
            ProviderResponse with output text, self-assessed confidence and usage

        Raises:
            RateLimitError: When the provider throttles the request
            ProviderError: For any other transport or API failure
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if the provider is configured.

        This typically checks if an API key is present.
        """
        pass

    def get_provider_name(self) -> str:
        return self.provider_type.value

    def default_model(self) -> str:
        return PROVIDER_SETTINGS[self.provider_type].default_model

    def score_output(self, output: str) -> float:
        """
        Heuristic confidence of a raw provider output.

        Starts at 0.5, rewards moderate length, list structure and research
        vocabulary, penalizes very short replies, and adds a small
        per-provider bonus. Clamped to [0, 1].
        """
        score = 0.5
        words = word_count(output)
        if 50 < words < 2000:
            score += 0.2
        elif words < 10:
            score -= 0.2

        if _BULLET_RE.search(output or ""):
            score += 0.1

        lowered = (output or "").lower()
        hits = sum(1 for kw in RESEARCH_KEYWORDS if kw in lowered)
        score += min(hits / 6, 1.0) * 0.1

        score += PROVIDER_SETTINGS[self.provider_type].confidence_bonus
        return min(max(score, 0.0), 1.0)


class ProviderError(Exception):
    """
    Base exception for provider-related errors.

    Attributes:
        message: Error message
        provider: Provider name
        status_code: HTTP status code if applicable
        retry_after: Seconds to wait before retry if applicable
        is_retryable: Whether this error should be retried
        original_error: The original exception if wrapped
    """

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after
        self.is_retryable = False  # Set by the error mapper
        self.original_error: Optional[BaseException] = None


class RateLimitError(ProviderError):
    """The provider throttled the request."""

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: Optional[int] = 429,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, provider, status_code=status_code, retry_after=retry_after)
        self.is_retryable = True


class ValidationError(Exception):
    """Invalid call input; raised before any provider is contacted and never retried."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)
