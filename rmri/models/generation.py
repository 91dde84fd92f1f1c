from enum import Enum
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProviderType(str, Enum):
    """Supported LLM providers."""
    CEREBRAS = "cerebras"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    HUGGINGFACE = "huggingface"


class AgentTier(str, Enum):
    """Agent tiers of the analysis pipeline."""
    MICRO = "micro"
    MESO = "meso"
    META = "meta"


AggregationStrategy = Literal["all", "best", "consensus"]


class CallOptions(BaseModel):
    """
    Options for a call through the model call layer.

    The same options object drives single, fallback and ensemble calls;
    fields that do not apply to a mode are ignored by it.
    """
    model: Optional[str] = Field(None, description="Model hint for single-provider calls")
    models: Dict[ProviderType, str] = Field(
        default_factory=dict,
        description="Per-provider model overrides"
    )
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: int = Field(default=2000, ge=1, le=16384, description="Maximum tokens to generate")
    system_prompt: Optional[str] = Field(None, description="System prompt prepended to the call")
    timeout_s: float = Field(default=60.0, gt=0, description="Per-provider timeout in seconds")

    # Fallback
    agent_type: Optional[AgentTier] = Field(None, description="Agent tier used to pick a default order")
    preferred_order: Optional[List[ProviderType]] = Field(
        None,
        description="Explicit provider order for fallback calls"
    )
    max_rounds: int = Field(
        default=1,
        ge=1,
        le=3,
        description="Passes over the provider order before giving up"
    )

    # Ensemble
    providers: Optional[List[ProviderType]] = Field(
        None,
        description="Ensemble targets (default: every configured provider)"
    )
    min_providers: int = Field(default=2, ge=1, description="Minimum successful ensemble responses")
    aggregation: AggregationStrategy = Field(default="consensus", description="Ensemble aggregation strategy")

    def resolve_model(self, provider: ProviderType) -> Optional[str]:
        """Model to use for a provider, falling back to the generic hint."""
        return self.models.get(provider) or self.model


class UsageMetadata(BaseModel):
    """Token usage and latency for one provider call."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    latency_ms: int = 0


class ProviderResponse(BaseModel):
    """Normalized response from one provider."""
    model_config = ConfigDict(frozen=True)

    provider: ProviderType
    model: str
    output: str
    confidence: float = Field(ge=0.0, le=1.0)
    usage: UsageMetadata = Field(default_factory=UsageMetadata)

    @field_validator("confidence", mode="before")
    def clamp_confidence(cls, v):
        return min(max(float(v), 0.0), 1.0)


class ProviderAttempt(BaseModel):
    """Outcome of one provider inside a fallback or ensemble call."""
    provider: ProviderType
    success: bool
    response: Optional[ProviderResponse] = None
    error: Optional[str] = None
    rate_limited: bool = False


class EnsembleMetrics(BaseModel):
    """Agreement and usage figures of an ensemble call."""
    similarity_matrix: List[List[float]] = Field(default_factory=list)
    agreement: Optional[float] = Field(
        None,
        description="Mean off-diagonal similarity; None with fewer than two responses"
    )
    providers_used: int = 0
    providers_requested: int = 0
    total_tokens: int = 0


class EnsembleResult(BaseModel):
    """Aggregated result of an ensemble call."""
    strategy: AggregationStrategy
    attempts: List[ProviderAttempt]
    responses: List[ProviderResponse]
    output: Union[str, List[str]]
    selected: Optional[ProviderResponse] = None
    confidence: float
    metrics: EnsembleMetrics
