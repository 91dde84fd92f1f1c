from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field

ConfidenceLevel = Literal["high", "medium", "low", "very_low"]
AggregationMethod = Literal["weighted_average", "min", "max", "median"]


class ConfidenceSignals(BaseModel):
    """Raw signals combined by the confidence engine."""
    provider_confidence: Optional[float] = Field(None, description="Confidence reported by the provider")
    similarity_agreement: Optional[float] = Field(None, description="Agreement across responses or iterations")
    evidence_count: int = Field(default=0, ge=0, description="Number of supporting findings")
    max_evidence: int = Field(default=10, ge=1, description="Evidence count that saturates the score")
    output: Any = Field(None, description="Output whose structure is assessed")
    expected_fields: List[str] = Field(default_factory=list, description="Fields a structured output should carry")
    length_band: Tuple[int, int] = Field(default=(100, 5000), description="Preferred word-count band")


class ComponentScore(BaseModel):
    score: float
    weight: float
    contribution: float


class ConfidenceResult(BaseModel):
    final_confidence: float
    confidence_level: ConfidenceLevel
    breakdown: Dict[str, ComponentScore]
    is_reliable: bool
    needs_verification: bool


class ConfidenceRange(BaseModel):
    min: float
    max: float
    spread: float


class AggregatedConfidence(BaseModel):
    final_confidence: float
    confidence_level: ConfidenceLevel
    method: AggregationMethod
    item_count: int
    range: Optional[ConfidenceRange] = None
