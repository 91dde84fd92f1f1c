"""
Weighted confidence scoring.

Combines four signals into one score in [0, 1]:

- provider_confidence (0.35): what the model layer reported
- similarity_agreement (0.30): agreement across responses or iterations
- evidence_count (0.20): how much supporting material was found
- output_quality (0.15): structural heuristic over the output itself

Every result carries a per-component breakdown whose contributions sum to
the final confidence.
"""

import json
import logging
import re
import statistics
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from ..config.constants import (
    CONFIDENCE_THRESHOLDS,
    DEFAULT_CONFIDENCE_WEIGHTS,
    NEUTRAL_CONFIDENCE,
    RESEARCH_KEYWORDS,
    WEIGHT_SUM_TOLERANCE,
)
from ..core.similarity import word_count
from ..models.analysis import MesoOutput, MetaOutput, MicroOutput
from ..models.generation import EnsembleResult
from .models import (
    AggregatedConfidence,
    AggregationMethod,
    ComponentScore,
    ConfidenceLevel,
    ConfidenceResult,
    ConfidenceRange,
    ConfidenceSignals,
)

logger = logging.getLogger(__name__)

_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+\.)\s+", re.MULTILINE)
_CITATION_RE = re.compile(r"\[\d+\]|\([A-Z][a-z]+,? \d{4}\)")


def _clamp(value: float) -> float:
    return min(max(float(value), 0.0), 1.0)


class ConfidenceEngine:
    """Weighted confidence calculator shared by all tier workers."""

    def __init__(
        self,
        weights: Optional[Dict[str, float]] = None,
        thresholds: Optional[Dict[str, float]] = None
    ):
        self.weights = dict(DEFAULT_CONFIDENCE_WEIGHTS)
        self.thresholds = dict(thresholds or CONFIDENCE_THRESHOLDS)
        if weights:
            self.set_weights(**weights)

    def calculate_confidence(self, signals: ConfidenceSignals) -> ConfidenceResult:
        """
        Combine signals into a final confidence with a per-component breakdown.

        Missing provider confidence or agreement fall back to the neutral 0.5.
        """
        scores = {
            "provider_confidence": _clamp(
                NEUTRAL_CONFIDENCE if signals.provider_confidence is None else signals.provider_confidence
            ),
            "similarity_agreement": _clamp(
                NEUTRAL_CONFIDENCE if signals.similarity_agreement is None else signals.similarity_agreement
            ),
            "evidence_count": self._evidence_score(signals.evidence_count, signals.max_evidence),
            "output_quality": self._output_quality(
                signals.output, signals.expected_fields, signals.length_band
            ),
        }

        breakdown = {
            name: ComponentScore(
                score=score,
                weight=self.weights[name],
                contribution=score * self.weights[name],
            )
            for name, score in scores.items()
        }
        final = _clamp(sum(c.contribution for c in breakdown.values()))
        level = self.get_confidence_level(final)

        return ConfidenceResult(
            final_confidence=final,
            confidence_level=level,
            breakdown=breakdown,
            is_reliable=final >= self.thresholds["medium"],
            needs_verification=final < self.thresholds["medium"],
        )

    def get_confidence_level(self, value: float) -> ConfidenceLevel:
        if value >= self.thresholds["high"]:
            return "high"
        if value >= self.thresholds["medium"]:
            return "medium"
        if value >= self.thresholds["low"]:
            return "low"
        return "very_low"

    @staticmethod
    def _evidence_score(count: int, max_evidence: int) -> float:
        if count <= 0:
            return 0.0
        return min(1.0, count / max_evidence)

    @staticmethod
    def _output_quality(output: Any, expected_fields: Sequence[str], length_band: Tuple[int, int]) -> float:
        """Structural heuristic: length band, structure and expected fields or text markers."""
        if output is None:
            return 0.3

        if isinstance(output, BaseModel):
            output = output.model_dump(mode="json")

        structured = isinstance(output, dict)
        if structured:
            text = json.dumps(output, default=str)
        elif isinstance(output, (list, tuple)):
            text = "\n".join(str(part) for part in output)
        else:
            text = str(output)

        score = 0.5
        words = word_count(text)
        low, high = length_band
        if low < words < high:
            score += 0.15
        elif words < low / 5:
            score -= 0.2

        if structured:
            score += 0.1
            if expected_fields:
                present = sum(1 for f in expected_fields if output.get(f) not in (None, "", [], {}))
                score += 0.2 * present / len(expected_fields)
        else:
            if _BULLET_RE.search(text):
                score += 0.1
            if _CITATION_RE.search(text):
                score += 0.05
            lowered = text.lower()
            hits = sum(1 for kw in RESEARCH_KEYWORDS if kw in lowered)
            score += (hits / len(RESEARCH_KEYWORDS)) * 0.1

        return _clamp(score)

    # Tier wrappers

    def ensemble_confidence(self, result: EnsembleResult) -> ConfidenceResult:
        return self.calculate_confidence(ConfidenceSignals(
            provider_confidence=result.confidence,
            similarity_agreement=result.metrics.agreement,
            evidence_count=result.metrics.providers_used,
            max_evidence=3,
            output=result.output,
        ))

    def micro_confidence(
        self,
        provider_confidence: Optional[float],
        output: MicroOutput,
        agreement: Optional[float] = None
    ) -> ConfidenceResult:
        evidence = (
            len(output.contributions) + len(output.limitations)
            + len(output.gaps) + len(output.sections)
        )
        return self.calculate_confidence(ConfidenceSignals(
            provider_confidence=provider_confidence,
            # A single item has no peers; assume moderate agreement
            similarity_agreement=0.7 if agreement is None else agreement,
            evidence_count=evidence,
            max_evidence=20,
            output=output,
            expected_fields=["contributions", "limitations", "gaps", "methodology", "fingerprint"],
            length_band=(50, 5000),
        ))

    def meso_confidence(self, provider_confidence: Optional[float], output: MesoOutput) -> ConfidenceResult:
        cohesion = (
            sum(c.cohesion for c in output.clusters) / len(output.clusters)
            if output.clusters else None
        )
        return self.calculate_confidence(ConfidenceSignals(
            provider_confidence=provider_confidence,
            similarity_agreement=cohesion,
            evidence_count=len(output.clusters) + len(output.patterns) + len(output.thematic_gaps),
            max_evidence=15,
            output=output,
            expected_fields=["clusters", "patterns", "thematic_gaps", "statistics"],
            length_band=(50, 20000),
        ))

    def meta_confidence(
        self,
        provider_confidence: Optional[float],
        output: MetaOutput,
        previous_similarity: Optional[float] = None
    ) -> ConfidenceResult:
        return self.calculate_confidence(ConfidenceSignals(
            provider_confidence=provider_confidence,
            similarity_agreement=previous_similarity,
            evidence_count=len(output.ranked_gaps) + len(output.patterns) + len(output.frontiers),
            max_evidence=25,
            output=output,
            expected_fields=["ranked_gaps", "patterns", "frontiers", "research_directions"],
            length_band=(50, 20000),
        ))

    def aggregate_confidences(
        self,
        values: Sequence[float],
        method: AggregationMethod = "weighted_average"
    ) -> AggregatedConfidence:
        """
        Combine several confidences into one.

        ``weighted_average`` sorts values descending and weights the i-th by
        1/(i+1), so the strongest results dominate.
        """
        if method not in ("weighted_average", "min", "max", "median"):
            raise ValueError(f"Unknown aggregation method: {method}")
        items: List[float] = [_clamp(v) for v in values]
        if not items:
            return AggregatedConfidence(
                final_confidence=0.0,
                confidence_level="very_low",
                method=method,
                item_count=0,
            )

        if method == "min":
            final = min(items)
        elif method == "max":
            final = max(items)
        elif method == "median":
            final = statistics.median(items)
        else:
            ordered = sorted(items, reverse=True)
            weights = [1 / (i + 1) for i in range(len(ordered))]
            final = sum(v * w for v, w in zip(ordered, weights)) / sum(weights)

        return AggregatedConfidence(
            final_confidence=final,
            confidence_level=self.get_confidence_level(final),
            method=method,
            item_count=len(items),
            range=ConfidenceRange(min=min(items), max=max(items), spread=max(items) - min(items)),
        )

    def set_weights(self, **weights: float) -> None:
        """
        Update component weights.

        Raises:
            ValueError: Unknown component, or the weights no longer sum to 1.0
        """
        unknown = set(weights) - set(self.weights)
        if unknown:
            raise ValueError(f"Unknown confidence components: {', '.join(sorted(unknown))}")
        updated = {**self.weights, **weights}
        total = sum(updated.values())
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise ValueError(f"Confidence weights must sum to 1.0, got {total:.3f}")
        self.weights = {name: value / total for name, value in updated.items()}
        logger.info(f"Confidence weights updated: {self.weights}")

    def get_config(self) -> Dict[str, Dict[str, float]]:
        return {"weights": dict(self.weights), "thresholds": dict(self.thresholds)}
