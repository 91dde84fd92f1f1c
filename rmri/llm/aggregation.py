"""Ensemble response aggregation strategies."""

from typing import List, Optional, Sequence

from ..core.similarity import mean_off_diagonal, similarity_matrix
from ..models.generation import (
    AggregationStrategy,
    EnsembleMetrics,
    EnsembleResult,
    ProviderAttempt,
    ProviderResponse,
    ProviderType,
)


def _priority_index(priority: Sequence[ProviderType], provider: ProviderType) -> int:
    try:
        return list(priority).index(provider)
    except ValueError:
        return len(priority)


def _pick(
    responses: List[ProviderResponse],
    scores: List[float],
    priority: Sequence[ProviderType]
) -> int:
    """Index of the highest score; ties go to the provider earliest in ``priority``."""
    best = 0
    for i in range(1, len(responses)):
        if scores[i] > scores[best]:
            best = i
        elif scores[i] == scores[best] and (
            _priority_index(priority, responses[i].provider)
            < _priority_index(priority, responses[best].provider)
        ):
            best = i
    return best


def aggregate_responses(
    responses: List[ProviderResponse],
    attempts: List[ProviderAttempt],
    strategy: AggregationStrategy,
    priority: Sequence[ProviderType],
) -> EnsembleResult:
    """
    Combine successful ensemble responses.

    Args:
        responses: Successful responses, in requested provider order
        attempts: Every attempt, successful or not
        strategy: ``all``, ``best`` or ``consensus``
        priority: Requested provider order, used for tie-breaking

    Returns:
        EnsembleResult with the selected output and agreement metrics
    """
    if not responses:
        raise ValueError("Cannot aggregate an empty response set")

    matrix = similarity_matrix([r.output for r in responses])
    agreement: Optional[float] = mean_off_diagonal(matrix) if len(responses) > 1 else None
    metrics = EnsembleMetrics(
        similarity_matrix=matrix,
        agreement=agreement,
        providers_used=len(responses),
        providers_requested=len(attempts),
        total_tokens=sum(r.usage.total_tokens for r in responses),
    )

    if strategy == "all":
        return EnsembleResult(
            strategy=strategy,
            attempts=attempts,
            responses=responses,
            output=[r.output for r in responses],
            selected=None,
            confidence=sum(r.confidence for r in responses) / len(responses),
            metrics=metrics,
        )

    if strategy == "best":
        scores = [r.confidence for r in responses]
    elif strategy == "consensus":
        scores = []
        n = len(responses)
        for i, response in enumerate(responses):
            others = [matrix[i][j] for j in range(n) if j != i]
            mean_similarity = sum(others) / len(others) if others else 1.0
            scores.append(response.confidence * mean_similarity)
    else:
        raise ValueError(f"Unknown aggregation strategy: {strategy}")

    selected = responses[_pick(responses, scores, priority)]
    return EnsembleResult(
        strategy=strategy,
        attempts=attempts,
        responses=responses,
        output=selected.output,
        selected=selected,
        confidence=selected.confidence,
        metrics=metrics,
    )
