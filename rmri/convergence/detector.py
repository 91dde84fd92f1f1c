"""Convergence detection over successive Meta gap rankings."""

import logging
from typing import Iterable, List, Optional, Sequence, Union

from ..config.constants import DEFAULT_CONVERGENCE_THRESHOLD, DEFAULT_TOP_K
from ..core.similarity import canonicalize_gap, jaccard
from ..models.analysis import ConvergenceVerdict, RankedGap

logger = logging.getLogger(__name__)

GapLike = Union[RankedGap, str]


class ConvergenceDetector:
    """
    Compares the top-K gaps of two iterations.

    Gaps are identified by their canonical key; similarity is the Jaccard
    index of the two top-K key sets.
    """

    def __init__(self, top_k: int = DEFAULT_TOP_K, threshold: float = DEFAULT_CONVERGENCE_THRESHOLD):
        if top_k < 1:
            raise ValueError("top_k must be at least 1")
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be within [0, 1]")
        self.top_k = top_k
        self.threshold = threshold

    def top_keys(self, gaps: Iterable[GapLike]) -> List[str]:
        """Canonical keys of the first ``top_k`` distinct gaps, in ranking order."""
        keys: List[str] = []
        for gap in gaps:
            if isinstance(gap, RankedGap):
                key = gap.canonical_key or canonicalize_gap(gap.gap)
            else:
                key = canonicalize_gap(gap)
            if key and key not in keys:
                keys.append(key)
            if len(keys) == self.top_k:
                break
        return keys

    def similarity(self, current: Sequence[GapLike], previous: Sequence[GapLike]) -> float:
        """Jaccard of the two top-K key sets; 0.0 when neither ranking has a gap."""
        current_keys = self.top_keys(current)
        previous_keys = self.top_keys(previous)
        if not current_keys and not previous_keys:
            return 0.0
        return jaccard(current_keys, previous_keys)

    def check(
        self,
        current: Sequence[GapLike],
        previous: Optional[Sequence[GapLike]],
        iteration: int,
        max_iterations: int
    ) -> ConvergenceVerdict:
        """
        Decide whether the run has converged.

        Args:
            current: This iteration's ranked gaps, best first
            previous: The previous iteration's ranked gaps, or None on the first iteration
            iteration: Current iteration (1-based)
            max_iterations: Configured iteration ceiling

        Returns:
            ConvergenceVerdict; ``should_continue`` is always ``not converged``
        """
        compared_k = len(self.top_keys(current))

        if previous is None:
            similarity = 0.0
        else:
            similarity = self.similarity(current, previous)

        if previous is not None and similarity >= self.threshold:
            converged, reason = True, "similarity_threshold_met"
        elif iteration >= max_iterations:
            converged, reason = True, "max_iterations_reached"
        elif previous is None:
            converged, reason = False, "first_iteration"
        else:
            converged, reason = False, "similarity_below_threshold"

        logger.info(
            f"Convergence check iteration={iteration}/{max_iterations} "
            f"similarity={similarity:.3f} converged={converged} reason={reason}"
        )
        return ConvergenceVerdict(
            converged=converged,
            similarity=similarity,
            reason=reason,
            should_continue=not converged,
            compared_k=compared_k,
        )
