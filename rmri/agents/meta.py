"""
Meta tier: cross-cluster synthesis for one iteration.

Gaps from every cluster and every thematic gap are scored on importance,
novelty, feasibility and impact, merged by canonical key and ranked. The
ranking is compared with the previous iteration's ranking to decide
convergence.
"""

import logging
from collections import Counter
from typing import Dict, List, Optional, Sequence

from ..config.constants import (
    COMPLEXITY_KEYWORDS,
    FEASIBILITY_KEYWORDS,
    IMPACT_KEYWORDS,
    NOVELTY_KEYWORDS,
)
from ..confidence.engine import ConfidenceEngine
from ..convergence.detector import ConvergenceDetector
from ..core.similarity import canonicalize_gap
from ..llm.call_layer import ModelCallLayer
from ..models.analysis import (
    ClusterSummary,
    Frontier,
    GapScores,
    MesoOutput,
    MetaInput,
    MetaOutput,
    Pattern,
    RankedGap,
    ResearchDirection,
)
from ..models.generation import AgentTier, CallOptions
from .base import TierWorker, WorkerResult
from .parsing import extract_json_object
from .prompts import SYSTEM_PROMPT, render_meta_prompt

logger = logging.getLogger(__name__)

SCORE_WEIGHTS = {"importance": 0.35, "novelty": 0.25, "feasibility": 0.20, "impact": 0.20}
_PRIORITY_CONFIDENCE = {"high": 0.85, "medium": 0.70, "low": 0.55}


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _count_hits(text: str, keywords: Sequence[str]) -> int:
    return sum(1 for kw in keywords if kw in text)


def score_gap(
    text: str,
    priority: str,
    source: str,
    gap_type: Optional[str],
    size: int,
    cohesion: float
) -> GapScores:
    """Score one gap on the four ranking dimensions."""
    lowered = text.lower()

    importance = 0.5
    if priority == "high":
        importance += 0.3
    elif priority == "medium":
        importance += 0.15
    importance += min(0.2, size * 0.02)
    importance += cohesion * 0.2

    novelty = 0.5 + 0.1 * _count_hits(lowered, NOVELTY_KEYWORDS)
    if gap_type in ("intersection", "shared"):
        novelty += 0.2

    feasibility = 0.6
    if _count_hits(lowered, FEASIBILITY_KEYWORDS):
        feasibility += 0.2
    feasibility -= 0.1 * _count_hits(lowered, COMPLEXITY_KEYWORDS)

    impact = 0.5 + 0.1 * _count_hits(lowered, IMPACT_KEYWORDS)
    if source == "thematic":
        impact += 0.15

    return GapScores(
        importance=_clamp(importance),
        novelty=_clamp(novelty),
        feasibility=_clamp(feasibility, 0.2, 1.0),
        impact=_clamp(impact),
    )


def total_score(scores: GapScores) -> float:
    return sum(getattr(scores, name) * weight for name, weight in SCORE_WEIGHTS.items())


def rank_gaps(candidates: Sequence[RankedGap], limit: int) -> List[RankedGap]:
    """
    Merge candidates by canonical key and assign dense ranks.

    The highest scoring candidate of each key wins; the cluster ids of the
    losers are folded into it. Ties are broken by canonical key.
    """
    best: Dict[str, RankedGap] = {}
    for candidate in candidates:
        current = best.get(candidate.canonical_key)
        if current is None:
            best[candidate.canonical_key] = candidate
            continue
        merged_ids = sorted(set(current.cluster_ids) | set(candidate.cluster_ids))
        winner = candidate if candidate.total_score > current.total_score else current
        best[candidate.canonical_key] = winner.model_copy(update={"cluster_ids": merged_ids})

    ordered = sorted(best.values(), key=lambda g: (-round(g.total_score, 6), g.canonical_key))

    ranked: List[RankedGap] = []
    rank = 0
    previous_score = None
    for gap in ordered[:limit]:
        score = round(gap.total_score, 6)
        if score != previous_score:
            rank += 1
            previous_score = score
        ranked.append(gap.model_copy(update={"rank": rank}))
    return ranked


class MetaWorker(TierWorker[MetaInput, MetaOutput]):
    """Ranks gaps across clusters and decides whether the run has converged."""

    tier = AgentTier.META

    def __init__(
        self,
        call_options: Optional[CallOptions] = None,
        detector: Optional[ConvergenceDetector] = None,
        max_ranked_gaps: int = 20,
        frontier_growth_threshold: float = 0.5,
        frontier_reach_threshold: int = 2,
        max_directions: int = 10
    ):
        super().__init__(call_options)
        self.detector = detector or ConvergenceDetector()
        self.max_ranked_gaps = max_ranked_gaps
        self.frontier_growth_threshold = frontier_growth_threshold
        self.frontier_reach_threshold = frontier_reach_threshold
        self.max_directions = max_directions

    def collect_gaps(self, meso: MesoOutput) -> List[RankedGap]:
        """Scored, unranked candidates from cluster gaps and thematic gaps."""
        clusters = {c.id: c for c in meso.clusters}
        candidates: List[RankedGap] = []

        for cluster in meso.clusters:
            for gap in cluster.gaps:
                key = canonicalize_gap(gap.text)
                if not key:
                    continue
                scores = score_gap(gap.text, gap.priority, "cluster", None, cluster.size, cluster.cohesion)
                candidates.append(RankedGap(
                    gap=gap.text,
                    canonical_key=key,
                    theme=cluster.theme,
                    priority=gap.priority,
                    source="cluster",
                    cluster_ids=[cluster.id],
                    scores=scores,
                    total_score=total_score(scores),
                    confidence=_PRIORITY_CONFIDENCE[gap.priority] * (0.8 + 0.2 * cluster.cohesion),
                ))

        for gap in meso.thematic_gaps:
            key = canonicalize_gap(gap.description)
            if not key:
                continue
            involved = [clusters[cid] for cid in gap.clusters if cid in clusters]
            size = sum(c.size for c in involved)
            cohesion = sum(c.cohesion for c in involved) / len(involved) if involved else 0.0
            scores = score_gap(gap.description, gap.priority, "thematic", gap.type, size, cohesion)
            candidates.append(RankedGap(
                gap=gap.description,
                canonical_key=key,
                theme=" & ".join(c.theme for c in involved) or None,
                priority=gap.priority,
                source="thematic",
                cluster_ids=list(gap.clusters),
                scores=scores,
                total_score=total_score(scores),
                confidence=_PRIORITY_CONFIDENCE[gap.priority] * (0.8 + 0.2 * cohesion),
            ))
        return candidates

    @staticmethod
    def find_patterns(meso: MesoOutput) -> List[Pattern]:
        """Cross-domain patterns; temporal patterns from the Meso tier are carried over."""
        clusters = meso.clusters
        patterns: List[Pattern] = []

        keyword_clusters: Dict[str, List[str]] = {}
        technique_clusters: Dict[str, List[str]] = {}
        for c in clusters:
            for keyword in c.keywords:
                keyword_clusters.setdefault(keyword, []).append(c.id)
            for technique in c.methodologies:
                technique_clusters.setdefault(technique, []).append(c.id)

        recurring = sorted(
            ((kw, ids) for kw, ids in keyword_clusters.items() if len(ids) >= 2),
            key=lambda kv: (-len(kv[1]), kv[0]),
        )
        for keyword, ids in recurring[:5]:
            patterns.append(Pattern(
                type="recurring_theme",
                description=f"'{keyword}' recurs in {len(ids)} themes",
                clusters=ids,
                strength=len(ids) / len(clusters),
            ))

        for technique, ids in sorted(technique_clusters.items()):
            if len(ids) >= 3:
                patterns.append(Pattern(
                    type="cross_domain_methodology",
                    description=f"'{technique}' is applied across {len(ids)} themes",
                    clusters=ids,
                    strength=len(ids) / len(clusters),
                ))

        patterns.extend(p for p in meso.patterns if p.type == "temporal_evolution")
        return patterns

    def find_frontiers(self, clusters: Sequence[ClusterSummary]) -> List[Frontier]:
        frontiers: List[Frontier] = []
        keyword_sets = {c.id: set(c.keywords) for c in clusters}
        technique_counts = Counter(t for c in clusters for t in set(c.methodologies))

        for c in clusters:
            if c.recent_share >= self.frontier_growth_threshold or "increasing_activity" in c.trends:
                frontiers.append(Frontier(
                    cluster_id=c.id,
                    theme=c.theme,
                    criterion="growth",
                    score=c.recent_share,
                    description=f"{c.recent_share:.0%} of the work on {c.theme} is recent",
                ))

            reached = [
                other.id for other in clusters
                if other.id != c.id and keyword_sets[c.id] & keyword_sets[other.id]
            ]
            if reached and len(reached) >= self.frontier_reach_threshold:
                frontiers.append(Frontier(
                    cluster_id=c.id,
                    theme=c.theme,
                    criterion="reach",
                    score=len(reached) / (len(clusters) - 1),
                    description=f"{c.theme} connects to {len(reached)} other themes",
                ))

            unique = [t for t in c.methodologies if technique_counts[t] == 1]
            if unique and len(clusters) > 1:
                frontiers.append(Frontier(
                    cluster_id=c.id,
                    theme=c.theme,
                    criterion="methodology",
                    score=len(unique) / len(c.methodologies),
                    description=f"{c.theme} alone applies {', '.join(unique[:3])}",
                ))

        frontiers.sort(key=lambda f: (-f.score, f.cluster_id, f.criterion))
        return frontiers

    def build_directions(
        self,
        ranked: Sequence[RankedGap],
        frontiers: Sequence[Frontier],
        model_directions: Sequence[dict]
    ) -> List[ResearchDirection]:
        directions: List[ResearchDirection] = []
        for gap in ranked[:5]:
            directions.append(ResearchDirection(
                title=f"Investigate: {gap.gap}",
                rationale=f"Ranked #{gap.rank} with score {gap.total_score:.2f}"
                          + (f" in {gap.theme}" if gap.theme else ""),
                priority="high" if gap.rank <= 2 else "medium",
                gap_keys=[gap.canonical_key],
            ))

        for frontier in frontiers:
            if frontier.criterion == "reach":
                title = f"Cross-domain synthesis around {frontier.theme}"
            elif frontier.criterion == "growth":
                title = f"Build on growing activity in {frontier.theme}"
            else:
                continue
            directions.append(ResearchDirection(title=title, rationale=frontier.description, priority="medium"))

        for entry in model_directions:
            title = str(entry.get("title") or "").strip()
            if title:
                directions.append(ResearchDirection(
                    title=title,
                    rationale=str(entry.get("rationale") or "").strip(),
                    priority="medium",
                ))

        seen = set()
        unique = []
        for direction in directions:
            key = canonicalize_gap(direction.title)
            if key not in seen:
                seen.add(key)
                unique.append(direction)
        return unique[:self.max_directions]

    async def run(
        self,
        input: MetaInput,
        call_layer: ModelCallLayer,
        confidence_engine: ConfidenceEngine
    ) -> WorkerResult[MetaOutput]:
        meso = input.meso_output
        ranked = rank_gaps(self.collect_gaps(meso), self.max_ranked_gaps)
        patterns = self.find_patterns(meso)
        frontiers = self.find_frontiers(meso.clusters)

        prompt = render_meta_prompt(
            iteration=input.iteration,
            domain=input.domain,
            gaps=ranked[:10],
            patterns=patterns,
            frontiers=frontiers,
        )
        options = self.options_for_call(system_prompt=self.call_options.system_prompt or SYSTEM_PROMPT)
        response = await call_layer.call_with_fallback(prompt, options)

        data = extract_json_object(response.output) or {}
        synthesis = str(data.get("synthesis") or "").strip() or response.output.strip()[:2000]
        model_directions = data.get("directions") if isinstance(data.get("directions"), list) else []
        model_directions = [d for d in model_directions if isinstance(d, dict)]

        previous = input.previous_meta.ranked_gaps if input.previous_meta else None
        verdict = self.detector.check(ranked, previous, input.iteration, input.max_iterations)
        logger.info(
            f"Meta iteration {input.iteration}: {len(ranked)} gaps ranked, "
            f"similarity={verdict.similarity:.2f}, reason={verdict.reason}"
        )

        output = MetaOutput(
            iteration=input.iteration,
            ranked_gaps=ranked,
            patterns=patterns,
            frontiers=frontiers,
            research_directions=self.build_directions(ranked, frontiers, model_directions),
            synthesis=synthesis,
            verdict=verdict,
            statistics={
                "candidate_gaps": sum(len(c.gaps) for c in meso.clusters) + len(meso.thematic_gaps),
                "ranked_gaps": len(ranked),
                "clusters": len(meso.clusters),
                "patterns": len(patterns),
                "frontiers": len(frontiers),
                "average_score": sum(g.total_score for g in ranked) / len(ranked) if ranked else 0.0,
            },
            provider=response.provider.value,
        )
        confidence = confidence_engine.meta_confidence(
            response.confidence,
            output,
            verdict.similarity if previous is not None else None,
        )
        return WorkerResult(
            output=output,
            confidence=confidence.final_confidence,
            confidence_level=confidence.confidence_level,
            metadata={"provider": response.provider.value, "model": response.model},
        )
