"""
Meso tier: thematic clustering over the Micro outputs of one iteration.

Clustering is deterministic: outputs are sorted by item id and merged by
average-linkage agglomeration on fingerprint Jaccard similarity, so the same
set of Micro outputs always yields the same clusters regardless of the order
in which Micro jobs finished.
"""

import logging
import math
from collections import Counter
from itertools import combinations
from typing import Dict, List, Optional, Sequence

from ..confidence.engine import ConfidenceEngine
from ..core.similarity import canonicalize_gap, jaccard
from ..llm.call_layer import ModelCallLayer
from ..models.analysis import (
    ClusterSummary,
    Finding,
    MesoInput,
    MesoOutput,
    MicroOutput,
    Pattern,
    ThematicGap,
)
from ..models.generation import AgentTier, CallOptions
from .base import TierWorker, WorkerResult
from .parsing import extract_json_object
from .prompts import SYSTEM_PROMPT, render_meso_prompt

logger = logging.getLogger(__name__)

_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


def determine_cluster_count(n: int) -> int:
    """Heuristic cluster count for ``n`` items."""
    if n <= 5:
        k = 2
    elif n <= 10:
        k = 3
    elif n <= 20:
        k = 4
    elif n <= 50:
        k = 6
    else:
        k = min(10, math.ceil(math.sqrt(n)))
    return max(1, min(k, n))


def _average_linkage(a: Sequence[int], b: Sequence[int], sim: List[List[float]]) -> float:
    return sum(sim[i][j] for i in a for j in b) / (len(a) * len(b))


def cluster_fingerprints(
    fingerprints: Sequence[Sequence[str]],
    k: int,
    min_cluster_size: int = 1
) -> List[List[int]]:
    """
    Group fingerprint indices into ``k`` clusters.

    Repeatedly merges the most similar pair of clusters (lowest index pair
    on ties), then folds clusters smaller than ``min_cluster_size`` into
    their most similar neighbour.
    """
    n = len(fingerprints)
    sets = [set(fp) for fp in fingerprints]
    sim = [[jaccard(sets[i], sets[j]) if i != j else 1.0 for j in range(n)] for i in range(n)]

    clusters: List[List[int]] = [[i] for i in range(n)]
    while len(clusters) > max(k, 1):
        best_pair = (0, 1)
        best_score = -1.0
        for a, b in combinations(range(len(clusters)), 2):
            score = _average_linkage(clusters[a], clusters[b], sim)
            if score > best_score:
                best_pair, best_score = (a, b), score
        a, b = best_pair
        clusters[a] = sorted(clusters[a] + clusters[b])
        del clusters[b]

    while len(clusters) > 1:
        small = [idx for idx, members in enumerate(clusters) if len(members) < min_cluster_size]
        if not small:
            break
        source = small[0]
        target = max(
            (idx for idx in range(len(clusters)) if idx != source),
            key=lambda idx: (_average_linkage(clusters[source], clusters[idx], sim), -idx),
        )
        clusters[target] = sorted(clusters[target] + clusters[source])
        del clusters[source]

    return sorted(clusters, key=lambda members: members[0])


def _cohesion(members: Sequence[int], fingerprints: Sequence[Sequence[str]]) -> float:
    if len(members) < 2:
        return 1.0
    pairs = list(combinations(members, 2))
    return sum(jaccard(fingerprints[i], fingerprints[j]) for i, j in pairs) / len(pairs)


def _identify_trends(outputs: Sequence[MicroOutput], recent_since: Optional[int]) -> List[str]:
    trends = []
    dated = sorted((o for o in outputs if o.year), key=lambda o: o.year)
    if len(dated) >= 3:
        older_max = max(o.year for o in dated[:3])
        if any(o.year > older_max for o in dated[-3:]):
            trends.append("increasing_activity")
    if recent_since is not None:
        recent = [o for o in outputs if o.year and o.year >= recent_since]
        if recent and sum(o.citations for o in recent) / len(recent) > 10:
            trends.append("high_impact")
    return trends


class MesoWorker(TierWorker[MesoInput, MesoOutput]):
    """Clusters Micro outputs into themes and surfaces cross-cluster structure."""

    tier = AgentTier.MESO

    def __init__(
        self,
        call_options: Optional[CallOptions] = None,
        cluster_count: Optional[int] = None,
        min_cluster_size: int = 1,
        recent_years: int = 5
    ):
        super().__init__(call_options)
        self.cluster_count = cluster_count
        self.min_cluster_size = min_cluster_size
        self.recent_years = recent_years

    def build_clusters(self, outputs: Sequence[MicroOutput]) -> List[ClusterSummary]:
        fingerprints = [o.fingerprint for o in outputs]
        k = min(self.cluster_count, len(outputs)) if self.cluster_count else determine_cluster_count(len(outputs))
        groups = cluster_fingerprints(fingerprints, k, self.min_cluster_size)

        years = [o.year for o in outputs if o.year]
        recent_since = max(years) - self.recent_years + 1 if years else None

        clusters = []
        for index, members in enumerate(groups, start=1):
            members_out = [outputs[i] for i in members]
            keyword_counts = Counter(word for o in members_out for word in o.fingerprint)
            keywords = [w for w, _ in sorted(keyword_counts.items(), key=lambda kv: (-kv[1], kv[0]))[:10]]

            gaps: List[Finding] = []
            seen = set()
            for o in members_out:
                for gap in o.gaps:
                    key = canonicalize_gap(gap.text)
                    if key and key not in seen:
                        seen.add(key)
                        gaps.append(gap)
            gaps.sort(key=lambda g: _PRIORITY_ORDER.get(g.priority, 1))

            technique_counts = Counter(t for o in members_out for t in o.methodology.techniques)
            member_years = [o.year for o in members_out if o.year]

            clusters.append(ClusterSummary(
                id=f"cluster-{index}",
                theme=" / ".join(keywords[:3]) or f"Cluster {index}",
                description=f"{len(members)} items on {', '.join(keywords[:5]) or 'mixed topics'}",
                item_ids=[o.item_id for o in members_out],
                keywords=keywords,
                cohesion=_cohesion(members, fingerprints),
                year_min=min(member_years) if member_years else None,
                year_max=max(member_years) if member_years else None,
                gaps=gaps,
                trends=_identify_trends(members_out, recent_since),
                methodologies=[t for t, _ in sorted(technique_counts.items(), key=lambda kv: (-kv[1], kv[0]))],
                total_citations=sum(o.citations for o in members_out),
                recent_share=(
                    sum(1 for o in members_out if o.year and o.year >= recent_since) / len(members_out)
                    if recent_since is not None else 0.0
                ),
            ))
        return clusters

    async def label_themes(
        self,
        clusters: List[ClusterSummary],
        outputs_by_id: Dict[str, MicroOutput],
        call_layer: ModelCallLayer,
        domain: Optional[str]
    ):
        """Ask the model for theme labels; keyword labels stay when the reply is unusable."""
        prompt = render_meso_prompt(
            domain=domain,
            clusters=[
                {
                    "id": c.id,
                    "size": c.size,
                    "keywords": c.keywords,
                    "titles": [outputs_by_id[i].title or i for i in c.item_ids],
                }
                for c in clusters
            ],
        )
        options = self.options_for_call(system_prompt=self.call_options.system_prompt or SYSTEM_PROMPT)
        response = await call_layer.call_with_fallback(prompt, options)

        data = extract_json_object(response.output) or {}
        themes = data.get("themes") if isinstance(data.get("themes"), list) else []
        by_id = {str(t.get("cluster_id")): t for t in themes if isinstance(t, dict)}
        labelled = []
        for cluster in clusters:
            theme = by_id.get(cluster.id, {})
            update = {}
            if str(theme.get("label") or "").strip():
                update["theme"] = str(theme["label"]).strip()
            if str(theme.get("description") or "").strip():
                update["description"] = str(theme["description"]).strip()
            labelled.append(cluster.model_copy(update=update))
        if not by_id:
            logger.info("Theme reply unparseable; keeping keyword labels")
        return labelled, response

    @staticmethod
    def find_patterns(clusters: Sequence[ClusterSummary]) -> List[Pattern]:
        patterns: List[Pattern] = []
        if len(clusters) >= 2:
            technique_clusters: Dict[str, List[str]] = {}
            for c in clusters:
                for technique in c.methodologies:
                    technique_clusters.setdefault(technique, []).append(c.id)
            for technique, ids in sorted(technique_clusters.items()):
                if len(ids) >= 2:
                    patterns.append(Pattern(
                        type="methodology_overlap",
                        description=f"Methodology '{technique}' shared across {len(ids)} clusters",
                        clusters=ids,
                        strength=len(ids) / len(clusters),
                    ))

            keyword_clusters: Dict[str, List[str]] = {}
            for c in clusters:
                for keyword in c.keywords:
                    keyword_clusters.setdefault(keyword, []).append(c.id)
            shared = sorted(
                ((kw, ids) for kw, ids in keyword_clusters.items() if len(ids) >= 2),
                key=lambda kv: (-len(kv[1]), kv[0]),
            )
            for keyword, ids in shared[:5]:
                patterns.append(Pattern(
                    type="keyword_overlap",
                    description=f"Concept '{keyword}' recurs across {len(ids)} clusters",
                    clusters=ids,
                    strength=len(ids) / len(clusters),
                ))

        years = [y for c in clusters for y in (c.year_min, c.year_max) if y]
        if years and max(years) - min(years) > 5:
            patterns.append(Pattern(
                type="temporal_evolution",
                description=f"Research spanning {max(years) - min(years)} years ({min(years)}-{max(years)})",
                clusters=[c.id for c in clusters],
                strength=min(1.0, (max(years) - min(years)) / 20),
            ))
        return patterns

    @staticmethod
    def find_thematic_gaps(clusters: Sequence[ClusterSummary]) -> List[ThematicGap]:
        gaps: List[ThematicGap] = []

        owners: Dict[str, List[str]] = {}
        texts: Dict[str, str] = {}
        for c in clusters:
            for gap in c.gaps:
                key = canonicalize_gap(gap.text)
                texts.setdefault(key, gap.text)
                if c.id not in owners.setdefault(key, []):
                    owners[key].append(c.id)
        for key in sorted(owners):
            if len(owners[key]) >= 2:
                gaps.append(ThematicGap(
                    description=texts[key], type="shared", priority="high", clusters=owners[key]
                ))

        for c in clusters:
            if len(c.gaps) > c.size:
                gaps.append(ThematicGap(
                    description=f"High concentration of research gaps in {c.theme}",
                    type="concentration",
                    priority="high",
                    clusters=[c.id],
                ))

        for a, b in combinations(clusters, 2):
            gaps.append(ThematicGap(
                description=f"Under-explored intersection of {a.theme} and {b.theme}",
                type="intersection",
                priority="medium",
                clusters=[a.id, b.id],
            ))
        return gaps

    async def run(
        self,
        input: MesoInput,
        call_layer: ModelCallLayer,
        confidence_engine: ConfidenceEngine
    ) -> WorkerResult[MesoOutput]:
        if not input.micro_outputs:
            raise ValueError("Meso analysis needs at least one Micro output")

        outputs = sorted(input.micro_outputs, key=lambda o: o.item_id)
        outputs_by_id = {o.item_id: o for o in outputs}

        clusters = self.build_clusters(outputs)
        clusters, response = await self.label_themes(clusters, outputs_by_id, call_layer, input.domain)
        patterns = self.find_patterns(clusters)
        thematic_gaps = self.find_thematic_gaps(clusters)

        output = MesoOutput(
            iteration=input.iteration,
            clusters=clusters,
            patterns=patterns,
            thematic_gaps=thematic_gaps,
            statistics={
                "total_items": len(outputs),
                "cluster_count": len(clusters),
                "average_cohesion": sum(c.cohesion for c in clusters) / len(clusters),
                "total_gaps": sum(len(c.gaps) for c in clusters),
                "singleton_clusters": sum(1 for c in clusters if c.size == 1),
            },
            provider=response.provider.value,
        )
        confidence = confidence_engine.meso_confidence(response.confidence, output)
        return WorkerResult(
            output=output,
            confidence=confidence.final_confidence,
            confidence_level=confidence.confidence_level,
            metadata={"provider": response.provider.value, "model": response.model},
        )
