from .base import TierWorker, WorkerResult
from .meso import MesoWorker, cluster_fingerprints, determine_cluster_count
from .meta import MetaWorker, rank_gaps, score_gap
from .micro import MicroWorker, heuristic_findings
from .parsing import extract_json, extract_json_object

__all__ = [
    "MesoWorker",
    "MetaWorker",
    "MicroWorker",
    "TierWorker",
    "WorkerResult",
    "cluster_fingerprints",
    "determine_cluster_count",
    "extract_json",
    "extract_json_object",
    "heuristic_findings",
    "rank_gaps",
    "score_gap",
]
