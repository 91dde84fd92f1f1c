"""
Inputs and outputs of the three agent tiers.

Every output is a plain pydantic model so it can be written to the context
store and the record store without custom serialization.
"""

import hashlib
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

Priority = Literal["high", "medium", "low"]


class InputItem(BaseModel):
    """One unit of work for a Micro agent (typically a paper)."""
    id: str = Field(..., description="Stable item identifier")
    title: str = ""
    abstract: str = ""
    content: str = ""
    year: Optional[int] = None
    authors: List[str] = Field(default_factory=list)
    venue: Optional[str] = None
    citations: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def derive_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id"):
            data = dict(data)
            if data.get("doi"):
                data["id"] = str(data["doi"])
            elif data.get("title"):
                digest = hashlib.sha1(str(data["title"]).encode("utf-8")).hexdigest()[:12]
                data["id"] = f"item-{digest}"
        return data

    @property
    def text(self) -> str:
        return "\n\n".join(part for part in (self.title, self.abstract, self.content) if part)


class Finding(BaseModel):
    """A contribution, limitation or gap surfaced by a Micro agent."""
    text: str
    kind: str = "general"
    priority: Priority = "medium"


class Methodology(BaseModel):
    techniques: List[str] = Field(default_factory=list)
    datasets: List[str] = Field(default_factory=list)
    metrics: List[str] = Field(default_factory=list)
    reproducibility: Literal["high", "medium", "low", "unknown"] = "unknown"


class MicroOutput(BaseModel):
    item_id: str
    title: str = ""
    year: Optional[int] = None
    citations: int = 0
    problem: Optional[str] = None
    novelty: Optional[str] = None
    approach: Optional[str] = None
    contributions: List[Finding] = Field(default_factory=list)
    limitations: List[Finding] = Field(default_factory=list)
    gaps: List[Finding] = Field(default_factory=list)
    methodology: Methodology = Field(default_factory=Methodology)
    sections: List[str] = Field(default_factory=list)
    fingerprint: List[str] = Field(default_factory=list, description="Sorted keyword set")
    provider: Optional[str] = None
    model: Optional[str] = None
    structured: bool = Field(True, description="False when findings came from heuristics")


class ClusterSummary(BaseModel):
    id: str
    theme: str
    description: str = ""
    item_ids: List[str]
    keywords: List[str] = Field(default_factory=list)
    cohesion: float = 1.0
    year_min: Optional[int] = None
    year_max: Optional[int] = None
    gaps: List[Finding] = Field(default_factory=list)
    trends: List[str] = Field(default_factory=list)
    methodologies: List[str] = Field(default_factory=list)
    total_citations: int = 0
    recent_share: float = Field(0.0, description="Share of items inside the recent-years window")

    @property
    def size(self) -> int:
        return len(self.item_ids)


class Pattern(BaseModel):
    type: str
    description: str
    clusters: List[str] = Field(default_factory=list)
    strength: float = 0.0


class ThematicGap(BaseModel):
    description: str
    type: Literal["shared", "concentration", "intersection"]
    priority: Priority = "medium"
    clusters: List[str] = Field(default_factory=list)


class MesoOutput(BaseModel):
    iteration: int
    clusters: List[ClusterSummary]
    patterns: List[Pattern] = Field(default_factory=list)
    thematic_gaps: List[ThematicGap] = Field(default_factory=list)
    statistics: Dict[str, Any] = Field(default_factory=dict)
    provider: Optional[str] = None


class GapScores(BaseModel):
    importance: float
    novelty: float
    feasibility: float
    impact: float


class RankedGap(BaseModel):
    gap: str
    canonical_key: str
    theme: Optional[str] = None
    priority: Priority = "medium"
    source: Literal["cluster", "thematic"] = "cluster"
    cluster_ids: List[str] = Field(default_factory=list)
    scores: GapScores
    total_score: float
    rank: int = 0
    confidence: float = 0.0


class Frontier(BaseModel):
    cluster_id: str
    theme: str
    criterion: Literal["growth", "reach", "methodology"]
    score: float
    description: str = ""


class ResearchDirection(BaseModel):
    title: str
    rationale: str
    priority: Priority = "medium"
    gap_keys: List[str] = Field(default_factory=list)


class ConvergenceVerdict(BaseModel):
    converged: bool
    similarity: float
    reason: Literal[
        "similarity_threshold_met",
        "max_iterations_reached",
        "first_iteration",
        "similarity_below_threshold",
    ]
    should_continue: bool
    compared_k: int


class MetaOutput(BaseModel):
    iteration: int
    ranked_gaps: List[RankedGap]
    patterns: List[Pattern] = Field(default_factory=list)
    frontiers: List[Frontier] = Field(default_factory=list)
    research_directions: List[ResearchDirection] = Field(default_factory=list)
    synthesis: str = ""
    verdict: ConvergenceVerdict
    statistics: Dict[str, Any] = Field(default_factory=dict)
    provider: Optional[str] = None


class MicroInput(BaseModel):
    item: InputItem
    iteration: int = 1
    domain: Optional[str] = None
    context_hints: List[str] = Field(default_factory=list)


class MesoInput(BaseModel):
    iteration: int
    micro_outputs: List[MicroOutput]
    domain: Optional[str] = None


class MetaInput(BaseModel):
    iteration: int
    max_iterations: int
    meso_output: MesoOutput
    previous_meta: Optional[MetaOutput] = None
    domain: Optional[str] = None
