"""
Micro tier: per-item analysis.

One Micro job runs per input item. The model is asked for structured
findings; when the reply cannot be parsed the worker falls back to
sentence-level heuristics over the item's own text so that the Meso tier
always receives a usable fingerprint.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple

from ..confidence.engine import ConfidenceEngine
from ..core.similarity import canonicalize_gap, extract_keywords
from ..llm.call_layer import ModelCallLayer
from ..models.analysis import Finding, InputItem, Methodology, MicroInput, MicroOutput
from ..models.generation import AgentTier, CallOptions
from .base import TierWorker, WorkerResult
from .parsing import extract_json_object
from .prompts import SYSTEM_PROMPT, render_micro_prompt

logger = logging.getLogger(__name__)

SECTION_PATTERNS = {
    "introduction": re.compile(r"\bintroduction\b", re.I),
    "methodology": re.compile(r"\b(methodology|methods|approach)\b", re.I),
    "results": re.compile(r"\b(results|findings|experiments)\b", re.I),
    "discussion": re.compile(r"\b(discussion|analysis)\b", re.I),
    "conclusion": re.compile(r"\b(conclusion|summary)\b", re.I),
    "related_work": re.compile(r"\b(related work|background|literature review)\b", re.I),
}

CONTRIBUTION_KEYWORDS = ("contribute", "contribution", "propose", "introduce", "develop", "present", "novel")
LIMITATION_KEYWORDS = ("limitation", "constraint", "weakness", "drawback", "however", "only")
FUTURE_WORK_KEYWORDS = ("future work", "future research", "future direction", "further research", "remains open")

STATEMENT_KEYWORDS = {
    "problem": ("problem", "challenge", "issue", "addresses", "tackles"),
    "novelty": ("novel", "new", "first", "propose", "introduce", "original"),
    "approach": ("method", "approach", "technique", "algorithm", "framework"),
}

TECHNIQUES = (
    "neural network", "deep learning", "machine learning", "reinforcement learning",
    "regression", "classification", "clustering", "optimization", "transformer",
    "simulation", "survey", "case study",
)
METRICS = (
    "accuracy", "precision", "recall", "f1", "auc", "rmse", "mae", "mse",
    "bleu", "perplexity", "efficiency", "effectiveness",
)
_DATASET_RE = re.compile(r"\b([A-Z][A-Za-z0-9\-]+)\s+(?:dataset|corpus|benchmark)\b")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")

PRIORITIES = ("high", "medium", "low")


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_RE.split(text or "") if s.strip()]


def detect_sections(text: str) -> List[str]:
    return [name for name, pattern in SECTION_PATTERNS.items() if pattern.search(text or "")]


def _matching_sentences(text: str, keywords: Iterable[str]) -> List[str]:
    keywords = tuple(keywords)
    return [s for s in split_sentences(text) if any(kw in s.lower() for kw in keywords)]


def first_statement(text: str, keywords: Iterable[str]) -> Optional[str]:
    """First sentence containing a word that starts with one of the keywords."""
    pattern = re.compile(r"\b(?:" + "|".join(re.escape(kw) for kw in keywords) + ")", re.I)
    for sentence in split_sentences(text):
        if pattern.search(sentence):
            return sentence
    return None


def extract_statements(item: InputItem) -> Dict[str, Optional[str]]:
    """
    Problem, novelty and approach sentences of an item.

    The abstract is searched first, then the content; a statement with no
    matching sentence is None.
    """
    return {
        field: first_statement(item.abstract, keywords) or first_statement(item.content, keywords)
        for field, keywords in STATEMENT_KEYWORDS.items()
    }


def detect_methodology(item: InputItem) -> Methodology:
    text = f"{item.abstract} {item.content}"
    lowered = text.lower()
    datasets = []
    for match in _DATASET_RE.finditer(text):
        if match.group(1) not in datasets:
            datasets.append(match.group(1))

    indicators = [
        "code" in lowered and ("available" in lowered or "github" in lowered),
        "dataset" in lowered and "available" in lowered,
        "detail" in lowered or "implement" in lowered,
        "open source" in lowered or "open-source" in lowered,
    ]
    score = sum(indicators) / len(indicators)
    reproducibility = "high" if score > 0.5 else "medium" if score > 0.25 else "low"

    return Methodology(
        techniques=[t for t in TECHNIQUES if t in lowered],
        datasets=datasets,
        metrics=[m for m in METRICS if re.search(rf"\b{re.escape(m)}\b", lowered)],
        reproducibility=reproducibility,
    )


def heuristic_findings(item: InputItem) -> Tuple[List[Finding], List[Finding], List[Finding]]:
    """Contributions, limitations and gaps derived from the item text alone."""
    abstract = item.abstract or ""
    full_text = f"{abstract} {item.content}"
    lowered_abstract = abstract.lower()

    contributions = [
        Finding(text=s, kind="extracted")
        for s in _matching_sentences(abstract, CONTRIBUTION_KEYWORDS)
    ]

    limitations = [
        Finding(text=s, kind="stated")
        for s in _matching_sentences(item.content, LIMITATION_KEYWORDS)[:5]
    ]
    if "validation" not in lowered_abstract and "evaluat" not in lowered_abstract:
        limitations.append(Finding(text="Limited validation or evaluation reported", kind="methodological"))
    if "small dataset" in lowered_abstract or "limited data" in lowered_abstract:
        limitations.append(Finding(text="Dataset size limitations", kind="data", priority="high"))

    gaps = [
        Finding(text=s, kind="stated_future_work", priority="high")
        for s in _matching_sentences(full_text, FUTURE_WORK_KEYWORDS)
    ]
    gaps.extend(
        Finding(text=f"Address limitation: {lim.text}", kind="limitation_derived", priority="medium")
        for lim in limitations if lim.kind == "stated"
    )
    if "comparison" not in lowered_abstract and "baseline" not in lowered_abstract:
        gaps.append(Finding(
            text="Lack of comparative evaluation with baselines",
            kind="methodological",
            priority="medium",
        ))
    return contributions, limitations, gaps


def _coerce_findings(raw: Any, default_kind: str) -> List[Finding]:
    if not isinstance(raw, list):
        return []
    findings = []
    for entry in raw:
        if isinstance(entry, str):
            text, kind, priority = entry, default_kind, "medium"
        elif isinstance(entry, dict):
            text = entry.get("text") or entry.get("description") or ""
            kind = entry.get("kind") or entry.get("type") or default_kind
            priority = str(entry.get("priority", "medium")).lower()
        else:
            continue
        text = str(text).strip()
        if not text:
            continue
        findings.append(Finding(
            text=text,
            kind=str(kind),
            priority=priority if priority in PRIORITIES else "medium",
        ))
    return findings


def _dedupe_findings(findings: Iterable[Finding]) -> List[Finding]:
    seen = set()
    unique = []
    for finding in findings:
        key = canonicalize_gap(finding.text)
        if key and key not in seen:
            seen.add(key)
            unique.append(finding)
    return unique


def _merge_list(values: Iterable[Any]) -> List[str]:
    merged: List[str] = []
    for value in values:
        value = str(value).strip()
        if value and value not in merged:
            merged.append(value)
    return merged


class MicroWorker(TierWorker[MicroInput, MicroOutput]):
    """Analyzes one input item."""

    tier = AgentTier.MICRO

    def __init__(
        self,
        call_options: Optional[CallOptions] = None,
        call_mode: Literal["fallback", "ensemble"] = "fallback",
        max_content_chars: int = 4000,
        fingerprint_size: int = 50
    ):
        super().__init__(call_options)
        self.call_mode = call_mode
        self.max_content_chars = max_content_chars
        self.fingerprint_size = fingerprint_size

    async def _call_model(
        self,
        prompt: str,
        call_layer: ModelCallLayer,
        confidence_engine: ConfidenceEngine
    ) -> Tuple[List[str], float, Optional[float], Dict[str, Any]]:
        """Returns reply texts, provider confidence, agreement and provenance."""
        options = self.options_for_call(system_prompt=self.call_options.system_prompt or SYSTEM_PROMPT)
        if self.call_mode == "ensemble":
            result = await call_layer.call_ensemble(prompt, options)
            texts = result.output if isinstance(result.output, list) else [result.output]
            provenance = {
                "provider": result.selected.provider.value if result.selected else "ensemble",
                "model": result.selected.model if result.selected else None,
                "providers_used": result.metrics.providers_used,
            }
            return (
                texts,
                confidence_engine.ensemble_confidence(result).final_confidence,
                result.metrics.agreement,
                provenance,
            )

        response = await call_layer.call_with_fallback(prompt, options)
        provenance = {"provider": response.provider.value, "model": response.model}
        return [response.output], response.confidence, None, provenance

    async def run(
        self,
        input: MicroInput,
        call_layer: ModelCallLayer,
        confidence_engine: ConfidenceEngine
    ) -> WorkerResult[MicroOutput]:
        item = input.item
        prompt = render_micro_prompt(
            item=item,
            domain=input.domain,
            content=(item.content or "")[:self.max_content_chars],
            context_hints=input.context_hints,
        )
        texts, provider_confidence, agreement, provenance = await self._call_model(
            prompt, call_layer, confidence_engine
        )

        parsed = [data for data in (extract_json_object(t) for t in texts) if data]
        detected = detect_methodology(item)
        statements = extract_statements(item)
        if parsed:
            contributions = _dedupe_findings(
                f for data in parsed for f in _coerce_findings(data.get("contributions"), "contribution")
            )
            limitations = _dedupe_findings(
                f for data in parsed for f in _coerce_findings(data.get("limitations"), "stated")
            )
            gaps = _dedupe_findings(
                f for data in parsed for f in _coerce_findings(data.get("gaps"), "model")
            )
            methods = [data.get("methodology") or {} for data in parsed]
            methods = [m for m in methods if isinstance(m, dict)]
            methodology = Methodology(
                techniques=_merge_list([t for m in methods for t in m.get("techniques", [])] + detected.techniques),
                datasets=_merge_list([d for m in methods for d in m.get("datasets", [])] + detected.datasets),
                metrics=_merge_list([x for m in methods for x in m.get("metrics", [])] + detected.metrics),
                reproducibility=detected.reproducibility,
            )
            for field in statements:
                stated = [str(data[field]).strip() for data in parsed if isinstance(data.get(field), str)]
                statements[field] = next((s for s in stated if s), statements[field])
        else:
            logger.info(f"Unstructured reply for item {item.id}; using text heuristics")
            contributions, limitations, gaps = heuristic_findings(item)
            methodology = detected

        fingerprint_text = " ".join([item.title, item.abstract] + [c.text for c in contributions])
        fingerprint = sorted(extract_keywords(fingerprint_text, limit=self.fingerprint_size))

        output = MicroOutput(
            item_id=item.id,
            title=item.title,
            year=item.year,
            citations=item.citations,
            problem=statements["problem"],
            novelty=statements["novelty"],
            approach=statements["approach"],
            contributions=contributions,
            limitations=limitations,
            gaps=gaps,
            methodology=methodology,
            sections=detect_sections(item.text),
            fingerprint=fingerprint,
            provider=provenance.get("provider"),
            model=provenance.get("model"),
            structured=bool(parsed),
        )
        confidence = confidence_engine.micro_confidence(provider_confidence, output, agreement)
        return WorkerResult(
            output=output,
            confidence=confidence.final_confidence,
            confidence_level=confidence.confidence_level,
            metadata=provenance,
        )
