"""Text similarity helpers shared by the call layer, tier workers and convergence detector."""

import re
import string
import unicodedata
from collections import Counter
from typing import Iterable, List, Sequence, Set

from ..config.constants import STOPWORDS

_PUNCT_TABLE = str.maketrans({ch: " " for ch in string.punctuation})
_WORD_RE = re.compile(r"[a-z][a-z\-]+")


def tokenize(text: str) -> Set[str]:
    """Lowercased, punctuation-stripped token set."""
    if not text:
        return set()
    return set(text.lower().translate(_PUNCT_TABLE).split())


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    """Jaccard similarity of two token collections; two empty sets are identical."""
    set_a, set_b = set(a), set(b)
    if not set_a and not set_b:
        return 1.0
    union = set_a | set_b
    return len(set_a & set_b) / len(union)


def similarity_matrix(texts: Sequence[str]) -> List[List[float]]:
    """Symmetric token-set Jaccard matrix with 1.0 on the diagonal."""
    tokens = [tokenize(t) for t in texts]
    n = len(tokens)
    matrix = [[1.0] * n for _ in range(n)]
    for i in range(n):
        for j in range(i + 1, n):
            sim = jaccard(tokens[i], tokens[j])
            matrix[i][j] = sim
            matrix[j][i] = sim
    return matrix


def mean_off_diagonal(matrix: Sequence[Sequence[float]]) -> float:
    """Mean of the upper triangle, 0.0 when there are no pairs."""
    n = len(matrix)
    pairs = [matrix[i][j] for i in range(n) for j in range(i + 1, n)]
    if not pairs:
        return 0.0
    return sum(pairs) / len(pairs)


def canonicalize_gap(text: str) -> str:
    """
    Canonical identity of a gap description.

    NFKC-normalized, lowercased, punctuation removed and whitespace
    collapsed. Two gaps are the same gap iff their canonical keys match.
    """
    normalized = unicodedata.normalize("NFKC", text or "").lower()
    normalized = normalized.translate(_PUNCT_TABLE)
    return " ".join(normalized.split())


def extract_keywords(text: str, min_length: int = 5, limit: int = 50) -> List[str]:
    """Most frequent content words (length >= min_length), ties broken alphabetically."""
    words = [
        w.strip("-") for w in _WORD_RE.findall((text or "").lower())
        if len(w.strip("-")) >= min_length and w.strip("-") not in STOPWORDS
    ]
    counts = Counter(words)
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [word for word, _ in ranked[:limit]]


def word_count(text: str) -> int:
    return len((text or "").split())
