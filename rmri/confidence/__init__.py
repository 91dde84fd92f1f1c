from .engine import ConfidenceEngine
from .models import (
    AggregatedConfidence,
    ComponentScore,
    ConfidenceRange,
    ConfidenceResult,
    ConfidenceSignals,
)

__all__ = [
    "AggregatedConfidence",
    "ComponentScore",
    "ConfidenceEngine",
    "ConfidenceRange",
    "ConfidenceResult",
    "ConfidenceSignals",
]
