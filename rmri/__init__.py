"""
RMRI - Recursive Multi-agent Research Intelligence.

Runs iterative Micro-Meso-Meta analyses over a corpus of research items:
- Micro agents analyze one item each, in parallel
- A Meso agent clusters the Micro outputs into themes
- A Meta agent ranks research gaps across themes and decides convergence

Features:
- Multi-provider model calls with fallback and ensemble aggregation
- Provider health tracking
- Multi-signal confidence scoring
- Versioned context store and run records
- Cancellation, per-job timeouts and status polling
"""

__version__ = "0.1.0"

from .confidence import ConfidenceEngine
from .convergence import ConvergenceDetector
from .llm import ModelCallLayer, ProviderHealthRegistry
from .models.analysis import InputItem, MetaOutput, RankedGap
from .models.generation import AgentTier, CallOptions, ProviderType
from .models.records import RunStatus
from .orchestration import (
    OrchestrationConfig,
    RMRIOrchestrator,
    RunOutcome,
    RunStatusReport,
)

__all__ = [
    # Orchestration
    "RMRIOrchestrator",
    "OrchestrationConfig",
    "RunOutcome",
    "RunStatusReport",
    "RunStatus",

    # Model calls
    "ModelCallLayer",
    "ProviderHealthRegistry",
    "CallOptions",
    "ProviderType",
    "AgentTier",

    # Analysis
    "ConfidenceEngine",
    "ConvergenceDetector",
    "InputItem",
    "MetaOutput",
    "RankedGap",
]
