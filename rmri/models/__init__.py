from .analysis import (
    ClusterSummary,
    ConvergenceVerdict,
    Finding,
    Frontier,
    GapScores,
    InputItem,
    MesoInput,
    MesoOutput,
    MetaInput,
    MetaOutput,
    Methodology,
    MicroInput,
    MicroOutput,
    Pattern,
    RankedGap,
    ResearchDirection,
    ThematicGap,
)
from .generation import (
    AgentTier,
    AggregationStrategy,
    CallOptions,
    EnsembleMetrics,
    EnsembleResult,
    ProviderAttempt,
    ProviderResponse,
    ProviderType,
    UsageMetadata,
)
from .records import (
    AgentRecord,
    AgentStatus,
    LogEntry,
    LogLevel,
    ResultRecord,
    ResultType,
    RunRecord,
    RunStatus,
)

__all__ = [
    "AgentRecord",
    "AgentStatus",
    "AgentTier",
    "AggregationStrategy",
    "CallOptions",
    "ClusterSummary",
    "ConvergenceVerdict",
    "EnsembleMetrics",
    "EnsembleResult",
    "Finding",
    "Frontier",
    "GapScores",
    "InputItem",
    "LogEntry",
    "LogLevel",
    "MesoInput",
    "MesoOutput",
    "MetaInput",
    "MetaOutput",
    "Methodology",
    "MicroInput",
    "MicroOutput",
    "Pattern",
    "ProviderAttempt",
    "ProviderResponse",
    "ProviderType",
    "RankedGap",
    "ResearchDirection",
    "ResultRecord",
    "ResultType",
    "RunRecord",
    "RunStatus",
    "ThematicGap",
    "UsageMetadata",
]
