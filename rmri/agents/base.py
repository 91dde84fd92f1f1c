"""
Base Tier Worker Interface

A tier worker turns one typed input into one typed output with a
confidence. Workers are pure with respect to the pipeline: they call the
model layer and the confidence engine, never the orchestrator or another
worker, and they do not retry on their own. Any failure surfaces as an
exception which the orchestrator records against the agent.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel

from ..confidence.engine import ConfidenceEngine
from ..llm.call_layer import ModelCallLayer
from ..models.generation import AgentTier, CallOptions

InputT = TypeVar("InputT", bound=BaseModel)
OutputT = TypeVar("OutputT", bound=BaseModel)


@dataclass
class WorkerResult(Generic[OutputT]):
    """Output of a tier worker with its confidence."""
    output: OutputT
    confidence: float
    confidence_level: str = "medium"
    metadata: Dict[str, Any] = field(default_factory=dict)


class TierWorker(ABC, Generic[InputT, OutputT]):
    """Abstract base class for Micro, Meso and Meta workers."""

    tier: AgentTier

    def __init__(self, call_options: Optional[CallOptions] = None):
        self.call_options = call_options or CallOptions()

    def options_for_call(self, **overrides: Any) -> CallOptions:
        """Worker call options tagged with this tier, with per-call overrides applied."""
        update = {"agent_type": self.tier, **overrides}
        return self.call_options.model_copy(update=update)

    @abstractmethod
    async def run(
        self,
        input: InputT,
        call_layer: ModelCallLayer,
        confidence_engine: ConfidenceEngine
    ) -> WorkerResult[OutputT]:
        """
        Execute the worker.

        Args:
            input: Tier-specific input model
            call_layer: Model call layer used for every language-model call
            confidence_engine: Engine used to score the output

        Returns:
            WorkerResult wrapping the tier output

        Raises:
            Exception: Any failure; the orchestrator marks the agent failed
        """
        pass
