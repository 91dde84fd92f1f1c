"""In-flight state of one run, owned by the orchestrator."""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..agents.base import TierWorker
from ..models.analysis import InputItem, MetaOutput
from ..models.generation import AgentTier
from ..observability.logging import RunLogger
from .options import OrchestrationConfig
from .queue import JobQueue


@dataclass
class RunState:
    run_id: str
    items: List[InputItem]
    config: OrchestrationConfig
    workers: Dict[AgentTier, TierWorker]
    queues: Dict[AgentTier, JobQueue]
    logger: RunLogger
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None
    iteration: int = 0
    meta_history: Tuple[MetaOutput, ...] = ()
    final_confidence: Optional[float] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    @property
    def latest_meta(self) -> Optional[MetaOutput]:
        return self.meta_history[-1] if self.meta_history else None
