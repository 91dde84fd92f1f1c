"""
Bounded job queue for one tier of one run.

Jobs are submitted explicitly and collected with a barrier. A job task
never raises: timeouts, failures and cancellation all resolve to a
``JobOutcome`` so one bad job cannot take its siblings down.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from pydantic import BaseModel, ConfigDict

from .errors import JobTimeoutError

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


class JobStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class JobOutcome(BaseModel):
    """Terminal state of one job."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    job_id: str
    status: JobStatus
    result: Any = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.COMPLETED

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__


class JobQueue:
    """Runs jobs under a semaphore with a per-job timeout."""

    def __init__(self, name: str, concurrency: int):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.name = name
        self.concurrency = concurrency
        self._semaphore = asyncio.Semaphore(concurrency)
        self._tasks: Set[asyncio.Task] = set()
        self._job_ids: Dict[asyncio.Task, str] = {}
        self._counts = {
            "waiting": 0,
            "active": 0,
            "completed": 0,
            "failed": 0,
            "timed_out": 0,
            "cancelled": 0,
        }

    async def _run(self, job_id: str, factory: JobFactory, timeout_s: Optional[float]) -> JobOutcome:
        self._counts["waiting"] += 1
        acquired = False
        try:
            async with self._semaphore:
                self._counts["waiting"] -= 1
                self._counts["active"] += 1
                acquired = True
                try:
                    result = await asyncio.wait_for(factory(), timeout=timeout_s)
                    outcome = JobOutcome(job_id=job_id, status=JobStatus.COMPLETED, result=result)
                except asyncio.TimeoutError:
                    logger.warning(f"[queue={self.name}] Job {job_id} timed out after {timeout_s}s")
                    outcome = JobOutcome(
                        job_id=job_id,
                        status=JobStatus.TIMED_OUT,
                        error=JobTimeoutError(job_id, timeout_s),
                    )
                except Exception as e:
                    logger.warning(f"[queue={self.name}] Job {job_id} failed: {type(e).__name__}: {e}")
                    outcome = JobOutcome(job_id=job_id, status=JobStatus.FAILED, error=e)
                finally:
                    self._counts["active"] -= 1
        except asyncio.CancelledError as e:
            if not acquired:
                self._counts["waiting"] -= 1
            outcome = JobOutcome(job_id=job_id, status=JobStatus.CANCELLED, error=e)

        self._counts[outcome.status.value] += 1
        return outcome

    def submit(self, job_id: str, factory: JobFactory, timeout_s: Optional[float] = None) -> asyncio.Task:
        """
        Schedule a job.

        Args:
            job_id: Identifier used to order outcomes
            factory: Zero-argument callable returning the job coroutine
            timeout_s: Time budget counted from when the job gets a slot

        Returns:
            Task resolving to a JobOutcome
        """
        task = asyncio.create_task(self._run(job_id, factory, timeout_s), name=f"{self.name}:{job_id}")
        self._tasks.add(task)
        self._job_ids[task] = job_id
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._job_ids.pop(task, None)

    async def join(self, tasks: Iterable[asyncio.Task]) -> List[JobOutcome]:
        """Wait until every task is terminal; outcomes are sorted by job id."""
        tasks = list(tasks)
        job_ids = [self._job_ids.get(task, task.get_name()) for task in tasks]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        outcomes = []
        for job_id, result in zip(job_ids, results):
            if isinstance(result, JobOutcome):
                outcomes.append(result)
                continue
            # Cancelled before the job body started running
            self._counts["cancelled"] += 1
            outcomes.append(JobOutcome(
                job_id=job_id,
                status=JobStatus.CANCELLED,
                error=result,
            ))
        return sorted(outcomes, key=lambda o: o.job_id)

    def cancel_all(self) -> int:
        """Cancel every unfinished job; returns how many were signalled."""
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        return len(pending)

    def stats(self) -> Dict[str, int]:
        return dict(self._counts)
