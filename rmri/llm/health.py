"""
Process-wide provider health tracking.

The call layer records the outcome of every provider attempt here and asks
the registry to order providers, moving degraded ones to the back.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..config.constants import DEGRADED_FAILURE_THRESHOLD
from ..models.generation import ProviderType

logger = logging.getLogger(__name__)


@dataclass
class ProviderHealth:
    """Health statistics for one provider."""
    provider: ProviderType
    consecutive_failures: int = 0
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    last_error: Optional[str] = None
    total_calls: int = 0
    total_failures: int = 0
    degraded_threshold: int = DEGRADED_FAILURE_THRESHOLD

    def clear(self) -> None:
        self.consecutive_failures = 0
        self.last_success = None
        self.last_failure = None
        self.last_error = None
        self.total_calls = 0
        self.total_failures = 0

    @property
    def is_degraded(self) -> bool:
        return self.consecutive_failures > self.degraded_threshold

    @property
    def status(self) -> str:
        if self.is_degraded:
            return "degraded"
        if self.last_success is not None:
            return "healthy"
        return "unknown"

    def to_dict(self) -> Dict[str, object]:
        return {
            "provider": self.provider.value,
            "status": self.status,
            "consecutive_failures": self.consecutive_failures,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_failure": self.last_failure.isoformat() if self.last_failure else None,
            "last_error": self.last_error,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
        }


class ProviderHealthRegistry:
    """
    Registry of provider health records.

    Each provider key has its own lock, so concurrent updates for the same
    provider are serialized whether they come from tasks or threads.
    """

    def __init__(self, degraded_threshold: int = DEGRADED_FAILURE_THRESHOLD):
        self.degraded_threshold = degraded_threshold
        self._records: Dict[ProviderType, ProviderHealth] = {}
        self._locks: Dict[ProviderType, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _entry(self, provider: ProviderType):
        with self._registry_lock:
            if provider not in self._records:
                self._records[provider] = ProviderHealth(
                    provider=provider,
                    degraded_threshold=self.degraded_threshold
                )
                self._locks[provider] = threading.Lock()
            return self._records[provider], self._locks[provider]

    def record_success(self, provider: ProviderType) -> None:
        record, lock = self._entry(provider)
        with lock:
            was_degraded = record.is_degraded
            record.consecutive_failures = 0
            record.last_success = datetime.now()
            record.total_calls += 1
        if was_degraded:
            logger.info(f"Provider {provider.value} recovered")

    def record_failure(self, provider: ProviderType, error: Optional[BaseException] = None) -> None:
        record, lock = self._entry(provider)
        with lock:
            record.consecutive_failures += 1
            record.total_calls += 1
            record.total_failures += 1
            record.last_failure = datetime.now()
            record.last_error = str(error) if error is not None else None
            became_degraded = record.consecutive_failures == self.degraded_threshold + 1
        if became_degraded:
            logger.warning(
                f"Provider {provider.value} degraded after {record.consecutive_failures} consecutive failures",
                extra={"provider": provider.value, "failures": record.consecutive_failures}
            )

    def get(self, provider: ProviderType) -> ProviderHealth:
        record, lock = self._entry(provider)
        with lock:
            return ProviderHealth(**record.__dict__)

    def is_degraded(self, provider: ProviderType) -> bool:
        return self.get(provider).is_degraded

    def order(self, providers: Iterable[ProviderType]) -> List[ProviderType]:
        """Healthy providers first, degraded last; relative order is kept within each group."""
        providers = list(providers)
        healthy = [p for p in providers if not self.is_degraded(p)]
        degraded = [p for p in providers if self.is_degraded(p)]
        return healthy + degraded

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        with self._registry_lock:
            providers = list(self._records)
        return {p.value: self.get(p).to_dict() for p in providers}

    def reset(self, provider: Optional[ProviderType] = None) -> None:
        """Operator reset of one provider, or of every provider when none is given."""
        with self._registry_lock:
            targets = [provider] if provider is not None else list(self._records)
            entries = [(self._records[t], self._locks[t]) for t in targets if t in self._records]
        for record, lock in entries:
            with lock:
                record.clear()
        logger.info(f"Provider health reset: {', '.join(t.value for t in targets) or 'none'}")


_global_registry: Optional[ProviderHealthRegistry] = None


def get_global_health_registry() -> ProviderHealthRegistry:
    """Get or create the process-wide health registry."""
    global _global_registry
    if _global_registry is None:
        _global_registry = ProviderHealthRegistry()
    return _global_registry
