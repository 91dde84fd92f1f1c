"""
Structured logging utilities.

Every component logs through the standard ``logging`` module with a
``[key=value ...]`` prefix so that provider calls and run events can be
grepped by provider, run or agent.
"""

import logging
import time
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Optional


class StructuredLogger:
    """Logger that prefixes every message with bound key=value fields."""

    def __init__(self, name: str, **bound: Any):
        self.logger = logging.getLogger(name)
        self.bound = bound

    def _format_message(self, message: str, **kwargs) -> str:
        """Format message with structured fields."""
        fields = [f"{key}={value}" for key, value in self.bound.items() if value is not None]
        for key, value in kwargs.items():
            if value is not None:
                fields.append(f"{key}={value}")
        return f"[{' '.join(fields)}] {message}"

    def debug(self, message: str, **kwargs):
        self.logger.debug(self._format_message(message, **kwargs))

    def info(self, message: str, **kwargs):
        self.logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs):
        self.logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, error: Optional[BaseException] = None, **kwargs):
        """Log error message; ``error`` adds its type and text as fields."""
        if error is not None:
            kwargs["error_type"] = type(error).__name__
            kwargs["error_msg"] = str(error)
        self.logger.error(self._format_message(message, **kwargs))


class ProviderLogger(StructuredLogger):
    """Structured logger for provider adapters."""

    def __init__(self, provider_name: str):
        super().__init__(f"rmri.providers.{provider_name}", provider=provider_name)
        self.provider = provider_name

    @contextmanager
    def track_request(self, method: str, model: str, request_id: Optional[str] = None):
        """
        Context manager to track request timing and log key events.

        Args:
            method: The method being called (e.g., "call")
            model: The model being used
            request_id: Optional request ID (generated if not provided)

        Yields:
            Dict with request metadata including request_id and start_time
        """
        if request_id is None:
            request_id = str(uuid.uuid4())[:8]

        start_time = time.time()
        self.debug(f"Starting {method} request", model=model, request_id=request_id)

        metadata = {
            "request_id": request_id,
            "model": model,
            "method": method,
            "start_time": start_time,
        }

        try:
            yield metadata
            duration = time.time() - start_time
            self.info(
                f"Completed {method} request",
                model=model,
                request_id=request_id,
                duration_ms=int(duration * 1000),
            )
        except Exception as e:
            duration = time.time() - start_time
            self.error(
                f"Failed {method} request",
                model=model,
                request_id=request_id,
                duration_ms=int(duration * 1000),
                error=e,
            )
            raise

    def log_usage(self, usage: Dict[str, Any], model: str, request_id: str):
        """Log token usage information."""
        self.info(
            "Token usage",
            model=model,
            request_id=request_id,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
        )


class RunLogger(StructuredLogger):
    """Structured logger bound to one orchestration run."""

    def __init__(self, run_id: str):
        super().__init__("rmri.orchestration.run", run_id=run_id)
        self.run_id = run_id

    def for_agent(self, agent_id: str, tier: str) -> StructuredLogger:
        return StructuredLogger(self.logger.name, run_id=self.run_id, agent=agent_id, tier=tier)
