"""Configuration options for orchestrator behavior."""

import os
from typing import Any, Dict, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from ..config.constants import (
    DEFAULT_CONVERGENCE_THRESHOLD,
    DEFAULT_INTER_ITERATION_DELAY_S,
    DEFAULT_JOB_TIMEOUT_S,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_MICRO_CONCURRENCY,
    DEFAULT_MIN_MICRO_SUCCESS_FRACTION,
    DEFAULT_TOP_K,
)
from ..models.generation import AggregationStrategy

ENV_PREFIX = "RMRI_"


class OrchestrationConfig(BaseModel):
    """Options for one orchestration run."""

    # Iteration control
    max_iterations: int = Field(
        default=DEFAULT_MAX_ITERATIONS,
        ge=1,
        le=20,
        description="Upper bound on Micro-Meso-Meta iterations"
    )

    convergence_threshold: float = Field(
        default=DEFAULT_CONVERGENCE_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Top-K Jaccard similarity at which the run converges"
    )

    top_k: int = Field(
        default=DEFAULT_TOP_K,
        ge=1,
        description="Number of ranked gaps compared between iterations"
    )

    # Concurrency control
    micro_concurrency: int = Field(
        default=DEFAULT_MICRO_CONCURRENCY,
        ge=1,
        le=100,
        description="Maximum Micro jobs running in parallel"
    )

    meso_concurrency: int = Field(default=1, ge=1, description="Maximum Meso jobs running in parallel")

    meta_concurrency: int = Field(default=1, ge=1, description="Maximum Meta jobs running in parallel")

    # Timeouts
    job_timeout_s: float = Field(
        default=DEFAULT_JOB_TIMEOUT_S,
        gt=0,
        description="Time budget of a single job in seconds"
    )

    inter_iteration_delay_s: float = Field(
        default=DEFAULT_INTER_ITERATION_DELAY_S,
        ge=0,
        description="Pause between iterations; cut short by cancellation"
    )

    # Phase policy
    min_micro_success_fraction: float = Field(
        default=DEFAULT_MIN_MICRO_SUCCESS_FRACTION,
        ge=0.0,
        le=1.0,
        description="Fraction of Micro jobs that must succeed for the run to continue"
    )

    # Model calls
    ensemble_min_providers: int = Field(
        default=2,
        ge=1,
        description="Successful providers required by an ensemble call"
    )

    aggregation: AggregationStrategy = Field(
        default="consensus",
        description="How ensemble responses are combined"
    )

    micro_call_mode: Literal["fallback", "ensemble"] = Field(
        default="fallback",
        description="Whether Micro agents use fallback or ensemble calls"
    )

    # Clustering
    cluster_count: Optional[int] = Field(
        default=None,
        ge=1,
        description="Fixed Meso cluster count; heuristic when unset"
    )

    min_cluster_size: int = Field(default=1, ge=1, description="Smaller clusters are merged away")

    domain: Optional[str] = Field(default=None, description="Research domain mentioned in prompts")

    @field_validator("domain")
    def validate_domain(cls, v):
        """Blank domains are treated as unset."""
        if v is not None and not v.strip():
            return None
        return v

    @classmethod
    def from_env(cls, **overrides: Any) -> "OrchestrationConfig":
        """
        Build a config from ``RMRI_*`` environment variables.

        ``RMRI_MAX_ITERATIONS`` sets ``max_iterations`` and so on; explicit
        keyword overrides win over the environment.
        """
        load_dotenv()
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        values.update(overrides)
        return cls(**values)
