"""FastAPI HTTP endpoints for polling and controlling runs.

Starting runs is left to the host application; these endpoints expose
status, cancellation, queue statistics and provider health.
"""

from typing import Optional

try:
    from fastapi import APIRouter, HTTPException
except ImportError:
    raise ImportError(
        "FastAPI is required for HTTP endpoints. "
        "Please install with: pip install rmri-orchestrator"
    )

from ..models.generation import ProviderType
from ..orchestration.errors import RunNotActiveError, RunNotFoundError
from ..orchestration.orchestrator import RMRIOrchestrator


def create_router(orchestrator: RMRIOrchestrator) -> APIRouter:
    """Build a router bound to ``orchestrator``."""
    router = APIRouter()

    @router.get("/runs/{run_id}/status")
    async def run_status(run_id: str):
        """Progress, agent counts and recent log entries of a run."""
        try:
            report = await orchestrator.get_status(run_id)
        except RunNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return report.model_dump(mode="json")

    @router.post("/runs/{run_id}/cancel")
    async def cancel_run(run_id: str):
        try:
            run = await orchestrator.cancel_orchestration(run_id)
        except RunNotActiveError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return {"run_id": run.id, "status": run.status.value, "iteration": run.current_iteration}

    @router.get("/health")
    async def health():
        """Queue and provider health."""
        return orchestrator.health_check()

    @router.get("/queues")
    async def queues():
        return orchestrator.get_queue_stats()

    @router.get("/providers/health")
    async def providers_health():
        return {"providers": orchestrator.call_layer.get_provider_status()}

    @router.post("/providers/health/reset")
    async def reset_provider_health(provider: Optional[str] = None):
        """Operator reset of one provider's health, or of every provider."""
        target = None
        if provider is not None:
            try:
                target = ProviderType(provider)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Unknown provider: {provider}")
        orchestrator.call_layer.health.reset(target)
        return {"reset": provider or "all", "providers": orchestrator.call_layer.health.snapshot()}

    return router
