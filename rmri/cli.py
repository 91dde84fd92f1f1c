"""CLI entry point for RMRI."""

import argparse
import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from .llm.call_layer import ModelCallLayer
from .orchestration.options import OrchestrationConfig
from .orchestration.orchestrator import RMRIOrchestrator


def load_items(path: str) -> List[Dict[str, Any]]:
    """Read items from a JSON file holding a list or an object with an ``items`` list."""
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    if isinstance(data, dict):
        data = data.get("items", [])
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a list of items")
    return data


async def run_analysis(
    path: str,
    query: str = "",
    max_iterations: Optional[int] = None,
    delay: Optional[float] = None,
    mode: Optional[str] = None
) -> int:
    """Run one orchestration to completion and print the final report."""
    overrides: Dict[str, Any] = {}
    if max_iterations is not None:
        overrides["max_iterations"] = max_iterations
    if delay is not None:
        overrides["inter_iteration_delay_s"] = delay
    if mode:
        overrides["micro_call_mode"] = mode

    config = OrchestrationConfig.from_env(**overrides)
    orchestrator = RMRIOrchestrator(config=config)
    run_id = f"run-{uuid.uuid4().hex[:8]}"

    try:
        await orchestrator.start_orchestration(run_id, load_items(path), query=query)
        outcome = await orchestrator.wait_for_completion(run_id)
    except Exception as e:
        print(f"Error: {str(e)}")
        return 1

    print(json.dumps(outcome.model_dump(mode="json"), indent=2))
    return 0 if outcome.status.value == "completed" else 1


def list_providers() -> int:
    """List provider availability and health."""
    layer = ModelCallLayer()

    print("Providers:")
    print("-" * 50)
    for name, status in layer.get_provider_status().items():
        mark = "✓" if status["available"] else "✗"
        print(f"{mark} {name} ({status['health'].get('status', 'unknown')})")
    return 0


def main():
    """Main CLI function."""
    parser = argparse.ArgumentParser(description="RMRI recursive research analysis")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log progress to stderr")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Analyze a JSON file of items")
    run_parser.add_argument("items", help="Path to a JSON list of items")
    run_parser.add_argument("--query", default="", help="Research question for the run")
    run_parser.add_argument("--max-iterations", type=int, help="Iteration ceiling")
    run_parser.add_argument("--delay", type=float, help="Seconds between iterations")
    run_parser.add_argument("--mode", choices=["fallback", "ensemble"], help="Micro call mode")

    subparsers.add_parser("providers", help="List provider availability and health")

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    if args.command == "run":
        return asyncio.run(run_analysis(
            args.items,
            args.query,
            args.max_iterations,
            args.delay,
            args.mode,
        ))
    elif args.command == "providers":
        return list_providers()
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
