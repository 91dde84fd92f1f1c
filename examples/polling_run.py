"""
Example: Polling an RMRI run

Starts an orchestration over a handful of abstracts, polls its status
until it finishes and prints the top ranked gaps. Needs at least one
provider key (OPENAI_API_KEY, ANTHROPIC_API_KEY, CEREBRAS_API_KEY or
HUGGINGFACE_API_KEY) in the environment or a .env file.
"""

import asyncio

from rmri import RMRIOrchestrator, RunStatus

ITEMS = [
    {
        "id": "gnn-molecules",
        "title": "Graph neural networks for molecular property prediction",
        "abstract": "We benchmark message passing networks on small-molecule datasets "
                    "and find that performance degrades for large molecules.",
        "year": 2021,
    },
    {
        "id": "protein-lm",
        "title": "Protein language models for structure prediction",
        "abstract": "Transformer models trained on protein sequences predict contact maps, "
                    "but evaluation on orphan proteins remains limited.",
        "year": 2022,
    },
    {
        "id": "climate-diffusion",
        "title": "Diffusion models for climate downscaling",
        "abstract": "We downscale reanalysis data with a diffusion model; uncertainty "
                    "for extreme events is not quantified.",
        "year": 2023,
    },
]

TERMINAL = {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED}


async def main():
    orchestrator = RMRIOrchestrator()
    started = await orchestrator.start_orchestration(
        "example-run",
        ITEMS,
        query="Which open problems recur across these fields?",
        config={"max_iterations": 3, "inter_iteration_delay_s": 1},
    )
    print(f"Started {started.run_id} over {started.total_items} items\n")

    while True:
        report = await orchestrator.get_status(started.run_id)
        print(f"[{report.status.value}] iteration {report.current_iteration}, {report.progress}% agents done")
        if report.status in TERMINAL:
            break
        await asyncio.sleep(2)

    outcome = await orchestrator.wait_for_completion(started.run_id)
    if outcome.final_report is None:
        print(f"\nRun ended without a report: {outcome.error_message}")
        return

    summary = outcome.final_report["summary"]
    print(f"\nStopped after {summary['total_iterations']} iterations ({summary['convergence_reason']})")
    print("Top gaps:")
    for gap in outcome.final_report["top_gaps"][:5]:
        print(f"  {gap['rank']}. {gap['gap']} ({gap['total_score']:.2f})")


if __name__ == "__main__":
    asyncio.run(main())
