"""HTTP status surface for the orchestrator."""
