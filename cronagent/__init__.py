"""Agent-side task events, shell execution, plan scheduling, stream registry and workflow state."""

__version__ = "0.1.0"

__all__ = [
    "events",
    "executor",
    "plans",
    "registry",
    "scheduler",
    "workflow_state",
    "workflow_store",
]