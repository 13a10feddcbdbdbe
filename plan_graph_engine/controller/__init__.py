"""Plan execution: the graph controller, run state machine and resumable-run store."""

from .controller import GraphController, create_controller
from .run_store import (
    InMemoryRunStateStore,
    RunStateStore,
    SqlRunStateStore,
    create_run_state_store,
)
from .state import (
    ALLOWED_TRANSITIONS,
    ExecutionContext,
    ExecutionSnapshot,
    ProgressCallback,
    transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ExecutionContext",
    "ExecutionSnapshot",
    "GraphController",
    "InMemoryRunStateStore",
    "ProgressCallback",
    "RunStateStore",
    "SqlRunStateStore",
    "create_controller",
    "create_run_state_store",
    "transition",
]
