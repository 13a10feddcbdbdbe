"""
Plan-Graph Engine

Turns artifact requests into executable plan graphs and walks them: skill
steps, pluggable subagents, pausable approvals and a durable workspace log.
"""

import importlib.metadata

__author__ = "George Loudon"
__email__ = "george@example.com"
__version__ = importlib.metadata.version("plan-graph-engine")

from .controller import GraphController, create_controller
from .errors import EngineError
from .models import (
    Artifact,
    ArtifactIntent,
    PlanGraph,
    PlanNode,
    ProgressEvent,
    RunRequest,
    RunStatus,
    RunSummary,
)
from .planner import Planner
from .subagents import SubagentRegistry
from .workspace import FilesystemWorkspaceStore

__all__ = [
    "Artifact",
    "ArtifactIntent",
    "EngineError",
    "FilesystemWorkspaceStore",
    "GraphController",
    "Planner",
    "PlanGraph",
    "PlanNode",
    "ProgressEvent",
    "RunRequest",
    "RunStatus",
    "RunSummary",
    "SubagentRegistry",
    "create_controller",
]
