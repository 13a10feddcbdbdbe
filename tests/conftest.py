"""Test configuration and fixtures."""

from datetime import datetime, timezone
from typing import Callable, List, Optional

import pytest

from plan_graph_engine.config import Settings, resolve_run_settings
from plan_graph_engine.controller import GraphController, InMemoryRunStateStore
from plan_graph_engine.models import (
    Artifact,
    PlanGraph,
    PlanNode,
    ProgressEvent,
    RunContext,
    RunRequest,
    SkillTask,
    SubagentTask,
    WorkspaceHandle,
)
from plan_graph_engine.planner import IntentResolver, KeywordIntentClassifier, Planner
from plan_graph_engine.skills import PrdSkillRunner
from plan_graph_engine.subagents import SubagentRegistry, default_registry
from plan_graph_engine.verification import PrdVerifier
from plan_graph_engine.workspace import FilesystemWorkspaceStore

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

PRD_SECTIONS_FIXTURE = {
    "targetUsers": ["Busy parents: need to keep family routines on track"],
    "solution": {"solutionOverview": "A shared habit tracker for households."},
    "keyFeatures": ["Shared reminders", "Streak tracking"],
    "successMetrics": [{"metric": "Weekly active families", "target": "500", "timeline": "Q3"}],
    "constraints": ["Two engineers for six months"],
}


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Engine settings isolated to a temporary workspace."""
    return Settings(
        workspace_root=str(tmp_path / "runs"),
        run_state_url="memory://",
        openrouter_api_key=None,
        skills_model=None,
    )


@pytest.fixture
def workspace(tmp_path) -> FilesystemWorkspaceStore:
    return FilesystemWorkspaceStore(tmp_path / "runs", clock=lambda: FIXED_NOW)


@pytest.fixture
def registry() -> SubagentRegistry:
    return default_registry()


@pytest.fixture
def planner(registry) -> Planner:
    return Planner(
        IntentResolver(KeywordIntentClassifier(), registry),
        registry=registry,
    )


@pytest.fixture
def run_store() -> InMemoryRunStateStore:
    return InMemoryRunStateStore()


@pytest.fixture
def controller(planner, registry, workspace, run_store, settings) -> GraphController:
    """Controller wired with the built-in skills, subagents and PRD verifier."""
    return GraphController(
        planner=planner,
        skill_runner=PrdSkillRunner(),
        workspace=workspace,
        registry=registry,
        verifiers=[PrdVerifier()],
        run_store=run_store,
        settings=settings,
    )


@pytest.fixture
def make_run_context(settings) -> Callable[..., RunContext]:
    """Factory for RunContexts used by planner and skill tests."""

    def factory(
        request: RunRequest,
        run_id: str = "run-test",
        existing: Optional[List[str]] = None,
    ) -> RunContext:
        context = RunContext(
            run_id=run_id,
            request=request,
            settings=resolve_run_settings(settings),
            workspace=WorkspaceHandle(
                run_id=run_id,
                root=f"{settings.workspace_root}/{run_id}",
                artifact_kind=request.artifact_kind,
                temp_dir=f"{settings.workspace_root}/{run_id}/tmp",
            ),
            started_at=FIXED_NOW,
        )
        context.state.existing_artifacts = list(existing or [])
        return context

    return factory


@pytest.fixture
def progress_log() -> List[ProgressEvent]:
    return []


@pytest.fixture
def prd_artifact() -> Artifact:
    return Artifact(
        id="artifact-prd-1",
        kind="prd",
        label="Product Requirements Document",
        data={"sections": dict(PRD_SECTIONS_FIXTURE)},
        metadata={"confidence": 0.8},
    )


def skill_node(node_id: str, skill_id: str, depends_on: Optional[List[str]] = None) -> PlanNode:
    return PlanNode(
        id=node_id,
        label=f"Run {skill_id}",
        task=SkillTask(skill_id=skill_id),
        depends_on=depends_on or [],
    )


def subagent_node(
    node_id: str,
    subagent_id: str,
    depends_on: Optional[List[str]] = None,
    source_kind: Optional[str] = None,
    promote: bool = False,
) -> PlanNode:
    return PlanNode(
        id=node_id,
        label=f"Run {subagent_id}",
        task=SubagentTask(subagent_id=subagent_id),
        depends_on=depends_on or [],
        metadata={
            "source": {
                "artifact_kind": source_kind,
                "from_node": (depends_on or [None])[0],
            },
            "promote_result": promote,
        },
    )


def make_plan(artifact_kind: str, nodes: List[PlanNode], entry_id: Optional[str] = None) -> PlanGraph:
    return PlanGraph(
        id="plan-test",
        artifact_kind=artifact_kind,
        entry_id=entry_id or nodes[0].id,
        version="3.0.0",
        nodes={node.id: node for node in nodes},
    )
