"""
Plan graph records and graph utilities.

A PlanGraph is a DAG of PlanNodes. Node status is informational only; run
progress lives in the controller's execution context.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..errors import PlanConstructionError
from .enums import NodeKind, NodeStatus
from .primitives import utc_now

CYCLE_ERROR_MESSAGE = "Plan graph contains circular or unsatisfied dependencies"


class SkillTask(BaseModel):
    """Single-shot transformation executed by the skill runner."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["skill"] = "skill"
    skill_id: str = Field(..., min_length=1)
    section: Optional[str] = None


class SubagentTask(BaseModel):
    """Run a registered subagent to produce a new artifact kind."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["subagent"] = "subagent"
    subagent_id: str = Field(..., min_length=1)


class SubagentSource(BaseModel):
    """Where a subagent node reads its input artifact from."""

    artifact_kind: Optional[str] = None
    from_node: Optional[str] = None


class PlanNode(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)
    label: str
    task: Union[SkillTask, SubagentTask] = Field(..., discriminator="kind")
    status: NodeStatus = NodeStatus.PENDING
    depends_on: List[str] = Field(default_factory=list)
    inputs: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def kind(self) -> NodeKind:
        return NodeKind(self.task.kind)

    @property
    def skill_id(self) -> Optional[str]:
        if isinstance(self.task, SkillTask):
            return self.task.skill_id
        return None

    @property
    def subagent_id(self) -> Optional[str]:
        if isinstance(self.task, SubagentTask):
            return self.task.subagent_id
        return None

    @property
    def source(self) -> SubagentSource:
        raw = self.metadata.get("source") or {}
        if isinstance(raw, SubagentSource):
            return raw
        return SubagentSource.model_validate(raw)

    @property
    def promote_result(self) -> bool:
        return self.metadata.get("promote_result") is True


class PlanGraph(BaseModel):
    """DAG of steps needed to go from a request to a target artifact."""

    model_config = ConfigDict(extra="forbid")

    id: str
    artifact_kind: str
    entry_id: str
    created_at: datetime = Field(default_factory=utc_now)
    version: str
    nodes: Dict[str, PlanNode]
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def dependents_of(self, node_id: str) -> List[str]:
        """Return ids of every node that transitively depends on node_id."""
        found: List[str] = []
        frontier = [node_id]
        while frontier:
            current = frontier.pop()
            for candidate in self.nodes.values():
                if current in candidate.depends_on and candidate.id not in found:
                    found.append(candidate.id)
                    frontier.append(candidate.id)
        return found


def validate_plan(plan: PlanGraph) -> None:
    """Reject plans with dangling references before anything runs.

    Raises:
        PlanConstructionError: If entry_id or any depends_on id is unknown
    """
    if not plan.nodes:
        raise PlanConstructionError(f"Plan {plan.id} has no nodes")

    if plan.entry_id not in plan.nodes:
        raise PlanConstructionError(
            f"Plan {plan.id} entry node {plan.entry_id!r} does not exist",
            details={"entry_id": plan.entry_id},
        )

    for node in plan.nodes.values():
        missing = [dep for dep in node.depends_on if dep not in plan.nodes]
        if missing:
            raise PlanConstructionError(
                CYCLE_ERROR_MESSAGE,
                details={"node_id": node.id, "missing_dependencies": missing},
            )


def topological_order(plan: PlanGraph) -> List[str]:
    """Compute a dependency-respecting execution order.

    Repeatedly picks nodes whose dependencies are all resolved, keeping node
    insertion order among ready nodes. A pass that resolves nothing means a
    cycle or an unsatisfiable dependency.

    Raises:
        PlanConstructionError: If the graph cannot be fully ordered
    """
    ordered: List[str] = []
    resolved = set()
    pending = list(plan.nodes)

    while pending:
        remaining = []
        for node_id in pending:
            node = plan.nodes[node_id]
            if all(dep in resolved for dep in node.depends_on):
                ordered.append(node_id)
                resolved.add(node_id)
            else:
                remaining.append(node_id)

        if len(remaining) == len(pending):
            raise PlanConstructionError(
                CYCLE_ERROR_MESSAGE, details={"unresolved": remaining}
            )
        pending = remaining

    return ordered
