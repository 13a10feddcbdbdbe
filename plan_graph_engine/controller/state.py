"""
Run state machine and execution context.

A run moves running -> completed | failed | awaiting-input. awaiting-input is
not terminal: an explicit resume moves it back to running. The execution
context holds everything the controller accumulates while walking a plan; the
resumable subset is captured as an ExecutionSnapshot.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from ..config import RunSettings
from ..errors import InvalidRunTransition
from ..models import (
    Artifact,
    PlanGraph,
    ProgressEvent,
    RunContext,
    RunRequest,
    RunState,
    RunStatus,
    VerificationResult,
    WorkspaceHandle,
)

ALLOWED_TRANSITIONS: Dict[RunStatus, Set[RunStatus]] = {
    RunStatus.RUNNING: {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.AWAITING_INPUT},
    RunStatus.AWAITING_INPUT: {RunStatus.RUNNING, RunStatus.FAILED},
    RunStatus.COMPLETED: set(),
    RunStatus.FAILED: set(),
}


def transition(current: RunStatus, target: RunStatus) -> RunStatus:
    """Return target if the run may move there from current.

    Staying in the same state is allowed and is a no-op.

    Raises:
        InvalidRunTransition: For any move outside ALLOWED_TRANSITIONS
    """
    if current == target or target in ALLOWED_TRANSITIONS[current]:
        return target
    raise InvalidRunTransition(
        f"Run cannot move from {current.value} to {target.value}",
        details={"from": current.value, "to": target.value},
    )


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class ExecutionContext:
    """Controller-internal accumulation for one run."""

    run: RunContext
    plan: PlanGraph
    order: List[str]
    status: RunStatus = RunStatus.RUNNING
    artifact: Optional[Artifact] = None
    skill_results: List[Dict[str, Any]] = field(default_factory=list)
    skill_outputs: Dict[str, Any] = field(default_factory=dict)
    artifacts_by_step: Dict[str, Artifact] = field(default_factory=dict)
    artifacts_by_kind: Dict[str, List[Artifact]] = field(default_factory=dict)
    skipped: Set[str] = field(default_factory=set)
    verification: Optional[VerificationResult] = None
    error: Optional[str] = None
    progress: Optional[ProgressCallback] = None
    cancel_event: Optional[asyncio.Event] = None

    @property
    def run_id(self) -> str:
        return self.run.run_id

    @property
    def state(self) -> RunState:
        return self.run.state

    def transition(self, target: RunStatus) -> None:
        self.status = transition(self.status, target)

    def track_artifact(self, step_id: Optional[str], artifact: Artifact) -> None:
        if step_id:
            self.artifacts_by_step[step_id] = artifact
        self.artifacts_by_kind.setdefault(artifact.kind, []).append(artifact)

    def latest_artifact(self, kind: Optional[str]) -> Optional[Artifact]:
        if not kind:
            return None
        artifacts = self.artifacts_by_kind.get(kind) or []
        return artifacts[-1] if artifacts else None


class ExecutionSnapshot(BaseModel):
    """Serializable subset of an ExecutionContext needed to resume a run."""

    run_id: str
    request: RunRequest
    settings: RunSettings
    workspace: WorkspaceHandle
    started_at: datetime
    state: RunState
    plan: PlanGraph
    order: List[str]
    status: RunStatus
    artifact: Optional[Artifact] = None
    skill_results: List[Dict[str, Any]] = Field(default_factory=list)
    skill_outputs: Dict[str, Any] = Field(default_factory=dict)
    artifacts_by_step: Dict[str, Artifact] = Field(default_factory=dict)
    artifacts_by_kind: Dict[str, List[Artifact]] = Field(default_factory=dict)
    skipped: List[str] = Field(default_factory=list)
    verification: Optional[VerificationResult] = None

    @classmethod
    def capture(cls, context: ExecutionContext) -> "ExecutionSnapshot":
        run = context.run
        return cls(
            run_id=run.run_id,
            request=run.request,
            settings=run.settings,
            workspace=run.workspace,
            started_at=run.started_at,
            state=run.state,
            plan=context.plan,
            order=list(context.order),
            status=context.status,
            artifact=context.artifact,
            skill_results=list(context.skill_results),
            skill_outputs=dict(context.skill_outputs),
            artifacts_by_step=dict(context.artifacts_by_step),
            artifacts_by_kind={k: list(v) for k, v in context.artifacts_by_kind.items()},
            skipped=sorted(context.skipped),
            verification=context.verification,
        )

    def restore(
        self,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ExecutionContext:
        run = RunContext(
            run_id=self.run_id,
            request=self.request,
            settings=self.settings,
            workspace=self.workspace,
            started_at=self.started_at,
            state=self.state,
            cancel_event=cancel_event,
        )
        return ExecutionContext(
            run=run,
            plan=self.plan,
            order=list(self.order),
            status=self.status,
            artifact=self.artifact,
            skill_results=list(self.skill_results),
            skill_outputs=dict(self.skill_outputs),
            artifacts_by_step=dict(self.artifacts_by_step),
            artifacts_by_kind={k: list(v) for k, v in self.artifacts_by_kind.items()},
            skipped=set(self.skipped),
            verification=self.verification,
            progress=progress,
            cancel_event=cancel_event,
        )
