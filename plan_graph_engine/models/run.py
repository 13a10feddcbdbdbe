"""
Run records: request, identity, typed run state and summaries.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import RunSettings
from .artifact import Artifact
from .enums import FailureStage, RunStatus
from .intent import ArtifactIntent
from .plan import PlanGraph
from .primitives import utc_now
from .verification import VerificationResult


class RunRequest(BaseModel):
    """A request to produce an artifact.

    input carries the free-form payload: message, context, target_sections.
    attributes carries caller extras such as api_key, overrides or artifacts.
    """

    model_config = ConfigDict(extra="forbid")

    artifact_kind: str = Field(..., min_length=1)
    input: Dict[str, Any] = Field(default_factory=dict)
    created_by: str = Field(default="system")
    attributes: Dict[str, Any] = Field(default_factory=dict)
    intent: Optional[ArtifactIntent] = Field(
        None, description="Caller-supplied intent; skips classification when it matches"
    )

    @property
    def message(self) -> str:
        value = self.input.get("message")
        return value if isinstance(value, str) else ""


class WorkspaceHandle(BaseModel):
    """Descriptor of a provisioned run workspace."""

    run_id: str
    root: str
    artifact_kind: str
    persist_artifacts: bool = True
    temp_dir: str
    created_at: datetime = Field(default_factory=utc_now)


class BlockedSubagent(BaseModel):
    """A subagent step waiting for human approval."""

    step_id: str
    subagent_id: str
    status: str
    plan: Any = None
    requested_at: datetime = Field(default_factory=utc_now)


class SubagentRunRecord(BaseModel):
    subagent_id: str
    step_id: Optional[str] = None
    artifact: Artifact
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SubagentFailure(BaseModel):
    subagent_id: str
    error: str
    stage: FailureStage
    step_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


class RunState(BaseModel):
    """Typed mutable state carried alongside a run.

    Replaces an ad hoc metadata bag: each field has one owner and meaning.
    """

    cached_intent: Optional[ArtifactIntent] = None
    plan: Optional[PlanGraph] = None
    blocked_subagent: Optional[BlockedSubagent] = None
    clarification: Optional[Dict[str, Any]] = None
    subagent_results: Dict[str, SubagentRunRecord] = Field(default_factory=dict)
    subagent_failures: Dict[str, SubagentFailure] = Field(default_factory=dict)
    existing_artifacts: List[str] = Field(
        default_factory=list, description="Kinds supplied with the request"
    )


@dataclass
class RunContext:
    """Per-run identity plus typed state. Owned by one controller invocation."""

    run_id: str
    request: RunRequest
    settings: RunSettings
    workspace: WorkspaceHandle
    started_at: datetime
    state: RunState = field(default_factory=RunState)
    cancel_event: Optional[asyncio.Event] = None


class RunSummary(BaseModel):
    """What callers get back from start, resume and resume_subagent."""

    run_id: str
    status: RunStatus
    artifact: Optional[Artifact] = None
    skill_results: List[Dict[str, Any]] = Field(default_factory=list)
    verification: Optional[VerificationResult] = None
    completed_at: datetime = Field(default_factory=utc_now)
    workspace: Optional[WorkspaceHandle] = None
    state: RunState = Field(default_factory=RunState)
    subagents: List[SubagentRunRecord] = Field(default_factory=list)
    error: Optional[str] = None
