"""Data models for plans, runs, artifacts, events and subagents."""

from .artifact import Artifact, ArtifactSummary
from .enums import (
    FailureStage,
    IntentStatus,
    NodeKind,
    NodeStatus,
    ProgressEventType,
    RunStatus,
    VerificationStatus,
    WorkspaceEventType,
)
from .events import ProgressEvent, WorkspaceEvent
from .intent import ArtifactIntent, ArtifactTransition
from .plan import (
    PlanGraph,
    PlanNode,
    SkillTask,
    SubagentSource,
    SubagentTask,
    topological_order,
    validate_plan,
)
from .primitives import generate_ulid, utc_now
from .run import (
    BlockedSubagent,
    RunContext,
    RunRequest,
    RunState,
    RunSummary,
    SubagentFailure,
    SubagentRunRecord,
    WorkspaceHandle,
)
from .skill import SkillContext, SkillRequest, SkillResult, SkillRunner
from .subagent import (
    SubagentLifecycle,
    SubagentManifest,
    SubagentMetadata,
    SubagentOutput,
    SubagentRequest,
)
from .verification import VerificationIssue, VerificationResult, Verifier

__all__ = [
    "Artifact",
    "ArtifactIntent",
    "ArtifactSummary",
    "ArtifactTransition",
    "BlockedSubagent",
    "FailureStage",
    "IntentStatus",
    "NodeKind",
    "NodeStatus",
    "PlanGraph",
    "PlanNode",
    "ProgressEvent",
    "ProgressEventType",
    "RunContext",
    "RunRequest",
    "RunState",
    "RunStatus",
    "RunSummary",
    "SkillContext",
    "SkillRequest",
    "SkillResult",
    "SkillRunner",
    "SkillTask",
    "SubagentFailure",
    "SubagentLifecycle",
    "SubagentManifest",
    "SubagentMetadata",
    "SubagentOutput",
    "SubagentRequest",
    "SubagentRunRecord",
    "SubagentSource",
    "SubagentTask",
    "VerificationIssue",
    "VerificationResult",
    "VerificationStatus",
    "Verifier",
    "WorkspaceEvent",
    "WorkspaceEventType",
    "WorkspaceHandle",
    "generate_ulid",
    "topological_order",
    "utc_now",
    "validate_plan",
]
