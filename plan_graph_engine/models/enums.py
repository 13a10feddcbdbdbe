"""
Canonical enums for runs, plans, events and verification.
"""

from enum import Enum


class RunStatus(str, Enum):
    """Run lifecycle states.

    awaiting-input is not terminal: an explicit resume moves it back to running.
    """

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    AWAITING_INPUT = "awaiting-input"


class IntentStatus(str, Enum):
    READY = "ready"
    NEEDS_CLARIFICATION = "needs-clarification"


class NodeKind(str, Enum):
    """Kinds of plan node tasks."""

    SKILL = "skill"
    SUBAGENT = "subagent"


class NodeStatus(str, Enum):
    PENDING = "pending"
    SKIPPED = "skipped"


class WorkspaceEventType(str, Enum):
    """Categories of workspace log entries."""

    PLAN = "plan"
    SKILL = "skill"
    SUBAGENT = "subagent"
    VERIFICATION = "verification"
    ARTIFACT = "artifact"
    SYSTEM = "system"


class ProgressEventType(str, Enum):
    """Progress notifications streamed to callers while a run executes."""

    RUN_STATUS = "run.status"
    PLAN_CREATED = "plan.created"
    STEP_STARTED = "step.started"
    STEP_COMPLETED = "step.completed"
    STEP_FAILED = "step.failed"
    ARTIFACT_DELIVERED = "artifact.delivered"
    SUBAGENT_STARTED = "subagent.started"
    SUBAGENT_PROGRESS = "subagent.progress"
    SUBAGENT_COMPLETED = "subagent.completed"
    SUBAGENT_FAILED = "subagent.failed"
    SUBAGENT_APPROVAL_REQUIRED = "subagent.approval-required"
    SUBAGENT_APPROVED = "subagent.approved"
    VERIFICATION_STARTED = "verification.started"
    VERIFICATION_COMPLETED = "verification.completed"


class VerificationStatus(str, Enum):
    """Verification outcomes ordered from best to worst."""

    PASS = "pass"
    NEEDS_REVIEW = "needs-review"
    FAIL = "fail"

    @property
    def severity(self) -> int:
        return _VERIFICATION_SEVERITY[self]


_VERIFICATION_SEVERITY = {
    VerificationStatus.PASS: 0,
    VerificationStatus.NEEDS_REVIEW: 1,
    VerificationStatus.FAIL: 2,
}


class FailureStage(str, Enum):
    """Where in a subagent's lifecycle a failure happened."""

    LOAD = "load"
    EXECUTE = "execute"
