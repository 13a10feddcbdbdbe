"""
Error taxonomy for the plan-graph engine.

Every error carries a stable code for programmatic handling. Plan construction
errors are raised before any step runs; subagent load and execution errors
carry the lifecycle stage so the controller can record where a subagent broke.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class EngineError(Exception):
    """
    Base class for engine errors.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
        details: Optional structured context
    """

    code = "ENGINE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(EngineError):
    code = "CONFIGURATION_INVALID"


class PlanConstructionError(EngineError):
    """Plan cannot be executed: cycle, dangling dependency, or no entry node."""

    code = "PLAN_INVALID"


class MissingSkillError(PlanConstructionError):
    code = "SKILL_MISSING"

    def __init__(self, skill_id: str):
        self.skill_id = skill_id
        super().__init__(
            f'Required skill "{skill_id}" is not available in the enabled skill packs',
            details={"skill_id": skill_id},
        )


class StepExecutionError(EngineError):
    """A skill step raised. Fatal to the run."""

    code = "STEP_FAILED"

    def __init__(self, step_id: str, message: str):
        self.step_id = step_id
        super().__init__(message, details={"step_id": step_id})


class SubagentNotRegisteredError(EngineError):
    code = "SUBAGENT_NOT_REGISTERED"

    def __init__(self, subagent_id: str):
        self.subagent_id = subagent_id
        super().__init__(
            f'Subagent "{subagent_id}" is not registered',
            details={"subagent_id": subagent_id},
        )


class SubagentLoadError(EngineError):
    """Manifest is registered but its entry does not yield a usable lifecycle."""

    code = "SUBAGENT_LOAD_FAILED"
    stage = "load"

    def __init__(self, subagent_id: str, entry: str, attempted: List[str]):
        self.subagent_id = subagent_id
        self.entry = entry
        self.attempted = list(attempted)
        super().__init__(
            f'Subagent "{subagent_id}" entry "{entry}" does not expose a usable '
            f"factory (tried: {', '.join(attempted)})",
            details={
                "subagent_id": subagent_id,
                "entry": entry,
                "attempted_exports": self.attempted,
                "stage": self.stage,
            },
        )


class SubagentExecutionError(EngineError):
    code = "SUBAGENT_FAILED"
    stage = "execute"

    def __init__(self, subagent_id: str, message: str):
        self.subagent_id = subagent_id
        super().__init__(
            message, details={"subagent_id": subagent_id, "stage": self.stage}
        )


class RunNotResumable(EngineError):
    """Unknown run id, or the run is not blocked on the requested step."""

    code = "RUN_NOT_RESUMABLE"


class InvalidRunTransition(EngineError):
    code = "RUN_TRANSITION_INVALID"


class RunCancelled(EngineError):
    """The run's cancel event was set before a step could start."""

    code = "RUN_CANCELLED"


class ProviderError(EngineError):
    """Failure reported by the model provider."""

    code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.status = status
        super().__init__(message, details={"status": status, **(details or {})})

    @property
    def is_client_error(self) -> bool:
        return self.status is not None and 400 <= self.status < 500


def _status_of(exc: BaseException) -> Optional[int]:
    for attr in ("status", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_provider_failure(exc: BaseException) -> bool:
    """Return True when a model invocation failure should fall back to direct execution.

    Provider failures are 4xx-class responses or errors whose message carries
    an auth/bad-request signal. Everything else is a genuine step failure.
    """
    if isinstance(exc, ProviderError) and exc.is_client_error:
        return True

    status = _status_of(exc)
    if status is not None and 400 <= status < 500:
        return True

    message = str(exc).lower()
    return "bad request" in message or "unauthorized" in message