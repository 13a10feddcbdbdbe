"""
Verification records and the verifier interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .artifact import Artifact
from .enums import VerificationStatus

if TYPE_CHECKING:
    from .run import RunContext


class VerificationIssue(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    message: str
    severity: Literal["info", "warning", "error"] = "warning"
    step_id: Optional[str] = None
    suggested_action: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VerificationResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: VerificationStatus
    artifact: Artifact
    issues: List[VerificationIssue] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Verifier(ABC):
    """Checks a produced artifact."""

    @abstractmethod
    async def verify(
        self, artifact: Artifact, context: "RunContext"
    ) -> VerificationResult:
        """Verify an artifact produced by a run."""
        pass
