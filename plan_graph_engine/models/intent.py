"""
Artifact intent: the resolved interpretation of a request.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import IntentStatus


class ArtifactTransition(BaseModel):
    """One hop in the artifact-kind chain, e.g. prd -> persona."""

    model_config = ConfigDict(extra="forbid")

    from_artifact: Optional[str] = None
    to_artifact: str


class ArtifactIntent(BaseModel):
    """Target artifact plus the ordered chain of kinds needed to reach it.

    status=needs-clarification is a normal classification outcome, not an error.
    """

    model_config = ConfigDict(extra="forbid")

    source: str = Field(default="resolver", description="user, resolver or fallback")
    requested_artifacts: List[str] = Field(default_factory=list)
    target_artifact: str
    transitions: List[ArtifactTransition] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0, le=1)
    status: IntentStatus = IntentStatus.READY
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def needs_clarification(self) -> bool:
        return self.status == IntentStatus.NEEDS_CLARIFICATION

    @property
    def reason(self) -> Optional[str]:
        return self.metadata.get("reason")

    def transition_path(self) -> List[str]:
        """Flatten transitions into the ordered list of kinds they visit."""
        path: List[str] = []
        for transition in self.transitions:
            for kind in (transition.from_artifact, transition.to_artifact):
                if kind and kind not in path:
                    path.append(kind)
        return path

    def mentions(self, kind: str) -> bool:
        return (
            self.target_artifact == kind
            or kind in self.requested_artifacts
            or kind in self.transition_path()
        )
