"""
Artifact records.

An artifact is immutable once written. A new version is a new record, never
an in-place mutation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .primitives import utc_now


class Artifact(BaseModel):
    """A versioned unit of produced content (a PRD, a persona bundle, ...).

    Metadata keys in common use: created_at, created_by, tags, confidence, extras.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(..., min_length=1, description="Artifact identifier")
    kind: str = Field(
        ..., min_length=1, description="Open artifact kind: prd, persona, story-map, ..."
    )
    version: str = Field(default="1.0.0", description="Artifact version")
    label: Optional[str] = Field(None, description="Human-readable label")
    data: Any = Field(default=None, description="Artifact content")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def extras(self) -> Dict[str, Any]:
        extras = self.metadata.get("extras")
        return extras if isinstance(extras, dict) else {}

    def summary(self) -> "ArtifactSummary":
        return ArtifactSummary(
            id=self.id,
            kind=self.kind,
            version=self.version,
            label=self.label,
        )


class ArtifactSummary(BaseModel):
    """Entry in a run's artifact index."""

    model_config = ConfigDict(extra="ignore")

    id: str
    kind: str
    version: str
    label: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
