"""
Subagent manifests and the lifecycle interface.

Manifests are data. Lifecycles are the loaded, executable instances.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .artifact import Artifact

if TYPE_CHECKING:
    from .run import RunContext


class SubagentManifest(BaseModel):
    """Static description of a pluggable subagent."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)
    package: str = Field(default="plan_graph_engine")
    version: str = Field(default="0.1.0")
    label: str
    creates: str = Field(..., min_length=1, description="Artifact kind produced")
    consumes: List[str] = Field(
        default_factory=list, description="Accepted source kinds; empty accepts any"
    )
    capabilities: List[str] = Field(default_factory=list)
    entry: str = Field(..., min_length=1, description="Key in the registration table")
    export_name: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class SubagentMetadata(BaseModel):
    id: str
    label: str
    version: str
    artifact_kind: str
    source_kinds: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @classmethod
    def from_manifest(cls, manifest: SubagentManifest) -> "SubagentMetadata":
        return cls(
            id=manifest.id,
            label=manifest.label,
            version=manifest.version,
            artifact_kind=manifest.creates,
            source_kinds=list(manifest.consumes),
            description=manifest.description,
            tags=list(manifest.tags),
        )


ProgressCallback = Callable[[Dict[str, Any]], None]


@dataclass
class SubagentRequest:
    """Input handed to SubagentLifecycle.execute."""

    params: Dict[str, Any]
    run: "RunContext"
    source_artifact: Optional[Artifact] = None
    emit: Optional[ProgressCallback] = None
    # Set when the run is cancelled; long-running subagents should stop early
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class SubagentOutput:
    artifact: Optional[Artifact] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class SubagentLifecycle(ABC):
    """Loaded, executable subagent."""

    metadata: SubagentMetadata

    @abstractmethod
    async def execute(self, request: SubagentRequest) -> SubagentOutput:
        """Produce an artifact from the request's source artifact.

        A result whose status (artifact extras or metadata) is
        awaiting-plan-confirmation or awaiting-clarification asks the
        controller to pause for approval.
        """
        pass
