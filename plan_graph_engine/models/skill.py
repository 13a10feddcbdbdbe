"""
Skill runner interface.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

from .plan import PlanNode

if TYPE_CHECKING:
    from .run import RunContext


@dataclass
class SkillContext:
    run: "RunContext"
    step: PlanNode
    # Outputs of previously completed skill steps, keyed by step id
    outputs: Dict[str, Any] = field(default_factory=dict)
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class SkillRequest:
    skill_id: str
    plan_node: PlanNode
    input: Any
    context: SkillContext


@dataclass
class SkillResult:
    """Result of one skill invocation.

    metadata may carry "artifact" (an Artifact produced by the step),
    "run_status" ("awaiting-input" pauses the run) and "clarification".
    """

    output: Any
    metadata: Dict[str, Any] = field(default_factory=dict)
    confidence: Optional[float] = None
    usage: Dict[str, Any] = field(default_factory=dict)


class SkillRunner(ABC):
    """Executes skill steps."""

    @abstractmethod
    async def invoke(self, request: SkillRequest) -> SkillResult:
        pass
