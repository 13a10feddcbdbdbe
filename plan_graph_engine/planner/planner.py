"""
Intent-driven planner.

Builds a PlanGraph in two parts: a core segment for the first missing artifact
kind that has a registered core builder (the PRD skill skeleton), followed by
a chain of subagent nodes for the remaining artifact transitions. Nodes only
ever depend on nodes placed before them, so the graph is acyclic by
construction.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from ..errors import MissingSkillError, PlanConstructionError
from ..models import (
    ArtifactIntent,
    ArtifactTransition,
    PlanGraph,
    PlanNode,
    RunContext,
    SkillTask,
    SubagentManifest,
    SubagentTask,
    utc_now,
)
from ..subagents import SubagentRegistry
from .catalog import PRD_SECTIONS, SkillCatalog
from .intent import PROMPT_KIND, IntentResolver

logger = logging.getLogger(__name__)

PLAN_VERSION = "3.0.0"

CLARIFICATION_NODE = "clarification-check"
ANALYZE_NODE = "analyze-context"
ASSEMBLE_NODE = "assemble-prd"


def normalize_section(value: str) -> str:
    return re.sub(r"[\s_-]", "", value.lower())


@dataclass
class CoreSegment:
    nodes: Dict[str, PlanNode]
    entry_id: str
    terminal_node_id: str
    requested_sections: List[str] = field(default_factory=list)
    intermediate_artifacts: List[str] = field(default_factory=list)
    skill_sequence: List[str] = field(default_factory=list)


@dataclass
class TransitionSegment:
    nodes: Dict[str, PlanNode] = field(default_factory=dict)
    summaries: List[Dict[str, object]] = field(default_factory=list)
    entry_node_id: Optional[str] = None
    terminal_node_id: Optional[str] = None
    transition_path: List[str] = field(default_factory=list)


CoreBuilder = Callable[[RunContext, SkillCatalog], Awaitable[CoreSegment]]


def subagent_node_id(subagent_id: str) -> str:
    return "subagent-" + re.sub(r"[^a-zA-Z0-9._-]+", "-", subagent_id)


class Planner:
    """Creates plan graphs from a resolved artifact intent.

    Args:
        intent_resolver: Resolves the run's ArtifactIntent
        registry: Subagent manifests available for artifact transitions
        catalog: Skill catalog; built from the run's skill packs when omitted
        clock: Source of plan creation timestamps
    """

    def __init__(
        self,
        intent_resolver: IntentResolver,
        registry: Optional[SubagentRegistry] = None,
        catalog: Optional[SkillCatalog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.intent_resolver = intent_resolver
        self.registry = registry
        self.catalog = catalog
        self.clock = clock or utc_now
        self.core_builders: Dict[str, CoreBuilder] = {"prd": self.build_prd_core_segment}

    def register_core_builder(self, artifact_kind: str, builder: CoreBuilder) -> None:
        self.core_builders[artifact_kind] = builder

    async def create_plan(self, context: RunContext) -> PlanGraph:
        """Resolve the intent and build the plan for it.

        Raises:
            MissingSkillError: If the core builder needs a skill the enabled packs lack
            PlanConstructionError: If no entry node could be produced
        """
        intent = await self.intent_resolver.resolve(context)
        catalog = self.catalog or SkillCatalog(context.settings.skill_packs)
        existing = list(context.state.existing_artifacts)
        entries = self.registry.list() if self.registry is not None else []
        allow_prompt = any(
            not entry.consumes or PROMPT_KIND in entry.consumes for entry in entries
        )

        core: Optional[CoreSegment] = None
        target_kind = intent.target_artifact
        if intent.needs_clarification:
            core = self.build_clarification_segment(catalog)
            transitions = TransitionSegment(terminal_node_id=core.terminal_node_id)
        else:
            builder = self._select_core_builder(intent, existing)
            if builder is not None:
                core = await builder(context, catalog)
            # A requested kind built by the core stays primary; later transitions are derivatives
            if core is not None and context.request.artifact_kind in core.intermediate_artifacts:
                target_kind = context.request.artifact_kind
            initial = self._initial_artifact_kind(
                intent, context, core, existing, entries, allow_prompt
            )
            transitions = self._build_transition_segment(
                intent, core, initial, existing, entries, allow_prompt, target_kind
            )

        nodes: Dict[str, PlanNode] = {}
        if core is not None:
            nodes.update(core.nodes)
        nodes.update(transitions.nodes)

        entry_id = (core.entry_id if core else None) or transitions.entry_node_id
        if not entry_id or entry_id not in nodes:
            raise PlanConstructionError(
                "Planner could not build a runnable plan for the requested intent",
                details={
                    "target_artifact": intent.target_artifact,
                    "transitions": [t.model_dump() for t in intent.transitions],
                },
            )

        terminal_node_id = (
            transitions.terminal_node_id
            or (core.terminal_node_id if core else None)
            or entry_id
        )
        path = transitions.transition_path
        artifact_kind = (
            target_kind
            or (path[-1] if path else None)
            or context.request.artifact_kind
        )
        intermediate = list(
            dict.fromkeys((core.intermediate_artifacts if core else []) + path)
        )

        plan = PlanGraph(
            id=f"plan-{context.run_id}",
            artifact_kind=artifact_kind,
            entry_id=entry_id,
            created_at=self.clock(),
            version=PLAN_VERSION,
            nodes=nodes,
            metadata={
                "planner": "intelligent",
                "requested_artifact_kind": context.request.artifact_kind,
                "requested_artifacts": list(intent.requested_artifacts),
                "requested_sections": core.requested_sections if core else [],
                "skill_packs": list(catalog.pack_ids),
                "skills": {"sequence": core.skill_sequence} if core and core.skill_sequence else None,
                "subagents": transitions.summaries,
                "intermediate_artifacts": intermediate,
                "transition_path": path,
                "intent": intent.model_dump(mode="json"),
                "intent_confidence": intent.confidence,
                "terminal_node_id": terminal_node_id,
                "existing_artifacts": existing,
            },
        )
        logger.info(
            f"Planned {len(nodes)} nodes for run {context.run_id} "
            f"(target={artifact_kind}, path={path})"
        )
        return plan

    async def refine_plan(self, plan: PlanGraph, context: RunContext) -> PlanGraph:
        return plan

    def _ensure_skill(self, catalog: SkillCatalog, skill_id: str) -> None:
        if catalog.find_by_id(skill_id) is None:
            raise MissingSkillError(skill_id)

    def _clarification_node(self) -> PlanNode:
        return PlanNode(
            id=CLARIFICATION_NODE,
            label="Check prompt for clarification needs",
            task=SkillTask(skill_id="prd.check-clarification"),
            metadata={"kind": "skill", "skill_id": "prd.check-clarification"},
        )

    def build_clarification_segment(self, catalog: SkillCatalog) -> CoreSegment:
        """Single-node plan used when the intent needs clarification."""
        self._ensure_skill(catalog, "prd.check-clarification")
        node = self._clarification_node()
        return CoreSegment(
            nodes={node.id: node},
            entry_id=node.id,
            terminal_node_id=node.id,
            skill_sequence=["prd.check-clarification"],
        )

    async def build_prd_core_segment(
        self, context: RunContext, catalog: SkillCatalog
    ) -> CoreSegment:
        for skill_id in ("prd.check-clarification", "prd.analyze-context", "prd.assemble-prd"):
            self._ensure_skill(catalog, skill_id)

        available = [
            skill.section
            for skill in catalog.list_by_category("section-writer")
            if skill.section in PRD_SECTIONS
        ] or list(PRD_SECTIONS)
        sections = self.resolve_requested_sections(
            context.request.input.get("target_sections") or [], available
        )

        clarification = self._clarification_node()
        analyze = PlanNode(
            id=ANALYZE_NODE,
            label="Analyze product context",
            task=SkillTask(skill_id="prd.analyze-context"),
            depends_on=[clarification.id],
            metadata={"kind": "skill", "skill_id": "prd.analyze-context"},
        )
        section_nodes = [
            PlanNode(
                id=f"write-{section}",
                label=f"Write {section} section",
                task=SkillTask(skill_id=f"prd.write-{section}", section=section),
                depends_on=[analyze.id],
                metadata={"kind": "skill", "skill_id": f"prd.write-{section}"},
            )
            for section in sections
        ]
        assemble = PlanNode(
            id=ASSEMBLE_NODE,
            label="Assemble Product Requirements Document",
            task=SkillTask(skill_id="prd.assemble-prd"),
            depends_on=[node.id for node in section_nodes] or [analyze.id],
            metadata={"kind": "skill", "skill_id": "prd.assemble-prd"},
        )

        nodes = {clarification.id: clarification, analyze.id: analyze}
        nodes.update((node.id, node) for node in section_nodes)
        nodes[assemble.id] = assemble

        return CoreSegment(
            nodes=nodes,
            entry_id=clarification.id,
            terminal_node_id=assemble.id,
            requested_sections=sections,
            intermediate_artifacts=["prd"],
            skill_sequence=(
                ["prd.check-clarification", "prd.analyze-context"]
                + [f"prd.write-{section}" for section in sections]
                + ["prd.assemble-prd"]
            ),
        )

    def resolve_requested_sections(
        self, candidates: List[str], available: List[str]
    ) -> List[str]:
        """Match requested section names against the available ones.

        Keeps catalog order; falls back to every available section when
        nothing was requested or nothing matched.
        """
        if not candidates:
            return list(available)

        lookup = {normalize_section(section): section for section in available}
        requested = {
            lookup[normalize_section(candidate)]
            for candidate in candidates
            if isinstance(candidate, str) and normalize_section(candidate) in lookup
        }
        if not requested:
            return list(available)
        return [section for section in available if section in requested]

    def _normalize_transitions(self, intent: ArtifactIntent) -> List[ArtifactTransition]:
        if intent.transitions:
            return list(intent.transitions)

        chain = intent.requested_artifacts or (
            [intent.target_artifact] if intent.target_artifact else []
        )
        transitions: List[ArtifactTransition] = []
        previous: Optional[str] = None
        for kind in chain:
            if kind == previous:
                continue
            transitions.append(ArtifactTransition(from_artifact=previous, to_artifact=kind))
            previous = kind
        return transitions

    def _select_core_builder(
        self, intent: ArtifactIntent, existing: List[str]
    ) -> Optional[CoreBuilder]:
        ordered = intent.transition_path() or (
            [intent.target_artifact] if intent.target_artifact else []
        )
        if not intent.transitions and intent.requested_artifacts:
            ordered = list(dict.fromkeys(intent.requested_artifacts))

        for kind in ordered:
            if kind in existing:
                continue
            builder = self.core_builders.get(kind)
            if builder is not None:
                return builder
        return None

    def _find_subagent(
        self, entries: List[SubagentManifest], from_kind: Optional[str], to_kind: str
    ) -> Optional[SubagentManifest]:
        for entry in entries:
            if entry.creates != to_kind:
                continue
            if not entry.consumes:
                return entry
            if from_kind is not None and from_kind in entry.consumes:
                return entry
        return None

    def _initial_artifact_kind(
        self,
        intent: ArtifactIntent,
        context: RunContext,
        core: Optional[CoreSegment],
        existing: List[str],
        entries: List[SubagentManifest],
        allow_prompt: bool,
    ) -> Optional[str]:
        if core is not None and core.intermediate_artifacts:
            return core.intermediate_artifacts[-1]

        transitions = self._normalize_transitions(intent)
        first = transitions[0] if transitions else None
        if first is not None and first.from_artifact:
            return first.from_artifact

        if first is not None:
            # Prefer an artifact the caller already holds over starting from the prompt
            for kind in existing:
                if self._find_subagent(entries, kind, first.to_artifact) is not None:
                    return kind
            if allow_prompt:
                return PROMPT_KIND
            if first.to_artifact != PROMPT_KIND:
                return first.to_artifact

        for candidate in (context.request.artifact_kind, intent.target_artifact):
            if candidate and (candidate != PROMPT_KIND or allow_prompt):
                return candidate
        return PROMPT_KIND if allow_prompt else None

    def _build_transition_segment(
        self,
        intent: ArtifactIntent,
        core: Optional[CoreSegment],
        initial: Optional[str],
        existing: List[str],
        entries: List[SubagentManifest],
        allow_prompt: bool,
        target_kind: Optional[str] = None,
    ) -> TransitionSegment:
        depends_on = core.terminal_node_id if core else None
        segment = TransitionSegment(
            terminal_node_id=depends_on,
            entry_node_id=depends_on,
            transition_path=[initial] if initial else [],
        )
        if not entries:
            return segment

        segment.entry_node_id = None
        current_node = depends_on
        current_kind = initial

        for transition in self._normalize_transitions(intent):
            from_kind = transition.from_artifact or current_kind or (
                PROMPT_KIND if allow_prompt else None
            )
            to_kind = transition.to_artifact
            if not to_kind or to_kind == from_kind or to_kind == current_kind:
                continue
            if to_kind in existing and to_kind != intent.target_artifact:
                continue

            entry = self._find_subagent(entries, from_kind, to_kind)
            if entry is None:
                logger.warning(
                    f"No subagent creates {to_kind} from {from_kind}; skipping transition"
                )
                continue

            node_id = subagent_node_id(entry.id)
            segment.nodes[node_id] = PlanNode(
                id=node_id,
                label=entry.label or f"Run {entry.id}",
                task=SubagentTask(subagent_id=entry.id),
                depends_on=[current_node] if current_node else [],
                inputs={"from_artifact": from_kind},
                metadata={
                    "kind": "subagent",
                    "subagent_id": entry.id,
                    "artifact_kind": entry.creates,
                    "source": {"artifact_kind": from_kind, "from_node": current_node},
                    "promote_result": entry.creates == target_kind,
                    "tags": list(entry.tags),
                },
            )
            if segment.entry_node_id is None:
                segment.entry_node_id = node_id
            segment.summaries.append(
                {
                    "id": entry.id,
                    "creates": entry.creates,
                    "consumes": list(entry.consumes),
                    "label": entry.label,
                }
            )
            segment.transition_path.append(entry.creates)
            current_kind = entry.creates
            current_node = node_id

        segment.terminal_node_id = current_node or segment.entry_node_id
        return segment
