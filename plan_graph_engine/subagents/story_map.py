"""
Story-map builder subagent.

Proposes epics from the source artifact and asks for plan confirmation before
writing stories. Once an approved plan comes back, it builds the story map
from the approved epic list.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..models import (
    Artifact,
    SubagentLifecycle,
    SubagentManifest,
    SubagentMetadata,
    SubagentOutput,
    SubagentRequest,
    generate_ulid,
    utc_now,
)
from .persona import extract_key_features, extract_success_metrics

AWAITING_PLAN_CONFIRMATION = "awaiting-plan-confirmation"


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")[:40] or "epic"


class StoryMapBuilder(SubagentLifecycle):
    def __init__(
        self,
        metadata: SubagentMetadata,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.metadata = metadata
        self.clock = clock or utc_now
        self.id_factory = id_factory or generate_ulid

    def propose_epics(self, source: Artifact) -> List[Dict[str, Any]]:
        """Derive candidate epics from PRD features or persona opportunities."""
        data = source.data if isinstance(source.data, dict) else {}
        themes: List[str] = []
        outcomes: List[str] = []

        if source.kind == "persona":
            for persona in data.get("personas", []):
                themes.extend(persona.get("opportunities", []))
                outcomes.extend(persona.get("goals", []))
        else:
            sections = data.get("sections") or {}
            used: set = set()
            themes = extract_key_features(sections, used)
            outcomes = extract_success_metrics(sections, used)

        if not themes and isinstance(data.get("message"), str):
            themes = [data["message"]]

        epics = []
        for index, theme in enumerate(dict.fromkeys(themes)):
            epics.append(
                {
                    "id": f"epic-{index + 1}-{_slug(theme)}",
                    "name": theme,
                    "outcome": outcomes[index] if index < len(outcomes) else f"Users can rely on {theme.lower()}",
                }
            )
        return epics

    def _personas(self, source: Artifact) -> List[Dict[str, Any]]:
        if source.kind != "persona" or not isinstance(source.data, dict):
            return []
        return list(source.data.get("personas", []))

    def build_epics(
        self, plan: List[Dict[str, Any]], personas: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        actors = [persona.get("name", "user") for persona in personas] or ["user"]
        epics = []
        for epic in plan:
            actor = actors[len(epics) % len(actors)]
            story = {
                "id": f"{epic['id']}-story-1",
                "title": epic["name"],
                "as_a": actor,
                "i_want": epic["name"],
                "so_that": epic.get("outcome", ""),
                "acceptance_criteria": [f"{epic['name']} is available to {actor}"],
                "personas": [
                    {"persona_id": p["id"], "goal": (p.get("goals") or [""])[0]}
                    for p in personas
                    if p.get("name") == actor
                ],
            }
            epics.append(
                {
                    "id": epic["id"],
                    "name": epic["name"],
                    "outcome": epic.get("outcome", ""),
                    "stories": [story],
                }
            )
        return epics

    async def execute(self, request: SubagentRequest) -> SubagentOutput:
        source = request.source_artifact
        if source is None:
            raise ValueError("Story map builder requires a source artifact.")

        params = request.params
        approved_plan = params.get("approved_plan")
        require_confirmation = params.get("require_plan_confirmation", True)
        generated_at = self.clock().isoformat()

        if approved_plan is None and require_confirmation:
            proposal = {"epics": self.propose_epics(source)}
            draft = Artifact(
                id=f"artifact-{self.id_factory()}",
                kind="story-map",
                version="0.1.0",
                label="Story Map (draft)",
                data={"proposal": proposal},
                metadata={
                    "created_at": generated_at,
                    "created_by": request.run.request.created_by,
                    "tags": ["story-map", "draft"],
                    "extras": {"status": AWAITING_PLAN_CONFIRMATION, "plan": proposal},
                },
            )
            return SubagentOutput(
                artifact=draft, metadata={"status": AWAITING_PLAN_CONFIRMATION}
            )

        if isinstance(approved_plan, dict):
            plan = approved_plan.get("epics", [])
        else:
            plan = self.propose_epics(source)

        personas = self._personas(source)
        epics = self.build_epics(plan, personas)
        if request.emit:
            request.emit({"stage": "stories-written", "epic_count": len(epics)})

        artifact = Artifact(
            id=f"artifact-{self.id_factory()}",
            kind="story-map",
            version="1.0.0",
            label="Story Map",
            data={
                "version": "1.0.0",
                "label": "Story Map",
                "personas_referenced": [p["id"] for p in personas],
                "epics": epics,
            },
            metadata={
                "created_at": generated_at,
                "created_by": request.run.request.created_by,
                "tags": ["story-map"],
                "extras": {
                    "status": "completed",
                    "source_artifact_id": source.id,
                    "epic_count": len(epics),
                },
            },
        )
        return SubagentOutput(
            artifact=artifact,
            metadata={"status": "completed", "epic_count": len(epics)},
        )


def create_subagent(manifest: SubagentManifest) -> StoryMapBuilder:
    return StoryMapBuilder(SubagentMetadata.from_manifest(manifest))
