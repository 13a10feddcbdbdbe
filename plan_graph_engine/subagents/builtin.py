"""
Built-in subagent manifests and their registration table.
"""

from typing import Iterable, Optional

from ..models import SubagentManifest
from . import persona, story_map
from .registry import SubagentRegistry

BUILTIN_MANIFESTS = [
    SubagentManifest(
        id="persona.builder",
        version="0.1.0",
        label="Persona Builder",
        creates="persona",
        consumes=["prd", "prompt"],
        capabilities=["plan", "synthesize"],
        entry="persona",
        export_name="create_subagent",
        description="Transforms PRD sections into structured persona summaries.",
        tags=["persona", "analysis", "synthesis"],
    ),
    SubagentManifest(
        id="research.core.agent",
        version="0.1.0",
        label="Research Agent",
        creates="research",
        consumes=["prompt", "prd", "brief"],
        capabilities=["plan", "search", "synthesize"],
        entry="research",
        export_name="create_research_agent_subagent",
        description="Collects market and competitor research for a product idea.",
        tags=["research"],
    ),
    SubagentManifest(
        id="storymap.builder",
        version="0.1.0",
        label="Story Map Builder",
        creates="story-map",
        consumes=["prd", "persona", "research"],
        capabilities=["plan", "synthesize"],
        entry="story_map",
        export_name="create_subagent",
        description="Turns PRDs and personas into epics and user stories.",
        tags=["story-map", "planning"],
    ),
]


def register_builtin_entries(registry: SubagentRegistry) -> None:
    """Populate the registration table with the packaged implementations."""
    registry.register_entry("persona", {"create_subagent": persona.create_subagent})
    registry.register_entry("story_map", {"create_subagent": story_map.create_subagent})


def default_registry(enabled: Optional[Iterable[str]] = None) -> SubagentRegistry:
    """Build a registry with the built-in entries and the enabled manifests.

    Args:
        enabled: Manifest ids to register; None registers every built-in
    """
    registry = SubagentRegistry()
    register_builtin_entries(registry)
    wanted = set(enabled) if enabled is not None else None
    for manifest in BUILTIN_MANIFESTS:
        if wanted is None or manifest.id in wanted:
            registry.register(manifest)
    return registry
