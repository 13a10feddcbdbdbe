"""Pluggable subagents and their registry."""

from .builtin import BUILTIN_MANIFESTS, default_registry, register_builtin_entries
from .persona import PersonaBuilder
from .registry import SubagentRegistry
from .story_map import StoryMapBuilder

__all__ = [
    "BUILTIN_MANIFESTS",
    "PersonaBuilder",
    "StoryMapBuilder",
    "SubagentRegistry",
    "default_registry",
    "register_builtin_entries",
]
