"""Intent resolution, skill catalog and plan construction."""

from .catalog import PRD_SECTIONS, BUILTIN_SKILL_PACKS, CatalogSkill, SkillCatalog, SkillPack
from .existing import coerce_artifact, extract_existing_artifacts
from .intent import (
    Classification,
    ClassificationRequest,
    IntentClassifier,
    IntentResolver,
    KeywordIntentClassifier,
    ModelIntentClassifier,
)
from .planner import Planner, normalize_section, subagent_node_id

__all__ = [
    "BUILTIN_SKILL_PACKS",
    "CatalogSkill",
    "Classification",
    "ClassificationRequest",
    "IntentClassifier",
    "IntentResolver",
    "KeywordIntentClassifier",
    "ModelIntentClassifier",
    "PRD_SECTIONS",
    "Planner",
    "SkillCatalog",
    "SkillPack",
    "coerce_artifact",
    "extract_existing_artifacts",
    "normalize_section",
    "subagent_node_id",
]
