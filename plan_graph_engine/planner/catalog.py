"""
Skill catalog.

Skill packs are declared in a static table keyed by pack id. The catalog
loads the enabled packs on first lookup; the first pack to declare a skill id
wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

PRD_SECTIONS = ["targetUsers", "solution", "keyFeatures", "successMetrics", "constraints"]

SECTION_LABELS = {
    "targetUsers": "Target Users Section Writer",
    "solution": "Solution Section Writer",
    "keyFeatures": "Key Features Section Writer",
    "successMetrics": "Success Metrics Section Writer",
    "constraints": "Constraints Section Writer",
}


@dataclass(frozen=True)
class CatalogSkill:
    id: str
    label: str
    version: str
    category: str
    pack_id: str
    description: Optional[str] = None
    section: Optional[str] = None


@dataclass(frozen=True)
class SkillPack:
    id: str
    version: str
    label: str
    skills: List[CatalogSkill]
    description: Optional[str] = None


def prd_core_pack() -> SkillPack:
    """Context analysis, section writers and assembly for PRD generation."""
    pack_id = "prd.core"
    skills = [
        CatalogSkill(
            id="prd.check-clarification",
            label="Clarification Analyzer",
            version="1.0.0",
            category="analyzer",
            pack_id=pack_id,
            description="Decides whether the request needs clarification questions.",
        ),
        CatalogSkill(
            id="prd.analyze-context",
            label="Context Analyzer",
            version="1.0.0",
            category="analyzer",
            pack_id=pack_id,
            description="Summarises goals, requirements and constraints for the writers.",
        ),
    ]
    skills.extend(
        CatalogSkill(
            id=f"prd.write-{section}",
            label=SECTION_LABELS[section],
            version="1.0.0",
            category="section-writer",
            pack_id=pack_id,
            section=section,
            description=f"Generates the {section} section of the PRD.",
        )
        for section in PRD_SECTIONS
    )
    skills.append(
        CatalogSkill(
            id="prd.assemble-prd",
            label="PRD Assembly",
            version="1.0.0",
            category="assembly",
            pack_id=pack_id,
            description="Aggregates section outputs and emits the PRD artifact.",
        )
    )
    return SkillPack(id=pack_id, version="0.3.0", label="PRD Core Skills", skills=skills)


BUILTIN_SKILL_PACKS: Dict[str, Callable[[], SkillPack]] = {
    "prd.core": prd_core_pack,
}


class SkillCatalog:
    """Lookup over the skills declared by the enabled packs."""

    def __init__(
        self,
        pack_ids: Iterable[str],
        packs: Optional[Dict[str, Callable[[], SkillPack]]] = None,
    ):
        self.pack_ids = list(pack_ids)
        self._packs = packs if packs is not None else BUILTIN_SKILL_PACKS
        self._skills: Dict[str, CatalogSkill] = {}
        self._loaded = False

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return

        for pack_id in self.pack_ids:
            loader = self._packs.get(pack_id)
            if loader is None:
                raise ConfigurationError(
                    f'Unknown skill pack "{pack_id}". Register a loader before using it.',
                    details={"pack_id": pack_id},
                )
            pack = loader()
            for skill in pack.skills:
                self._skills.setdefault(skill.id, skill)
            logger.debug(f"Loaded skill pack {pack.id} ({len(pack.skills)} skills)")

        self._loaded = True

    def list_skills(self) -> List[CatalogSkill]:
        self._ensure_loaded()
        return list(self._skills.values())

    def list_by_category(self, category: str) -> List[CatalogSkill]:
        self._ensure_loaded()
        return [skill for skill in self._skills.values() if skill.category == category]

    def find_by_id(self, skill_id: str) -> Optional[CatalogSkill]:
        self._ensure_loaded()
        return self._skills.get(skill_id)
