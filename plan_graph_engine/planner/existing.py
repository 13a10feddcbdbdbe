"""
Existing-artifact extraction.

Callers may hand the engine artifacts they already hold, either through
input.context (existing_prd, existing_personas, ...) or through
attributes["artifacts"]. These are coerced to Artifact records and indexed
by kind so the planner can skip producing them again.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from pydantic import ValidationError

from ..models import Artifact, RunRequest

logger = logging.getLogger(__name__)

CONTEXT_KEYS = {
    "existing_prd": "prd",
    "existing_personas": "persona",
    "existing_story_map": "story-map",
    "existing_research": "research",
}


def _as_list(value: Any) -> List[Any]:
    if not value:
        return []
    return value if isinstance(value, list) else [value]


def coerce_artifact(candidate: Any, kind: str, index: int = 0) -> Artifact:
    """Build an Artifact from a loosely shaped caller payload.

    Dicts without a "data" key are treated as the artifact content itself.
    """
    if isinstance(candidate, Artifact):
        return candidate

    raw = candidate if isinstance(candidate, dict) else {}
    artifact_id = raw.get("id")
    version = raw.get("version")
    label = raw.get("label")
    return Artifact(
        id=artifact_id if isinstance(artifact_id, str) and artifact_id.strip() else f"existing-{kind}-{index}",
        kind=raw.get("kind") or kind,
        version=version if isinstance(version, str) and version.strip() else "1.0.0",
        label=label if isinstance(label, str) and label.strip() else None,
        data=raw["data"] if "data" in raw else candidate,
        metadata=raw.get("metadata") or {},
    )


def _add(found: Dict[str, List[Artifact]], kind: str, candidates: List[Any]) -> None:
    for index, candidate in enumerate(candidates):
        try:
            artifact = coerce_artifact(candidate, kind, index)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed existing {kind} artifact: {e}")
            continue
        found.setdefault(artifact.kind, []).append(artifact)


def extract_existing_artifacts(request: RunRequest) -> Dict[str, List[Artifact]]:
    """Collect caller-supplied artifacts, grouped by kind in arrival order."""
    found: Dict[str, List[Artifact]] = {}

    context = request.input.get("context")
    if isinstance(context, dict):
        for key, kind in CONTEXT_KEYS.items():
            _add(found, kind, _as_list(context.get(key)))

    for entry in _as_list(request.attributes.get("artifacts")):
        if isinstance(entry, Artifact):
            found.setdefault(entry.kind, []).append(entry)
        elif isinstance(entry, dict) and isinstance(entry.get("kind"), str):
            _add(found, entry["kind"], [entry])

    return found
