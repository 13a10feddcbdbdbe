"""
Persona builder subagent.

Derives persona profiles from PRD sections: target users become personas,
key features become opportunities, metrics become success indicators and
constraints seed frustrations. A bare prompt yields a single persona built
from the request message.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

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

MAX_PERSONAS = 4

GOAL_PATTERNS = [
    re.compile(
        r"(needs to|needs|wants to|aims to|tries to|hopes to|in order to|so they can)\s+([^.;]+)",
        re.IGNORECASE,
    ),
    re.compile(r"(seeks to|focused on|goal is to)\s+([^.;]+)", re.IGNORECASE),
]
FRUSTRATION_PATTERNS = [
    re.compile(
        r"(struggles with|frustrated by|blocked by|pain points? include)\s+([^.;]+)",
        re.IGNORECASE,
    ),
    re.compile(r"(but|however)\s+([^.;]+)", re.IGNORECASE),
]


def normalize_key(key: str) -> str:
    return re.sub(r"[\s_-]", "", key.lower())


def find_section(sections: Dict[str, Any], candidates: Iterable[str]) -> Any:
    wanted = {normalize_key(candidate) for candidate in candidates}
    for key, value in sections.items():
        if normalize_key(key) in wanted:
            return value
    return None


def dedupe(values: Iterable[str]) -> List[str]:
    """Drop case-insensitive duplicates, keeping first occurrence."""
    seen: Set[str] = set()
    result = []
    for value in values:
        key = value.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(value)
    return result


def sanitize_strings(value: Any) -> List[str]:
    """Collect trimmed, non-empty strings from a list or an {items|list: [...]} dict."""
    if not value:
        return []

    items: Iterable[Any] = []
    if isinstance(value, list):
        items = value
    elif isinstance(value, dict):
        if isinstance(value.get("items"), list):
            items = value["items"]
        elif isinstance(value.get("list"), list):
            items = value["list"]

    collected = []
    for item in items:
        if isinstance(item, str) and item.strip() and item.strip() not in collected:
            collected.append(item.strip())
    return collected


def nested_strings(value: Any, key: str) -> List[str]:
    if not isinstance(value, dict) or not value.get(key):
        return []
    return sanitize_strings(value[key])


def extract_target_users(sections: Dict[str, Any], used: Set[str]) -> List[str]:
    candidate = find_section(sections, ["targetusers", "personas", "audience"])
    values = sanitize_strings(candidate) or nested_strings(candidate, "targetUsers")
    if values:
        used.add("targetUsers")
    return values[:MAX_PERSONAS]


def extract_key_features(sections: Dict[str, Any], used: Set[str]) -> List[str]:
    candidate = find_section(sections, ["keyfeatures", "features", "capabilities"])
    values = sanitize_strings(candidate) or nested_strings(candidate, "keyFeatures")
    if values:
        used.add("keyFeatures")
    return values[:6]


def extract_constraints(sections: Dict[str, Any], used: Set[str]) -> List[str]:
    candidate = find_section(sections, ["constraints", "limitations", "assumptions"])
    values = sanitize_strings(candidate)
    values += nested_strings(candidate, "constraints")
    values += nested_strings(candidate, "assumptions")
    values = list(dict.fromkeys(values))
    if values:
        used.add("constraints")
    return values[:6]


def _serialize_metric(metric: Any) -> Optional[str]:
    if isinstance(metric, str):
        return metric.strip() or None
    if not isinstance(metric, dict):
        return None
    name = str(metric.get("metric") or "").strip()
    if not name:
        return None
    parts = [name]
    target = str(metric.get("target") or "").strip()
    timeline = str(metric.get("timeline") or "").strip()
    if target:
        parts.append(f"Target: {target}")
    if timeline:
        parts.append(f"Timeline: {timeline}")
    return " | ".join(parts)


def extract_success_metrics(sections: Dict[str, Any], used: Set[str]) -> List[str]:
    candidate = find_section(sections, ["successmetrics", "metrics", "outcomes"])
    entries: List[Any] = []
    if isinstance(candidate, list):
        entries = candidate
    elif isinstance(candidate, dict) and isinstance(candidate.get("successMetrics"), list):
        entries = candidate["successMetrics"]

    metrics = [m for m in (_serialize_metric(entry) for entry in entries) if m]
    if metrics:
        used.add("successMetrics")
    return metrics[:6]


def extract_solution_summary(sections: Dict[str, Any], used: Set[str]) -> Optional[str]:
    candidate = find_section(sections, ["solution", "overview"])
    if isinstance(candidate, str) and candidate.strip():
        used.add("solution")
        return candidate.strip()
    if not isinstance(candidate, dict):
        return None
    for key in ("solutionOverview", "approach"):
        value = candidate.get(key)
        if isinstance(value, str) and value.strip():
            used.add("solution")
            return value.strip()
    return None


def infer_persona_name(summary: str, index: int) -> str:
    cleaned = re.sub(r"^[-•–*]+", "", summary).strip()
    if not cleaned:
        return f"Persona {index + 1}"

    colon = cleaned.find(":")
    dash = cleaned.find(" - ")
    sentence_end = cleaned.find(".")
    if 0 < colon < 80:
        candidate = cleaned[:colon]
    elif 0 < dash < 80:
        candidate = cleaned[:dash]
    elif 0 < sentence_end < 80:
        candidate = cleaned[:sentence_end]
    else:
        candidate = re.split(r"[,;]", cleaned)[0]

    candidate = re.sub(r"\(.*?\)", "", candidate).strip()
    if not candidate:
        return f"Persona {index + 1}"
    words = candidate.split()[:5]
    return " ".join(word[:1].upper() + word[1:] for word in words)


def _sentence_case(text: str) -> str:
    text = text.strip()
    return text[:1].upper() + text[1:]


def _match_phrases(summary: str, patterns: List[re.Pattern]) -> List[str]:
    phrases = []
    for pattern in patterns:
        for match in pattern.finditer(summary):
            phrase = match.group(2).strip()
            if phrase:
                phrases.append(_sentence_case(phrase))
    return phrases


def extract_goals(summary: str, features: List[str], metrics: List[str]) -> List[str]:
    goals = _match_phrases(summary, GOAL_PATTERNS)
    if not goals:
        goals = features[:2]
    if not goals:
        goals = metrics[:1]
    return dedupe(goals)[:3]


def extract_frustrations(summary: str, constraints: List[str]) -> List[str]:
    frustrations = _match_phrases(summary, FRUSTRATION_PATTERNS) or constraints[:2]
    return dedupe(frustrations)[:3]


def derive_tags(name: str, summary: str) -> List[str]:
    tokens = [
        token
        for token in re.sub(r"[^\w\s]", " ", f"{name} {summary}").split()
        if 3 <= len(token) <= 20
    ]
    prioritized = [token for token in tokens if token[:1].isupper()]
    pool = prioritized or tokens
    return dedupe(token.lower() for token in pool)[:4]


def build_quote(summary: str) -> str:
    trimmed = summary.strip()
    if not trimmed:
        return ""
    return trimmed if trimmed.endswith(".") else f"{trimmed}."


def build_persona_profiles(
    target_users: List[str],
    key_features: List[str],
    constraints: List[str],
    metrics: List[str],
    solution_summary: Optional[str],
) -> List[Dict[str, Any]]:
    inputs = target_users or [
        solution_summary or "Primary target user inferred from PRD context."
    ]
    personas = []
    for index, summary in enumerate(inputs[:MAX_PERSONAS]):
        summary = summary.strip() or "Primary target user persona derived from PRD context."
        name = infer_persona_name(summary, index)
        personas.append(
            {
                "id": f"persona-{index + 1}",
                "name": name,
                "summary": summary,
                "goals": extract_goals(summary, key_features, metrics),
                "frustrations": extract_frustrations(summary, constraints),
                "opportunities": key_features[:3],
                "success_indicators": metrics[:3],
                "quote": build_quote(summary),
                "tags": derive_tags(name, summary),
            }
        )
    return personas


class PersonaBuilder(SubagentLifecycle):
    """Transforms PRD sections (or a bare prompt) into persona summaries."""

    def __init__(
        self,
        metadata: SubagentMetadata,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.metadata = metadata
        self.clock = clock or utc_now
        self.id_factory = id_factory or generate_ulid

    def _sections_from(self, source: Artifact) -> Dict[str, Any]:
        if source.kind == "prompt":
            message = ""
            if isinstance(source.data, dict):
                message = str(source.data.get("message") or "")
            return {"targetUsers": [message]} if message.strip() else {}

        data = source.data
        if not isinstance(data, dict) or "sections" not in data:
            raise ValueError(
                "Persona builder expected PRD sections in the source artifact."
            )
        return data.get("sections") or {}

    async def execute(self, request: SubagentRequest) -> SubagentOutput:
        source = request.source_artifact
        if source is None:
            raise ValueError("Persona builder requires a PRD artifact to operate.")

        sections = self._sections_from(source)
        used: Set[str] = set()
        target_users = extract_target_users(sections, used)
        key_features = extract_key_features(sections, used)
        constraints = extract_constraints(sections, used)
        metrics = extract_success_metrics(sections, used)
        solution = extract_solution_summary(sections, used)

        if request.emit:
            request.emit({"stage": "synthesizing", "sections_used": sorted(used)})

        personas = build_persona_profiles(
            target_users, key_features, constraints, metrics, solution
        )
        generated_at = self.clock().isoformat()
        sections_used = sorted(used)

        artifact = Artifact(
            id=f"artifact-{self.id_factory()}",
            kind="persona",
            version="1.0.0",
            label="Persona Bundle",
            data={
                "personas": personas,
                "source": {
                    "artifact_id": source.id,
                    "artifact_kind": source.kind,
                    "run_id": request.run.run_id,
                    "sections_used": sections_used,
                },
                "generated_at": generated_at,
                "notes": (
                    None
                    if target_users
                    else "Personas inferred from broader context due to missing target users section."
                ),
            },
            metadata={
                "created_at": generated_at,
                "created_by": request.run.request.created_by,
                "tags": ["persona", "derived"],
                "confidence": source.metadata.get("confidence", 0.6),
                "extras": {
                    "source_artifact_id": source.id,
                    "source_artifact_kind": source.kind,
                    "persona_count": len(personas),
                    "sections_used": sections_used,
                },
            },
        )
        return SubagentOutput(
            artifact=artifact,
            metadata={
                "persona_count": len(personas),
                "sections_used": sections_used,
                "source_artifact_id": source.id,
            },
        )


def create_subagent(manifest: SubagentManifest) -> PersonaBuilder:
    return PersonaBuilder(SubagentMetadata.from_manifest(manifest))
