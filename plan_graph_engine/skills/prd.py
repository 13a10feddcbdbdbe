"""
Deterministic PRD skill runner.

Implements the prd.core skills without model calls: a clarification check,
context analysis, one writer per PRD section and the final assembly. Section
writers draft from the request message and the analysis output.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, List

from ..errors import StepExecutionError
from ..models import Artifact, SkillRequest, SkillResult, SkillRunner
from ..planner.catalog import PRD_SECTIONS

logger = logging.getLogger(__name__)

MIN_MESSAGE_WORDS = 4

STOPWORDS = {
    "about", "after", "also", "and", "build", "create", "draft", "for", "from",
    "have", "into", "make", "need", "needs", "please", "that", "the", "their",
    "them", "then", "they", "this", "want", "wants", "with", "write", "would",
}


def _words(text: str) -> List[str]:
    return re.findall(r"[A-Za-z][A-Za-z0-9'-]*", text)


def extract_product(message: str) -> str:
    """Best-effort product phrase: the text after the first "for", else the message."""
    match = re.search(r"\bfor\s+(?:an?\s+|the\s+)?([^.,;]+)", message, re.IGNORECASE)
    product = match.group(1) if match else message
    product = re.sub(r"\s+", " ", product).strip(" .")
    return product or "the product"


def extract_themes(message: str, limit: int = 5) -> List[str]:
    themes = []
    for word in _words(message):
        lower = word.lower()
        if len(lower) < 4 or lower in STOPWORDS or lower in ("prd", "personas", "persona"):
            continue
        if lower not in themes:
            themes.append(lower)
    return themes[:limit]


class PrdSkillRunner(SkillRunner):
    """Runs prd.* skills from the request message."""

    def __init__(self) -> None:
        self._handlers: Dict[str, Callable[[SkillRequest], SkillResult]] = {
            "prd.check-clarification": self.check_clarification,
            "prd.analyze-context": self.analyze_context,
            "prd.assemble-prd": self.assemble_prd,
        }
        for section in PRD_SECTIONS:
            self._handlers[f"prd.write-{section}"] = self.write_section

    async def invoke(self, request: SkillRequest) -> SkillResult:
        handler = self._handlers.get(request.skill_id)
        if handler is None:
            raise StepExecutionError(
                request.plan_node.id, f'No handler for skill "{request.skill_id}"'
            )
        return handler(request)

    def _message(self, request: SkillRequest) -> str:
        if isinstance(request.input, dict):
            message = request.input.get("message")
            if isinstance(message, str):
                return message
        return request.context.run.request.message

    def _analysis(self, request: SkillRequest) -> Dict[str, Any]:
        analysis = request.context.outputs.get("analyze-context")
        if isinstance(analysis, dict):
            return analysis
        message = self._message(request)
        return {"product": extract_product(message), "themes": extract_themes(message)}

    def check_clarification(self, request: SkillRequest) -> SkillResult:
        message = self._message(request).strip()
        if len(_words(message)) >= MIN_MESSAGE_WORDS:
            return SkillResult(output={"needs_clarification": False}, confidence=0.9)

        questions = [
            "What product or feature should the document describe?",
            "Who are the primary users and what problem do they have?",
            "What outcome would make this product a success?",
        ]
        return SkillResult(
            output={"needs_clarification": True, "questions": questions},
            metadata={
                "run_status": "awaiting-input",
                "clarification": {
                    "reason": "insufficient-detail",
                    "questions": questions,
                    "message": message,
                },
            },
            confidence=0.4,
        )

    def analyze_context(self, request: SkillRequest) -> SkillResult:
        message = self._message(request)
        extra = request.input.get("context") if isinstance(request.input, dict) else None
        extra = extra if isinstance(extra, dict) else {}
        constraints = [c for c in extra.get("constraints", []) if isinstance(c, str)]

        return SkillResult(
            output={
                "summary": message.strip(),
                "product": extract_product(message),
                "themes": extract_themes(message),
                "target_users": [u for u in extra.get("target_users", []) if isinstance(u, str)],
                "constraints": constraints,
            },
            confidence=0.7,
        )

    def write_section(self, request: SkillRequest) -> SkillResult:
        section = request.plan_node.task.section or request.skill_id.split("write-", 1)[-1]
        analysis = self._analysis(request)
        product = analysis.get("product") or "the product"
        themes = analysis.get("themes") or [product]

        if section == "targetUsers":
            content: Any = analysis.get("target_users") or [
                f"Everyday users of {product}: wants to stay on top of {themes[0]} without extra effort",
                f"Power users of {product}: needs to track {themes[-1]} across devices",
            ]
        elif section == "solution":
            content = {
                "solutionOverview": f"A focused {product} that covers {', '.join(themes)}.",
                "approach": "Ship a minimal core workflow first, then iterate on feedback.",
            }
        elif section == "keyFeatures":
            content = [f"{theme.capitalize()} workflow" for theme in themes]
        elif section == "successMetrics":
            content = [
                {"metric": "Weekly active users", "target": "1,000", "timeline": "3 months"},
                {"metric": f"{themes[0].capitalize()} task completion rate", "target": "80%", "timeline": "6 months"},
            ]
        elif section == "constraints":
            content = analysis.get("constraints") or [
                "Launch with a small team and limited budget",
                "Comply with applicable data protection rules",
            ]
        else:
            raise StepExecutionError(request.plan_node.id, f"Unknown PRD section: {section}")

        return SkillResult(output={"section": section, "content": content}, confidence=0.7)

    def assemble_prd(self, request: SkillRequest) -> SkillResult:
        sections: Dict[str, Any] = {}
        for output in request.context.outputs.values():
            if isinstance(output, dict) and output.get("section") in PRD_SECTIONS:
                sections[output["section"]] = output["content"]

        run = request.context.run
        artifact = Artifact(
            id=f"artifact-{run.run_id}",
            kind="prd",
            version="1.0.0",
            label="Product Requirements Document",
            data={
                "sections": sections,
                "metadata": {
                    "product": self._analysis(request).get("product"),
                    "section_order": [s for s in PRD_SECTIONS if s in sections],
                },
            },
            metadata={
                "created_by": run.request.created_by,
                "tags": ["prd"],
                "confidence": 0.7,
            },
        )
        logger.debug(f"Assembled PRD for run {run.run_id} with {len(sections)} sections")
        return SkillResult(
            output={"sections": sections},
            metadata={"artifact": artifact},
            confidence=0.7,
        )
