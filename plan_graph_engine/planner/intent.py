"""
Intent resolution.

Turns a request into an ArtifactIntent: the target artifact kind plus the
ordered chain of kinds needed to reach it. Classification failures degrade to
a needs-clarification intent instead of raising.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from ..invocation import ModelInvocationService, ToolDefinition
from ..models import (
    ArtifactIntent,
    ArtifactTransition,
    IntentStatus,
    RunContext,
)
from ..subagents import SubagentRegistry

logger = logging.getLogger(__name__)

PROMPT_KIND = "prompt"


@dataclass
class ClassificationRequest:
    message: str
    available_artifacts: List[str]
    requested_artifacts: List[str] = field(default_factory=list)
    run_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class Classification:
    target_artifact: str
    chain: List[str] = field(default_factory=list)
    confidence: float = 0.5
    probabilities: Dict[str, float] = field(default_factory=dict)
    rationale: Optional[str] = None
    guidance: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class IntentClassifier(ABC):
    """Maps a user message to a target artifact and a chain of kinds."""

    @abstractmethod
    async def classify(self, request: ClassificationRequest) -> Classification:
        pass


def _bound(value: Any, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, number))


def normalize_classification(
    target: Optional[str],
    chain: List[str],
    confidence: Any,
    probabilities: Dict[str, Any],
    available: List[str],
) -> Classification:
    """Snap kinds onto the available set, dedupe the chain and bound scores."""

    def normalize_kind(value: str) -> str:
        lower = value.strip().lower()
        if not lower:
            return "prd"
        for artifact in available:
            if artifact.lower() == lower:
                return artifact
        return value.strip()

    normalized_chain: List[str] = []
    for kind in chain:
        if not isinstance(kind, str):
            continue
        normalized = normalize_kind(kind)
        if normalized not in normalized_chain:
            normalized_chain.append(normalized)

    normalized_target = normalize_kind(target or (available[0] if available else "prd"))
    if normalized_target not in normalized_chain:
        normalized_chain.append(normalized_target)

    bounded_confidence = _bound(confidence, default=0.5)
    bounded_probabilities = {
        normalize_kind(key): _bound(value) for key, value in (probabilities or {}).items()
    }
    bounded_probabilities.setdefault(normalized_target, bounded_confidence)

    return Classification(
        target_artifact=normalized_target,
        chain=normalized_chain,
        confidence=bounded_confidence,
        probabilities=bounded_probabilities,
    )


class KeywordIntentClassifier(IntentClassifier):
    """Deterministic classifier matching artifact names and synonyms.

    Used when no model credentials are configured.
    """

    SYNONYMS = {
        "research": ["research", "competitor", "competitive analysis", "market intelligence"],
        "prd": ["prd", "requirements", "product requirements"],
        "persona": ["persona", "personas", "user profile", "target audience"],
        "story-map": ["story map", "story-map", "storymap", "user stories", "epics"],
    }
    # Pipeline order used to sequence matched kinds
    KIND_ORDER = ["research", "prd", "persona", "story-map"]
    PRD_DERIVED = ("persona", "story-map")

    def _matches(self, message: str, phrase: str) -> bool:
        return re.search(rf"\b{re.escape(phrase)}\b", message) is not None

    def _order(self, kind: str) -> int:
        if kind in self.KIND_ORDER:
            return self.KIND_ORDER.index(kind)
        return len(self.KIND_ORDER)

    async def classify(self, request: ClassificationRequest) -> Classification:
        message = request.message.lower()
        available = set(request.available_artifacts)

        matched = [
            kind
            for kind, phrases in self.SYNONYMS.items()
            if kind in available and any(self._matches(message, p) for p in phrases)
        ]
        requested = [k for k in request.requested_artifacts if k != PROMPT_KIND]
        fallback = request.metadata.get("artifact_kind")

        chain = list(dict.fromkeys(requested + matched))
        if not chain and isinstance(fallback, str) and fallback:
            chain = [fallback]

        # Personas and story maps are derived from a PRD unless one is already held
        existing = set(request.metadata.get("existing_artifacts") or [])
        if (
            any(kind in self.PRD_DERIVED for kind in chain)
            and "prd" in available
            and "prd" not in existing
            and "prd" not in chain
        ):
            chain.append("prd")
        chain.sort(key=self._order)

        if not chain:
            return Classification(target_artifact="", chain=[], confidence=0.0)

        confidence = 0.9 if matched else 0.5
        result = normalize_classification(
            target=chain[-1],
            chain=chain,
            confidence=confidence,
            probabilities={kind: confidence for kind in chain},
            available=request.available_artifacts,
        )
        result.rationale = (
            f"Matched keywords for {', '.join(matched)}"
            if matched
            else "No artifact keywords found; using the requested artifact"
        )
        return result


CLASSIFY_TOOL = ToolDefinition(
    name="classify_intent",
    description="Report which artifact to deliver and the ordered chain of artifacts to create.",
    parameters={
        "type": "object",
        "properties": {
            "target_artifact": {"type": "string"},
            "chain": {"type": "array", "items": {"type": "string"}, "minItems": 1},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
            "probabilities": {"type": "object", "additionalProperties": {"type": "number"}},
            "rationale": {"type": "string"},
            "guidance": {"type": "string"},
        },
        "required": ["target_artifact", "chain", "confidence"],
    },
)

CLASSIFY_SYSTEM_PROMPT = (
    "You classify product-definition requests. Infer which artifacts to create "
    "(PRD, personas, story map, research) and propose the smallest chain that "
    "satisfies the request, reusing existing artifacts whenever possible. Never "
    "invent artifact kinds outside the available list."
)


class ModelIntentClassifier(IntentClassifier):
    """Classifier backed by the model invocation service."""

    def __init__(
        self,
        invocation: ModelInvocationService,
        model: str,
        temperature: float = 0.2,
        max_output_tokens: int = 1200,
    ):
        self.invocation = invocation
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    def _prompt(self, request: ClassificationRequest) -> str:
        requested = ", ".join(request.requested_artifacts) or "none"
        existing = ", ".join(request.metadata.get("existing_artifacts") or []) or "none"
        return (
            f"Available artifact types: {', '.join(request.available_artifacts)}.\n"
            f"Existing artifacts in context: {existing}.\n"
            f"Explicit artifact selections: {requested}.\n\n"
            f'User message:\n"""\n{request.message}\n"""\n\n'
            "When personas or story maps are requested, include prd before them "
            "unless a PRD already exists."
        )

    async def classify(self, request: ClassificationRequest) -> Classification:
        result = await self.invocation.invoke(
            model=self.model,
            system=CLASSIFY_SYSTEM_PROMPT,
            prompt=self._prompt(request),
            tool=CLASSIFY_TOOL,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            cancel_event=request.cancel_event,
        )
        call = next(
            (c for c in result.tool_calls if c.name == CLASSIFY_TOOL.name), None
        )
        if call is None:
            raise ValueError("Intent classifier returned no classification")

        raw = call.arguments
        chain = raw.get("chain") if isinstance(raw.get("chain"), list) else []
        classification = normalize_classification(
            target=raw.get("target_artifact"),
            chain=chain,
            confidence=raw.get("confidence"),
            probabilities=raw.get("probabilities") or {},
            available=request.available_artifacts,
        )
        classification.rationale = raw.get("rationale")
        classification.guidance = raw.get("guidance")
        if result.usage:
            classification.metadata["usage"] = result.usage

        logger.debug(
            f"Classified run {request.run_id}: target={classification.target_artifact} "
            f"chain={classification.chain} confidence={classification.confidence}"
        )
        return classification


class IntentResolver:
    """Resolves and caches the artifact intent of a run."""

    def __init__(
        self,
        classifier: IntentClassifier,
        registry: Optional[SubagentRegistry] = None,
        core_kinds: Iterable[str] = ("prd",),
    ):
        self.classifier = classifier
        self.registry = registry
        # Kinds the planner builds from skills rather than subagents
        self.core_kinds = list(core_kinds)

    async def resolve(self, context: RunContext) -> ArtifactIntent:
        """Return the run's intent, classifying the request on first call.

        Never raises: classifier errors or empty results yield a
        needs-clarification intent carrying a reason code.
        """
        existing = self._existing_intent(context)
        if existing is not None:
            return existing

        request = self._classification_request(context)
        try:
            classification = await self.classifier.classify(request)
        except Exception as e:
            logger.error(f"Failed to classify intent for run {context.run_id}: {e}")
            return self._cache(context, self._clarification(context, "classification-error"))

        intent = self._from_classification(context, classification)
        if intent is None:
            intent = self._clarification(context, "empty-classification")
        return self._cache(context, intent)

    def _matches_request(self, intent: ArtifactIntent, artifact_kind: str) -> bool:
        return (
            intent.target_artifact == artifact_kind
            or artifact_kind in intent.requested_artifacts
        )

    def _existing_intent(self, context: RunContext) -> Optional[ArtifactIntent]:
        kind = context.request.artifact_kind

        cached = context.state.cached_intent
        if cached is not None and self._matches_request(cached, kind):
            return cached

        supplied = context.request.intent
        if supplied is not None and self._matches_request(supplied, kind):
            return self._cache(context, supplied)

        raw = context.request.attributes.get("intent")
        if isinstance(raw, dict):
            try:
                parsed = ArtifactIntent.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Ignoring malformed intent attribute: {e}")
                return None
            if self._matches_request(parsed, kind):
                return self._cache(context, parsed)

        return None

    def _cache(self, context: RunContext, intent: ArtifactIntent) -> ArtifactIntent:
        context.state.cached_intent = intent
        return intent

    def available_artifacts(self, context: RunContext) -> List[str]:
        """Kinds reachable in this run: held, requested, built by skills, or creatable."""
        kinds: List[str] = list(context.state.existing_artifacts)
        if context.request.intent is not None:
            kinds.extend(context.request.intent.requested_artifacts)
        kinds.append(context.request.artifact_kind)
        kinds.extend(self.core_kinds)
        if self.registry is not None:
            kinds.extend(self.registry.creatable_kinds())
        kinds = list(dict.fromkeys(k for k in kinds if k))
        return kinds or [PROMPT_KIND]

    def _message(self, context: RunContext) -> str:
        if context.request.message:
            return context.request.message
        extra = context.request.input.get("context")
        history = extra.get("conversation_history") if isinstance(extra, dict) else None
        if isinstance(history, list):
            return "\n".join(
                str(entry.get("content", "")) for entry in history if isinstance(entry, dict)
            )
        return ""

    def _classification_request(self, context: RunContext) -> ClassificationRequest:
        requested = (
            list(context.request.intent.requested_artifacts)
            if context.request.intent is not None
            else []
        )
        return ClassificationRequest(
            message=self._message(context),
            available_artifacts=self.available_artifacts(context),
            requested_artifacts=requested,
            run_id=context.run_id,
            metadata={
                "artifact_kind": context.request.artifact_kind,
                "existing_artifacts": list(context.state.existing_artifacts),
            },
            cancel_event=context.cancel_event,
        )

    def _from_classification(
        self, context: RunContext, classification: Classification
    ) -> Optional[ArtifactIntent]:
        target = classification.target_artifact or context.request.artifact_kind
        chain = list(dict.fromkeys(kind for kind in classification.chain if kind))
        while chain and chain[0] == PROMPT_KIND:
            chain.pop(0)
        if not target or not chain:
            return None

        existing = set(context.state.existing_artifacts)
        chain = [kind for kind in chain if kind == target or kind not in existing]
        if target not in chain:
            chain.append(target)

        transitions = [
            ArtifactTransition(
                from_artifact=chain[index - 1] if index > 0 else None,
                to_artifact=kind,
            )
            for index, kind in enumerate(chain)
        ]

        return ArtifactIntent(
            source="resolver",
            requested_artifacts=chain,
            target_artifact=target,
            transitions=transitions,
            confidence=_bound(classification.confidence),
            status=IntentStatus.READY,
            metadata={
                "probabilities": classification.probabilities,
                "rationale": classification.rationale,
                "guidance": classification.guidance,
                **classification.metadata,
            },
        )

    def _clarification(self, context: RunContext, reason: str) -> ArtifactIntent:
        return ArtifactIntent(
            source="resolver",
            requested_artifacts=[],
            target_artifact=context.request.artifact_kind or "clarification",
            transitions=[],
            confidence=0.0,
            status=IntentStatus.NEEDS_CLARIFICATION,
            metadata={"reason": reason},
        )
