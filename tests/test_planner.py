"""Tests for plan construction."""

import pytest

from plan_graph_engine.errors import ConfigurationError, MissingSkillError, PlanConstructionError
from plan_graph_engine.models import NodeKind, RunRequest, SkillTask, PlanNode
from plan_graph_engine.planner import (
    CatalogSkill,
    Classification,
    IntentClassifier,
    IntentResolver,
    KeywordIntentClassifier,
    Planner,
    SkillCatalog,
    SkillPack,
    normalize_section,
    subagent_node_id,
)
from plan_graph_engine.planner.planner import CoreSegment
from plan_graph_engine.subagents import default_registry

from conftest import FIXED_NOW

PRD_NODES = [
    "clarification-check",
    "analyze-context",
    "write-targetUsers",
    "write-solution",
    "write-keyFeatures",
    "write-successMetrics",
    "write-constraints",
    "assemble-prd",
]


class FixedClassifier(IntentClassifier):
    def __init__(self, target, chain):
        self.result = Classification(target_artifact=target, chain=chain, confidence=0.8)

    async def classify(self, request):
        return self.result


class FailingClassifier(IntentClassifier):
    async def classify(self, request):
        raise RuntimeError("classifier unavailable")


def make_planner(classifier=None, registry=None, catalog=None) -> Planner:
    registry = registry if registry is not None else default_registry()
    return Planner(
        IntentResolver(classifier or KeywordIntentClassifier(), registry),
        registry=registry,
        catalog=catalog,
        clock=lambda: FIXED_NOW,
    )


def request_for(message, kind="prd", **input_extra) -> RunRequest:
    return RunRequest(artifact_kind=kind, input={"message": message, **input_extra})


class TestPrdPlans:
    """Tests for the PRD core segment."""

    @pytest.mark.asyncio
    async def test_builds_full_prd_plan(self, make_run_context):
        context = make_run_context(request_for("Write a PRD for a habit tracker"))

        plan = await make_planner().create_plan(context)

        assert list(plan.nodes) == PRD_NODES
        assert plan.id == "plan-run-test"
        assert plan.entry_id == "clarification-check"
        assert plan.artifact_kind == "prd"
        assert plan.version == "3.0.0"
        assert plan.created_at == FIXED_NOW
        assert plan.nodes["assemble-prd"].depends_on == PRD_NODES[2:7]
        assert all(node.kind == NodeKind.SKILL for node in plan.nodes.values())

    @pytest.mark.asyncio
    async def test_plan_metadata(self, make_run_context):
        context = make_run_context(request_for("Write a PRD for a habit tracker"))

        plan = await make_planner().create_plan(context)

        metadata = plan.metadata
        assert metadata["planner"] == "intelligent"
        assert metadata["requested_artifact_kind"] == "prd"
        assert metadata["transition_path"] == ["prd"]
        assert metadata["terminal_node_id"] == "assemble-prd"
        assert metadata["skill_packs"] == ["prd.core"]
        assert metadata["skills"]["sequence"][0] == "prd.check-clarification"
        assert metadata["skills"]["sequence"][-1] == "prd.assemble-prd"
        assert metadata["intent"]["target_artifact"] == "prd"
        assert metadata["subagents"] == []

    @pytest.mark.asyncio
    async def test_target_sections_limit_writers(self, make_run_context):
        context = make_run_context(
            request_for(
                "Write a PRD for a habit tracker",
                target_sections=["success_metrics", "Key Features", "unknown"],
            )
        )

        plan = await make_planner().create_plan(context)

        assert "write-keyFeatures" in plan.nodes
        assert "write-successMetrics" in plan.nodes
        assert "write-solution" not in plan.nodes
        assert plan.nodes["assemble-prd"].depends_on == ["write-keyFeatures", "write-successMetrics"]
        assert plan.metadata["requested_sections"] == ["keyFeatures", "successMetrics"]

    @pytest.mark.asyncio
    async def test_section_tasks_carry_section(self, make_run_context):
        plan = await make_planner().create_plan(
            make_run_context(request_for("Write a PRD for a habit tracker"))
        )

        assert plan.nodes["write-solution"].task.section == "solution"
        assert plan.nodes["write-solution"].skill_id == "prd.write-solution"


class TestTransitionPlans:
    """Tests for subagent transition chains."""

    @pytest.mark.asyncio
    async def test_persona_follows_prd(self, make_run_context):
        context = make_run_context(request_for("Create personas for a habit tracker", "persona"))

        plan = await make_planner().create_plan(context)

        node = plan.nodes["subagent-persona.builder"]
        assert list(plan.nodes)[:8] == PRD_NODES
        assert node.kind == NodeKind.SUBAGENT
        assert node.depends_on == ["assemble-prd"]
        assert node.source.artifact_kind == "prd"
        assert node.source.from_node == "assemble-prd"
        assert node.promote_result is True
        assert node.inputs == {"from_artifact": "prd"}
        assert plan.artifact_kind == "persona"
        assert plan.metadata["transition_path"] == ["prd", "persona"]
        assert plan.metadata["terminal_node_id"] == "subagent-persona.builder"
        assert plan.metadata["subagents"][0]["id"] == "persona.builder"

    @pytest.mark.asyncio
    async def test_prd_request_keeps_prd_primary(self, make_run_context):
        context = make_run_context(request_for("Create a PRD for a budgeting app with personas"))

        plan = await make_planner().create_plan(context)

        persona = plan.nodes["subagent-persona.builder"]
        assert plan.artifact_kind == "prd"
        assert plan.entry_id == "clarification-check"
        assert persona.depends_on == ["assemble-prd"]
        assert persona.promote_result is False
        assert plan.metadata["requested_artifact_kind"] == "prd"
        assert plan.metadata["transition_path"] == ["prd", "persona"]

    @pytest.mark.asyncio
    async def test_story_map_chain(self, make_run_context):
        context = make_run_context(
            request_for("Draft a PRD, personas and a story map for a habit tracker", "story-map")
        )

        plan = await make_planner().create_plan(context)

        persona = plan.nodes["subagent-persona.builder"]
        story_map = plan.nodes["subagent-storymap.builder"]
        assert persona.promote_result is False
        assert story_map.depends_on == ["subagent-persona.builder"]
        assert story_map.source.artifact_kind == "persona"
        assert story_map.promote_result is True
        assert plan.metadata["transition_path"] == ["prd", "persona", "story-map"]

    @pytest.mark.asyncio
    async def test_existing_prd_skips_core(self, make_run_context):
        context = make_run_context(
            request_for("Create personas for this product", "persona"), existing=["prd"]
        )

        plan = await make_planner().create_plan(context)

        assert list(plan.nodes) == ["subagent-persona.builder"]
        assert plan.entry_id == "subagent-persona.builder"
        node = plan.nodes["subagent-persona.builder"]
        assert node.depends_on == []
        assert node.source.artifact_kind == "prd"
        assert plan.metadata["existing_artifacts"] == ["prd"]

    @pytest.mark.asyncio
    async def test_prompt_only_chain(self, make_run_context):
        registry = default_registry(["persona.builder"])
        planner = make_planner(FixedClassifier("persona", ["persona"]), registry=registry)
        planner.core_builders.pop("prd")

        plan = await planner.create_plan(make_run_context(request_for("personas", "persona")))

        node = plan.nodes["subagent-persona.builder"]
        assert node.source.artifact_kind == "prompt"
        assert plan.metadata["transition_path"] == ["prompt", "persona"]

    @pytest.mark.asyncio
    async def test_unreachable_target_raises(self, make_run_context):
        planner = make_planner(FixedClassifier("roadmap", ["roadmap"]))

        with pytest.raises(PlanConstructionError, match="could not build a runnable plan"):
            await planner.create_plan(make_run_context(request_for("a roadmap", "roadmap")))


class TestClarificationPlans:
    """Tests for clarification-only plans."""

    @pytest.mark.asyncio
    async def test_classifier_failure_yields_clarification_plan(self, make_run_context):
        context = make_run_context(request_for("Write a PRD"))

        plan = await make_planner(FailingClassifier()).create_plan(context)

        assert list(plan.nodes) == ["clarification-check"]
        assert plan.entry_id == "clarification-check"
        assert plan.metadata["intent"]["status"] == "needs-clarification"
        assert context.state.cached_intent.reason == "classification-error"


class TestCatalogRequirements:
    """Tests for skill pack checks during planning."""

    @pytest.mark.asyncio
    async def test_missing_skill_raises(self, make_run_context):
        pack = SkillPack(
            id="partial",
            version="1.0.0",
            label="Partial",
            skills=[
                CatalogSkill(
                    id="prd.check-clarification",
                    label="Clarify",
                    version="1.0.0",
                    category="analyzer",
                    pack_id="partial",
                )
            ],
        )
        catalog = SkillCatalog(["partial"], packs={"partial": lambda: pack})

        with pytest.raises(MissingSkillError) as exc_info:
            await make_planner(catalog=catalog).create_plan(
                make_run_context(request_for("Write a PRD for a habit tracker"))
            )
        assert exc_info.value.skill_id == "prd.analyze-context"

    @pytest.mark.asyncio
    async def test_unknown_pack_raises(self, make_run_context):
        catalog = SkillCatalog(["prd.core", "ghost.pack"])

        with pytest.raises(ConfigurationError, match="ghost.pack"):
            await make_planner(catalog=catalog).create_plan(
                make_run_context(request_for("Write a PRD for a habit tracker"))
            )


class TestPlannerHelpers:
    """Tests for planner helpers and extension points."""

    def test_normalize_section(self):
        assert normalize_section("Success_Metrics") == "successmetrics"
        assert normalize_section("key-features") == "keyfeatures"

    def test_subagent_node_id(self):
        assert subagent_node_id("persona.builder") == "subagent-persona.builder"
        assert subagent_node_id("team/agent v2") == "subagent-team-agent-v2"

    def test_resolve_requested_sections_falls_back(self):
        planner = make_planner()
        available = ["targetUsers", "solution"]

        assert planner.resolve_requested_sections([], available) == available
        assert planner.resolve_requested_sections(["nothing"], available) == available
        assert planner.resolve_requested_sections(["SOLUTION"], available) == ["solution"]

    @pytest.mark.asyncio
    async def test_register_core_builder(self, make_run_context):
        async def build_brief(context, catalog):
            node = PlanNode(id="write-brief", label="Write brief", task=SkillTask(skill_id="brief.write"))
            return CoreSegment(
                nodes={node.id: node},
                entry_id=node.id,
                terminal_node_id=node.id,
                intermediate_artifacts=["brief"],
            )

        planner = make_planner(FixedClassifier("brief", ["brief"]))
        planner.register_core_builder("brief", build_brief)

        plan = await planner.create_plan(make_run_context(request_for("a brief", "brief")))

        assert list(plan.nodes) == ["write-brief"]
        assert plan.artifact_kind == "brief"
        assert plan.metadata["intermediate_artifacts"] == ["brief"]

    @pytest.mark.asyncio
    async def test_refine_plan_returns_plan(self, make_run_context):
        context = make_run_context(request_for("Write a PRD for a habit tracker"))
        planner = make_planner()
        plan = await planner.create_plan(context)

        assert await planner.refine_plan(plan, context) is plan
