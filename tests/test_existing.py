"""Tests for caller-supplied artifact extraction."""

from plan_graph_engine.models import Artifact, RunRequest
from plan_graph_engine.planner import extract_existing_artifacts
from plan_graph_engine.planner.existing import coerce_artifact


class TestExtractExistingArtifacts:
    """Tests for extract_existing_artifacts."""

    def test_reads_context_keys(self):
        request = RunRequest(
            artifact_kind="persona",
            input={
                "context": {
                    "existing_prd": {"id": "prd-1", "data": {"sections": {}}},
                    "existing_personas": [{"personas": []}, {"personas": [{"id": "p"}]}],
                }
            },
        )

        found = extract_existing_artifacts(request)

        assert [a.id for a in found["prd"]] == ["prd-1"]
        assert [a.id for a in found["persona"]] == ["existing-persona-0", "existing-persona-1"]
        assert found["persona"][1].data == {"personas": [{"id": "p"}]}

    def test_reads_attribute_artifacts(self):
        held = Artifact(id="map-1", kind="story-map")
        request = RunRequest(
            artifact_kind="prd",
            attributes={"artifacts": [held, {"kind": "research", "data": {"notes": []}}, {"no": "kind"}]},
        )

        found = extract_existing_artifacts(request)

        assert found["story-map"] == [held]
        assert found["research"][0].id == "existing-research-0"
        assert set(found) == {"story-map", "research"}

    def test_nothing_supplied(self):
        assert extract_existing_artifacts(RunRequest(artifact_kind="prd")) == {}


class TestCoerceArtifact:
    """Tests for coerce_artifact."""

    def test_blank_fields_get_defaults(self):
        artifact = coerce_artifact({"id": " ", "version": "", "data": [1]}, "prd", 2)

        assert artifact.id == "existing-prd-2"
        assert artifact.version == "1.0.0"
        assert artifact.data == [1]

    def test_non_dict_payload_becomes_data(self):
        artifact = coerce_artifact("plain text", "brief")

        assert artifact.kind == "brief"
        assert artifact.data == "plain text"
