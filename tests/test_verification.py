"""Tests for the PRD verifier and verification aggregation."""

import pytest

from plan_graph_engine.models import (
    Artifact,
    RunRequest,
    VerificationIssue,
    VerificationResult,
    VerificationStatus,
)
from plan_graph_engine.verification import PrdVerifier, aggregate_verification


@pytest.fixture
def run(make_run_context):
    return make_run_context(RunRequest(artifact_kind="prd", input={"message": "Write a PRD"}))


def result(status: VerificationStatus, artifact: Artifact, *issue_ids: str) -> VerificationResult:
    return VerificationResult(
        status=status,
        artifact=artifact,
        issues=[VerificationIssue(id=issue_id, message=issue_id) for issue_id in issue_ids],
    )


class TestPrdVerifier:
    """Tests for PrdVerifier."""

    @pytest.mark.asyncio
    async def test_complete_prd_passes(self, run, prd_artifact):
        verification = await PrdVerifier().verify(prd_artifact, run)

        assert verification.status == VerificationStatus.PASS
        assert verification.issues == []
        assert verification.metadata["present_sections"] == sorted(prd_artifact.data["sections"])

    @pytest.mark.asyncio
    async def test_missing_sections_need_review(self, run):
        artifact = Artifact(
            id="artifact-prd",
            kind="prd",
            data={"sections": {"targetUsers": ["Parents"], "keyFeatures": []}},
        )

        verification = await PrdVerifier().verify(artifact, run)

        assert verification.status == VerificationStatus.NEEDS_REVIEW
        missing = [issue.metadata["section"] for issue in verification.issues]
        assert missing == ["solution", "keyFeatures", "successMetrics", "constraints"]
        assert all(issue.id == "prd.missing_sections" for issue in verification.issues)
        assert verification.issues[0].step_id == "write-solution"

    @pytest.mark.asyncio
    async def test_empty_prd_fails(self, run):
        artifact = Artifact(id="artifact-prd", kind="prd", data={"sections": {}})

        verification = await PrdVerifier().verify(artifact, run)

        assert verification.status == VerificationStatus.FAIL
        assert [issue.id for issue in verification.issues] == ["prd.empty"]

    @pytest.mark.asyncio
    async def test_other_kinds_are_skipped(self, run):
        artifact = Artifact(id="artifact-persona", kind="persona", data={"personas": []})

        verification = await PrdVerifier().verify(artifact, run)

        assert verification.status == VerificationStatus.PASS
        assert verification.metadata["skipped"] is True

    @pytest.mark.asyncio
    async def test_custom_required_sections(self, run):
        artifact = Artifact(id="artifact-prd", kind="prd", data={"sections": {"solution": "An app"}})

        verification = await PrdVerifier(required_sections=["solution"]).verify(artifact, run)

        assert verification.status == VerificationStatus.PASS


class TestAggregateVerification:
    """Tests for aggregate_verification."""

    def test_no_results(self):
        assert aggregate_verification([]) is None

    def test_worst_status_wins(self, prd_artifact):
        aggregated = aggregate_verification(
            [
                ("structure", result(VerificationStatus.PASS, prd_artifact)),
                ("tone", result(VerificationStatus.NEEDS_REVIEW, prd_artifact, "tone.flat")),
                ("links", result(VerificationStatus.PASS, prd_artifact, "links.info")),
            ]
        )

        assert aggregated.status == VerificationStatus.NEEDS_REVIEW
        assert [issue.id for issue in aggregated.issues] == ["tone.flat", "links.info"]
        assert aggregated.metadata["verifiers"] == {
            "structure": "pass",
            "tone": "needs-review",
            "links": "pass",
        }

    def test_fail_outranks_needs_review(self, prd_artifact):
        aggregated = aggregate_verification(
            [
                ("a", result(VerificationStatus.FAIL, prd_artifact)),
                ("b", result(VerificationStatus.NEEDS_REVIEW, prd_artifact)),
            ]
        )

        assert aggregated.status == VerificationStatus.FAIL
