"""
PRD verifier.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List, Optional

from ..models import (
    Artifact,
    VerificationIssue,
    VerificationResult,
    VerificationStatus,
    Verifier,
)
from ..planner.catalog import PRD_SECTIONS

if TYPE_CHECKING:
    from ..models import RunContext


class PrdVerifier(Verifier):
    """Checks that a PRD artifact carries every required section."""

    def __init__(self, required_sections: Optional[Iterable[str]] = None):
        self.required_sections = list(required_sections or PRD_SECTIONS)

    async def verify(
        self, artifact: Artifact, context: "RunContext"
    ) -> VerificationResult:
        if artifact.kind != "prd":
            return VerificationResult(
                status=VerificationStatus.PASS,
                artifact=artifact,
                metadata={"skipped": True, "reason": f"not a prd ({artifact.kind})"},
            )

        data = artifact.data if isinstance(artifact.data, dict) else {}
        sections = data.get("sections") if isinstance(data.get("sections"), dict) else {}
        issues: List[VerificationIssue] = []

        if not sections:
            issues.append(
                VerificationIssue(
                    id="prd.empty",
                    message="PRD has no sections",
                    severity="error",
                    suggested_action="Re-run the section writers",
                )
            )
        else:
            for section in self.required_sections:
                if sections.get(section):
                    continue
                issues.append(
                    VerificationIssue(
                        id="prd.missing_sections",
                        message=f"PRD is missing the {section} section",
                        severity="warning",
                        step_id=f"write-{section}",
                        suggested_action=f"Add the {section} section",
                        metadata={"section": section},
                    )
                )

        if any(issue.severity == "error" for issue in issues):
            status = VerificationStatus.FAIL
        elif any(issue.severity == "warning" for issue in issues):
            status = VerificationStatus.NEEDS_REVIEW
        else:
            status = VerificationStatus.PASS

        return VerificationResult(
            status=status,
            artifact=artifact,
            issues=issues,
            metadata={
                "verifier": "prd",
                "checked_sections": self.required_sections,
                "present_sections": sorted(sections),
            },
        )
