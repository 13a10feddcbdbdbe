"""
Verification aggregation.
"""

from typing import List, Optional, Sequence, Tuple

from ..models import VerificationIssue, VerificationResult, VerificationStatus


def aggregate_verification(
    results: Sequence[Tuple[str, VerificationResult]],
) -> Optional[VerificationResult]:
    """Combine named verifier results into one.

    The worst status wins (fail > needs-review > pass), issue lists are
    merged in verifier order and each verifier's status is recorded under
    metadata["verifiers"].

    Returns:
        None when there are no results
    """
    if not results:
        return None

    status = VerificationStatus.PASS
    issues: List[VerificationIssue] = []
    statuses = {}
    for name, result in results:
        if result.status.severity > status.severity:
            status = result.status
        issues.extend(result.issues)
        statuses[name] = result.status.value

    return VerificationResult(
        status=status,
        artifact=results[-1][1].artifact,
        issues=issues,
        metadata={"verifiers": statuses},
    )
