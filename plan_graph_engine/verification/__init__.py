"""Artifact verifiers and result aggregation."""

from .aggregate import aggregate_verification
from .prd import PrdVerifier

__all__ = ["PrdVerifier", "aggregate_verification"]
