"""
Common primitives used across the engine's records.
"""

from __future__ import annotations

from datetime import datetime, timezone

from ulid import ULID


def generate_ulid() -> str:
    """Generate a ULID for record ids.

    ULIDs are lexicographically sortable, so event ids also order by creation.
    """
    return str(ULID())


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)
