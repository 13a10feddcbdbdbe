"""
Workspace log entries and progress notifications.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import ProgressEventType, RunStatus, WorkspaceEventType
from .primitives import utc_now


class WorkspaceEvent(BaseModel):
    """One line of a run's append-only event log.

    id and created_at are assigned by the workspace store when absent.
    """

    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    run_id: str
    type: WorkspaceEventType
    created_at: Optional[datetime] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class ProgressEvent(BaseModel):
    """Streamed notification about run progress."""

    model_config = ConfigDict(extra="forbid")

    type: ProgressEventType
    timestamp: datetime = Field(default_factory=utc_now)
    run_id: str
    step_id: Optional[str] = None
    status: Optional[RunStatus] = None
    payload: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
