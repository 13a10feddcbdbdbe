"""
Workspace storage for runs.

Each run gets an event-sourced folder: an append-only event log plus an
artifact snapshot index. Storage is addressed by URI so other backends can be
added without changing the controller.
"""
from __future__ import annotations

import json
import logging
import shutil
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional
from urllib.parse import urlparse

from ..models import (
    Artifact,
    ArtifactSummary,
    WorkspaceEvent,
    WorkspaceHandle,
    generate_ulid,
    utc_now,
)

logger = logging.getLogger(__name__)

ARTIFACTS_DIR = "artifacts"
EVENTS_DIR = "events"
INDEX_FILE = "index.json"
EVENTS_FILE = "events.jsonl"


class WorkspaceStore(ABC):
    """Abstract base class for run workspaces.

    All writes for a run are expected to come from one controller at a time.
    The store does not arbitrate concurrent writers.
    """

    @abstractmethod
    def ensure_workspace(
        self,
        run_id: str,
        artifact_kind: str,
        persist_artifacts: bool = True,
        temp_subdir: str = "tmp",
    ) -> WorkspaceHandle:
        """Provision a run workspace. Idempotent per run id."""
        pass

    @abstractmethod
    def write_artifact(self, run_id: str, artifact: Artifact) -> None:
        """Upsert an artifact snapshot and its index entry."""
        pass

    @abstractmethod
    def read_artifact(self, run_id: str, artifact_id: str) -> Optional[Artifact]:
        pass

    @abstractmethod
    def list_artifacts(self, run_id: str) -> List[Artifact]:
        pass

    @abstractmethod
    def list_summaries(self, run_id: str) -> List[ArtifactSummary]:
        pass

    @abstractmethod
    def append_event(self, run_id: str, event: WorkspaceEvent) -> WorkspaceEvent:
        """Append one event to the run log, assigning id and timestamp if absent."""
        pass

    @abstractmethod
    def get_events(self, run_id: str) -> List[WorkspaceEvent]:
        pass

    @abstractmethod
    def teardown(self, run_id: str) -> None:
        """Delete all stored state for a run."""
        pass


class FilesystemWorkspaceStore(WorkspaceStore):
    """Local filesystem workspace store.

    Structure:
        {root}/{run_id}/
        ├── artifacts/
        │   ├── index.json        # Array of artifact summaries
        │   └── {artifact_id}.json
        ├── events/
        │   └── events.jsonl      # One WorkspaceEvent per line
        └── tmp/                  # Scratch space for skills and subagents
    """

    def __init__(self, root: Path, clock: Optional[Callable[[], datetime]] = None):
        self.root = Path(root)
        self.clock = clock or utc_now
        self._handles: Dict[str, WorkspaceHandle] = {}

    def _run_dir(self, run_id: str) -> Path:
        return self.root / run_id

    def _artifacts_dir(self, run_id: str) -> Path:
        return self._run_dir(run_id) / ARTIFACTS_DIR

    def _index_path(self, run_id: str) -> Path:
        return self._artifacts_dir(run_id) / INDEX_FILE

    def _events_path(self, run_id: str) -> Path:
        return self._run_dir(run_id) / EVENTS_DIR / EVENTS_FILE

    def ensure_workspace(
        self,
        run_id: str,
        artifact_kind: str,
        persist_artifacts: bool = True,
        temp_subdir: str = "tmp",
    ) -> WorkspaceHandle:
        existing = self._handles.get(run_id)
        if existing:
            return existing

        run_dir = self._run_dir(run_id)
        (run_dir / ARTIFACTS_DIR).mkdir(parents=True, exist_ok=True)
        (run_dir / EVENTS_DIR).mkdir(parents=True, exist_ok=True)
        temp_dir = run_dir / temp_subdir
        temp_dir.mkdir(parents=True, exist_ok=True)

        handle = WorkspaceHandle(
            run_id=run_id,
            root=str(run_dir),
            artifact_kind=artifact_kind,
            persist_artifacts=persist_artifacts,
            temp_dir=str(temp_dir),
            created_at=self.clock(),
        )
        self._handles[run_id] = handle
        logger.debug(f"Provisioned workspace for run {run_id} at {run_dir}")
        return handle

    def _read_index(self, run_id: str) -> List[ArtifactSummary]:
        index_path = self._index_path(run_id)
        if not index_path.exists():
            return []
        raw = json.loads(index_path.read_text(encoding="utf-8"))
        return [ArtifactSummary.model_validate(entry) for entry in raw]

    def _write_index(self, run_id: str, entries: List[ArtifactSummary]) -> None:
        index_path = self._index_path(run_id)
        index_path.parent.mkdir(parents=True, exist_ok=True)
        payload = [entry.model_dump(mode="json") for entry in entries]
        index_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def write_artifact(self, run_id: str, artifact: Artifact) -> None:
        handle = self._handles.get(run_id)
        if handle is not None and not handle.persist_artifacts:
            return

        snapshot_path = self._artifacts_dir(run_id) / f"{artifact.id}.json"
        snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        snapshot_path.write_text(
            json.dumps(artifact.model_dump(mode="json"), indent=2, default=str),
            encoding="utf-8",
        )

        summary = artifact.summary()
        summary.created_at = self.clock()
        entries = self._read_index(run_id)
        for position, entry in enumerate(entries):
            if entry.id == artifact.id:
                entries[position] = summary
                break
        else:
            entries.append(summary)
        self._write_index(run_id, entries)

    def read_artifact(self, run_id: str, artifact_id: str) -> Optional[Artifact]:
        snapshot_path = self._artifacts_dir(run_id) / f"{artifact_id}.json"
        if not snapshot_path.exists():
            return None
        return Artifact.model_validate_json(snapshot_path.read_text(encoding="utf-8"))

    def list_summaries(self, run_id: str) -> List[ArtifactSummary]:
        return self._read_index(run_id)

    def list_artifacts(self, run_id: str) -> List[Artifact]:
        artifacts = []
        for entry in self._read_index(run_id):
            artifact = self.read_artifact(run_id, entry.id)
            if artifact is None:
                logger.warning(
                    f"Artifact {entry.id} is indexed for run {run_id} but its snapshot is missing"
                )
                continue
            artifacts.append(artifact)
        return artifacts

    def append_event(self, run_id: str, event: WorkspaceEvent) -> WorkspaceEvent:
        stamped = event.model_copy(
            update={
                "id": event.id or generate_ulid(),
                "created_at": event.created_at or self.clock(),
            }
        )
        events_path = self._events_path(run_id)
        events_path.parent.mkdir(parents=True, exist_ok=True)
        with open(events_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(stamped.model_dump(mode="json"), default=str) + "\n")
        return stamped

    def get_events(self, run_id: str) -> List[WorkspaceEvent]:
        events_path = self._events_path(run_id)
        if not events_path.exists():
            return []
        with open(events_path, encoding="utf-8") as f:
            return [
                WorkspaceEvent.model_validate_json(line) for line in f if line.strip()
            ]

    def teardown(self, run_id: str) -> None:
        self._handles.pop(run_id, None)
        shutil.rmtree(self._run_dir(run_id), ignore_errors=True)
        logger.info(f"Removed workspace for run {run_id}")

    def purge_expired(self, retention_days: int) -> List[str]:
        """Delete run folders not modified within the retention window.

        Returns:
            Ids of removed runs
        """
        if not self.root.exists():
            return []

        cutoff = time.time() - retention_days * 86400
        removed = []
        for run_dir in sorted(self.root.iterdir()):
            if not run_dir.is_dir():
                continue
            if run_dir.stat().st_mtime < cutoff:
                self.teardown(run_dir.name)
                removed.append(run_dir.name)
        return removed

    def get_uri(self) -> str:
        return f"file://{self.root.resolve()}"


def create_workspace_store(
    uri: str, clock: Optional[Callable[[], datetime]] = None
) -> WorkspaceStore:
    """Factory function to create a WorkspaceStore from a URI or plain path.

    Args:
        uri: "file:///var/lib/plan-graph/runs" or a filesystem path
        clock: Optional clock for deterministic timestamps

    Raises:
        ValueError: If the URI scheme is not supported
    """
    parsed = urlparse(uri)

    if parsed.scheme in ("", "file"):
        path = parsed.path if parsed.scheme == "file" else uri
        return FilesystemWorkspaceStore(Path(path), clock=clock)

    raise ValueError(
        f"Unsupported workspace scheme: {parsed.scheme}. Supported: file://"
    )
