"""Per-run event log and artifact snapshot storage."""

from .store import FilesystemWorkspaceStore, WorkspaceStore, create_workspace_store

__all__ = ["FilesystemWorkspaceStore", "WorkspaceStore", "create_workspace_store"]
