"""Tests for the filesystem workspace store."""

import os
import time

import pytest

from plan_graph_engine.models import Artifact, WorkspaceEvent, WorkspaceEventType
from plan_graph_engine.workspace import FilesystemWorkspaceStore, create_workspace_store

from conftest import FIXED_NOW


class TestEnsureWorkspace:
    """Tests for workspace provisioning."""

    def test_creates_layout(self, workspace, tmp_path):
        handle = workspace.ensure_workspace("run-1", "prd")

        run_dir = tmp_path / "runs" / "run-1"
        assert handle.root == str(run_dir)
        assert (run_dir / "artifacts").is_dir()
        assert (run_dir / "events").is_dir()
        assert (run_dir / "tmp").is_dir()
        assert handle.created_at == FIXED_NOW

    def test_is_idempotent(self, workspace):
        first = workspace.ensure_workspace("run-1", "prd")
        second = workspace.ensure_workspace("run-1", "persona", temp_subdir="scratch")

        assert second is first

    def test_custom_temp_subdir(self, workspace, tmp_path):
        handle = workspace.ensure_workspace("run-2", "prd", temp_subdir="scratch")

        assert handle.temp_dir == str(tmp_path / "runs" / "run-2" / "scratch")


class TestArtifacts:
    """Tests for artifact snapshots and the index."""

    def test_write_and_read(self, workspace, prd_artifact):
        workspace.ensure_workspace("run-1", "prd")
        workspace.write_artifact("run-1", prd_artifact)

        loaded = workspace.read_artifact("run-1", prd_artifact.id)
        assert loaded == prd_artifact

        summaries = workspace.list_summaries("run-1")
        assert [s.id for s in summaries] == [prd_artifact.id]
        assert summaries[0].kind == "prd"
        assert summaries[0].created_at == FIXED_NOW

    def test_rewrite_replaces_index_entry(self, workspace, prd_artifact):
        workspace.ensure_workspace("run-1", "prd")
        workspace.write_artifact("run-1", prd_artifact)
        revised = prd_artifact.model_copy(update={"version": "1.1.0"})
        workspace.write_artifact("run-1", revised)

        summaries = workspace.list_summaries("run-1")
        assert len(summaries) == 1
        assert summaries[0].version == "1.1.0"

    def test_list_artifacts_skips_missing_snapshots(self, workspace, prd_artifact, tmp_path):
        workspace.ensure_workspace("run-1", "prd")
        workspace.write_artifact("run-1", prd_artifact)
        (tmp_path / "runs" / "run-1" / "artifacts" / f"{prd_artifact.id}.json").unlink()

        assert workspace.list_artifacts("run-1") == []

    def test_persist_disabled_skips_writes(self, workspace, prd_artifact):
        workspace.ensure_workspace("run-1", "prd", persist_artifacts=False)
        workspace.write_artifact("run-1", prd_artifact)

        assert workspace.list_summaries("run-1") == []
        assert workspace.read_artifact("run-1", prd_artifact.id) is None

    def test_unknown_artifact_returns_none(self, workspace):
        assert workspace.read_artifact("run-1", "nope") is None


class TestEvents:
    """Tests for the append-only event log."""

    def test_append_stamps_id_and_time(self, workspace):
        workspace.ensure_workspace("run-1", "prd")
        stamped = workspace.append_event(
            "run-1",
            WorkspaceEvent(run_id="run-1", type=WorkspaceEventType.SYSTEM, payload={"message": "hi"}),
        )

        assert stamped.id
        assert stamped.created_at == FIXED_NOW

    def test_events_are_returned_in_append_order(self, workspace):
        workspace.ensure_workspace("run-1", "prd")
        for index in range(3):
            workspace.append_event(
                "run-1",
                WorkspaceEvent(
                    run_id="run-1", type=WorkspaceEventType.SKILL, payload={"index": index}
                ),
            )

        events = workspace.get_events("run-1")
        assert [e.payload["index"] for e in events] == [0, 1, 2]
        assert all(e.type == WorkspaceEventType.SKILL for e in events)

    def test_events_for_unknown_run_are_empty(self, workspace):
        assert workspace.get_events("missing") == []


class TestTeardownAndPurge:
    """Tests for workspace removal."""

    def test_teardown_removes_run(self, workspace, tmp_path):
        workspace.ensure_workspace("run-1", "prd")
        workspace.teardown("run-1")

        assert not (tmp_path / "runs" / "run-1").exists()

    def test_purge_removes_only_expired_runs(self, workspace, tmp_path):
        workspace.ensure_workspace("old-run", "prd")
        workspace.ensure_workspace("new-run", "prd")
        old_dir = tmp_path / "runs" / "old-run"
        ten_days_ago = time.time() - 10 * 86400
        os.utime(old_dir, (ten_days_ago, ten_days_ago))

        removed = workspace.purge_expired(retention_days=7)

        assert removed == ["old-run"]
        assert not old_dir.exists()
        assert (tmp_path / "runs" / "new-run").exists()


class TestCreateWorkspaceStore:
    """Tests for the store factory."""

    def test_plain_path(self, tmp_path):
        store = create_workspace_store(str(tmp_path / "ws"))
        assert isinstance(store, FilesystemWorkspaceStore)

    def test_file_uri(self, tmp_path):
        store = create_workspace_store(f"file://{tmp_path}/ws")
        assert store.get_uri() == f"file://{(tmp_path / 'ws').resolve()}"

    def test_unsupported_scheme(self):
        with pytest.raises(ValueError, match="Unsupported workspace scheme"):
            create_workspace_store("s3://bucket/runs")
