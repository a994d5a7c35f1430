"""Tests for the pull engine."""

from unittest.mock import Mock, patch

import pytest

from pyvaultsync.exceptions import DriveAuthenticationError, DriveNetworkError
from pyvaultsync.sync.context import sync_lock
from pyvaultsync.sync.operations import OperationKind
from pyvaultsync.sync.pull import pull
from pyvaultsync.utils import EPOCH


class TestPullDownloads:
    def test_first_pull_mirrors_remote(self, ctx, drive, vault):
        drive.put("notes/daily/a.md", b"# a")
        drive.put("b.md", b"b")

        stats = pull(ctx)

        assert (vault / "notes" / "daily" / "a.md").read_bytes() == b"# a"
        assert (vault / "b.md").read_bytes() == b"b"
        assert stats["downloaded"] == 2
        assert stats["folders"] == 2
        assert ctx.identity.id_for_path("notes/daily/a.md") == drive.id_of("notes/daily/a.md")
        assert ctx.state.change_cursor is not None
        assert ctx.state.last_synced_at > EPOCH

    def test_local_mtime_matches_remote(self, ctx, drive, vault):
        drive.put("a.md", b"a")
        pull(ctx)
        remote = drive.by_path("a.md")
        assert int((vault / "a.md").stat().st_mtime) == int(remote.mtime)

    def test_second_pull_changes_nothing(self, ctx, drive):
        drive.put("notes/a.md", b"a")
        drive.put("b.md", b"b")
        pull(ctx)
        downloads = len(drive.calls_of("get_file"))

        with patch.object(ctx.tree, "write_file", wraps=ctx.tree.write_file) as write, \
                patch.object(ctx.tree, "create_folder", wraps=ctx.tree.create_folder) as mkdir, \
                patch.object(ctx.tree, "delete", wraps=ctx.tree.delete) as delete:
            stats = pull(ctx)

        write.assert_not_called()
        mkdir.assert_not_called()
        delete.assert_not_called()
        assert len(drive.calls_of("get_file")) == downloads
        assert stats["downloaded"] == stats["folders"] == stats["deleted"] == 0
        assert drive.mutation_calls() == []

    def test_remote_update_is_downloaded(self, ctx, drive, vault):
        drive.put("a.md", b"v1")
        pull(ctx)
        drive.put("a.md", b"v2")

        pull(ctx)

        assert (vault / "a.md").read_bytes() == b"v2"

    def test_state_is_persisted(self, ctx, drive, state_manager, vault):
        drive.put("a.md", b"a")
        pull(ctx)
        stored = state_manager.load_state(vault)
        assert stored.identity.id_for_path("a.md") == drive.id_of("a.md")
        assert stored.change_cursor == ctx.state.change_cursor


class TestPullDeletions:
    def test_remote_delete_is_applied(self, ctx, drive, vault):
        drive.put("a.md", b"a")
        pull(ctx)
        drive.remove("a.md")

        stats = pull(ctx)

        assert not (vault / "a.md").exists()
        assert not ctx.identity.has_path("a.md")
        assert stats["deleted"] == 1

    def test_failed_local_delete_is_retried(self, ctx, drive, vault):
        drive.put("gone.md", b"a")
        pull(ctx)
        drive.remove("gone.md")

        with patch.object(ctx.tree, "delete", side_effect=PermissionError("locked")):
            with pytest.raises(PermissionError):
                pull(ctx)
        assert (vault / "gone.md").exists()
        assert ctx.identity.has_path("gone.md")

        stats = pull(ctx)

        assert not (vault / "gone.md").exists()
        assert not ctx.identity.has_path("gone.md")
        assert stats["deleted"] == 1

    def test_removed_folder_is_deleted_with_one_call(self, ctx, drive, vault):
        drive.put("notes/a.md", b"a")
        drive.put("notes/b.md", b"b")
        pull(ctx)
        drive.remove("notes")

        with patch.object(ctx.tree, "delete", wraps=ctx.tree.delete) as delete:
            pull(ctx)

        assert not (vault / "notes").exists()
        delete.assert_called_once_with("notes")
        assert len(ctx.identity) == 0

    def test_pending_modify_survives_remote_delete(self, ctx, drive, vault, local_file):
        drive.put("a.md", b"remote")
        pull(ctx)
        local_file("a.md", b"local edit")
        ctx.operations.record("a.md", OperationKind.MODIFY)
        drive.remove("a.md")

        pull(ctx)

        assert (vault / "a.md").read_bytes() == b"local edit"
        assert ctx.operations.get("a.md") == OperationKind.CREATE

    def test_folder_with_unsynced_content_is_kept(self, ctx, drive, vault, local_file):
        drive.put("notes/a.md", b"a")
        pull(ctx)
        local_file("notes/new.md", b"new")
        ctx.operations.record("notes/new.md", OperationKind.CREATE)
        drive.remove("notes")

        pull(ctx)

        assert not (vault / "notes" / "a.md").exists()
        assert (vault / "notes" / "new.md").read_bytes() == b"new"
        assert ctx.operations.get("notes") == OperationKind.CREATE
        assert ctx.operations.get("notes/new.md") == OperationKind.CREATE

    def test_pending_delete_cleared_when_remote_agrees(self, ctx, drive, vault):
        drive.put("a.md", b"a")
        pull(ctx)
        (vault / "a.md").unlink()
        ctx.operations.record("a.md", OperationKind.DELETE)
        drive.remove("a.md")

        pull(ctx)

        assert ctx.operations.get("a.md") is None

    def test_recreated_remote_file_is_replaced(self, ctx, drive, vault):
        drive.put("a.md", b"old")
        pull(ctx)
        drive.remove("a.md")
        drive.put("a.md", b"new")

        pull(ctx)

        assert (vault / "a.md").read_bytes() == b"new"
        assert ctx.identity.id_for_path("a.md") == drive.id_of("a.md")


class TestPullConflicts:
    def test_pending_modify_wins(self, ctx, drive, vault, local_file):
        drive.put("a.md", b"v1")
        pull(ctx)
        local_file("a.md", b"local")
        ctx.operations.record("a.md", OperationKind.MODIFY)
        drive.put("a.md", b"v2")

        stats = pull(ctx)

        assert (vault / "a.md").read_bytes() == b"local"
        assert ctx.operations.get("a.md") == OperationKind.MODIFY
        assert stats["skipped"] == 1

    def test_pending_create_becomes_modify(self, ctx, drive, vault, local_file):
        local_file("a.md", b"local")
        ctx.operations.record("a.md", OperationKind.CREATE)
        drive.put("a.md", b"remote")

        pull(ctx)

        assert (vault / "a.md").read_bytes() == b"local"
        assert ctx.operations.get("a.md") == OperationKind.MODIFY

    def test_remote_folder_clears_stale_operation(self, ctx, drive, vault):
        (vault / "notes").mkdir()
        ctx.operations.record("notes", OperationKind.CREATE)
        drive.put("notes", folder=True)

        pull(ctx)

        assert ctx.operations.get("notes") is None


class TestPullRunControl:
    def test_noop_while_another_run_holds_the_lock(self, ctx, drive):
        drive.put("a.md", b"a")
        with sync_lock() as acquired:
            assert acquired
            assert pull(ctx) is None
        assert drive.calls == []

    def test_offline_changes_nothing(self, ctx, drive, vault, mock_output):
        drive.put("a.md", b"a")
        drive.online = False

        with pytest.raises(DriveNetworkError):
            pull(ctx)

        assert drive.calls == []
        assert not (vault / "a.md").exists()
        mock_output.error.assert_called_once()

    def test_rejected_credential_is_forgotten(self, ctx, drive, state_manager, vault):
        ctx.state.refresh_token = "rt"
        drive.search_files = Mock(side_effect=DriveAuthenticationError("bad token"))

        with pytest.raises(DriveAuthenticationError):
            pull(ctx)

        assert ctx.state.refresh_token is None
        assert state_manager.load_state(vault).refresh_token is None

    def test_lock_is_released_after_failure(self, ctx, drive):
        drive.online = False
        with pytest.raises(DriveNetworkError):
            pull(ctx)
        drive.online = True
        assert pull(ctx) is not None
