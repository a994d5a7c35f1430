"""Tests for the push engine."""

import threading
import time
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest

from pyvaultsync.exceptions import DriveUploadError
from pyvaultsync.local import LocalTree
from pyvaultsync.models import FOLDER_MIME_TYPE
from pyvaultsync.sync.context import SyncContext, sync_lock
from pyvaultsync.sync.operations import OperationKind
from pyvaultsync.sync.pull import pull
from pyvaultsync.sync.push import push
from pyvaultsync.sync.state import SyncState, SyncStateManager
from pyvaultsync.utils import utcnow

CREATE = OperationKind.CREATE
DELETE = OperationKind.DELETE
MODIFY = OperationKind.MODIFY


def folders(drive):
    return [o for o in drive.objects.values() if o.mime_type == FOLDER_MIME_TYPE]


class TestPushCreates:
    def test_new_note_in_new_folder(self, ctx, drive, local_file):
        local_file("notes/a.md", b"# a")
        ctx.operations.record("notes", CREATE)
        ctx.operations.record("notes/a.md", CREATE)

        push(ctx)

        assert [f.path for f in folders(drive)] == ["notes"]
        files = [o for o in drive.objects.values() if o.path == "notes/a.md"]
        assert len(files) == 1
        assert drive.content_of("notes/a.md") == b"# a"
        assert drive.parents[files[0].id] == drive.id_of("notes")
        assert ctx.identity.id_for_path("notes/a.md") == files[0].id
        assert len(ctx.operations) == 0

    def test_missing_parent_folder_is_created(self, ctx, drive, local_file):
        local_file("notes/deep/a.md", b"a")
        ctx.operations.record("notes/deep/a.md", CREATE)

        push(ctx)

        assert sorted(f.path for f in folders(drive)) == ["notes", "notes/deep"]
        assert drive.content_of("notes/deep/a.md") == b"a"

    def test_shared_missing_folder_is_created_once(self, ctx, drive, local_file):
        for name in ("a", "b", "c", "d"):
            local_file(f"notes/{name}.md", name.encode())
            ctx.operations.record(f"notes/{name}.md", CREATE)

        push(ctx)

        assert drive.calls_of("create_folder") == ["notes"]
        assert drive.paths() == {"notes", "notes/a.md", "notes/b.md", "notes/c.md", "notes/d.md"}

    def test_sibling_folders_are_created_concurrently(self, ctx, drive, vault):
        (vault / "a").mkdir()
        (vault / "b").mkdir()
        ctx.operations.record("a", CREATE)
        ctx.operations.record("b", CREATE)
        both_inside = threading.Barrier(2, timeout=5)
        create_folder = drive.create_folder

        def create_together(*args, **kwargs):
            both_inside.wait()
            return create_folder(*args, **kwargs)

        with patch.object(drive, "create_folder", side_effect=create_together):
            push(ctx)

        assert sorted(f.path for f in folders(drive)) == ["a", "b"]

    def test_existing_remote_folder_is_reused(self, ctx, drive, local_file):
        drive.put("notes", folder=True)
        pull(ctx)
        local_file("notes/a.md", b"a")
        ctx.operations.record("notes/a.md", CREATE)

        push(ctx)

        assert len(folders(drive)) == 1
        assert drive.calls_of("create_folder") == []

    def test_remote_timestamp_is_upload_time(self, ctx, drive, local_file):
        local_file("a.md", b"a", mtime=1_700_000_000)
        ctx.operations.record("a.md", CREATE)
        before = utcnow()

        push(ctx)

        assert drive.by_path("a.md").modified_at >= before.replace(microsecond=0)

    def test_create_on_known_path_updates_instead(self, ctx, drive, local_file):
        drive.put("a.md", b"remote")
        pull(ctx)
        local_file("a.md", b"local")
        ctx.operations.set("a.md", CREATE)

        push(ctx)

        assert drive.calls_of("upload_file") == []
        assert len(drive.calls_of("update_file")) == 1
        assert drive.content_of("a.md") == b"local"
        assert len(drive.objects) == 1

    def test_vanished_create_is_dropped(self, ctx, drive):
        ctx.operations.record("gone.md", CREATE)

        push(ctx)

        assert drive.mutation_calls() == []
        assert len(ctx.operations) == 0


class TestPushAcrossDevices:
    @pytest.fixture
    def other(self, drive, tmp_path, mock_output):
        """A second device syncing the same drive into its own vault."""
        root = tmp_path / "other"
        root.mkdir()
        return SyncContext(
            client=drive,
            tree=LocalTree(root),
            state=SyncState(vault_path=str(root)),
            state_manager=SyncStateManager(tmp_path / "other-state"),
            output=mock_output,
            batch_size=4,
        )

    def test_offline_note_reaches_device_that_synced_later(
        self, ctx, other, local_file
    ):
        local_file("n.md", b"written offline", mtime=time.time() - 3600)
        ctx.operations.record("n.md", CREATE)
        pull(other)
        time.sleep(0.002)

        push(ctx)
        pull(other)

        assert (other.tree.root / "n.md").read_bytes() == b"written offline"

    def test_offline_edit_reaches_device_that_synced_later(
        self, ctx, other, drive, local_file
    ):
        drive.put("n.md", b"v1")
        pull(ctx)
        pull(other)
        assert (other.tree.root / "n.md").read_bytes() == b"v1"

        local_file("n.md", b"v2", mtime=time.time() - 3600)
        ctx.operations.record("n.md", MODIFY)
        time.sleep(0.002)
        pull(other)
        time.sleep(0.002)

        push(ctx)
        pull(other)

        assert (other.tree.root / "n.md").read_bytes() == b"v2"


class TestPushDeletes:
    def test_subtrees_are_deleted_with_one_batch(self, ctx, drive, vault):
        drive.put("a/b/c.md", b"c")
        drive.put("d.md", b"d")
        pull(ctx)
        for path in ("a/b/c.md", "a/b", "a", "d.md"):
            ctx.operations.record(path, DELETE)
        ctx.tree.delete("a")
        ctx.tree.delete("d.md")

        push(ctx)

        batches = drive.calls_of("batch_delete")
        assert len(batches) == 1
        assert len(batches[0]) == 2
        assert drive.paths() == set()
        assert len(ctx.identity) == 0
        assert len(ctx.operations) == 0

    def test_never_pushed_path_needs_no_remote_call(self, ctx, drive):
        ctx.operations.record("local-only.md", DELETE)

        push(ctx)

        assert drive.calls_of("batch_delete") == []
        assert len(ctx.operations) == 0

    def test_unknown_id_is_looked_up(self, ctx, drive, vault):
        drive.put("a.md", b"a")
        pull(ctx)
        ctx.identity.remove_id(drive.id_of("a.md"))
        (vault / "a.md").unlink()
        ctx.operations.record("a.md", DELETE)

        push(ctx)

        assert drive.calls_of("ids_from_paths") == [["a.md"]]
        assert "a.md" not in drive.paths()


class TestPushModifies:
    def test_modified_file_is_updated(self, ctx, drive, local_file):
        drive.put("a.md", b"v1")
        pull(ctx)
        local_file("a.md", b"v2")
        ctx.operations.record("a.md", MODIFY)

        stats = push(ctx)

        assert drive.content_of("a.md") == b"v2"
        assert drive.calls_of("update_file") == [drive.id_of("a.md")]
        assert stats["modified"] == 1

    def test_modify_without_remote_object_uploads(self, ctx, drive, local_file):
        local_file("a.md", b"a")
        ctx.operations.record("a.md", MODIFY)

        push(ctx)

        assert drive.calls_of("upload_file") == ["a.md"]

    def test_folder_modify_is_cleared(self, ctx, drive, vault):
        (vault / "notes").mkdir()
        ctx.operations.record("notes", MODIFY)

        push(ctx)

        assert drive.mutation_calls() == []
        assert len(ctx.operations) == 0


class TestPushResume:
    def test_failed_push_resumes_with_remaining_work(
        self, ctx, drive, vault, local_file, state_manager
    ):
        drive.put("old.md", b"old")
        drive.put("m.md", b"v1")
        pull(ctx)

        ctx.tree.delete("old.md")
        ctx.operations.record("old.md", DELETE)
        (vault / "f").mkdir()
        ctx.operations.record("f", CREATE)
        local_file("f/new.md", b"new")
        ctx.operations.record("f/new.md", CREATE)
        local_file("m.md", b"v2")
        ctx.operations.record("m.md", MODIFY)

        drive.fail_uploads = True
        with pytest.raises(DriveUploadError):
            push(ctx)

        stored = state_manager.load_state(vault)
        assert dict(stored.operations.snapshot()) == {"f/new.md": CREATE, "m.md": MODIFY}
        assert "old.md" not in drive.paths()
        assert "f" in drive.paths()

        drive.fail_uploads = False
        drive.calls.clear()
        push(ctx)

        assert drive.calls_of("batch_delete") == []
        assert drive.calls_of("create_folder") == []
        assert drive.calls_of("upload_file") == ["f/new.md"]
        assert drive.calls_of("update_file") == [drive.id_of("m.md")]
        assert len(ctx.operations) == 0


class TestPushConfirmation:
    def test_nothing_to_push(self, ctx, drive, mock_output):
        assert push(ctx) == {}
        mock_output.info.assert_called_with("No changes to push.")
        assert drive.calls == []

    def test_cancel_changes_nothing(self, ctx, drive, local_file):
        local_file("a.md", b"a")
        ctx.operations.record("a.md", CREATE)
        confirm = Mock(return_value=None)

        assert push(ctx, confirm=confirm) is None

        confirm.assert_called_once()
        assert dict(confirm.call_args.args[0]) == {"a.md": CREATE}
        assert drive.mutation_calls() == []
        assert ctx.operations.get("a.md") == CREATE

    def test_discarded_changes_are_reverted(self, ctx, drive, vault, local_file):
        local_file("keep.md", b"keep")
        local_file("drop.md", b"drop")
        ctx.operations.record("keep.md", CREATE)
        ctx.operations.record("drop.md", CREATE)

        stats = push(ctx, confirm=lambda operations: {"keep.md"})

        assert drive.calls_of("upload_file") == ["keep.md"]
        assert not (vault / "drop.md").exists()
        assert stats["discarded"] == 1
        assert len(ctx.operations) == 0

    def test_noop_while_another_run_holds_the_lock(self, ctx, drive, local_file):
        local_file("a.md", b"a")
        ctx.operations.record("a.md", CREATE)
        with sync_lock():
            assert push(ctx) is None
        assert drive.calls == []


class TestPushSettingsFiles:
    def test_changed_settings_files_are_uploaded(self, ctx, drive, local_file):
        local_file(".vault/app.json", b"{}")
        local_file(".vault/workspace.json", b"{}")
        local_file(".vault/snippets/a.css", b"a")
        local_file("note.md", b"n")
        ctx.operations.record("note.md", CREATE)

        stats = push(ctx)

        assert sorted(drive.calls_of("upload_file")) == [
            ".vault/app.json",
            ".vault/snippets/a.css",
            "note.md",
        ]
        assert sorted(drive.calls_of("create_folder")) == [".vault", ".vault/snippets"]
        assert stats["settings"] == 2

    def test_old_settings_files_are_left_alone(self, ctx, drive, local_file):
        local_file(".vault/app.json", b"{}", mtime=time.time() - 3600)
        local_file("note.md", b"n")
        ctx.operations.record("note.md", CREATE)
        ctx.state.last_synced_at = datetime.fromtimestamp(time.time() - 60, tz=timezone.utc)

        push(ctx)

        assert drive.calls_of("upload_file") == ["note.md"]
