"""Shared fixtures: an in-memory drive and ready-to-use sync contexts."""

import itertools
import os
import threading
import time
from pathlib import Path
from typing import Optional
from unittest.mock import Mock

import pytest

from pyvaultsync.exceptions import DriveNotFoundError, DriveUploadError
from pyvaultsync.local import LocalTree
from pyvaultsync.models import FOLDER_MIME_TYPE, ChangeEntry, RemoteObject
from pyvaultsync.output import OutputFormatter
from pyvaultsync.sync.context import SyncContext
from pyvaultsync.sync.state import SyncState, SyncStateManager
from pyvaultsync.utils import (
    file_name_from_path,
    format_timestamp,
    parent_path,
    parse_iso_timestamp,
    utcnow,
)


class FakeDrive:
    """In-memory stand-in for :class:`pyvaultsync.api.DriveClient`.

    Objects are keyed by id and carry their vault path in ``properties``.
    Every mutation is appended to a change feed, and every public call is
    recorded in ``calls`` as ``(method, argument)``.
    """

    def __init__(self):
        self.objects: dict[str, RemoteObject] = {}
        self.parents: dict[str, Optional[str]] = {}
        self.contents: dict[str, bytes] = {}
        self.changes: list[ChangeEntry] = []
        self.calls: list[tuple[str, object]] = []
        self.online = True
        self.fail_uploads = False
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # -- helpers for tests ---------------------------------------------------

    def put(self, path: str, content: bytes = b"", folder: bool = False) -> str:
        """Create an object (and missing ancestor folders) without recording a call."""
        # Keep remote timestamps in a different millisecond than any pull start
        time.sleep(0.002)
        try:
            return self._put(path, content, folder)
        finally:
            time.sleep(0.002)

    def _put(self, path: str, content: bytes, folder: bool) -> str:
        parent = parent_path(path)
        parent_id = None
        if parent is not None:
            parent_id = self.id_of(parent) or self._put(parent, b"", True)
        existing = self.id_of(path)
        if existing is not None:
            self.contents[existing] = content
            self._touch(existing)
            return existing
        return self._store(
            path, parent_id, FOLDER_MIME_TYPE if folder else "text/markdown", content
        )

    def remove(self, path: str) -> None:
        """Delete an object (recursively) as another device would."""
        file_id = self.id_of(path)
        if file_id is not None:
            self._delete(file_id)

    def _snapshot(self) -> list:
        with self._lock:
            return list(self.objects.values())

    def id_of(self, path: str) -> Optional[str]:
        for obj in self._snapshot():
            if obj.path == path:
                return obj.id
        return None

    def by_path(self, path: str) -> Optional[RemoteObject]:
        file_id = self.id_of(path)
        return self.objects[file_id] if file_id else None

    def content_of(self, path: str) -> bytes:
        return self.contents[self.id_of(path) or ""]

    def paths(self) -> set:
        return {obj.path for obj in self._snapshot()}

    def calls_of(self, method: str) -> list:
        return [arg for name, arg in self.calls if name == method]

    def mutation_calls(self) -> list:
        mutating = {"create_folder", "upload_file", "update_file", "batch_delete"}
        return [c for c in self.calls if c[0] in mutating]

    def _store(
        self,
        path: str,
        parent_id: Optional[str],
        mime_type: str,
        content: bytes = b"",
        modified_time: Optional[str] = None,
    ) -> str:
        with self._lock:
            file_id = f"id{next(self._ids)}"
            self.objects[file_id] = RemoteObject(
                id=file_id,
                name=file_name_from_path(path),
                mime_type=mime_type,
                properties={"path": path, "vault": "vault"},
                modified_time=modified_time or format_timestamp(utcnow()),
            )
            self.parents[file_id] = parent_id
            self.contents[file_id] = content
            self.changes.append(ChangeEntry(file_id=file_id, removed=False))
            return file_id

    def _touch(self, file_id: str, modified_time: Optional[str] = None) -> None:
        self.objects[file_id].modified_time = modified_time or format_timestamp(utcnow())
        self.changes.append(ChangeEntry(file_id=file_id, removed=False))

    def _delete(self, file_id: str) -> None:
        for child in [i for i, p in self.parents.items() if p == file_id]:
            self._delete(child)
        with self._lock:
            self.objects.pop(file_id, None)
            self.parents.pop(file_id, None)
            self.contents.pop(file_id, None)
            self.changes.append(ChangeEntry(file_id=file_id, removed=True))

    # -- DriveClient interface -------------------------------------------------

    def check_connection(self) -> bool:
        return self.online

    def close(self) -> None:
        pass

    def get_changes_start_token(self) -> str:
        return str(len(self.changes))

    def get_changes(self, start_token):
        self.calls.append(("get_changes", start_token))
        if not start_token:
            return [], None
        return list(self.changes[int(start_token) :]), str(len(self.changes))

    def search_files(self, matches=None, include=None, order="descending", include_root=False):
        self.calls.append(("search_files", matches))
        found = self._snapshot()
        if matches:
            found = [o for o in found if any(self._matches(o, m) for m in matches)]
        return found

    @staticmethod
    def _matches(obj: RemoteObject, match) -> bool:
        for key, value in match.properties.items():
            if obj.properties.get(key) != value:
                return False
        if match.modified_time is not None:
            mine = obj.modified_at
            other = parse_iso_timestamp(match.modified_time.value)
            if match.modified_time.op == "gt" and not mine > other:
                return False
            if match.modified_time.op == "lt" and not mine < other:
                return False
            if match.modified_time.op == "eq" and mine != other:
                return False
        return True

    def id_from_path(self, path: str) -> Optional[str]:
        self.calls.append(("id_from_path", path))
        return self.id_of(path)

    def ids_from_paths(self, paths: list) -> dict:
        self.calls.append(("ids_from_paths", list(paths)))
        return {p: self.id_of(p) for p in paths if self.id_of(p) is not None}

    def objects_from_paths(self, paths: list) -> dict:
        self.calls.append(("objects_from_paths", list(paths)))
        return {p: self.by_path(p) for p in paths if self.by_path(p) is not None}

    def get_file(self, file_id: str) -> bytes:
        self.calls.append(("get_file", file_id))
        if file_id not in self.contents:
            raise DriveNotFoundError(f"Not found: {file_id}")
        return self.contents[file_id]

    def get_file_metadata(self, file_id: str) -> RemoteObject:
        if file_id not in self.objects:
            raise DriveNotFoundError(f"Not found: {file_id}")
        return self.objects[file_id]

    def create_folder(self, name, parent_id=None, properties=None, modified_time=None, description=None):
        self.calls.append(("create_folder", properties["path"]))
        return self._store(properties["path"], parent_id, FOLDER_MIME_TYPE, modified_time=modified_time)

    def upload_file(self, content, name, parent_id=None, properties=None, modified_time=None, mime_type=None):
        if self.fail_uploads:
            raise DriveUploadError(f"Upload of {name} failed")
        self.calls.append(("upload_file", properties["path"]))
        return self._store(properties["path"], parent_id, "text/markdown", content, modified_time)

    def update_file(self, file_id, content, modified_time=None, metadata=None):
        if self.fail_uploads:
            raise DriveUploadError(f"Update of {file_id} failed")
        self.calls.append(("update_file", file_id))
        self.contents[file_id] = content
        self._touch(file_id, modified_time)
        return file_id

    def batch_delete(self, ids: list) -> list:
        self.calls.append(("batch_delete", list(ids)))
        statuses = []
        for file_id in ids:
            if file_id in self.objects:
                self._delete(file_id)
                statuses.append(204)
            else:
                statuses.append(404)
        return statuses


def write_local(root: Path, path: str, content: bytes = b"", mtime: Optional[float] = None) -> Path:
    full = root / path
    full.parent.mkdir(parents=True, exist_ok=True)
    full.write_bytes(content)
    if mtime is not None:
        os.utime(full, (mtime, mtime))
    return full


@pytest.fixture
def drive():
    return FakeDrive()


@pytest.fixture
def vault(tmp_path):
    path = tmp_path / "vault"
    path.mkdir()
    return path


@pytest.fixture
def local_file(vault):
    """Write a vault file directly, as a user would."""

    def write(path: str, content: bytes = b"", mtime: Optional[float] = None) -> Path:
        return write_local(vault, path, content, mtime)

    return write


@pytest.fixture
def mock_output():
    """Create a mock output formatter."""
    output = Mock(spec=OutputFormatter)
    output.quiet = True
    output.json_output = False
    return output


@pytest.fixture
def state_manager(tmp_path):
    return SyncStateManager(tmp_path / "state")


@pytest.fixture
def ctx(drive, vault, mock_output, state_manager):
    """Sync context wired to the fake drive and a temporary vault."""
    return SyncContext(
        client=drive,
        tree=LocalTree(vault),
        state=SyncState(vault_path=str(vault)),
        state_manager=state_manager,
        output=mock_output,
        batch_size=4,
        app_dir=".vault",
        app_include=["*.json", "snippets/*"],
        app_exclude=["workspace.json"],
    )
