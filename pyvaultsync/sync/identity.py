"""Bidirectional index between remote object ids and vault paths."""

import threading
from collections.abc import Iterator
from typing import Optional


class IdentityIndex:
    """Maps remote ids to vault paths and back.

    One id maps to exactly one path and one path to exactly one id: binding an
    id to a path drops any previous binding of either side.
    """

    def __init__(self, id_to_path: Optional[dict[str, str]] = None):
        self._id_to_path: dict[str, str] = {}
        self._path_to_id: dict[str, str] = {}
        self._lock = threading.RLock()
        for file_id, path in (id_to_path or {}).items():
            self.set(file_id, path)

    def set(self, file_id: str, path: str) -> None:
        with self._lock:
            old_path = self._id_to_path.pop(file_id, None)
            if old_path is not None:
                self._path_to_id.pop(old_path, None)
            old_id = self._path_to_id.pop(path, None)
            if old_id is not None:
                self._id_to_path.pop(old_id, None)
            self._id_to_path[file_id] = path
            self._path_to_id[path] = file_id

    def path_for_id(self, file_id: str) -> Optional[str]:
        with self._lock:
            return self._id_to_path.get(file_id)

    def id_for_path(self, path: str) -> Optional[str]:
        with self._lock:
            return self._path_to_id.get(path)

    def has_path(self, path: str) -> bool:
        with self._lock:
            return path in self._path_to_id

    def remove_id(self, file_id: str) -> Optional[str]:
        """Forget an id; returns the path it was bound to."""
        with self._lock:
            path = self._id_to_path.pop(file_id, None)
            if path is not None:
                self._path_to_id.pop(path, None)
            return path

    def remove_path(self, path: str) -> Optional[str]:
        """Forget a path; returns the id it was bound to."""
        with self._lock:
            file_id = self._path_to_id.pop(path, None)
            if file_id is not None:
                self._id_to_path.pop(file_id, None)
            return file_id

    def remove_tree(self, path: str) -> list[str]:
        """Forget a path and every path below it; returns the removed ids."""
        with self._lock:
            prefix = path + "/"
            doomed = [p for p in self._path_to_id if p == path or p.startswith(prefix)]
            return [fid for fid in (self.remove_path(p) for p in doomed) if fid]

    def __len__(self) -> int:
        return len(self._id_to_path)

    def __iter__(self) -> Iterator[tuple[str, str]]:
        with self._lock:
            return iter(list(self._id_to_path.items()))

    def to_dict(self) -> dict[str, str]:
        with self._lock:
            return dict(self._id_to_path)

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> "IdentityIndex":
        return cls(data)
