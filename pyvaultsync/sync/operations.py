"""Operation log: pending local mutations awaiting remote reconciliation."""

import logging
import threading
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping, Optional

logger = logging.getLogger(__name__)


class OperationKind(str, Enum):
    """Kind of a pending local mutation."""

    CREATE = "create"
    DELETE = "delete"
    MODIFY = "modify"


Operations = Mapping[str, OperationKind]


class OperationLog:
    """Per-path record of pending local mutations.

    At most one operation is kept per path. :meth:`record` folds a new event
    into the existing entry:

    ==========  ==========  ==========================================
    existing    new         result
    ==========  ==========  ==========================================
    (none)      any         that kind
    create      delete      entry removed (never reached the remote)
    create      modify      create
    delete      create      modify if known remotely, else create
    modify      delete      delete
    modify      create      modify
    (any)       same kind   unchanged
    ==========  ==========  ==========================================

    Examples:
        >>> log = OperationLog()
        >>> log.record("a.md", OperationKind.CREATE)
        >>> log.record("a.md", OperationKind.DELETE)
        >>> log.get("a.md") is None
        True
    """

    def __init__(
        self,
        operations: Optional[dict[str, OperationKind]] = None,
        is_known_remotely: Optional[Callable[[str], bool]] = None,
    ):
        """Initialize the log.

        Args:
            operations: Initial entries (e.g. loaded from the state file)
            is_known_remotely: Tells whether the remote store already holds an
                object for a path; usually the identity index lookup
        """
        self._operations: dict[str, OperationKind] = dict(operations or {})
        self._is_known_remotely = is_known_remotely or (lambda path: False)
        self._lock = threading.RLock()

    def record(self, path: str, kind: OperationKind) -> None:
        """Fold a local change notification into the log."""
        with self._lock:
            existing = self._operations.get(path)
            result = self._fold(path, existing, kind)
            if result is None:
                self._operations.pop(path, None)
            else:
                self._operations[path] = result
            logger.debug("record %s %s: %s -> %s", kind.value, path, existing, result)

    def _fold(
        self, path: str, existing: Optional[OperationKind], kind: OperationKind
    ) -> Optional[OperationKind]:
        if existing is None:
            return kind
        if existing == OperationKind.CREATE:
            return None if kind == OperationKind.DELETE else OperationKind.CREATE
        if existing == OperationKind.DELETE:
            if kind == OperationKind.DELETE:
                return OperationKind.DELETE
            if kind == OperationKind.CREATE and not self._is_known_remotely(path):
                return OperationKind.CREATE
            return OperationKind.MODIFY
        # existing modify
        return OperationKind.DELETE if kind == OperationKind.DELETE else OperationKind.MODIFY

    def rename(self, old_path: str, new_path: str) -> None:
        """Record a rename as delete(old) followed by create(new)."""
        with self._lock:
            self.record(old_path, OperationKind.DELETE)
            self.record(new_path, OperationKind.CREATE)

    def clear(self, path: str) -> None:
        with self._lock:
            self._operations.pop(path, None)

    def clear_all(self, paths: Optional[list[str]] = None) -> None:
        """Clear the given paths, or every entry when ``paths`` is None."""
        with self._lock:
            if paths is None:
                self._operations.clear()
                return
            for path in paths:
                self._operations.pop(path, None)

    def get(self, path: str) -> Optional[OperationKind]:
        with self._lock:
            return self._operations.get(path)

    def set(self, path: str, kind: OperationKind) -> None:
        """Overwrite the entry for a path without applying the fold rules."""
        with self._lock:
            self._operations[path] = kind

    def snapshot(self) -> Operations:
        """Immutable copy of the current entries."""
        with self._lock:
            return MappingProxyType(dict(self._operations))

    def __len__(self) -> int:
        return len(self._operations)

    def __bool__(self) -> bool:
        return bool(self._operations)

    def __contains__(self, path: object) -> bool:
        return path in self._operations

    def to_dict(self) -> dict[str, str]:
        with self._lock:
            return {path: kind.value for path, kind in sorted(self._operations.items())}

    @classmethod
    def from_dict(
        cls,
        data: dict[str, str],
        is_known_remotely: Optional[Callable[[str], bool]] = None,
    ) -> "OperationLog":
        return cls(
            {path: OperationKind(kind) for path, kind in data.items()},
            is_known_remotely=is_known_remotely,
        )
