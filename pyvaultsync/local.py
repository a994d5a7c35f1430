"""Local vault tree: path-addressed access to the files being synced."""

import logging
import os
import shutil
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .utils import normalize_path, parent_path

logger = logging.getLogger(__name__)

# How long a path written by the engine is hidden from the watcher
ENGINE_WRITE_GRACE = 2.0

# Suffix of the temporary files used for atomic writes
TMP_SUFFIX = ".vaultsync-tmp"


@dataclass(frozen=True)
class LocalNode:
    """A file or folder inside the vault."""

    path: str
    """Vault-relative path using forward slashes"""

    is_folder: bool

    mtime: float = 0.0
    """Last modification time (Unix timestamp)"""

    size: int = 0

    @property
    def name(self) -> str:
        return self.path.split("/")[-1]


class LocalTree:
    """Reads and writes the vault on disk.

    Every mutation made through this class is remembered for a short while so
    that the filesystem watcher can tell the engine's own writes apart from
    user edits.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self._engine_writes: dict[str, float] = {}
        self._lock = threading.Lock()

    def abspath(self, path: str) -> Path:
        path = normalize_path(path)
        full = (self.root / path).resolve()
        root = self.root.resolve()
        if full != root and root not in full.parents:
            raise ValueError(f"Path escapes the vault: {path}")
        return full

    def relpath(self, full_path: Path) -> str:
        return Path(full_path).resolve().relative_to(self.root.resolve()).as_posix()

    # -- engine write tracking -------------------------------------------------

    def _mark(self, path: str) -> None:
        with self._lock:
            self._engine_writes[normalize_path(path)] = time.monotonic() + ENGINE_WRITE_GRACE

    def is_engine_write(self, path: str) -> bool:
        """True if ``path`` (or one of its ancestors) was just written by the engine."""
        path = normalize_path(path)
        now = time.monotonic()
        with self._lock:
            expired = [p for p, until in self._engine_writes.items() if until < now]
            for p in expired:
                del self._engine_writes[p]
            return any(
                path == p or path.startswith(p + "/") for p in self._engine_writes
            )

    # -- queries -----------------------------------------------------------------

    def exists(self, path: str) -> bool:
        return self.abspath(path).exists()

    def get_node(self, path: str) -> Optional[LocalNode]:
        full = self.abspath(path)
        try:
            stat = full.stat()
        except FileNotFoundError:
            return None
        return LocalNode(
            path=normalize_path(path),
            is_folder=full.is_dir(),
            mtime=stat.st_mtime,
            size=stat.st_size,
        )

    def list_children(self, path: str) -> list[LocalNode]:
        full = self.abspath(path)
        if not full.is_dir():
            return []
        prefix = normalize_path(path)
        children = []
        for item in sorted(full.iterdir()):
            node = self.get_node(f"{prefix}/{item.name}" if prefix else item.name)
            if node is not None:
                children.append(node)
        return children

    def walk(self, path: str = "") -> list[LocalNode]:
        """Every node below ``path`` (depth first, parents before children)."""
        nodes: list[LocalNode] = []
        for child in self.list_children(path):
            nodes.append(child)
            if child.is_folder:
                nodes.extend(self.walk(child.path))
        return nodes

    def read_bytes(self, path: str) -> bytes:
        return self.abspath(path).read_bytes()

    # -- mutations -----------------------------------------------------------------

    def create_folder(self, path: str) -> None:
        self._mark(path)
        self.abspath(path).mkdir(parents=True, exist_ok=True)
        logger.debug("Created local folder %s", path)

    def write_file(self, path: str, content: bytes, mtime: Optional[float] = None) -> None:
        """Create or overwrite a file, optionally setting its modification time."""
        full = self.abspath(path)
        self._mark(path)
        ancestor = parent_path(normalize_path(path))
        while ancestor and not self.abspath(ancestor).exists():
            self._mark(ancestor)
            ancestor = parent_path(ancestor)
        full.parent.mkdir(parents=True, exist_ok=True)
        tmp = full.with_name(f".{full.name}{TMP_SUFFIX}")
        tmp.write_bytes(content)
        if mtime is not None:
            os.utime(tmp, (mtime, mtime))
        os.replace(tmp, full)
        logger.debug("Wrote local file %s (%d bytes)", path, len(content))

    def delete(self, path: str) -> None:
        """Delete a file, or a folder with everything below it."""
        full = self.abspath(path)
        self._mark(path)
        if full.is_dir():
            shutil.rmtree(full)
        elif full.exists():
            full.unlink()
        logger.debug("Deleted local %s", path)
