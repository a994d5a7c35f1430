"""Filesystem watcher feeding the operation log."""

import logging
import os
from typing import Optional

from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer

from .local import TMP_SUFFIX
from .sync.appfiles import is_app_path
from .sync.context import SyncContext
from .sync.operations import OperationKind

logger = logging.getLogger(__name__)


class VaultEventHandler(FileSystemEventHandler):
    """Records user edits inside the vault as pending operations.

    Writes made by the sync engines, temporary files and the host
    application's settings directory are ignored.
    """

    def __init__(self, ctx: SyncContext):
        super().__init__()
        self.ctx = ctx

    def _vault_path(self, raw_path) -> Optional[str]:
        """Vault-relative path of an event, or None if it must be ignored."""
        full = os.fsdecode(raw_path)
        if full.endswith(TMP_SUFFIX):
            return None
        try:
            path = self.ctx.tree.relpath(full)
        except ValueError:
            return None
        if path in ("", "."):
            return None
        if is_app_path(self.ctx.app_dir, path):
            return None
        if self.ctx.tree.is_engine_write(path):
            return None
        return path

    def _record(self, path: str, kind: OperationKind) -> None:
        logger.debug("Recording %s %s", kind.value, path)
        self.ctx.operations.record(path, kind)
        self.ctx.checkpoint()

    def on_created(self, event: FileSystemEvent) -> None:
        path = self._vault_path(event.src_path)
        if path is not None:
            self._record(path, OperationKind.CREATE)

    def on_deleted(self, event: FileSystemEvent) -> None:
        path = self._vault_path(event.src_path)
        if path is not None:
            self._record(path, OperationKind.DELETE)

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        path = self._vault_path(event.src_path)
        if path is not None:
            self._record(path, OperationKind.MODIFY)

    def on_moved(self, event: FileSystemMovedEvent) -> None:  # type: ignore[override]
        old_path = self._vault_path(event.src_path)
        new_path = self._vault_path(event.dest_path)
        if new_path is None:
            if old_path is not None:
                self._record(old_path, OperationKind.DELETE)
            return
        if old_path is None:
            # Atomic save: a temporary file replaced the target
            if self.ctx.identity.has_path(new_path):
                self._record(new_path, OperationKind.MODIFY)
            else:
                self._record(new_path, OperationKind.CREATE)
            return
        logger.debug("Recording rename %s -> %s", old_path, new_path)
        self.ctx.operations.rename(old_path, new_path)
        self.ctx.checkpoint()


class VaultWatcher:
    """Watches the vault directory for as long as it is running."""

    def __init__(self, ctx: SyncContext):
        self.ctx = ctx
        self.event_handler = VaultEventHandler(ctx)
        self.observer = Observer()
        self.observer.daemon = True
        self.is_running = False

    def start(self) -> None:
        if self.is_running:
            logger.warning("Watcher is already running")
            return
        self.observer.schedule(
            self.event_handler, str(self.ctx.tree.root), recursive=True
        )
        self.observer.start()
        self.is_running = True
        logger.info(f"Watching {self.ctx.tree.root}")

    def stop(self) -> None:
        if not self.is_running:
            return
        self.observer.stop()
        self.observer.join(timeout=5)
        if self.observer.is_alive():
            logger.warning("Watcher thread did not stop in time")
        self.is_running = False
        logger.info(f"Stopped watching {self.ctx.tree.root}")

    def __enter__(self) -> "VaultWatcher":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
