"""Context shared by the sync engines and the single-run lock."""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..api import DriveClient
from ..exceptions import (
    BatchExecutionError,
    DriveAuthenticationError,
    DriveNetworkError,
    VaultSyncError,
)
from ..local import LocalTree
from ..output import OutputFormatter
from ..utils import sync_message
from .batching import DEFAULT_BATCH_SIZE, raise_first, run_batched
from .identity import IdentityIndex
from .operations import OperationLog
from .state import SyncState, SyncStateManager

logger = logging.getLogger(__name__)

_syncing = threading.Lock()


def is_syncing() -> bool:
    return _syncing.locked()


@contextmanager
def sync_lock() -> Iterator[bool]:
    """Try to take the process-wide sync lock without blocking.

    Yields:
        True if the lock was taken; False if another run is active
    """
    acquired = _syncing.acquire(blocking=False)
    try:
        yield acquired
    finally:
        if acquired:
            _syncing.release()


@dataclass
class SyncContext:
    """Everything an engine run needs.

    Passed explicitly into :func:`~pyvaultsync.sync.pull.pull`,
    :func:`~pyvaultsync.sync.push.push` and
    :func:`~pyvaultsync.sync.reset.reset`.
    """

    client: DriveClient
    tree: LocalTree
    state: SyncState
    state_manager: Optional[SyncStateManager] = None
    output: OutputFormatter = field(default_factory=OutputFormatter)
    batch_size: int = DEFAULT_BATCH_SIZE

    app_dir: Optional[str] = None
    """Host application settings directory (vault-relative)"""

    app_include: list[str] = field(default_factory=list)
    app_exclude: list[str] = field(default_factory=list)

    @property
    def operations(self) -> OperationLog:
        return self.state.operations

    @property
    def identity(self) -> IdentityIndex:
        return self.state.identity

    def checkpoint(self) -> None:
        """Persist the state document."""
        if self.state_manager is not None:
            self.state_manager.save_state(self.state)

    def progress(self, message: str) -> None:
        self.output.update_status(message)

    def progress_counter(self, low: int, high: int, total: int) -> Callable[[], None]:
        """Return a thread-safe callable reporting one more completed item."""
        lock = threading.Lock()
        completed = 0

        def tick() -> None:
            nonlocal completed
            with lock:
                completed += 1
                done = completed
            self.progress(sync_message(low, high, done, total))

        return tick

    def run(self, operations: list[Callable[[], Any]]) -> list[Any]:
        """Run operations through the bounded batch executor."""
        return run_batched(operations, self.batch_size)

    def ensure_online(self) -> None:
        if not self.client.check_connection():
            raise DriveNetworkError("No internet connection - nothing was changed")


@contextmanager
def engine_run(ctx: SyncContext, name: str, exclusive: bool = True) -> Iterator[bool]:
    """Wrap an engine run with locking, notifications and persistence.

    A failure aborts the run and is reported; everything applied before the
    failure stays applied and is persisted. A rejected credential is
    forgotten so the user is asked for a new one.

    Args:
        ctx: Sync context
        name: Engine name used in messages
        exclusive: Take the process-wide sync lock

    Yields:
        False if another run holds the lock (the caller must do nothing)
    """
    lock = sync_lock() if exclusive else _already_locked()
    with lock as acquired:
        if not acquired:
            logger.info("%s skipped: a sync is already running", name)
            yield False
            return

        if exclusive:
            ctx.output.start_status("Syncing (0%)")
        try:
            try:
                yield True
            except BatchExecutionError as e:
                raise_first(e)
        except DriveAuthenticationError as e:
            ctx.state.refresh_token = None
            ctx.output.error(f"{e} Run 'pyvaultsync init' to enter a new one.")
            raise
        except (VaultSyncError, OSError) as e:
            if exclusive:
                ctx.output.error(f"{name.capitalize()} failed: {e}")
            raise
        finally:
            if exclusive:
                ctx.output.stop_status()
            ctx.checkpoint()


@contextmanager
def _already_locked() -> Iterator[bool]:
    yield True
