"""Sync engines for pyvaultsync - pull, push and reset."""

from .batching import DEFAULT_BATCH_SIZE, depth_batches, run_batched
from .context import SyncContext, engine_run, is_syncing, sync_lock
from .identity import IdentityIndex
from .operations import OperationKind, OperationLog, Operations
from .planner import delete_minimum_operations, plan_deletions, prune_descendants
from .pull import pull, run_pull
from .push import push
from .reset import reset, revert_operations
from .state import SyncState, SyncStateManager

__all__ = [
    "pull",
    "push",
    "reset",
    "run_pull",
    "revert_operations",
    "SyncContext",
    "engine_run",
    "is_syncing",
    "sync_lock",
    "SyncState",
    "SyncStateManager",
    "IdentityIndex",
    "OperationKind",
    "OperationLog",
    "Operations",
    "DEFAULT_BATCH_SIZE",
    "depth_batches",
    "run_batched",
    "delete_minimum_operations",
    "plan_deletions",
    "prune_descendants",
]
