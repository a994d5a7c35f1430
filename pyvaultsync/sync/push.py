"""Push: send pending local changes to the remote drive.

Every push starts with a pull so that remote changes are merged first. The
accepted operations are then applied remotely in three phases: deletions,
creations (folders shallowest first, then files) and modifications. Each
applied operation is cleared from the log and the state is checkpointed, so
an interrupted push resumes with exactly the remaining changes.
"""

import logging
from collections.abc import Collection
from functools import partial
from typing import Callable, Optional

from ..utils import utcnow
from .appfiles import push_app_files
from .batching import depth_batches
from .context import SyncContext, engine_run
from .operations import OperationKind, Operations
from .planner import prune_descendants
from .pull import run_pull
from .remote import ensure_remote_folder, upload_node
from .reset import revert_operations

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[Operations], Optional[Collection[str]]]
"""Shows pending operations to the user.

Returns the accepted paths; operations not accepted are reverted. Returning
None cancels the push without touching anything.
"""


def push(ctx: SyncContext, confirm: Optional[ConfirmCallback] = None) -> Optional[dict]:
    """Push pending local changes.

    Args:
        ctx: Sync context
        confirm: Optional confirmation callback; every operation is accepted
            when omitted

    Returns:
        Statistics of the run, or None if another sync is running or the user
        cancelled
    """
    with engine_run(ctx, "push") as acquired:
        if not acquired:
            return None

        snapshot = ctx.operations.snapshot()
        if not snapshot:
            ctx.output.info("No changes to push.")
            return {}

        ctx.ensure_online()
        accepted: Optional[Collection[str]] = snapshot
        if confirm is not None:
            ctx.output.stop_status()
            accepted = confirm(snapshot)
            ctx.output.start_status("Syncing (0%)")
        if accepted is None:
            ctx.output.info("Push cancelled.")
            return None

        accepted_paths = set(accepted) & set(snapshot)
        discarded = {p: k for p, k in snapshot.items() if p not in accepted_paths}
        since = ctx.state.last_synced_at

        pulled = run_pull(ctx)
        stats = {"deleted": 0, "created": 0, "modified": 0, "settings": 0}
        if discarded:
            stats["discarded"] = len(discarded)
            revert_operations(ctx, discarded)

        working = {}
        for path in accepted_paths:
            kind = ctx.operations.get(path)
            if kind is not None:
                working[path] = kind

        stats["deleted"] = _push_deletes(ctx, _paths_of(working, OperationKind.DELETE))
        ctx.progress("Syncing (33%)")
        stats["created"] = _push_creates(ctx, _paths_of(working, OperationKind.CREATE))
        ctx.progress("Syncing (66%)")
        stats["modified"] = _push_modifies(ctx, _paths_of(working, OperationKind.MODIFY))
        stats["settings"] = push_app_files(ctx, since, skip=pulled["applied"])
        ctx.progress("Syncing (100%)")

        ctx.state.last_synced_at = utcnow()
        ctx.state.change_cursor = ctx.client.get_changes_start_token()
        ctx.checkpoint()

    logger.info(
        "Push finished: %d deleted, %d created, %d modified",
        stats["deleted"],
        stats["created"],
        stats["modified"],
    )
    ctx.output.success("Sync complete!")
    return stats


def _paths_of(operations: dict, kind: OperationKind) -> list[str]:
    return sorted(p for p, k in operations.items() if k == kind)


def _push_deletes(ctx: SyncContext, paths: list[str]) -> int:
    """Delete remote objects, one call per independent subtree root."""
    if not paths:
        return 0

    roots = prune_descendants(paths)
    ids = {}
    unknown = []
    for path in roots:
        file_id = ctx.identity.id_for_path(path)
        if file_id is None:
            unknown.append(path)
        else:
            ids[path] = file_id
    if unknown:
        ids.update(ctx.client.ids_from_paths(unknown))

    if ids:
        ctx.client.batch_delete(list(ids.values()))
    for path in roots:
        ctx.identity.remove_tree(path)
    ctx.operations.clear_all(paths)
    ctx.checkpoint()
    logger.debug("Deleted %d remote root(s) for %d path(s)", len(ids), len(paths))
    return len(paths)


def _push_creates(ctx: SyncContext, paths: list[str]) -> int:
    folders = []
    files = []
    for path in paths:
        node = ctx.tree.get_node(path)
        if node is None:
            # Removed again before it was pushed
            ctx.operations.clear(path)
        elif node.is_folder:
            folders.append(node)
        else:
            files.append(node)

    tick = ctx.progress_counter(33, 66, len(folders) + len(files))
    for batch in depth_batches(folders, key=lambda n: n.path):
        ctx.run([partial(_create_folder, ctx, node.path, tick) for node in batch])
    ctx.run([partial(_upload_file, ctx, node, tick) for node in files])
    ctx.checkpoint()
    return len(folders) + len(files)


def _create_folder(ctx: SyncContext, path: str, tick) -> None:
    ensure_remote_folder(ctx, path)
    ctx.operations.clear(path)
    ctx.checkpoint()
    tick()


def _upload_file(ctx: SyncContext, node, tick) -> None:
    upload_node(ctx, node)
    ctx.operations.clear(node.path)
    ctx.checkpoint()
    tick()


def _push_modifies(ctx: SyncContext, paths: list[str]) -> int:
    unknown = [p for p in paths if ctx.identity.id_for_path(p) is None]
    if unknown:
        for path, file_id in ctx.client.ids_from_paths(unknown).items():
            ctx.identity.set(file_id, path)

    files = []
    for path in paths:
        node = ctx.tree.get_node(path)
        if node is None or node.is_folder:
            ctx.operations.clear(path)
        else:
            files.append(node)

    tick = ctx.progress_counter(66, 100, len(files))
    ctx.run([partial(_upload_file, ctx, node, tick) for node in files])
    ctx.checkpoint()
    return len(files)
