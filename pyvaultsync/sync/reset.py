"""Reset: discard local pending changes and restore the remote state."""

import logging
from functools import partial
from typing import Optional

from ..models import RemoteObject
from ..utils import is_descendant, utcnow
from .batching import depth_batches
from .context import SyncContext, engine_run
from .operations import OperationKind, Operations
from .planner import delete_minimum_operations
from .pull import run_pull

logger = logging.getLogger(__name__)


def reset(ctx: SyncContext) -> Optional[dict]:
    """Pull, then revert every pending local change.

    Local creations are deleted, local modifications are overwritten with
    the remote content and local deletions are restored from the remote.

    Returns:
        Statistics of the run, or None if another sync is running
    """
    with engine_run(ctx, "reset") as acquired:
        if not acquired:
            return None
        ctx.ensure_online()
        run_pull(ctx)

        snapshot = ctx.operations.snapshot()
        stats = revert_operations(ctx, snapshot)
        ctx.operations.clear_all(list(snapshot))

        ctx.state.last_synced_at = utcnow()
        ctx.state.change_cursor = ctx.client.get_changes_start_token()
        ctx.checkpoint()

    ctx.output.success("Reset complete: the vault matches the drive.")
    return stats


def revert_operations(ctx: SyncContext, operations: Operations) -> dict:
    """Undo the given pending operations locally.

    Each reverted entry is cleared from the log as soon as it is applied.

    Args:
        ctx: Sync context
        operations: Path to operation kind

    Returns:
        Counts of removed, restored and recreated paths
    """
    creates = [p for p, k in operations.items() if k == OperationKind.CREATE]
    modifies = [p for p, k in operations.items() if k == OperationKind.MODIFY]
    deletes = [p for p, k in operations.items() if k == OperationKind.DELETE]
    stats = {"removed": 0, "restored": 0, "recreated": 0}

    if creates:
        stats["removed"] = _revert_creates(ctx, creates)
    ctx.progress("Syncing (33%)")
    if modifies:
        stats["restored"] = _revert_modifies(ctx, modifies)
    ctx.progress("Syncing (66%)")
    if deletes:
        stats["recreated"] = _revert_deletes(ctx, deletes)
    ctx.progress("Syncing (100%)")

    logger.info(
        "Reverted %d creation(s), %d modification(s), %d deletion(s)",
        len(creates),
        len(modifies),
        len(deletes),
    )
    return stats


def _revert_creates(ctx: SyncContext, paths: list[str]) -> int:
    nodes = [node for node in map(ctx.tree.get_node, paths) if node is not None]
    delete_minimum_operations(nodes, ctx.tree.delete, ctx.batch_size)
    ctx.operations.clear_all(paths)
    ctx.checkpoint()
    return len(nodes)


def _revert_modifies(ctx: SyncContext, paths: list[str]) -> int:
    ids = {p: ctx.identity.id_for_path(p) for p in paths}
    unknown = [p for p, file_id in ids.items() if file_id is None]
    if unknown:
        ids.update(ctx.client.ids_from_paths(unknown))

    gone = []
    restores = []
    for path in paths:
        node = ctx.tree.get_node(path)
        file_id = ids.get(path)
        if node is None or node.is_folder:
            ctx.operations.clear(path)
        elif file_id is None:
            gone.append(node)
        else:
            restores.append(partial(_restore_file, ctx, path, file_id))

    if gone:
        # Not on the drive: the remote state is that the file does not exist
        delete_minimum_operations(gone, ctx.tree.delete, ctx.batch_size)
        ctx.operations.clear_all([n.path for n in gone])
    ctx.run(restores)
    ctx.checkpoint()
    return len(restores) + len(gone)


def _restore_file(ctx: SyncContext, path: str, file_id: str) -> None:
    content = ctx.client.get_file(file_id)
    metadata = ctx.client.get_file_metadata(file_id)
    ctx.tree.write_file(path, content, metadata.mtime)
    ctx.identity.set(file_id, path)
    ctx.operations.clear(path)
    ctx.checkpoint()


def _revert_deletes(ctx: SyncContext, paths: list[str]) -> int:
    # Children of a deleted folder may have no log entry of their own
    wanted = set(paths)
    for _, known in ctx.identity:
        if any(is_descendant(known, p) for p in paths):
            wanted.add(known)

    objects = ctx.client.objects_from_paths(sorted(wanted))
    folders = [obj for obj in objects.values() if obj.is_folder]
    files = [obj for obj in objects.values() if not obj.is_folder]

    for batch in depth_batches(folders, key=lambda obj: obj.path or ""):
        ctx.run([partial(_recreate_folder, ctx, obj) for obj in batch])
    ctx.run([partial(_recreate_file, ctx, obj) for obj in files])

    ctx.operations.clear_all(paths)
    ctx.checkpoint()
    return len(objects)


def _recreate_folder(ctx: SyncContext, obj: RemoteObject) -> None:
    path = obj.path or ""
    ctx.tree.create_folder(path)
    ctx.identity.set(obj.id, path)
    ctx.operations.clear(path)
    ctx.checkpoint()


def _recreate_file(ctx: SyncContext, obj: RemoteObject) -> None:
    path = obj.path or ""
    content = ctx.client.get_file(obj.id)
    ctx.tree.write_file(path, content, obj.mtime)
    ctx.identity.set(obj.id, path)
    ctx.operations.clear(path)
    ctx.checkpoint()
