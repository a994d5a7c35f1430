"""Pull: bring remote changes into the local vault.

A pull consists of three phases:

1. Deletions reported by the change feed are applied locally, except where
   they would destroy unsynced local edits.
2. Remote folders modified since the last sync are created locally,
   shallowest first.
3. Remote files modified since the last sync are downloaded, unless a local
   edit of the same file is still pending.

Local pending edits win: a remote change never overwrites a file that has an
unpushed local modification.
"""

import logging
from functools import partial
from typing import Optional

from ..local import LocalNode
from ..models import ChangeEntry, RemoteObject
from ..query import DateComparison, QueryMatch
from ..utils import format_timestamp, is_descendant, path_depth, utcnow
from .batching import depth_batches
from .context import SyncContext, engine_run
from .operations import OperationKind
from .planner import delete_minimum_operations

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
SKIPPED = "skipped"


def pull(ctx: SyncContext) -> Optional[dict]:
    """Pull remote changes into the vault.

    Does nothing and returns None if another sync is running.

    Args:
        ctx: Sync context

    Returns:
        Statistics of the run
    """
    with engine_run(ctx, "pull") as acquired:
        if not acquired:
            return None
        ctx.ensure_online()
        stats = run_pull(ctx)

    if stats["deleted"] or stats["folders"] or stats["downloaded"]:
        ctx.output.success("Files have been synced from the drive!")
    else:
        ctx.output.success("You're up to date!")
    return stats


def run_pull(ctx: SyncContext) -> dict:
    """Pull without taking the sync lock.

    Used directly by push and reset, which hold the lock already.

    Returns:
        Statistics of the run; ``applied`` holds every local path written
    """
    started_at = utcnow()
    stats: dict = {"deleted": 0, "folders": 0, "downloaded": 0, "skipped": 0}

    cursor = ctx.state.change_cursor
    if not cursor:
        # First sync: there is no deletion history to replay
        ctx.state.change_cursor = ctx.client.get_changes_start_token()

    since = format_timestamp(ctx.state.last_synced_at)
    logger.debug("Querying objects modified after %s", since)
    recently_modified = [
        obj
        for obj in ctx.client.search_files(
            matches=[QueryMatch(modified_time=DateComparison("gt", since))]
        )
        if obj.path
    ]
    changes, new_cursor = ctx.client.get_changes(cursor)

    deleted_nodes = _resolve_deletions(ctx, changes)
    for obj in recently_modified:
        ctx.identity.set(obj.id, obj.path or "")

    if deleted_nodes:
        recent_paths = {obj.path for obj in recently_modified}
        _apply_deletions(ctx, deleted_nodes, recent_paths, stats)
    ctx.progress("Syncing (33%)")

    folders = [obj for obj in recently_modified if obj.is_folder]
    files = [obj for obj in recently_modified if not obj.is_folder]
    applied = _apply_folders(ctx, folders, stats)
    ctx.progress("Syncing (66%)")
    applied |= _apply_files(ctx, files, stats)
    ctx.progress("Syncing (100%)")

    ctx.state.last_synced_at = started_at
    if new_cursor:
        ctx.state.change_cursor = new_cursor
    ctx.checkpoint()

    stats["applied"] = applied
    logger.info(
        "Pull finished: %d deleted, %d folder(s), %d downloaded, %d skipped",
        stats["deleted"],
        stats["folders"],
        stats["downloaded"],
        stats["skipped"],
    )
    return stats


def _resolve_deletions(
    ctx: SyncContext, changes: list[ChangeEntry]
) -> dict[str, LocalNode]:
    """Map removed remote ids to the local nodes they correspond to.

    The identity of a node that still exists locally is kept until the local
    delete has happened, so an interrupted pull sees the deletion again.
    """
    nodes: dict[str, LocalNode] = {}
    for change in changes:
        if not change.removed:
            continue
        path = ctx.identity.path_for_id(change.file_id)
        if path is None:
            continue
        node = ctx.tree.get_node(path)
        if node is None:
            # Already gone locally: a pending local delete is now moot
            ctx.identity.remove_id(change.file_id)
            if ctx.operations.get(path) == OperationKind.DELETE:
                ctx.operations.clear(path)
            continue
        nodes[change.file_id] = node
    return nodes


def _apply_deletions(
    ctx: SyncContext,
    nodes: dict[str, LocalNode],
    recent_paths: set,
    stats: dict,
) -> None:
    """Delete locally what was deleted remotely, keeping unsynced edits.

    A file with a pending local edit is kept. A folder is deleted only when
    every local child is deleted too; otherwise it is kept and, if the remote
    no longer knows it, scheduled for re-creation on the next push.
    """
    to_delete: list[LocalNode] = []
    delete_set: set = set()

    for file_id, node in nodes.items():
        if node.path in recent_paths:
            # Recreated remotely under a new id
            ctx.identity.remove_id(file_id)
            continue
        if node.is_folder:
            continue
        op = ctx.operations.get(node.path)
        if op in (OperationKind.MODIFY, OperationKind.CREATE):
            ctx.identity.remove_id(file_id)
            if not ctx.identity.has_path(node.path):
                ctx.operations.set(node.path, OperationKind.CREATE)
            logger.debug("Keeping %s: local edit pending", node.path)
            continue
        to_delete.append(node)
        delete_set.add(node.path)

    folders = sorted(
        (
            (file_id, n)
            for file_id, n in nodes.items()
            if n.is_folder and n.path not in recent_paths
        ),
        key=lambda item: path_depth(item[1].path),
        reverse=True,
    )
    for file_id, folder in folders:
        children = ctx.tree.list_children(folder.path)
        if all(child.path in delete_set for child in children):
            to_delete.append(folder)
            delete_set.add(folder.path)
            continue
        ctx.identity.remove_id(file_id)
        if not ctx.identity.has_path(folder.path):
            logger.debug("Keeping folder %s: it holds unsynced content", folder.path)
            ctx.operations.set(folder.path, OperationKind.CREATE)

    if not to_delete:
        ctx.checkpoint()
        return

    roots = delete_minimum_operations(to_delete, ctx.tree.delete, ctx.batch_size)
    for path in list(ctx.operations.snapshot()):
        if any(path == root or is_descendant(path, root) for root in roots):
            ctx.operations.clear(path)
    for root in roots:
        ctx.identity.remove_tree(root)
    stats["deleted"] += len(to_delete)
    ctx.checkpoint()


def _apply_folders(
    ctx: SyncContext, folders: list[RemoteObject], stats: dict
) -> set:
    applied: set = set()
    paths = [obj.path or "" for obj in folders]
    tick = ctx.progress_counter(33, 66, len(paths))
    for batch in depth_batches(paths):
        results = ctx.run([partial(_apply_folder, ctx, path, tick) for path in batch])
        for path, created in zip(batch, results):
            if created:
                applied.add(path)
                stats["folders"] += 1
    return applied


def _apply_folder(ctx: SyncContext, path: str, tick) -> bool:
    ctx.operations.clear(path)
    created = False
    if not ctx.tree.exists(path):
        ctx.tree.create_folder(path)
        created = True
    ctx.checkpoint()
    tick()
    return created


def _apply_files(ctx: SyncContext, files: list[RemoteObject], stats: dict) -> set:
    tick = ctx.progress_counter(66, 100, len(files))
    results = ctx.run([partial(_apply_file, ctx, obj.path or "", obj, tick) for obj in files])
    applied: set = set()
    for obj, result in zip(files, results):
        if result == SKIPPED:
            stats["skipped"] += 1
        else:
            stats["downloaded"] += 1
            applied.add(obj.path)
    return applied


def _apply_file(ctx: SyncContext, path: str, obj: RemoteObject, tick) -> str:
    """Download one remote file unless a local edit takes precedence."""
    node = ctx.tree.get_node(path)
    op = ctx.operations.get(path)

    if node is not None and op == OperationKind.MODIFY:
        logger.debug("Skipping %s: local modification pending", path)
        tick()
        return SKIPPED
    if node is not None and op == OperationKind.CREATE:
        # Exists on both sides now: push it as an update
        ctx.operations.set(path, OperationKind.MODIFY)
        ctx.checkpoint()
        tick()
        return SKIPPED

    content = ctx.client.get_file(obj.id)
    ctx.tree.write_file(path, content, obj.mtime)
    ctx.operations.clear(path)
    ctx.checkpoint()
    tick()
    return UPDATED if node is not None else CREATED
