"""Remote-side helpers shared by the push and settings-file phases."""

import logging
import threading
from typing import Optional

from ..local import LocalNode
from ..utils import file_name_from_path, format_timestamp, parent_path, utcnow
from .context import SyncContext

logger = logging.getLogger(__name__)

# Per-path locks: a missing folder is created once even when several uploads
# need it at the same time
_locks_guard = threading.Lock()
_path_locks: dict[str, threading.Lock] = {}


def _lock_for(path: str) -> threading.Lock:
    with _locks_guard:
        return _path_locks.setdefault(path, threading.Lock())


def ensure_remote_folder(ctx: SyncContext, path: str) -> str:
    """Return the remote id of a folder, creating it and its ancestors if needed.

    Args:
        ctx: Sync context
        path: Vault-relative folder path

    Returns:
        Remote folder id
    """
    known = ctx.identity.id_for_path(path)
    if known:
        return known

    parent = parent_path(path)
    parent_id = ensure_remote_folder(ctx, parent) if parent else None

    with _lock_for(path):
        folder_id = ctx.identity.id_for_path(path) or ctx.client.id_from_path(path)
        if folder_id is None:
            folder_id = ctx.client.create_folder(
                name=file_name_from_path(path),
                parent_id=parent_id,
                properties={"path": path},
                modified_time=format_timestamp(utcnow()),
            )
            logger.debug("Created remote folder %s (%s)", path, folder_id)
        ctx.identity.set(folder_id, path)
        return folder_id


def resolve_parent_id(ctx: SyncContext, path: str) -> Optional[str]:
    """Remote id of the folder holding ``path``; None for the vault root."""
    parent = parent_path(path)
    if parent is None:
        return None
    return ensure_remote_folder(ctx, parent)


def upload_node(ctx: SyncContext, node: LocalNode) -> str:
    """Upload a local file, updating the remote object if one exists already.

    The file is tagged with its vault path. Its remote modification time is
    the upload time, not the local mtime.

    Returns:
        Remote file id
    """
    content = ctx.tree.read_bytes(node.path)
    modified_time = format_timestamp(utcnow())
    file_id = ctx.identity.id_for_path(node.path)

    if file_id is not None:
        ctx.client.update_file(file_id, content, modified_time=modified_time)
        logger.debug("Updated remote %s (%s)", node.path, file_id)
        return file_id

    file_id = ctx.client.upload_file(
        content,
        node.name,
        parent_id=resolve_parent_id(ctx, node.path),
        properties={"path": node.path},
        modified_time=modified_time,
    )
    ctx.identity.set(file_id, node.path)
    logger.debug("Uploaded %s (%s)", node.path, file_id)
    return file_id
