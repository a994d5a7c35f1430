"""Host application settings files.

The settings directory inside the vault is not tracked by the watcher.
Instead, every push uploads the settings files changed since the last sync.
"""

import fnmatch
import logging
from datetime import datetime
from functools import partial
from typing import Optional

from ..local import LocalNode
from ..utils import is_descendant, parent_path
from .batching import depth_batches
from .context import SyncContext
from .remote import ensure_remote_folder, upload_node

logger = logging.getLogger(__name__)


def is_app_path(app_dir: Optional[str], path: str) -> bool:
    """True if ``path`` is the settings directory or lies inside it."""
    if not app_dir:
        return False
    return path == app_dir or is_descendant(path, app_dir)


def matches_patterns(
    relative: str, include: list[str], exclude: list[str]
) -> bool:
    """Check a settings-directory-relative path against include/exclude globs.

    Examples:
        >>> matches_patterns("app.json", ["*.json"], ["workspace.json"])
        True
        >>> matches_patterns("workspace.json", ["*.json"], ["workspace.json"])
        False
    """
    if not any(fnmatch.fnmatch(relative, p) for p in include):
        return False
    return not any(fnmatch.fnmatch(relative, p) for p in exclude)


def find_app_files(ctx: SyncContext) -> list[LocalNode]:
    """Settings files selected by the include and exclude patterns."""
    if not ctx.app_dir or not ctx.tree.exists(ctx.app_dir):
        return []
    prefix = len(ctx.app_dir) + 1
    return [
        node
        for node in ctx.tree.walk(ctx.app_dir)
        if not node.is_folder
        and matches_patterns(node.path[prefix:], ctx.app_include, ctx.app_exclude)
    ]


def push_app_files(
    ctx: SyncContext, since: datetime, skip: Optional[set] = None
) -> int:
    """Upload settings files modified after ``since``.

    Args:
        ctx: Sync context
        since: Files with an older modification time are left alone
        skip: Paths to leave alone (just written by a pull)

    Returns:
        Number of files uploaded
    """
    threshold = since.timestamp()
    changed = [
        node
        for node in find_app_files(ctx)
        if node.mtime > threshold and node.path not in (skip or set())
    ]
    if not changed:
        return 0

    folders: set = set()
    for node in changed:
        ancestor = parent_path(node.path)
        while ancestor:
            folders.add(ancestor)
            ancestor = parent_path(ancestor)
    missing = [p for p in sorted(folders) if ctx.identity.id_for_path(p) is None]
    for batch in depth_batches(missing):
        ctx.run([partial(ensure_remote_folder, ctx, path) for path in batch])

    ctx.run([partial(_upload, ctx, node) for node in changed])
    logger.info("Uploaded %d settings file(s)", len(changed))
    return len(changed)


def _upload(ctx: SyncContext, node: LocalNode) -> None:
    upload_node(ctx, node)
    ctx.checkpoint()
