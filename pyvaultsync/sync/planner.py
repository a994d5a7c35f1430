"""Minimum-operations deletion planning.

Deleting a folder (locally or remotely) removes everything below it, so a
deletion set only needs one call per independent subtree root.
"""

import logging
from typing import Callable, Protocol

from ..utils import is_descendant, path_depth
from .batching import DEFAULT_BATCH_SIZE, run_batched

logger = logging.getLogger(__name__)


class Node(Protocol):
    path: str
    is_folder: bool


def prune_descendants(paths: list[str]) -> list[str]:
    """Keep only the topmost paths of a set, in input order.

    Examples:
        >>> prune_descendants(["a/b", "a", "a/b/c", "d"])
        ['a', 'd']
    """
    unique = set(paths)
    kept = []
    for path in paths:
        parts = path.split("/")
        ancestors = ("/".join(parts[:i]) for i in range(1, len(parts)))
        if not any(a in unique for a in ancestors) and path not in kept:
            kept.append(path)
    return kept


def plan_deletions(nodes: list[Node]) -> list[list[Node]]:
    """Plan the delete calls for a set of nodes.

    Folders are visited by ascending depth. Once a folder is targeted, every
    node at or below it is dropped from the working set. Remaining non-folder
    nodes form the final group.

    Args:
        nodes: Files and folders marked for deletion

    Returns:
        Groups of nodes to delete, in execution order; nodes inside a group
        may be deleted concurrently
    """
    remaining = list(nodes)
    groups: list[list[Node]] = []

    folder_depths = [path_depth(n.path) for n in remaining if n.is_folder]
    if folder_depths:
        for depth in range(1, max(folder_depths) + 1):
            targets = [
                n for n in remaining if n.is_folder and path_depth(n.path) == depth
            ]
            if not targets:
                continue
            groups.append(targets)
            for folder in targets:
                remaining = [
                    n
                    for n in remaining
                    if n.path != folder.path and not is_descendant(n.path, folder.path)
                ]

    if remaining:
        groups.append(remaining)
    return groups


def delete_minimum_operations(
    nodes: list[Node],
    delete: Callable[[str], None],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> list[str]:
    """Delete nodes with one call per independent subtree root.

    Args:
        nodes: Files and folders marked for deletion
        delete: Deletes a path (recursively for folders)
        batch_size: Concurrency ceiling for each group

    Returns:
        The paths that were targeted, in call order
    """
    targeted: list[str] = []
    for group in plan_deletions(nodes):
        run_batched([_bind(delete, n.path) for n in group], batch_size)
        targeted.extend(n.path for n in group)
    logger.debug(
        "Deleted %d root(s) for %d node(s)", len(targeted), len(nodes)
    )
    return targeted


def _bind(delete: Callable[[str], None], path: str) -> Callable[[], None]:
    return lambda: delete(path)
