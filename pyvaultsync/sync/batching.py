"""Depth batching and bounded concurrent execution."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional, TypeVar

from ..exceptions import BatchExecutionError
from ..utils import path_depth

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 10


def depth_batches(
    items: list[T], key: Optional[Callable[[T], str]] = None
) -> list[list[T]]:
    """Group hierarchical paths by depth, shallowest first.

    Group ``k`` (0-based) holds exactly the items whose path has ``k + 1``
    segments. Processing groups in order creates parents before children;
    items inside one group are independent of each other.

    Args:
        items: Paths, or objects carrying a path
        key: Extracts the path from an item (identity by default)

    Returns:
        One list per depth from 1 to the maximum depth; depths with no items
        yield empty lists

    Examples:
        >>> depth_batches(["a/b", "a", "c", "a/b/c"])
        [['a', 'c'], ['a/b'], ['a/b/c']]
    """
    if not items:
        return []

    get_path: Callable[[T], str] = key or (lambda item: item)  # type: ignore[assignment,return-value]
    depths = [path_depth(get_path(item)) for item in items]
    batches: list[list[T]] = [[] for _ in range(max(depths))]
    for item, depth in zip(items, depths):
        batches[depth - 1].append(item)
    return batches


def run_batched(
    operations: list[Callable[[], Any]],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> list[Any]:
    """Run zero-argument operations with at most ``batch_size`` in flight.

    Operations are split into consecutive chunks of ``batch_size``. The
    operations of a chunk run concurrently and the whole chunk settles before
    the next one starts.

    Args:
        operations: Callables to run
        batch_size: Concurrency ceiling

    Returns:
        Results in input order

    Raises:
        BatchExecutionError: If any operation failed. The chunk containing the
            failure still settles; later chunks are not started.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    results: list[Any] = [None] * len(operations)
    if not operations:
        return results

    with ThreadPoolExecutor(max_workers=min(batch_size, len(operations))) as executor:
        for start in range(0, len(operations), batch_size):
            chunk = operations[start : start + batch_size]
            futures = [executor.submit(op) for op in chunk]
            errors: list[tuple[int, BaseException]] = []
            for offset, future in enumerate(futures):
                index = start + offset
                exc = future.exception()
                if exc is None:
                    results[index] = future.result()
                else:
                    logger.debug("Operation %d failed: %s", index, exc)
                    errors.append((index, exc))
            if errors:
                raise BatchExecutionError(results, errors)

    return results


def raise_first(error: BatchExecutionError) -> None:
    """Re-raise the first underlying error of a failed batch run.

    Engines surface the original exception type (remote call failure, local
    I/O failure) rather than the batch wrapper.
    """
    first = error.first_error
    if isinstance(first, Exception):
        raise first from error
    raise error
