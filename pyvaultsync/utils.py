"""Utility functions for pyvaultsync."""

from datetime import datetime, timezone
from typing import Optional

# =============================================================================
# Constants
# =============================================================================

# Maximum page size accepted by the files.list endpoint
MAX_PAGE_SIZE: int = 1000

# Maximum number of sub-requests per multipart batch call
MAX_BATCH_REQUESTS: int = 100

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# Timestamp utilities
# =============================================================================


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp as returned by the remote drive.

    Args:
        timestamp_str: Timestamp string (e.g., "2025-01-15T10:30:00.000Z")

    Returns:
        Timezone-aware datetime in UTC, or None if parsing fails
    """
    if not timestamp_str:
        return None

    try:
        # The 'Z' suffix indicates UTC time
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        dt = datetime.fromisoformat(timestamp_str)
    except (ValueError, AttributeError):
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format a datetime the way the remote drive expects it.

    Examples:
        >>> format_timestamp(datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc))
        '2025-01-15T10:30:00.000Z'
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Path utilities
# =============================================================================


def path_depth(path: str) -> int:
    """Number of segments in a vault-relative path.

    Examples:
        >>> path_depth("notes")
        1
        >>> path_depth("notes/daily/2025.md")
        3
    """
    return len(path.split("/"))


def file_name_from_path(path: str) -> str:
    """Last segment of a vault-relative path."""
    return path.split("/")[-1]


def parent_path(path: str) -> Optional[str]:
    """Parent of a vault-relative path, or None for top-level entries."""
    if "/" not in path:
        return None
    return path.rsplit("/", 1)[0]


def is_descendant(path: str, ancestor: str) -> bool:
    """True if ``path`` lies strictly below ``ancestor``."""
    return path.startswith(ancestor + "/")


def normalize_path(path: str) -> str:
    """Normalize a vault-relative path to forward slashes without edges."""
    return path.replace("\\", "/").strip("/")


# =============================================================================
# Progress messages
# =============================================================================


def sync_message(low: int, high: int, completed: int, total: int) -> str:
    """Progress message scaled into the ``low``..``high`` percent range.

    Examples:
        >>> sync_message(33, 66, 1, 2)
        'Syncing (49%)'
    """
    if total <= 0:
        return f"Syncing ({high}%)"
    return f"Syncing ({int(low + (high - low) * (completed / total))}%)"
