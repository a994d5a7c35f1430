"""PyVaultSync - keep a local notes vault in sync with a cloud drive."""

from .api import DriveClient
from .exceptions import (
    BatchExecutionError,
    DriveAPIError,
    DriveAuthenticationError,
    DriveDownloadError,
    DriveInvalidResponseError,
    DriveNetworkError,
    DriveNotFoundError,
    DrivePermissionError,
    DriveRateLimitError,
    DriveUploadError,
    VaultSyncConfigError,
    VaultSyncError,
)
from .local import LocalNode, LocalTree
from .models import ChangeEntry, RemoteObject

__all__ = [
    "DriveClient",
    "LocalTree",
    "LocalNode",
    "RemoteObject",
    "ChangeEntry",
    "VaultSyncError",
    "VaultSyncConfigError",
    "BatchExecutionError",
    "DriveAPIError",
    "DriveAuthenticationError",
    "DriveDownloadError",
    "DriveInvalidResponseError",
    "DriveNetworkError",
    "DriveNotFoundError",
    "DrivePermissionError",
    "DriveRateLimitError",
    "DriveUploadError",
]
