"""Exceptions raised by pyvaultsync."""

from typing import Any, Optional


class VaultSyncError(Exception):
    """Base exception for all pyvaultsync errors."""


class VaultSyncConfigError(VaultSyncError):
    """Configuration is missing or invalid."""


class DriveAPIError(VaultSyncError):
    """A call to the remote drive failed."""


class DriveAuthenticationError(DriveAPIError):
    """The stored credential is invalid or expired."""


class DrivePermissionError(DriveAPIError):
    """Access to a remote resource was forbidden."""


class DriveNotFoundError(DriveAPIError):
    """A remote resource does not exist."""


class DriveRateLimitError(DriveAPIError):
    """The remote drive is rate limiting requests."""


class DriveNetworkError(DriveAPIError):
    """The remote drive could not be reached (offline, DNS, timeout)."""


class DriveInvalidResponseError(DriveAPIError):
    """The remote drive answered with something we cannot parse."""


class DriveDownloadError(DriveAPIError):
    """Downloading file content failed."""


class DriveUploadError(DriveAPIError):
    """Uploading file content failed."""


class BatchExecutionError(VaultSyncError):
    """One or more operations of a bounded batch run failed.

    Attributes:
        results: Results in input order; ``None`` for failed or unstarted
            operations
        errors: ``(index, exception)`` pairs in input order
    """

    def __init__(
        self,
        results: list[Any],
        errors: list[tuple[int, BaseException]],
    ):
        self.results = results
        self.errors = errors
        first: Optional[BaseException] = errors[0][1] if errors else None
        super().__init__(
            f"{len(errors)} operation(s) failed"
            + (f", first error: {first}" if first is not None else "")
        )

    @property
    def first_error(self) -> Optional[BaseException]:
        return self.errors[0][1] if self.errors else None
