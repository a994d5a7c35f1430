"""Data models for remote drive responses."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .utils import parse_iso_timestamp

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

# Fields requested from files.list unless the caller asks for fewer
DEFAULT_FIELDS = (
    "id",
    "name",
    "mimeType",
    "starred",
    "description",
    "properties",
    "modifiedTime",
)


@dataclass
class RemoteObject:
    """A file or folder stored on the remote drive."""

    id: str
    name: str = ""
    mime_type: str = ""
    description: str = ""
    starred: bool = False
    properties: dict[str, str] = field(default_factory=dict)
    modified_time: Optional[str] = None
    """RFC 3339 modification time as reported by the drive"""

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE

    @property
    def path(self) -> Optional[str]:
        """Vault-relative path carried in the property bag."""
        return self.properties.get("path")

    @property
    def modified_at(self) -> Optional[datetime]:
        return parse_iso_timestamp(self.modified_time)

    @property
    def mtime(self) -> Optional[float]:
        """Modification time as a Unix timestamp."""
        dt = self.modified_at
        return dt.timestamp() if dt else None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "RemoteObject":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            mime_type=data.get("mimeType", ""),
            description=data.get("description") or "",
            starred=bool(data.get("starred", False)),
            properties=dict(data.get("properties") or {}),
            modified_time=data.get("modifiedTime"),
        )


@dataclass
class ChangeEntry:
    """One entry of the remote change feed."""

    file_id: str
    removed: bool
    """Deleted or trashed remotely"""

    time: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "ChangeEntry":
        return cls(
            file_id=data["fileId"],
            removed=bool(data.get("removed", False))
            or bool((data.get("file") or {}).get("trashed", False)),
            time=data.get("time"),
        )


@dataclass
class FileListPage:
    """One page of a files.list response."""

    files: list[RemoteObject]
    next_page_token: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "FileListPage":
        return cls(
            files=[RemoteObject.from_api_response(f) for f in data.get("files", [])],
            next_page_token=data.get("nextPageToken"),
        )
