"""Data models for Drive API responses."""

from dataclasses import dataclass
from typing import Any, Optional

from .utils import FOLDER_MIME_TYPE


@dataclass
class DriveFile:
    """A file or folder living in Google Drive."""

    id: str
    name: str
    modified_time: Optional[str] = None
    """RFC 3339 modification time as listed by Drive, kept for display only"""

    mime_type: Optional[str] = None

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "DriveFile":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            modified_time=data.get("modifiedTime"),
            mime_type=data.get("mimeType"),
        )


@dataclass
class SharedDrive:
    """A shared drive the user has access to."""

    id: str
    name: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "SharedDrive":
        return cls(id=data["id"], name=data.get("name", ""))
