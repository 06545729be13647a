"""GSync - sync folders and files to Google Drive while respecting gitignore files."""

from .api import DriveClient
from .exceptions import (
    GSyncAPIError,
    GSyncAuthenticationError,
    GSyncConfigError,
    GSyncError,
    GSyncIOError,
    GSyncNetworkError,
    GSyncNotFoundError,
    GSyncPermissionError,
    GSyncRateLimitError,
    GSyncStorageError,
)

__version__ = "0.1.0"

__all__ = [
    "DriveClient",
    "GSyncError",
    "GSyncAPIError",
    "GSyncAuthenticationError",
    "GSyncConfigError",
    "GSyncIOError",
    "GSyncNetworkError",
    "GSyncNotFoundError",
    "GSyncPermissionError",
    "GSyncRateLimitError",
    "GSyncStorageError",
]
