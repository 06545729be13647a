"""Exceptions raised by GSync."""

from __future__ import annotations

from pathlib import Path


class GSyncError(Exception):
    """Base exception for all GSync errors.

    Attributes:
        path: Local path being processed when the error occurred, if any
    """

    path: Path | None = None


class GSyncConfigError(GSyncError):
    """Configuration is missing or incomplete."""


class GSyncIOError(GSyncError):
    """Reading the local file tree failed."""

    def __init__(self, path: Path | str, message: str):
        self.path = Path(path)
        super().__init__(f"{path}: {message}")


class GSyncStorageError(GSyncError):
    """Reading or writing the local state database failed."""


class GSyncAPIError(GSyncError):
    """The Drive API rejected a request.

    Attributes:
        code: HTTP status or Google error code (0 when unknown)
    """

    def __init__(self, message: str, code: int = 0):
        self.code = code
        super().__init__(message)


class GSyncAuthenticationError(GSyncAPIError):
    """No valid access token could be obtained."""


class GSyncPermissionError(GSyncAPIError):
    """Access to a resource was forbidden."""


class GSyncNotFoundError(GSyncAPIError):
    """The requested file, folder or parent does not exist."""


class GSyncRateLimitError(GSyncAPIError):
    """Too many requests."""


class GSyncNetworkError(GSyncAPIError):
    """The request never reached the API."""
