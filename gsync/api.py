"""API client for Google Drive."""

from __future__ import annotations

import json
import logging
import mimetypes
import random
import time
import uuid
from pathlib import Path
from typing import Any, Protocol

import httpx

from .exceptions import (
    GSyncAPIError,
    GSyncAuthenticationError,
    GSyncIOError,
    GSyncNetworkError,
    GSyncNotFoundError,
    GSyncPermissionError,
    GSyncRateLimitError,
)
from .id_pool import IdPool
from .models import DriveFile, SharedDrive
from .utils import DEFAULT_ID_BATCH_SIZE, FOLDER_MIME_TYPE, quote_query_value

logger = logging.getLogger(__name__)

API_URL = "https://www.googleapis.com/drive/v3"
UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"

LIST_FIELDS = "kind,incompleteSearch,files/kind,files/modifiedTime,files/id,files/name,files/mimeType"


class TokenProvider(Protocol):
    """Supplies a valid bearer token, refreshing it when needed."""

    def get_access_token(self) -> str: ...


class DriveClient:
    """Client for the Google Drive v3 API."""

    def __init__(
        self,
        token_provider: TokenProvider,
        drive_id: str | None = None,
        api_url: str = API_URL,
        upload_url: str = UPLOAD_URL,
        max_retries: int = 0,
        retry_delay: float = 1.0,
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the Drive client.

        Args:
            token_provider: Source of OAuth2 access tokens
            drive_id: Shared drive to search in (None for "My Drive")
            api_url: Base URL of the metadata API
            upload_url: Base URL of the upload API
            max_retries: Retry attempts for network, rate limit and 5xx
                errors (default: 0, a failure aborts the caller)
            retry_delay: Initial delay between retries in seconds
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.token_provider = token_provider
        self.drive_id = drive_id
        self.api_url = api_url
        self.upload_url = upload_url
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None
        self.id_pool = IdPool(self.generate_ids)

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> DriveClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Exponential backoff with +/- 25% jitter."""
        base_delay = self.retry_delay * (2**attempt)
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    @staticmethod
    def _error_from_response(response: httpx.Response) -> GSyncAPIError:
        """Turn an error response into the matching exception.

        Google answers with ``{"error": {"code": ..., "message": ...}}``; the
        HTTP status is used when the body cannot be parsed.
        """
        status_code = response.status_code
        message = f"API request failed with status {status_code}"
        try:
            error = response.json().get("error")
            if isinstance(error, dict):
                status_code = int(error.get("code") or status_code)
                if error.get("message"):
                    message = f"{message}: {error['message']}"
            elif isinstance(error, str):
                message = f"{message}: {error}"
        except (ValueError, AttributeError):
            pass

        if status_code == 401:
            return GSyncAuthenticationError(message, code=status_code)
        if status_code == 403:
            return GSyncPermissionError(message, code=status_code)
        if status_code == 404:
            return GSyncNotFoundError(message, code=status_code)
        if status_code == 429:
            return GSyncRateLimitError(message, code=status_code)
        return GSyncAPIError(message, code=status_code)

    def _should_retry(self, error: GSyncAPIError, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        if isinstance(error, (GSyncNetworkError, GSyncRateLimitError)):
            return True
        return 500 <= error.code < 600

    def _request(
        self,
        method: str,
        url: str,
        expect_json: bool = True,
        **kwargs: Any,
    ) -> Any:
        """Make an authorized API request.

        Args:
            method: HTTP method
            url: Absolute URL
            expect_json: Whether the response carries a JSON body
            **kwargs: Additional arguments passed to httpx

        Returns:
            Response JSON data ({} for empty bodies)

        Raises:
            GSyncAPIError: If the request fails
        """
        client = self._get_client()
        headers = dict(kwargs.pop("headers", None) or {})

        for attempt in range(self.max_retries + 1):
            headers["Authorization"] = (
                f"Bearer {self.token_provider.get_access_token()}"
            )
            try:
                response = client.request(method, url, headers=headers, **kwargs)
            except httpx.RequestError as e:
                error: GSyncAPIError = GSyncNetworkError(f"Network error: {e}")
                if self._should_retry(error, attempt):
                    time.sleep(self._calculate_retry_delay(attempt))
                    continue
                raise error from e

            if response.is_error:
                error = self._error_from_response(response)
                if self._should_retry(error, attempt):
                    retry_after = response.headers.get("Retry-After")
                    if retry_after and retry_after.isdigit():
                        delay = float(retry_after)
                    else:
                        delay = self._calculate_retry_delay(attempt)
                    logger.debug("Retrying %s %s in %.1fs: %s", method, url, delay, error)
                    time.sleep(delay)
                    continue
                raise error

            if not expect_json or not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise GSyncAPIError(
                    f"Invalid JSON response from {url}", code=response.status_code
                ) from e

        raise GSyncAPIError("Request failed after all retry attempts")

    # =========================
    # Ids
    # =========================

    def generate_ids(self, count: int = DEFAULT_ID_BATCH_SIZE) -> list[str]:
        """Request a batch of unused file ids from Drive."""
        result = self._request(
            "GET", f"{self.api_url}/files/generateIds", params={"count": count}
        )
        return list(result.get("ids", []))

    # =========================
    # Listing
    # =========================

    def list_files(
        self,
        name: str | None = None,
        parent_id: str | None = None,
        folders_only: bool = False,
        drive_id: str | None = None,
    ) -> list[DriveFile]:
        """List non-trashed files matching a name and parent.

        Args:
            name: Exact file name to match
            parent_id: Only entries inside this folder
            folders_only: Only return folders
            drive_id: Shared drive to search (defaults to the client's drive)

        Returns:
            Matching files, following all result pages
        """
        clauses = ["trashed = false"]
        if name is not None:
            clauses.insert(0, f"name = {quote_query_value(name)}")
        if folders_only:
            clauses.append(f"mimeType = '{FOLDER_MIME_TYPE}'")
        if parent_id is not None:
            clauses.append(f"{quote_query_value(parent_id)} in parents")

        drive_id = drive_id or self.drive_id
        params: dict[str, Any] = {
            "q": " and ".join(clauses),
            "corpora": "drive" if drive_id else "user",
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
            "fields": f"nextPageToken,{LIST_FIELDS}",
        }
        if drive_id:
            params["driveId"] = drive_id

        files: list[DriveFile] = []
        while True:
            result = self._request("GET", f"{self.api_url}/files", params=params)
            files.extend(DriveFile.from_api(item) for item in result.get("files", []))
            page_token = result.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token
        return files

    def find_folder(self, name: str, parent_id: str) -> DriveFile | None:
        """Find a folder by exact name inside a parent folder.

        If several folders share the name the last one listed wins.
        """
        folders = self.list_files(name=name, parent_id=parent_id, folders_only=True)
        return folders[-1] if folders else None

    def get_shared_drives(self) -> list[SharedDrive]:
        """List the shared drives the user has access to."""
        result = self._request(
            "GET", f"{self.api_url}/drives", params={"pageSize": 100}
        )
        return [SharedDrive.from_api(item) for item in result.get("drives", [])]

    # =========================
    # Mutations
    # =========================

    def create_folder(self, name: str, parent_id: str) -> str:
        """Create a folder and return its id.

        Raises:
            GSyncNotFoundError: If the parent folder does not exist
        """
        file_id = self.id_pool.acquire()
        metadata = {
            "id": file_id,
            "name": name,
            "mimeType": FOLDER_MIME_TYPE,
            "parents": [parent_id],
        }
        self._request(
            "POST",
            f"{self.api_url}/files",
            params={"supportsAllDrives": "true"},
            json=metadata,
        )
        logger.debug("Created folder %r (%s) in %s", name, file_id, parent_id)
        return file_id

    def upload_file(self, file_path: Path, parent_id: str) -> str:
        """Upload a new file and return its id."""
        file_id = self.id_pool.acquire()
        mime_type = self._detect_mime_type(file_path)
        metadata = {
            "id": file_id,
            "name": file_path.name,
            "mimeType": mime_type,
            "parents": [parent_id],
        }
        self._upload("POST", f"{self.upload_url}/files", file_path, metadata)
        logger.debug("Uploaded %s as %s", file_path, file_id)
        return file_id

    def update_file(self, file_path: Path, file_id: str) -> None:
        """Replace the content of an existing file."""
        metadata = {"mimeType": self._detect_mime_type(file_path)}
        self._upload(
            "PATCH", f"{self.upload_url}/files/{file_id}", file_path, metadata
        )
        logger.debug("Updated %s (%s)", file_path, file_id)

    def delete_file(self, file_id: str) -> None:
        """Permanently delete a file or folder (folders recursively)."""
        self._request(
            "DELETE",
            f"{self.api_url}/files/{file_id}",
            expect_json=False,
            params={"supportsAllDrives": "true"},
        )
        logger.debug("Deleted %s", file_id)

    # =========================
    # Upload helpers
    # =========================

    def _detect_mime_type(self, file_path: Path) -> str:
        mime_type, _ = mimetypes.guess_type(str(file_path))
        return mime_type or "application/octet-stream"

    def _upload(
        self, method: str, url: str, file_path: Path, metadata: dict[str, Any]
    ) -> Any:
        """Send a multipart/related upload (metadata part + media part)."""
        try:
            data = file_path.read_bytes()
        except OSError as e:
            raise GSyncIOError(file_path, f"failed to read file: {e}") from e

        boundary = uuid.uuid4().hex
        body = b"".join(
            [
                f"--{boundary}\r\n".encode(),
                b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
                json.dumps(metadata).encode(),
                f"\r\n--{boundary}\r\n".encode(),
                f"Content-Type: {metadata['mimeType']}\r\n\r\n".encode(),
                data,
                f"\r\n--{boundary}--\r\n".encode(),
            ]
        )
        return self._request(
            method,
            url,
            params={"uploadType": "multipart", "supportsAllDrives": "true"},
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
            content=body,
        )
