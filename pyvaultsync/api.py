"""API client for the remote drive."""

from __future__ import annotations

import json
import logging
import mimetypes
import random
import re
import threading
import time
import uuid
from typing import Any, Callable, Literal, Union

import httpx

from .auth import RefreshTokenAuth
from .config import config
from .exceptions import (
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
)
from .models import (
    DEFAULT_FIELDS,
    FOLDER_MIME_TYPE,
    ChangeEntry,
    FileListPage,
    RemoteObject,
)
from .query import QueryMatch, build_query, has_full_text
from .utils import MAX_BATCH_REQUESTS, MAX_PAGE_SIZE

logger = logging.getLogger(__name__)

Order = Literal["ascending", "descending"]
AuthType = Union[httpx.Auth, Callable[[httpx.Request], httpx.Request]]

# Property marking the vault root folder on the drive
ROOT_MARKER = "vaultsync"

# Paths looked up per files.list call when resolving many paths at once
PATHS_PER_QUERY = 50

_BATCH_STATUS_RE = re.compile(rb"HTTP/\d(?:\.\d)? (\d{3})")


class DriveClient:
    """Client for interacting with the remote drive API."""

    def __init__(
        self,
        refresh_token: str | None = None,
        vault_name: str | None = None,
        api_url: str | None = None,
        token_url: str | None = None,
        ping_url: str | None = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float | None = None,
        auth: AuthType | None = None,
        transport: httpx.BaseTransport | None = None,
        on_auth_invalid: Callable[[], None] | None = None,
    ):
        """Initialize the drive client.

        Args:
            refresh_token: Refresh token used to obtain access tokens
            vault_name: Name of the vault; scopes every query and tags every
                object this client creates
            api_url: Optional API URL (uses config if not provided)
            token_url: Optional token endpoint (uses config if not provided)
            ping_url: Optional connectivity check URL
            max_retries: Retries on HTTP 429 responses (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Per-request timeout in seconds (uses config if not provided)
            auth: Explicit httpx auth, overrides ``refresh_token``
            transport: Optional httpx transport (used by tests)
            on_auth_invalid: Called when the refresh token is rejected
        """
        self.api_url = (api_url or config.api_url).rstrip("/")
        self.ping_url = ping_url or config.ping_url
        self.vault_name = vault_name or config.vault_name
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout if timeout is not None else config.timeout
        self.transport = transport

        if not self.vault_name:
            raise VaultSyncConfigError(
                "Vault not configured. Run 'pyvaultsync init' or set VAULTSYNC_VAULT."
            )

        if auth is None:
            if not refresh_token:
                raise VaultSyncConfigError(
                    "Refresh token not configured. Run 'pyvaultsync init' or "
                    "set VAULTSYNC_REFRESH_TOKEN."
                )
            auth = RefreshTokenAuth(
                refresh_token=refresh_token,
                token_url=token_url or config.token_url,
                client_id=config.client_id,
                client_secret=config.client_secret,
                on_invalid=on_auth_invalid,
                timeout=self.timeout,
            )
        self.auth = auth

        self._client: httpx.Client | None = None
        self._root_folder_id: str | None = None
        self._root_lock = threading.Lock()

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                base_url=self.api_url,
                auth=self.auth,
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self.transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> "DriveClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if a request should be retried.

        Only rate limiting is retried here. Every other failure surfaces to
        the caller; the sync engines resume the unfinished work on the next
        run instead.

        Args:
            exception: The exception that occurred
            attempt: Current attempt number (0-based)

        Returns:
            True if the request should be retried, False otherwise
        """
        if attempt >= self.max_retries:
            return False
        return isinstance(exception, DriveRateLimitError)

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # Add jitter: +/- 25% of base delay
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _handle_http_error(self, e: httpx.HTTPStatusError) -> DriveAPIError:
        """Map an HTTP error response to a pyvaultsync exception.

        Args:
            e: The HTTP error exception

        Returns:
            Exception to raise
        """
        status_code = e.response.status_code

        if status_code == 401:
            return DriveAuthenticationError("Invalid or expired credential")
        if status_code == 403:
            # The drive reports per-user rate limits as 403 as well
            if b"rateLimitExceeded" in e.response.content:
                return DriveRateLimitError("Rate limit exceeded")
            return DrivePermissionError("Access forbidden - check your permissions")
        if status_code == 404:
            return DriveNotFoundError("Resource not found")
        if status_code == 429:
            return DriveRateLimitError("Rate limit exceeded - please try again later")

        error_msg = f"API request failed with status {status_code}"
        try:
            if e.response.content:
                error_data = e.response.json()
                if isinstance(error_data, dict):
                    error = error_data.get("error")
                    msg = (
                        error.get("message") if isinstance(error, dict) else error
                    ) or error_data.get("message")
                    if msg:
                        error_msg = f"{error_msg}: {msg}"
        except ValueError:
            # Not a JSON body, keep the status-based message
            pass
        return DriveAPIError(error_msg)

    def _send(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping failures and retrying rate limits.

        Args:
            method: HTTP method
            endpoint: API endpoint path (relative to the API URL) or
                absolute URL
            **kwargs: Additional arguments passed to httpx

        Returns:
            The successful response

        Raises:
            DriveAPIError: If the request fails
        """
        client = self._get_client()
        last_exception: Exception | None = None

        for attempt in range(self.max_retries + 1):
            try:
                response = client.request(method, endpoint, **kwargs)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                error = self._handle_http_error(e)
                last_exception = error
                if self._should_retry(error, attempt):
                    retry_after = e.response.headers.get("Retry-After")
                    if retry_after and retry_after.isdigit():
                        delay = float(retry_after)
                    else:
                        delay = self._calculate_retry_delay(attempt)
                    logger.debug(
                        "Rate limited on %s %s, retrying in %.1fs",
                        method,
                        endpoint,
                        delay,
                    )
                    time.sleep(delay)
                    continue
                raise error from e
            except httpx.RequestError as e:
                raise DriveNetworkError(f"Network error: {e}") from e

        if last_exception:
            raise last_exception
        raise DriveAPIError("Request failed after all retry attempts")

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Make an API request and decode its JSON body.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            **kwargs: Additional arguments passed to httpx

        Returns:
            Response JSON data (empty dict for empty bodies)
        """
        response = self._send(method, endpoint, **kwargs)
        if not response.content:
            return {}

        content_type = response.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            if "text/html" in content_type:
                raise DriveAuthenticationError(
                    "Server returned HTML instead of JSON - check your credential"
                )
            raise DriveInvalidResponseError(f"Unexpected response type: {content_type}")
        try:
            return response.json()
        except ValueError as e:
            raise DriveInvalidResponseError("Invalid JSON response from server") from e

    # =========================
    # Listing
    # =========================

    def paginate_files(
        self,
        matches: list[QueryMatch] | None = None,
        page_token: str | None = None,
        page_size: int = 30,
        include: tuple[str, ...] | list[str] = DEFAULT_FIELDS,
        order: Order = "descending",
    ) -> FileListPage:
        """Fetch one page of files matching a query.

        Args:
            matches: Query clauses (see :func:`pyvaultsync.query.build_query`)
            page_token: Continuation token from a previous page
            page_size: Page size (max 1000)
            include: File fields to return
            order: Name ordering (ignored for full-text queries)

        Returns:
            The page
        """
        fields = list(include)
        if "properties" not in fields:
            fields.append("properties")
        params: dict[str, Any] = {
            "fields": f"nextPageToken,files({','.join(fields)})",
            "pageSize": min(page_size, MAX_PAGE_SIZE),
            "q": build_query(matches, self.vault_name),
        }
        if not has_full_text(matches):
            params["orderBy"] = "name" if order == "ascending" else "name desc"
        if page_token:
            params["pageToken"] = page_token

        data = self._request("GET", "drive/v3/files", params=params)
        return FileListPage.from_api_response(data)

    def search_files(
        self,
        matches: list[QueryMatch] | None = None,
        include: tuple[str, ...] | list[str] = DEFAULT_FIELDS,
        order: Order = "descending",
        include_root: bool = False,
    ) -> list[RemoteObject]:
        """Fetch every file matching a query, following continuation tokens.

        Args:
            matches: Query clauses
            include: File fields to return
            order: Name ordering
            include_root: Whether to keep the vault root folder in the results

        Returns:
            All matching remote objects
        """
        files: list[RemoteObject] = []
        page_token: str | None = None
        while True:
            page = self.paginate_files(
                matches=matches,
                page_token=page_token,
                page_size=MAX_PAGE_SIZE,
                include=include,
                order=order,
            )
            files.extend(page.files)
            if not page.next_page_token:
                break
            page_token = page.next_page_token

        if include_root:
            return files
        return [f for f in files if f.properties.get(ROOT_MARKER) != "root"]

    def get_file_metadata(self, file_id: str) -> RemoteObject:
        data = self._request(
            "GET",
            f"drive/v3/files/{file_id}",
            params={"fields": ",".join(DEFAULT_FIELDS)},
        )
        return RemoteObject.from_api_response(data)

    def id_from_path(self, path: str) -> str | None:
        files = self.search_files(
            matches=[QueryMatch(properties={"path": path})], include=["id"]
        )
        return files[0].id if files else None

    def ids_from_paths(self, paths: list[str]) -> dict[str, str]:
        """Resolve vault paths to remote ids.

        Args:
            paths: Vault-relative paths

        Returns:
            Mapping of path to id for the paths that exist remotely
        """
        found: dict[str, str] = {}
        for i in range(0, len(paths), PATHS_PER_QUERY):
            chunk = paths[i : i + PATHS_PER_QUERY]
            files = self.search_files(
                matches=[QueryMatch(properties={"path": p}) for p in chunk],
                include=["id"],
            )
            for f in files:
                if f.path is not None:
                    found[f.path] = f.id
        return found

    def objects_from_paths(self, paths: list[str]) -> dict[str, RemoteObject]:
        """Like :meth:`ids_from_paths` but returning the full objects."""
        found: dict[str, RemoteObject] = {}
        for i in range(0, len(paths), PATHS_PER_QUERY):
            chunk = paths[i : i + PATHS_PER_QUERY]
            files = self.search_files(
                matches=[QueryMatch(properties={"path": p}) for p in chunk]
            )
            for f in files:
                if f.path is not None:
                    found[f.path] = f
        return found

    # =========================
    # Folders
    # =========================

    def get_root_folder_id(self) -> str:
        """Return the vault root folder id, creating the folder if needed."""
        with self._root_lock:
            if self._root_folder_id:
                return self._root_folder_id

            roots = self.search_files(
                matches=[QueryMatch(properties={ROOT_MARKER: "root"})],
                include=["id"],
                include_root=True,
            )
            if roots:
                self._root_folder_id = roots[0].id
            else:
                logger.debug("Creating vault root folder %s", self.vault_name)
                data = self._request(
                    "POST",
                    "drive/v3/files",
                    json={
                        "name": self.vault_name,
                        "mimeType": FOLDER_MIME_TYPE,
                        "description": f"Vault: {self.vault_name}",
                        "properties": {
                            ROOT_MARKER: "root",
                            "vault": self.vault_name,
                        },
                    },
                )
                self._root_folder_id = data["id"]
            return self._root_folder_id

    def _with_vault(self, properties: dict[str, str] | None) -> dict[str, str]:
        props = dict(properties or {})
        props.setdefault("vault", self.vault_name)
        return props

    def create_folder(
        self,
        name: str,
        parent_id: str | None = None,
        properties: dict[str, str] | None = None,
        modified_time: str | None = None,
        description: str | None = None,
    ) -> str:
        """Create a new folder.

        Args:
            name: Name of the new folder
            parent_id: ID of the parent folder (None for the vault root)
            properties: Property bag; ``path`` should hold the vault path
            modified_time: RFC 3339 modification time
            description: Optional description

        Returns:
            ID of the created folder
        """
        metadata: dict[str, Any] = {
            "name": name,
            "mimeType": FOLDER_MIME_TYPE,
            "parents": [parent_id or self.get_root_folder_id()],
            "properties": self._with_vault(properties),
        }
        if modified_time:
            metadata["modifiedTime"] = modified_time
        if description:
            metadata["description"] = description

        data = self._request(
            "POST", "drive/v3/files", params={"fields": "id"}, json=metadata
        )
        return data["id"]

    # =========================
    # Upload Operations
    # =========================

    @staticmethod
    def _multipart_related(
        metadata: dict[str, Any], content: bytes, mime_type: str
    ) -> tuple[bytes, str]:
        boundary = f"vaultsync_{uuid.uuid4().hex}"
        head = (
            f"--{boundary}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{json.dumps(metadata)}\r\n"
            f"--{boundary}\r\n"
            f"Content-Type: {mime_type}\r\n\r\n"
        ).encode("utf-8")
        tail = f"\r\n--{boundary}--\r\n".encode("utf-8")
        return head + content + tail, f"multipart/related; boundary={boundary}"

    @staticmethod
    def _detect_mime_type(name: str) -> str:
        mime_type, _ = mimetypes.guess_type(name)
        return mime_type or "application/octet-stream"

    def upload_file(
        self,
        content: bytes,
        name: str,
        parent_id: str | None = None,
        properties: dict[str, str] | None = None,
        modified_time: str | None = None,
        mime_type: str | None = None,
    ) -> str:
        """Upload a new file (metadata and content in one multipart request).

        Args:
            content: File content
            name: File name
            parent_id: ID of the parent folder (None for the vault root)
            properties: Property bag; ``path`` should hold the vault path
            modified_time: RFC 3339 modification time
            mime_type: Content type (guessed from the name if omitted)

        Returns:
            ID of the created file
        """
        mime_type = mime_type or self._detect_mime_type(name)
        metadata: dict[str, Any] = {
            "name": name,
            "mimeType": mime_type,
            "parents": [parent_id or self.get_root_folder_id()],
            "properties": self._with_vault(properties),
        }
        if modified_time:
            metadata["modifiedTime"] = modified_time

        body, content_type = self._multipart_related(metadata, content, mime_type)
        try:
            data = self._request(
                "POST",
                "upload/drive/v3/files",
                params={"uploadType": "multipart", "fields": "id"},
                content=body,
                headers={"Content-Type": content_type},
            )
        except (DriveAuthenticationError, DriveNetworkError, DriveRateLimitError):
            raise
        except DriveAPIError as e:
            raise DriveUploadError(f"Upload of {name} failed: {e}") from e
        return data["id"]

    def update_file(
        self,
        file_id: str,
        content: bytes,
        modified_time: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Replace the content (and optionally metadata) of a file.

        Returns:
            ID of the updated file
        """
        new_metadata = dict(metadata or {})
        if modified_time:
            new_metadata["modifiedTime"] = modified_time
        mime_type = "application/octet-stream"

        body, content_type = self._multipart_related(new_metadata, content, mime_type)
        try:
            data = self._request(
                "PATCH",
                f"upload/drive/v3/files/{file_id}",
                params={"uploadType": "multipart", "fields": "id"},
                content=body,
                headers={"Content-Type": content_type},
            )
        except (DriveAuthenticationError, DriveNetworkError, DriveRateLimitError):
            raise
        except DriveAPIError as e:
            raise DriveUploadError(f"Update of {file_id} failed: {e}") from e
        return data["id"]

    # =========================
    # Download Operations
    # =========================

    def get_file(self, file_id: str) -> bytes:
        """Download the content of a file.

        Raises:
            DriveDownloadError: If the download fails
        """
        try:
            response = self._send(
                "GET", f"drive/v3/files/{file_id}", params={"alt": "media"}
            )
        except (DriveAuthenticationError, DriveNetworkError, DriveRateLimitError):
            raise
        except DriveAPIError as e:
            raise DriveDownloadError(f"Download of {file_id} failed: {e}") from e
        return response.content

    # =========================
    # Delete Operations
    # =========================

    def batch_delete(self, ids: list[str]) -> list[int]:
        """Delete many files with multipart batch requests.

        Up to 100 delete sub-requests are sent per HTTP call. A sub-request
        answered with 404 counts as deleted.

        Args:
            ids: Remote ids to delete

        Returns:
            Sub-response status codes in input order

        Raises:
            DriveAPIError: If any sub-request failed
        """
        statuses: list[int] = []
        for i in range(0, len(ids), MAX_BATCH_REQUESTS):
            chunk = ids[i : i + MAX_BATCH_REQUESTS]
            boundary = f"batch_{uuid.uuid4().hex}"
            parts = [
                (
                    f"--{boundary}\r\n"
                    "Content-Type: application/http\r\n"
                    f"Content-ID: <item{index + 1}>\r\n\r\n"
                    f"DELETE /drive/v3/files/{file_id} HTTP/1.1\r\n\r\n"
                )
                for index, file_id in enumerate(chunk)
            ]
            body = "".join(parts) + f"--{boundary}--\r\n"
            response = self._send(
                "POST",
                "batch/drive/v3",
                content=body.encode("utf-8"),
                headers={"Content-Type": f"multipart/mixed; boundary={boundary}"},
            )
            chunk_statuses = [int(s) for s in _BATCH_STATUS_RE.findall(response.content)]
            if len(chunk_statuses) != len(chunk):
                raise DriveInvalidResponseError(
                    f"Batch response holds {len(chunk_statuses)} parts "
                    f"for {len(chunk)} requests"
                )
            statuses.extend(chunk_statuses)

        failed = [
            file_id
            for file_id, status in zip(ids, statuses)
            if not (200 <= status < 300 or status == 404)
        ]
        if failed:
            raise DriveAPIError(f"Failed to delete {len(failed)} file(s): {failed}")
        return statuses

    # =========================
    # Change feed
    # =========================

    def get_changes_start_token(self) -> str:
        data = self._request("GET", "drive/v3/changes/startPageToken")
        return data["startPageToken"]

    def get_changes(
        self, start_token: str | None
    ) -> tuple[list[ChangeEntry], str | None]:
        """Fetch every change since ``start_token``.

        Args:
            start_token: Cursor from a previous sync; empty means no history

        Returns:
            Tuple of (changes, new start token). The token is None when no
            start token was given.
        """
        if not start_token:
            return [], None

        changes: list[ChangeEntry] = []
        token = start_token
        while True:
            data = self._request(
                "GET",
                "drive/v3/changes",
                params={
                    "pageToken": token,
                    "pageSize": MAX_PAGE_SIZE,
                    "includeRemoved": "true",
                    "fields": "nextPageToken,newStartPageToken,"
                    "changes(fileId,removed,time,file(trashed))",
                },
            )
            changes.extend(ChangeEntry.from_api_response(c) for c in data.get("changes", []))
            if data.get("nextPageToken"):
                token = data["nextPageToken"]
                continue
            return changes, data.get("newStartPageToken")

    # =========================
    # Connectivity
    # =========================

    def check_connection(self) -> bool:
        """Return True if the network is reachable."""
        try:
            response = self._get_client().get(
                self.ping_url, auth=None, timeout=min(self.timeout, 10.0)
            )
        except httpx.RequestError as e:
            logger.debug("Connectivity check failed: %s", e)
            return False
        return response.is_success
