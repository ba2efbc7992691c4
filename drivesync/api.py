"""API client for the remote storage service."""

from __future__ import annotations

import logging
import mimetypes
import time
from typing import Any

import httpx

from .config import config
from .exceptions import (
    AuthenticationError,
    ConfigError,
    NetworkError,
    PermissionDeniedError,
    QuotaExceededError,
    RateLimitError,
    RemoteNotFoundError,
    TransferError,
)
from .utils import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY

logger = logging.getLogger(__name__)


class DriveClient:
    """Client for the remote object storage API.

    Implements the three operations the sync engine needs
    (:meth:`create_object`, :meth:`update_object`, :meth:`download_object`)
    on top of an authenticated httpx client with retries.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = 30.0,
    ):
        """Initialize API client.

        Args:
            api_key: Optional API key (uses config if not provided)
            api_url: Optional API URL (uses config if not provided)
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 30.0)
        """
        self.api_key = api_key or config.api_key
        self.api_url = (api_url or config.api_url).rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout

        if not self.api_key:
            raise ConfigError(
                "API key not configured. Please set DRIVESYNC_API_KEY environment "
                "variable or run 'drivesync init'."
            )

        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def _should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if a request should be retried.

        Args:
            exception: The exception that occurred
            attempt: Current attempt number (0-based)

        Returns:
            True if the request should be retried, False otherwise
        """
        if attempt >= self.max_retries:
            return False

        # Transient failures only; auth and permission errors never succeed
        # on a second attempt
        return isinstance(exception, (NetworkError, RateLimitError))

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        # Exponential backoff: retry_delay * (2 ** attempt)
        # With jitter to avoid thundering herd
        import random

        base_delay = self.retry_delay * (2**attempt)
        # Add jitter: +/- 25% of base delay
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _handle_http_error(
        self, e: httpx.HTTPStatusError, attempt: int
    ) -> tuple[TransferError, bool]:
        """Handle HTTP errors and determine if retry should occur.

        Args:
            e: The HTTP error exception
            attempt: Current attempt number

        Returns:
            Tuple of (exception to raise, should_retry)
        """
        status_code = e.response.status_code

        if status_code == 401:
            raise AuthenticationError(
                "Invalid API key or unauthorized access", cause=e
            ) from e
        elif status_code == 403:
            raise PermissionDeniedError(
                "Access forbidden - check your permissions", cause=e
            ) from e
        elif status_code == 404:
            raise RemoteNotFoundError("Remote object not found", cause=e) from e
        elif status_code in (402, 413, 507):
            raise QuotaExceededError(
                f"Storage quota exceeded (status {status_code})", cause=e
            ) from e
        elif status_code == 429:
            error: TransferError = RateLimitError(
                "Rate limit exceeded - please try again later", cause=e
            )
            return (error, attempt < self.max_retries)

        error_msg = f"API request failed with status {status_code}"

        # Try to extract more details from response body
        try:
            if e.response.content:
                error_data = e.response.json()
                if isinstance(error_data, dict):
                    msg = (
                        error_data.get("message")
                        or error_data.get("error")
                        or error_data.get("detail")
                    )
                    if msg:
                        error_msg = f"{error_msg}: {msg}"
        except ValueError:
            # Body is not JSON, keep the status-based message
            pass

        error = TransferError(error_msg, cause=e)
        # Retry on 5xx server errors
        should_retry = 500 <= status_code < 600 and attempt < self.max_retries
        return (error, should_retry)

    def _send(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        """Send an API request with retry logic.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            **kwargs: Additional arguments passed to httpx

        Returns:
            The successful response

        Raises:
            TransferError: If the request fails after all retries
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        last_exception: Exception | None = None
        client = self._get_client()

        for attempt in range(self.max_retries + 1):
            try:
                response = client.request(method, url, **kwargs)
                response.raise_for_status()
                return response

            except httpx.HTTPStatusError as e:
                error, should_retry = self._handle_http_error(e, attempt)
                last_exception = error

                if should_retry:
                    # Special handling for rate limits: use Retry-After header
                    retry_after = e.response.headers.get("Retry-After")
                    if (
                        isinstance(error, RateLimitError)
                        and retry_after
                        and retry_after.isdigit()
                    ):
                        delay = float(retry_after)
                    else:
                        delay = self._calculate_retry_delay(attempt)
                    logger.debug(
                        f"{method} {endpoint} failed ({error}), retrying in "
                        f"{delay:.1f}s"
                    )
                    time.sleep(delay)
                    continue
                raise error from e
            except httpx.RequestError as e:
                error = NetworkError(f"Network error: {e}", cause=e)
                last_exception = error
                if self._should_retry(error, attempt):
                    delay = self._calculate_retry_delay(attempt)
                    logger.debug(
                        f"{method} {endpoint} failed ({e}), retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    continue
                raise error from e

        # If we get here, we've exhausted all retries
        if last_exception:
            raise last_exception
        raise TransferError("Request failed after all retry attempts")

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Make an API request and decode the JSON body.

        Returns:
            Response JSON data ({} for an empty body)
        """
        response = self._send(method, endpoint, **kwargs)

        content_type = response.headers.get("Content-Type", "")
        if not response.content:
            return {}
        if "application/json" not in content_type:
            # An HTML page instead of JSON usually means a login redirect
            if "text/html" in content_type:
                raise AuthenticationError(
                    "Invalid API key - server returned HTML instead of JSON"
                )
            raise TransferError(f"Unexpected response type: {content_type}")

        try:
            return response.json()
        except ValueError as e:
            raise TransferError("Invalid JSON response from server", cause=e) from e

    @staticmethod
    def _extract_object_id(data: Any) -> str:
        obj = data.get("object", data) if isinstance(data, dict) else None
        object_id = obj.get("id") if isinstance(obj, dict) else None
        if object_id is None or object_id == "":
            raise TransferError(f"Response is missing the object id: {data!r}")
        return str(object_id)

    # =========================
    # Object Operations
    # =========================

    def create_object(self, data: bytes, name: str) -> str:
        """Upload ``data`` as a new remote object.

        Args:
            data: File content
            name: File name to give the object

        Returns:
            Identifier of the new object
        """
        mime_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
        response = self._request(
            "POST",
            "/objects",
            files={"file": (name, data, mime_type)},
            data={"name": name},
        )
        object_id = self._extract_object_id(response)
        logger.debug(f"Created remote object {object_id} ({len(data)} bytes)")
        return object_id

    def update_object(self, remote_id: str, data: bytes) -> None:
        """Replace the content of an existing remote object.

        Raises:
            RemoteNotFoundError: If the object does not exist
        """
        self._request(
            "PUT",
            f"/objects/{remote_id}/content",
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        logger.debug(f"Updated remote object {remote_id} ({len(data)} bytes)")

    def download_object(self, remote_id: str) -> bytes:
        """Return the content of a remote object.

        Raises:
            RemoteNotFoundError: If the object does not exist
        """
        response = self._send("GET", f"/objects/{remote_id}/content")
        return response.content

    def get_object(self, remote_id: str) -> dict[str, Any]:
        """Return the metadata of a remote object (name, size, ...).

        Raises:
            RemoteNotFoundError: If the object does not exist
        """
        data = self._request("GET", f"/objects/{remote_id}")
        obj = data.get("object", data) if isinstance(data, dict) else {}
        return obj if isinstance(obj, dict) else {}

    def get_logged_user(self) -> Any:
        """Return the account the API key belongs to."""
        return self._request("GET", "/me")

    def __enter__(self) -> DriveClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

