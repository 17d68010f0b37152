"""Remote blob store clients.

This module provides:
- BlobClient: Protocol for a versioned blob store with CAS writes
- GitContentsClient: HTTP client for a git-hosting content API
- InMemoryBlobStore: In-process store with the same CAS semantics

Each client identity owns one remote key. fetch() returns the parsed
document and its version token; write() replaces it only if the caller's
expected token is still current.

Before writing, clients compare the canonical serialization with the
latest content fetched for that key and skip the network when they are
byte-identical.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx

from stocksync.client.document import RemoteDocument, decode_base64_content
from stocksync.client.retry import retry_with_backoff
from stocksync.core.config import RemoteConfig, SyncSettings

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication or authorization failed."""


class VersionConflictError(APIError):
    """Expected version token is stale."""


class NotFoundError(APIError):
    """Resource not found."""


class RateLimitedError(APIError):
    """Remote quota exhausted or request throttled.

    Attributes:
        retry_after: Seconds to wait as hinted by the server, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status_code)
        self.retry_after = retry_after


class RemoteUnreachableError(APIError):
    """The remote store could not be reached."""


@dataclass(frozen=True)
class FetchResult:
    """Current remote document and its version token."""

    document: RemoteDocument
    version_token: str


class BlobClient(Protocol):
    """Protocol for versioned blob stores with compare-and-swap writes."""

    def fetch(self, key: str) -> FetchResult | None:
        """Fetch the document stored under key, or None if absent."""
        ...

    def write(
        self,
        key: str,
        document: RemoteDocument,
        expected_token: str | None,
    ) -> str:
        """Replace the document if expected_token is current.

        Returns:
            The new version token.

        Raises:
            VersionConflictError: If expected_token is stale.
        """
        ...

    def health_check(self) -> bool:
        """Check if the store is reachable."""
        ...


class _ContentCache:
    """Latest known canonical content and token per key."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[str, bytes]] = {}

    def remember(self, key: str, token: str, document: RemoteDocument) -> None:
        with self._lock:
            self._entries[key] = (token, document.to_canonical_bytes())

    def forget(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def unchanged_token(self, key: str, document: RemoteDocument) -> str | None:
        """Token of the cached content if it equals document byte for byte."""
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        token, content = entry
        if content == document.to_canonical_bytes():
            return token
        return None


def _parse_retry_after(response: httpx.Response) -> float | None:
    """Read the wait hint from Retry-After or the rate-limit reset header."""
    retry_after = response.headers.get("retry-after")
    if retry_after:
        try:
            return max(float(retry_after), 0.0)
        except ValueError:
            pass
    reset = response.headers.get("x-ratelimit-reset")
    if reset:
        try:
            return max(float(reset) - time.time(), 0.0)
        except ValueError:
            pass
    return None


def _detail(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or default
    if isinstance(data, dict):
        return str(data.get("message") or data.get("detail") or default)
    return default


class GitContentsClient:
    """HTTP client storing documents through a git-hosting content API.

    Documents live at /repos/{owner}/{repo}/contents/{path}; content is
    base64-encoded and the blob SHA is the version token.
    """

    def __init__(
        self,
        config: RemoteConfig,
        settings: SyncSettings | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Remote configuration with owner, repo and token.
            settings: Retry settings for throttled requests.
            transport: Optional httpx transport (used by tests).
        """
        self._config = config
        self._settings = settings or SyncSettings()
        self._cache = _ContentCache()
        self._client = httpx.Client(
            base_url=config.api_url,
            timeout=config.timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {config.token}",
                "Accept": "application/vnd.github+json",
            },
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> GitContentsClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def key_for(self, identity: str) -> str:
        """Get the remote path owned by an identity."""
        return self._config.path_for(identity)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        status = response.status_code
        if status < 400:
            return response

        remaining = response.headers.get("x-ratelimit-remaining")
        if status == 429 or (status == 403 and remaining == "0"):
            raise RateLimitedError(
                _detail(response, "Rate limit exceeded"),
                status,
                retry_after=_parse_retry_after(response),
            )
        if status == 403 and response.headers.get("retry-after"):
            raise RateLimitedError(
                _detail(response, "Secondary rate limit"),
                status,
                retry_after=_parse_retry_after(response),
            )
        if status in (401, 403):
            raise AuthenticationError(_detail(response, "Invalid or expired token"), status)
        if status == 404:
            raise NotFoundError(_detail(response, "Resource not found"), 404)
        if status in (409, 412):
            raise VersionConflictError(_detail(response, "Version conflict"), status)
        if status == 422:
            detail = _detail(response, "Unprocessable request")
            if "sha" in detail.lower():
                raise VersionConflictError(detail, status)
            raise APIError(detail, status)
        raise APIError(_detail(response, "Unknown error"), status)

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying only when throttled."""

        def send() -> httpx.Response:
            try:
                response = self._client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                raise RemoteUnreachableError(f"Cannot reach {self._config.api_url}: {e}") from e
            return self._handle_response(response)

        return retry_with_backoff(
            send,
            max_retries=self._settings.max_rate_limit_retries,
            initial_backoff=self._settings.initial_backoff,
            max_backoff=self._settings.max_backoff,
            retryable_exceptions=(RateLimitedError,),
        )

    def _ref_params(self) -> dict[str, str]:
        if self._config.branch:
            return {"ref": self._config.branch}
        return {}

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the repository is reachable.

        Returns:
            True if the repository answers.
        """
        try:
            response = self._client.get(f"/repos/{self._config.owner}/{self._config.repo}")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Document operations ===

    def fetch(self, key: str) -> FetchResult | None:
        """Fetch the document at key.

        Returns:
            FetchResult, or None if the document does not exist yet.

        Raises:
            MalformedRemoteDataError: If the content cannot be parsed.
            AuthenticationError: If the token is rejected.
            RateLimitedError: If throttling outlasted the retry budget.
        """
        try:
            response = self._request(
                "GET",
                f"{self._config.contents_url}/{key}",
                params=self._ref_params(),
            )
        except NotFoundError:
            logger.info("Remote document %s does not exist yet", key)
            self._cache.forget(key)
            return None

        data = response.json()
        token = data["sha"]
        raw = data.get("content") or ""
        if data.get("encoding", "base64") == "base64":
            raw = decode_base64_content(raw) or raw
        document = RemoteDocument.parse(raw)
        self._cache.remember(key, token, document)
        logger.debug("Fetched %s at %s", key, token)
        return FetchResult(document=document, version_token=token)

    def write(
        self,
        key: str,
        document: RemoteDocument,
        expected_token: str | None,
    ) -> str:
        """Write the document at key with compare-and-swap semantics.

        Args:
            key: Remote path.
            document: Document to store.
            expected_token: SHA the caller last saw, or None for a new file.

        Returns:
            The new version token (or the current one if nothing changed).

        Raises:
            VersionConflictError: If expected_token is stale.
        """
        unchanged = self._cache.unchanged_token(key, document)
        if unchanged is not None:
            logger.info("Remote %s already up to date, skipping write", key)
            return unchanged

        payload: dict[str, Any] = {
            "message": f"Update warehouse data - {datetime.now(UTC).isoformat()}",
            "content": base64.b64encode(document.to_canonical_bytes()).decode("ascii"),
        }
        if expected_token:
            payload["sha"] = expected_token
        if self._config.branch:
            payload["branch"] = self._config.branch

        response = self._request("PUT", f"{self._config.contents_url}/{key}", json=payload)
        token = response.json()["content"]["sha"]
        self._cache.remember(key, token, document)
        logger.info("Wrote %s (%s -> %s)", key, expected_token, token)
        return str(token)


class InMemoryBlobStore:
    """Thread-safe in-process blob store with CAS writes.

    Tokens are SHA-1 digests of the canonical content, like git blob ids.
    Writes counts calls that reached the store, for tests and dry runs.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._blobs: dict[str, tuple[str, bytes]] = {}
        self._cache = _ContentCache()
        self.writes = 0
        self.reachable = True

    @staticmethod
    def _token(content: bytes) -> str:
        return hashlib.sha1(content).hexdigest()

    def _check_reachable(self) -> None:
        if not self.reachable:
            raise RemoteUnreachableError("In-memory store marked unreachable")

    def health_check(self) -> bool:
        """Check if the store is reachable."""
        return self.reachable

    def put_raw(self, key: str, content: bytes) -> str:
        """Store raw content unconditionally (simulates another writer)."""
        with self._lock:
            token = self._token(content)
            self._blobs[key] = (token, content)
            return token

    def fetch(self, key: str) -> FetchResult | None:
        """Fetch the document at key, or None if absent."""
        self._check_reachable()
        with self._lock:
            entry = self._blobs.get(key)
        if entry is None:
            self._cache.forget(key)
            return None
        token, content = entry
        document = RemoteDocument.parse(content)
        self._cache.remember(key, token, document)
        return FetchResult(document=document, version_token=token)

    def write(
        self,
        key: str,
        document: RemoteDocument,
        expected_token: str | None,
    ) -> str:
        """Write the document if expected_token matches the stored token."""
        self._check_reachable()
        unchanged = self._cache.unchanged_token(key, document)
        if unchanged is not None:
            return unchanged

        content = document.to_canonical_bytes()
        with self._lock:
            current = self._blobs.get(key)
            current_token = current[0] if current else None
            if current_token != expected_token:
                raise VersionConflictError(
                    f"Expected {expected_token}, store has {current_token}", 409
                )
            token = self._token(content)
            self._blobs[key] = (token, content)
            self.writes += 1
        self._cache.remember(key, token, document)
        return token

