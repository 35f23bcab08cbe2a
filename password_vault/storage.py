"""
Object Store Client — Moves sealed vault blobs through pre-signed URLs.

- ``download(url)`` — GET the blob, verify ETag and Content-Length
- ``upload(url, data, if_match=...)`` — PUT the blob, optionally guarded by
  an ``If-Match`` precondition so concurrent writers cannot lose updates

Transient download failures are retried with exponential backoff; access
denied, not found, precondition failures and cancellation never are.
Uploads are attempted once: a PUT whose response was lost may already have
been applied, and repeating it under the same ``If-Match`` would report the
caller's own write as a conflict.

Security Note:
    Pre-signed URLs are bearer credentials. Only scheme, host and path are
    ever logged or put in error messages, never the query string.
    Blobs are opaque ciphertext to this module.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import unquote, urlsplit

import aiohttp

from .config import StoreConfig
from .exceptions import (
    AccessDeniedError,
    ConfigError,
    ConflictError,
    NetworkError,
    NotFoundError,
    ObjectStoreError,
    OperationCancelledError,
    SizeMismatchError,
    ValidationError,
)

logger = logging.getLogger("password_vault")

ProgressCallback = Callable[[int, int], None]

CONFLICT_MESSAGE = "the object was modified by another process"

_ERROR_CODES = {
    400: "BAD_REQUEST",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    412: "PRECONDITION_FAILED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

_TERMINAL_ERRORS = (
    AccessDeniedError,
    NotFoundError,
    ConflictError,
    OperationCancelledError,
    ValidationError,
)


@dataclass(frozen=True)
class RemoteObjectMetadata:
    """Current remote version of a blob."""

    etag: str
    content_length: int
    last_modified: Optional[str] = None


@dataclass(frozen=True)
class DownloadResult:
    """Downloaded blob plus the metadata needed for a conditional write."""

    data: bytes = field(repr=False)
    etag: str
    content_length: int
    last_modified: Optional[str] = None

    @property
    def metadata(self) -> RemoteObjectMetadata:
        return RemoteObjectMetadata(
            etag=self.etag,
            content_length=self.content_length,
            last_modified=self.last_modified,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_etag(value: Optional[str]) -> Optional[str]:
    """Decode an ETag header and strip the weak prefix and quotes.

    Returns:
        The bare tag, or None when the header is missing or blank.
    """
    if not value:
        return None
    tag = unquote(value.strip())
    if tag.startswith("W/"):
        tag = tag[2:]
    tag = tag.strip("\"'")
    return tag or None


def _quote_etag(value: str) -> str:
    return f'"{normalize_etag(value) or value}"'


def _redact(url: str) -> str:
    """Drop the query string (signature) from a pre-signed URL."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


def _content_length(headers: Any) -> Optional[int]:
    raw = headers.get("Content-Length")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _status_error(status: int, reason: Optional[str], action: str) -> ObjectStoreError:
    """Map an HTTP error status to the matching ObjectStoreError subclass."""
    code = _ERROR_CODES.get(status, "UNKNOWN_ERROR")
    message = f"Failed to {action} object: {status} {reason or ''}".rstrip()
    if status == 403:
        return AccessDeniedError(message, status, code)
    if status == 404:
        return NotFoundError(message, status, code)
    if status == 412:
        return ConflictError(CONFLICT_MESSAGE, status, code)
    return ObjectStoreError(message, status, code)


def is_retryable(error: BaseException) -> bool:
    """Classify an error as retryable (transient) or terminal."""
    if isinstance(error, _TERMINAL_ERRORS):
        return False
    return isinstance(error, ObjectStoreError)


class ObjectStoreClient:
    """Stateless transport for sealed blobs over pre-signed URLs.

    Holds only immutable settings, so one instance can serve many concurrent
    transfers for unrelated vaults.

    Args:
        max_retries: Retries after the first attempt for transient download
            failures.
        retry_delay: Base backoff in seconds; attempt ``n`` waits
            ``retry_delay * 2 ** n``.
        timeout: Per-attempt time limit in seconds.
        chunk_size: Read size used while streaming downloads.
        session: Optional caller-owned ``aiohttp.ClientSession``. When
            omitted each call opens and closes its own session.
    """

    def __init__(
        self,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 30.0,
        chunk_size: int = 64 * 1024,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        if max_retries < 0:
            raise ConfigError("max_retries cannot be negative")
        if timeout <= 0:
            raise ConfigError("timeout must be positive")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.chunk_size = chunk_size
        self._session = session

    @classmethod
    def from_config(
        cls,
        config: StoreConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> "ObjectStoreClient":
        return cls(
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            timeout=config.timeout,
            chunk_size=config.chunk_size,
            session=session,
        )

    @classmethod
    def from_env(
        cls,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> "ObjectStoreClient":
        """Build a client from ``StoreConfig.from_env()``.

        Raises:
            ConfigError: If the storage configuration is missing or invalid.
        """
        return cls.from_config(StoreConfig.from_env(), session=session)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def download(
        self,
        url: str,
        *,
        expected_etag: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DownloadResult:
        """Download a blob from a pre-signed GET URL.

        Args:
            url: Pre-signed GET URL.
            expected_etag: If given, fail unless the remote ETag matches.
            cancel_event: Setting this event aborts the transfer.
            on_progress: Called as ``on_progress(loaded, total)`` per chunk.

        Returns:
            DownloadResult with data and remote metadata.

        Raises:
            ConflictError: If the remote ETag differs from ``expected_etag``.
            SizeMismatchError: If fewer/more bytes arrive than declared.
            AccessDeniedError, NotFoundError: On 403/404 (not retried).
            NetworkError: On timeout, cancellation or connectivity failure.
        """
        expected = normalize_etag(expected_etag)

        async def attempt(session: aiohttp.ClientSession) -> DownloadResult:
            async with session.get(url) as response:
                if response.status >= 400:
                    raise _status_error(response.status, response.reason, "download")
                etag = normalize_etag(response.headers.get("ETag"))
                if not etag:
                    raise ObjectStoreError(
                        "ETag not found in response headers", code="MISSING_ETAG",
                    )
                if expected is not None and etag != expected:
                    raise ConflictError(CONFLICT_MESSAGE, code="ETAG_MISMATCH")
                declared = _content_length(response.headers)
                data = await self._read_body(response, declared, on_progress)
                if declared is not None and len(data) != declared:
                    raise SizeMismatchError(
                        f"Size mismatch: expected {declared} bytes, "
                        f"got {len(data)} bytes",
                        code="SIZE_MISMATCH",
                    )
                return DownloadResult(
                    data=data,
                    etag=etag,
                    content_length=len(data),
                    last_modified=response.headers.get("Last-Modified"),
                )

        result = await self._with_retries("download", url, attempt, cancel_event)
        logger.info(
            "Downloaded %d bytes from %s (etag=%s)",
            result.content_length, _redact(url), result.etag,
        )
        return result

    async def upload(
        self,
        url: str,
        data: bytes,
        *,
        if_match: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """Upload a blob to a pre-signed PUT URL.

        Args:
            url: Pre-signed PUT URL.
            data: Sealed vault bytes.
            if_match: ETag last observed for the object; the store rejects
                the write with 412 if the object has changed since.
            cancel_event: Setting this event aborts the transfer.
            on_progress: Called as ``on_progress(sent, total)`` on completion.

        Returns:
            The new ETag of the stored object.

        Raises:
            ValidationError: If data is empty (no request is made).
            ConflictError: If the ``If-Match`` precondition failed.
            AccessDeniedError, NotFoundError: On 403/404.
            NetworkError: On timeout, cancellation or connectivity failure.
            ObjectStoreError: On any other failure. Uploads are attempted
                once and never retried.
        """
        if not data:
            raise ValidationError("Cannot upload empty data")
        body = bytes(data)
        headers = {"Content-Type": "application/octet-stream"}
        if if_match:
            headers["If-Match"] = _quote_etag(if_match)

        async def attempt(session: aiohttp.ClientSession) -> str:
            async with session.put(url, data=body, headers=headers) as response:
                if response.status >= 400:
                    raise _status_error(response.status, response.reason, "upload")
                etag = normalize_etag(response.headers.get("ETag"))
            if not etag:
                raise ObjectStoreError(
                    "ETag not found in response headers", code="MISSING_ETAG",
                )
            return etag

        # single attempt; the store may have applied a PUT whose response was lost
        etag = await self._guarded(attempt, cancel_event)
        if on_progress is not None:
            on_progress(len(body), len(body))
        logger.info(
            "Uploaded %d bytes to %s (etag=%s)", len(body), _redact(url), etag,
        )
        return etag

    # ------------------------------------------------------------------
    # Transfer machinery
    # ------------------------------------------------------------------

    async def _read_body(
        self,
        response: aiohttp.ClientResponse,
        declared: Optional[int],
        on_progress: Optional[ProgressCallback],
    ) -> bytes:
        buffer = bytearray()
        async for chunk in response.content.iter_chunked(self.chunk_size):
            buffer.extend(chunk)
            if on_progress is not None:
                on_progress(len(buffer), declared or len(buffer))
        return bytes(buffer)

    async def _in_session(
        self,
        attempt: Callable[[aiohttp.ClientSession], Awaitable[Any]],
    ) -> Any:
        """Run one attempt, translating aiohttp failures into NetworkError."""
        try:
            if self._session is not None:
                return await attempt(self._session)
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                return await attempt(session)
        except ObjectStoreError:
            raise
        except asyncio.TimeoutError as err:
            raise NetworkError(
                f"Operation timed out after {self.timeout}s", code="TIMEOUT",
            ) from err
        except (aiohttp.ClientError, OSError) as err:
            raise NetworkError(
                f"Network error: unable to reach object store ({type(err).__name__})",
                code="NETWORK_ERROR",
            ) from err

    async def _guarded(
        self,
        attempt: Callable[[aiohttp.ClientSession], Awaitable[Any]],
        cancel_event: Optional[asyncio.Event],
    ) -> Any:
        """Run one attempt under the timeout and the caller's cancel signal.

        Whichever of timeout or cancellation fires first aborts the transfer;
        the aborted task is awaited so its connection and buffers are released.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError("Operation was cancelled", code="ABORTED")

        transfer = asyncio.ensure_future(self._in_session(attempt))
        waiters = {transfer}
        canceller = None
        if cancel_event is not None:
            canceller = asyncio.ensure_future(cancel_event.wait())
            waiters.add(canceller)
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=self.timeout, return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in waiters:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

        if transfer in done:
            return transfer.result()
        if canceller is not None and canceller in done:
            raise OperationCancelledError("Operation was cancelled", code="ABORTED")
        raise NetworkError(
            f"Operation timed out after {self.timeout}s", code="TIMEOUT",
        )

    async def _backoff(self, delay: float, cancel_event: Optional[asyncio.Event]) -> None:
        """Sleep before the next attempt; a cancel signal cuts the wait short."""
        if cancel_event is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise OperationCancelledError("Operation was cancelled", code="ABORTED")

    async def _with_retries(
        self,
        action: str,
        url: str,
        attempt: Callable[[aiohttp.ClientSession], Awaitable[Any]],
        cancel_event: Optional[asyncio.Event],
    ) -> Any:
        """Retry ``attempt`` with exponential backoff.

        Terminal errors propagate immediately; after ``max_retries`` retries
        the last error is re-raised unchanged.
        """
        retry = 0
        while True:
            try:
                return await self._guarded(attempt, cancel_event)
            except ObjectStoreError as err:
                if not is_retryable(err) or retry >= self.max_retries:
                    raise
                delay = self.retry_delay * 2 ** retry
                logger.warning(
                    "%s of %s failed (%s), retrying in %.2fs [%d/%d]",
                    action.capitalize(), _redact(url), err.code or err,
                    delay, retry + 1, self.max_retries,
                )
            await self._backoff(delay, cancel_event)
            retry += 1
