"""Async API client for ownCloud/Nextcloud style servers.

Two protocols are spoken: the OCS JSON API (capabilities, current user) and
WebDAV for the files of the synced folder.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import AsyncIterator, Awaitable
from typing import Any, Callable
from urllib.parse import quote, unquote
from xml.etree import ElementTree

import httpx

from . import __version__
from .config import config
from .exceptions import (
    DavAPIError,
    DavAuthenticationError,
    DavInvalidResponseError,
    DavNetworkError,
    DavNotFoundError,
    DavPermissionError,
    DavRateLimitError,
)
from .models import Account, DavResource
from .utils import TRANSFER_BLOCK_SIZE, format_oc_mtime, parse_http_date

logger = logging.getLogger(__name__)

CAPABILITIES_ENDPOINT = "ocs/v1.php/cloud/capabilities"
USER_ENDPOINT = "ocs/v1.php/cloud/user"

DAV_NS = "{DAV:}"
OC_NS = "{http://owncloud.org/ns}"

PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:" xmlns:oc="http://owncloud.org/ns">'
    "<d:prop>"
    "<d:resourcetype/><d:getlastmodified/><d:getcontentlength/>"
    "<d:getetag/><oc:size/>"
    "</d:prop>"
    "</d:propfind>"
)


def _etag(response: httpx.Response) -> str:
    etag = response.headers.get("OC-ETag") or response.headers.get("ETag", "")
    return etag.strip('"')


class DavClient:
    """Client for the OCS and WebDAV endpoints of one account."""

    def __init__(
        self,
        account: Account,
        folder: str = "/",
        max_retries: int | None = None,
        retry_delay: float | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            account: Account holding url, credentials and TLS/proxy settings
            folder: Remote folder all WebDAV paths are relative to
            max_retries: Retries for transient failures (uses config if not
                provided)
            retry_delay: Initial delay between retries in seconds
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.account = account
        self.folder = folder
        self.max_retries = config.max_retries if max_retries is None else max_retries
        self.retry_delay = config.retry_delay if retry_delay is None else retry_delay
        self.timeout = config.timeout if timeout is None else timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            credentials = self.account.credentials
            self._client = httpx.AsyncClient(
                auth=httpx.BasicAuth(credentials.user, credentials.password),
                headers={"User-Agent": f"davsync/{__version__}"},
                timeout=httpx.Timeout(self.timeout),
                verify=not self.account.trust_ssl,
                proxy=self.account.proxy.url if self.account.proxy else None,
                transport=self._transport,
                # environment proxies would bypass an explicit transport
                trust_env=self._transport is None,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> DavClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # =========================
    # Request machinery
    # =========================

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
        return isinstance(exception, (DavNetworkError, DavRateLimitError))

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff."""
        base_delay = self.retry_delay * (2**attempt)
        # Add jitter: +/- 25% of base delay
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _handle_http_error(
        self, e: httpx.HTTPStatusError, attempt: int
    ) -> tuple[Exception, bool]:
        """Map an HTTP error to our exceptions and decide about retrying.

        Args:
            e: The HTTP error exception
            attempt: Current attempt number

        Returns:
            Tuple of (exception to raise, should_retry)
        """
        status_code = e.response.status_code

        if status_code == 401:
            return DavAuthenticationError("Invalid user name or password"), False
        elif status_code == 403:
            return (
                DavPermissionError("Access forbidden - check your permissions"),
                False,
            )
        elif status_code == 404:
            return DavNotFoundError(f"Resource not found: {e.request.url}"), False
        elif status_code == 429:
            error = DavRateLimitError("Rate limit exceeded - please try again later")
            return error, attempt < self.max_retries

        error_msg = f"Request failed with status {status_code}"
        reason = e.response.reason_phrase
        if reason:
            error_msg = f"{error_msg}: {reason}"
        # Retry on 5xx server errors
        should_retry = 500 <= status_code < 600 and attempt < self.max_retries
        return DavAPIError(error_msg), should_retry

    async def _send(
        self, method: str, url: str, retry: bool = True, **kwargs: Any
    ) -> httpx.Response:
        """Send a request with retry logic.

        Requests with streamed bodies must pass ``retry=False``, their content
        cannot be sent twice.

        Raises:
            DavAPIError: If the request fails after all retries
        """
        client = self._get_client()
        last_exception: Exception | None = None
        attempts = self.max_retries + 1 if retry else 1

        for attempt in range(attempts):
            try:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                error, should_retry = self._handle_http_error(e, attempt)
                last_exception = error
                if should_retry and attempt + 1 < attempts:
                    delay = self._calculate_retry_delay(attempt)
                    retry_after = e.response.headers.get("Retry-After")
                    if isinstance(error, DavRateLimitError) and retry_after:
                        if retry_after.isdigit():
                            delay = float(retry_after)
                    logger.debug(f"{method} {url} failed ({error}), retrying")
                    await asyncio.sleep(delay)
                    continue
                raise error from e
            except httpx.RequestError as e:
                error = DavNetworkError(f"Network error: {e}")
                last_exception = error
                if self._should_retry(error, attempt) and attempt + 1 < attempts:
                    await asyncio.sleep(self._calculate_retry_delay(attempt))
                    continue
                raise error from e

        if last_exception:
            raise last_exception
        raise DavAPIError("Request failed after all retry attempts")

    # =========================
    # OCS API
    # =========================

    async def _ocs_request(self, endpoint: str) -> dict[str, Any]:
        url = f"{self.account.url.rstrip('/')}/{endpoint}"
        response = await self._send(
            "GET",
            url,
            params={"format": "json"},
            headers={"OCS-APIREQUEST": "true", "Accept": "application/json"},
        )

        content_type = response.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            # Login pages and proxies answer with HTML
            raise DavInvalidResponseError(
                f"Unexpected response type from {endpoint}: {content_type}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise DavInvalidResponseError(
                f"Invalid JSON response from {endpoint}"
            ) from e
        if not isinstance(data, dict):
            raise DavInvalidResponseError(f"Invalid JSON response from {endpoint}")

        meta = data.get("ocs", {}).get("meta", {})
        status = meta.get("statuscode")
        if status is not None and status not in (100, 200):
            raise DavAPIError(
                f"OCS request {endpoint} failed: {meta.get('message') or status}"
            )
        return data

    async def get_capabilities(self) -> dict[str, Any]:
        """Fetch the server capabilities document.

        Returns:
            The raw OCS response (``ocs.data.capabilities`` holds the
            capabilities)
        """
        return await self._ocs_request(CAPABILITIES_ENDPOINT)

    async def get_user(self) -> dict[str, Any]:
        """Fetch the identity of the logged in user.

        Returns:
            The raw OCS response (``ocs.data`` holds ``id`` and
            ``display-name``)
        """
        return await self._ocs_request(USER_ENDPOINT)

    # =========================
    # WebDAV
    # =========================

    def dav_url(self, path: str = "") -> str:
        """URL of a path relative to the sync folder."""
        parts = [p for p in (self.folder.strip("/"), path.strip("/")) if p]
        relative = "/".join(parts)
        return self.account.dav_url + quote(relative)

    def _root_path(self) -> str:
        path = httpx.URL(self.account.dav_url).path
        folder = self.folder.strip("/")
        if folder:
            path = f"{path.rstrip('/')}/{folder}"
        return path.rstrip("/") + "/"

    def _parse_multistatus(self, body: bytes) -> list[DavResource]:
        try:
            root = ElementTree.fromstring(body)
        except ElementTree.ParseError as e:
            raise DavInvalidResponseError(f"Invalid PROPFIND response: {e}") from e

        root_path = self._root_path()
        resources = []
        for response in root.iter(f"{DAV_NS}response"):
            href = response.findtext(f"{DAV_NS}href", default="")
            href_path = unquote(httpx.URL(href).path) if href else ""
            if href_path.rstrip("/") + "/" == root_path:
                relative = ""
            elif href_path.startswith(root_path):
                relative = href_path[len(root_path) :].strip("/")
            else:
                logger.debug(f"Ignoring entry outside of sync folder: {href}")
                continue

            prop = None
            for propstat in response.iter(f"{DAV_NS}propstat"):
                status = propstat.findtext(f"{DAV_NS}status", default="")
                if " 200 " in status:
                    prop = propstat.find(f"{DAV_NS}prop")
                    break
            if prop is None:
                continue

            is_dir = prop.find(f"{DAV_NS}resourcetype/{DAV_NS}collection") is not None
            size_text = prop.findtext(f"{DAV_NS}getcontentlength") or prop.findtext(
                f"{OC_NS}size"
            )
            resources.append(
                DavResource(
                    path=relative,
                    is_dir=is_dir,
                    etag=(prop.findtext(f"{DAV_NS}getetag") or "").strip('"'),
                    size=int(size_text) if size_text and size_text.isdigit() else 0,
                    mtime=parse_http_date(prop.findtext(f"{DAV_NS}getlastmodified")),
                )
            )
        return resources

    async def list_folder(self, path: str = "") -> list[DavResource]:
        """List a remote folder with PROPFIND depth 1.

        Returns:
            The folder itself (with an empty or its own relative path) followed
            by its direct children
        """
        response = await self._send(
            "PROPFIND",
            self.dav_url(path).rstrip("/") + "/",
            headers={"Depth": "1", "Content-Type": "application/xml; charset=utf-8"},
            content=PROPFIND_BODY,
        )
        return self._parse_multistatus(response.content)

    async def make_folder(self, path: str) -> None:
        """Create a remote folder (MKCOL). Existing folders are accepted."""
        try:
            await self._send("MKCOL", self.dav_url(path))
        except DavAPIError as e:
            cause = e.__cause__
            if isinstance(cause, httpx.HTTPStatusError) and (
                cause.response.status_code == 405
            ):
                logger.debug(f"Remote folder {path} already exists")
                return
            raise

    async def delete(self, path: str) -> None:
        """Delete a remote file or folder."""
        await self._send("DELETE", self.dav_url(path))

    async def upload(
        self, path: str, content: AsyncIterator[bytes], size: int, mtime: float
    ) -> str:
        """Upload a file with PUT.

        Args:
            path: Remote path relative to the sync folder
            content: File content in blocks
            size: File size in bytes
            mtime: Local modification time, kept on the server

        Returns:
            ETag of the new remote version (may be empty)
        """
        response = await self._send(
            "PUT",
            self.dav_url(path),
            retry=False,
            content=content,
            headers={
                "Content-Length": str(size),
                "X-OC-Mtime": format_oc_mtime(mtime),
                "Content-Type": "application/octet-stream",
            },
        )
        return _etag(response)

    async def download(
        self, path: str, sink: Callable[[bytes], Awaitable[None]]
    ) -> str:
        """Stream a remote file into ``sink`` block by block.

        Returns:
            ETag of the downloaded version (may be empty)
        """
        client = self._get_client()
        try:
            async with client.stream("GET", self.dav_url(path)) as response:
                if response.is_error:
                    await response.aread()
                    response.raise_for_status()
                async for chunk in response.aiter_bytes(TRANSFER_BLOCK_SIZE):
                    await sink(chunk)
                return _etag(response)
        except httpx.HTTPStatusError as e:
            error, _ = self._handle_http_error(e, self.max_retries)
            raise error from e
        except httpx.RequestError as e:
            raise DavNetworkError(f"Network error during download: {e}") from e
