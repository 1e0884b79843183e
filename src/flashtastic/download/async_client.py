"""
Async HTTP Client for Flashtastic

This module provides asynchronous HTTP operations against the release catalog
using aiohttp, with session management and typed error classification:

- AsyncCatalogClient.get_json: JSON API requests (release listings)
- AsyncCatalogClient.download_file: streaming asset downloads to disk

No request is ever retried here; every failure surfaces as a typed
FlashtasticError for the caller to act on.
"""

import asyncio
import json
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

import aiofiles  # type: ignore[import-untyped]
import aiohttp
from aiohttp import ClientResponse, ClientSession, ClientTimeout, TCPConnector

from flashtastic.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_REQUEST_TIMEOUT,
    GITHUB_ACCEPT_HEADER,
    GITHUB_API_VERSION,
    RATE_LIMIT_STATUS_CODES,
)
from flashtastic.exceptions import (
    FileSystemError,
    HTTPError,
    NetworkError,
    ParseError,
    RateLimitError,
)
from flashtastic.log_utils import logger
from flashtastic.progress import ProgressSink, ProgressTracker
from flashtastic.utils import get_user_agent

from .interfaces import Pathish

TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


def _parse_int_header(response: ClientResponse, name: str) -> Optional[int]:
    raw = response.headers.get(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def raise_for_catalog_status(response: ClientResponse, url: str) -> None:
    """
    Translate a non-success response into a typed exception.

    Parameters:
        response (ClientResponse): Response whose status should be checked.
        url (str): Requested URL, carried on the raised exception.

    Raises:
        RateLimitError: On 403 or 429, with reset/remaining parsed from the
            `X-RateLimit-Reset` / `X-RateLimit-Remaining` headers when present.
        HTTPError: On any other status outside 2xx.
    """
    status = response.status
    if 200 <= status < 300:
        return

    if status in RATE_LIMIT_STATUS_CODES:
        logger.error(
            f"Rate limited by GitHub (HTTP {status}) - headers: {dict(response.headers)}"
        )
        raise RateLimitError(
            f"GitHub rate limit hit (HTTP {status})",
            status_code=status,
            reset_time=_parse_int_header(response, "X-RateLimit-Reset"),
            remaining=_parse_int_header(response, "X-RateLimit-Remaining"),
            url=url,
        )

    logger.error(f"Unsupported HTTP status {status} from {url}")
    raise HTTPError(
        f"received an unsupported http status code: {status}",
        status_code=status,
        url=url,
    )


class AsyncCatalogClient:
    """
    Asynchronous release catalog client using aiohttp.

    The credential is injected at construction; the client never reads the
    environment itself. Without a token requests are sent unauthenticated,
    which only lowers the rate limit.

    Example:
        async with AsyncCatalogClient(github_token=token) as client:
            data = await client.get_json(url)
    """

    def __init__(
        self,
        github_token: Optional[str] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """
        Initialize the async catalog client.

        Parameters:
            github_token (Optional[str]): Bearer token for the Authorization header.
            timeout (float): Total request timeout in seconds.
        """
        self.github_token = (github_token or "").strip() or None
        self.timeout = ClientTimeout(total=timeout)
        self._session: Optional[ClientSession] = None
        self._closed: bool = False

    async def __aenter__(self) -> "AsyncCatalogClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        """
        Ensure a session exists, creating one if needed.

        Returns:
            ClientSession: The active aiohttp session.
        """
        if self._session is None or self._session.closed:
            self._session = ClientSession(
                connector=TCPConnector(enable_cleanup_closed=True),
                timeout=self.timeout,
                headers=self._get_default_headers(),
            )
            self._closed = False
        return self._session

    def _get_default_headers(self) -> Dict[str, str]:
        """
        Build default HTTP headers for catalog requests.

        Always includes Accept, API version and User-Agent headers; adds a Bearer
        Authorization header only when a token was configured.
        """
        headers = {
            "Accept": GITHUB_ACCEPT_HEADER,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": get_user_agent(),
        }
        if self.github_token:
            headers["Authorization"] = f"Bearer {self.github_token}"
        else:
            logger.debug("No GitHub token configured; using unauthenticated requests")
        return headers

    async def close(self) -> None:
        """Close the client session and release resources."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self._closed = True

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET a JSON document.

        Parameters:
            url (str): Endpoint URL.
            params (Optional[Dict[str, Any]]): Query parameters.

        Returns:
            Any: The decoded JSON body.

        Raises:
            RateLimitError: On 403 / 429.
            HTTPError: On other non-success statuses.
            NetworkError: On connection, DNS, timeout or payload read failures.
            ParseError: When a success response body is not valid JSON.
        """
        session = await self._ensure_session()
        try:
            async with session.get(url, params=params or None) as response:
                logger.debug(f"GET {url} -> {response.status}")
                raise_for_catalog_status(response, url)
                body = await response.read()
        except TRANSPORT_ERRORS as e:
            logger.error(f"Network error requesting {url}: {e}")
            raise NetworkError(f"Network error: {e}", url=url) from e

        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError, RecursionError) as e:
            raise ParseError(
                "malformed response body", url=url, details=str(e)
            ) from e

    async def download_file(
        self,
        url: str,
        target_path: Pathish,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        progress: Optional[ProgressSink] = None,
    ) -> int:
        """
        Stream a URL into a newly created file and make it durable.

        The target is created exclusively, so an existing file is never
        overwritten. The file is flushed and fsynced before returning; on any
        failure the partially written file is removed.

        Parameters:
            url (str): Source URL.
            target_path (Pathish): File to create.
            chunk_size (int): Bytes to read per chunk.
            progress (Optional[ProgressSink]): Receives a sample per chunk and a
                final completion sample.

        Returns:
            int: Number of bytes written.

        Raises:
            RateLimitError / HTTPError: On a non-success status.
            NetworkError: When the connection fails or the body cannot be read.
            FileSystemError: When the file cannot be created or written.
        """
        session = await self._ensure_session()
        target = Path(target_path)
        created = False
        start_time = time.time()

        try:
            async with session.get(url) as response:
                raise_for_catalog_status(response, url)
                tracker = ProgressTracker(progress, response.content_length)

                try:
                    async with aiofiles.open(target, "xb") as handle:
                        created = True
                        async for chunk in response.content.iter_chunked(chunk_size):
                            await handle.write(chunk)
                            tracker.advance(len(chunk))
                        await handle.flush()
                        await asyncio.to_thread(os.fsync, handle.fileno())
                except TRANSPORT_ERRORS:
                    # aiohttp.ClientOSError is also an OSError
                    raise
                except OSError as e:
                    raise FileSystemError(
                        "could not write download file", str(target), str(e)
                    ) from e
                tracker.finish()
        except TRANSPORT_ERRORS as e:
            logger.error(f"Download failed for {url}: {e}")
            self._remove_partial(target, created)
            raise NetworkError(f"Download failed: {e}", url=url) from e
        except (FileSystemError, HTTPError):
            self._remove_partial(target, created)
            raise

        elapsed = time.time() - start_time
        logger.debug(f"Downloaded {url} in {elapsed:.2f}s ({tracker.transferred} bytes)")
        return tracker.transferred

    @staticmethod
    def _remove_partial(target: Path, created: bool) -> None:
        if not created:
            return
        try:
            target.unlink()
        except OSError as e:
            logger.warning(f"Could not remove partial download {target}: {e}")


@asynccontextmanager
async def create_async_client(
    github_token: Optional[str] = None,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> AsyncIterator[AsyncCatalogClient]:
    """
    Provide a configured AsyncCatalogClient and ensure it is closed after use.
    """
    client = AsyncCatalogClient(github_token=github_token, timeout=timeout)
    try:
        yield client
    finally:
        await client.close()
