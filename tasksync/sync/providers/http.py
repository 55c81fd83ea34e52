"""Shared HTTP plumbing for providers backed by a remote server."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

import httpx

from ...exceptions import (
    ProviderAuthenticationError,
    ProviderUnavailableError,
)
from ...storage import KeyValueStore
from ...utils import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY, DEFAULT_TIMEOUT
from .base import SyncProvider

logger = logging.getLogger(__name__)


class _RateLimited(ProviderUnavailableError):
    """Internal marker for 429 responses."""

    def __init__(self, message: str, retry_after: float | None):
        super().__init__(message)
        self.retry_after = retry_after


class HttpSyncProvider(SyncProvider):
    """Provider talking to an HTTP server through ``httpx.AsyncClient``.

    Requests are retried with exponential backoff on network errors,
    rate limiting and 5xx responses. Authentication and permission
    failures are raised immediately.
    """

    def __init__(
        self,
        store: KeyValueStore,
        url: str,
        headers: dict[str, str] | None = None,
        auth: httpx.Auth | tuple[str, str] | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize HTTP provider.

        Args:
            store: Key-value store used to persist the last sync time
            url: Base URL of the remote
            headers: Extra headers sent with every request
            auth: Credentials passed to httpx
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 30.0)
            transport: Custom httpx transport (used by tests)
        """
        super().__init__(store)
        self.url = url.rstrip("/")
        self.headers = dict(headers or {})
        self.auth = auth
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=self.headers,
                auth=self.auth,
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self.transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _url(self, path: str) -> str:
        return f"{self.url}/{path.lstrip('/')}"

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
        return max(0.0, base_delay + jitter)

    def _handle_http_error(self, response: httpx.Response) -> Exception:
        """Map an error response to a provider exception."""
        status_code = response.status_code
        if status_code in (401, 403):
            return ProviderAuthenticationError(
                f"{self.name} provider rejected credentials (HTTP {status_code})"
            )
        if status_code == 429:
            retry_after = response.headers.get("Retry-After")
            delay = float(retry_after) if retry_after and retry_after.isdigit() else None
            return _RateLimited("Rate limit exceeded", delay)
        return ProviderUnavailableError(
            f"{self.name} request failed with status {status_code}"
        )

    async def _request(
        self,
        method: str,
        path: str,
        accept: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """Make a request with retry logic.

        Args:
            method: HTTP method
            path: Path relative to the base URL
            accept: Non-2xx status codes returned to the caller instead of raised
            **kwargs: Additional arguments passed to httpx

        Returns:
            The response

        Raises:
            ProviderAuthenticationError: On 401/403
            ProviderUnavailableError: If the request fails after all retries
        """
        url = self._url(path)
        client = self._get_client()
        last_exception: Exception | None = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.RequestError as e:
                last_exception = ProviderUnavailableError(f"Network error: {e}")
                last_exception.__cause__ = e
                if attempt < self.max_retries:
                    delay = self._calculate_retry_delay(attempt)
                    logger.debug(f"{method} {url} failed ({e}), retrying in {delay:.2f}s")
                    await asyncio.sleep(delay)
                    continue
                raise last_exception from e

            if response.is_success or response.status_code in accept:
                return response

            error = self._handle_http_error(response)
            last_exception = error
            retryable = isinstance(error, _RateLimited) or response.status_code >= 500
            if retryable and attempt < self.max_retries:
                if isinstance(error, _RateLimited) and error.retry_after is not None:
                    delay = error.retry_after
                else:
                    delay = self._calculate_retry_delay(attempt)
                logger.debug(
                    f"{method} {url} returned {response.status_code}, "
                    f"retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                continue
            raise error

        # If we get here, we've exhausted all retries
        if last_exception:
            raise last_exception
        raise ProviderUnavailableError("Request failed after all retry attempts")
