"""
Resilient HTTP Client for courier vendor APIs

- Hard deadline per attempt (not cumulative across attempts)
- Exponential backoff with jitter to prevent synchronized retry storms
- Retries 5xx, 429, 408 and timeout/connection-reset class transport errors
- Any other 4xx is returned immediately (fail fast on semantic rejection)
- Stateless per call: safe to share one client across concurrent callers

All vendor adapters MUST go through this client.
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

# Statuses that are retried in addition to every 5xx
RETRYABLE_STATUS_CODES = (408, 429)

# Transport failures treated as transient. asyncio.TimeoutError is raised by
# the per-attempt deadline; the httpx classes cover connect/read timeouts and
# connections reset by the peer.
RETRYABLE_EXCEPTIONS = (
    asyncio.TimeoutError,
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for timeout and retry behavior."""
    timeout_ms: int = 10000    # Deadline for a single attempt
    max_retries: int = 2       # Retries after the first attempt
    backoff_ms: int = 500      # Base delay before the first retry
    jitter_ms: int = 100       # Exclusive upper bound of the random jitter

    @classmethod
    def from_settings(cls, settings=None) -> "RetryConfig":
        if settings is None:
            from courierhub.core.config import settings
        return cls(
            timeout_ms=settings.SHIPPING_HTTP_TIMEOUT_MS,
            max_retries=settings.SHIPPING_HTTP_MAX_RETRIES,
            backoff_ms=settings.SHIPPING_HTTP_BACKOFF_MS,
            jitter_ms=settings.SHIPPING_HTTP_JITTER_MS,
        )


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in RETRYABLE_STATUS_CODES


class ResilientHTTPClient:
    """
    Async HTTP client with per-attempt deadlines and retry with backoff.

    Usage:
        async with ResilientHTTPClient() as client:
            response = await client.post("https://api.example.com/rates", json=body)

    Tests hand in an httpx.AsyncClient built on httpx.MockTransport and a
    no-op `sleep` so retries run instantly.
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        default_headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.retry_config = retry_config or RetryConfig.from_settings()
        self.default_headers = default_headers or {"Content-Type": "application/json"}
        self._client: Optional[httpx.AsyncClient] = client
        self._owns_client = client is None
        self._sleep = sleep
        self._rng = rng

    async def __aenter__(self):
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def init(self):
        """Initialize client without context manager. Must call close() when done."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self.default_headers,
                follow_redirects=True,
            )
            self._owns_client = True
        return self

    async def close(self):
        """Close the client. Use this when not using context manager."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    def _get_host(self, url: str) -> str:
        return urlparse(url).netloc

    def calculate_backoff(self, attempt: int, cfg: Optional[RetryConfig] = None) -> float:
        """
        Delay in seconds before retry number `attempt + 1`.

        Formula: backoff_ms * 2^attempt + jitter, jitter in [0, jitter_ms)
        """
        cfg = cfg or self.retry_config
        jitter = int(self._rng() * cfg.jitter_ms) if cfg.jitter_ms else 0
        return (cfg.backoff_ms * (2 ** attempt) + jitter) / 1000.0

    async def _attempt(
        self,
        method: str,
        url: str,
        cfg: RetryConfig,
        **kwargs,
    ) -> httpx.Response:
        """One attempt bound to its own deadline."""
        if not cfg.timeout_ms:
            return await self._client.request(method, url, timeout=None, **kwargs)

        timeout_s = cfg.timeout_ms / 1000.0
        return await asyncio.wait_for(
            self._client.request(method, url, timeout=timeout_s, **kwargs),
            timeout=timeout_s,
        )

    async def request(
        self,
        method: str,
        url: str,
        retry_config: Optional[RetryConfig] = None,
        **kwargs,
    ) -> httpx.Response:
        """
        Make an HTTP request with timeout and retry.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Target URL
            retry_config: Optional per-call override of the client defaults
            **kwargs: Additional arguments passed to httpx

        Returns:
            The last httpx.Response received. It is NOT guaranteed to be 2xx:
            non-retryable 4xx come back on the first attempt, and a retryable
            status that persists through every attempt is returned as-is.

        Raises:
            The last transport error if the final attempt failed without a
            response. Non-retryable transport errors are raised immediately.
        """
        if not self._client:
            await self.init()

        cfg = retry_config or self.retry_config
        host = self._get_host(url)
        total = cfg.max_retries + 1

        for attempt in range(total):
            is_last = attempt == cfg.max_retries
            logger.debug(f"[HTTP] {method} {url} (attempt {attempt + 1}/{total})")

            try:
                response = await self._attempt(method, url, cfg, **kwargs)
            except RETRYABLE_EXCEPTIONS as e:
                reason = "Timeout" if isinstance(e, (asyncio.TimeoutError, httpx.TimeoutException)) else type(e).__name__
                if is_last:
                    logger.error(f"[HTTP] {host}: {reason}, all {total} attempts failed")
                    raise
                delay = self.calculate_backoff(attempt, cfg)
                logger.warning(f"[HTTP] {host}: {reason}, retrying in {delay:.2f}s (attempt {attempt + 1})")
                await self._sleep(delay)
                continue

            if is_retryable_status(response.status_code) and not is_last:
                delay = self.calculate_backoff(attempt, cfg)
                logger.warning(
                    f"[HTTP] {host}: Status {response.status_code}, "
                    f"retrying in {delay:.2f}s (attempt {attempt + 1})"
                )
                await self._sleep(delay)
                continue

            if is_retryable_status(response.status_code):
                logger.error(f"[HTTP] {host}: Status {response.status_code} after {total} attempts")
            elif response.is_client_error:
                logger.info(f"[HTTP] {host}: Status {response.status_code}, not retrying")

            return response

        # range() always yields at least one attempt; kept for type checkers
        raise RuntimeError(f"Request to {url} made no attempts")

    async def get(self, url: str, **kwargs) -> httpx.Response:
        """GET request with resilience."""
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        """POST request with resilience."""
        return await self.request("POST", url, **kwargs)
