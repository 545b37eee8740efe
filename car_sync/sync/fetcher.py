"""Upstream page fetcher with classified retries."""

from __future__ import annotations

import asyncio
import random
import re
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from ..exceptions import (
    MalformedPayloadError,
    NetworkTransientError,
    PermanentClientError,
    RateLimitedError,
    TransientUpstreamError,
    UpstreamServerError,
)
from ..schemas.listing import PagePayload
from ..utils.config import GlobalSettings
from ..utils.logging import setup_logger
from .metrics import SyncMetrics
from .rate_limiter import TokenBucket

logger = setup_logger(__name__, context={"component": "fetcher"})

USER_AGENT = "car-sync/0.1.0"

_TRANSIENT_MESSAGE = re.compile(
    r"econnreset|connection reset|econnrefused|etimedout|timed? ?out|enotfound|eai_again"
    r"|getaddrinfo|name or service not known|temporary failure in name resolution"
    r"|abort|socket hang up",
    re.IGNORECASE,
)

JitterFn = Callable[[float, float], float]


def rate_limit_backoff(attempt: int, jitter: JitterFn = random.uniform) -> float:
    """Backoff after an HTTP 429: 1s doubling, plus up to 10% jitter, capped at 30s."""

    base = 1.0 * (2**attempt)
    return min(30.0, base + jitter(0.0, 0.1) * base)


def server_error_backoff(attempt: int) -> float:
    """Backoff after a 5xx: 500ms doubling, capped at 10s."""

    return min(10.0, 0.5 * (2**attempt))


def network_backoff(attempt: int) -> float:
    """Backoff after a transient network error: 200ms growing by 1.8x, capped at 5s."""

    return min(5.0, 0.2 * (1.8**attempt))


def is_transient_network_error(exc: BaseException) -> bool:
    """Return True for connection resets, DNS failures, timeouts and aborts."""

    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, asyncio.TimeoutError)):
        return True
    return bool(_TRANSIENT_MESSAGE.search(str(exc)))


class PageFetcher:
    """Fetch listing pages from the upstream API.

    Every attempt passes through the token bucket first and is bounded by
    the request timeout. Failures are classified into the exception
    taxonomy; only transient ones are retried.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: GlobalSettings,
        rate_limiter: TokenBucket,
        metrics: SyncMetrics,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: JitterFn = random.uniform,
    ) -> None:
        self._client = client
        self._settings = settings
        self._rate_limiter = rate_limiter
        self._metrics = metrics
        self._sleep = sleep
        self._jitter = jitter
        self.max_retries = settings.max_retries
        self.timeout = settings.request_timeout_seconds

    @property
    def headers(self) -> dict[str, str]:
        api_key = self._settings.api_key or ""
        return {
            "Authorization": f"Bearer {api_key}",
            "X-API-Key": api_key,
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    async def fetch_page(self, page: int) -> PagePayload:
        """Fetch one page and decode it into a ``PagePayload``."""

        body = await self.fetch_json(self._settings.cars_url(page))
        return PagePayload.from_response(page, body)

    async def fetch_json(self, url: str) -> Any:
        """
        GET ``url`` and return the decoded JSON body.

        Raises:
            RateLimitedError: 429 persisted past the retry ceiling
            UpstreamServerError: 5xx persisted past the retry ceiling
            NetworkTransientError: Network failures persisted past the retry ceiling
            PermanentClientError: Any other 4xx (never retried)
            MalformedPayloadError: Body is not valid JSON
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception_type(TransientUpstreamError),
            before_sleep=self._before_sleep,
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                return await self._attempt(url)
        raise RuntimeError("Retry loop exited without a result")  # pragma: no cover

    async def _attempt(self, url: str) -> Any:
        await self._rate_limiter.consume()

        started = time.perf_counter()
        try:
            response = await self._client.get(
                url,
                headers=self.headers,
                timeout=httpx.Timeout(self.timeout),
            )
        except Exception as exc:
            self._metrics.record_request(latency_ms=_elapsed_ms(started), ok=False)
            if is_transient_network_error(exc):
                raise NetworkTransientError(
                    f"Network error fetching {url}: {exc!r}",
                    url=url,
                ) from exc
            raise

        latency_ms = _elapsed_ms(started)
        status = response.status_code
        if status == 429:
            self._metrics.record_request(latency_ms=latency_ms, ok=False)
            raise RateLimitedError("Rate limit exceeded (HTTP 429)", url=url, status_code=status)
        if status >= 500:
            self._metrics.record_request(latency_ms=latency_ms, ok=False)
            raise UpstreamServerError(
                f"Upstream server error (HTTP {status})", url=url, status_code=status
            )
        if status >= 400:
            self._metrics.record_request(latency_ms=latency_ms, ok=False)
            raise PermanentClientError(
                f"Upstream rejected request (HTTP {status})", url=url, status_code=status
            )

        self._metrics.record_request(latency_ms=latency_ms, ok=True)
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedPayloadError(
                f"Response from {url} is not valid JSON", url=url, status_code=status
            ) from exc

    def _wait(self, retry_state: RetryCallState) -> float:
        attempt = max(retry_state.attempt_number - 1, 0)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitedError):
            return rate_limit_backoff(attempt, self._jitter)
        if isinstance(exc, UpstreamServerError):
            return server_error_backoff(attempt)
        return network_backoff(attempt)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        error_type = type(exc).__name__ if exc is not None else "unknown"
        self._metrics.record_retry(error_type)
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "Retrying after %s (attempt %s/%s) in %.2fs",
            error_type,
            retry_state.attempt_number,
            self.max_retries + 1,
            delay,
            extra={"status": "retry"},
        )


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0
