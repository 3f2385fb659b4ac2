"""
Throttled Upstream Client
=========================

Outbound HTTP client for the catalog API with:
- Rate gate reservation before every attempt (retries included)
- Bounded per-attempt timeout
- Retry on 429/502/503/504 honoring a numeric Retry-After header
- Retry on network failures and attempt timeouts with exponential backoff
  (0.6s, 1.2s, 2.4s, ...)
- Every delay capped at max_delay

Exhausted network failures raise UpstreamUnavailableError. A response that is
not retried any further (success, non-retryable status, or a retryable status
on the last attempt) is returned as-is for the caller to inspect.
"""

import asyncio
import math
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

import httpx
import structlog
from prometheus_client import Counter, Histogram

from .errors import UpstreamUnavailableError
from .rate_limiter import RateGate

logger = structlog.get_logger(__name__)

# Prometheus metrics
upstream_requests_total = Counter(
    'catalog_gateway_upstream_requests_total',
    'Total upstream HTTP attempts',
    ['upstream', 'status']
)
upstream_request_seconds = Histogram(
    'catalog_gateway_upstream_request_seconds',
    'Upstream HTTP attempt duration in seconds',
    ['upstream'],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0)
)
retry_attempts_total = Counter(
    'catalog_gateway_retry_attempts_total',
    'Total upstream retry attempts',
    ['upstream', 'error_type']
)
retry_failures_total = Counter(
    'catalog_gateway_retry_failures_total',
    'Upstream fetches that failed after all attempts',
    ['upstream']
)


@dataclass
class RetryConfig:
    """Configuration for upstream retries."""
    max_attempts: int = 4
    initial_delay: float = 0.6
    exponential_base: float = 2.0
    max_delay: float = 60.0
    timeout: float = 12.0
    retry_on_status_codes: Set[int] = field(
        default_factory=lambda: {429, 502, 503, 504}
    )

    def backoff(self, attempt: int) -> float:
        """Exponential delay after the given 0-indexed attempt."""
        return min(self.initial_delay * (self.exponential_base ** attempt), self.max_delay)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a Retry-After header given in seconds.

    HTTP-date values and garbage return None so the caller falls back to
    exponential backoff.
    """
    if value is None or not value.strip():
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return seconds


class ThrottledUpstreamClient:
    """
    Rate-gated, retrying GET client for a single upstream.

    Usage:
        client = ThrottledUpstreamClient(
            rate_gate=RateGate(1.1, name="musicbrainz"),
            user_agent="MyApp/1.0 (contact@example.com)",
        )
        response = await client.fetch("https://musicbrainz.org/ws/2/artist",
                                      params={"query": "Radiohead", "fmt": "json"})
    """

    def __init__(
        self,
        rate_gate: RateGate,
        user_agent: str,
        config: Optional[RetryConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        name: str = "musicbrainz",
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        """
        Initialize upstream client.

        Args:
            rate_gate: Shared gate reserved before every attempt
            user_agent: User-Agent header (required by MusicBrainz)
            config: Retry/timeout configuration
            http_client: Shared httpx client; one is created if omitted
            name: Upstream identifier for logging/metrics
            sleep: Async sleep used for backoff (defaults to asyncio.sleep)
        """
        self.rate_gate = rate_gate
        self.config = config or RetryConfig()
        self.name = name
        self.headers = {
            'User-Agent': user_agent,
            'Accept': 'application/json'
        }
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()
        self._sleep = sleep or asyncio.sleep

    async def fetch(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        max_attempts: Optional[int] = None
    ) -> httpx.Response:
        """
        GET a URL with throttling and retries.

        Args:
            url: Absolute upstream URL
            params: Query-string parameters
            headers: Extra headers merged over the defaults
            max_attempts: Override for the configured attempt count

        Returns:
            The last upstream response

        Raises:
            UpstreamUnavailableError: Every attempt failed at the network level
        """
        attempts = max_attempts or self.config.max_attempts
        request_headers = {**self.headers, **(headers or {})}
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            is_last = attempt >= attempts - 1

            await self.rate_gate.acquire()

            start_time = time.monotonic()
            try:
                # httpx timeouts are per phase; wait_for bounds the whole attempt
                response = await asyncio.wait_for(
                    self._client.get(
                        url,
                        params=params,
                        headers=request_headers,
                        timeout=self.config.timeout
                    ),
                    self.config.timeout
                )
            except (httpx.RequestError, asyncio.TimeoutError) as e:
                last_error = e
                error_type = type(e).__name__
                upstream_requests_total.labels(upstream=self.name, status='network_error').inc()

                logger.warning(
                    "Upstream fetch attempt failed",
                    upstream=self.name,
                    url=url,
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    error=str(e) or error_type,
                    error_type=error_type
                )

                if is_last:
                    break

                delay = self.config.backoff(attempt)
                retry_attempts_total.labels(upstream=self.name, error_type=error_type).inc()
                logger.info(
                    "Retrying upstream fetch",
                    upstream=self.name,
                    delay=delay,
                    attempt=attempt + 1,
                    max_attempts=attempts
                )
                await self._sleep(delay)
                continue
            finally:
                upstream_request_seconds.labels(upstream=self.name).observe(
                    time.monotonic() - start_time
                )

            upstream_requests_total.labels(
                upstream=self.name,
                status=str(response.status_code)
            ).inc()

            if response.status_code in self.config.retry_on_status_codes and not is_last:
                retry_after = parse_retry_after(response.headers.get('retry-after'))
                if retry_after is not None:
                    delay = min(retry_after, self.config.max_delay)
                else:
                    delay = self.config.backoff(attempt)

                retry_attempts_total.labels(
                    upstream=self.name,
                    error_type=f'status_{response.status_code}'
                ).inc()
                logger.warning(
                    "Upstream returned retryable status",
                    upstream=self.name,
                    url=url,
                    status_code=response.status_code,
                    delay=delay,
                    retry_after=retry_after,
                    attempt=attempt + 1,
                    max_attempts=attempts
                )

                await response.aclose()
                await self._sleep(delay)
                continue

            if attempt > 0:
                logger.info(
                    "Upstream fetch finished after retries",
                    upstream=self.name,
                    status_code=response.status_code,
                    attempts=attempt + 1
                )

            return response

        retry_failures_total.labels(upstream=self.name).inc()
        logger.error(
            "All upstream attempts exhausted",
            upstream=self.name,
            url=url,
            attempts=attempts,
            last_error=str(last_error)
        )
        raise UpstreamUnavailableError(attempts, last_error)

    async def fetch_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        max_attempts: Optional[int] = None
    ) -> Tuple[int, Optional[Any]]:
        """
        Fetch and decode a JSON body.

        Returns:
            (status_code, payload); payload is None for non-2xx or invalid JSON

        Raises:
            UpstreamUnavailableError: Every attempt failed at the network level
        """
        response = await self.fetch(url, params=params, headers=headers, max_attempts=max_attempts)

        if not response.is_success:
            return response.status_code, None

        try:
            return response.status_code, response.json()
        except ValueError as e:
            logger.error(
                "Invalid JSON from upstream",
                upstream=self.name,
                url=url,
                error=str(e)
            )
            return response.status_code, None

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()
            logger.info("Upstream client closed", upstream=self.name)
