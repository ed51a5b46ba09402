"""Base API client with rate limiting, retry logic and response caching."""
import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx

from throughline.cache.disk_cache import request_cache_key
from throughline.models.paper import Paper
from throughline.utils.cancellation import CancellationToken, check_cancelled
from throughline.utils.config import settings
from throughline.utils.errors import APIError, RateLimitError
from throughline.utils.logging import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """Minimum spacing between calls, gated by a single last-call timestamp."""

    def __init__(self, min_interval: float = 1.0):
        """
        Initialize rate limiter.

        Args:
            min_interval: Minimum seconds between two calls
        """
        self.min_interval = min_interval
        self.extra_delay = 0.0
        self.last_call = 0.0
        self.lock = asyncio.Lock()

    async def acquire(self):
        """Wait until the spacing allows another call, then claim the slot."""
        async with self.lock:
            interval = self.min_interval + self.extra_delay
            wait_time = interval - (time.monotonic() - self.last_call)
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            # updated before the request goes out, not after it returns
            self.last_call = time.monotonic()

    def slow_down(self, step: float, cap: float) -> float:
        """Widen spacing after a rate-limit episode. Returns the new extra delay."""
        self.extra_delay = min(self.extra_delay + step, cap)
        return self.extra_delay


class PaperSource(ABC):
    """Contract for a bibliographic metadata service."""

    cancellation: Optional[CancellationToken] = None

    def bind_cancellation(self, token: Optional[CancellationToken]) -> None:
        self.cancellation = token

    @abstractmethod
    async def search(
        self, query: str, min_year: Optional[int] = None, limit: int = 25
    ) -> List[Paper]:
        pass

    @abstractmethod
    async def get_citations(self, paper_id: str) -> List[Paper]:
        pass

    @abstractmethod
    async def get_references(self, paper_id: str) -> List[Paper]:
        pass

    @abstractmethod
    async def get_recommendations(self, paper_id: str) -> List[Paper]:
        pass

    @abstractmethod
    async def get_author_papers(self, author: str) -> List[Paper]:
        pass

    @abstractmethod
    async def resolve_paper_id(self, paper: Paper) -> str:
        pass

    async def close(self):
        pass


class BaseAPIClient(PaperSource):
    """Abstract HTTP client: spacing, 429 backoff within a budget, caching."""

    def __init__(
        self,
        base_url: str,
        rate_limiter: Optional[RateLimiter] = None,
        cache=None,
        timeout: Optional[int] = None,
        retry_budget: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_cap: Optional[float] = None,
    ):
        """
        Initialize API client.

        Args:
            base_url: Base URL for API
            rate_limiter: Rate limiter instance (optional)
            cache: Object with get/set (DiskCache, RedisCache) or None
            timeout: Request timeout in seconds
            retry_budget: Wall-clock seconds allowed for 429 retries
            max_attempts: Maximum attempts per call
            backoff_base: First retry delay in seconds, doubled per attempt
            backoff_cap: Maximum delay between attempts
        """
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.timeout = timeout or settings.semantic_scholar_request_timeout
        self.retry_budget = (
            retry_budget if retry_budget is not None else settings.semantic_scholar_retry_budget
        )
        self.max_attempts = max_attempts or settings.semantic_scholar_max_attempts
        self.backoff_base = (
            backoff_base if backoff_base is not None else settings.semantic_scholar_backoff_base
        )
        self.backoff_cap = (
            backoff_cap if backoff_cap is not None else settings.semantic_scholar_backoff_cap
        )
        self.client = httpx.AsyncClient(timeout=self.timeout)

    def _get_headers(self) -> Dict[str, str]:
        return {}

    def _url(self, endpoint: str, base_url: Optional[str] = None) -> str:
        return f"{(base_url or self.base_url).rstrip('/')}/{endpoint.lstrip('/')}"

    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Make one HTTP request, honouring the rate limiter.

        Returns:
            JSON response as dictionary

        Raises:
            RateLimitError: On HTTP 429
            APIError: On any other failure (not retried)
        """
        if self.rate_limiter:
            await self.rate_limiter.acquire()

        try:
            response = await self.client.request(
                method=method,
                url=url,
                params=params,
                json=json_body,
                headers=self._get_headers(),
            )
        except httpx.RequestError as e:
            logger.error(f"Request error: {e}")
            raise APIError(f"Request failed: {str(e)}")

        if response.status_code == 429:
            raise RateLimitError("Rate limit exceeded")

        if response.status_code >= 300:
            logger.error(f"HTTP error {response.status_code}: {response.text[:200]}")
            raise APIError(f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            return response.json()
        except ValueError as e:
            raise APIError(f"Invalid JSON from {url}: {e}")

    async def _retry_with_backoff(
        self,
        func: Callable[[], Awaitable[Any]],
        context: str = "API call",
    ):
        """
        Retry func on RateLimitError with exponential backoff.

        Stops after max_attempts or once retry_budget seconds have elapsed.
        Any other error propagates immediately.
        """
        start = time.monotonic()
        attempt = 0
        last_exception: Optional[RateLimitError] = None

        while attempt < self.max_attempts:
            if attempt > 0 and time.monotonic() - start >= self.retry_budget:
                break
            attempt += 1
            await check_cancelled(self.cancellation)

            if attempt > 1:
                wait_time = min(self.backoff_base * (2 ** (attempt - 2)), self.backoff_cap)
                logger.warning(
                    f"Rate limited. Waiting {wait_time:.1f}s before retry "
                    f"(attempt {attempt}/{self.max_attempts}, {context})"
                )
                await asyncio.sleep(wait_time)
                await check_cancelled(self.cancellation)

            try:
                result = await func()
            except RateLimitError as e:
                last_exception = e
                continue

            if attempt > 1:
                self._on_rate_limit_recovered()
            return result

        elapsed = time.monotonic() - start
        raise RateLimitError(
            f"Rate limited after {attempt} attempts in {elapsed:.1f}s ({context}): "
            f"{last_exception}"
        )

    def _on_rate_limit_recovered(self) -> None:
        if self.rate_limiter:
            delay = self.rate_limiter.slow_down(
                settings.semantic_scholar_slowdown_step,
                settings.semantic_scholar_slowdown_cap,
            )
            logger.info(f"Rate limit recovered. Extra delay between requests now {delay:.1f}s")

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        base_url: Optional[str] = None,
        context: str = "API call",
    ) -> Union[Dict[str, Any], List[Any]]:
        """Cached, retried request. A cache hit skips the network and the limiter."""
        url = self._url(endpoint, base_url)
        cache_key = request_cache_key(str(httpx.URL(url, params=params)), method, json_body)

        if self.cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Cache hit for {context}")
                return cached

        async def fetch():
            return await self._make_request(method, url, params=params, json_body=json_body)

        result = await self._retry_with_backoff(fetch, context=context)

        if self.cache:
            self.cache.set(cache_key, result)
        return result

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
