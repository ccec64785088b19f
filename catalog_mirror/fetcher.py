from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple, Type

import requests
from curl_cffi.requests import AsyncSession
from curl_cffi.requests.exceptions import RequestException as CurlRequestException

from .backoff import BackoffStrategy
from .errors import TransportError
from .metrics import FetchMetrics
from .models import FetchEvent

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


class PageFetcher(ABC):
    """Idempotent GET with retry and exponential backoff.

    Subclasses only implement ``_request``; the retry loop, the translation
    to TransportError and metrics recording live here.

    - 2xx returns the body text.
    - Transport exceptions, 5xx, 408 and 429 are retried until
      ``max_retries`` attempts have been made.
    - Any other status fails on the first attempt.
    """

    transport_errors: Tuple[Type[BaseException], ...] = (OSError,)

    def __init__(
        self,
        backoff: Optional[BackoffStrategy] = None,
        max_retries: int = 3,
        timeout: float = 20.0,
        metrics: Optional[FetchMetrics] = None,
    ) -> None:
        self._backoff = backoff or BackoffStrategy()
        self._max_retries = max(1, max_retries)
        self._timeout = timeout
        self._metrics = metrics

    async def fetch(self, url: str) -> str:
        start_ms = self._now_ms()
        attempt = 0
        while True:
            attempt += 1
            status_code: Optional[int] = None
            cause: Optional[BaseException] = None
            try:
                status_code, text = await self._request(url)
            except self.transport_errors as exc:
                cause = exc
                error_type = type(exc).__name__
            else:
                if 200 <= status_code < 300:
                    self._record(url, True, status_code, attempt, start_ms, None)
                    return text
                error_type = f"HTTP_{status_code}"

            retryable = self._backoff.is_retryable_status(status_code)
            if attempt >= self._max_retries or not retryable:
                self._record(url, False, status_code, attempt, start_ms, error_type)
                raise TransportError(
                    url,
                    f"GET {url} failed after {attempt} attempt(s): {error_type}",
                    status_code=status_code,
                ) from cause

            sleep_s = self._backoff.get_sleep(attempt, error_type)
            logger.debug("retrying %s in %.2fs (attempt %d, %s)", url, sleep_s, attempt, error_type)
            await asyncio.sleep(sleep_s)

    @abstractmethod
    async def _request(self, url: str) -> Tuple[int, str]:
        """Issue one GET and return ``(status_code, body_text)``."""

    async def close(self) -> None:
        return None

    async def __aenter__(self) -> "PageFetcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _record(
        self,
        url: str,
        ok: bool,
        status_code: Optional[int],
        attempts: int,
        start_ms: int,
        error_type: Optional[str],
    ) -> None:
        if self._metrics is None:
            return
        self._metrics.record(
            FetchEvent(
                url=url,
                ok=ok,
                status_code=status_code,
                attempts=attempts,
                latency_ms=self._now_ms() - start_ms,
                error_type=error_type,
            )
        )

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)


class ImpersonatingFetcher(PageFetcher):
    """Fetches through curl_cffi with a browser TLS fingerprint."""

    transport_errors = (CurlRequestException, OSError)

    def __init__(self, impersonate: str = "chrome120", headers: Optional[Dict[str, str]] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self._impersonate = impersonate
        self._headers = dict(headers or DEFAULT_HEADERS)
        self._session: Optional[AsyncSession] = None

    async def _request(self, url: str) -> Tuple[int, str]:
        if self._session is None:
            # Created lazily so the session binds to the running loop.
            self._session = AsyncSession(headers=self._headers, impersonate=self._impersonate)
        response = await self._session.get(url, timeout=self._timeout)
        return response.status_code, response.text

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None


class PlainFetcher(PageFetcher):
    """Fetches with ``requests`` in a worker thread."""

    transport_errors = (requests.RequestException, OSError)

    def __init__(self, headers: Optional[Dict[str, str]] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self._http = requests.Session()
        self._http.headers.update(headers or DEFAULT_HEADERS)

    async def _request(self, url: str) -> Tuple[int, str]:
        response = await asyncio.to_thread(self._http.get, url, timeout=self._timeout)
        return response.status_code, response.text

    async def close(self) -> None:
        self._http.close()


FETCHER_BACKENDS: Dict[str, Type[PageFetcher]] = {
    "impersonate": ImpersonatingFetcher,
    "plain": PlainFetcher,
}


def create_fetcher(
    backend: str,
    backoff: Optional[BackoffStrategy] = None,
    metrics: Optional[FetchMetrics] = None,
    max_retries: int = 3,
    timeout: float = 20.0,
) -> PageFetcher:
    """Build the fetcher registered under ``backend``."""
    try:
        fetcher_cls = FETCHER_BACKENDS[backend]
    except KeyError:
        raise ValueError(f"Unknown fetcher backend: {backend}") from None
    return fetcher_cls(backoff=backoff, metrics=metrics, max_retries=max_retries, timeout=timeout)
