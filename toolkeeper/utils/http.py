"""
HTTP client utilities for toolkeeper.

A small synchronous wrapper around ``httpx`` with bounded retries,
exponential backoff and ``429`` handling. Only release-feed lookups go over
HTTP (the go.dev download index); every other backend asks its own version
manager.
"""

from __future__ import annotations

import time
import httpx
import random
from typing import Any, Callable, Optional

from toolkeeper.utils.logger import get_logger
from toolkeeper.__version__ import __version__
from toolkeeper.exceptions import NetworkError
from toolkeeper.constants import (
    DEFAULT_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    USER_AGENT_TEMPLATE,
)

logger = get_logger("http")


class HTTPClient:
    """Synchronous HTTP client with retries and backoff.

    Args:
        timeout: Request timeout in seconds.
        max_retries: Maximum number of retry attempts.
        verify_ssl: Whether to verify SSL certificates.
        user_agent: Custom User-Agent header value.
        sleep: Sleep function, replaceable in tests.

    Example:
        >>> with HTTPClient() as client:
        ...     releases = client.get_json("https://go.dev/dl/?mode=json")
    """

    def __init__(
        self,
        *,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        verify_ssl: bool = True,
        user_agent: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.timeout = timeout
        self.max_retries = max_retries
        self.verify_ssl = verify_ssl
        self.user_agent = user_agent or USER_AGENT_TEMPLATE.format(version=__version__)

        self._sleep = sleep
        self._client: Optional[httpx.Client] = None
        self._max_429_retries: int = 5

    def __enter__(self) -> "HTTPClient":
        self._ensure_client()
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()

    def _ensure_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.timeout),
                http2=True,
                verify=self.verify_ssl,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
            )
        return self._client

    def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def _backoff(self, attempt: int) -> float:
        return (2**attempt) + random.uniform(0.0, 0.3)

    def _wait_for_rate_limit(self, response: httpx.Response, url: str, count: int) -> None:
        if count > self._max_429_retries:
            raise NetworkError(
                f"Rate limit exceeded after {self._max_429_retries} retries",
                url=url,
                status_code=429,
            )
        try:
            delay = int(response.headers.get("Retry-After", "1"))
        except ValueError:
            delay = 1
        logger.warning(
            "Rate limited by %s, waiting %ds (%d/%d)",
            response.url.host,
            delay,
            count,
            self._max_429_retries,
        )
        self._sleep(delay)

    def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, retrying transient failures.

        A ``429`` waits for ``Retry-After`` and uses up an attempt. Other
        client errors raise at once. Timeouts, connection failures and
        server errors back off exponentially until attempts run out.
        """
        client = self._ensure_client()
        attempts = self.max_retries + 1
        rate_limited = 0
        failure: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                response = client.request(method, url, **kwargs)
            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                failure = exc
                logger.warning(
                    "%s on attempt %d/%d: %s", type(exc).__name__, attempt + 1, attempts, url
                )
            else:
                status = response.status_code
                if status == 429:
                    rate_limited += 1
                    self._wait_for_rate_limit(response, url, rate_limited)
                    continue
                if status < 400:
                    return response
                if status < 500:
                    raise NetworkError(
                        f"HTTP {status} error for {url}",
                        url=url,
                        status_code=status,
                        response_body=response.text,
                    )
                failure = httpx.HTTPStatusError(
                    f"HTTP {status}", request=response.request, response=response
                )
                logger.warning("HTTP %d on attempt %d/%d: %s", status, attempt + 1, attempts, url)

            if attempt + 1 < attempts:
                delay = self._backoff(attempt)
                logger.debug("Retrying %s in %.2fs", url, delay)
                self._sleep(delay)

        raise NetworkError(
            f"Request failed after {attempts} attempts: {url}",
            url=url,
        ) from failure

    def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return self._request_with_retry("GET", url, **kwargs)

    def get_json(self, url: str, **kwargs: Any) -> Any:
        """Fetch ``url`` and decode its JSON body.

        Raises:
            NetworkError: The request failed or the body is not JSON.
        """
        response = self.get(url, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise NetworkError(
                f"Invalid JSON response from {url}",
                url=url,
                response_body=response.text,
            ) from exc
