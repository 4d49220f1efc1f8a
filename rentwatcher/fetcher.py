"""HTTP fetching with bounded retry and exponential backoff."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Protocol
from urllib.parse import urlsplit

import requests

from .config import DEFAULT_USER_AGENT, CrawlerConfig
from .errors import FetchError, InvalidUrlError

logger = logging.getLogger(__name__)


def default_headers(user_agent: str = DEFAULT_USER_AGENT) -> Dict[str, str]:
    """Headers sent with every search-page request."""
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "zh-TW,zh;q=0.9,en;q=0.8",
    }


@dataclass(frozen=True)
class FetchResponse:
    """Standardised response wrapper."""

    url: str
    status_code: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)


class Fetcher(Protocol):
    """Anything able to GET a URL and return its body."""

    def fetch(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> FetchResponse:
        ...


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry and how long to back off between attempts."""

    max_retries: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_index: int) -> float:
        """Delay before retry number ``retry_index`` (zero based)."""
        return min(self.base_delay * (2 ** retry_index), self.max_delay)


class FetchClient:
    """Stateless GET client that retries transient failures."""

    def __init__(
        self,
        session: requests.Session | None = None,
        policy: RetryPolicy | None = None,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session or requests.Session()
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: CrawlerConfig,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "FetchClient":
        policy = RetryPolicy(
            max_retries=config.max_retries,
            base_delay=config.retry_delay_seconds,
            max_delay=config.max_backoff_seconds,
        )
        return cls(
            session=session,
            policy=policy,
            timeout=config.fetch_timeout_seconds,
            sleep=sleep,
        )

    def fetch(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> FetchResponse:
        _require_fetchable(url)
        request_headers = dict(headers or {})
        last_error: BaseException | None = None
        status_code: int | None = None

        for attempt in range(self.policy.max_attempts):
            if attempt:
                delay = self.policy.delay_for(attempt - 1)
                logger.warning(
                    "Request to %s failed (%d/%d): %s; retrying in %.1fs",
                    url,
                    attempt,
                    self.policy.max_attempts,
                    last_error,
                    delay,
                )
                self._sleep(delay)

            try:
                response = self.session.get(
                    url,
                    headers=request_headers,
                    timeout=timeout or self.timeout,
                )
            except (requests.exceptions.InvalidURL,
                    requests.exceptions.MissingSchema,
                    requests.exceptions.InvalidSchema) as exc:
                raise InvalidUrlError(url, str(exc)) from exc
            except requests.RequestException as exc:
                last_error = exc
                status_code = None
                continue

            status_code = response.status_code
            if status_code >= 500:
                last_error = requests.HTTPError(
                    f"{status_code} Server Error for url: {url}", response=response
                )
                continue
            if status_code >= 400:
                error = requests.HTTPError(
                    f"{status_code} Client Error for url: {url}", response=response
                )
                raise FetchError(
                    url,
                    attempts=attempt + 1,
                    last_error=error,
                    status_code=status_code,
                    retryable=False,
                ) from error

            if not response.encoding or response.encoding.lower() == "iso-8859-1":
                response.encoding = response.apparent_encoding or "utf-8"
            if attempt:
                logger.info("Request to %s succeeded on attempt %d", url, attempt + 1)
            return FetchResponse(
                url=str(response.url or url),
                status_code=status_code,
                text=response.text,
                headers=dict(response.headers),
            )

        raise FetchError(
            url,
            attempts=self.policy.max_attempts,
            last_error=last_error,
            status_code=status_code,
        ) from last_error


def _require_fetchable(url: str) -> None:
    if not isinstance(url, str) or not url:
        raise InvalidUrlError(url, "URL must be a non-empty string")
    try:
        parts = urlsplit(url)
    except ValueError as exc:
        raise InvalidUrlError(url, str(exc)) from exc
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidUrlError(url, "URL must be absolute http(s)")


__all__ = ["FetchClient", "FetchResponse", "Fetcher", "RetryPolicy", "default_headers"]
