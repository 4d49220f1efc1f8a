"""Exception hierarchy shared by the crawl pipeline."""

from __future__ import annotations

from typing import List, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import StationFailure


class RentWatcherError(Exception):
    """Base class for every error raised by rentwatcher."""


class ConfigError(RentWatcherError, ValueError):
    """Raised when configuration values are missing or out of range."""


class InvalidUrlError(RentWatcherError, ValueError):
    """The URL is malformed or not a supported search-result page."""

    def __init__(self, url: object, reason: str = "unsupported search URL"):
        super().__init__(f"Invalid search URL {url!r}: {reason}")
        self.url = url
        self.reason = reason


class FetchError(RentWatcherError):
    """An HTTP fetch failed permanently or exhausted its retries."""

    def __init__(
        self,
        url: str,
        attempts: int,
        last_error: BaseException | None = None,
        status_code: int | None = None,
        retryable: bool = True,
    ):
        detail = f"HTTP {status_code}" if status_code else str(last_error or "unknown error")
        super().__init__(f"Fetch failed after {attempts} attempt(s) for {url}: {detail}")
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        self.status_code = status_code
        self.retryable = retryable


class ParseError(RentWatcherError):
    """The fetched page could not be parsed into listings."""

    def __init__(self, url: str, message: str):
        super().__init__(f"Failed to parse {url}: {message}")
        self.url = url


class AllStationsFailedError(RentWatcherError):
    """Every station of a multi-station search failed."""

    def __init__(self, url: str, failures: Sequence["StationFailure"]):
        self.url = url
        self.failures: List["StationFailure"] = list(failures)
        lines = [f"{failure.station_id or '-'}: {failure.message}" for failure in self.failures]
        super().__init__(
            f"All {len(self.failures)} station(s) failed for {url} ({'; '.join(lines)})"
        )


class StorageError(RentWatcherError):
    """Raised by the SQLite storage adapter when a database call fails."""


__all__ = [
    "AllStationsFailedError",
    "ConfigError",
    "FetchError",
    "InvalidUrlError",
    "ParseError",
    "RentWatcherError",
    "StorageError",
]
