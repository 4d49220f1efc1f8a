"""rentwatcher package initialization."""

from .config import CrawlerConfig
from .crawler import PageCrawler, crawl_single
from .db import Database
from .diff import classify
from .distance import Station, StationConfig, filter_by_distance, parse_metro_distance
from .errors import (
    AllStationsFailedError,
    ConfigError,
    FetchError,
    InvalidUrlError,
    ParseError,
    RentWatcherError,
    StorageError,
)
from .fetcher import FetchClient, FetchResponse, RetryPolicy
from .identity import canonicalize_link, fingerprint_of, identity_of
from .limiter import ConcurrencyLimiter, TaskOutcome
from .models import (
    BatchState,
    CrawlBatch,
    DedupResult,
    DedupStatus,
    DistanceDecision,
    DistanceReason,
    Listing,
    RunSummary,
    StationFailure,
    StationState,
)
from .notifications import NotificationPolicy
from .orchestrator import MultiStationOptions, crawl_multi_station
from .parser import parse_listings
from .runner import RentWatcherRunner
from .search_url import SearchUrl

__all__ = [
    "AllStationsFailedError",
    "BatchState",
    "ConcurrencyLimiter",
    "ConfigError",
    "CrawlBatch",
    "CrawlerConfig",
    "Database",
    "DedupResult",
    "DedupStatus",
    "DistanceDecision",
    "DistanceReason",
    "FetchClient",
    "FetchError",
    "FetchResponse",
    "InvalidUrlError",
    "Listing",
    "MultiStationOptions",
    "NotificationPolicy",
    "PageCrawler",
    "ParseError",
    "RentWatcherError",
    "RentWatcherRunner",
    "RetryPolicy",
    "RunSummary",
    "SearchUrl",
    "Station",
    "StationConfig",
    "StationFailure",
    "StationState",
    "StorageError",
    "TaskOutcome",
    "canonicalize_link",
    "classify",
    "crawl_multi_station",
    "crawl_single",
    "filter_by_distance",
    "fingerprint_of",
    "identity_of",
    "parse_listings",
    "parse_metro_distance",
]
