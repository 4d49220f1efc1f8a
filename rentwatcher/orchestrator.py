"""Fan a multi-station search out over page crawls and merge the results."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from functools import partial
from typing import Callable, Dict, List, Sequence, Tuple

from .config import CrawlerConfig
from .crawler import PageCrawler
from .errors import AllStationsFailedError, ConfigError, FetchError, InvalidUrlError, ParseError
from .limiter import ConcurrencyLimiter, TaskOutcome
from .models import (
    CrawlBatch,
    Listing,
    StationDistance,
    StationFailure,
    StationResult,
    StationState,
)
from .search_url import SearchUrl

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MultiStationOptions:
    """Scheduling and merge behaviour of one multi-station crawl.

    ``delay_between_requests_ms`` is the minimum gap between two request
    starts. ``enable_merging`` collects every station a duplicate listing was
    found under onto the surviving listing; ``show_station_info`` controls
    whether station annotations are kept on the output at all.
    """

    max_concurrent: int = 3
    delay_between_requests_ms: int = 1000
    enable_merging: bool = True
    show_station_info: bool = True

    @classmethod
    def from_config(cls, config: CrawlerConfig, **overrides) -> "MultiStationOptions":
        options = cls(
            max_concurrent=config.max_concurrent,
            delay_between_requests_ms=config.delay_between_requests_ms,
        )
        return replace(options, **overrides) if overrides else options

    def validate(self) -> None:
        if not isinstance(self.max_concurrent, int) or self.max_concurrent < 1:
            raise ConfigError(f"max_concurrent must be a positive integer, got {self.max_concurrent!r}")
        if self.delay_between_requests_ms < 0:
            raise ConfigError(
                f"delay_between_requests_ms must be non-negative, got {self.delay_between_requests_ms!r}"
            )


def crawl_multi_station(
    url: str | SearchUrl,
    options: MultiStationOptions | None = None,
    crawler: PageCrawler | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> CrawlBatch:
    """Crawl every station of ``url`` and return the merged batch.

    Raises InvalidUrlError when ``url`` itself is unsupported and
    AllStationsFailedError when no station produced a result. Partial
    failures are reported on the returned batch.
    """
    options = options or MultiStationOptions()
    options.validate()
    search_url = url if isinstance(url, SearchUrl) else SearchUrl.parse(url)
    crawler = crawler or PageCrawler.from_config(CrawlerConfig())

    station_urls = search_url.decompose()
    logger.info(
        "Crawling %d station URL(s) for %s (max_concurrent=%d, delay=%dms)",
        len(station_urls),
        search_url.url,
        options.max_concurrent,
        options.delay_between_requests_ms,
    )

    limiter = ConcurrencyLimiter(
        max_concurrent=options.max_concurrent,
        delay=options.delay_between_requests_ms / 1000,
        sleep=sleep,
        clock=clock,
    )
    outcomes = limiter.run([partial(crawler.crawl, station_url) for station_url in station_urls])
    results = [
        _station_result(station_url, outcome)
        for station_url, outcome in zip(station_urls, outcomes)
    ]

    failures = [result.failure for result in results if result.failure is not None]
    if len(failures) == len(results):
        raise AllStationsFailedError(search_url.url, failures)

    listings, total_found, duplicate_count = merge_station_results(
        results,
        enable_merging=options.enable_merging,
        show_station_info=options.show_station_info,
    )
    batch = CrawlBatch(
        url=search_url.url,
        listings=tuple(listings),
        station_results=tuple(results),
        total_found=total_found,
        duplicate_count=duplicate_count,
    )
    logger.info(
        "Crawl finished (%s): %d unique listings from %d/%d stations, %d duplicates",
        batch.state.value,
        len(batch.listings),
        batch.successful_stations,
        len(results),
        duplicate_count,
    )
    return batch


def merge_station_results(
    results: Sequence[StationResult],
    enable_merging: bool = True,
    show_station_info: bool = True,
) -> Tuple[List[Listing], int, int]:
    """Deduplicate listings across stations, keeping station order.

    Returns the merged listings, the number of listings found before
    deduplication and the number of duplicates dropped.
    """
    merged: List[Listing] = []
    positions: Dict[str, int] = {}
    total_found = 0
    duplicate_count = 0

    for result in results:
        if not result.succeeded:
            continue
        total_found += len(result.listings)
        for listing in result.listings:
            key = listing.primary_key
            if key not in positions:
                positions[key] = len(merged)
                merged.append(listing)
                continue
            duplicate_count += 1
            if enable_merging:
                index = positions[key]
                merged[index] = _merge_stations(merged[index], listing)

    if not show_station_info:
        merged = [replace(listing, stations=(), station_distances=()) for listing in merged]
    return merged, total_found, duplicate_count


def annotate_station(listing: Listing, station_id: str) -> Listing:
    """Return a copy of ``listing`` tagged with the station it was found under."""
    distances: Tuple[StationDistance, ...] = ()
    if listing.metro_value:
        distances = (
            StationDistance(
                station_id=station_id,
                station_name=listing.metro_title,
                metro_value=listing.metro_value,
            ),
        )
    return replace(listing, stations=(station_id,), station_distances=distances)


def _merge_stations(existing: Listing, duplicate: Listing) -> Listing:
    stations = existing.stations + tuple(
        station for station in duplicate.stations if station not in existing.stations
    )
    known = {distance.station_id for distance in existing.station_distances}
    distances = existing.station_distances + tuple(
        distance for distance in duplicate.station_distances if distance.station_id not in known
    )
    return replace(existing, stations=stations, station_distances=distances)


def _station_result(station_url: SearchUrl, outcome: TaskOutcome[List[Listing]]) -> StationResult:
    station_id = station_url.station
    if outcome.ok:
        listings = outcome.value or []
        if station_id:
            listings = [annotate_station(listing, station_id) for listing in listings]
        logger.info("Station %s completed: %d listings", station_id or "-", len(listings))
        return StationResult(
            station_id=station_id,
            url=station_url.url,
            state=StationState.DONE,
            listings=tuple(listings),
        )

    error = outcome.error
    logger.error("Station %s failed: %s", station_id or "-", error)
    return StationResult(
        station_id=station_id,
        url=station_url.url,
        state=StationState.FAILED,
        failure=StationFailure(
            station_id=station_id,
            url=station_url.url,
            stage=_failure_stage(error),
            error=error,
        ),
    )


def _failure_stage(error: BaseException | None) -> str:
    if isinstance(error, InvalidUrlError):
        return "validation"
    if isinstance(error, FetchError):
        return "fetch"
    if isinstance(error, ParseError):
        return "parse"
    return "unknown"


__all__ = [
    "MultiStationOptions",
    "annotate_station",
    "crawl_multi_station",
    "merge_station_results",
]
