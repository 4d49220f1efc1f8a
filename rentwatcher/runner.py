"""Core execution workflow for rentwatcher."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Protocol

from .config import CrawlerConfig
from .crawler import PageCrawler
from .diff import classify
from .errors import ConfigError
from .distance import StationConfig, filter_by_distance
from .models import CrawlBatch, DedupResult, DedupStatus, Listing, RunSummary, SessionSummary
from .notifications import (
    NotificationPolicy,
    Notifier,
    plan_notifications,
    send_error_notification,
    send_notifications,
)
from .orchestrator import MultiStationOptions, crawl_multi_station
from .search_url import SearchUrl

logger = logging.getLogger(__name__)


class ListingStore(Protocol):
    """Storage collaborator consumed by the runner."""

    def get_existing_identities(self, query_id: str) -> Dict[str, str]:
        ...

    def save_results(
        self,
        query_id: str,
        batch: CrawlBatch,
        dedup: DedupResult,
        executed_at: str | None = None,
        notes: str | None = None,
    ) -> SessionSummary:
        ...

    def record_failure(self, query_id: str, executed_at: str, notes: str) -> None:
        ...


@dataclass
class RentWatcherRunner:
    """Coordinates crawl, classification, filtering, notification and persistence."""

    store: ListingStore
    notifier: Notifier | None = None
    config: CrawlerConfig = field(default_factory=CrawlerConfig)
    policy: NotificationPolicy = field(default_factory=NotificationPolicy)
    options: MultiStationOptions | None = None
    crawler: PageCrawler | None = None
    crawl: Callable[..., CrawlBatch] = field(
        default_factory=lambda: crawl_multi_station
    )

    def run(
        self,
        url: str,
        max_latest: int | None = None,
        dry_run: bool = False,
    ) -> RunSummary:
        """Execute a single monitoring cycle for ``url``."""
        if max_latest is not None and max_latest < 1:
            raise ConfigError(f"max_latest must be at least 1, got {max_latest!r}")
        search_url = SearchUrl.parse(url)
        query_id = search_url.query_id
        executed_at = dt.datetime.now(dt.timezone.utc).isoformat()
        options = self.options or MultiStationOptions.from_config(self.config)
        crawler = self.crawler or PageCrawler.from_config(self.config)
        logger.info("Starting monitor cycle for %s (%s)", search_url.url, query_id)

        try:
            batch = self.crawl(search_url, options=options, crawler=crawler)
        except Exception as exc:
            logger.exception("Crawl failed: %s", exc)
            if not dry_run:
                self.store.record_failure(query_id, executed_at, f"crawl_failed: {exc}")
                if self.notifier and self.policy.notify_mode != "none":
                    send_error_notification(self.notifier, search_url.url, exc)
            raise

        known = self.store.get_existing_identities(query_id)
        dedup = classify(batch, known)
        logger.info(
            "Existing rentals: %d; new %d, changed %d, unchanged %d, missing %d",
            len(known),
            len(dedup.new),
            len(dedup.changed),
            len(dedup.unchanged),
            len(dedup.missing),
        )

        candidates = self._candidates(batch, dedup, max_latest)
        station_config = StationConfig.for_stations(
            search_url.stations,
            walking_speed_m_per_min=self.config.walking_speed_m_per_min,
        )
        decisions = filter_by_distance(candidates, station_config, self.config.mrt_distance_threshold)
        items = plan_notifications(decisions, dedup, self.policy)

        session = None
        if dry_run:
            logger.info("Dry run: %d notification(s) planned, nothing sent or saved", len(items))
        else:
            if self.notifier and items:
                send_notifications(
                    items,
                    self.notifier,
                    source_url=search_url.url,
                    delay=self.config.notification_delay_seconds,
                )
            session = self.store.save_results(
                query_id,
                batch,
                dedup,
                executed_at=executed_at,
                notes=_format_note(batch, dedup, len(items)),
            )
            logger.info("Session %s recorded at %s", session.session_id, executed_at)

        return RunSummary(
            executed_at=executed_at,
            query_id=query_id,
            batch=batch,
            dedup=dedup,
            decisions=decisions,
            notifications=items,
            session=session,
        )

    def _candidates(
        self,
        batch: CrawlBatch,
        dedup: DedupResult,
        max_latest: int | None,
    ) -> List[Listing]:
        if max_latest is not None:
            logger.info("Will consider the latest %d listings", max_latest)
            return list(batch.listings[:max_latest])
        return [
            entry.listing
            for entry in dedup.entries
            if entry.status is DedupStatus.NEW
            or (entry.status is DedupStatus.CHANGED and self.policy.changed_mode != "skip")
        ]


def _format_note(batch: CrawlBatch, dedup: DedupResult, notified: int) -> str:
    """Render a concise session note summarizing the run outcome."""
    note = (
        f"listings(+{len(dedup.new)} / ~{len(dedup.changed)} / ={len(dedup.unchanged)}) "
        f"stations({batch.successful_stations}/{len(batch.station_results)}) "
        f"notified({notified})"
    )
    if batch.failures:
        note += " failed(" + ", ".join(f.station_id or f.url for f in batch.failures) + ")"
    return note


__all__ = ["ListingStore", "RentWatcherRunner"]
