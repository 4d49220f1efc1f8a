"""Core data models for rentwatcher."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .identity import fingerprint_of, identity_of


@dataclass(frozen=True)
class StationDistance:
    """Distance text reported by the site for one transit station."""

    station_id: str | None
    station_name: str
    metro_value: str


@dataclass(frozen=True)
class Listing:
    """Represents a rental listing scraped from a search-result page."""

    title: str
    link: str | None
    price: str = ""
    location: str = ""
    house_type: str = ""
    rooms: str = ""
    size: str | None = None
    floor: str | None = None
    tags: Tuple[str, ...] = ()
    img_urls: Tuple[str, ...] = ()
    metro_title: str = ""
    metro_value: str = ""
    stations: Tuple[str, ...] = ()
    station_distances: Tuple[StationDistance, ...] = ()

    @property
    def primary_key(self) -> str:
        return identity_of(self)

    @property
    def fingerprint(self) -> str:
        return fingerprint_of(self)

    @property
    def identity(self) -> "ListingIdentity":
        return ListingIdentity(primary_key=self.primary_key, fingerprint=self.fingerprint)


@dataclass(frozen=True)
class ListingIdentity:
    primary_key: str
    fingerprint: str


class StationState(str, enum.Enum):
    """Lifecycle of a single station crawl."""

    PENDING = "pending"
    FETCHING = "fetching"
    PARSING = "parsing"
    DONE = "done"
    FAILED = "failed"


class BatchState(str, enum.Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    ALL_FAILED = "all_failed"


@dataclass(frozen=True)
class StationFailure:
    """Why one station of a batch produced no listings."""

    station_id: str | None
    url: str
    stage: str
    error: BaseException

    @property
    def message(self) -> str:
        return f"{type(self.error).__name__}: {self.error}"


@dataclass(frozen=True)
class StationResult:
    station_id: str | None
    url: str
    state: StationState
    listings: Tuple[Listing, ...] = ()
    failure: StationFailure | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is StationState.DONE


@dataclass(frozen=True)
class CrawlBatch:
    """Merged outcome of one orchestration run, in station order."""

    url: str
    listings: Tuple[Listing, ...]
    station_results: Tuple[StationResult, ...]
    total_found: int = 0
    duplicate_count: int = 0

    @property
    def stations(self) -> List[str | None]:
        return [result.station_id for result in self.station_results]

    @property
    def failures(self) -> List[StationFailure]:
        return [result.failure for result in self.station_results if result.failure is not None]

    @property
    def successful_stations(self) -> int:
        return sum(1 for result in self.station_results if result.succeeded)

    @property
    def state(self) -> BatchState:
        if not self.station_results:
            return BatchState.RUNNING
        if self.successful_stations == len(self.station_results):
            return BatchState.SUCCEEDED
        if self.successful_stations == 0:
            return BatchState.ALL_FAILED
        return BatchState.PARTIALLY_FAILED


class DedupStatus(str, enum.Enum):
    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class ClassifiedListing:
    listing: Listing
    primary_key: str
    fingerprint: str
    status: DedupStatus
    previous_fingerprint: str | None = None


@dataclass
class DedupResult:
    """Classification of a batch against previously known identities."""

    entries: List[ClassifiedListing]
    missing: List[str] = field(default_factory=list)

    def _with_status(self, status: DedupStatus) -> List[Listing]:
        return [entry.listing for entry in self.entries if entry.status is status]

    @property
    def new(self) -> List[Listing]:
        return self._with_status(DedupStatus.NEW)

    @property
    def changed(self) -> List[Listing]:
        return self._with_status(DedupStatus.CHANGED)

    @property
    def unchanged(self) -> List[Listing]:
        return self._with_status(DedupStatus.UNCHANGED)

    def status_of(self, primary_key: str) -> Optional[DedupStatus]:
        for entry in self.entries:
            if entry.primary_key == primary_key:
                return entry.status
        return None

    def identities(self) -> Dict[str, str]:
        """Return the ``primary_key -> fingerprint`` mapping of this batch."""
        return {entry.primary_key: entry.fingerprint for entry in self.entries}


class DistanceReason(str, enum.Enum):
    WITHIN_THRESHOLD = "within_threshold"
    BEYOND_THRESHOLD = "beyond_threshold"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class DistanceDecision:
    """Whether a listing is close enough to a station to notify about."""

    listing: Listing
    qualifies: bool
    reason: DistanceReason
    threshold_meters: int
    distance_meters: int | None = None
    walking_minutes: int | None = None
    station_id: str | None = None
    station_name: str | None = None


@dataclass(frozen=True)
class NotificationItem:
    """A listing selected for delivery together with how to deliver it."""

    listing: Listing
    decision: DistanceDecision | None
    status: DedupStatus | None
    silent: bool = False


@dataclass
class RentalRecord:
    """Persisted representation of a listing for one query."""

    query_id: str
    property_id: str
    title: str
    link: str | None
    price: str
    house_type: str
    rooms: str
    metro_title: str
    metro_value: str
    tags: Sequence[str]
    fingerprint: str
    first_seen: str
    last_seen: str
    active: bool


@dataclass
class SessionSummary:
    """Result of persisting one crawl session."""

    session_id: int
    query_id: str
    executed_at: str
    status: str
    total: int
    new: int
    changed: int
    unchanged: int
    removed: int
    failed_stations: List[str] = field(default_factory=list)


@dataclass
class RunSummary:
    """Aggregated result returned by a monitoring cycle."""

    executed_at: str
    query_id: str
    batch: CrawlBatch
    dedup: DedupResult
    decisions: List[DistanceDecision]
    notifications: List[NotificationItem]
    session: SessionSummary | None = None
