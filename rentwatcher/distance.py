"""Station proximity checks used to decide which listings to notify about."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from .errors import ConfigError
from .models import DistanceDecision, DistanceReason, Listing, StationDistance

logger = logging.getLogger(__name__)

DEFAULT_WALKING_SPEED_M_PER_MIN = 80

_METERS = re.compile(r"(\d[\d,]*(?:\.\d+)?)\s*(?:公尺|米|m)(?![a-z])", re.IGNORECASE)
_KILOMETERS = re.compile(r"(\d+(?:\.\d+)?)\s*(?:公里|km)", re.IGNORECASE)
_MINUTES = re.compile(r"(\d+(?:\.\d+)?)\s*(?:分鐘|分|min)", re.IGNORECASE)


@dataclass(frozen=True)
class Station:
    station_id: str
    name: str = ""


@dataclass(frozen=True)
class StationConfig:
    """Stations used as distance references.

    With ``target_station`` set only that station counts; otherwise the
    nearest of ``stations`` is used, or the nearest reported station when
    ``stations`` is empty.
    """

    stations: Tuple[Station, ...] = ()
    walking_speed_m_per_min: float = DEFAULT_WALKING_SPEED_M_PER_MIN
    target_station: str | None = None

    @classmethod
    def for_stations(
        cls,
        station_ids: Iterable[str],
        walking_speed_m_per_min: float = DEFAULT_WALKING_SPEED_M_PER_MIN,
    ) -> "StationConfig":
        station_ids = list(station_ids)
        return cls(
            stations=tuple(Station(station_id) for station_id in station_ids),
            walking_speed_m_per_min=walking_speed_m_per_min,
            target_station=station_ids[0] if len(station_ids) == 1 else None,
        )

    def accepts(self, distance: StationDistance) -> bool:
        if self.target_station is not None:
            return distance.station_id == self.target_station
        if not self.stations:
            return True
        for station in self.stations:
            if distance.station_id and distance.station_id == station.station_id:
                return True
            if station.name and station.name in distance.station_name:
                return True
        return False


def parse_metro_distance(
    metro_value: str | None,
    walking_speed_m_per_min: float = DEFAULT_WALKING_SPEED_M_PER_MIN,
) -> int | None:
    """Convert a metro distance text such as ``350公尺`` or ``5分鐘`` to meters."""
    if not metro_value:
        return None
    match = _KILOMETERS.search(metro_value)
    if match:
        return int(round(float(match.group(1)) * 1000))
    match = _METERS.search(metro_value)
    if match:
        return int(round(float(match.group(1).replace(",", ""))))
    match = _MINUTES.search(metro_value)
    if match:
        return int(round(float(match.group(1)) * walking_speed_m_per_min))
    return None


def filter_by_distance(
    listings: Sequence[Listing],
    station_config: StationConfig,
    threshold_meters: int,
) -> List[DistanceDecision]:
    """Decide for each listing whether it is within ``threshold_meters``."""
    if threshold_meters <= 0:
        raise ConfigError(f"threshold_meters must be positive, got {threshold_meters!r}")
    if station_config.walking_speed_m_per_min <= 0:
        raise ConfigError("walking speed must be positive")

    decisions = [_decide(listing, station_config, threshold_meters) for listing in listings]
    qualifying = sum(1 for decision in decisions if decision.qualifies)
    unknown = sum(1 for decision in decisions if decision.reason is DistanceReason.UNKNOWN)
    logger.info(
        "Distance filter (<= %dm): %d qualify, %d beyond, %d unknown",
        threshold_meters,
        qualifying,
        len(decisions) - qualifying - unknown,
        unknown,
    )
    return decisions


def _decide(listing: Listing, config: StationConfig, threshold_meters: int) -> DistanceDecision:
    nearest: Tuple[int, StationDistance] | None = None
    for candidate in _candidate_distances(listing, config):
        meters = parse_metro_distance(candidate.metro_value, config.walking_speed_m_per_min)
        if meters is None:
            continue
        if nearest is None or meters < nearest[0]:
            nearest = (meters, candidate)

    if nearest is None:
        return DistanceDecision(
            listing=listing,
            qualifies=False,
            reason=DistanceReason.UNKNOWN,
            threshold_meters=threshold_meters,
        )

    meters, station = nearest
    qualifies = meters <= threshold_meters
    return DistanceDecision(
        listing=listing,
        qualifies=qualifies,
        reason=DistanceReason.WITHIN_THRESHOLD if qualifies else DistanceReason.BEYOND_THRESHOLD,
        threshold_meters=threshold_meters,
        distance_meters=meters,
        walking_minutes=math.ceil(meters / config.walking_speed_m_per_min),
        station_id=station.station_id,
        station_name=station.station_name or None,
    )


def _candidate_distances(listing: Listing, config: StationConfig) -> List[StationDistance]:
    if listing.station_distances:
        return [distance for distance in listing.station_distances if config.accepts(distance)]
    # Unannotated listings only carry the site's nearest-station text.
    if listing.metro_value:
        return [StationDistance(None, listing.metro_title, listing.metro_value)]
    return []


__all__ = [
    "DEFAULT_WALKING_SPEED_M_PER_MIN",
    "Station",
    "StationConfig",
    "filter_by_distance",
    "parse_metro_distance",
]
