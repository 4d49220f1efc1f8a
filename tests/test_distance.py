import pytest

from rentwatcher.distance import Station, StationConfig, filter_by_distance, parse_metro_distance
from rentwatcher.errors import ConfigError
from rentwatcher.models import DistanceReason, Listing, StationDistance


def make_listing(metro_value="", distances=()):
    return Listing(
        title="測試房源",
        link="https://rent.591.com.tw/1",
        metro_title="距捷運站",
        metro_value=metro_value,
        station_distances=tuple(distances),
    )


@pytest.mark.parametrize(
    "text, expected",
    [
        ("350公尺", 350),
        ("距捷運站 1,200公尺", 1200),
        ("500m", 500),
        ("1.2公里", 1200),
        ("0.5km", 500),
        ("5分鐘", 400),
        ("", None),
        (None, None),
        ("步行可達", None),
    ],
)
def test_parse_metro_distance(text, expected):
    assert parse_metro_distance(text) == expected


def test_parse_metro_distance_uses_walking_speed():
    assert parse_metro_distance("10分鐘", walking_speed_m_per_min=60) == 600


def test_filter_threshold_boundaries():
    config = StationConfig()
    listings = [make_listing("750公尺"), make_listing("800公尺"), make_listing("850公尺")]

    decisions = filter_by_distance(listings, config, 800)

    assert [decision.qualifies for decision in decisions] == [True, True, False]
    assert decisions[0].reason is DistanceReason.WITHIN_THRESHOLD
    assert decisions[2].reason is DistanceReason.BEYOND_THRESHOLD
    assert decisions[0].distance_meters == 750
    assert decisions[0].walking_minutes == 10


def test_unknown_distance_never_qualifies():
    decision = filter_by_distance([make_listing("")], StationConfig(), 800)[0]

    assert decision.qualifies is False
    assert decision.reason is DistanceReason.UNKNOWN
    assert decision.distance_meters is None


def test_nearest_accepted_station_is_used():
    listing = make_listing(
        "900公尺",
        distances=[
            StationDistance("100", "距中山站", "900公尺"),
            StationDistance("200", "距雙連站", "300公尺"),
        ],
    )

    decision = filter_by_distance([listing], StationConfig.for_stations(["100", "200"]), 800)[0]

    assert decision.qualifies is True
    assert decision.station_id == "200"
    assert decision.station_name == "距雙連站"


def test_target_station_restricts_candidates():
    listing = make_listing(
        distances=[
            StationDistance("100", "距中山站", "900公尺"),
            StationDistance("200", "距雙連站", "300公尺"),
        ],
    )
    config = StationConfig.for_stations(["100"])

    decision = filter_by_distance([listing], config, 800)[0]

    assert config.target_station == "100"
    assert decision.qualifies is False
    assert decision.distance_meters == 900


def test_station_name_matching():
    config = StationConfig(stations=(Station("x", name="中山"),))

    assert config.accepts(StationDistance(None, "距中山站", "100公尺"))
    assert not config.accepts(StationDistance(None, "距雙連站", "100公尺"))


def test_invalid_threshold_is_rejected():
    with pytest.raises(ConfigError):
        filter_by_distance([make_listing("100公尺")], StationConfig(), 0)
