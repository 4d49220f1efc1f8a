import threading
from types import SimpleNamespace
from urllib.parse import parse_qs, urlsplit

import pytest

from rentwatcher.config import CrawlerConfig
from rentwatcher.crawler import PageCrawler
from rentwatcher.errors import AllStationsFailedError, ConfigError, FetchError, InvalidUrlError
from rentwatcher.fetcher import FetchClient, FetchResponse, RetryPolicy
from rentwatcher.models import BatchState, Listing, StationState
from rentwatcher.orchestrator import MultiStationOptions, crawl_multi_station

URL = "https://rent.591.com.tw/list?region=1&station=100,200,300"


def make_listing(number, metro_value="400公尺", title=None):
    return Listing(
        title=title or f"房源 {number}",
        link=f"https://rent.591.com.tw/{number}",
        price="15,000",
        metro_title="距捷運站",
        metro_value=metro_value,
    )


class StationCrawler:
    """Returns canned listings per station id, or raises the canned error."""

    def __init__(self, pages):
        self.pages = pages
        self.calls = []
        self._lock = threading.Lock()

    def crawl(self, url):
        with self._lock:
            self.calls.append(url.station)
        page = self.pages[url.station]
        if isinstance(page, BaseException):
            raise page
        return list(page)


def options(**overrides):
    values = dict(max_concurrent=2, delay_between_requests_ms=0)
    values.update(overrides)
    return MultiStationOptions(**values)


def test_partial_failure_keeps_successful_stations():
    crawler = StationCrawler(
        {
            "100": [make_listing(1), make_listing(2)],
            "200": FetchError("https://rent.591.com.tw/list?region=1&station=200", attempts=4, status_code=503),
            "300": [make_listing(3)],
        }
    )

    batch = crawl_multi_station(URL, options=options(), crawler=crawler)

    assert [listing.primary_key for listing in batch.listings] == ["1", "2", "3"]
    assert batch.state is BatchState.PARTIALLY_FAILED
    assert batch.stations == ["100", "200", "300"]
    assert batch.successful_stations == 2
    assert len(batch.failures) == 1
    failure = batch.failures[0]
    assert failure.station_id == "200"
    assert failure.stage == "fetch"
    assert "503" in failure.message
    assert batch.station_results[1].state is StationState.FAILED
    assert sorted(crawler.calls) == ["100", "200", "300"]


def test_shared_listing_is_merged_with_both_stations():
    crawler = StationCrawler(
        {
            "100": [make_listing(1, "300公尺"), make_listing(2)],
            "200": [make_listing(1, "900公尺")],
            "300": [],
        }
    )

    batch = crawl_multi_station(URL, options=options(), crawler=crawler)

    assert [listing.primary_key for listing in batch.listings] == ["1", "2"]
    assert batch.total_found == 3
    assert batch.duplicate_count == 1
    shared = batch.listings[0]
    assert shared.stations == ("100", "200")
    assert [d.station_id for d in shared.station_distances] == ["100", "200"]
    assert [d.metro_value for d in shared.station_distances] == ["300公尺", "900公尺"]
    assert batch.state is BatchState.SUCCEEDED


def test_merging_disabled_keeps_first_station_only():
    crawler = StationCrawler({"100": [make_listing(1)], "200": [make_listing(1)], "300": []})

    batch = crawl_multi_station(URL, options=options(enable_merging=False), crawler=crawler)

    assert len(batch.listings) == 1
    assert batch.listings[0].stations == ("100",)
    assert batch.duplicate_count == 1


def test_station_info_can_be_hidden():
    crawler = StationCrawler({"100": [make_listing(1)], "200": [make_listing(1)], "300": []})

    batch = crawl_multi_station(URL, options=options(show_station_info=False), crawler=crawler)

    assert batch.listings[0].stations == ()
    assert batch.listings[0].station_distances == ()


def test_all_stations_failing_raises():
    error = FetchError("https://rent.591.com.tw/list", attempts=1, status_code=404, retryable=False)
    crawler = StationCrawler({"100": error, "200": error, "300": RuntimeError("boom")})

    with pytest.raises(AllStationsFailedError) as excinfo:
        crawl_multi_station(URL, options=options(), crawler=crawler)

    assert [failure.station_id for failure in excinfo.value.failures] == ["100", "200", "300"]
    assert [failure.stage for failure in excinfo.value.failures] == ["fetch", "fetch", "unknown"]
    assert "100" in str(excinfo.value)


def test_invalid_url_is_rejected_before_crawling():
    crawler = StationCrawler({})

    with pytest.raises(InvalidUrlError):
        crawl_multi_station("https://example.com/list?station=1", options=options(), crawler=crawler)
    assert crawler.calls == []


def test_single_station_url_is_crawled_once():
    crawler = StationCrawler({None: [make_listing(7)]})

    batch = crawl_multi_station(
        "https://rent.591.com.tw/list?region=1", options=options(), crawler=crawler
    )

    assert crawler.calls == [None]
    assert batch.listings[0].stations == ()
    assert batch.state is BatchState.SUCCEEDED


def test_requests_are_paced_through_injected_sleep():
    crawler = StationCrawler({"100": [], "200": [], "300": []})
    sleeps = []
    ticks = iter([0.0, 0.0, 0.1, 0.5, 0.6, 1.0])

    crawl_multi_station(
        URL,
        options=options(max_concurrent=3, delay_between_requests_ms=500),
        crawler=crawler,
        sleep=sleeps.append,
        clock=lambda: next(ticks),
    )

    assert sleeps == pytest.approx([0.5, 0.1])


def test_invalid_options_are_rejected():
    with pytest.raises(ConfigError):
        crawl_multi_station(URL, options=options(max_concurrent=0), crawler=StationCrawler({}))


def test_options_from_config_use_config_values():
    config = CrawlerConfig(max_concurrent=5, delay_between_requests_ms=250)

    opts = MultiStationOptions.from_config(config, enable_merging=False)

    assert opts.max_concurrent == 5
    assert opts.delay_between_requests_ms == 250
    assert opts.enable_merging is False


def test_end_to_end_with_page_crawler():
    page = """
    <div class="item"><div class="item-info-title"><a href="/555">共同房源</a></div>
    <div class="item-info-txt"><i class="house-metro"></i><span>距站</span><strong>5分鐘</strong></div></div>
    """

    class Fetcher:
        def fetch(self, url, headers=None, timeout=None):
            return FetchResponse(url=url, status_code=200, text=page)

    batch = crawl_multi_station(
        "https://rent.591.com.tw/list?region=1&station=1,2",
        options=options(),
        crawler=PageCrawler(Fetcher()),
    )

    assert len(batch.listings) == 1
    assert batch.listings[0].stations == ("1", "2")
    assert batch.listings[0].metro_value == "5分鐘"


def render_page(*numbers):
    return "".join(
        f'<div class="item"><div class="item-info-title"><a href="/{n}">房源 {n}</a></div></div>'
        for n in numbers
    )


class StationSession:
    """Serves a result page per station, or a fixed error status."""

    def __init__(self, pages):
        self.pages = pages
        self.calls = []
        self._lock = threading.Lock()

    def get(self, url, headers=None, timeout=None):
        station = parse_qs(urlsplit(url).query)["station"][0]
        with self._lock:
            self.calls.append(station)
        page = self.pages[station]
        status, text = (page, "") if isinstance(page, int) else (200, page)
        return SimpleNamespace(
            status_code=status,
            text=text,
            encoding="utf-8",
            apparent_encoding="utf-8",
            url=url,
            headers={},
        )


def test_failing_station_is_retried_only_by_fetch_client():
    session = StationSession({"100": render_page(1, 2), "200": 503, "300": render_page(2, 3)})
    fetcher = FetchClient(session=session, policy=RetryPolicy(max_retries=2), sleep=lambda seconds: None)

    batch = crawl_multi_station(URL, options=options(), crawler=PageCrawler(fetcher))

    assert session.calls.count("200") == 3
    assert session.calls.count("100") == 1
    assert session.calls.count("300") == 1
    assert [listing.primary_key for listing in batch.listings] == ["1", "2", "3"]
    assert [failure.station_id for failure in batch.failures] == ["200"]
    assert batch.failures[0].error.attempts == 3
    assert batch.failures[0].error.status_code == 503
    assert batch.listings[1].stations == ("100", "300")
    assert batch.state is BatchState.PARTIALLY_FAILED
