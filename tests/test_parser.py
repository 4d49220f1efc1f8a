import pytest

from rentwatcher.crawler import PageCrawler, crawl_single
from rentwatcher.errors import FetchError, InvalidUrlError, ParseError
from rentwatcher.fetcher import FetchResponse
from rentwatcher.parser import UNKNOWN_HOUSE_TYPE, UNKNOWN_ROOMS, parse_listings

SAMPLE_HTML = """
<html><body>
<div class="list">
  <div class="item">
    <div class="item-img">
      <img class="common-img" data-src="https://img1.591.com.tw/a.jpg">
      <img class="common-img" data-src="https://img1.591.com.tw/b.jpg">
    </div>
    <div class="item-info">
      <div class="item-info-title"><a href="https://rent.591.com.tw/17123456">信義安和站 精緻套房</a></div>
      <div class="item-info-txt"><i class="house-home"></i><span>獨立套房</span>
        <span class="line">1房1廳</span><span class="line">8.5坪</span><span class="line">3F/5F</span>
      </div>
      <div class="item-info-txt"><i class="house-place"></i><span>大安區</span><span>-</span><span>信義路四段</span></div>
      <div class="item-info-txt"><i class="house-metro"></i><span>距信義安和站</span><strong>350公尺</strong></div>
      <div class="item-info-tag"><span class="tag">近捷運</span><span class="tag">可養寵物</span></div>
      <div class="item-info-price"><strong>18,000</strong>元/月</div>
    </div>
  </div>
  <div class="item">
    <div class="item-info">
      <div class="item-info-title"><a href="/17999999">頂樓雅房</a></div>
      <div class="item-info-price"><strong>8,500</strong>元/月</div>
    </div>
  </div>
  <div class="item">
    <div class="item-info"><div class="item-info-price"><strong>1,000</strong></div></div>
  </div>
</div>
</body></html>
"""

URL = "https://rent.591.com.tw/list?region=1&station=4232"


def test_parse_listings_extracts_fields():
    listings = parse_listings(SAMPLE_HTML)

    assert len(listings) == 2
    first = listings[0]
    assert first.title == "信義安和站 精緻套房"
    assert first.link == "https://rent.591.com.tw/17123456"
    assert first.price == "18,000"
    assert first.house_type == "獨立套房"
    assert first.rooms == "1房1廳"
    assert first.size == "8.5坪"
    assert first.floor == "3F/5F"
    assert first.location == "大安區 - 信義路四段"
    assert first.tags == ("近捷運", "可養寵物")
    assert first.img_urls == ("https://img1.591.com.tw/a.jpg", "https://img1.591.com.tw/b.jpg")
    assert first.metro_title == "距信義安和站"
    assert first.metro_value == "350公尺"


def test_parse_listings_fills_fallbacks_for_sparse_items():
    second = parse_listings(SAMPLE_HTML)[1]

    assert second.link == "https://rent.591.com.tw/17999999"
    assert second.house_type == UNKNOWN_HOUSE_TYPE
    assert second.rooms == UNKNOWN_ROOMS
    assert second.metro_value == ""
    assert second.tags == ()


def test_parse_listings_returns_empty_for_page_without_items():
    assert parse_listings("<html><body><p>沒有符合的物件</p></body></html>") == []


class StubFetcher:
    def __init__(self, text=SAMPLE_HTML, error=None):
        self.text = text
        self.error = error
        self.calls = []

    def fetch(self, url, headers=None, timeout=None):
        self.calls.append((url, headers))
        if self.error:
            raise self.error
        return FetchResponse(url=url, status_code=200, text=self.text)


def test_page_crawler_fetches_with_headers_and_parses():
    fetcher = StubFetcher()
    crawler = PageCrawler(fetcher, headers={"User-Agent": "test-agent"})

    listings = crawler.crawl(URL)

    assert [listing.title for listing in listings] == ["信義安和站 精緻套房", "頂樓雅房"]
    assert fetcher.calls == [(URL, {"User-Agent": "test-agent"})]


def test_page_crawler_rejects_invalid_url_before_fetching():
    fetcher = StubFetcher()

    with pytest.raises(InvalidUrlError):
        PageCrawler(fetcher).crawl("https://example.com/list")
    assert fetcher.calls == []


def test_page_crawler_propagates_fetch_errors():
    fetcher = StubFetcher(error=FetchError(URL, attempts=4, status_code=503))

    with pytest.raises(FetchError):
        crawl_single(URL, crawler=PageCrawler(fetcher))


def test_page_crawler_wraps_parser_failures():
    def broken_parser(text):
        raise AttributeError("markup changed")

    with pytest.raises(ParseError) as excinfo:
        PageCrawler(StubFetcher(), parser=broken_parser).crawl(URL)

    assert "markup changed" in str(excinfo.value)
    assert excinfo.value.url == URL


def test_page_crawler_returns_empty_list_for_empty_page(caplog):
    crawler = PageCrawler(StubFetcher(text="<html></html>"))

    with caplog.at_level("INFO"):
        assert crawler.crawl(URL) == []
    assert "No listings found" in caplog.text
