"""Single-page crawl: validate, fetch and parse one search URL."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Mapping

from .config import CrawlerConfig
from .errors import ParseError
from .fetcher import FetchClient, Fetcher, default_headers
from .models import Listing, StationState
from .parser import parse_listings
from .search_url import SearchUrl

logger = logging.getLogger(__name__)


class PageCrawler:
    """Fetch a search page through a Fetcher and hand the body to a parser."""

    def __init__(
        self,
        fetcher: Fetcher,
        parser: Callable[[str], List[Listing]] = parse_listings,
        headers: Mapping[str, str] | None = None,
    ):
        self.fetcher = fetcher
        self.parser = parser
        self.headers: Dict[str, str] = dict(headers or default_headers())

    @classmethod
    def from_config(cls, config: CrawlerConfig) -> "PageCrawler":
        return cls(
            fetcher=FetchClient.from_config(config),
            headers=default_headers(config.user_agent),
        )

    def crawl(self, url: str | SearchUrl) -> List[Listing]:
        search_url = url if isinstance(url, SearchUrl) else SearchUrl.parse(url)

        logger.debug("[%s] %s", StationState.FETCHING.value, search_url.url)
        response = self.fetcher.fetch(search_url.url, headers=self.headers)

        logger.debug("[%s] %s (%d bytes)", StationState.PARSING.value, search_url.url, len(response.text))
        try:
            listings = self.parser(response.text)
        except Exception as exc:  # noqa: BLE001
            raise ParseError(search_url.url, f"{type(exc).__name__}: {exc}") from exc

        if not listings:
            logger.info("No listings found on %s", search_url.url)
        else:
            logger.debug("[%s] %s: %d listings", StationState.DONE.value, search_url.url, len(listings))
        return listings


def crawl_single(
    url: str,
    crawler: PageCrawler | None = None,
    config: CrawlerConfig | None = None,
) -> List[Listing]:
    """Crawl one search URL, raising InvalidUrlError, FetchError or ParseError."""
    crawler = crawler or PageCrawler.from_config(config or CrawlerConfig())
    return crawler.crawl(url)


__all__ = ["PageCrawler", "crawl_single"]
