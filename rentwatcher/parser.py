"""HTML parsing for 591 search-result pages."""

from __future__ import annotations

import logging
import re
from typing import List, Protocol
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.element import Tag

from .models import Listing

logger = logging.getLogger(__name__)

RENT_BASE = "https://rent.591.com.tw"
UNKNOWN_HOUSE_TYPE = "房屋類型未明"
UNKNOWN_ROOMS = "房型未明"

_SIZE_PATTERN = re.compile(r"[\d.]+\s*坪")
_FLOOR_PATTERN = re.compile(r"(\d+|B\d+)\s*F", re.IGNORECASE)


class Parser(Protocol):
    """Turns a page body into listings."""

    def __call__(self, html_text: str) -> List[Listing]:
        ...


def parse_listings(html_text: str) -> List[Listing]:
    """Parse every ``.item`` block of a result page into a Listing.

    Items without a title are skipped; a page with no items yields an empty
    list.
    """
    soup = BeautifulSoup(html_text, "html.parser")
    listings: List[Listing] = []
    for element in soup.select(".item"):
        listing = _parse_item(element)
        if listing is not None:
            listings.append(listing)
    logger.debug("Parsed %d listings from page", len(listings))
    return listings


def _parse_item(element: Tag) -> Listing | None:
    title_link = element.select_one(".item-info-title a")
    title = _text(title_link)
    if not title:
        return None

    house_type, rooms, size, floor = _house_info(element)
    metro = element.select_one(".item-info-txt:has(i.house-metro)")
    metro_value = _text(metro.select_one("strong")) if metro else ""
    metro_title = _text(metro.select_one("span")) if metro else ""
    place = element.select_one(".item-info-txt:has(i.house-place)")

    return Listing(
        title=title,
        link=_normalize_link(title_link.get("href") if title_link else None),
        price=_text(element.select_one(".item-info-price strong")),
        location=" ".join(place.stripped_strings) if place else "",
        house_type=house_type,
        rooms=rooms,
        size=size,
        floor=floor,
        tags=tuple(_text(tag) for tag in element.select(".item-info-tag .tag") if _text(tag)),
        img_urls=tuple(
            img["data-src"]
            for img in element.select(".item-img .common-img")
            if img.get("data-src")
        ),
        metro_title=metro_title,
        metro_value=metro_value,
    )


def _house_info(element: Tag) -> tuple[str, str, str | None, str | None]:
    section = element.select_one(".item-info-txt:has(i.house-home)")
    if section is None:
        return UNKNOWN_HOUSE_TYPE, UNKNOWN_ROOMS, None, None

    spans = section.find_all("span")
    house_type = _text(spans[0]) if spans else ""
    line_values = [_text(span) for span in section.select("span.line")]
    rooms = line_values[0] if line_values else ""

    size = None
    floor = None
    for value in line_values[1:]:
        if size is None and _SIZE_PATTERN.search(value):
            size = value
        elif floor is None and _FLOOR_PATTERN.search(value):
            floor = value

    if not rooms or "?" in rooms:
        logger.debug("Room layout missing for item %r", house_type)
        rooms = UNKNOWN_ROOMS
    return house_type or UNKNOWN_HOUSE_TYPE, rooms, size, floor


def _normalize_link(href: str | None) -> str | None:
    if not href:
        return None
    href = href.strip()
    if href.startswith("//"):
        return "https:" + href
    if href.startswith("http"):
        return href
    return urljoin(RENT_BASE, href)


def _text(node: Tag | None) -> str:
    if node is None:
        return ""
    return node.get_text(strip=True)


__all__ = ["Parser", "parse_listings", "UNKNOWN_HOUSE_TYPE", "UNKNOWN_ROOMS"]
