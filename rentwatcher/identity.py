"""Stable identifiers and content fingerprints for listings."""

from __future__ import annotations

import hashlib
import json
import re
from typing import TYPE_CHECKING, Iterable, List, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

if TYPE_CHECKING:
    from .models import Listing

TRACKING_PARAMS = frozenset({"fbclid", "gclid", "yclid", "msclkid", "ref", "spm", "_ga"})
TRACKING_PREFIXES = ("utm_",)

_LISTING_NUMBER = re.compile(r"/(\d+)(?=/|$|\.)")
_ZERO_WIDTH = re.compile("[\u200b-\u200d\ufeff]")
_WHITESPACE = re.compile(r"\s+")


def canonicalize_link(link: str | None) -> str:
    """Normalize a listing link so equivalent URLs compare equal.

    Tracking query parameters and fragments are removed, the host is
    lower-cased, remaining parameters are sorted and a trailing slash on the
    path is dropped.
    """
    if not link:
        return ""
    parts = urlsplit(link.strip())
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key.lower() not in TRACKING_PARAMS
        and not key.lower().startswith(TRACKING_PREFIXES)
    ]
    path = parts.path.rstrip("/")
    return urlunsplit(
        (
            (parts.scheme or "https").lower(),
            parts.netloc.lower(),
            path,
            urlencode(sorted(query)),
            "",
        )
    )


def identity_of(listing: "Listing") -> str:
    """Return the primary key of a listing, derived from its link."""
    canonical = canonicalize_link(listing.link)
    if canonical:
        match = _LISTING_NUMBER.search(urlsplit(canonical).path)
        if match:
            return match.group(1)
        return canonical

    # Links are occasionally missing from promoted items.
    if listing.title and listing.metro_value:
        return _WHITESPACE.sub("-", f"{listing.title}-{listing.metro_value}".strip())
    if listing.title:
        return _WHITESPACE.sub("-", listing.title.strip())
    raise ValueError("Listing needs a link or a title to derive its identity")


def fingerprint_of(listing: "Listing") -> str:
    """Hash the mutable fields of a listing in a fixed order."""
    payload = json.dumps(_fingerprint_fields(listing), ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _fingerprint_fields(listing: "Listing") -> List[Tuple[str, object]]:
    return [
        ("price", normalize_value(listing.price)),
        ("title", normalize_value(listing.title)),
        ("rooms", normalize_value(listing.rooms)),
        ("house_type", normalize_value(listing.house_type)),
        ("features", _normalize_features(listing.tags)),
    ]


def normalize_value(value: object) -> str:
    if value is None:
        return ""
    text = _ZERO_WIDTH.sub("", str(value))
    return _WHITESPACE.sub(" ", text).strip()


def _normalize_features(tags: Iterable[str]) -> List[str]:
    return sorted({normalize_value(tag) for tag in tags if normalize_value(tag)})


__all__ = ["canonicalize_link", "fingerprint_of", "identity_of", "normalize_value"]
