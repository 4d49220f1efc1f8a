"""Classify crawled listings against previously known identities."""

from __future__ import annotations

import logging
from typing import Iterable, List, Mapping, Set

from .models import ClassifiedListing, CrawlBatch, DedupResult, DedupStatus, Listing

logger = logging.getLogger(__name__)


def classify(
    batch: CrawlBatch | Iterable[Listing],
    known_identities: Mapping[str, str],
) -> DedupResult:
    """Mark every listing as new, changed or unchanged.

    ``known_identities`` maps primary keys to their last stored fingerprint.
    The first occurrence of a primary key wins; later duplicates are dropped
    so a key is never reported twice.
    """
    listings = batch.listings if isinstance(batch, CrawlBatch) else batch

    entries: List[ClassifiedListing] = []
    seen: Set[str] = set()
    for listing in listings:
        identity = listing.identity
        if identity.primary_key in seen:
            logger.debug("Skipping duplicate listing %s", identity.primary_key)
            continue
        seen.add(identity.primary_key)

        previous = known_identities.get(identity.primary_key)
        if previous is None:
            status = DedupStatus.NEW
        elif previous != identity.fingerprint:
            status = DedupStatus.CHANGED
        else:
            status = DedupStatus.UNCHANGED
        entries.append(
            ClassifiedListing(
                listing=listing,
                primary_key=identity.primary_key,
                fingerprint=identity.fingerprint,
                status=status,
                previous_fingerprint=previous,
            )
        )

    missing = [key for key in known_identities if key not in seen]
    return DedupResult(entries=entries, missing=missing)


__all__ = ["classify"]
