"""Normalisation: raw listing payloads → Item, raw batches → unique batches.

``normalize_reddit`` is intentionally **schema-tolerant**: it accepts a
listing child (``{"kind": "t3", "data": {...}}``) or a bare submission
dict, and tries several field names for identity and timestamp.

Reddit listing fields used:
    name (fullname, "t3_<id>"), id, created_utc, created, title, permalink, url
"""

from __future__ import annotations

import logging
from datetime import timezone
from typing import Any, Dict, Iterable, List

from dateutil import parser as dtparser

from .common_types import Item

logger = logging.getLogger(__name__)

# Shortest date string accepted by ``_to_epoch`` ("YYYYMMDD").  Shorter
# strings are parsed ambiguously by dateutil.
_MIN_DATE_LEN = 8


def _to_epoch(value: Any) -> float:
    """Coerce a numeric or date-string timestamp to epoch seconds.

    Returns ``0.0`` for missing or unparseable values.  Naive datetimes
    are assumed UTC.
    """
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value).strip()
    try:
        return float(s)
    except ValueError:
        pass
    if len(s) < _MIN_DATE_LEN:
        logger.warning("Date string too short (%d chars): %r - returning epoch 0.", len(s), s)
        return 0.0
    try:
        dt = dtparser.parse(s)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.timestamp()
    except (ValueError, OverflowError):
        logger.warning("Unparseable date %r - returning epoch 0.", s[:80])
        return 0.0


def _fullname(data: Dict[str, Any]) -> str:
    name = str(data.get("name") or "").strip()
    if name:
        return name
    raw_id = str(data.get("id") or "").strip()
    return f"t3_{raw_id}" if raw_id else ""


def normalize_reddit(raw: Dict[str, Any]) -> Item:
    """Normalise one subreddit listing child into an ``Item``.

    The returned item has an empty ``item_id`` when the record carries
    no identity; callers drop such items.
    """
    data = raw.get("data") if isinstance(raw.get("data"), dict) else raw
    created = data.get("created_utc")
    if created is None:
        created = data.get("created")
    return Item(
        item_id=_fullname(data),
        created_ts=_to_epoch(created),
        payload=dict(data),
    )


def normalize_batch(items: Iterable[Item]) -> List[Item]:
    """Collapse duplicate identities within one poll response.

    The first occurrence of each ``item_id`` wins and batch order is
    preserved, so a later stable sort can tie-break on it.
    """
    seen: set[str] = set()
    out: List[Item] = []
    for it in items:
        if it.item_id in seen:
            logger.debug("Duplicate item %s in poll batch collapsed.", it.item_id)
            continue
        seen.add(it.item_id)
        out.append(it)
    return out
