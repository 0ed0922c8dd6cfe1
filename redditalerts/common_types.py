"""Shared value object flowing from the poll adapter to the sinks.

Every source normalises its raw payload into an ``Item`` before it
reaches the streaming engine.  Only ``item_id`` takes part in dedup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Item:
    """One external event with stable identity and a creation time."""

    item_id: str  # stable identifier, e.g. reddit fullname "t3_abc123"
    created_ts: float  # epoch seconds (0.0 when unknown)
    payload: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    # ── Convenience ─────────────────────────────────────────────

    @property
    def title(self) -> str:
        return str(self.payload.get("title") or "")

    @property
    def permalink(self) -> str:
        """Absolute permalink, or empty string when the payload has none."""
        link = str(self.payload.get("permalink") or "")
        if link.startswith("/"):
            return f"https://reddit.com{link}"
        return link

    @property
    def url(self) -> str:
        return str(self.payload.get("url") or "")

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "created_ts": self.created_ts,
            "title": self.title,
            "permalink": self.permalink,
            "payload": self.payload,
        }
