"""Sink adapters: forward each new item downstream.

Every sink implements ``emit(item) -> SinkResult``.  A sink reports
failure through the result instead of raising, and never touches the
streamer's history - the streamer marks items seen regardless of the
outcome.

Available sinks:

    QueueSink    bounded in-process channel (``queue.Queue``)
    WebhookSink  JSON POST via httpx, optional HMAC-SHA256 signature
    JsonlSink    one JSON object per line, appended to a file
    LogSink      formatted alert logged at INFO
    FanoutSink   emit to several sinks in turn
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import queue
import time
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

import httpx

from .common_types import Item

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SinkResult:
    """Outcome of one ``emit`` call."""

    ok: bool
    reason: str = ""

    @classmethod
    def success(cls) -> SinkResult:
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: str) -> SinkResult:
        return cls(ok=False, reason=reason)


class Sink(Protocol):
    def name(self) -> str: ...

    def emit(self, item: Item) -> SinkResult: ...


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def format_alert(item: Item) -> str:
    """Plain-text alert body shared by all human-facing sinks."""
    lines = ["Reddit Alert!"]
    if item.title:
        lines.append(item.title[:300])
    if item.permalink:
        lines.append(item.permalink)
    subreddit = item.payload.get("subreddit_name_prefixed") or item.payload.get("subreddit")
    author = item.payload.get("author")
    meta = [f"id={item.item_id}"]
    if subreddit:
        meta.append(str(subreddit))
    if author:
        meta.append(f"u/{author}")
    lines.append(" | ".join(meta))
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class QueueSink:
    """Bounded channel toward an in-process consumer.

    Never blocks the streamer: a full queue drops the item and reports
    failure.  Thread-safe, so a consumer thread may call ``drain()``.
    """

    def __init__(self, maxsize: int = 1000) -> None:
        self._queue: queue.Queue[Item] = queue.Queue(maxsize=maxsize)

    def name(self) -> str:
        return "queue"

    def emit(self, item: Item) -> SinkResult:
        try:
            self._queue.put_nowait(item)
        except queue.Full:
            return SinkResult.failure(f"queue full (maxsize={self._queue.maxsize})")
        return SinkResult.success()

    def get(self, timeout: float | None = None) -> Item:
        """Block until the next item is available (raises ``queue.Empty``)."""
        return self._queue.get(timeout=timeout)

    def drain(self) -> list[Item]:
        """Return all pending items in emission order."""
        items: list[Item] = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return items

    def qsize(self) -> int:
        return self._queue.qsize()


def _sign_payload(payload: bytes, secret: str) -> str:
    """HMAC-SHA256 signature for webhook payload."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def _mask_url(url: str) -> str:
    """Mask query params for safe logging."""
    return url.split("?")[0] + ("?***" if "?" in url else "")


class WebhookSink:
    """POST each item as JSON to a webhook receiver.

    The body carries the formatted alert text under ``content`` (which
    Discord-style webhooks render directly) plus the structured item.
    When *secret* is set an ``X-Signature-256`` header is added.
    """

    def __init__(
        self,
        url: str,
        secret: str = "",
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self.secret = secret
        self.client = client if client is not None else httpx.Client(timeout=timeout)

    def name(self) -> str:
        return "webhook"

    def _build_payload(self, item: Item) -> dict[str, Any]:
        return {
            "alert_method": "webhook",
            "content": format_alert(item),
            "item_id": item.item_id,
            "title": item.title[:300],
            "permalink": item.permalink,
            "created_ts": item.created_ts,
            "fired_at": time.time(),
        }

    def emit(self, item: Item) -> SinkResult:
        body = json.dumps(self._build_payload(item), ensure_ascii=False).encode()
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers["X-Signature-256"] = f"sha256={_sign_payload(body, self.secret)}"
        try:
            r = self.client.post(self.url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            return SinkResult.failure(f"{type(exc).__name__} posting to {_mask_url(self.url)}")
        if not 200 <= r.status_code < 300:
            return SinkResult.failure(f"HTTP {r.status_code} from {_mask_url(self.url)}")
        logger.debug("Webhook delivered %s (HTTP %d)", item.item_id, r.status_code)
        return SinkResult.success()

    def close(self) -> None:
        self.client.close()


class JsonlSink:
    """Append one item per line to *path* (parent dirs created on init)."""

    def __init__(self, path: str) -> None:
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    def name(self) -> str:
        return "jsonl"

    def emit(self, item: Item) -> SinkResult:
        line = json.dumps(item.to_dict(), ensure_ascii=False, default=str)
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as exc:
            return SinkResult.failure(f"write to {self.path} failed: {exc.strerror or exc}")
        return SinkResult.success()


class LogSink:
    """Log every alert; the fallback when no other sink is configured."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def name(self) -> str:
        return "log"

    def emit(self, item: Item) -> SinkResult:
        self._log.info("%s", format_alert(item))
        return SinkResult.success()


class FanoutSink:
    """Emit to every child sink; succeeds only if all of them do."""

    def __init__(self, sinks: Sequence[Sink]) -> None:
        self.sinks = tuple(sinks)

    def name(self) -> str:
        return "fanout(" + ",".join(s.name() for s in self.sinks) + ")"

    def emit(self, item: Item) -> SinkResult:
        failures: list[str] = []
        for sink in self.sinks:
            try:
                result = sink.emit(item)
            except Exception as exc:
                result = SinkResult.failure(f"{type(exc).__name__}: {exc}")
            if not result.ok:
                failures.append(f"{sink.name()}: {result.reason}")
        if failures:
            return SinkResult.failure("; ".join(failures))
        return SinkResult.success()

    def close(self) -> None:
        for sink in self.sinks:
            close = getattr(sink, "close", None)
            if close is not None:
                close()
