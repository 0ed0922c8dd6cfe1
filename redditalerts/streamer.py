"""Submission streamer: turn a "latest N items" view into an ordered event stream.

The source only exposes its most recent *N* items, with no cursor.  The
streamer therefore polls repeatedly, diffs every batch against a
``BoundedHistory`` of already-processed ids, and emits the survivors
oldest first.

Cycle (single thread, fully blocking):

    poll → normalize → diff against history → sort by created_ts
         → emit each to the sink → mark all of them seen

Priming: the very first poll only seeds the history, so backlog that
existed before the process started is never emitted.

Guarantees and their limits:

- An id is emitted at most once while it stays in history.  Once
  ``history_capacity`` newer ids have been inserted it is evicted, and
  if the source still returns it afterwards it is emitted again.
  Downstream consumers should handle items idempotently.
- Items are marked seen even when the sink fails (no re-delivery
  storms from a broken sink).
- ``SourceError`` is never swallowed here: it propagates so the caller
  can choose a restart policy.  A cold restart re-primes from scratch.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Iterator, Protocol, Sequence

from .common_types import Item
from .errors import ConfigError, SinkError, SourceError
from .history import BoundedHistory
from .normalize import normalize_batch
from .sinks import Sink, SinkResult

logger = logging.getLogger(__name__)


class Poller(Protocol):
    """Returns up to *limit* items, newest first."""

    def poll(self, limit: int) -> Sequence[Item]: ...


class StreamState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    PRIMED = "primed"
    POLLING = "polling"
    EMITTING = "emitting"


@dataclass
class CycleReport:
    """Counters for one poll → emit cycle."""

    polled: int = 0
    new: int = 0
    emitted: int = 0
    failed: int = 0
    emitted_ids: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)


class SubmissionStreamer:
    """Poll-and-diff engine owning a bounded seen-history.

    Parameters
    ----------
    source : Poller
        Collaborator returning the latest items, newest first.
    history_capacity : int
        Number of ids remembered.  Must be >= 1.
    poll_limit : int, optional
        Items requested per poll.  Defaults to *history_capacity* and
        must not exceed it, so one batch always fits in the history.
    poll_interval_s : float
        Delay between cycles in ``run()`` / ``stream()``.
    """

    def __init__(
        self,
        source: Poller,
        history_capacity: int = 100,
        poll_limit: int | None = None,
        poll_interval_s: float = 0.0,
    ) -> None:
        self._history = BoundedHistory(history_capacity)
        if poll_limit is None:
            poll_limit = history_capacity
        if poll_limit < 1:
            raise ConfigError(f"poll_limit must be >= 1, got {poll_limit}")
        if poll_limit > history_capacity:
            raise ConfigError(
                f"poll_limit ({poll_limit}) must not exceed history_capacity ({history_capacity})"
            )
        if poll_interval_s < 0:
            raise ConfigError(f"poll_interval_s must be >= 0, got {poll_interval_s}")

        self._source = source
        self.poll_limit = poll_limit
        self.poll_interval_s = poll_interval_s
        self._state = StreamState.UNINITIALIZED

        # Observable status
        self.poll_count: int = 0
        self.emitted_count: int = 0
        self.sink_failure_count: int = 0
        self.last_poll_ts: float = 0.0

    # ── Introspection ───────────────────────────────────────

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def history_capacity(self) -> int:
        return self._history.capacity

    @property
    def history_size(self) -> int:
        return self._history.size()

    def has_seen(self, item_id: str) -> bool:
        return self._history.contains(item_id)

    # ── Internals ───────────────────────────────────────────

    def _poll(self) -> list[Item]:
        try:
            batch = self._source.poll(self.poll_limit)
        except SourceError:
            raise
        except Exception as exc:
            raise SourceError(f"poll failed: {type(exc).__name__}: {exc}") from exc
        self.poll_count += 1
        self.last_poll_ts = time.time()
        batch = list(batch)
        if len(batch) > self.poll_limit:
            logger.warning(
                "Poller returned %d items for limit %d; keeping the first %d.",
                len(batch), self.poll_limit, self.poll_limit,
            )
            batch = batch[: self.poll_limit]
        return normalize_batch(batch)

    def _collect_new(self) -> tuple[int, list[Item]]:
        """Poll once and return ``(batch_size, new items oldest-first)``."""
        self._state = StreamState.POLLING
        batch = self._poll()
        new_items = [it for it in batch if not self._history.contains(it.item_id)]
        # sorted() is stable: equal timestamps keep batch order.
        new_items = sorted(new_items, key=lambda it: it.created_ts)
        return len(batch), new_items

    def _mark_seen(self, items: Sequence[Item]) -> None:
        self._history.insert_all(it.item_id for it in items)

    def _emit(self, sink: Sink, item: Item) -> SinkResult:
        try:
            result = sink.emit(item)
        except SinkError as exc:
            result = SinkResult.failure(str(exc))
        except Exception as exc:
            result = SinkResult.failure(f"{type(exc).__name__}: {exc}")
        if not result.ok:
            logger.warning("Sink %s failed for %s: %s", sink.name(), item.item_id, result.reason)
        return result

    # ── Public API ──────────────────────────────────────────

    def prime(self) -> int:
        """Seed the history from one poll without emitting anything.

        Returns the number of ids seeded (0 if already primed).
        """
        if self._state is not StreamState.UNINITIALIZED:
            return 0
        batch = self._poll()
        # Oldest first, like every later cycle, so eviction order follows age.
        self._mark_seen(sorted(batch, key=lambda it: it.created_ts))
        self._state = StreamState.PRIMED
        logger.info("Primed history with %d items (capacity=%d).", len(batch), self.history_capacity)
        return len(batch)

    def run_cycle(self, sink: Sink) -> CycleReport:
        """Poll, emit every new item in chronological order, mark them seen."""
        if self._state is StreamState.UNINITIALIZED:
            self.prime()

        polled, new_items = self._collect_new()
        report = CycleReport(polled=polled, new=len(new_items))

        self._state = StreamState.EMITTING
        for item in new_items:
            if self._emit(sink, item).ok:
                report.emitted += 1
                report.emitted_ids.append(item.item_id)
            else:
                report.failed += 1
                report.failed_ids.append(item.item_id)
        self._mark_seen(new_items)
        self._state = StreamState.POLLING

        self.emitted_count += report.emitted
        self.sink_failure_count += report.failed
        if new_items:
            logger.info(
                "Found %d new submissions (%d emitted, %d sink failures).",
                report.new, report.emitted, report.failed,
            )
        else:
            logger.debug("No new submissions in batch of %d.", polled)
        return report

    def stream(self, stop_event: threading.Event | None = None) -> Iterator[Item]:
        """Yield new items forever, oldest first within each cycle.

        Each cycle's ids are marked seen before its items are yielded.
        Stops when *stop_event* is set (checked between cycles).
        """
        stop = stop_event or threading.Event()
        self.prime()
        first = True
        while not stop.is_set():
            if not first and stop.wait(timeout=self.poll_interval_s):
                break
            first = False
            _, new_items = self._collect_new()
            self._mark_seen(new_items)
            self._state = StreamState.EMITTING
            yield from new_items
            self._state = StreamState.POLLING

    def run(
        self,
        sink: Sink,
        stop_event: threading.Event | None = None,
        max_cycles: int | None = None,
    ) -> None:
        """Run cycles until *stop_event* is set or *max_cycles* is reached.

        The wait between cycles is interruptible by *stop_event*.
        ``SourceError`` propagates to the caller.
        """
        stop = stop_event or threading.Event()
        self.prime()
        logger.info(
            "Streamer running (limit=%d, capacity=%d, interval=%.1fs).",
            self.poll_limit, self.history_capacity, self.poll_interval_s,
        )
        cycles = 0
        while not stop.is_set():
            self.run_cycle(sink)
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            if stop.wait(timeout=self.poll_interval_s):
                break

    def close(self) -> None:
        """Release the poll collaborator's resources, if it holds any."""
        close = getattr(self._source, "close", None)
        if close is not None:
            close()
