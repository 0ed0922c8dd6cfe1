"""Entry point: ``python -m redditalerts.run`` (or the ``redditalerts`` script).

Streams new submissions of one subreddit to the configured sinks.

Environment variables provide defaults for every flag:
    REDDIT_CLIENT_ID / REDDIT_CLIENT_SECRET   (required)
    REDDIT_SUBREDDIT=all
    HISTORY_CAPACITY=100   POLL_LIMIT=0 (= capacity)   POLL_INTERVAL_S=2
    ALERT_WEBHOOK_URL / ALERT_WEBHOOK_SECRET / ALERT_JSONL_PATH
    MAX_RESTARTS=0         RESTART_BACKOFF_S=2          RESTART_BACKOFF_MAX_S=60

Exit codes: 0 clean stop, 1 source failure, 2 invalid configuration.
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
import threading
from typing import Callable, Sequence

from .config import Config
from .errors import ConfigError, SourceError
from .ingest_reddit import RedditAdapter
from .log_redaction import apply_global_log_redaction
from .sinks import FanoutSink, JsonlSink, LogSink, Sink, WebhookSink
from .streamer import SubmissionStreamer

logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="redditalerts",
        description="Stream new subreddit submissions, deduplicated and in order",
    )
    p.add_argument("--client-id", default=None, help="Reddit client id (env REDDIT_CLIENT_ID)")
    p.add_argument("--client-secret", default=None, help="Reddit client secret (env REDDIT_CLIENT_SECRET)")
    p.add_argument("--subreddit", default=None, help="Subreddit to watch (env REDDIT_SUBREDDIT, default 'all')")
    p.add_argument("--history-size", type=int, default=None, help="Seen-history capacity (default 100)")
    p.add_argument("--poll-limit", type=int, default=None, help="Items per poll, <= history size")
    p.add_argument("--poll-interval", type=float, default=None, help="Seconds between polls")
    p.add_argument("--webhook-url", default=None, help="POST alerts to this URL")
    p.add_argument("--jsonl-path", default=None, help="Append alerts to this JSONL file")
    p.add_argument("--max-restarts", type=int, default=None, help="Cold restarts allowed after source failures")
    p.add_argument("--log-level", default="INFO", help="DEBUG/INFO/WARNING/ERROR")
    p.add_argument("--once", action="store_true", help="Prime, run a single cycle and exit")
    return p


_ARG_TO_FIELD = {
    "client_id": "client_id",
    "client_secret": "client_secret",
    "subreddit": "subreddit",
    "history_size": "history_capacity",
    "poll_limit": "poll_limit",
    "poll_interval": "poll_interval_s",
    "webhook_url": "webhook_url",
    "jsonl_path": "jsonl_path",
    "max_restarts": "max_restarts",
}


def config_from_args(args: argparse.Namespace, base: Config | None = None) -> Config:
    """Overlay explicitly given CLI flags on the env-derived config."""
    cfg = base if base is not None else Config()
    overrides = {
        fld: getattr(args, arg)
        for arg, fld in _ARG_TO_FIELD.items()
        if getattr(args, arg, None) is not None
    }
    return dataclasses.replace(cfg, **overrides) if overrides else cfg


def build_sink(cfg: Config) -> Sink:
    sinks: list[Sink] = []
    if cfg.webhook_url:
        sinks.append(WebhookSink(cfg.webhook_url, secret=cfg.webhook_secret, timeout=cfg.http_timeout_s))
    if cfg.jsonl_path:
        sinks.append(JsonlSink(cfg.jsonl_path))
    if not sinks:
        return LogSink()
    if len(sinks) == 1:
        return sinks[0]
    return FanoutSink(sinks)


def build_streamer(cfg: Config) -> SubmissionStreamer:
    adapter = RedditAdapter(
        cfg.client_id,
        cfg.client_secret,
        cfg.subreddit,
        user_agent=cfg.user_agent,
        timeout=cfg.http_timeout_s,
    )
    return SubmissionStreamer(
        adapter,
        history_capacity=cfg.history_capacity,
        poll_limit=cfg.effective_poll_limit,
        poll_interval_s=cfg.poll_interval_s,
    )


def _backoff_delay(cfg: Config, restart: int) -> float:
    return min(cfg.restart_backoff_s * (2 ** restart), cfg.restart_backoff_max_s)


def run_with_restarts(
    make_streamer: Callable[[], SubmissionStreamer],
    sink: Sink,
    cfg: Config,
    stop_event: threading.Event | None = None,
    max_cycles: int | None = None,
) -> None:
    """Run a streamer, cold-restarting it after ``SourceError``.

    Each restart builds a fresh streamer, which re-primes its history
    (items from the last poll window may be emitted twice).  After
    ``cfg.max_restarts`` consecutive restarts the error is re-raised; a
    streamer that completes a poll cycle resets the count.
    """
    stop = stop_event or threading.Event()
    restarts = 0
    while not stop.is_set():
        streamer = make_streamer()
        try:
            streamer.run(sink, stop_event=stop, max_cycles=max_cycles)
            return
        except SourceError as exc:
            # prime plus at least one cycle poll succeeded
            if streamer.poll_count >= 2:
                restarts = 0
            if restarts >= cfg.max_restarts:
                raise
            delay = _backoff_delay(cfg, restarts)
            restarts += 1
            logger.warning(
                "Source failure (%s) - cold restart %d/%d in %.1fs",
                exc, restarts, cfg.max_restarts, delay,
            )
            if stop.wait(timeout=delay):
                return
        finally:
            streamer.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    level = logging.getLevelName(str(args.log_level).upper())
    logging.basicConfig(
        level=level if isinstance(level, int) else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    apply_global_log_redaction()

    try:
        cfg = config_from_args(args)
        cfg.validate()
        sink = build_sink(cfg)
    except ConfigError as exc:
        logger.error("%s", exc)
        print(f"redditalerts: {exc}", file=sys.stderr)
        return 2

    logger.info(
        "Watching r/%s (history=%d, limit=%d, sinks=%s)",
        cfg.subreddit, cfg.history_capacity, cfg.effective_poll_limit, cfg.active_sinks,
    )
    try:
        run_with_restarts(
            lambda: build_streamer(cfg),
            sink,
            cfg,
            max_cycles=1 if args.once else None,
        )
    except ConfigError as exc:
        print(f"redditalerts: {exc}", file=sys.stderr)
        return 2
    except SourceError as exc:
        logger.error("Source failure, giving up: %s", exc)
        print(f"redditalerts: source failure: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("redditalerts stopped.")
    finally:
        close = getattr(sink, "close", None)
        if close is not None:
            close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
