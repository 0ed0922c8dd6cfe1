"""Global configuration for the subreddit streamer.

All tunables can be overridden via environment variables; CLI flags in
``run.py`` override those in turn via ``dataclasses.replace``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .errors import ConfigError

DEFAULT_USER_AGENT = "bot:com.github.reddit-alerts:0.1.0 (by alerting-bot)"


def _env_float(key: str, default: float) -> float:
    """Read an env var as float, returning *default* on parse failure."""
    try:
        return float(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_int(key: str, default: int) -> int:
    """Read an env var as int, returning *default* on parse failure."""
    try:
        return int(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


@dataclass(frozen=True)
class Config:
    """Central configuration – one instance per process.

    Environment variables are read at **instantiation** time (not module
    import time) so callers can set them programmatically before
    creating a ``Config``.
    """

    # ── Reddit credentials (repr=False to prevent accidental logging) ──
    client_id: str = field(default_factory=lambda: os.getenv("REDDIT_CLIENT_ID", ""), repr=False)
    client_secret: str = field(default_factory=lambda: os.getenv("REDDIT_CLIENT_SECRET", ""), repr=False)
    user_agent: str = field(default_factory=lambda: os.getenv("REDDIT_USER_AGENT", DEFAULT_USER_AGENT))

    # ── Source scope ────────────────────────────────────────────
    subreddit: str = field(default_factory=lambda: os.getenv("REDDIT_SUBREDDIT", "all"))

    # ── History / batch sizing ──────────────────────────────────
    history_capacity: int = field(default_factory=lambda: _env_int("HISTORY_CAPACITY", 100))
    # 0 means "same as history_capacity".
    poll_limit: int = field(default_factory=lambda: _env_int("POLL_LIMIT", 0))

    # ── Polling cadence ─────────────────────────────────────────
    poll_interval_s: float = field(default_factory=lambda: _env_float("POLL_INTERVAL_S", 2.0))
    http_timeout_s: float = field(default_factory=lambda: _env_float("HTTP_TIMEOUT_S", 10.0))

    # ── Restart policy on SourceError ───────────────────────────
    max_restarts: int = field(default_factory=lambda: _env_int("MAX_RESTARTS", 0))
    restart_backoff_s: float = field(default_factory=lambda: _env_float("RESTART_BACKOFF_S", 2.0))
    restart_backoff_max_s: float = field(default_factory=lambda: _env_float("RESTART_BACKOFF_MAX_S", 60.0))

    # ── Sinks (all optional) ────────────────────────────────────
    webhook_url: str = field(default_factory=lambda: os.getenv("ALERT_WEBHOOK_URL", ""), repr=False)
    webhook_secret: str = field(default_factory=lambda: os.getenv("ALERT_WEBHOOK_SECRET", ""), repr=False)
    jsonl_path: str = field(default_factory=lambda: os.getenv("ALERT_JSONL_PATH", ""))

    # ── Derived helpers ─────────────────────────────────────────

    @property
    def effective_poll_limit(self) -> int:
        return self.poll_limit or self.history_capacity

    @property
    def active_sinks(self) -> list[str]:
        """Names of the sinks this configuration enables."""
        sinks: list[str] = []
        if self.webhook_url:
            sinks.append("webhook")
        if self.jsonl_path:
            sinks.append("jsonl")
        return sinks or ["log"]

    def validate(self) -> None:
        """Raise ``ConfigError`` describing every invalid setting."""
        issues: list[str] = []
        if self.history_capacity < 1:
            issues.append(f"history_capacity must be >= 1 (got {self.history_capacity})")
        if self.poll_limit < 0:
            issues.append(f"poll_limit must be >= 0 (got {self.poll_limit})")
        elif self.effective_poll_limit > self.history_capacity:
            issues.append(
                f"poll_limit ({self.effective_poll_limit}) must not exceed "
                f"history_capacity ({self.history_capacity})"
            )
        if self.poll_interval_s < 0:
            issues.append(f"poll_interval_s must be >= 0 (got {self.poll_interval_s})")
        if self.max_restarts < 0:
            issues.append(f"max_restarts must be >= 0 (got {self.max_restarts})")
        if not self.subreddit.strip():
            issues.append("subreddit must not be empty")
        if not self.client_id or not self.client_secret:
            issues.append("REDDIT_CLIENT_ID and REDDIT_CLIENT_SECRET are required")
        if issues:
            raise ConfigError("Invalid configuration: " + "; ".join(issues))
