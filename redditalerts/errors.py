"""Error taxonomy for redditalerts.

Three failure modes, each with a different recovery policy:

  - ``ConfigError``  – invalid settings; fatal at startup.
  - ``SourceError``  – the poll collaborator failed; fatal to the running
    engine instance (the process decides whether to cold-restart).
  - ``SinkError``    – a single emit failed; recovered locally, the item
    is still marked seen.
"""
from __future__ import annotations


class RedditAlertsError(Exception):
    """Base error for all redditalerts subsystems."""
    pass


class ConfigError(RedditAlertsError):
    """Invalid configuration value."""
    pass


class SourceError(RedditAlertsError):
    """Polling the upstream source failed (network, auth, rate limit)."""

    def __init__(self, message: str, *, endpoint: str = "", status: int | None = None):
        self.endpoint = endpoint
        self.status = status
        super().__init__(message)


class SinkError(RedditAlertsError):
    """Forwarding one item downstream failed."""

    def __init__(self, message: str, *, sink: str = ""):
        self.sink = sink
        super().__init__(message)
