"""Synchronous Reddit ingestion adapter (the poll collaborator).

Polls one endpoint:
 1. /r/<subreddit>/new   (latest submissions, newest first)

Authentication is Reddit's userless "installed client" OAuth grant: the
client id/secret are exchanged for a short-lived bearer token, which is
renewed shortly before it expires and once more on an HTTP 401.

Uses httpx synchronously so the adapter can be driven from the
streamer's blocking cycle.  Every failure surfaces as ``SourceError``.
"""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from typing import Any, List

import httpx

from .common_types import Item
from .config import DEFAULT_USER_AGENT
from .errors import ConfigError, SourceError
from .normalize import normalize_reddit

logger = logging.getLogger(__name__)

TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
API_BASE = "https://oauth.reddit.com"
INSTALLED_CLIENT_GRANT = "https://oauth.reddit.com/grants/installed_client"

# Reddit caps listing pages at 100 children.
MAX_LISTING_LIMIT = 100

# Renew the token this many seconds before Reddit says it expires.
_TOKEN_RENEW_MARGIN_S = 60.0

_TOKEN_RE = re.compile(r"(access_token|client_secret|token)=[^&\s]+", re.IGNORECASE)


def _sanitize_exc(exc: Exception) -> str:
    """Strip tokens/secrets from exception text for safe logging."""
    return _TOKEN_RE.sub(r"\1=***", str(exc))


def _safe_json(r: httpx.Response, endpoint: str) -> Any:
    """Parse JSON response; raise SourceError on failure."""
    try:
        return r.json()
    except (json.JSONDecodeError, ValueError):
        raise SourceError(
            f"Reddit returned non-JSON (content-type={r.headers.get('content-type', '')!r}, "
            f"status={r.status_code})",
            endpoint=endpoint,
            status=r.status_code,
        ) from None


class RedditAdapter:
    """Synchronous adapter for a subreddit's ``/new`` listing."""

    _RETRYABLE_CODES = frozenset({429, 500, 502, 503, 504})
    _MAX_RETRIES = 3

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        subreddit: str,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not client_id or not client_secret:
            raise ConfigError("Reddit client id/secret missing")
        self.client_id = client_id
        self.client_secret = client_secret
        self.subreddit = subreddit.strip().removeprefix("r/").strip("/")
        self.client = client if client is not None else httpx.Client(timeout=timeout)
        self.client.headers["User-Agent"] = user_agent
        # Reddit wants a 20-30 char per-device id for installed-client grants.
        self._device_id = uuid.uuid4().hex[:30]
        self._token: str | None = None
        self._token_expires_at = 0.0

    @property
    def listing_url(self) -> str:
        return f"{API_BASE}/r/{self.subreddit}/new"

    # ── OAuth ───────────────────────────────────────────────────

    def _fetch_token(self) -> None:
        try:
            r = self.client.post(
                TOKEN_URL,
                auth=(self.client_id, self.client_secret),
                data={"grant_type": INSTALLED_CLIENT_GRANT, "device_id": self._device_id},
            )
        except httpx.HTTPError as exc:
            raise SourceError(
                f"Reddit token request failed: {type(exc).__name__}: {_sanitize_exc(exc)}",
                endpoint="access_token",
            ) from exc
        if r.status_code >= 400:
            raise SourceError(
                f"Reddit token request failed: HTTP {r.status_code}",
                endpoint="access_token",
                status=r.status_code,
            )
        data = _safe_json(r, "access_token")
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            error = data.get("error") if isinstance(data, dict) else None
            raise SourceError(
                f"Reddit token response carried no access_token (error={error!r})",
                endpoint="access_token",
                status=r.status_code,
            )
        try:
            expires_in = float(data.get("expires_in", 3600))
        except (TypeError, ValueError):
            expires_in = 3600.0
        self._token = str(token)
        self._token_expires_at = time.time() + expires_in
        logger.info("Reddit OAuth token acquired (expires in %.0fs).", expires_in)

    def _auth_headers(self) -> dict[str, str]:
        if self._token is None or time.time() >= self._token_expires_at - _TOKEN_RENEW_MARGIN_S:
            self._fetch_token()
        return {"Authorization": f"bearer {self._token}"}

    def invalidate_token(self) -> None:
        self._token = None
        self._token_expires_at = 0.0

    # ── Listing ─────────────────────────────────────────────────

    def _safe_get(self, url: str, params: dict[str, Any]) -> httpx.Response:
        """GET with retry+backoff for transient failures and one re-auth on 401."""
        reauthed = False
        attempt = 0
        while True:
            attempt += 1
            try:
                r = self.client.get(url, params=params, headers=self._auth_headers())
            except (httpx.ConnectError, httpx.TimeoutException) as exc:
                if attempt < self._MAX_RETRIES:
                    wait = 2 ** attempt
                    logger.warning(
                        "Reddit network error (%s) - retry %d/%d in %ds",
                        type(exc).__name__, attempt, self._MAX_RETRIES, wait,
                    )
                    time.sleep(wait)
                    continue
                raise SourceError(
                    f"Reddit unreachable after {self._MAX_RETRIES} attempts: {_sanitize_exc(exc)}",
                    endpoint=url,
                ) from exc
            except httpx.HTTPError as exc:
                raise SourceError(
                    f"Reddit request failed: {type(exc).__name__}: {_sanitize_exc(exc)}",
                    endpoint=url,
                ) from exc

            if r.status_code == 401 and not reauthed:
                logger.info("Reddit returned 401 - renewing OAuth token.")
                self.invalidate_token()
                reauthed = True
                attempt -= 1
                continue
            if r.status_code in self._RETRYABLE_CODES and attempt < self._MAX_RETRIES:
                wait = 2 ** attempt
                logger.warning(
                    "Reddit %d from %s - retry %d/%d in %ds",
                    r.status_code, url, attempt, self._MAX_RETRIES, wait,
                )
                time.sleep(wait)
                continue
            if r.status_code >= 400:
                raise SourceError(
                    f"HTTP {r.status_code} from {url}",
                    endpoint=url,
                    status=r.status_code,
                )
            return r

    def poll(self, limit: int) -> List[Item]:
        """GET /r/<subreddit>/new?limit=… - newest submission first."""
        limit = max(1, min(int(limit), MAX_LISTING_LIMIT))
        url = self.listing_url
        r = self._safe_get(url, {"limit": limit, "raw_json": 1})
        data = _safe_json(r, url)

        listing = data.get("data") if isinstance(data, dict) else None
        children = listing.get("children") if isinstance(listing, dict) else None
        if not isinstance(children, list):
            raise SourceError(
                f"Reddit listing missing data.children (got {type(data).__name__})",
                endpoint=url,
                status=r.status_code,
            )

        items: List[Item] = []
        for child in children:
            if not isinstance(child, dict):
                continue
            item = normalize_reddit(child)
            if not item.item_id:
                logger.warning("Reddit listing child without id skipped.")
                continue
            items.append(item)
        return items

    def close(self) -> None:
        self.client.close()
