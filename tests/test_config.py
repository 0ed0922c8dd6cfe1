"""Tests for redditalerts.config - env-at-instantiation and validation."""

from __future__ import annotations

import os
import unittest
from unittest.mock import patch

_CREDS = {"REDDIT_CLIENT_ID": "cid", "REDDIT_CLIENT_SECRET": "csecret"}


class TestConfigEnvVarsAtInstantiationTime(unittest.TestCase):
    """Env vars must be read when Config() is called, not at import."""

    def test_env_var_read_at_init_not_import(self):
        from redditalerts.config import Config

        with patch.dict(os.environ, {"REDDIT_SUBREDDIT": "python"}):
            cfg = Config()
        self.assertEqual(cfg.subreddit, "python")

    def test_defaults(self):
        from redditalerts.config import Config

        with patch.dict(os.environ, {}, clear=True):
            cfg = Config()
        self.assertEqual(cfg.subreddit, "all")
        self.assertEqual(cfg.history_capacity, 100)
        self.assertEqual(cfg.effective_poll_limit, 100)
        self.assertEqual(cfg.max_restarts, 0)
        self.assertEqual(cfg.active_sinks, ["log"])

    def test_bad_numeric_env_falls_back(self):
        from redditalerts.config import Config

        with patch.dict(os.environ, {"HISTORY_CAPACITY": "lots", "POLL_INTERVAL_S": "soon"}):
            cfg = Config()
        self.assertEqual(cfg.history_capacity, 100)
        self.assertEqual(cfg.poll_interval_s, 2.0)

    def test_secrets_not_in_repr(self):
        from redditalerts.config import Config

        with patch.dict(os.environ, {**_CREDS, "ALERT_WEBHOOK_URL": "https://x/hook?token=t"}):
            cfg = Config()
        self.assertNotIn("csecret", repr(cfg))
        self.assertNotIn("token=t", repr(cfg))


class TestConfigValidation(unittest.TestCase):

    def _cfg(self, **env):
        from redditalerts.config import Config

        with patch.dict(os.environ, {**_CREDS, **env}, clear=True):
            return Config()

    def test_valid(self):
        self._cfg().validate()

    def test_capacity_below_one(self):
        from redditalerts.errors import ConfigError

        with self.assertRaisesRegex(ConfigError, "history_capacity"):
            self._cfg(HISTORY_CAPACITY="0").validate()

    def test_poll_limit_above_capacity(self):
        from redditalerts.errors import ConfigError

        with self.assertRaisesRegex(ConfigError, "must not exceed"):
            self._cfg(HISTORY_CAPACITY="10", POLL_LIMIT="11").validate()

    def test_poll_limit_zero_means_capacity(self):
        cfg = self._cfg(HISTORY_CAPACITY="10", POLL_LIMIT="0")
        self.assertEqual(cfg.effective_poll_limit, 10)
        cfg.validate()

    def test_missing_credentials(self):
        from redditalerts.config import Config
        from redditalerts.errors import ConfigError

        with patch.dict(os.environ, {}, clear=True):
            cfg = Config()
        with self.assertRaisesRegex(ConfigError, "REDDIT_CLIENT_ID"):
            cfg.validate()

    def test_all_issues_reported_together(self):
        from redditalerts.errors import ConfigError

        with self.assertRaises(ConfigError) as cm:
            self._cfg(POLL_INTERVAL_S="-1", MAX_RESTARTS="-2", REDDIT_SUBREDDIT=" ").validate()
        msg = str(cm.exception)
        self.assertIn("poll_interval_s", msg)
        self.assertIn("max_restarts", msg)
        self.assertIn("subreddit", msg)

    def test_active_sinks(self):
        cfg = self._cfg(ALERT_WEBHOOK_URL="https://x", ALERT_JSONL_PATH="out.jsonl")
        self.assertEqual(cfg.active_sinks, ["webhook", "jsonl"])
