"""Tests for redditalerts.run - CLI wiring, restart policy, exit codes."""

from __future__ import annotations

import dataclasses
import os
import threading
from unittest.mock import MagicMock, patch

import pytest

from redditalerts.common_types import Item
from redditalerts.config import Config
from redditalerts.errors import SourceError
from redditalerts.run import (
    build_arg_parser,
    build_sink,
    build_streamer,
    config_from_args,
    main,
    run_with_restarts,
)
from redditalerts.sinks import FanoutSink, JsonlSink, LogSink, QueueSink, WebhookSink
from redditalerts.streamer import SubmissionStreamer

_CREDS = {"REDDIT_CLIENT_ID": "cid", "REDDIT_CLIENT_SECRET": "csecret"}


def _cfg(**overrides) -> Config:
    with patch.dict(os.environ, _CREDS, clear=True):
        cfg = Config()
    return dataclasses.replace(cfg, **overrides)


class _DownSource:
    def __init__(self) -> None:
        self.closed = False

    def poll(self, limit: int) -> list[Item]:
        raise SourceError("503 from reddit", status=503)

    def close(self) -> None:
        self.closed = True


class _ListSource:
    def __init__(self, batches: list[list[Item]]) -> None:
        self.batches = batches

    def poll(self, limit: int) -> list[Item]:
        if len(self.batches) > 1:
            return self.batches.pop(0)
        return self.batches[0]


# ---------------------------------------------------------------------------
# Argument parsing / config overlay
# ---------------------------------------------------------------------------


class TestArgs:
    def test_flags_override_env(self):
        args = build_arg_parser().parse_args(
            ["--subreddit", "python", "--history-size", "50", "--poll-limit", "25", "--poll-interval", "0.5"]
        )
        cfg = config_from_args(args, base=_cfg())
        assert cfg.subreddit == "python"
        assert cfg.history_capacity == 50
        assert cfg.poll_limit == 25
        assert cfg.poll_interval_s == 0.5
        assert cfg.client_id == "cid"

    def test_no_flags_keeps_base(self):
        base = _cfg()
        args = build_arg_parser().parse_args([])
        assert config_from_args(args, base=base) is base


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


class TestBuild:
    def test_default_sink_is_log(self):
        assert isinstance(build_sink(_cfg()), LogSink)

    def test_single_webhook(self):
        sink = build_sink(_cfg(webhook_url="https://hooks.example.com/x"))
        assert isinstance(sink, WebhookSink)
        sink.close()

    def test_fanout_when_several(self, tmp_path):
        sink = build_sink(_cfg(webhook_url="https://hooks.example.com/x", jsonl_path=str(tmp_path / "a.jsonl")))
        assert isinstance(sink, FanoutSink)
        assert isinstance(sink.sinks[1], JsonlSink)
        sink.close()

    def test_build_streamer_uses_config(self):
        s = build_streamer(_cfg(history_capacity=40, poll_limit=20, poll_interval_s=3.0))
        try:
            assert s.history_capacity == 40
            assert s.poll_limit == 20
            assert s.poll_interval_s == 3.0
        finally:
            s.close()


# ---------------------------------------------------------------------------
# Restart policy
# ---------------------------------------------------------------------------


class TestRunWithRestarts:
    def test_no_restarts_reraises(self):
        src = _DownSource()
        with pytest.raises(SourceError):
            run_with_restarts(lambda: SubmissionStreamer(src, history_capacity=5), QueueSink(), _cfg())
        assert src.closed is True

    def test_cold_restart_reprimes(self):
        # first engine fails after priming; second one primes again and
        # only emits what is new relative to its own first poll
        b = Item("b", 2.0)
        a = Item("a", 1.0)
        c = Item("c", 3.0)

        class _FailsOnSecondPoll:
            def __init__(self) -> None:
                self.calls = 0

            def poll(self, limit: int) -> list[Item]:
                self.calls += 1
                if self.calls == 2:
                    raise SourceError("blip")
                return [a]

        engines = iter([
            SubmissionStreamer(_FailsOnSecondPoll(), history_capacity=5),
            SubmissionStreamer(_ListSource([[b, a], [c, b, a]]), history_capacity=5),
        ])
        sink = QueueSink()
        stop = threading.Event()
        with patch.object(threading.Event, "wait", return_value=False) as wait:
            run_with_restarts(lambda: next(engines), sink, _cfg(max_restarts=1), stop_event=stop, max_cycles=1)
        assert [it.item_id for it in sink.drain()] == ["c"]
        assert wait.call_args_list[0].kwargs["timeout"] == 2.0

    def test_backoff_is_exponential_and_capped(self):
        cfg = _cfg(max_restarts=4, restart_backoff_s=1.0, restart_backoff_max_s=5.0)
        delays: list[float] = []

        def fake_wait(self, timeout=None):
            delays.append(timeout)
            return False

        with patch.object(threading.Event, "wait", fake_wait):
            with pytest.raises(SourceError):
                run_with_restarts(lambda: SubmissionStreamer(_DownSource(), history_capacity=5), QueueSink(), cfg)
        assert delays == [1.0, 2.0, 4.0, 5.0]

    def test_healthy_cycle_resets_restart_count(self):
        # each engine primes, completes one cycle, then fails; with
        # max_restarts=1 only consecutive failures would exhaust the budget
        class _FailsOnThirdPoll:
            def __init__(self) -> None:
                self.calls = 0

            def poll(self, limit: int) -> list[Item]:
                self.calls += 1
                if self.calls == 3:
                    raise SourceError("blip")
                return [Item("a", 1.0)]

        stop = threading.Event()
        made: list[SubmissionStreamer] = []

        def make() -> SubmissionStreamer:
            if len(made) == 3:
                stop.set()
            made.append(SubmissionStreamer(_FailsOnThirdPoll(), history_capacity=5))
            return made[-1]

        with patch.object(threading.Event, "wait", return_value=False):
            run_with_restarts(make, QueueSink(), _cfg(max_restarts=1), stop_event=stop)
        assert len(made) == 4

    def test_stop_during_backoff_returns(self):
        stop = threading.Event()

        def make():
            stop.set()
            return SubmissionStreamer(_DownSource(), history_capacity=5)

        cfg = _cfg(max_restarts=3, restart_backoff_s=0.01)
        run_with_restarts(make, QueueSink(), cfg, stop_event=stop)


# ---------------------------------------------------------------------------
# main() exit codes
# ---------------------------------------------------------------------------


class TestMain:
    def test_config_error_exit_2(self, capsys):
        with patch.dict(os.environ, {}, clear=True):
            code = main(["--history-size", "0"])
        assert code == 2
        assert "history_capacity" in capsys.readouterr().err

    def test_source_error_exit_1(self, capsys):
        with patch.dict(os.environ, _CREDS, clear=True):
            with patch("redditalerts.run.build_streamer") as build:
                build.return_value = SubmissionStreamer(_DownSource(), history_capacity=5)
                code = main(["--once"])
        assert code == 1
        assert "source failure" in capsys.readouterr().err

    def test_once_runs_single_cycle(self):
        src = _ListSource([[Item("a", 1.0)], [Item("b", 2.0), Item("a", 1.0)]])
        streamer = SubmissionStreamer(src, history_capacity=5)
        sink = QueueSink()
        with patch.dict(os.environ, _CREDS, clear=True):
            with patch("redditalerts.run.build_streamer", return_value=streamer), \
                 patch("redditalerts.run.build_sink", return_value=sink):
                code = main(["--once", "--log-level", "debug"])
        assert code == 0
        assert [it.item_id for it in sink.drain()] == ["b"]
        assert streamer.poll_count == 2

    def test_keyboard_interrupt_exit_0(self):
        streamer = MagicMock()
        streamer.run.side_effect = KeyboardInterrupt
        with patch.dict(os.environ, _CREDS, clear=True):
            with patch("redditalerts.run.build_streamer", return_value=streamer):
                assert main([]) == 0
        streamer.close.assert_called_once()
