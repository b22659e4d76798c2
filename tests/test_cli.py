"""Tests for CLI argument parsing and the standalone session/feedback operations."""

from __future__ import annotations

import pytest

from decision_swarm.__main__ import (
    _delete_session,
    _learning_store,
    _list_sessions,
    _session_store,
    _show_session,
    _submit_feedback,
    parse_args,
)
from decision_swarm.contracts import RoleResult, RunMode, RunStatus
from decision_swarm.graph.run import WorkflowRun


def _saved_run(settings) -> WorkflowRun:
    run = WorkflowRun(input="我想做塑料回收项目", mode=RunMode.REVERSE)
    run.transition(RunStatus.RUNNING)
    for role_id in ("market_analyst", "financial_analyst"):
        run.record(
            role_id,
            RoleResult(
                role_id=role_id,
                content="内容",
                model="m",
                provider="p",
                latency_ms=10,
                used_fallback=False,
                fallback_level=0,
                success=True,
                error=None,
                timestamp="2026-10-15T00:00:00+00:00",
            ),
        )
    run.report = "# 塑料回收\n\n## 最终决策"
    run.transition(RunStatus.COMPLETED)
    _session_store(settings).save(run.to_dict())
    return run


class TestParseArgs:
    def test_request_and_flags(self):
        args = parse_args(["我想做塑料回收", "--mode", "reverse", "--budget", "100000", "--no-search"])
        assert args.request == "我想做塑料回收"
        assert args.mode == "reverse"
        assert args.budget == 100000.0
        assert args.no_search is True
        assert args.no_stream is False

    def test_standalone_ops_need_no_request(self):
        assert parse_args(["--list-sessions"]).list_sessions is True
        assert parse_args(["--show-session", "abc"]).show_session == "abc"
        assert parse_args(["--feedback-report"]).feedback_report is True

    def test_missing_request(self):
        with pytest.raises(SystemExit):
            parse_args([])

    def test_feedback_requires_rating(self):
        with pytest.raises(SystemExit):
            parse_args(["--feedback", "abc"])

    def test_rating_range(self):
        with pytest.raises(SystemExit):
            parse_args(["--feedback", "abc", "--rating", "6"])

    def test_feedback_with_helpful_roles(self):
        args = parse_args(
            ["--feedback", "abc", "--rating", "4", "--adopted", "--helpful", "market_analyst", "copilot"]
        )
        assert args.rating == 4
        assert args.adopted is True
        assert args.helpful == ["market_analyst", "copilot"]

    def test_unknown_mode_rejected(self):
        with pytest.raises(SystemExit):
            parse_args(["q", "--mode", "sideways"])


class TestSessionOps:
    def test_list_sessions(self, settings, capsys):
        run = _saved_run(settings)
        _list_sessions(settings)
        out = capsys.readouterr().out
        assert run.id in out
        assert "[completed]" in out
        assert "Q: 我想做塑料回收项目" in out

    def test_list_empty(self, settings, capsys):
        _list_sessions(settings)
        assert "No sessions found." in capsys.readouterr().err

    def test_show_session_prints_report(self, settings, capsysbinary):
        run = _saved_run(settings)
        _show_session(settings, run.id)
        assert "## 最终决策".encode("utf-8") in capsysbinary.readouterr().out

    def test_show_missing_session_exits(self, settings):
        with pytest.raises(SystemExit):
            _show_session(settings, "nope")

    def test_delete_session(self, settings):
        run = _saved_run(settings)
        _delete_session(settings, run.id)
        assert _session_store(settings).get(run.id) is None
        with pytest.raises(SystemExit):
            _delete_session(settings, run.id)


class TestFeedback:
    def test_feedback_updates_role_stats_and_rules(self, settings, capsys):
        run = _saved_run(settings)
        args = parse_args(
            [
                "--feedback",
                run.id,
                "--rating",
                "5",
                "--adopted",
                "--correction",
                "投资额应该控制在10万以内",
                "--helpful",
                "market_analyst",
            ]
        )
        _submit_feedback(settings, args)
        assert "2 rule(s) learned or reinforced" in capsys.readouterr().err

        report = _learning_store(settings).report()
        assert report["overall"]["total"] == 1
        assert report["by_role"]["market_analyst"]["helpful"] == 1
        assert report["by_role"]["financial_analyst"]["helpful"] == 0
        assert report["top_rules"][0]["text"] == "投资额应该控制在10万以内"

    def test_feedback_for_unknown_session(self, settings, capsys):
        args = parse_args(["--feedback", "missing", "--rating", "2"])
        _submit_feedback(settings, args)
        assert "not found; recording feedback anyway" in capsys.readouterr().err
        assert _learning_store(settings).report()["overall"]["correct"] == 0
