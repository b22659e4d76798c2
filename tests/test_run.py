"""Tests for WorkflowRun status transitions, metadata and serialisation, and RoleContext."""

from __future__ import annotations

import pytest

from decision_swarm.contracts import RoleResult, RunMode, RunStatus
from decision_swarm.errors import InvalidTransition
from decision_swarm.graph.context import RoleContext
from decision_swarm.graph.run import WorkflowRun

from conftest import make_search_result


def _result(role_id: str, *, success: bool = True, **extra) -> RoleResult:
    result = RoleResult(
        role_id=role_id,
        content="内容" if success else "",
        model="m" if success else "",
        provider="p" if success else "",
        latency_ms=100 if success else 0,
        used_fallback=extra.pop("used_fallback", False),
        fallback_level=0 if success else -1,
        success=success,
        error=None if success else "all providers failed: x",
        timestamp="2026-10-15T00:00:00+00:00",
    )
    result.update(extra)
    return result


class TestTransitions:
    def test_forward_path(self):
        run = WorkflowRun(input="q")
        assert run.status == RunStatus.PENDING
        run.transition(RunStatus.RUNNING)
        run.transition(RunStatus.COMPLETED)
        assert run.is_finished
        assert run.finished_at is not None

    def test_cannot_skip_running(self):
        with pytest.raises(InvalidTransition):
            WorkflowRun(input="q").transition(RunStatus.COMPLETED)

    def test_cannot_move_backwards(self):
        run = WorkflowRun(input="q")
        run.transition(RunStatus.RUNNING)
        run.transition(RunStatus.FAILED)
        with pytest.raises(InvalidTransition):
            run.transition(RunStatus.RUNNING)
        with pytest.raises(InvalidTransition):
            run.transition(RunStatus.COMPLETED)

    def test_accepts_plain_strings(self):
        run = WorkflowRun(input="q")
        run.transition("running")
        assert run.status == RunStatus.RUNNING


class TestRecord:
    def test_metadata_aggregates(self):
        run = WorkflowRun(input="q")
        run.record("market_analyst", _result("market_analyst", used_fallback=True))
        run.record(
            "financial_analyst",
            _result(
                "financial_analyst",
                corrections=["[max_investment] 150,000元 → 130,000元"],
                regenerations=1,
            ),
        )
        run.record("risk_assessor", _result("risk_assessor", success=False))
        run.record("copilot", _result("copilot", blocked=True))

        meta = run.metadata
        assert meta["model_calls"] == 4
        assert meta["total_latency_ms"] == 300
        assert meta["fallback_count"] == 1
        assert meta["failed_roles"] == ["risk_assessor"]
        assert meta["corrections"] == ["[max_investment] 150,000元 → 130,000元"]
        assert meta["regenerations"] == 1
        assert meta["blocking_violations"] == ["copilot"]
        assert [k for k, _ in run.successful()] == ["market_analyst", "financial_analyst", "copilot"]


class TestSerialisation:
    def test_round_trip(self):
        run = WorkflowRun(input="我想做塑料回收", mode=RunMode.REVERSE)
        run.transition(RunStatus.RUNNING)
        run.record("market_analyst", _result("market_analyst"))

        data = run.to_dict()
        assert data["mode"] == "reverse"
        assert data["status"] == "running"

        restored = WorkflowRun.from_dict(data)
        assert restored.id == run.id
        assert restored.mode == RunMode.REVERSE
        assert restored.results["market_analyst"]["content"] == "内容"

    def test_from_dict_ignores_unknown_keys(self):
        restored = WorkflowRun.from_dict({"input": "q", "extra": 1})
        assert restored.input == "q"
        assert restored.status == RunStatus.PENDING


class TestRoleContext:
    def test_extend_bumps_version_and_keeps_original(self):
        base = RoleContext(request="需求")
        extended = base.extend(guidance="经验")

        assert base.version == 1
        assert base.guidance == ""
        assert extended.version == 2
        assert extended.guidance == "经验"

    def test_with_prior_appends(self):
        ctx = RoleContext(request="需求").with_prior("市场分析师", "A").with_prior("财务", "B")
        assert ctx.prior == (("市场分析师", "A"), ("财务", "B"))
        assert ctx.version == 3

    def test_render_sections_in_order(self):
        ctx = RoleContext(
            request="需求",
            profile="## 用户固定档案",
            topic="议题文本",
            snippets=(make_search_result("https://a.com/1", "标题", "摘要"),),
            prior=(("市场分析师", "前序内容"),),
            guidance="## 已学习的经验",
            constraint_block="## 硬约束（必须遵守）",
        )
        text = ctx.render(instruction="请给出结论")
        order = [
            "## 用户固定档案",
            "## 用户需求\n需求",
            "## 当前议题\n议题文本",
            "## 检索资料\n[1] 标题 (https://a.com/1)\n摘要",
            "## 前序分析\n\n### 市场分析师\n前序内容",
            "## 已学习的经验",
            "## 硬约束（必须遵守）",
            "请给出结论",
        ]
        positions = [text.index(part) for part in order]
        assert positions == sorted(positions)

    def test_topic_equal_to_request_not_repeated(self):
        text = RoleContext(request="需求", topic="需求").render()
        assert "## 当前议题" not in text
