"""Tests for the feedback learning store and its repositories."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from decision_swarm.contracts import FeedbackRecord, RuleKind
from decision_swarm.errors import PersistenceError
from decision_swarm.learning.repository import (
    InMemoryLearningRepository,
    JsonFileLearningRepository,
    KeyValueLearningRepository,
    empty_state,
)
from decision_swarm.learning.store import (
    LearningStore,
    extract_project_type,
    extract_tags,
)
from decision_swarm.storage.kv import InMemoryStore

NOW = datetime(2026, 10, 15, tzinfo=timezone.utc)

# --- Helpers ---


def _feedback(
    decision_id: str = "run-1",
    *,
    rating: int = 5,
    adopted: bool = True,
    correction: str = "",
    helpful: dict[str, bool] | None = None,
    comment: str = "",
    query: str = "",
) -> FeedbackRecord:
    return FeedbackRecord(
        decision_id=decision_id,
        rating=rating,
        adopted=adopted,
        correction=correction,
        role_helpful=helpful or {},
        comment=comment,
        query=query,
    )


def _store(**kwargs) -> LearningStore:
    store = LearningStore(InMemoryLearningRepository(), **kwargs)
    store.open()
    return store


class FailingRepository:
    def open(self):
        raise PersistenceError("disk on fire")

    def flush(self, state):
        raise PersistenceError("read-only filesystem")


# --- Role weights ---


class TestRoleWeights:
    def test_three_helpful_ratings_raise_weight(self):
        """Three rating>=4 feedbacks marking a role helpful: weight 1.2."""
        store = _store()
        for i in range(3):
            store.record_feedback(
                _feedback(f"run-{i}", rating=4, helpful={"financial_analyst": True}), now=NOW
            )

        assert store.role_accuracy("financial_analyst") == 1.0
        assert store.role_weight("financial_analyst") == 1.2

    def test_below_minimum_samples_is_neutral(self):
        store = _store()
        store.record_feedback(_feedback(helpful={"risk_assessor": False}), now=NOW)
        assert store.role_weight("risk_assessor") == 1.0

    def test_unhelpful_role_downweighted(self):
        store = _store()
        for i in range(4):
            store.record_feedback(
                _feedback(f"run-{i}", rating=2, helpful={"copilot": i == 0}), now=NOW
            )
        assert store.role_weight("copilot") == 0.7

    def test_weight_holds_until_opposite_threshold(self):
        store = _store()
        for i in range(3):
            store.record_feedback(_feedback(f"bad-{i}", helpful={"market_analyst": False}), now=NOW)
        assert store.role_weight("market_analyst") == 0.7

        # 3/6 helpful sits between the thresholds: the low weight holds
        for i in range(3):
            store.record_feedback(_feedback(f"ok-{i}", helpful={"market_analyst": True}), now=NOW)
        assert store.role_accuracy("market_analyst") == 0.5
        assert store.role_weight("market_analyst") == 0.7

        for i in range(10):
            store.record_feedback(_feedback(f"good-{i}", helpful={"market_analyst": True}), now=NOW)
        assert store.role_weight("market_analyst") == 1.2

    def test_unknown_role(self):
        store = _store()
        assert store.role_accuracy("nobody") is None
        assert store.role_weight("nobody") == 1.0

    def test_invalid_rating(self):
        with pytest.raises(ValueError):
            _store().record_feedback(_feedback(rating=6), now=NOW)


# --- Rules ---


class TestRules:
    def test_correction_with_template_targets_roles(self):
        store = _store()
        rules = store.record_feedback(
            _feedback(correction="投资额应该控制在10万以内"), now=NOW
        )
        assert rules[0]["kind"] == RuleKind.CONSTRAINT
        assert rules[0]["roles"] == ["financial_analyst"]
        assert rules[0]["confidence"] == 80.0

    def test_free_form_correction_applies_to_all(self):
        store = _store()
        rules = store.record_feedback(_feedback(correction="请多考虑本地人工价格"), now=NOW)
        assert rules[0]["kind"] == RuleKind.CORRECTION
        assert rules[0]["roles"] == ["all"]

    def test_duplicate_correction_reinforces(self):
        store = _store()
        store.record_feedback(_feedback("a", correction="回本周期不能超过一年"), now=NOW)
        store.record_feedback(_feedback("b", correction="回本周期不能超过一年"), now=NOW)

        rules = store.state["rules"]
        assert len(rules) == 1
        assert rules[0]["confidence"] == 90.0
        assert rules[0]["usage_count"] == 2

    def test_preference_from_comment(self):
        store = _store()
        rules = store.record_feedback(
            _feedback(comment="我更看重现金流稳定", query="奶茶店"), now=NOW
        )
        texts = [r["text"] for r in rules]
        assert "更看重现金流稳定" in texts
        assert any(t.startswith("用户偏好项目类型：餐饮") for t in texts)

    def test_preference_targets_focus_role(self):
        store = _store()
        rules = store.record_feedback(_feedback(comment="我更看重利润率"), now=NOW)
        assert rules[0]["text"] == "更看重利润率"
        assert rules[0]["roles"] == ["financial_analyst"]

    def test_general_preference_goes_to_decision_advisor(self):
        store = _store()
        rules = store.record_feedback(_feedback(comment="喜欢轻资产项目"), now=NOW)
        assert rules[0]["roles"] == ["decision_advisor"]
        assert store.optimize_prompt("market_analyst", "BASE", now=NOW) == "BASE"

    def test_rejected_project_type(self):
        store = _store()
        rules = store.record_feedback(
            _feedback(rating=2, adopted=False, query="塑料回收加工"), now=NOW
        )
        assert [r["text"] for r in rules] == ["用户不感兴趣的项目类型：塑料回收"]

    def test_effective_confidence_decays_by_month(self):
        store = _store(decay_per_month=5.0)
        store.record_feedback(_feedback(correction="多考虑物流成本"), now=NOW)
        rule = store.state["rules"][0]

        assert store.effective_confidence(rule, now=NOW + timedelta(days=29)) == 80.0
        assert store.effective_confidence(rule, now=NOW + timedelta(days=61)) == 70.0
        assert store.effective_confidence(rule, now=NOW + timedelta(days=3000)) == 0.0

    def test_flush_prunes_fully_decayed_rules(self):
        repo = InMemoryLearningRepository()
        store = LearningStore(repo)
        store.open()
        store.record_feedback(_feedback(correction="多考虑物流成本"), now=NOW)

        assert store.flush(now=NOW + timedelta(days=3000)) is True
        assert store.state["rules"] == []
        assert repo.open()["rules"] == []

    def test_max_rules_evicts_weakest(self):
        store = _store(max_rules=2)
        store.record_feedback(_feedback("a", correction="第一条修正：多看政策"), now=NOW)
        store.record_feedback(_feedback("b", correction="第二条修正：控制人工"), now=NOW)
        store.record_feedback(_feedback("b", correction="第二条修正：控制人工"), now=NOW)
        store.record_feedback(_feedback("c", correction="第三条修正：注意季节"), now=NOW)

        texts = {r["text"] for r in store.state["rules"]}
        assert len(texts) == 2
        assert "第二条修正：控制人工" in texts


# --- Prompt optimisation ---


class TestOptimizePrompt:
    def test_nothing_learned_returns_base(self):
        assert _store().optimize_prompt("market_analyst", "BASE", now=NOW) == "BASE"

    def test_rules_and_cases_appended(self):
        store = _store()
        store.record_feedback(
            _feedback(correction="投资额应该控制在10万以内", query="滁州塑料回收加工项目"),
            now=NOW,
        )
        prompt = store.optimize_prompt(
            "financial_analyst", "BASE", query="滁州塑料回收项目", now=NOW
        )

        assert prompt.startswith("BASE\n\n## 已学习的经验")
        assert "投资额应该控制在10万以内" in prompt
        assert "## 相似历史案例" in prompt
        assert "滁州塑料回收加工项目" in prompt

    def test_rules_for_other_roles_not_applied(self):
        store = _store()
        store.record_feedback(_feedback(correction="风险评估太高估了"), now=NOW)
        assert store.optimize_prompt("market_analyst", "BASE", now=NOW) == "BASE"

    def test_low_accuracy_role_gets_caution(self):
        store = _store()
        for i in range(3):
            store.record_feedback(
                _feedback(f"run-{i}", rating=2, helpful={"industry_analyst": False}), now=NOW
            )
        prompt = store.optimize_prompt("industry_analyst", "BASE", now=NOW)
        assert "准确率偏低" in prompt

    def test_decayed_rules_dropped_from_prompt(self):
        store = _store()
        store.record_feedback(_feedback(correction="多考虑物流成本"), now=NOW)
        later = NOW + timedelta(days=95)  # three idle months: 80 -> 65
        assert store.optimize_prompt("market_analyst", "BASE", now=later) == "BASE"


# --- Report ---


class TestReport:
    def test_overall_and_trend(self):
        store = _store()
        for i in range(5):
            store.record_feedback(_feedback(f"old-{i}", rating=2, adopted=False), now=NOW)
        for i in range(5):
            store.record_feedback(_feedback(f"new-{i}", rating=5), now=NOW)

        report = store.report(now=NOW)
        assert report["overall"] == {"total": 10, "correct": 5, "accuracy": 0.5}
        assert report["trend"] == "improving"
        assert report["case_count"] == 10

    def test_insufficient_data(self):
        store = _store()
        store.record_feedback(_feedback(), now=NOW)
        assert store.report(now=NOW)["trend"] == "insufficient_data"

    def test_top_rules_use_plain_kind(self):
        store = _store()
        store.record_feedback(_feedback(correction="多考虑物流成本"), now=NOW)
        top = store.report(now=NOW)["top_rules"][0]
        assert top["kind"] == "correction"
        assert top["confidence"] == 80.0


# --- Persistence ---


class TestPersistence:
    def test_json_file_round_trip(self, tmp_path):
        store = LearningStore(JsonFileLearningRepository(tmp_path))
        store.open()
        store.record_feedback(_feedback(correction="多考虑物流成本"), now=NOW)
        assert store.flush(now=NOW) is True

        reopened = LearningStore(JsonFileLearningRepository(tmp_path))
        state = reopened.open()
        assert state["total_feedback"] == 1
        assert state["rules"][0]["text"] == "多考虑物流成本"

    def test_missing_file_opens_empty(self, tmp_path):
        assert JsonFileLearningRepository(tmp_path / "nope").open() == empty_state()

    def test_state_opens_lazily(self):
        store = LearningStore(InMemoryLearningRepository())
        assert store.state == empty_state()
        assert store.role_weight("market_analyst") == 1.0

    def test_corrupt_file_degrades_to_empty(self, tmp_path, capsys):
        (tmp_path / "learning.json").write_text("{not json", encoding="utf-8")
        store = LearningStore(JsonFileLearningRepository(tmp_path))

        assert store.open() == empty_state()
        assert "starting empty" in capsys.readouterr().err

    def test_flush_failure_returns_false(self, capsys):
        store = LearningStore(FailingRepository())
        store.open()
        store.record_feedback(_feedback(), now=NOW)

        assert store.flush(now=NOW) is False
        err = capsys.readouterr().err
        assert "starting empty" in err
        assert "not saved" in err

    def test_key_value_repository(self):
        kv = InMemoryStore()
        repo = KeyValueLearningRepository(kv)
        state = empty_state()
        state["total_feedback"] = 3
        repo.flush(state)

        assert kv.list() == ["learning"]
        assert repo.open()["total_feedback"] == 3

    def test_partial_document_filled_with_defaults(self):
        kv = InMemoryStore()
        kv.save("learning", {"total_feedback": 2})
        state = KeyValueLearningRepository(kv).open()
        assert state["total_feedback"] == 2
        assert state["rules"] == []

    def test_non_object_document_is_corrupt(self):
        kv = InMemoryStore()
        kv.save("learning", [1, 2, 3])
        with pytest.raises(PersistenceError):
            KeyValueLearningRepository(kv).open()


class TestProjectExtraction:
    def test_project_type(self):
        assert extract_project_type("想开一家奶茶店") == "餐饮"
        assert extract_project_type("随便聊聊") is None

    def test_tags(self):
        assert extract_tags("滁州塑料回收") == ["塑料", "回收", "滁州"]
