"""LearningStore: feedback-driven role weights, learned rules and case memory."""

from __future__ import annotations

import re
import sys
import uuid
from datetime import datetime, timezone

from decision_swarm.contracts import (
    CaseRecord,
    FeedbackRecord,
    LearnedRule,
    LearningRepository,
    LearningState,
    RuleKind,
)
from decision_swarm.errors import PersistenceError
from decision_swarm.utils.text import is_duplicate, jaccard_score

from .repository import empty_state

# Correction text -> roles the resulting constraint rule applies to
CONSTRAINT_TEMPLATES: tuple[tuple[re.Pattern[str], tuple[str, ...]], ...] = (
    (re.compile(r"投资.*应该"), ("financial_analyst",)),
    (re.compile(r"回本.*不能超过"), ("financial_analyst",)),
    (re.compile(r"风险.*太高"), ("risk_assessor",)),
    (re.compile(r"合规"), ("risk_assessor",)),
)

PREFERENCE_TEMPLATES: tuple[re.Pattern[str], ...] = (
    re.compile(r"喜欢[^。；;,，\n]*项目"),
    re.compile(r"[^。；;,，\n]*不感兴趣"),
    re.compile(r"更看重[^。；;,，\n]+"),
)

# Focus word in a preference -> role that acts on it; the decision advisor otherwise
PREFERENCE_FOCUS: tuple[tuple[str, str], ...] = (
    ("利润", "financial_analyst"),
    ("收益", "financial_analyst"),
    ("风险", "risk_assessor"),
    ("市场", "market_analyst"),
)

PROJECT_TYPES: dict[str, tuple[str, ...]] = {
    "塑料回收": ("塑料", "回收", "分拣", "粉碎"),
    "光伏": ("光伏", "太阳能", "发电"),
    "餐饮": ("餐饮", "餐厅", "饭店", "奶茶"),
    "加工": ("加工", "制造", "生产"),
    "电商": ("电商", "网店", "淘宝"),
}

TAG_KEYWORDS: tuple[str, ...] = (
    "塑料", "光伏", "奶茶", "餐饮", "电商", "物流", "加工", "回收", "木门", "铝合金",
    "安徽", "河南", "滁州", "濮阳",
)

NEW_RULE_CONFIDENCE = 80.0
PREFERENCE_CONFIDENCE = 70.0
REINFORCE_STEP = 10.0
MIN_PROMPT_CONFIDENCE = 70.0
MAX_PROMPT_RULES = 5
MAX_PROMPT_CASES = 3
MIN_CASE_SIMILARITY = 0.2
MIN_WEIGHT_SAMPLES = 3
LOW_ACCURACY = 0.5
HIGH_ACCURACY = 0.8


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse(ts: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(ts)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def extract_project_type(query: str) -> str | None:
    for project_type, keywords in PROJECT_TYPES.items():
        if any(k in query for k in keywords):
            return project_type
    return None


def extract_tags(query: str) -> list[str]:
    return [k for k in TAG_KEYWORDS if k in query]


def preference_roles(text: str) -> tuple[str, ...]:
    roles = [role for word, role in PREFERENCE_FOCUS if word in text]
    return tuple(dict.fromkeys(roles)) or ("decision_advisor",)


class LearningStore:
    """Accumulates user feedback and turns it into prompt augmentations.

    State lives in memory between ``open()`` and ``flush()``; the repository
    is only touched at those two points. Storage failures are reported on
    stderr and never raised to the caller.

    Rule confidence decays by ``decay_per_month`` for every 30 days a rule
    goes unused. At most ``max_rules`` rules are kept; the lowest effective
    confidence is evicted first, and rules that decay to zero are pruned on
    flush.
    """

    def __init__(
        self,
        repository: LearningRepository,
        *,
        max_rules: int = 200,
        decay_per_month: float = 5.0,
    ) -> None:
        self._repo = repository
        self.max_rules = max_rules
        self.decay_per_month = decay_per_month
        self._state: LearningState | None = None

    # ------------------------------------------------------------------
    # lifecycle

    def open(self) -> LearningState:
        try:
            self._state = self._repo.open()
        except PersistenceError as exc:
            print(f"WARNING: learning state unavailable ({exc}); starting empty", file=sys.stderr)
            self._state = empty_state()
        return self._state

    @property
    def state(self) -> LearningState:
        if self._state is None:
            return self.open()
        return self._state

    def flush(self, *, now: datetime | None = None) -> bool:
        """Prune and persist. Returns False when the write failed."""
        now = now or _now()
        state = self.state
        state["rules"] = [r for r in state["rules"] if self.effective_confidence(r, now=now) > 0]
        self._evict(now)
        try:
            self._repo.flush(state)
        except PersistenceError as exc:
            print(f"WARNING: learning state not saved: {exc}", file=sys.stderr)
            return False
        return True

    # ------------------------------------------------------------------
    # rules

    def effective_confidence(self, rule: LearnedRule, *, now: datetime | None = None) -> float:
        now = now or _now()
        last = _parse(rule.get("last_used") or rule.get("created", ""))
        if last is None:
            return float(rule["confidence"])
        idle_months = max(0, (now - last).days) // 30
        return max(0.0, float(rule["confidence"]) - self.decay_per_month * idle_months)

    def _evict(self, now: datetime) -> None:
        rules = self.state["rules"]
        if len(rules) <= self.max_rules:
            return
        rules.sort(key=lambda r: self.effective_confidence(r, now=now), reverse=True)
        del rules[self.max_rules :]

    def _upsert_rule(
        self,
        text: str,
        kind: RuleKind,
        roles: tuple[str, ...] | list[str],
        *,
        confidence: float,
        success: bool,
        now: datetime,
    ) -> LearnedRule:
        ts = now.isoformat()
        for rule in self.state["rules"]:
            if rule["kind"] != kind:
                continue
            if rule["text"] == text or is_duplicate(text, [rule["text"]], threshold=0.7):
                # Decay is folded in before reinforcing so an old rule does not jump back
                rule["confidence"] = min(
                    100.0, self.effective_confidence(rule, now=now) + REINFORCE_STEP
                )
                rule["usage_count"] += 1
                rule["success_rate"] = round(
                    (rule["success_rate"] * (rule["usage_count"] - 1) + float(success))
                    / rule["usage_count"],
                    4,
                )
                rule["last_used"] = ts
                for role in roles:
                    if role not in rule["roles"]:
                        rule["roles"].append(role)
                return rule

        rule: LearnedRule = {
            "id": f"rule-{uuid.uuid4().hex[:8]}",
            "text": text,
            "kind": kind,
            "roles": list(roles),
            "confidence": confidence,
            "usage_count": 1,
            "success_rate": float(success),
            "created": ts,
            "last_used": ts,
        }
        self.state["rules"].append(rule)
        self._evict(now)
        return rule

    def _rules_from_correction(self, correction: str) -> list[tuple[RuleKind, tuple[str, ...]]]:
        roles: list[str] = []
        for pattern, template_roles in CONSTRAINT_TEMPLATES:
            if pattern.search(correction):
                roles.extend(r for r in template_roles if r not in roles)
        if roles:
            return [(RuleKind.CONSTRAINT, tuple(roles))]
        return [(RuleKind.CORRECTION, ("all",))]

    # ------------------------------------------------------------------
    # feedback

    def record_feedback(
        self, record: FeedbackRecord, *, now: datetime | None = None
    ) -> list[LearnedRule]:
        """Fold one feedback record into the state. Returns the rules it created or touched."""
        if not 1 <= record["rating"] <= 5:
            raise ValueError(f"rating must be 1-5, got {record['rating']}")

        now = now or _now()
        state = self.state
        correct = record["rating"] >= 4
        success = bool(record["adopted"]) or correct

        state["total_feedback"] += 1
        if correct:
            state["correct_feedback"] += 1

        for role_id, helpful in record.get("role_helpful", {}).items():
            stats = state["role_stats"].setdefault(role_id, {"total": 0, "helpful": 0})
            stats["total"] += 1
            if helpful:
                stats["helpful"] += 1
            if stats["total"] >= MIN_WEIGHT_SAMPLES:
                accuracy = stats["helpful"] / stats["total"]
                if accuracy < LOW_ACCURACY:
                    stats["weight"] = 0.7
                elif accuracy > HIGH_ACCURACY:
                    stats["weight"] = 1.2

        touched: list[LearnedRule] = []
        correction = (record.get("correction") or "").strip()
        if correction:
            for kind, roles in self._rules_from_correction(correction):
                touched.append(
                    self._upsert_rule(
                        correction,
                        kind,
                        roles,
                        confidence=NEW_RULE_CONFIDENCE,
                        success=success,
                        now=now,
                    )
                )

        comment = " ".join(
            part for part in (record.get("comment", ""), correction) if part
        )
        for pattern in PREFERENCE_TEMPLATES:
            for match in pattern.finditer(comment):
                text = match.group(0).strip()
                if text:
                    touched.append(
                        self._upsert_rule(
                            text,
                            RuleKind.PREFERENCE,
                            preference_roles(text),
                            confidence=PREFERENCE_CONFIDENCE,
                            success=success,
                            now=now,
                        )
                    )

        query = record.get("query", "")
        project_type = extract_project_type(query)
        if project_type:
            if record["adopted"] and correct:
                text = f"用户偏好项目类型：{project_type}"
            elif not record["adopted"] or record["rating"] <= 2:
                text = f"用户不感兴趣的项目类型：{project_type}"
            else:
                text = ""
            if text:
                touched.append(
                    self._upsert_rule(
                        text,
                        RuleKind.PREFERENCE,
                        ("all",),
                        confidence=PREFERENCE_CONFIDENCE,
                        success=success,
                        now=now,
                    )
                )

        ts = record.get("timestamp") or now.isoformat()
        case: CaseRecord = {
            "decision_id": record["decision_id"],
            "query": query,
            "rating": record["rating"],
            "adopted": bool(record["adopted"]),
            "key_factors": [r["text"] for r in touched],
            "tags": extract_tags(query),
            "timestamp": ts,
        }
        state["cases"].append(case)
        state["history"].append(
            {
                "decision_id": record["decision_id"],
                "rating": record["rating"],
                "adopted": bool(record["adopted"]),
                "correct": correct,
                "timestamp": ts,
            }
        )
        return touched

    # ------------------------------------------------------------------
    # queries

    def role_accuracy(self, role_id: str) -> float | None:
        stats = self.state["role_stats"].get(role_id)
        if not stats or stats["total"] == 0:
            return None
        return stats["helpful"] / stats["total"]

    def role_weight(self, role_id: str) -> float:
        stats = self.state["role_stats"].get(role_id)
        if not stats:
            return 1.0
        return stats.get("weight", 1.0)

    def applicable_rules(
        self, role_id: str, *, now: datetime | None = None
    ) -> list[LearnedRule]:
        now = now or _now()
        rules = [
            r
            for r in self.state["rules"]
            if ("all" in r["roles"] or role_id in r["roles"])
            and self.effective_confidence(r, now=now) >= MIN_PROMPT_CONFIDENCE
        ]
        rules.sort(key=lambda r: self.effective_confidence(r, now=now), reverse=True)
        return rules[:MAX_PROMPT_RULES]

    def similar_cases(self, query: str) -> list[CaseRecord]:
        if not query:
            return []
        scored: list[tuple[float, CaseRecord]] = []
        for case in self.state["cases"]:
            score = jaccard_score(query, case["query"])
            if score > MIN_CASE_SIMILARITY:
                scored.append((score, case))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [case for _, case in scored[:MAX_PROMPT_CASES]]

    def optimize_prompt(
        self,
        role_id: str,
        base_prompt: str,
        *,
        query: str = "",
        now: datetime | None = None,
    ) -> str:
        """Append learned rules, similar cases and a caution line to a role prompt.

        Returns ``base_prompt`` unchanged when nothing applies.
        """
        now = now or _now()
        sections: list[str] = []

        rules = self.applicable_rules(role_id, now=now)
        if rules:
            lines = ["## 已学习的经验"]
            for rule in rules:
                lines.append(
                    f"- {rule['text']}（置信度 {self.effective_confidence(rule, now=now):.0f}）"
                )
                rule["usage_count"] += 1
                rule["last_used"] = now.isoformat()
            sections.append("\n".join(lines))

        cases = self.similar_cases(query)
        if cases:
            lines = ["## 相似历史案例"]
            for case in cases:
                verdict = "已采纳" if case["adopted"] else "未采纳"
                lines.append(f"- {case['query']}（评分 {case['rating']}/5，{verdict}）")
            sections.append("\n".join(lines))

        if self.role_weight(role_id) < 1.0:
            sections.append("注意：该角色近期建议的准确率偏低，请给出更充分的依据并保持谨慎。")

        if not sections:
            return base_prompt
        return base_prompt + "\n\n" + "\n\n".join(sections)

    def report(self, *, now: datetime | None = None) -> dict:
        """Accuracy overall and per role, recent trend, and the strongest rules."""
        now = now or _now()
        state = self.state
        total = state["total_feedback"]
        overall = {
            "total": total,
            "correct": state["correct_feedback"],
            "accuracy": round(state["correct_feedback"] / total, 4) if total else None,
        }

        by_role = {}
        for role_id, stats in sorted(state["role_stats"].items()):
            by_role[role_id] = {
                "total": stats["total"],
                "helpful": stats["helpful"],
                "accuracy": round(stats["helpful"] / stats["total"], 4) if stats["total"] else None,
                "weight": self.role_weight(role_id),
            }

        recent = [h["correct"] for h in state["history"][-5:]]
        earlier = [h["correct"] for h in state["history"][-10:-5]]
        if not recent or not earlier:
            trend = "insufficient_data"
        else:
            delta = sum(recent) / len(recent) - sum(earlier) / len(earlier)
            trend = "improving" if delta > 0.1 else "declining" if delta < -0.1 else "stable"

        top_rules = sorted(
            state["rules"], key=lambda r: self.effective_confidence(r, now=now), reverse=True
        )[:5]
        return {
            "overall": overall,
            "by_role": by_role,
            "trend": trend,
            "top_rules": [
                {
                    "id": r["id"],
                    "text": r["text"],
                    "kind": getattr(r["kind"], "value", r["kind"]),
                    "confidence": round(self.effective_confidence(r, now=now), 1),
                    "usage_count": r["usage_count"],
                }
                for r in top_rules
            ],
            "rule_count": len(state["rules"]),
            "case_count": len(state["cases"]),
        }
