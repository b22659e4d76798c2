"""ConstraintEnforcer: pre-call limit injection, post-call correction and blocking."""

from __future__ import annotations

import re
from enum import Enum

from decision_swarm.constraints.rules import (
    KEYWORD_CONSTRAINTS,
    NUMERIC_CONSTRAINTS,
    SOFT_CONSTRAINTS,
    KeywordConstraint,
    Limits,
    NumericConstraint,
    SoftConstraint,
)
from decision_swarm.contracts import (
    ConstraintKind,
    ConstraintViolation,
    PostCheck,
    PreCheck,
    Severity,
)
from decision_swarm.utils.numbers import format_wan

BLOCKED_BANNER = "> ⚠️ **[BLOCKED] 内容违反硬约束，需要重新生成**"
CORRECTION_HEADER = "【约束自动修正】"

# Money amounts in a request, wherever they appear ("12万元 capital")
_ASK_MONEY_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(万元|万)(?![吨件台个平亩人户斤])")


class CorrectionPolicy(str, Enum):
    CORRECT = "correct"  # correct within tolerance in place; regenerate only when blocked
    REGENERATE = "regenerate"  # ask for regeneration on any hard violation first


class ConstraintEnforcer:
    """Validates, auto-corrects, or blocks text against hard business rules.

    A numeric value in (limit, tolerance * limit] is rewritten to exactly the
    limit and reported as a non-blocking correction. Anything above the
    tolerance band, and any banlist hit, blocks the content.
    """

    def __init__(
        self,
        limits: Limits | None = None,
        *,
        policy: CorrectionPolicy = CorrectionPolicy.CORRECT,
        tolerance: float = 1.5,
        numeric: tuple[NumericConstraint, ...] = NUMERIC_CONSTRAINTS,
        keywords: tuple[KeywordConstraint, ...] = KEYWORD_CONSTRAINTS,
        soft: tuple[SoftConstraint, ...] = SOFT_CONSTRAINTS,
    ) -> None:
        self.limits = limits or Limits()
        self.policy = CorrectionPolicy(policy)
        self.tolerance = tolerance
        self.numeric = numeric
        self.keywords = keywords
        self.soft = soft

    # --- prompt side ---

    def constraint_block(self, violations: list[ConstraintViolation] | None = None) -> str:
        """Instruction block listing the limits (and any detected issues)."""
        limits = self.limits
        lines = [
            "## 硬约束（必须遵守）",
            f"- 总投资 ≤ {format_wan(limits.max_investment)}万元",
            f"- 回本周期 ≤ {limits.roi_months}个月",
            f"- 月度支出 ≤ {limits.monthly_budget:.0f}元（每月需预留 {limits.monthly_reserve:.0f}元）",
            f"- 合规100%，不得涉及：{'、'.join(limits.banned_keywords)}",
            "- 所有金额必须在上限内给出，超出上限的方案视为无效",
        ]
        if violations:
            lines.append("")
            lines.append("### 检测到的问题")
            lines.extend(f"- {v['message']}" for v in violations)
        return "\n".join(lines)

    def pre_check(self, request: str) -> PreCheck:
        """Scan a request for compliance hits and out-of-bound asks."""
        violations: list[ConstraintViolation] = []

        for rule in self.keywords:
            for keyword in rule.hits(request, self.limits):
                violations.append(self._keyword_violation(rule, keyword, "请求"))

        for m in _ASK_MONEY_RE.finditer(request):
            value = float(m.group(1)) * 1e4
            if value > self.limits.max_investment:
                violations.append(
                    ConstraintViolation(
                        constraint_id="max_investment",
                        kind=ConstraintKind.HARD,
                        severity=Severity.WARNING,
                        value=value,
                        limit=self.limits.max_investment,
                        message=(
                            f"请求金额 {format_wan(value)}万 超过可用资金上限 "
                            f"{format_wan(self.limits.max_investment)}万"
                        ),
                        blocking=False,
                        corrected=False,
                    )
                )

        for rule in self.numeric:
            if rule.id != "roi_period":
                continue
            for match in rule.matches(request):
                if not rule.satisfied(match.value, self.limits):
                    violations.append(
                        ConstraintViolation(
                            constraint_id=rule.id,
                            kind=rule.kind,
                            severity=Severity.WARNING,
                            value=match.value,
                            limit=rule.limit(self.limits),
                            message=(
                                f"请求回本周期 {rule.describe(match.value)} 超过上限 "
                                f"{rule.describe(rule.limit(self.limits))}"
                            ),
                            blocking=False,
                            corrected=False,
                        )
                    )

        return PreCheck(
            passed=not violations,
            violations=violations,
            constraint_block=self.constraint_block(violations) if violations else "",
        )

    # --- output side ---

    def post_check(self, content: str) -> PostCheck:
        """Re-scan generated text: correct, block, and score soft rules."""
        violations: list[ConstraintViolation] = []
        corrections: list[str] = []
        edits: list[tuple[int, int, str]] = []
        taken: set[tuple[int, int]] = set()
        blocked = False

        for rule in self.numeric:
            limit = rule.limit(self.limits)
            for match in rule.matches(content):
                span = (match.start, match.end)
                if span in taken or rule.satisfied(match.value, self.limits):
                    continue
                taken.add(span)
                if match.value <= limit * self.tolerance:
                    replacement = rule.correction(match, self.limits)
                    edits.append((match.start, match.end, replacement))
                    # Notes name the rule by id so a re-scan cannot match them
                    note = (
                        f"[{rule.id}] {rule.describe(match.value)} → {rule.describe(limit)}"
                    )
                    corrections.append(note)
                    violations.append(
                        ConstraintViolation(
                            constraint_id=rule.id,
                            kind=rule.kind,
                            severity=Severity.WARNING,
                            value=match.value,
                            limit=limit,
                            message=note,
                            blocking=False,
                            corrected=True,
                        )
                    )
                else:
                    blocked = True
                    violations.append(
                        ConstraintViolation(
                            constraint_id=rule.id,
                            kind=rule.kind,
                            severity=Severity.CRITICAL,
                            value=match.value,
                            limit=limit,
                            message=(
                                f"[{rule.id}] {rule.describe(match.value)} > "
                                f"{self.tolerance:g} × {rule.describe(limit)}"
                            ),
                            blocking=True,
                            corrected=False,
                        )
                    )

        for rule in self.keywords:
            for keyword in rule.hits(content, self.limits):
                blocked = True
                violations.append(self._keyword_violation(rule, keyword, "输出"))

        soft_failures = 0
        for rule in self.soft:
            if rule.predicate(content, self.limits):
                continue
            soft_failures += 1
            violations.append(
                ConstraintViolation(
                    constraint_id=rule.id,
                    kind=rule.kind,
                    severity=Severity.INFO,
                    value="",
                    limit="",
                    message=f"软约束未满足: {rule.description}",
                    blocking=False,
                    corrected=False,
                )
            )

        text = content
        for start, end, replacement in sorted(edits, reverse=True):
            text = text[:start] + replacement + text[end:]
        if corrections:
            text = text.rstrip() + "\n\n" + CORRECTION_HEADER + "\n" + "\n".join(
                f"- {c}" for c in corrections
            )
        if blocked:
            reasons = "; ".join(v["message"] for v in violations if v["blocking"])
            text = f"{BLOCKED_BANNER}\n> {reasons}\n\n{text}"

        hard_violation = any(v["kind"] == ConstraintKind.HARD for v in violations)
        regeneration_required = blocked or (
            self.policy == CorrectionPolicy.REGENERATE and hard_violation
        )

        return PostCheck(
            content=text,
            violations=violations,
            corrections=corrections,
            blocked=blocked,
            regeneration_required=regeneration_required,
            soft_score=max(0, 100 - 20 * soft_failures),
        )

    def _keyword_violation(
        self, rule: KeywordConstraint, keyword: str, where: str
    ) -> ConstraintViolation:
        return ConstraintViolation(
            constraint_id=rule.id,
            kind=rule.kind,
            severity=Severity.CRITICAL,
            value=keyword,
            limit="0",
            message=f"{where}包含合规禁区关键词「{keyword}」",
            blocking=True,
            corrected=False,
        )
