"""Rule-table contradiction detection over generated text.

Two kinds of rules, both plain data:

- ``ContradictionRule``: fires when its positive and negative patterns both
  match the same text (e.g. "可行" and "不可行").
- ``NumericBucket``: collects amounts from a semantic context (investment,
  profit, cost, payback period) and fires when max/min exceeds a threshold.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from decision_swarm.contracts import ContradictionFinding, ContradictionReport, Severity

_MONEY_UNITS = {"元": 1.0, "万": 1e4, "万元": 1e4, "亿": 1e8, "亿元": 1e8}
_DURATION_UNITS = {
    "月": 1.0,
    "个月": 1.0,
    "month": 1.0,
    "months": 1.0,
    "年": 12.0,
    "year": 12.0,
    "years": 12.0,
}


@dataclass(frozen=True)
class ContradictionRule:
    label: str
    positive: re.Pattern[str]
    negative: re.Pattern[str]
    severity: Severity
    category: str

    def evaluate(self, text: str) -> ContradictionFinding | None:
        pos = self.positive.search(text)
        if pos is None:
            return None
        neg = self.negative.search(text)
        if neg is None:
            return None
        return ContradictionFinding(
            label=self.label,
            severity=self.severity,
            category=self.category,
            evidence=[pos.group(0), neg.group(0)],
        )


@dataclass(frozen=True)
class NumericBucket:
    label: str
    patterns: tuple[re.Pattern[str], ...]  # each captures (number, unit)
    units: dict[str, float]
    threshold: float  # max/min ratio that counts as a contradiction
    severity: Severity = Severity.WARNING
    category: str = "numerical"

    def values(self, text: str) -> list[float]:
        found: list[float] = []
        for pattern in self.patterns:
            for m in pattern.finditer(text):
                unit = m.group(2).lower().strip()
                found.append(float(m.group(1)) * self.units.get(unit, 1.0))
        return found

    def evaluate(self, text: str) -> ContradictionFinding | None:
        values = [v for v in self.values(text) if v > 0]
        if len(values) < 2:
            return None
        low, high = min(values), max(values)
        if high / low <= self.threshold:
            return None
        return ContradictionFinding(
            label=self.label,
            severity=self.severity,
            category=self.category,
            evidence=[f"min={low:g}", f"max={high:g}", f"ratio={high / low:.1f}>{self.threshold:g}"],
        )


def _rule(
    label: str, positive: str, negative: str, severity: Severity, category: str
) -> ContradictionRule:
    return ContradictionRule(
        label=label,
        positive=re.compile(positive, re.IGNORECASE),
        negative=re.compile(negative, re.IGNORECASE),
        severity=severity,
        category=category,
    )


_W = Severity.WARNING
_I = Severity.INFO
_C = Severity.CRITICAL

CONTRADICTION_RULES: tuple[ContradictionRule, ...] = (
    # logical
    _rule(
        "feasibility",
        r"(?<!不)可行(?!性)|(?<!not )\bfeasible\b",
        r"不可行|\binfeasible\b|\bnot feasible\b|\bunfeasible\b",
        _W,
        "logical",
    ),
    _rule(
        "recommendation",
        r"(?<!不)推荐|(?<!not )\brecommended\b",
        r"不推荐|\bnot recommended\b",
        _W,
        "logical",
    ),
    _rule("profit_loss", r"(?<!不)盈利|\bprofitable\b", r"亏损|不盈利|\bunprofitable\b", _W, "logical"),
    _rule(
        "risk_level",
        r"风险(?:较|很|极)?低|\blow risk\b",
        r"风险(?:较|很|极)?高|\bhigh risk\b",
        _W,
        "logical",
    ),
    _rule("competition", r"竞争(?:较|很)?小|竞争不激烈|蓝海", r"竞争(?:非常|十分)?激烈|红海", _W, "logical"),
    _rule("supply_demand", r"供不应求", r"供过于求", _W, "logical"),
    _rule(
        "growth",
        r"高增长|快速增长|\brapid growth\b",
        r"市场萎缩|需求萎缩|\bshrinking market\b",
        _W,
        "logical",
    ),
    _rule("entry_barrier", r"门槛(?:较|很)?低", r"门槛(?:较|很)?高", _W, "logical"),
    _rule("demand", r"需求(?:旺盛|很大|较大)", r"需求(?:疲软|很小|不足)", _W, "logical"),
    _rule("margin", r"利润(?:率)?(?:较|很)?高|高利润", r"利润(?:率)?(?:较|很)?低|低利润|微利", _W, "logical"),
    # temporal
    _rule("season", r"旺季", r"淡季", _I, "temporal"),
    _rule("stage", r"初创期", r"成熟期", _I, "temporal"),
    _rule("cycle", r"上升期", r"下降期", _I, "temporal"),
    _rule("freshness", r"最新(?:数据|统计)", r"(?:数据|统计)(?:已)?过期", _W, "temporal"),
    # semantic
    _rule(
        "causal_outcome",
        r"因为[^。\n]{0,40}所以[^。\n]{0,40}成功",
        r"因为[^。\n]{0,40}所以[^。\n]{0,40}失败",
        _W,
        "semantic",
    ),
    # constraint: a compliance keyword alongside a recommendation to proceed
    _rule(
        "compliance_risk",
        r"(?<![无不免绝])(?:灰色|违规|逃税|无证|黑市)",
        r"建议(?:做|开展|实施|启动)|(?<!不)推荐|(?<!不)可行(?!性)",
        _C,
        "constraint",
    ),
)

_AMOUNT = r"(\d+(?:\.\d+)?)\s*(万元|亿元|万|亿|元)"
_MONTHS = r"(\d+(?:\.\d+)?)\s*(个月|月|年|months?|years?)"

NUMERIC_BUCKETS: tuple[NumericBucket, ...] = (
    NumericBucket(
        "investment_spread",
        (re.compile(rf"(?:投资|投入|启动资金|初始资金|资金需求)[^\d\n]{{0,10}}?{_AMOUNT}"),),
        _MONEY_UNITS,
        3.0,
    ),
    NumericBucket(
        "profit_spread",
        (re.compile(rf"(?:净利润|利润|净利|盈利)[^\d\n]{{0,10}}?{_AMOUNT}"),),
        _MONEY_UNITS,
        3.0,
    ),
    NumericBucket(
        "cost_spread",
        (re.compile(rf"(?:成本|支出|费用)[^\d\n]{{0,10}}?{_AMOUNT}"),),
        _MONEY_UNITS,
        3.0,
    ),
    NumericBucket(
        "payback_spread",
        (
            re.compile(rf"(?:回本|回收期|回报周期)[^\d\n]{{0,8}}?{_MONTHS}", re.IGNORECASE),
            re.compile(rf"{_MONTHS}[^\d\n。]{{0,4}}回本", re.IGNORECASE),
            re.compile(rf"\bpayback\b[^\d\n]{{0,20}}?{_MONTHS}", re.IGNORECASE),
        ),
        _DURATION_UNITS,
        2.0,
    ),
)


def contradiction_score(critical: int, warning: int) -> int:
    return max(0, 100 - 20 * critical - 5 * warning)


class ContradictionDetector:
    """Evaluates every rule and bucket uniformly and aggregates a score."""

    def __init__(
        self,
        rules: tuple[ContradictionRule, ...] = CONTRADICTION_RULES,
        buckets: tuple[NumericBucket, ...] = NUMERIC_BUCKETS,
    ) -> None:
        self.rules = rules
        self.buckets = buckets

    def detect(self, text: str) -> ContradictionReport:
        findings: list[ContradictionFinding] = []
        for rule in (*self.rules, *self.buckets):
            finding = rule.evaluate(text)
            if finding is not None:
                findings.append(finding)

        critical = sum(1 for f in findings if f["severity"] == Severity.CRITICAL)
        warning = sum(1 for f in findings if f["severity"] == Severity.WARNING)
        info = sum(1 for f in findings if f["severity"] == Severity.INFO)
        return ContradictionReport(
            findings=findings,
            critical=critical,
            warning=warning,
            info=info,
            score=contradiction_score(critical, warning),
        )
