"""Declarative constraint table.

Each rule is a frozen value object pairing a predicate with an optional
corrective action, so the enforcer can evaluate every rule the same way and
each rule can be tested on its own.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from decision_swarm.contracts import ConstraintKind


@dataclass(frozen=True)
class Limits:
    max_investment: float = 130000.0  # yuan
    roi_months: int = 12
    monthly_reserve: float = 5000.0  # yuan kept back every month
    banned_keywords: tuple[str, ...] = ("灰色", "违规", "逃税", "无证", "黑市", "非法")
    location_keywords: tuple[str, ...] = ("滁州", "濮阳")
    experience_keywords: tuple[str, ...] = ("光伏",)
    heavy_asset_keywords: tuple[str, ...] = (
        "重资产",
        "自建厂房",
        "购置土地",
        "大型设备",
        "生产线建设",
    )

    @property
    def monthly_budget(self) -> float:
        """Spend allowed per month: total funds spread over a year, minus the reserve."""
        return self.max_investment / 12 - self.monthly_reserve

    @classmethod
    def from_settings(cls, settings, profile=None) -> Limits:
        kwargs = {
            "max_investment": settings.max_investment,
            "roi_months": settings.roi_months,
            "monthly_reserve": settings.monthly_reserve,
        }
        if profile is not None:
            kwargs["location_keywords"] = tuple(profile.location_keywords)
            kwargs["experience_keywords"] = tuple(profile.experience_keywords)
        return cls(**kwargs)


@dataclass(frozen=True)
class NumericMatch:
    start: int  # span of the number being limited (upper bound of a range)
    end: int
    value: float  # normalised to the rule's base unit (yuan or months)
    unit: str
    context: str


@dataclass(frozen=True)
class NumericConstraint:
    """A hard numeric ceiling found by regex and corrected by rewriting the number."""

    id: str
    description: str
    patterns: tuple[re.Pattern[str], ...]  # group 1 = number, group 2 = unit
    units: dict[str, float]
    limit: Callable[[Limits], float]
    base_unit: str
    kind: ConstraintKind = ConstraintKind.HARD

    def matches(self, text: str) -> Iterator[NumericMatch]:
        seen: set[int] = set()
        for pattern in self.patterns:
            for m in pattern.finditer(text):
                if m.start(1) in seen:
                    continue
                seen.add(m.start(1))
                unit = m.group(2).lower()
                number = float(m.group(1).replace(",", ""))
                yield NumericMatch(
                    start=m.start(1),
                    end=m.end(1),
                    value=number * self.units.get(unit, 1.0),
                    unit=unit,
                    context=m.group(0),
                )

    def satisfied(self, value: float, limits: Limits) -> bool:
        return value <= self.limit(limits)

    def correction(self, match: NumericMatch, limits: Limits) -> str:
        """Replacement text for the number: the limit in the match's own unit."""
        in_unit = self.limit(limits) / self.units.get(match.unit, 1.0)
        # Floor to four decimals (0.0013亿) so a rounded figure never exceeds the
        # limit; the epsilon absorbs float error such as 0.0013 * 10000 < 13
        return f"{math.floor(in_unit * 10000 + 1e-6) / 10000:g}"

    def describe(self, value: float) -> str:
        if self.base_unit == "元":
            return f"{value:,.0f}{self.base_unit}"
        return f"{value:g}{self.base_unit}"


@dataclass(frozen=True)
class KeywordConstraint:
    """A banlist: any hit is a blocking violation."""

    id: str
    description: str
    keywords: Callable[[Limits], tuple[str, ...]]
    kind: ConstraintKind = ConstraintKind.HARD

    def hits(self, text: str, limits: Limits) -> list[str]:
        found = []
        for keyword in self.keywords(limits):
            # Negated mentions ("避免违规", "不违规", "无违规") are compliant
            pattern = re.compile(rf"(?<![无不免绝禁]){re.escape(keyword)}")
            if pattern.search(text):
                found.append(keyword)
        return found


@dataclass(frozen=True)
class SoftConstraint:
    id: str
    description: str
    predicate: Callable[[str, Limits], bool]  # True = satisfied
    kind: ConstraintKind = ConstraintKind.SOFT


_MONEY_UNITS = {
    "元": 1.0,
    "yuan": 1.0,
    "rmb": 1.0,
    "千元": 1e3,
    "k": 1e3,
    "万": 1e4,
    "万元": 1e4,
    "亿": 1e8,
    "亿元": 1e8,
}
_MONTH_UNITS = {
    "月": 1.0,
    "个月": 1.0,
    "month": 1.0,
    "months": 1.0,
    "年": 12.0,
    "year": 12.0,
    "years": 12.0,
}

_RANGE = r"(?:\d+(?:\.\d+)?\s*[-~～至到]\s*)?"
_MONEY = rf"{_RANGE}(\d+(?:,\d{{3}})*(?:\.\d+)?)\s*(万元|万|亿元|亿|千元|元|yuan|rmb|k\b)(?![吨件台个平亩人户斤])"
# At most three integer digits: "2027年" is a calendar year, not a duration
_DURATION = rf"{_RANGE}(?<!\d)(\d{{1,3}}(?:\.\d+)?)\s*(个月|月|年|months?|years?)"

INVESTMENT = NumericConstraint(
    id="max_investment",
    description="总投资不超过可用资金",
    patterns=(
        re.compile(rf"(?:投资|投入|启动资金|初始资金|总投入|资金需求|总预算|预算)[^\d\n。]{{0,12}}?{_MONEY}"),
        re.compile(rf"\b(?:investment|capital|budget)\b[^\d\n.]{{0,20}}?{_MONEY}", re.IGNORECASE),
    ),
    units=_MONEY_UNITS,
    limit=lambda limits: limits.max_investment,
    base_unit="元",
)

ROI_PERIOD = NumericConstraint(
    id="roi_period",
    description="回本周期不超过上限",
    patterns=(
        re.compile(rf"(?:回本|回收期|回报周期|投资回收)[^\d\n。]{{0,8}}?{_DURATION}"),
        re.compile(rf"{_DURATION}[^\d\n。]{{0,6}}?回本"),
        re.compile(rf"\bpayback\b[^\d\n.]{{0,20}}?{_DURATION}", re.IGNORECASE),
    ),
    units=_MONTH_UNITS,
    limit=lambda limits: float(limits.roi_months),
    base_unit="个月",
)

MONTHLY_SPEND = NumericConstraint(
    id="monthly_reserve",
    description="月度支出需保留每月预留金",
    patterns=(
        re.compile(rf"(?:月支出|每月支出|月成本|每月成本|月度成本|月均成本|月运营成本)[^\d\n。]{{0,8}}?{_MONEY}"),
    ),
    units=_MONEY_UNITS,
    limit=lambda limits: limits.monthly_budget,
    base_unit="元",
)

COMPLIANCE = KeywordConstraint(
    id="compliance",
    description="合规100%，不得涉及违规经营",
    keywords=lambda limits: limits.banned_keywords,
)


def _light_asset(text: str, limits: Limits) -> bool:
    return not any(k in text for k in limits.heavy_asset_keywords)


def _location_match(text: str, limits: Limits) -> bool:
    return any(k in text for k in limits.location_keywords)


def _experience_reuse(text: str, limits: Limits) -> bool:
    return any(k in text for k in limits.experience_keywords)


NUMERIC_CONSTRAINTS: tuple[NumericConstraint, ...] = (INVESTMENT, ROI_PERIOD, MONTHLY_SPEND)
KEYWORD_CONSTRAINTS: tuple[KeywordConstraint, ...] = (COMPLIANCE,)
SOFT_CONSTRAINTS: tuple[SoftConstraint, ...] = (
    SoftConstraint("light_asset", "优先轻资产模式", _light_asset),
    SoftConstraint("location_match", "结合滁州/濮阳现有场地", _location_match),
    SoftConstraint("experience_reuse", "复用已有行业经验", _experience_reuse),
)
