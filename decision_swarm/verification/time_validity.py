"""Staleness checks: per-data-type max age, nearest-date extraction."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone

from decision_swarm.contracts import DataType, TimeValidity, Urgency

MAX_AGE_DAYS: dict[DataType, int] = {
    DataType.PRICE: 7,
    DataType.INDUSTRY: 90,
    DataType.POLICY: 180,
    DataType.GENERAL: 365,
}

_WARNING_FRACTION = 0.8

# Checked in order: price data is the most perishable, so it wins ties
_TYPE_KEYWORDS: tuple[tuple[DataType, tuple[str, ...]], ...] = (
    (DataType.PRICE, ("价格", "报价", "单价", "售价", "收购价", "行情", "price", "quote")),
    (
        DataType.POLICY,
        ("政策", "法规", "规定", "条例", "补贴", "通知", "办法", "policy", "regulation", "subsidy"),
    ),
    (
        DataType.INDUSTRY,
        (
            "市场规模",
            "行业",
            "产量",
            "产能",
            "增长率",
            "市场份额",
            "market size",
            "industry",
            "growth rate",
        ),
    ),
)

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}  # fmt: skip
_MONTH_RE = r"(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?"

# (pattern, order of year/month/day groups); a missing day defaults to 1
_DATE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(20\d{2})\s*年\s*(\d{1,2})\s*月\s*(\d{1,2})\s*[日号]"), "ymd"),
    (re.compile(r"(20\d{2})[-./](\d{1,2})[-./](\d{1,2})"), "ymd"),
    (re.compile(r"(20\d{2})\s*年\s*(\d{1,2})\s*月(?!\s*\d)"), "ym"),
    (re.compile(rf"{_MONTH_RE}\s+(\d{{1,2}}),?\s+(20\d{{2}})", re.IGNORECASE), "mdy"),
    (re.compile(rf"(\d{{1,2}})\s+{_MONTH_RE}\s+(20\d{{2}})", re.IGNORECASE), "dmy"),
)


def detect_data_type(text: str) -> DataType:
    """Guess the data type of a claim from its keywords."""
    lowered = text.lower()
    for data_type, keywords in _TYPE_KEYWORDS:
        if any(k in lowered for k in keywords):
            return data_type
    return DataType.GENERAL


def _to_date(match: re.Match[str], order: str) -> date | None:
    groups = match.groups()
    try:
        if order == "ymd":
            return date(int(groups[0]), int(groups[1]), int(groups[2]))
        if order == "ym":
            return date(int(groups[0]), int(groups[1]), 1)
        if order == "mdy":
            return date(int(groups[2]), _MONTHS[groups[0][:3].lower()], int(groups[1]))
        if order == "dmy":
            return date(int(groups[2]), _MONTHS[groups[1][:3].lower()], int(groups[0]))
    except (ValueError, KeyError):
        return None
    return None


def extract_dates(text: str) -> list[tuple[int, date]]:
    """All date tokens in ``text`` as (start offset, date), in text order.

    Overlapping matches keep the more specific pattern (patterns are tried
    most-specific first). Impossible dates are skipped.
    """
    taken: list[tuple[int, int]] = []
    found: list[tuple[int, date]] = []
    for pattern, order in _DATE_PATTERNS:
        for m in pattern.finditer(text):
            start, end = m.span()
            if any(start < t_end and end > t_start for t_start, t_end in taken):
                continue
            parsed = _to_date(m, order)
            if parsed is None:
                continue
            taken.append((start, end))
            found.append((start, parsed))
    found.sort(key=lambda item: item[0])
    return found


def nearest_date(text: str, claim: str | None = None) -> date | None:
    """Date token closest to ``claim`` within ``text``.

    Without a claim (or when the claim does not occur in the text) the most
    recent date in the text is used.
    """
    dates = extract_dates(text)
    if not dates:
        return None
    anchor = text.find(claim) if claim else -1
    if anchor < 0:
        return max(d for _, d in dates)
    return min(dates, key=lambda item: abs(item[0] - anchor))[1]


def _as_date(now: date | datetime | None) -> date:
    if now is None:
        return datetime.now(timezone.utc).date()
    if isinstance(now, datetime):
        return now.date()
    return now


def recency_score(validity: TimeValidity) -> float:
    """0-100 freshness score used by triangulation; undated data scores 50."""
    if validity["date"] is None:
        return 50.0
    if validity["urgency"] == Urgency.CRITICAL:
        return 20.0
    if validity["urgency"] == Urgency.WARNING:
        return 60.0
    return 100.0


class TimeValidityChecker:
    """Flags stale data using a per-data-type max-age table."""

    def __init__(self, max_age_days: dict[DataType, int] | None = None) -> None:
        self.max_age_days = {**MAX_AGE_DAYS, **(max_age_days or {})}

    def check(
        self,
        text: str,
        *,
        claim: str | None = None,
        data_type: DataType | None = None,
        now: date | datetime | None = None,
    ) -> TimeValidity:
        data_type = data_type or detect_data_type(claim or text)
        max_age = self.max_age_days[data_type]
        found = nearest_date(text, claim)

        if found is None:
            return TimeValidity(
                data_type=data_type,
                date=None,
                age_days=None,
                max_age_days=max_age,
                valid=False,
                urgency=Urgency.WARNING,
                warning=f"No date found for {data_type.value} data; freshness unknown",
            )

        age = max(0, (_as_date(now) - found).days)
        valid = age <= max_age
        warning = None
        if not valid:
            urgency = Urgency.CRITICAL
            warning = (
                f"{data_type.value} data is {age} days old, exceeds the {max_age}-day limit"
            )
        elif age > max_age * _WARNING_FRACTION:
            urgency = Urgency.WARNING
            warning = f"{data_type.value} data is {age} days old, close to the {max_age}-day limit"
        else:
            urgency = Urgency.NORMAL

        return TimeValidity(
            data_type=data_type,
            date=found.isoformat(),
            age_days=age,
            max_age_days=max_age,
            valid=valid,
            urgency=urgency,
            warning=warning,
        )
