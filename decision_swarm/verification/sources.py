"""Source reliability tiers for search results and cited URLs."""

from __future__ import annotations

from collections import Counter

from decision_swarm.contracts import SearchResult, Tier
from decision_swarm.utils.text import hostname

# Domains per tier. A host matches an entry equal to the host itself or to
# one of its parent domains, so "data.stats.gov.cn" matches "gov.cn" but
# "microsoft.com" never matches "ft.com".
_BANNED = frozenset(
    {
        "weixin.qq.com",
        "toutiao.com",
        "baijiahao.baidu.com",
        "zhihu.com",
        "xiaohongshu.com",
        "douyin.com",
        "kuaishou.com",
    }
)

_TIER1 = frozenset(
    {
        "gov",  # US federal TLD (sec.gov, census.gov)
        "gov.cn",
        "cninfo.com.cn",
        "sse.com.cn",
        "szse.cn",
        "bse.cn",
        "hkexnews.hk",
    }
)

_TIER2 = frozenset(
    {
        "reuters.com",
        "bloomberg.com",
        "bloomberg.cn",
        "mckinsey.com",
        "mckinsey.com.cn",
        "ft.com",
        "ftchinese.com",
        "wsj.com",
        "caixin.com",
        "economist.com",
        "xinhuanet.com",
        "people.com.cn",
    }
)

_TIER3 = frozenset(
    {
        "36kr.com",
        "jiemian.com",
        "yicai.com",
        "thepaper.cn",
        "sohu.com",
        "sina.com",
        "sina.com.cn",
        "163.com",
        "ifeng.com",
    }
)

# Checked in this order; first tier with a matching domain wins.
_TIER_DOMAINS: tuple[tuple[Tier, frozenset[str]], ...] = (
    (Tier.BANNED, _BANNED),
    (Tier.TIER1, _TIER1),
    (Tier.TIER2, _TIER2),
    (Tier.TIER3, _TIER3),
)


def parent_domains(host: str) -> list[str]:
    """``a.b.c`` -> ``["a.b.c", "b.c", "c"]``."""
    labels = host.split(".")
    return [".".join(labels[i:]) for i in range(len(labels))]


def classify_source(url: str) -> Tier:
    """Map a URL to its reliability tier.

    Pure and deterministic. Only the hostname counts (lowercase, ``www.``
    stripped); the path never does. Banned is checked first, then tier1,
    tier2, tier3; anything unmatched is tier3.
    """
    host = hostname(url)
    if not host:
        return Tier.TIER3
    candidates = parent_domains(host)

    for tier, domains in _TIER_DOMAINS:
        if any(c in domains for c in candidates):
            return tier
    return Tier.TIER3


class SourceClassifier:
    """Stateful wrapper that records a warning for every banned source seen."""

    def __init__(self) -> None:
        self.warnings: list[str] = []

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    def classify(self, url: str) -> Tier:
        tier = classify_source(url)
        if tier == Tier.BANNED:
            self.warnings.append(f"Banned source excluded: {url}")
        return tier

    def partition(self, results: list[SearchResult]) -> tuple[list[SearchResult], list[SearchResult]]:
        """Split results into (kept, banned), stamping each with its tier."""
        kept: list[SearchResult] = []
        banned: list[SearchResult] = []
        for result in results:
            tier = self.classify(result["url"])
            result["tier"] = tier
            (banned if tier == Tier.BANNED else kept).append(result)
        return kept, banned

    @staticmethod
    def tier_counts(results: list[SearchResult]) -> dict[str, int]:
        """Count results per tier (value strings, e.g. {"tier1": 2})."""
        counts = Counter(Tier(r.get("tier") or classify_source(r["url"])).value for r in results)
        return dict(counts)
