"""Cross-source triangulation of numeric claims.

A claim's asserted value is checked against a candidate source set along
three axes, combined as

    confidence = 0.4 * independence + 0.4 * consistency + 0.2 * recency

Independence (0-100) starts from domain diversity and is penalised for
near-duplicate source text, shared "original source" attributions
("据X报道", "according to X"), and sources that cite each other's domains.
Consistency is the share of valued sources whose closest numeric token is
within ±20% of the asserted value. Recency comes from TimeValidityChecker.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from itertools import combinations, permutations

from decision_swarm.contracts import (
    ConfidenceGrade,
    DataTrace,
    DataType,
    SearchResult,
    Tier,
    VerificationGap,
    VerificationStatus,
)
from decision_swarm.utils.numbers import NUMBER_RE, extract_numbers, scale
from decision_swarm.utils.text import hostname, jaccard_score
from decision_swarm.verification.sources import SourceClassifier
from decision_swarm.verification.time_validity import (
    TimeValidityChecker,
    detect_data_type,
    recency_score,
)

INDEPENDENCE_THRESHOLD = 60.0
RANGE_TOLERANCE = 0.20
SINGLE_DOMAIN_SCORE = 20.0

_SIMILARITY_PENALTY = 30.0
_SHARED_ORIGIN_PENALTY = 25.0
_CHAIN_PENALTY = 15.0

_ORIGIN_PATTERNS = (
    re.compile(r"据\s*([^\s，。,、；;]{2,20}?)\s*(?:报道|消息|数据|统计|发布|显示)"),
    re.compile(r"(?:来源|转自|援引)\s*[:：]?\s*([^\s，。,、；;]{2,20})"),
    re.compile(r"according to (?:the )?([a-z][\w&.\- ]{1,40}?)(?=[,.;:]|$)", re.IGNORECASE),
)

_ESTIMATE_RE = re.compile(r"约|大约|预计|估算|估计|左右|approximately|estimated|roughly|about|~")

_CLAIM_KEYWORDS = (
    "市场规模",
    "规模",
    "产值",
    "产量",
    "产能",
    "增长率",
    "增速",
    "价格",
    "均价",
    "销量",
    "market size",
    "growth",
    "price",
    "revenue",
)
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[。！？!?；;\n])|(?<=\.)\s")


def _source_text(source: SearchResult) -> str:
    return f"{source.get('title', '')} {source.get('snippet', '')}".strip()


def original_sources(text: str) -> set[str]:
    """Attribution strings ("据新华社报道" -> "新华社") found in a text."""
    origins: set[str] = set()
    for pattern in _ORIGIN_PATTERNS:
        for m in pattern.finditer(text):
            origins.add(m.group(1).strip().lower())
    return origins


def source_independence(sources: list[SearchResult]) -> float:
    """Independence score 0-100 for a source set.

    Fewer than two sources score 0; a set drawn from one domain scores 20.
    """
    if len(sources) < 2:
        return 0.0

    domains = [hostname(s["url"]) for s in sources]
    unique = len(set(domains))
    if unique == 1:
        return SINGLE_DOMAIN_SCORE

    texts = [_source_text(s) for s in sources]
    pairs = list(combinations(range(len(sources)), 2))
    avg_similarity = sum(jaccard_score(texts[i], texts[j]) for i, j in pairs) / len(pairs)

    origins = [original_sources(t) for t in texts]
    shared_origin_pairs = sum(1 for i, j in pairs if origins[i] & origins[j])

    chain_links = 0
    for i, j in permutations(range(len(sources)), 2):
        if domains[j] and domains[i] != domains[j] and domains[j] in texts[i].lower():
            chain_links += 1

    score = (
        100.0 * unique / len(sources)
        - _SIMILARITY_PENALTY * avg_similarity
        - _SHARED_ORIGIN_PENALTY * shared_origin_pairs
        - _CHAIN_PENALTY * chain_links
    )
    return round(max(0.0, min(100.0, score)), 1)


def _relative_gap(candidate: float, value: float) -> float:
    if value == 0:
        return 0.0 if candidate == 0 else float("inf")
    return abs(candidate - value) / abs(value)


def cross_validate(value: float, sources: list[SearchResult]) -> tuple[int, int, int]:
    """Compare the asserted value with each source's closest numeric token.

    Returns (in_range, valued, out_of_range), where ``valued`` counts the
    sources that contained any number at all.
    """
    in_range = out_of_range = 0
    for source in sources:
        numbers = extract_numbers(_source_text(source))
        if not numbers:
            continue
        candidates = [v for pair in numbers for v in pair]
        best = min(_relative_gap(c, value) for c in candidates)
        if best <= RANGE_TOLERANCE:
            in_range += 1
        else:
            out_of_range += 1
    return in_range, in_range + out_of_range, out_of_range


def extract_claims(text: str, *, limit: int = 5) -> list[tuple[str, float]]:
    """Pull (sentence, value) pairs for checkable numeric claims out of role output.

    A claim is a sentence mentioning a market/price/growth keyword together
    with a number; the value is the first number, scaled by its unit.
    """
    claims: list[tuple[str, float]] = []
    for sentence in _SENTENCE_SPLIT_RE.split(text):
        sentence = sentence.strip()
        if not sentence:
            continue
        lowered = sentence.lower()
        if not any(k in lowered for k in _CLAIM_KEYWORDS):
            continue
        m = NUMBER_RE.search(sentence)
        if m is None:
            continue
        try:
            value = scale(m.group(1), m.group(2))
        except ValueError:
            continue
        claims.append((sentence, value))
        if len(claims) >= limit:
            break
    return claims


class TriangulationEngine:
    """Produces a DataTrace for one numeric claim against a source set."""

    def __init__(
        self,
        *,
        classifier: SourceClassifier | None = None,
        checker: TimeValidityChecker | None = None,
    ) -> None:
        self.classifier = classifier or SourceClassifier()
        self.checker = checker or TimeValidityChecker()

    def triangulate(
        self,
        claim: str,
        value: float,
        sources: list[SearchResult],
        *,
        data_type: DataType | None = None,
        now: date | datetime | None = None,
    ) -> DataTrace:
        warnings: list[str] = []
        valid: list[SearchResult] = []
        for source in sources:
            tier = self.classifier.classify(source["url"])
            if tier == Tier.BANNED:
                warnings.append(f"Banned source excluded from '{claim[:40]}': {source['url']}")
                continue
            valid.append({**source, "tier": tier})

        independence = source_independence(valid)
        in_range, valued, out_of_range = cross_validate(value, valid)
        consistency = round(100.0 * in_range / valued, 1) if valued else 0.0

        claim_type = data_type or detect_data_type(claim)
        if valid:
            recency_scores = []
            for source in valid:
                validity = self.checker.check(
                    source.get("published") or _source_text(source),
                    data_type=claim_type,
                    now=now,
                )
                if validity["warning"] and validity["date"] is not None:
                    warnings.append(f"{source['url']}: {validity['warning']}")
                recency_scores.append(recency_score(validity))
            recency = round(sum(recency_scores) / len(recency_scores), 1)
        else:
            recency = 0.0

        independent = independence >= INDEPENDENCE_THRESHOLD
        consistent = in_range >= 2

        if independent and consistent:
            status = VerificationStatus.VERIFIED
        elif valued >= 2 and not consistent and out_of_range > 0:
            status = VerificationStatus.CONFLICT
        elif independent or consistent:
            status = VerificationStatus.PARTIAL
        else:
            status = VerificationStatus.UNVERIFIED

        tier_counts: dict[str, int] = {}
        for source in valid:
            key = Tier(source["tier"]).value
            tier_counts[key] = tier_counts.get(key, 0) + 1

        if (
            status == VerificationStatus.VERIFIED
            and len(valid) >= 2
            and tier_counts.get(Tier.TIER1.value, 0) >= 1
        ):
            grade = ConfidenceGrade.A
        elif status in (VerificationStatus.VERIFIED, VerificationStatus.PARTIAL):
            grade = ConfidenceGrade.B
        else:
            grade = ConfidenceGrade.C

        gaps: list[VerificationGap] = []
        if len(valid) < 2:
            gaps.append(
                VerificationGap(
                    claim=claim,
                    reason="fewer than two usable sources",
                    sources_found=len(valid),
                )
            )
        elif not independent:
            gaps.append(
                VerificationGap(
                    claim=claim,
                    reason=f"sources not independent (score {independence:g})",
                    sources_found=len(valid),
                )
            )

        confidence = round(0.4 * independence + 0.4 * consistency + 0.2 * recency, 1)

        return DataTrace(
            claim=claim,
            value=value,
            sources=[s["url"] for s in valid],
            tiers=tier_counts,
            verification_status=status,
            confidence_grade=grade,
            confidence=confidence,
            independence=independence,
            consistency=consistency,
            recency=recency,
            is_estimate=bool(_ESTIMATE_RE.search(claim)),
            gaps=gaps,
            warnings=warnings,
        )
