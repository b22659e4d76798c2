"""Runs every verifier over the accumulated role outputs."""

from __future__ import annotations

from datetime import date, datetime

from decision_swarm.contracts import SearchResult, Tier, TimeValidity, VerificationReport
from decision_swarm.verification.contradiction import ContradictionDetector
from decision_swarm.verification.sources import SourceClassifier, classify_source
from decision_swarm.verification.time_validity import TimeValidityChecker
from decision_swarm.verification.triangulation import TriangulationEngine, extract_claims


class VerificationPipeline:
    def __init__(
        self,
        *,
        classifier: SourceClassifier | None = None,
        checker: TimeValidityChecker | None = None,
        detector: ContradictionDetector | None = None,
        max_claims: int = 5,
    ) -> None:
        self.classifier = classifier or SourceClassifier()
        self.checker = checker or TimeValidityChecker()
        self.detector = detector or ContradictionDetector()
        self.triangulation = TriangulationEngine(classifier=self.classifier, checker=self.checker)
        self.max_claims = max_claims

    def run(
        self,
        texts: list[str],
        sources: list[SearchResult],
        *,
        banned_warnings: list[str] | None = None,
        now: date | datetime | None = None,
    ) -> VerificationReport:
        combined = "\n\n".join(t for t in texts if t)

        traces = []
        time_checks: list[TimeValidity] = []
        for claim, value in extract_claims(combined, limit=self.max_claims):
            traces.append(self.triangulation.triangulate(claim, value, sources, now=now))
            time_checks.append(self.checker.check(combined, claim=claim, now=now))

        kept = [s for s in sources if classify_source(s["url"]) != Tier.BANNED]
        banned = list(banned_warnings or [])
        for source in sources:
            if classify_source(source["url"]) == Tier.BANNED:
                message = f"Banned source excluded: {source['url']}"
                if message not in banned:
                    banned.append(message)

        return VerificationReport(
            traces=traces,
            time_checks=time_checks,
            contradictions=self.detector.detect(combined),
            sources_by_tier=SourceClassifier.tier_counts(kept),
            banned_warnings=banned,
        )
