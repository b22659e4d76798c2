"""Single source of truth for all types, enums, and protocols."""

from __future__ import annotations

from enum import Enum
from typing import Any, NotRequired, Protocol, TypedDict, runtime_checkable

# --- Enums ---


class RunMode(str, Enum):
    FORWARD = "forward"  # "what can I do with my resources"
    REVERSE = "reverse"  # "is project X viable"
    MIXED = "mixed"  # several topics in one request
    COMPARE = "compare"  # "A vs B"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Tier(str, Enum):
    TIER1 = "tier1"  # government, exchanges, filings
    TIER2 = "tier2"  # international wires, consultancies
    TIER3 = "tier3"  # vertical media, portals, unknown
    BANNED = "banned"  # self-media, content farms


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    PARTIAL = "partial"
    UNVERIFIED = "unverified"
    CONFLICT = "conflict"


class ConfidenceGrade(str, Enum):
    A = "A"
    B = "B"
    C = "C"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class Urgency(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"  # age > 0.8 * max_age
    CRITICAL = "critical"  # age > max_age


class DataType(str, Enum):
    PRICE = "price"
    INDUSTRY = "industry"
    POLICY = "policy"
    GENERAL = "general"


class ConstraintKind(str, Enum):
    HARD = "hard"
    SOFT = "soft"


class RuleKind(str, Enum):
    CONSTRAINT = "constraint"
    PREFERENCE = "preference"
    CORRECTION = "correction"


# --- Provider Types ---


class ModelCandidate(TypedDict):
    provider: str  # key into the provider registry
    model: str


class RoleResult(TypedDict):
    """Outcome of one role invocation.

    INVARIANT: success=False implies content == "" and error is not None.
    """

    role_id: str
    content: str
    model: str
    provider: str
    latency_ms: int
    used_fallback: bool
    fallback_level: int  # index of the candidate that answered, -1 on failure
    success: bool
    error: str | None
    timestamp: str  # ISO 8601
    topic_id: NotRequired[int]
    corrections: NotRequired[list[str]]
    blocked: NotRequired[bool]
    regenerations: NotRequired[int]


class CallLogEntry(TypedDict):
    role_id: str
    provider: str
    model: str
    success: bool
    latency_ms: int
    fallback: bool
    error: str | None
    ts: str


# --- Search Types ---


class SearchResult(TypedDict):
    id: str  # "sr-<hex>"
    url: str
    title: str
    snippet: str
    backend: str
    rank: int
    tier: Tier
    timestamp: str
    published: NotRequired[str]


# --- Verification Types ---


class TimeValidity(TypedDict):
    data_type: DataType
    date: str | None  # ISO date of the token nearest to the claim
    age_days: int | None
    max_age_days: int
    valid: bool
    urgency: Urgency
    warning: str | None


class VerificationGap(TypedDict):
    """Not enough independent evidence for a claim. Downgrades only."""

    claim: str
    reason: str
    sources_found: int


class DataTrace(TypedDict):
    claim: str
    value: float
    sources: list[str]  # URLs of non-banned sources
    tiers: dict[str, int]  # tier -> count
    verification_status: VerificationStatus
    confidence_grade: ConfidenceGrade
    confidence: float  # 0-100
    independence: float  # 0-100
    consistency: float  # 0-100
    recency: float  # 0-100
    is_estimate: bool
    gaps: list[VerificationGap]
    warnings: list[str]


class ContradictionFinding(TypedDict):
    label: str
    severity: Severity
    category: str  # logical | numerical | temporal | constraint | semantic
    evidence: list[str]


class ContradictionReport(TypedDict):
    findings: list[ContradictionFinding]
    critical: int
    warning: int
    info: int
    score: int  # max(0, 100 - 20*critical - 5*warning)


class VerificationReport(TypedDict):
    traces: list[DataTrace]
    time_checks: list[TimeValidity]
    contradictions: ContradictionReport
    sources_by_tier: dict[str, int]
    banned_warnings: list[str]


# --- Constraint Types ---


class ConstraintViolation(TypedDict):
    constraint_id: str
    kind: ConstraintKind
    severity: Severity
    value: float | str
    limit: float | str
    message: str
    blocking: bool
    corrected: bool


class PreCheck(TypedDict):
    passed: bool
    violations: list[ConstraintViolation]
    constraint_block: str  # "" when nothing needs to be injected


class PostCheck(TypedDict):
    content: str  # possibly corrected, possibly bannered
    violations: list[ConstraintViolation]
    corrections: list[str]
    blocked: bool
    regeneration_required: bool
    soft_score: int


# --- Learning Types ---


class FeedbackRecord(TypedDict):
    decision_id: str
    rating: int  # 1-5
    adopted: bool
    correction: str
    role_helpful: dict[str, bool]
    comment: NotRequired[str]
    query: NotRequired[str]
    timestamp: NotRequired[str]


class LearnedRule(TypedDict):
    id: str
    text: str
    kind: RuleKind
    roles: list[str]  # role ids, or ["all"]
    confidence: float  # 0-100
    usage_count: int
    success_rate: float  # 0-1
    created: str
    last_used: str


class CaseRecord(TypedDict):
    decision_id: str
    query: str
    rating: int
    adopted: bool
    key_factors: list[str]
    tags: list[str]
    timestamp: str


class RoleStats(TypedDict):
    total: int
    helpful: int
    weight: NotRequired[float]  # held until the opposite accuracy threshold is crossed


class LearningState(TypedDict):
    """Everything the learning store persists, as one JSON document."""

    version: int
    total_feedback: int
    correct_feedback: int
    role_stats: dict[str, RoleStats]
    rules: list[LearnedRule]
    cases: list[CaseRecord]
    history: list[dict[str, Any]]


# --- Orchestration Types ---


class Topic(TypedDict):
    id: int  # 1-based position in the request
    text: str
    mode: RunMode  # forward | reverse | compare
    depends_on: list[int]


# --- Progress Types ---


class ProgressEvent(TypedDict):
    progress: int  # 0-100
    current_status: str
    step_name: str


# --- Protocols ---


@runtime_checkable
class SearchBackend(Protocol):
    name: str

    async def search(self, query: str, *, num_results: int = 5) -> list[SearchResult]: ...

    async def health_check(self) -> bool: ...


@runtime_checkable
class KeyValueStore(Protocol):
    def save(self, key: str, value: Any) -> None: ...

    def load(self, key: str) -> Any | None: ...

    def list(self) -> list[str]: ...

    def delete(self, key: str) -> bool: ...


@runtime_checkable
class LearningRepository(Protocol):
    def open(self) -> LearningState: ...

    def flush(self, state: LearningState) -> None: ...
