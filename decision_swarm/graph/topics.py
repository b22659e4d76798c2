"""Multi-topic requests: splitting, routing, dependency DAG and batch order."""

from __future__ import annotations

import re
import sys
from enum import Enum

from decision_swarm.contracts import RunMode, Topic
from decision_swarm.errors import DependencyCycleError

_ARABIC_MARKER_RE = re.compile(r"(?:^|(?<=[\s。；;，,：:]))\d{1,2}[.、．](?!\d)", re.M)
_HAN_MARKER_RE = re.compile(r"(?:^|(?<=[\s。；;，,：:]))[一二三四五六七八九十][、．.]", re.M)
_SENTENCE_SPLIT_RE = re.compile(r"[。！？!?]")
_MIN_SENTENCE_LEN = 10

COMPARE_KEYWORDS: tuple[str, ...] = ("对比", "比较", "哪个好", "区别", "vs", "compare", "versus")
FORWARD_KEYWORDS: tuple[str, ...] = (
    "能做什么", "推荐", "有什么机会", "适合做什么", "项目推荐",
    "what can i do", "recommend", "opportunit",
)
REVERSE_KEYWORDS: tuple[str, ...] = (
    "我想做", "分析", "行不行", "能不能做", "可行性", "项目",
    "feasib", "should i", "viable",
)

_COMPARISON_DEP_RE = re.compile(r"对比|比较|\bcompare\b|\bvs\.?\b|\bversus\b", re.I)


class CyclePolicy(str, Enum):
    RAISE = "raise"
    FORCE_LOWEST = "force_lowest"  # break the cycle at the lowest remaining id


def detect_topic_type(text: str) -> RunMode:
    """Route one topic. Comparison wins over forward, forward over reverse."""
    lowered = text.lower()
    if any(k in lowered for k in COMPARE_KEYWORDS):
        return RunMode.COMPARE
    if any(k in lowered for k in FORWARD_KEYWORDS):
        return RunMode.FORWARD
    if any(k in lowered for k in REVERSE_KEYWORDS):
        return RunMode.REVERSE
    return RunMode.FORWARD


def split_topics(text: str) -> list[str]:
    """Split a request into topic texts.

    Numbered items ("1." / "2、" or "一、" / "二、") take precedence; otherwise
    sentences longer than a few characters each become a topic. Always
    returns at least one topic.
    """
    for pattern in (_ARABIC_MARKER_RE, _HAN_MARKER_RE):
        markers = list(pattern.finditer(text))
        if len(markers) < 2:
            continue
        bounds = [m.end() for m in markers]
        ends = [m.start() for m in markers[1:]] + [len(text)]
        items = [text[start:end].strip(" \n\t；;，,") for start, end in zip(bounds, ends)]
        items = [i for i in items if i]
        if len(items) >= 2:
            return items

    sentences = [s.strip() for s in _SENTENCE_SPLIT_RE.split(text)]
    sentences = [s for s in sentences if len(s) > _MIN_SENTENCE_LEN]
    if len(sentences) >= 2:
        return sentences
    return [text.strip()]


def _references(text: str, other_id: int) -> bool:
    pattern = rf"议题\s*{other_id}(?!\d)|第{other_id}个|\btopic\s*#?{other_id}\b"
    return re.search(pattern, text, re.I) is not None


def build_dependencies(texts: list[str]) -> list[Topic]:
    """Topics with ids 1..n, a route each, and their explicit dependencies.

    A topic depends on every topic it names ("议题2", "第2个", "topic 2"),
    and a topic using comparison language depends on every earlier topic.
    """
    topics: list[Topic] = []
    for index, text in enumerate(texts, start=1):
        deps: set[int] = set()
        for other in range(1, len(texts) + 1):
            if other != index and _references(text, other):
                deps.add(other)
        if _COMPARISON_DEP_RE.search(text):
            deps.update(range(1, index))
        topics.append(
            Topic(id=index, text=text, mode=detect_topic_type(text), depends_on=sorted(deps))
        )
    return topics


def topological_batches(
    topics: list[Topic], *, policy: CyclePolicy = CyclePolicy.RAISE
) -> list[list[int]]:
    """Kahn layering: each batch holds every topic whose dependencies are done.

    Ids inside a batch are sorted. On a cycle, RAISE raises
    DependencyCycleError naming the stuck topics; FORCE_LOWEST schedules the
    lowest stuck id alone and carries on.
    """
    known = {t["id"] for t in topics}
    deps = {t["id"]: {d for d in t["depends_on"] if d in known} for t in topics}
    done: set[int] = set()
    remaining = set(known)
    batches: list[list[int]] = []

    while remaining:
        ready = sorted(tid for tid in remaining if deps[tid] <= done)
        if not ready:
            if policy == CyclePolicy.RAISE:
                raise DependencyCycleError(sorted(remaining))
            forced = min(remaining)
            print(
                f"WARNING: topic dependency cycle among {sorted(remaining)}; "
                f"forcing topic {forced}",
                file=sys.stderr,
            )
            ready = [forced]
        batches.append(ready)
        done.update(ready)
        remaining.difference_update(ready)

    return batches


def plan_topics(
    text: str, *, policy: CyclePolicy = CyclePolicy.RAISE
) -> tuple[list[Topic], list[list[int]]]:
    topics = build_dependencies(split_topics(text))
    return topics, topological_batches(topics, policy=policy)
