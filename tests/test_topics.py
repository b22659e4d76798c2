"""Tests for topic splitting, routing, dependencies and batch scheduling."""

from __future__ import annotations

import pytest

from decision_swarm.contracts import RunMode, Topic
from decision_swarm.errors import DependencyCycleError
from decision_swarm.graph.topics import (
    CyclePolicy,
    build_dependencies,
    detect_topic_type,
    plan_topics,
    split_topics,
    topological_batches,
)


def _topic(tid: int, deps: list[int]) -> Topic:
    return Topic(id=tid, text=f"议题{tid}", mode=RunMode.FORWARD, depends_on=deps)


class TestDetectTopicType:
    def test_compare_wins(self):
        assert detect_topic_type("推荐的两个项目对比一下") == RunMode.COMPARE

    def test_forward(self):
        assert detect_topic_type("我有厂房能做什么") == RunMode.FORWARD

    def test_reverse(self):
        assert detect_topic_type("我想做塑料回收，行不行") == RunMode.REVERSE

    def test_english(self):
        assert detect_topic_type("Is a recycling plant viable?") == RunMode.REVERSE
        assert detect_topic_type("Recycling vs logistics") == RunMode.COMPARE

    def test_default_forward(self):
        assert detect_topic_type("你好") == RunMode.FORWARD


class TestSplitTopics:
    def test_arabic_numbered(self):
        text = "1. 分析塑料回收项目 2. 推荐滁州适合做什么 3. 对比议题1和议题2"
        assert split_topics(text) == ["分析塑料回收项目", "推荐滁州适合做什么", "对比议题1和议题2"]

    def test_numbered_lines(self):
        text = "请帮我看看：\n1、奶茶店可行性\n2、物流配送机会"
        assert split_topics(text) == ["奶茶店可行性", "物流配送机会"]

    def test_chinese_numerals(self):
        text = "一、分析木门加工项目；二、推荐光伏相关机会"
        assert split_topics(text) == ["分析木门加工项目", "推荐光伏相关机会"]

    def test_decimal_is_not_a_marker(self):
        text = "预算12.5万元能做什么项目"
        assert split_topics(text) == [text]

    def test_sentences(self):
        text = "我想在滁州做塑料回收加工项目。另外想了解濮阳的物流配送市场机会。"
        assert split_topics(text) == [
            "我想在滁州做塑料回收加工项目",
            "另外想了解濮阳的物流配送市场机会",
        ]

    def test_short_sentences_stay_one_topic(self):
        assert split_topics("能做什么？推荐下。") == ["能做什么？推荐下。"]


class TestBuildDependencies:
    def test_explicit_reference(self):
        topics = build_dependencies(["分析奶茶店", "在议题1基础上测算成本"])
        assert topics[0]["depends_on"] == []
        assert topics[1]["depends_on"] == [1]

    def test_two_digit_ids_not_confused(self):
        texts = [f"项目{i}" for i in range(1, 11)] + ["参考议题10的结论"]
        topics = build_dependencies(texts)
        assert topics[10]["depends_on"] == [10]

    def test_comparison_depends_on_all_earlier(self):
        topics = build_dependencies(["分析奶茶店", "推荐物流项目", "对比以上方案"])
        assert topics[2]["depends_on"] == [1, 2]
        assert topics[2]["mode"] == RunMode.COMPARE

    def test_ids_and_modes(self):
        topics = build_dependencies(["分析奶茶店可行性", "推荐物流项目"])
        assert [t["id"] for t in topics] == [1, 2]
        assert [t["mode"] for t in topics] == [RunMode.REVERSE, RunMode.FORWARD]


class TestTopologicalBatches:
    def test_independent_topics_share_a_batch(self):
        assert topological_batches([_topic(2, []), _topic(1, [])]) == [[1, 2]]

    def test_layers(self):
        topics = [_topic(1, []), _topic(2, []), _topic(3, [1, 2]), _topic(4, [3])]
        assert topological_batches(topics) == [[1, 2], [3], [4]]

    def test_every_topic_after_its_dependencies(self):
        topics = [_topic(1, [3]), _topic(2, [1]), _topic(3, []), _topic(4, [])]
        batches = topological_batches(topics)
        position = {tid: i for i, batch in enumerate(batches) for tid in batch}
        for t in topics:
            for dep in t["depends_on"]:
                assert position[dep] < position[t["id"]]
        assert sorted(tid for batch in batches for tid in batch) == [1, 2, 3, 4]

    def test_unknown_dependency_ignored(self):
        assert topological_batches([_topic(1, [9])]) == [[1]]

    def test_cycle_raises(self):
        topics = [_topic(1, []), _topic(2, [3]), _topic(3, [2])]
        with pytest.raises(DependencyCycleError) as excinfo:
            topological_batches(topics)
        assert excinfo.value.members == [2, 3]

    def test_cycle_force_lowest(self, capsys):
        topics = [_topic(1, []), _topic(2, [3]), _topic(3, [2])]
        batches = topological_batches(topics, policy=CyclePolicy.FORCE_LOWEST)
        assert batches == [[1], [2], [3]]
        assert "forcing topic 2" in capsys.readouterr().err


class TestPlanTopics:
    def test_end_to_end(self):
        topics, batches = plan_topics("1. 分析塑料回收项目 2. 推荐滁州适合做什么 3. 对比议题1和议题2")
        assert len(topics) == 3
        assert topics[2]["depends_on"] == [1, 2]
        assert batches == [[1, 2], [3]]
