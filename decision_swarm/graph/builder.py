"""StateGraph construction: wires intent, research, roles, verification and report."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from decision_swarm.backends.aggregator import SearchGatewayAggregator
from decision_swarm.config import Settings
from decision_swarm.constraints.enforcer import ConstraintEnforcer
from decision_swarm.contracts import (
    ProgressEvent,
    RoleResult,
    RunMode,
    Topic,
    VerificationReport,
)
from decision_swarm.graph.context import RoleContext
from decision_swarm.graph.run import WorkflowRun
from decision_swarm.graph.state import DecisionState
from decision_swarm.graph.topics import (
    CyclePolicy,
    build_dependencies,
    detect_topic_type,
    split_topics,
    topological_batches,
)
from decision_swarm.learning.store import LearningStore
from decision_swarm.profile import UserProfile
from decision_swarm.providers.caller import ProviderFallbackCaller, extract_json
from decision_swarm.reporting.renderer import render_report
from decision_swarm.roles import (
    DECISION_ROLE,
    INTENT_ROLE,
    MODE_ROLES,
    REVIEW_ROLES,
    TOPIC_ROLES,
    get_role,
)
from decision_swarm.verification.pipeline import VerificationPipeline
from decision_swarm.verification.sources import SourceClassifier

REVIEW_INSTRUCTIONS: dict[str, str] = {
    "quality_verifier": "请验证以上分析结果的数据真实性，指出无法核实或相互矛盾的数据。",
    "copilot": "请检查以上分析流程的完整性和一致性，列出遗漏的环节。",
}
DECISION_INSTRUCTION = "请基于以上全部分析给出最终决策建议，所有金额必须在硬约束范围内。"

# Role sequence progress runs from 20% to 78%
_ROLES_START = 20
_ROLES_END = 78


def _get_stream_writer() -> callable | None:
    """The stream writer of the running graph, or None outside a graph run."""
    try:
        from langgraph.config import get_stream_writer

        return get_stream_writer()
    except (ImportError, RuntimeError, KeyError):
        return None


def _emit(run: WorkflowRun, progress: int, status: str, step: str) -> None:
    event = ProgressEvent(progress=progress, current_status=status, step_name=step)
    run.progress.append(event)
    writer = _get_stream_writer()
    if writer:
        writer(event)


def _role_progress(index: int, total: int) -> int:
    if total <= 1:
        return _ROLES_START
    return _ROLES_START + round((_ROLES_END - _ROLES_START) * index / (total - 1))


def _failed_result(role_id: str, exc: BaseException) -> RoleResult:
    return RoleResult(
        role_id=role_id,
        content="",
        model="",
        provider="",
        latency_ms=0,
        used_fallback=False,
        fallback_level=-1,
        success=False,
        error=f"{type(exc).__name__}: {exc}",
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


def _value(item) -> str:
    return getattr(item, "value", item)


def verification_brief(report: VerificationReport) -> str:
    """Short text summary of a verification report, fed to the quality verifier."""
    lines = ["## 自动核查结果"]
    for trace in report["traces"]:
        lines.append(
            f"- {trace['claim'][:60]}：{_value(trace['verification_status'])}"
            f"（等级 {_value(trace['confidence_grade'])}，置信度 {trace['confidence']:.0f}）"
        )
    for check in report["time_checks"]:
        if check["warning"]:
            lines.append(f"- 时效：{check['warning']}")
    for finding in report["contradictions"]["findings"]:
        lines.append(f"- 矛盾（{_value(finding['severity'])}）：{finding['label']}")
    if report["banned_warnings"]:
        lines.append(f"- 已排除禁用来源 {len(report['banned_warnings'])} 个")
    return "\n".join(lines)


def parse_intent(content: str) -> dict:
    """Best-effort parse of the intent analyst's JSON. Returns {} when unusable."""
    raw = extract_json(content)
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def build_graph(
    settings: Settings,
    *,
    run: WorkflowRun,
    caller: ProviderFallbackCaller,
    enforcer: ConstraintEnforcer,
    aggregator: SearchGatewayAggregator | None = None,
    pipeline: VerificationPipeline | None = None,
    learning: LearningStore | None = None,
    profile: UserProfile | None = None,
    cycle_policy: CyclePolicy = CyclePolicy.RAISE,
    max_regenerations: int = 1,
) -> CompiledStateGraph:
    """Build and compile the decision graph for one run.

    Nodes close over ``run`` and record role results on it directly, so the
    results survive a failure in a later node. Build a fresh graph per run.
    """
    pipeline = pipeline or VerificationPipeline()
    profile = profile or UserProfile()
    profile_text = profile.render()

    # --- Role execution (shared by every node that calls a role) ---

    def guidance_for(role_id: str, query: str) -> str:
        if learning is None:
            return ""
        return learning.optimize_prompt(role_id, "", query=query).strip()

    async def execute_role(
        role_id: str,
        context: RoleContext,
        *,
        instruction: str = "",
        topic_id: int | None = None,
    ) -> RoleResult:
        """Call a role through the fallback chain and enforce constraints on its output.

        Output needing regeneration is retried with the violations appended to
        the constraint block, at most ``max_regenerations`` times. If a retry
        fails outright, the last checked output is kept.
        """
        role = get_role(role_id)
        best: tuple[RoleResult, dict] | None = None
        regenerations = 0

        while True:
            result = await caller.call(
                role.id,
                role.prompt,
                context.render(instruction=instruction),
                list(role.candidates),
                timeout=settings.provider_timeout,
            )
            if not result["success"]:
                break
            check = enforcer.post_check(result["content"])
            best = (result, check)
            if not check["regeneration_required"] or regenerations >= max_regenerations:
                break
            regenerations += 1
            context = context.extend(constraint_block=enforcer.constraint_block(check["violations"]))

        if best is not None:
            result, check = best
            result["content"] = check["content"]
            result["corrections"] = check["corrections"]
            result["blocked"] = check["blocked"]
        result["regenerations"] = regenerations
        if topic_id is not None:
            result["topic_id"] = topic_id
        return result

    def base_context(state: DecisionState) -> RoleContext:
        return RoleContext(
            request=state["request"],
            profile=profile_text,
            snippets=tuple(state.get("search_results", [])[: settings.context_snippets]),
            constraint_block=state.get("constraint_block", ""),
        )

    def prior_outputs(run: WorkflowRun) -> tuple[tuple[str, str], ...]:
        """Every successful analysis so far, labelled, intent analysis excluded."""
        prior = []
        for key, result in run.successful():
            if result["role_id"] == INTENT_ROLE:
                continue
            label = get_role(result["role_id"]).name
            if "topic_id" in result:
                label = f"议题{result['topic_id']} · {label}"
            prior.append((label, result["content"]))
        return tuple(prior)

    # --- Node functions (closures over the collaborators) ---

    async def analyze_intent_node(state: DecisionState) -> dict:
        _emit(run, 5, "正在分析需求意图...", "analyze_intent")
        request = state["request"]

        pre = enforcer.pre_check(request)
        run.pre_check = pre

        context = RoleContext(request=request, profile=profile_text)
        result = await execute_role(INTENT_ROLE, context)
        run.record(INTENT_ROLE, result)
        intent = parse_intent(result["content"]) if result["success"] else {}

        mode: RunMode | None = None
        if state.get("mode"):
            mode = RunMode(state["mode"])
        elif intent.get("mode") in {m.value for m in RunMode}:
            mode = RunMode(intent["mode"])

        texts = intent.get("topics")
        if not (isinstance(texts, list) and all(isinstance(t, str) and t for t in texts)):
            texts = split_topics(request)

        if mode is None:
            mode = RunMode.MIXED if len(texts) > 1 else detect_topic_type(request)

        if mode == RunMode.MIXED and len(texts) > 1:
            topics = build_dependencies(texts)
            batches = topological_batches(topics, policy=cycle_policy)
        else:
            topic_mode = detect_topic_type(request) if mode == RunMode.MIXED else mode
            topics = [Topic(id=1, text=request, mode=topic_mode, depends_on=[])]
            batches = [[1]]

        project = intent.get("project") if isinstance(intent.get("project"), str) else ""
        run.mode = mode
        run.project = project
        run.topics = topics
        run.batches = batches

        return {
            "mode": mode.value,
            "project": project,
            "topics": topics,
            "batches": batches,
            "constraint_block": pre["constraint_block"],
            "completed_roles": [INTENT_ROLE],
        }

    async def research_node(state: DecisionState) -> dict:
        _emit(run, 10, "正在搜索验证数据...", "research")
        if aggregator is None:
            return {"search_results": []}

        query = (state.get("project") or state["request"])[:200]
        results = await aggregator.search(query)

        run.search_results = results
        run.metadata["sources_by_tier"] = SourceClassifier.tier_counts(results)
        run.metadata["banned_warnings"] = aggregator.banned_warnings
        return {"search_results": results}

    async def execute_roles_node(state: DecisionState) -> dict:
        topics = state["topics"]
        base = base_context(state)
        completed: list[str] = []

        if len(topics) == 1:
            topic = topics[0]
            mode = RunMode(state["mode"])
            role_ids = MODE_ROLES[topic["mode"] if mode == RunMode.MIXED else mode]
            context = base
            for index, role_id in enumerate(role_ids):
                name = get_role(role_id).name
                _emit(run, _role_progress(index, len(role_ids)), f"正在执行 {name}...", role_id)
                step_context = context.extend(guidance=guidance_for(role_id, state["request"]))
                result = await execute_role(role_id, step_context)
                run.record(role_id, result)
                completed.append(role_id)
                if result["success"]:
                    context = context.with_prior(name, result["content"])
            return {"completed_roles": completed, "has_analysis": bool(prior_outputs(run))}

        by_id = {t["id"]: t for t in topics}
        batches = state["batches"]
        for index, batch in enumerate(batches):
            _emit(
                run,
                _role_progress(index, len(batches)),
                f"正在并行分析议题 {', '.join(str(t) for t in batch)}...",
                f"batch_{index + 1}",
            )
            keys: list[str] = []
            role_ids: list[str] = []
            calls = []
            for topic_id in batch:
                topic = by_id[topic_id]
                dep_prior = tuple(
                    (label, content)
                    for label, content in prior_outputs(run)
                    if any(label.startswith(f"议题{d} ") for d in topic["depends_on"])
                )
                topic_context = base.extend(topic=topic["text"], prior=dep_prior)
                for role_id in TOPIC_ROLES[topic["mode"]]:
                    keys.append(f"t{topic_id}.{role_id}")
                    role_ids.append(role_id)
                    calls.append(
                        execute_role(
                            role_id,
                            topic_context.extend(guidance=guidance_for(role_id, topic["text"])),
                            topic_id=topic_id,
                        )
                    )

            # Join barrier: the whole batch settles before the next one starts
            outcomes = await asyncio.gather(*calls, return_exceptions=True)
            for key, role_id, outcome in zip(keys, role_ids, outcomes):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    outcome = _failed_result(role_id, outcome)
                    outcome["topic_id"] = int(key[1 : key.index(".")])
                run.record(key, outcome)
                completed.append(key)

        return {"completed_roles": completed, "has_analysis": bool(prior_outputs(run))}

    async def verify_node(state: DecisionState) -> dict:
        _emit(run, 82, "正在交叉验证数据...", "verify")
        texts = [r["content"] for _, r in run.successful() if r["role_id"] != INTENT_ROLE]
        report = pipeline.run(
            texts,
            state.get("search_results", []),
            banned_warnings=aggregator.banned_warnings if aggregator else None,
        )
        run.verification = report
        if report["banned_warnings"]:
            run.metadata["banned_warnings"] = report["banned_warnings"]
        return {"verification": report}

    async def quality_review_node(state: DecisionState) -> dict:
        completed: list[str] = []
        for progress, role_id in zip((85, 88), REVIEW_ROLES):
            _emit(run, progress, f"正在执行 {get_role(role_id).name}...", role_id)
            context = base_context(state).extend(prior=prior_outputs(run))
            if role_id == "quality_verifier" and state.get("verification"):
                context = context.extend(guidance=verification_brief(state["verification"]))
            result = await execute_role(
                role_id, context, instruction=REVIEW_INSTRUCTIONS.get(role_id, "")
            )
            run.record(role_id, result)
            completed.append(role_id)
        return {"completed_roles": completed}

    async def decide_node(state: DecisionState) -> dict:
        _emit(run, 92, "正在生成最终决策...", DECISION_ROLE)
        context = base_context(state).extend(
            prior=prior_outputs(run),
            guidance=guidance_for(DECISION_ROLE, state["request"]),
        )
        result = await execute_role(DECISION_ROLE, context, instruction=DECISION_INSTRUCTION)
        run.record(DECISION_ROLE, result)
        run.decision = result["content"] if result["success"] else ""
        return {"decision": run.decision, "completed_roles": [DECISION_ROLE]}

    async def report_node(state: DecisionState) -> dict:
        run.report = render_report(run)
        _emit(run, 100, "分析完成", "report")
        return {"final_report": run.report}

    # --- Routing ---

    def should_verify(state: DecisionState) -> str:
        """Skip verification and review when no analysis role succeeded."""
        return "verify" if state.get("has_analysis") else "report"

    # --- Build graph ---

    graph = StateGraph(DecisionState)

    graph.add_node("analyze_intent", analyze_intent_node)
    graph.add_node("research", research_node)
    graph.add_node("execute_roles", execute_roles_node)
    graph.add_node("verify", verify_node)
    graph.add_node("quality_review", quality_review_node)
    graph.add_node("decide", decide_node)
    graph.add_node("report", report_node)

    graph.set_entry_point("analyze_intent")
    graph.add_edge("analyze_intent", "research")
    graph.add_edge("research", "execute_roles")
    graph.add_conditional_edges(
        "execute_roles",
        should_verify,
        {"verify": "verify", "report": "report"},
    )
    graph.add_edge("verify", "quality_review")
    graph.add_edge("quality_review", "decide")
    graph.add_edge("decide", "report")
    graph.add_edge("report", END)

    return graph.compile()
