"""Markdown decision report with YAML frontmatter."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import yaml

from decision_swarm.roles import DECISION_ROLE, INTENT_ROLE, ROLES

if TYPE_CHECKING:
    from decision_swarm.graph.run import WorkflowRun

STATUS_LABELS: dict[str, str] = {
    "verified": "已验证",
    "partial": "部分验证",
    "unverified": "未验证",
    "conflict": "数据冲突",
}
SEVERITY_LABELS: dict[str, str] = {
    "critical": "严重",
    "warning": "警告",
    "info": "提示",
}


def _value(item) -> str:
    return getattr(item, "value", item)


def _role_label(key: str, result: dict) -> str:
    role = ROLES.get(result["role_id"])
    name = role.name if role else result["role_id"]
    if "topic_id" in result:
        return f"议题{result['topic_id']} · {name}"
    return name


def _render_verification(report: dict) -> list[str]:
    lines = ["## 数据验证", ""]

    traces = report.get("traces", [])
    if traces:
        lines.append("| 数据点 | 状态 | 等级 | 置信度 | 来源数 |")
        lines.append("|---|---|---|---|---|")
        for t in traces:
            status = _value(t["verification_status"])
            claim = t["claim"].replace("|", "/").replace("\n", " ")[:60]
            lines.append(
                f"| {claim} | {STATUS_LABELS.get(status, status)} | "
                f"{_value(t['confidence_grade'])} | {t['confidence']:.0f} | {len(t['sources'])} |"
            )
        lines.append("")
        gaps = [g for t in traces for g in t.get("gaps", [])]
        if gaps:
            lines.append("**验证缺口**:")
            for g in gaps:
                lines.append(f"- {g['claim'][:60]}: {g['reason']}")
            lines.append("")
    else:
        lines.append("未提取到可验证的数据点。")
        lines.append("")

    stale = [c for c in report.get("time_checks", []) if c.get("warning")]
    if stale:
        lines.append("### 时效性")
        lines.append("")
        for c in stale:
            urgency = _value(c["urgency"])
            lines.append(f"- [{SEVERITY_LABELS.get(urgency, urgency)}] {c['warning']}")
        lines.append("")

    contradictions = report.get("contradictions") or {}
    findings = contradictions.get("findings", [])
    lines.append("### 矛盾检测")
    lines.append("")
    lines.append(f"- **一致性评分**: {contradictions.get('score', 100)}")
    for f in findings:
        severity = _value(f["severity"])
        lines.append(
            f"- [{SEVERITY_LABELS.get(severity, severity)}] {f['label']} ({f['category']})"
        )
    lines.append("")

    tiers = report.get("sources_by_tier", {})
    if tiers:
        parts = [f"{k}: {v}" for k, v in sorted(tiers.items())]
        lines.append(f"- **来源分级**: {', '.join(parts)}")
    banned = report.get("banned_warnings", [])
    if banned:
        lines.append(f"- **已排除禁用来源**: {len(banned)}")
        for w in banned:
            lines.append(f"  - {w}")
    lines.append("")
    return lines


def render_report(run: WorkflowRun) -> str:
    """Render a full Markdown decision report from a (possibly partial) run."""
    meta = run.metadata
    succeeded = run.successful()
    failed = [(k, r) for k, r in run.results.items() if not r["success"]]

    frontmatter = {
        "title": f"决策报告: {run.input[:60]}",
        "run_id": run.id,
        "generated": datetime.now(timezone.utc).isoformat(),
        "mode": _value(run.mode),
        "status": _value(run.status),
        "topics": len(run.topics),
        "roles_succeeded": len(succeeded),
        "roles_failed": len(failed),
        "model_calls": meta["model_calls"],
        "fallback_count": meta["fallback_count"],
        "total_latency_ms": meta["total_latency_ms"],
        "corrections": len(meta["corrections"]),
        "blocking_violations": len(meta["blocking_violations"]),
    }

    lines: list[str] = []
    lines.append("---")
    lines.append(
        yaml.dump(frontmatter, default_flow_style=False, sort_keys=False, allow_unicode=True).strip()
    )
    lines.append("---")
    lines.append("")

    lines.append(f"# {run.project or run.input}")
    lines.append("")

    # --- Decision ---
    decision = run.results.get(DECISION_ROLE)
    lines.append("## 最终决策")
    lines.append("")
    if decision and decision["success"]:
        lines.append(decision["content"])
    else:
        lines.append("_未能生成最终决策。_")
    lines.append("")

    # --- Topics ---
    if len(run.topics) > 1:
        lines.append("## 议题")
        lines.append("")
        for t in run.topics:
            deps = f"（依赖 {', '.join(str(d) for d in t['depends_on'])}）" if t["depends_on"] else ""
            lines.append(f"{t['id']}. [{_value(t['mode'])}] {t['text']}{deps}")
        lines.append("")

    # --- Role sections, execution order ---
    for key, result in succeeded:
        if result["role_id"] in (INTENT_ROLE, DECISION_ROLE):
            continue
        lines.append(f"## {_role_label(key, result)}")
        lines.append("")
        lines.append(result["content"])
        lines.append("")
        lines.append(f"_模型: {result['provider']}/{result['model']}，耗时 {result['latency_ms']}ms_")
        lines.append("")

    # --- Verification ---
    if run.verification:
        lines.extend(_render_verification(run.verification))

    # --- Constraints ---
    if meta["corrections"] or meta["blocking_violations"]:
        lines.append("## 约束检查")
        lines.append("")
        for note in meta["corrections"]:
            lines.append(f"- 已修正: {note}")
        for key in meta["blocking_violations"]:
            lines.append(f"- ⚠️ 阻断: {key} 的输出违反硬约束")
        lines.append("")

    # --- Failures ---
    if failed:
        lines.append("## 执行失败的角色")
        lines.append("")
        for key, result in failed:
            lines.append(f"- {_role_label(key, result)}: {result['error']}")
        lines.append("")

    if run.error:
        lines.append("## 运行错误")
        lines.append("")
        lines.append(run.error)
        lines.append("")

    return "\n".join(lines)
