"""Role catalogue: personas, prompts, and ordered model candidates."""

from __future__ import annotations

from dataclasses import dataclass

from decision_swarm.contracts import ModelCandidate, RunMode


@dataclass(frozen=True)
class RoleSpec:
    id: str
    name: str
    description: str
    prompt: str
    candidates: tuple[ModelCandidate, ...]


def _c(provider: str, model: str) -> ModelCandidate:
    return ModelCandidate(provider=provider, model=model)


_R1 = (
    _c("siliconflow", "deepseek-reasoner"),
    _c("deepseek", "deepseek-reasoner"),
    _c("zhipu", "glm-4"),
)
_V3 = (
    _c("siliconflow", "deepseek-v3"),
    _c("deepseek", "deepseek-chat"),
    _c("baidu", "ernie-4.5-turbo-128k"),
)

_ROLE_LIST: tuple[RoleSpec, ...] = (
    RoleSpec(
        id="intent_analyst",
        name="战略入口分析师",
        description="判断用户意图，识别正推/倒推/混合/对比模式",
        prompt=(
            "你是战略入口分析师，负责判断用户意图。\n"
            "- \"我想做XX\"、\"分析XX项目\"、\"XX行不行\" → reverse\n"
            "- \"我能做什么\"、\"推荐项目\"、\"有什么机会\" → forward\n"
            "- 包含多个编号议题 → mixed\n"
            "- 对比两个及以上方案 → compare\n"
            '只输出JSON: {"mode": "...", "project": "...", "topics": ["..."]}'
        ),
        candidates=_R1,
    ),
    RoleSpec(
        id="market_analyst",
        name="宏观市场分析师",
        description="分析行业大趋势、市场容量、增长率",
        prompt=(
            "你是宏观市场分析师。分析市场规模(近3年)、增长率、近6个月政策、竞争格局，"
            "给出行业评级(A/B/C)。标注数据来源与日期；禁用自媒体与未署名来源。"
        ),
        candidates=_V3,
    ),
    RoleSpec(
        id="chief_researcher",
        name="首席研究员",
        description="深度研究项目或资源匹配",
        prompt=(
            "你是首席研究员。评估项目可行性、资源匹配度、滁州+濮阳双基地的地域优势、"
            "供应链协同可能性。标注数据来源与置信度(A/B/C)。"
        ),
        candidates=(
            _c("siliconflow", "moonshotai/kimi-k2.5"),
            _c("kimi", "moonshot-k2.5"),
            _c("aliyun", "qwen3-235b"),
        ),
    ),
    RoleSpec(
        id="quality_verifier",
        name="质量验证员",
        description="交叉验证数据真实性，A/B/C评级",
        prompt=(
            "你是质量验证员。根据给出的验证摘要，检查来源可靠性、时效性、多来源一致性、"
            "逻辑自洽，逐条给出A/B/C评级和需要修正的结论。"
        ),
        candidates=_R1,
    ),
    RoleSpec(
        id="financial_analyst",
        name="财务建模师",
        description="财务预测、成本分析、ROI计算",
        prompt=(
            "你是财务建模师。给出启动投资明细、月度成本、收入预测、回本周期。"
            "投资总额不得超过用户可用资金，回本周期不得超过约束上限。"
        ),
        candidates=(
            _c("siliconflow", "moonshotai/kimi-k2.5"),
            _c("kimi", "moonshot-k2.5"),
            _c("aliyun", "qwen3-max"),
        ),
    ),
    RoleSpec(
        id="industry_analyst",
        name="行业分析师",
        description="竞争格局、政策风险、技术门槛分析",
        prompt="你是行业分析师。分析竞争格局、政策风险、技术门槛、上下游关系。",
        candidates=(
            _c("baidu", "ernie-4.5-turbo-128k"),
            _c("siliconflow", "deepseek-v3"),
            _c("aliyun", "qwen3-max"),
        ),
    ),
    RoleSpec(
        id="risk_assessor",
        name="风险评估师",
        description="风险识别、合规审查、风险矩阵",
        prompt="你是风险评估师。识别市场、财务、运营、合规风险，给出风险矩阵与缓解措施。",
        candidates=(
            _c("zhipu", "glm-4"),
            _c("siliconflow", "deepseek-v3"),
            _c("aliyun", "qwen3-max"),
        ),
    ),
    RoleSpec(
        id="innovation_advisor",
        name="创新顾问",
        description="挖掘非显而易见机会、创新方案",
        prompt="你是创新顾问。结合用户资源挖掘非显而易见的机会与轻资产创新方案。",
        candidates=(
            _c("aliyun", "qwen3-235b"),
            _c("siliconflow", "moonshotai/kimi-k2.5"),
            _c("zhipu", "glm-4"),
        ),
    ),
    RoleSpec(
        id="execution_planner",
        name="执行路径规划师",
        description="制定执行方案、SOP设计",
        prompt="你是执行路径规划师。给出分阶段执行计划、里程碑、SOP与资源分配。",
        candidates=_R1,
    ),
    RoleSpec(
        id="copilot",
        name="Copilot",
        description="流程检查、逻辑一致性验证",
        prompt="你是流程检查员。检查前面各角色输出之间的逻辑一致性，列出冲突与遗漏。",
        candidates=(
            _c("zhipu", "glm-4-flash"),
            _c("aliyun", "qwen3-8b"),
            _c("siliconflow", "deepseek-v3"),
        ),
    ),
    RoleSpec(
        id="decision_advisor",
        name="决策顾问",
        description="综合裁决，三维度决策输出",
        prompt=(
            "你是决策顾问。综合所有角色输出与验证结果，从可行性、收益、风险三个维度给出"
            "最终决策(做/不做/有条件做)、投资额、回本周期与关键前提。"
        ),
        candidates=_R1,
    ),
)

ROLES: dict[str, RoleSpec] = {role.id: role for role in _ROLE_LIST}

# Mode-specific role sequences (executed before verification and decision)
MODE_ROLES: dict[RunMode, tuple[str, ...]] = {
    RunMode.FORWARD: (
        "chief_researcher",
        "market_analyst",
        "industry_analyst",
        "financial_analyst",
        "risk_assessor",
        "innovation_advisor",
        "execution_planner",
    ),
    RunMode.REVERSE: (
        "market_analyst",
        "industry_analyst",
        "chief_researcher",
        "financial_analyst",
        "risk_assessor",
        "innovation_advisor",
        "execution_planner",
    ),
    RunMode.COMPARE: (
        "chief_researcher",
        "market_analyst",
        "financial_analyst",
        "risk_assessor",
    ),
}

# Shorter per-topic sequences used when several topics run in one batch
TOPIC_ROLES: dict[RunMode, tuple[str, ...]] = {
    RunMode.FORWARD: ("chief_researcher", "market_analyst", "financial_analyst"),
    RunMode.REVERSE: ("market_analyst", "industry_analyst", "financial_analyst", "risk_assessor"),
    RunMode.COMPARE: ("chief_researcher", "financial_analyst"),
}

REVIEW_ROLES: tuple[str, ...] = ("quality_verifier", "copilot")
DECISION_ROLE = "decision_advisor"
INTENT_ROLE = "intent_analyst"


def get_role(role_id: str) -> RoleSpec:
    """Look up a role by id. Raises KeyError for unknown roles."""
    if role_id not in ROLES:
        raise KeyError(f"Unknown role: {role_id!r}. Known: {sorted(ROLES)}")
    return ROLES[role_id]
