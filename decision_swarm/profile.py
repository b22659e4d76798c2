"""Fixed user profile threaded into every role context.

Defaults describe the operator the system was built for; a YAML file can
override any field (see ``load_profile``).
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, fields, replace
from pathlib import Path

import yaml


@dataclass(frozen=True)
class UserProfile:
    cash: float = 30000
    loan: float = 100000
    monthly_reserve: float = 5000
    locations: tuple[str, ...] = ("安徽滁州明光市柳巷镇", "河南濮阳市濮阳县")
    location_keywords: tuple[str, ...] = ("滁州", "濮阳")
    sites: tuple[str, ...] = (
        "滁州柳巷镇厂房 350㎡ (租金 3万/年)",
        "滁州柳巷镇厂房 450㎡ (租金 4.8万/年)",
    )
    vehicle: str = "2014年比亚迪秦油电混动 (物流用)"
    partners: int = 3
    members: int = 10
    experience: tuple[str, ...] = ("2024-2025天津工商业光伏项目",)
    experience_keywords: tuple[str, ...] = ("光伏",)
    connections: tuple[str, ...] = ("三叔: 滁州琅琊区木门和铝合金门加工生产批发 (2016年起)",)
    compliance: str = "100%"

    @property
    def total_funds(self) -> float:
        return self.cash + self.loan

    def render(self) -> str:
        """Render the profile as the fixed context block given to every role."""
        lines = [
            "## 用户固定档案",
            f"- 资金: 现金 {self.cash / 10000:g}万 + 贷款 {self.loan / 10000:g}万 "
            f"= {self.total_funds / 10000:g}万, 每月预留 {self.monthly_reserve:g}元",
            f"- 地点: {' / '.join(self.locations)}",
            f"- 场地: {'; '.join(self.sites)}",
            f"- 车辆: {self.vehicle}",
            f"- 团队: {self.partners} 合伙人 + {self.members} 人团队",
            f"- 经验: {'; '.join(self.experience)}",
            f"- 人脉: {'; '.join(self.connections)}",
            f"- 合规要求: {self.compliance}",
        ]
        return "\n".join(lines)


def load_profile(path: str | Path | None) -> UserProfile:
    """Load a profile from YAML, falling back to defaults.

    Unknown keys are ignored. List values become tuples. A missing or
    unreadable file yields the default profile with a warning on stderr.
    """
    profile = UserProfile()
    if not path:
        return profile

    p = Path(path)
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        print(f"WARNING: could not read profile {p}: {exc}; using defaults", file=sys.stderr)
        return profile

    if not isinstance(data, dict):
        print(f"WARNING: profile {p} is not a mapping; using defaults", file=sys.stderr)
        return profile

    known = {f.name for f in fields(UserProfile)}
    overrides = {}
    for key, value in data.items():
        if key not in known:
            continue
        overrides[key] = tuple(value) if isinstance(value, list) else value
    return replace(profile, **overrides)
