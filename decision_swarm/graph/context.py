"""RoleContext: the immutable, versioned input handed to each role."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass

from decision_swarm.contracts import SearchResult


@dataclass(frozen=True)
class RoleContext:
    """Everything a role sees besides its own system prompt.

    Never mutated: ``extend`` and ``with_prior`` return a new context with
    ``version`` bumped, so each RoleResult can be traced to the exact
    context it was produced from.
    """

    request: str
    profile: str = ""
    topic: str = ""
    snippets: tuple[SearchResult, ...] = ()
    prior: tuple[tuple[str, str], ...] = ()  # (label, content) of earlier successful roles
    constraint_block: str = ""
    guidance: str = ""  # learned rules and similar cases
    version: int = 1

    def extend(self, **changes) -> RoleContext:
        return dataclasses.replace(self, version=self.version + 1, **changes)

    def with_prior(self, label: str, content: str) -> RoleContext:
        return self.extend(prior=self.prior + ((label, content),))

    def render(self, *, instruction: str = "") -> str:
        parts: list[str] = []
        if self.profile:
            parts.append(self.profile)
        parts.append(f"## 用户需求\n{self.request}")
        if self.topic and self.topic != self.request:
            parts.append(f"## 当前议题\n{self.topic}")
        if self.snippets:
            lines = ["## 检索资料"]
            for i, s in enumerate(self.snippets, start=1):
                lines.append(f"[{i}] {s['title']} ({s['url']})\n{s['snippet']}")
            parts.append("\n".join(lines))
        if self.prior:
            lines = ["## 前序分析"]
            for label, content in self.prior:
                lines.append(f"### {label}\n{content}")
            parts.append("\n\n".join(lines))
        if self.guidance:
            parts.append(self.guidance)
        if self.constraint_block:
            parts.append(self.constraint_block)
        if instruction:
            parts.append(instruction)
        return "\n\n".join(parts)
