"""RoleOrchestrator: runs one request through the decision graph."""

from __future__ import annotations

import inspect
import sys
from typing import Any, Awaitable, Callable

from decision_swarm.backends.aggregator import SearchGatewayAggregator
from decision_swarm.config import Settings
from decision_swarm.constraints.enforcer import ConstraintEnforcer
from decision_swarm.contracts import ProgressEvent, RunMode, RunStatus
from decision_swarm.graph.builder import build_graph
from decision_swarm.graph.run import WorkflowRun
from decision_swarm.graph.topics import CyclePolicy
from decision_swarm.learning.store import LearningStore
from decision_swarm.profile import UserProfile
from decision_swarm.providers.caller import ProviderFallbackCaller
from decision_swarm.verification.pipeline import VerificationPipeline

ProgressCallback = Callable[[ProgressEvent], "Awaitable[None] | None"]
UpdateCallback = Callable[[dict[str, Any]], None]


class RoleOrchestrator:
    """Drives a WorkflowRun from pending to completed or failed.

    Every exception raised inside the graph is caught here: the run is
    marked failed, the error recorded, and the role results gathered so far
    are kept on the returned run.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        caller: ProviderFallbackCaller,
        enforcer: ConstraintEnforcer,
        aggregator: SearchGatewayAggregator | None = None,
        learning: LearningStore | None = None,
        profile: UserProfile | None = None,
        pipeline: VerificationPipeline | None = None,
        cycle_policy: CyclePolicy = CyclePolicy.RAISE,
        max_regenerations: int | None = None,
    ) -> None:
        self.settings = settings
        self.caller = caller
        self.enforcer = enforcer
        self.aggregator = aggregator
        self.learning = learning
        self._graph_options = dict(
            caller=caller,
            enforcer=enforcer,
            aggregator=aggregator,
            pipeline=pipeline,
            learning=learning,
            profile=profile,
            cycle_policy=CyclePolicy(cycle_policy),
            max_regenerations=(
                settings.max_regenerations if max_regenerations is None else max_regenerations
            ),
        )

    def build(self, run: WorkflowRun):
        """Compile a graph bound to ``run``."""
        return build_graph(self.settings, run=run, **self._graph_options)

    async def run(
        self,
        text: str,
        *,
        mode: RunMode | str | None = None,
        on_progress: ProgressCallback | None = None,
        on_update: UpdateCallback | None = None,
    ) -> WorkflowRun:
        forced = RunMode(mode) if mode else None
        run = WorkflowRun(input=text, mode=forced or RunMode.FORWARD)
        run.transition(RunStatus.RUNNING)

        input_state = {
            "request": text,
            "mode": forced.value if forced else "",
            "search_results": [],
            "completed_roles": [],
        }
        graph = self.build(run)

        try:
            if on_progress is None and on_update is None:
                await graph.ainvoke(input_state)
            else:
                async for stream_mode, payload in graph.astream(
                    input_state,
                    stream_mode=["updates", "custom"],
                ):
                    if stream_mode == "custom" and on_progress is not None:
                        outcome = on_progress(payload)
                        if inspect.isawaitable(outcome):
                            await outcome
                    elif stream_mode == "updates" and on_update is not None:
                        on_update(payload)
        except Exception as exc:
            run.error = f"{type(exc).__name__}: {exc}"
            run.transition(RunStatus.FAILED)
            print(f"WARNING: run {run.id} failed: {run.error}", file=sys.stderr)
            return run

        run.transition(RunStatus.COMPLETED)
        return run
