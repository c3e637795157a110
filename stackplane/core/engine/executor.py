"""
Engine executor — runs many stacks through the planner and their backends.

Every stack is planned and applied in isolation: one stack's failure
never touches another's pipeline. With ``all_or_nothing`` no stack is
applied unless every stack planned cleanly.

Flow:
    layers → plan every stack → (gate) → apply/remove → collect outcomes
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from stackplane.adapters.base import Runtime
from stackplane.core.config.loader import StackLayers
from stackplane.core.errors import ConfigError
from stackplane.core.models.intent import Receipt
from stackplane.core.services.planner import BackendFactory, PlanStage, StackPlanner, StackRun

logger = logging.getLogger(__name__)


@dataclass
class StackOutcome:
    """Result of one stack's run."""

    stack: str
    stage: str = PlanStage.RAW.value
    status: str = "pending"   # ok | failed | skipped
    action: str | None = None
    error: str | None = None
    error_type: str | None = None
    issues: list[dict] = field(default_factory=list)
    report: dict | None = None
    receipts: list[Receipt] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def from_run(cls, run: StackRun) -> StackOutcome:
        outcome = cls(stack=run.name, stage=run.stage.value)
        if run.plan is not None:
            outcome.action = run.plan.action
        if run.report is not None:
            outcome.report = run.report.to_dict()
            outcome.receipts = list(run.report.receipts)
        if run.error is not None:
            outcome.status = "failed"
            outcome.error = str(run.error)
            outcome.error_type = type(run.error).__name__
            if isinstance(run.error, ConfigError):
                outcome.issues = [issue.to_dict() for issue in run.error.issues]
        elif run.done:
            outcome.status = "ok"
        return outcome

    def to_dict(self) -> dict:
        result: dict = {
            "stack": self.stack,
            "status": self.status,
            "stage": self.stage,
            "action": self.action,
        }
        if self.error:
            result["error"] = self.error
            result["error_type"] = self.error_type
        if self.issues:
            result["issues"] = self.issues
        if self.report is not None:
            result["report"] = self.report
        return result


@dataclass
class RunReport:
    """Result of a multi-stack run."""

    outcomes: list[StackOutcome] = field(default_factory=list)
    all_or_nothing: bool = False

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "failed")

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "skipped")

    @property
    def all_ok(self) -> bool:
        return self.failed == 0 and self.skipped == 0

    @property
    def status(self) -> str:
        if self.all_ok:
            return "ok"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    def get(self, stack: str) -> StackOutcome | None:
        return next((o for o in self.outcomes if o.stack == stack), None)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "all_or_nothing": self.all_or_nothing,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "stacks": [o.to_dict() for o in self.outcomes],
        }


def plan_all(stacks: Sequence[StackLayers], planner: StackPlanner) -> list[StackRun]:
    """Plan every stack; failures are recorded on their run, not raised."""
    runs: list[StackRun] = []
    for stack in stacks:
        run = planner.start(stack.layers, name=stack.name)
        try:
            planner.plan_run(run)
        except Exception:  # recorded on the run by plan_run
            logger.debug("Stack '%s' did not plan", run.name, exc_info=True)
        runs.append(run)
    return runs


def run_stacks(
    stacks: Sequence[StackLayers],
    planner: StackPlanner,
    runtime: Runtime | None = None,
    backend_factory: BackendFactory | None = None,
    all_or_nothing: bool = False,
    max_workers: int = 1,
) -> RunReport:
    """Plan and apply/remove every stack.

    Args:
        stacks: Layered input per stack.
        planner: Shared planner (read-only defaults).
        runtime: Runtime used to build each stack's backend.
        backend_factory: Overrides how a backend is built from a plan.
        all_or_nothing: If any stack fails to plan, apply none.
        max_workers: Stacks applied concurrently.

    Returns:
        RunReport with one outcome per stack, in input order.
    """
    if backend_factory is None:
        if runtime is None:
            raise ValueError("either runtime or backend_factory is required")
        backend_factory = planner.backend_factory(runtime)

    report = RunReport(all_or_nothing=all_or_nothing)
    runs = plan_all(stacks, planner)
    planned = [run for run in runs if not run.failed]

    if all_or_nothing and len(planned) != len(runs):
        failed = [run.name for run in runs if run.failed]
        logger.warning("Not applying any stack: %s failed to plan", ", ".join(failed))
        for run in runs:
            outcome = StackOutcome.from_run(run)
            if not run.failed:
                outcome.status = "skipped"
                outcome.error = f"not applied: {', '.join(failed)} failed to plan"
            report.outcomes.append(outcome)
        return report

    def execute(run: StackRun) -> StackRun:
        try:
            planner.execute(run, backend_factory)
        except Exception:  # recorded on the run by execute
            logger.debug("Stack '%s' did not complete", run.name, exc_info=True)
        return run

    workers = max(1, min(max_workers, len(planned) or 1))
    if workers == 1:
        for run in planned:
            execute(run)
    else:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="stack") as pool:
            list(pool.map(execute, planned))

    for run in runs:
        outcome = StackOutcome.from_run(run)
        marker = "✓" if outcome.ok else "✗"
        logger.info("%s %s → %s (%s)", marker, run.name, outcome.status, outcome.stage)
        report.outcomes.append(outcome)
    return report
