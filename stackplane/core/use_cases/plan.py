"""
Plan use case — build the canonical plan of every stack without applying it.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stackplane.core.backends.rendering import render_document, yaml_renderer
from stackplane.core.config.defaults import load_defaults
from stackplane.core.config.loader import load_stack_layers
from stackplane.core.engine.executor import StackOutcome, plan_all
from stackplane.core.errors import ConfigError
from stackplane.core.services.planner import Plan, StackPlanner


@dataclass
class PlanResult:
    """Canonical plans (and optionally rendered documents) per stack."""

    plans: dict[str, Plan] = field(default_factory=dict)
    documents: dict[str, str] = field(default_factory=dict)
    outcomes: list[StackOutcome] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and all(o.ok for o in self.outcomes)

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result
        result["ok"] = self.ok
        result["plans"] = {name: plan.to_dict() for name, plan in self.plans.items()}
        if self.documents:
            result["documents"] = self.documents
        failures = [o.to_dict() for o in self.outcomes if not o.ok]
        if failures:
            result["failures"] = failures
        return result


def plan_stacks(
    paths: Sequence[Path],
    defaults_path: Path | None = None,
    override_path: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    render: bool = False,
    planner: StackPlanner | None = None,
) -> PlanResult:
    """Plan every stack declared across ``paths``.

    Args:
        paths: Layer files, lowest precedence first.
        defaults_path: Optional planner defaults file.
        override_path: Optional override applied on top of every stack.
        overrides: Explicit planner default values.
        render: Also render each present stack's composition document.
        planner: Pre-configured planner (e.g. with a custom secret source).
    """
    result = PlanResult()

    try:
        defaults = load_defaults(defaults_path, overrides=overrides)
        stacks = load_stack_layers(paths, defaults, override_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    if not stacks:
        result.error = "No stacks found in the given files."
        return result

    planner = planner or StackPlanner(defaults)
    for run in plan_all(stacks, planner):
        outcome = StackOutcome.from_run(run)
        if run.plan is not None:
            outcome.status = "ok"
            result.plans[run.name] = run.plan
            if render and run.plan.action == "apply":
                result.documents[run.name] = yaml_renderer(render_document(run.plan))
        result.outcomes.append(outcome)

    return result
