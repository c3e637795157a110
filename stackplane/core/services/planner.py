"""
Stack planner — Merge → Validate → Normalize, then hand off to a backend.

One StackRun tracks a single stack through the pipeline:

    RAW → MERGED → VALIDATED → PLANNED → APPLIED | REMOVED

Transitions are strictly sequential. A failure leaves the run at the
last stage it reached with the error attached; a failed run is never
resumed. ``state: absent`` still merges and validates (removal must
know exactly what it targets) but skips secret addressing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from stackplane.adapters.base import Runtime
from stackplane.core.config.defaults import PlannerDefaults
from stackplane.core.config.merge import merge
from stackplane.core.errors import InvalidTransitionError
from stackplane.core.models.plan import CompositionStackPlan, OrchestratedStackPlan
from stackplane.core.services.directories import resolve_for_stack
from stackplane.core.services.normalizer import normalize
from stackplane.core.services.secret_addressing import SecretAddressor
from stackplane.core.services.validator import ValidationResult, validate

logger = logging.getLogger(__name__)

Plan = CompositionStackPlan | OrchestratedStackPlan


class PlanStage(str, Enum):
    RAW = "raw"
    MERGED = "merged"
    VALIDATED = "validated"
    PLANNED = "planned"
    APPLIED = "applied"
    REMOVED = "removed"


_NEXT: dict[PlanStage, tuple[PlanStage, ...]] = {
    PlanStage.RAW: (PlanStage.MERGED,),
    PlanStage.MERGED: (PlanStage.VALIDATED,),
    PlanStage.VALIDATED: (PlanStage.PLANNED,),
    PlanStage.PLANNED: (PlanStage.APPLIED, PlanStage.REMOVED),
    PlanStage.APPLIED: (),
    PlanStage.REMOVED: (),
}


@dataclass
class StackRun:
    """One stack's pass through the pipeline."""

    name: str
    layers: list[Mapping[str, Any] | None] = field(default_factory=list)
    stage: PlanStage = PlanStage.RAW
    merged: dict[str, Any] | None = None
    validation: ValidationResult | None = None
    plan: Plan | None = None
    report: Any = None  # BackendReport once applied/removed
    error: Exception | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def done(self) -> bool:
        return self.stage in (PlanStage.APPLIED, PlanStage.REMOVED)

    def advance(self, to: PlanStage) -> None:
        """Move to the next stage.

        Raises:
            InvalidTransitionError: The run failed, or ``to`` does not
                directly follow the current stage.
        """
        if self.failed:
            raise InvalidTransitionError(
                f"Stack '{self.name}' failed at {self.stage.value}; cannot advance to {to.value}"
            )
        if to not in _NEXT[self.stage]:
            raise InvalidTransitionError(
                f"Stack '{self.name}': {self.stage.value} → {to.value} is not a valid transition"
            )
        logger.debug("Stack '%s': %s → %s", self.name, self.stage.value, to.value)
        self.stage = to

    def fail(self, error: Exception) -> None:
        self.error = error
        logger.warning("Stack '%s' failed at %s: %s", self.name, self.stage.value, error)


BackendFactory = Callable[[Plan], Any]


class StackPlanner:
    """Builds canonical plans from layered stack input.

    Args:
        defaults: Run-wide defaults; read-only, shared by every stack.
        addressor: Resolves and addresses secret payloads.
    """

    def __init__(
        self,
        defaults: PlannerDefaults | None = None,
        addressor: SecretAddressor | None = None,
    ):
        self.defaults = defaults or PlannerDefaults()
        self.addressor = addressor or SecretAddressor()

    def start(self, layers: Sequence[Mapping[str, Any] | None], name: str | None = None) -> StackRun:
        return StackRun(name=name or _layer_name(layers), layers=list(layers))

    # ── Pipeline stages ─────────────────────────────────────────

    def merge(self, run: StackRun) -> dict[str, Any]:
        run.merged = merge(run.layers)
        run.advance(PlanStage.MERGED)
        return run.merged

    def validate(self, run: StackRun) -> ValidationResult:
        assert run.merged is not None
        run.validation = validate(run.merged)
        run.validation.raise_for_issues(stack=run.name)
        run.advance(PlanStage.VALIDATED)
        return run.validation

    def normalize(self, run: StackRun) -> Plan:
        assert run.merged is not None
        dirs = resolve_for_stack(run.merged, self.defaults)
        run.plan = normalize(
            run.merged,
            dirs,
            self.addressor,
            address_secrets=run.merged.get("state", "present") == "present",
        )
        run.advance(PlanStage.PLANNED)
        return run.plan

    def plan_run(self, run: StackRun) -> StackRun:
        """Drive ``run`` up to PLANNED; on failure, record and re-raise."""
        try:
            self.merge(run)
            self.validate(run)
            self.normalize(run)
        except Exception as e:
            run.fail(e)
            raise
        logger.info("Planned stack '%s' (%s, %s)", run.name, run.plan.mode, run.plan.action)
        return run

    def plan(self, layers: Sequence[Mapping[str, Any] | None]) -> Plan:
        """Merge, validate and normalize one stack's layers into its canonical plan.

        Raises:
            ConfigError: Validation found issues (all of them are attached).
            NormalizationError: A field could not be canonicalized.
        """
        run = self.plan_run(self.start(layers))
        assert run.plan is not None
        return run.plan

    # ── Hand-off ────────────────────────────────────────────────

    def execute(self, run: StackRun, backend_factory: BackendFactory) -> StackRun:
        """Hand a PLANNED run to its backend for apply or teardown."""
        if run.stage != PlanStage.PLANNED or run.plan is None:
            raise InvalidTransitionError(
                f"Stack '{run.name}' is {run.stage.value}; only a planned stack can be executed"
            )
        plan = run.plan
        try:
            backend = backend_factory(plan)
            run.report = backend.run(plan)
        except Exception as e:
            run.fail(e)
            raise
        run.advance(PlanStage.APPLIED if plan.action == "apply" else PlanStage.REMOVED)
        return run

    def run(
        self,
        layers: Sequence[Mapping[str, Any] | None],
        runtime: Runtime | None = None,
        backend_factory: BackendFactory | None = None,
    ) -> StackRun:
        """Plan one stack and apply or remove it."""
        if backend_factory is None:
            if runtime is None:
                raise ValueError("either runtime or backend_factory is required")
            backend_factory = self.backend_factory(runtime)
        run = self.plan_run(self.start(layers))
        return self.execute(run, backend_factory)

    def backend_factory(self, runtime: Runtime, **kwargs: Any) -> BackendFactory:
        from stackplane.core.backends import backend_for

        def factory(plan: Plan):
            return backend_for(plan, runtime, defaults=self.defaults, **kwargs)

        return factory


def _layer_name(layers: Sequence[Mapping[str, Any] | None]) -> str:
    # the highest layer that names the stack wins, as in the merge
    for layer in reversed(layers):
        if layer and isinstance(layer.get("name"), str) and layer["name"]:
            return layer["name"]
    return "<unnamed>"
