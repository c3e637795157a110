"""
Backend adapter base — drives a runtime from one canonical plan.

A backend turns a plan into intents and hands them to a Runtime. The
shared capability contract is:

    materialize_secrets   make every referenced secret exist, by address
    render_composition    the rendering input for the plan
    deploy                create/update the stack (no-op when unchanged)
    wait_ready            block until services are ready (or time out)
    remove                tear the stack down
    prune_secrets         drop addressed secrets no longer referenced

Every step reads runtime state before acting, so re-running an
unchanged plan performs no destructive intent and restarts nothing.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar

from stackplane.adapters.base import Runtime
from stackplane.core.config.defaults import PlannerDefaults
from stackplane.core.errors import BackendError
from stackplane.core.models.intent import Intent, IntentKind, Receipt
from stackplane.core.models.plan import CompositionStackPlan, OrchestratedStackPlan, SecretMaterial
from stackplane.core.backends.rendering import (
    Renderer,
    document_digest,
    render_document,
    yaml_renderer,
)
from stackplane.core.services.secret_addressing import prune_candidates, verify

logger = logging.getLogger(__name__)

Plan = CompositionStackPlan | OrchestratedStackPlan


@dataclass
class BackendReport:
    """What one apply/remove did."""

    stack: str
    action: str = ""
    receipts: list[Receipt] = field(default_factory=list)
    created_networks: list[str] = field(default_factory=list)
    created_secrets: list[str] = field(default_factory=list)
    prune_candidates: list[str] = field(default_factory=list)
    pruned_secrets: list[str] = field(default_factory=list)
    deployed: bool = False
    removed: bool = False

    @property
    def changed(self) -> bool:
        return bool(
            self.created_networks or self.created_secrets or self.pruned_secrets
            or self.deployed or self.removed
        )

    def to_dict(self) -> dict:
        return {
            "stack": self.stack,
            "action": self.action,
            "changed": self.changed,
            "deployed": self.deployed,
            "removed": self.removed,
            "created_networks": self.created_networks,
            "created_secrets": self.created_secrets,
            "prune_candidates": self.prune_candidates,
            "pruned_secrets": self.pruned_secrets,
            "receipts": [r.model_dump(mode="json") for r in self.receipts],
        }


class BackendAdapter(ABC):
    """Abstract base for the composition and orchestration backends."""

    mode: ClassVar[str]

    def __init__(
        self,
        runtime: Runtime,
        defaults: PlannerDefaults | None = None,
        renderer: Renderer | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runtime = runtime
        self.defaults = defaults or PlannerDefaults()
        self.renderer = renderer or yaml_renderer
        self._clock = clock
        self._sleep = sleep
        self._report: BackendReport | None = None

    # ── Lifecycle entry points ──────────────────────────────────

    def apply(self, plan: Plan) -> BackendReport:
        """Create or update the stack described by ``plan``."""
        self._check_mode(plan)
        report = self._begin(plan, "apply")
        logger.info("Applying stack '%s' (%s)", plan.name, self.mode)

        self.ensure_directories(plan)
        self.ensure_networks(plan)
        self.materialize_secrets(plan)
        self.deploy(plan)
        if report.deployed:
            self.wait_ready(plan)

        candidates = self.prune_candidates(plan)
        report.prune_candidates = sorted(candidates)
        if candidates and plan.allow_prune:
            self.prune_secrets(plan, candidates)
        elif candidates:
            logger.info(
                "Stack '%s': %d stale secret(s) kept (allow_prune is off): %s",
                plan.name, len(candidates), sorted(candidates),
            )
        return report

    def teardown(self, plan: Plan) -> BackendReport:
        """Remove the stack described by ``plan``."""
        self._check_mode(plan)
        report = self._begin(plan, "remove")
        logger.info("Removing stack '%s' (%s)", plan.name, self.mode)
        self.remove(plan)
        return report

    def run(self, plan: Plan) -> BackendReport:
        """Dispatch on the plan's lifecycle action."""
        return self.apply(plan) if plan.action == "apply" else self.teardown(plan)

    # ── Capabilities ────────────────────────────────────────────

    def render_composition(self, plan: Plan) -> dict[str, Any]:
        """The rendering input for ``plan``."""
        return render_document(plan)

    def render_text(self, plan: Plan) -> str:
        return self.renderer(self.render_composition(plan))

    def ensure_directories(self, plan: Plan) -> None:
        for entry in plan.directories.entries.values():
            if entry.name in self.skipped_directories():
                continue
            self._execute(self._intent(
                "ensure_directory", plan, entry.path,
                owner=entry.owner, group=entry.group, mode=entry.mode,
            ))

    def ensure_networks(self, plan: Plan) -> None:
        for network in plan.networks.values():
            if network.external:
                continue
            receipt = self._execute(self._intent("inspect_network", plan, network.runtime_name))
            if receipt.metadata.get("exists"):
                continue
            self._execute(self._intent(
                "create_network", plan, network.runtime_name,
                driver=network.driver,
                scope=network.scope,
                attachable=network.attachable,
                labels=dict(network.labels),
                options=dict(network.options),
            ))
            self._current.created_networks.append(network.runtime_name)

    def materialize_secrets(self, plan: Plan) -> list[str]:
        """Make every referenced secret exist under its addressed name.

        Existing targets with the same content are left alone; existing
        targets with different content raise AddressingError.
        """
        created: list[str] = []
        for secret in plan.secrets.values():
            location = self.secret_location(plan, secret)
            receipt = self._execute(self._intent("inspect_secret", plan, secret.addressed_name, **location))
            if not verify(secret, receipt.metadata.get("sha256")):
                logger.debug("Secret %s already materialized", secret.addressed_name)
                continue

            intent = self._intent(
                "materialize_secret", plan, secret.addressed_name,
                payload=secret.payload, **location, **self.secret_params(plan, secret),
            )
            receipt = self.runtime.execute(intent)
            self._record(intent, receipt)
            if receipt.failed:
                # Another writer may have materialized the same address meanwhile.
                recheck = self._execute(self._intent("inspect_secret", plan, secret.addressed_name, **location))
                if recheck.metadata.get("exists") and not verify(secret, recheck.metadata.get("sha256")):
                    continue
                raise BackendError(intent, receipt)
            created.append(secret.addressed_name)

        self._current.created_secrets.extend(created)
        return created

    def deploy(self, plan: Plan) -> bool:
        """Deploy the rendered document unless the runtime already runs it."""
        text = self.render_text(plan)
        path = self.document_path(plan)
        receipt = self._execute(self._intent("inspect_deployment", plan, plan.name, path=path, mode=self.mode))
        if receipt.metadata.get("sha256") == document_digest(text):
            logger.info("Stack '%s' unchanged, nothing to deploy", plan.name)
            return False

        self._execute(self._intent(
            "deploy_stack", plan, plan.name,
            document=text, path=path, mode=self.mode, prune=plan.allow_prune,
        ))
        self._current.deployed = True
        return True

    def prune_candidates(self, plan: Plan) -> set[str]:
        receipt = self._execute(self._intent("list_secrets", plan, plan.name, **self.secret_listing(plan)))
        return prune_candidates(receipt.metadata.get("names") or [], plan.referenced_addresses)

    def prune_secrets(self, plan: Plan, candidates: set[str]) -> list[str]:
        pruned: list[str] = []
        referenced = plan.referenced_addresses
        for name in sorted(candidates):
            if name in referenced:
                continue
            self._execute(self._intent("prune_secret", plan, name, **self.prune_location(plan, name)))
            pruned.append(name)
        self._current.pruned_secrets.extend(pruned)
        logger.info("Stack '%s': pruned %d stale secret(s)", plan.name, len(pruned))
        return pruned

    @abstractmethod
    def wait_ready(self, plan: Plan, timeout: float | None = None) -> None:
        """Block until the deployment is ready, or raise ReadinessTimeoutError."""

    @abstractmethod
    def remove(self, plan: Plan) -> None:
        """Tear the stack down."""

    # ── Mode-specific hooks ─────────────────────────────────────

    def skipped_directories(self) -> set[str]:
        return set()

    @abstractmethod
    def secret_location(self, plan: Plan, secret: SecretMaterial) -> dict[str, Any]:
        """Params locating a secret on the runtime."""

    @abstractmethod
    def secret_params(self, plan: Plan, secret: SecretMaterial) -> dict[str, Any]:
        """Extra params for creating a secret."""

    @abstractmethod
    def secret_listing(self, plan: Plan) -> dict[str, Any]:
        """Params selecting this stack's existing secrets."""

    @abstractmethod
    def prune_location(self, plan: Plan, addressed_name: str) -> dict[str, Any]:
        """Params locating an existing secret to prune."""

    def document_path(self, plan: Plan) -> str:
        return f"{plan.directories.stack}/{self.defaults.compose_filename}"

    # ── Helpers ─────────────────────────────────────────────────

    @property
    def _current(self) -> BackendReport:
        if self._report is None:
            raise RuntimeError("no apply/remove in progress")
        return self._report

    def _begin(self, plan: Plan, action: str) -> BackendReport:
        self._report = BackendReport(stack=plan.name, action=action)
        return self._report

    def _check_mode(self, plan: Plan) -> None:
        if plan.mode != self.mode:
            raise ValueError(f"{type(self).__name__} cannot handle a '{plan.mode}' plan")

    @staticmethod
    def _intent(kind: IntentKind, plan: Plan, target: str, **params: Any) -> Intent:
        return Intent(kind=kind, stack=plan.name, target=target, params=params)

    def _record(self, intent: Intent, receipt: Receipt) -> None:
        marker = "✓" if receipt.ok else "✗"
        level = logging.INFO if intent.is_destructive else logging.DEBUG
        logger.log(level, "%s %s → %s", marker, intent.id, receipt.status)
        if self._report is not None:
            self._report.receipts.append(receipt)

    def _execute(self, intent: Intent) -> Receipt:
        """Execute one intent; a failed receipt becomes a BackendError."""
        receipt = self.runtime.execute(intent)
        self._record(intent, receipt)
        if receipt.failed:
            raise BackendError(intent, receipt)
        return receipt
