"""
Orchestration backend — swarm-mode stacks (docker stack).

Secrets are runtime objects named by their address and labelled with
the owning stack and content hash; networks are attachable overlays;
deploy honours replicas and placement and is followed by a readiness
wait on the reported replica counts.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from stackplane.core.backends.base import BackendAdapter, Plan
from stackplane.core.errors import ReadinessTimeoutError
from stackplane.core.models.plan import OrchestratedService, SecretMaterial
from stackplane.core.services.secret_addressing import prune_candidates

logger = logging.getLogger(__name__)

SECRET_STACK_LABEL = "stackplane.stack"
SECRET_NAME_LABEL = "stackplane.secret"
SECRET_HASH_LABEL = "stackplane.sha256"


class OrchestrationBackend(BackendAdapter):
    """Drives a runtime for ``mode: orchestrated`` plans."""

    mode: ClassVar[str] = "orchestrated"

    def wait_ready(self, plan: Plan, timeout: float | None = None) -> None:
        """Poll service status until every service runs its expected replicas.

        Raises:
            ReadinessTimeoutError: Services still short of their replica
                count after ``timeout`` seconds.
        """
        timeout = self.defaults.wait_timeout if timeout is None else timeout
        deadline = self._clock() + timeout
        while True:
            pending = self._pending(plan)
            if not pending:
                logger.info("Stack '%s' ready", plan.name)
                return
            if self._clock() >= deadline:
                raise ReadinessTimeoutError(plan.name, timeout, pending)
            logger.debug("Stack '%s' waiting on %s", plan.name, sorted(pending))
            self._sleep(self.defaults.poll_interval)

    def _pending(self, plan: Plan) -> dict[str, tuple[int, int]]:
        receipt = self._execute(self._intent("service_status", plan, plan.name))
        status: dict[str, dict[str, int]] = receipt.metadata.get("services") or {}
        pending: dict[str, tuple[int, int]] = {}
        for name, service in plan.services.items():
            current = status.get(name, {})
            running = int(current.get("running", 0))
            expected = _expected(service, current)
            if running < expected:
                pending[name] = (running, expected)
        return pending

    def remove(self, plan: Plan) -> None:
        path = self.document_path(plan)
        if self._deployed(plan, path):
            self._execute(self._intent("remove_stack", plan, plan.name, path=path, mode=self.mode))
            self._execute(self._intent("remove_path", plan, path))
            self._current.removed = True
        else:
            logger.info("Stack '%s' is not deployed", plan.name)

        if not plan.allow_prune:
            return
        # Secrets stay in use until the stack's tasks are gone.
        self._wait_gone(plan)
        candidates = self.prune_candidates(plan)
        self._current.prune_candidates = sorted(candidates)
        self.prune_secrets(plan, candidates)

    def _deployed(self, plan: Plan, path: str) -> bool:
        # the scheduler may still run services whose document is gone
        receipt = self._execute(self._intent("inspect_deployment", plan, plan.name, path=path, mode=self.mode))
        if receipt.metadata.get("sha256") is not None:
            return True
        receipt = self._execute(self._intent("service_status", plan, plan.name))
        return bool(receipt.metadata.get("services"))

    def _wait_gone(self, plan: Plan) -> None:
        deadline = self._clock() + self.defaults.wait_timeout
        while True:
            receipt = self._execute(self._intent("service_status", plan, plan.name))
            remaining = receipt.metadata.get("services") or {}
            if not remaining:
                return
            if self._clock() >= deadline:
                pending = {name: (int(s.get("running", 0)), 0) for name, s in remaining.items()}
                raise ReadinessTimeoutError(plan.name, self.defaults.wait_timeout, pending)
            self._sleep(self.defaults.poll_interval)

    def prune_candidates(self, plan: Plan) -> set[str]:
        if plan.state == "absent":
            receipt = self._execute(self._intent("list_secrets", plan, plan.name, **self.secret_listing(plan)))
            return prune_candidates(receipt.metadata.get("names") or [], set())
        return super().prune_candidates(plan)

    # ── Hooks ───────────────────────────────────────────────────

    def skipped_directories(self) -> set[str]:
        return {"secrets"}

    def secret_location(self, plan: Plan, secret: SecretMaterial) -> dict[str, Any]:
        return {}

    def secret_params(self, plan: Plan, secret: SecretMaterial) -> dict[str, Any]:
        return {
            "labels": {
                SECRET_STACK_LABEL: plan.name,
                SECRET_NAME_LABEL: secret.name,
                SECRET_HASH_LABEL: secret.hash,
            }
        }

    def secret_listing(self, plan: Plan) -> dict[str, Any]:
        return {"labels": {SECRET_STACK_LABEL: plan.name}}

    def prune_location(self, plan: Plan, addressed_name: str) -> dict[str, Any]:
        return {}


def _expected(service: OrchestratedService, status: dict[str, int]) -> int:
    # global services run one task per eligible node; trust the scheduler's count
    if service.deploy is not None and service.deploy.mode == "global":
        return int(status.get("desired", 1))
    return service.expected_replicas
