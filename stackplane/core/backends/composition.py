"""
Composition backend — single-host stacks (docker compose).

Secrets are files named by their address under the stack's secrets
directory; networks are local bridges; there is no scheduler to wait on.
"""

from __future__ import annotations

import logging
import posixpath
from typing import Any, ClassVar

from stackplane.core.backends.base import BackendAdapter, Plan
from stackplane.core.models.plan import SecretMaterial

logger = logging.getLogger(__name__)


class CompositionBackend(BackendAdapter):
    """Drives a runtime for ``mode: composition`` plans."""

    mode: ClassVar[str] = "composition"

    def wait_ready(self, plan: Plan, timeout: float | None = None) -> None:
        # compose up -d returns once containers are created
        logger.debug("Stack '%s': no readiness wait for composition", plan.name)

    def remove(self, plan: Plan) -> None:
        path = self.document_path(plan)
        receipt = self._execute(self._intent("inspect_deployment", plan, plan.name, path=path, mode=self.mode))
        if receipt.metadata.get("sha256") is not None:
            self._execute(self._intent("remove_stack", plan, plan.name, path=path, mode=self.mode))
            self._execute(self._intent("remove_path", plan, path))
            self._current.removed = True
        else:
            logger.info("Stack '%s' is not deployed", plan.name)

        if plan.allow_prune:
            stack_dir = plan.directories.stack
            receipt = self._execute(self._intent("inspect_path", plan, stack_dir))
            if receipt.metadata.get("exists"):
                self._execute(self._intent("remove_path", plan, stack_dir, recursive=True))
                self._current.removed = True

    # ── Hooks ───────────────────────────────────────────────────

    def secret_location(self, plan: Plan, secret: SecretMaterial) -> dict[str, Any]:
        return {"path": posixpath.join(plan.directories.secrets, secret.addressed_name)}

    def secret_params(self, plan: Plan, secret: SecretMaterial) -> dict[str, Any]:
        entry = plan.directories.get("secrets")
        return {
            "mode": self.defaults.secret_file_mode,
            "owner": entry.owner if entry else self.defaults.dir_owner,
            "group": entry.group if entry else self.defaults.dir_group,
        }

    def secret_listing(self, plan: Plan) -> dict[str, Any]:
        return {"path": plan.directories.secrets}

    def prune_location(self, plan: Plan, addressed_name: str) -> dict[str, Any]:
        return {"path": posixpath.join(plan.directories.secrets, addressed_name)}
