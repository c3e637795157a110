"""
Rendering input — the composition document handed to a renderer.

``render_document`` builds the input contract (services keyed by name
with canonical ports/volumes/secrets/deploy, resolved networks and the
top-level secrets); a renderer turns it into backend-native text. The
default renderer emits compose YAML.
"""

from __future__ import annotations

import hashlib
import posixpath
from collections.abc import Callable
from typing import Any

import yaml

from stackplane.core.models.plan import (
    CanonicalService,
    CompositionStackPlan,
    OrchestratedService,
    OrchestratedStackPlan,
)

Renderer = Callable[[dict[str, Any]], str]

# docker stack deploy still requires a version key
ORCHESTRATED_FILE_VERSION = "3.8"


def render_document(plan: CompositionStackPlan | OrchestratedStackPlan) -> dict[str, Any]:
    """Build the rendering input for one plan."""
    document: dict[str, Any] = {}
    if plan.mode == "orchestrated":
        document["version"] = ORCHESTRATED_FILE_VERSION

    document["services"] = {name: _service(service) for name, service in plan.services.items()}

    if plan.networks:
        document["networks"] = {
            name: {"name": network.runtime_name, "external": True}
            for name, network in plan.networks.items()
        }

    if plan.secrets:
        if plan.mode == "composition":
            document["secrets"] = {
                secret.addressed_name: {
                    "file": posixpath.join(plan.directories.secrets, secret.addressed_name)
                }
                for secret in plan.secrets.values()
            }
        else:
            document["secrets"] = {
                secret.addressed_name: {"external": True} for secret in plan.secrets.values()
            }

    return document


def _service(service: CanonicalService) -> dict[str, Any]:
    out: dict[str, Any] = dict(service.options)
    out["image"] = service.image
    if service.ports:
        out["ports"] = [port.model_dump(exclude_none=True) for port in service.ports]
    if service.volumes:
        out["volumes"] = list(service.volumes)
    if service.secrets:
        out["secrets"] = [
            {
                "source": mount.addressed_name,
                "target": mount.target,
                **({"mode": int(mount.mode, 8)} if mount.mode is not None else {}),
            }
            for mount in service.secrets
        ]
    if service.environment:
        out["environment"] = dict(service.environment)
    if service.labels:
        out["labels"] = dict(service.labels)
    if any(service.networks.values()):
        out["networks"] = {name: dict(options) for name, options in service.networks.items()}
    elif service.networks:
        out["networks"] = list(service.networks)
    if isinstance(service, OrchestratedService) and service.deploy is not None:
        out["deploy"] = service.deploy.model_dump(exclude_none=True)
    return out


def yaml_renderer(document: dict[str, Any]) -> str:
    """Default renderer: stable compose YAML."""
    return yaml.safe_dump(document, sort_keys=True, default_flow_style=False)


def document_digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
