"""
Canonical plan models — the fully merged, validated, normalized stack.

A plan is produced once per stack per run by the planner and consumed
exactly once by a backend adapter. Every shorthand has already been
resolved: backends never branch on input shape.

The two plan variants are discriminated on ``mode``. Only the
orchestrated variant has services with a ``deploy`` block; a
composition plan cannot carry one.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

StackMode = Literal["composition", "orchestrated"]
StackState = Literal["present", "absent"]
Protocol = Literal["tcp", "udp"]

FINGERPRINT_LABEL = "secrets_fingerprint"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ── Directories ──────────────────────────────────────────────────────


class DirectoryEntry(_Frozen):
    """One logical directory with its absolute path and ownership."""

    name: str
    path: str
    owner: str
    group: str
    mode: str  # octal string, e.g. "0750"


class DirectoryLayout(_Frozen):
    """Canonical filesystem layout of one stack.

    Always contains ``base``, ``stack``, ``config``, ``data`` and
    ``secrets`` plus any extra directories declared by the stack.
    """

    entries: dict[str, DirectoryEntry]

    def get(self, name: str) -> DirectoryEntry | None:
        return self.entries.get(name)

    def path(self, name: str) -> str:
        return self.entries[name].path

    @property
    def base(self) -> str:
        return self.path("base")

    @property
    def stack(self) -> str:
        return self.path("stack")

    @property
    def config(self) -> str:
        return self.path("config")

    @property
    def data(self) -> str:
        return self.path("data")

    @property
    def secrets(self) -> str:
        return self.path("secrets")

    @property
    def names(self) -> list[str]:
        return list(self.entries)


# ── Services ─────────────────────────────────────────────────────────


class PortMapping(_Frozen):
    """A published port in structured form."""

    published: int
    target: int
    protocol: Protocol = "tcp"
    host_ip: str | None = None


class Placement(_Frozen):
    constraints: list[str] = Field(default_factory=list)
    preferences: list[dict[str, Any]] = Field(default_factory=list)


class DeployBlock(_Frozen):
    """Scheduling directives for orchestrated services.

    Keys other than replicas/mode/placement (resources, update_config,
    restart_policy, ...) are carried through untouched.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    replicas: int | None = None
    mode: Literal["replicated", "global"] | None = None
    placement: Placement | None = None


class SecretMount(_Frozen):
    """A service's reference to a secret, resolved to its content address."""

    secret: str            # declared secret name
    addressed_name: str    # content-addressed object/file name
    target: str            # name visible inside the container
    mode: str | None = None


class CanonicalService(_Frozen):
    """A composition-mode service. Has no deploy block by construction."""

    image: str
    ports: list[PortMapping] = Field(default_factory=list)
    volumes: list[str | dict[str, Any]] = Field(default_factory=list)
    secrets: list[SecretMount] = Field(default_factory=list)
    environment: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    networks: dict[str, dict[str, Any]] = Field(default_factory=dict)  # name -> per-service options
    options: dict[str, Any] = Field(default_factory=dict)  # pass-through keys

    @property
    def fingerprint(self) -> str | None:
        return self.labels.get(FINGERPRINT_LABEL)


class OrchestratedService(CanonicalService):
    """An orchestrated-mode service, optionally with scheduling directives."""

    deploy: DeployBlock | None = None

    @property
    def expected_replicas(self) -> int:
        if self.deploy is None or self.deploy.replicas is None:
            return 1
        return self.deploy.replicas


# ── Secrets & networks ───────────────────────────────────────────────


class SecretAddress(_Frozen):
    """Content address of one secret payload."""

    name: str
    hash: str
    short_hash: str
    addressed_name: str


class SecretMaterial(SecretAddress):
    """A secret address together with the payload it addresses.

    The payload never leaves the process through serialization.
    """

    payload: bytes = Field(default=b"", exclude=True, repr=False)


class NetworkDefinition(_Frozen):
    name: str           # logical name used by services
    runtime_name: str   # name of the network object on the runtime
    driver: str
    scope: str
    attachable: bool = False
    external: bool = False
    labels: dict[str, str] = Field(default_factory=dict)
    options: dict[str, str] = Field(default_factory=dict)


# ── Plans ────────────────────────────────────────────────────────────


class _StackPlanBase(_Frozen):
    name: str
    state: StackState = "present"
    allow_prune: bool = False
    directories: DirectoryLayout
    networks: dict[str, NetworkDefinition] = Field(default_factory=dict)
    secrets: dict[str, SecretMaterial] = Field(default_factory=dict)
    unreferenced_secrets: list[str] = Field(default_factory=list)
    diagnostics: list[str] = Field(default_factory=list)

    @property
    def action(self) -> Literal["apply", "remove"]:
        return "apply" if self.state == "present" else "remove"

    @property
    def referenced_addresses(self) -> set[str]:
        """Addressed names of every secret some service references."""
        return {
            mount.addressed_name
            for service in self.services.values()  # type: ignore[attr-defined]
            for mount in service.secrets
        }

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        """Canonical JSON: sorted keys, stable separators, no runtime fields."""
        return json.dumps(self.to_dict(), sort_keys=True, indent=2, ensure_ascii=False)


class CompositionStackPlan(_StackPlanBase):
    mode: Literal["composition"] = "composition"
    services: dict[str, CanonicalService] = Field(default_factory=dict)


class OrchestratedStackPlan(_StackPlanBase):
    mode: Literal["orchestrated"] = "orchestrated"
    services: dict[str, OrchestratedService] = Field(default_factory=dict)


CanonicalStackPlan = Annotated[
    Union[CompositionStackPlan, OrchestratedStackPlan],
    Field(discriminator="mode"),
]
