"""
Normalizer — rewrites a validated stack into its canonical plan.

Every shorthand or ambiguous input form is resolved exactly once here:

    ports      any accepted form → {published, target, protocol}
    volumes    $_stack / $_config / $_data / $_secrets / $_<extra> → absolute path
    deploy     placement constraints/preferences → lists (orchestrated only)
    secrets    reference by name → content-addressed name + service fingerprint
    env/labels KEY=VALUE lists → mappings
    networks   service network list → {name: options}

Downstream backends never inspect the original shape again.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from stackplane.core.config.defaults import normalize_mode
from stackplane.core.errors import NormalizationError, ValidationIssue
from stackplane.core.models.plan import (
    FINGERPRINT_LABEL,
    CanonicalService,
    CompositionStackPlan,
    DeployBlock,
    DirectoryLayout,
    NetworkDefinition,
    OrchestratedService,
    OrchestratedStackPlan,
    Placement,
    PortMapping,
    SecretMaterial,
    SecretMount,
)
from stackplane.core.services.directories import symbol_table
from stackplane.core.services.secret_addressing import SecretAddressor, fingerprint
from stackplane.core.services.shorthand import ShorthandError, parse_port, split_symbol

logger = logging.getLogger(__name__)

STACK_LABEL = "stackplane.stack"
ADDRESSING_SKIPPED = "secret addressing skipped for removal"

# Service keys the normalizer rewrites; everything else passes through.
_HANDLED_KEYS = frozenset({
    "image", "ports", "volumes", "secrets", "environment", "labels", "networks", "deploy",
})

Plan = CompositionStackPlan | OrchestratedStackPlan


def normalize(
    validated: Mapping[str, Any],
    dirs: DirectoryLayout,
    addressor: SecretAddressor | None = None,
    *,
    address_secrets: bool = True,
) -> Plan:
    """Build the canonical plan of one validated stack.

    Args:
        validated: Merged stack mapping that passed validation.
        dirs: The stack's resolved directory layout.
        addressor: Resolves and addresses secret payloads.
        address_secrets: When False (removal), secret payloads are not
            resolved and services carry no secret mounts or fingerprint.

    Raises:
        NormalizationError: On the first field that cannot be canonicalized.
    """
    return _Normalizer(validated, dirs, addressor or SecretAddressor(), address_secrets).build()


def resolve_volume(entry: Any, symbols: Mapping[str, str], mode: str, path: str = "volumes") -> Any:
    """Rewrite the symbolic source of one volume entry to its absolute path."""
    if isinstance(entry, Mapping):
        source = entry.get("source")
        if not isinstance(source, str):
            return dict(entry)
        return {**entry, "source": _resolve_source(source, symbols, mode, path, entry)}

    source, sep, rest = entry.partition(":")
    if not sep:
        return _resolve_source(source, symbols, mode, path, entry)
    return f"{_resolve_source(source, symbols, mode, path, entry)}:{rest}"


def _resolve_source(source: str, symbols: Mapping[str, str], mode: str, path: str, entry: Any) -> str:
    try:
        symbol, rest = split_symbol(source, symbols)
    except ShorthandError as e:
        raise NormalizationError(ValidationIssue(path, e.expected, entry, str(e))) from e
    if symbol is None:
        return source
    if symbol == "$_secrets" and mode != "composition":
        raise NormalizationError(
            ValidationIssue(
                path=path,
                expected="$_secrets only under mode 'composition'",
                actual=entry,
                message=f"mode '{mode}' has no on-disk secrets directory",
            )
        )
    return symbols[symbol] + rest


def to_mapping(value: Any) -> dict[str, str]:
    """Convert ``["KEY=VAL", ...]`` or a mapping to ``{"KEY": "VAL", ...}``."""
    if not value:
        return {}
    if isinstance(value, Mapping):
        return {str(k): "" if v is None else _scalar(v) for k, v in value.items()}
    out: dict[str, str] = {}
    for item in value:
        s = str(item)
        eq = s.find("=")
        if eq > 0:
            out[s[:eq]] = s[eq + 1 :]
        else:
            out[s] = ""
    return out


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _service_networks(value: Any) -> dict[str, dict[str, Any]]:
    """Canonicalize a service's networks to ``{name: options}``."""
    if isinstance(value, Mapping):
        return {name: dict(options or {}) for name, options in value.items()}
    return {name: {} for name in value or []}


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class _Normalizer:
    def __init__(
        self,
        stack: Mapping[str, Any],
        dirs: DirectoryLayout,
        addressor: SecretAddressor,
        address_secrets: bool,
    ):
        self.stack = stack
        self.name: str = stack["name"]
        self.mode: str = stack["mode"]
        self.dirs = dirs
        self.symbols = symbol_table(dirs)
        self.addressor = addressor
        self.address_secrets = address_secrets
        self.diagnostics: list[str] = []

    def build(self) -> Plan:
        services_raw: Mapping[str, Any] = self.stack.get("services") or {}
        declared: Mapping[str, Any] = self.stack.get("secrets") or {}

        referenced = sorted({
            self._ref_name(ref)
            for spec in services_raw.values()
            for ref in spec.get("secrets") or []
        })
        unreferenced = sorted(set(declared) - set(referenced))
        for name in unreferenced:
            self.diagnostics.append(f"secrets.{name}: not referenced by any service; prune candidate")

        secrets: dict[str, SecretMaterial] = {}
        if self.address_secrets:
            secrets = {name: self.addressor.material(name, declared[name]) for name in referenced}
        else:
            self.diagnostics.append(ADDRESSING_SKIPPED)

        services = {
            name: self._service(name, services_raw[name], secrets)
            for name in sorted(services_raw)
        }

        fields = dict(
            name=self.name,
            state=self.stack.get("state", "present"),
            allow_prune=bool(self.stack.get("allow_prune", False)),
            directories=self.dirs,
            networks=self._networks(),
            secrets=secrets,
            unreferenced_secrets=unreferenced,
            diagnostics=self.diagnostics,
            services=services,
        )
        plan: Plan
        if self.mode == "orchestrated":
            plan = OrchestratedStackPlan(**fields)
        else:
            plan = CompositionStackPlan(**fields)
        logger.debug("Normalized stack '%s' (%s): %d service(s)", self.name, self.mode, len(services))
        return plan

    # ── Services ────────────────────────────────────────────────

    def _service(
        self,
        name: str,
        spec: Mapping[str, Any],
        secrets: Mapping[str, SecretMaterial],
    ) -> CanonicalService:
        path = f"services.{name}"
        mounts = self._mounts(spec.get("secrets") or [], secrets) if self.address_secrets else []

        labels = to_mapping(spec.get("labels"))
        if self.address_secrets:
            labels[FINGERPRINT_LABEL] = fingerprint(m.addressed_name for m in mounts)

        fields: dict[str, Any] = dict(
            image=spec["image"],
            ports=[self._port(f"{path}.ports[{i}]", p) for i, p in enumerate(spec.get("ports") or [])],
            volumes=[
                resolve_volume(v, self.symbols, self.mode, f"{path}.volumes[{i}]")
                for i, v in enumerate(spec.get("volumes") or [])
            ],
            secrets=mounts,
            environment=to_mapping(spec.get("environment")),
            labels=dict(sorted(labels.items())),
            networks=_service_networks(spec.get("networks")),
            options={k: v for k, v in spec.items() if k not in _HANDLED_KEYS},
        )

        if self.mode == "orchestrated":
            return OrchestratedService(**fields, deploy=self._deploy(spec.get("deploy")))

        if "deploy" in spec:
            self.diagnostics.append(f"{path}.deploy: dropped, mode 'composition' has no scheduler")
        return CanonicalService(**fields)

    def _port(self, path: str, entry: Any) -> PortMapping:
        try:
            return parse_port(entry)
        except ShorthandError as e:
            raise NormalizationError(ValidationIssue(path, e.expected, entry, str(e)), stack=self.name) from e

    @staticmethod
    def _ref_name(ref: Any) -> str:
        return ref["source"] if isinstance(ref, Mapping) else ref

    def _mounts(self, refs: list[Any], secrets: Mapping[str, SecretMaterial]) -> list[SecretMount]:
        mounts: list[SecretMount] = []
        for ref in refs:
            name = self._ref_name(ref)
            options = ref if isinstance(ref, Mapping) else {}
            mode = normalize_mode(options["mode"]) if "mode" in options else None
            mounts.append(
                SecretMount(
                    secret=name,
                    addressed_name=secrets[name].addressed_name,
                    target=str(options.get("target", name)),
                    mode=mode,
                )
            )
        return mounts

    def _deploy(self, deploy: Mapping[str, Any] | None) -> DeployBlock | None:
        if deploy is None:
            return None
        fields = dict(deploy)
        placement = fields.pop("placement", None)
        if placement is not None:
            fields["placement"] = Placement(
                constraints=[str(c) for c in _as_list(placement.get("constraints"))],
                preferences=[dict(p) for p in _as_list(placement.get("preferences"))],
            )
        return DeployBlock(**fields)

    # ── Networks ────────────────────────────────────────────────

    def _networks(self) -> dict[str, NetworkDefinition]:
        declared: Mapping[str, Any] = self.stack.get("networks") or {}
        orchestrated = self.mode == "orchestrated"
        networks: dict[str, NetworkDefinition] = {}
        for name in sorted(declared):
            spec = declared[name] or {}
            labels = to_mapping(spec.get("labels"))
            if not spec.get("external", False):
                labels.setdefault(STACK_LABEL, self.name)
            networks[name] = NetworkDefinition(
                name=name,
                runtime_name=spec.get("name") or f"{self.name}_{name}",
                driver=spec.get("driver") or ("overlay" if orchestrated else "bridge"),
                scope="swarm" if orchestrated else "local",
                attachable=spec.get("attachable", orchestrated),
                external=spec.get("external", False),
                labels=dict(sorted(labels.items())),
                options=to_mapping(spec.get("driver_opts")),
            )
        return networks
