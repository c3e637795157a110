"""
Stack validator — structural and semantic checks on a merged stack.

Checks (all collected in one pass, never stopping at the first):
    - name: required, non-empty, filesystem-safe
    - mode: required, composition | orchestrated
    - state / allow_prune: well-typed when present
    - unknown top-level keys are rejected (same rules for present and absent)
    - services: image, ports, volumes, secrets, networks, deploy, labels
    - every referenced secret / network is declared by the stack
    - deploy blocks only under mode: orchestrated
    - secrets: exactly one of value / value_from
    - directories: well-typed overrides with valid permission values

The validator only inspects; it never mutates its input.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from stackplane.core.config.defaults import normalize_mode
from stackplane.core.errors import ConfigError, UnresolvedReferenceError, ValidationIssue
from stackplane.core.models.plan import FINGERPRINT_LABEL
from stackplane.core.services.directories import RESERVED_DIRS
from stackplane.core.services.shorthand import (
    SYMBOL_PREFIX,
    ShorthandError,
    parse_port,
    split_symbol,
    volume_source,
)

logger = logging.getLogger(__name__)

MODES = ("composition", "orchestrated")
STATES = ("present", "absent")

STACK_KEYS = frozenset({
    "name", "mode", "state", "allow_prune",
    "services", "secrets", "networks", "directories",
})
DIRECTORY_KEYS = frozenset({"path", "owner", "group", "mode"})
NETWORK_KEYS = frozenset({"name", "driver", "attachable", "external", "labels", "driver_opts"})

_SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_DIR_NAME_RE = re.compile(r"^[A-Za-z0-9_]+$")


@dataclass
class ValidationResult:
    """Outcome of validating one merged stack: Ok, or a list of issues."""

    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues

    @property
    def errors(self) -> list[ValidationIssue]:
        return self.issues

    def raise_for_issues(self, stack: str | None = None) -> None:
        """Raise the matching ConfigError if any issue was found."""
        if self.ok:
            return
        if all(issue.kind == "reference" for issue in self.issues):
            raise UnresolvedReferenceError(self.issues, stack=stack)
        raise ConfigError(self.issues, stack=stack)

    def to_dict(self) -> dict:
        return {"ok": self.ok, "issues": [i.to_dict() for i in self.issues]}


def validate(merged: Mapping[str, Any]) -> ValidationResult:
    """Validate a merged stack mapping and return every violation found."""
    return _Checker(merged).run()


class _Checker:
    def __init__(self, stack: Mapping[str, Any]):
        self.stack = stack
        self.issues: list[ValidationIssue] = []

    def add(self, path: str, expected: str, actual: Any, message: str, kind: str = "config") -> None:
        self.issues.append(ValidationIssue(path, expected, actual, message, kind))  # type: ignore[arg-type]

    def run(self) -> ValidationResult:
        if not isinstance(self.stack, Mapping):
            self.add("<stack>", "mapping", self.stack, "stack must be a mapping")
            return ValidationResult(self.issues)

        for key in sorted(k for k in self.stack if k not in STACK_KEYS):
            self.add(key, "one of " + ", ".join(sorted(STACK_KEYS)), key, "unknown stack key")

        self._name()
        mode = self._mode()
        self._state()
        secrets = self._mapping("secrets")
        networks = self._mapping("networks")
        directories = self._mapping("directories")

        self._secrets(secrets)
        self._networks(networks)
        symbols = self._directories(directories)
        self._services(mode, secrets, networks, symbols)

        if self.issues:
            logger.debug("Validation found %d issue(s)", len(self.issues))
        return ValidationResult(self.issues)

    # ── Top level ───────────────────────────────────────────────

    def _name(self) -> None:
        name = self.stack.get("name")
        if name is None:
            self.add("name", "non-empty string", None, "name is required")
        elif not isinstance(name, str) or not name.strip():
            self.add("name", "non-empty string", name, "name must be a non-empty string")
        elif "/" in name or "\\" in name or "\0" in name or name in (".", ".."):
            self.add("name", "filesystem-safe name without path separators", name,
                     "name is not filesystem-safe")

    def _mode(self) -> str | None:
        mode = self.stack.get("mode")
        if mode is None:
            self.add("mode", " | ".join(MODES), None, "mode is required")
            return None
        if mode not in MODES:
            self.add("mode", " | ".join(MODES), mode, "unknown mode")
            return None
        return mode

    def _state(self) -> None:
        state = self.stack.get("state", "present")
        if state not in STATES:
            self.add("state", " | ".join(STATES), state, "unknown state")
        if "allow_prune" in self.stack and not isinstance(self.stack["allow_prune"], bool):
            self.add("allow_prune", "boolean", self.stack["allow_prune"], "allow_prune must be a boolean")

    def _mapping(self, key: str) -> Mapping[str, Any]:
        value = self.stack.get(key)
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            self.add(key, "mapping", value, f"{key} must be a mapping")
            return {}
        return value

    # ── Secrets / networks / directories ────────────────────────

    def _secrets(self, secrets: Mapping[str, Any]) -> None:
        for name, spec in secrets.items():
            path = f"secrets.{name}"
            if not isinstance(name, str) or not _SAFE_NAME_RE.match(name):
                self.add(path, "name matching [A-Za-z0-9][A-Za-z0-9_.-]*", name, "invalid secret name")
            if not isinstance(spec, Mapping):
                self.add(path, "mapping with value or value_from", spec, "secret must be a mapping")
                continue
            has_value, has_from = "value" in spec, "value_from" in spec
            if has_value == has_from:
                self.add(path, "exactly one of value / value_from", sorted(spec),
                         "secret needs exactly one of value or value_from")
            elif has_value and not isinstance(spec["value"], str):
                self.add(f"{path}.value", "string", spec["value"], "secret value must be a string")
            elif has_from and spec["value_from"] in (None, "", {}):
                self.add(f"{path}.value_from", "secret source reference", spec["value_from"],
                         "value_from must not be empty")

    def _networks(self, networks: Mapping[str, Any]) -> None:
        for name, spec in networks.items():
            path = f"networks.{name}"
            if spec is None:
                continue
            if not isinstance(spec, Mapping):
                self.add(path, "mapping", spec, "network must be a mapping")
                continue
            for key in sorted(k for k in spec if k not in NETWORK_KEYS):
                self.add(f"{path}.{key}", "one of " + ", ".join(sorted(NETWORK_KEYS)), key,
                         "unknown network key")
            for key in ("attachable", "external"):
                if key in spec and not isinstance(spec[key], bool):
                    self.add(f"{path}.{key}", "boolean", spec[key], f"{key} must be a boolean")
            for key in ("name", "driver"):
                if key in spec and not (isinstance(spec[key], str) and spec[key]):
                    self.add(f"{path}.{key}", "non-empty string", spec[key], f"{key} must be a string")
            for key in ("labels", "driver_opts"):
                if key in spec and not isinstance(spec[key], Mapping):
                    self.add(f"{path}.{key}", "mapping", spec[key], f"{key} must be a mapping")

    def _directories(self, directories: Mapping[str, Any]) -> set[str]:
        """Check directory overrides; return the set of usable symbols."""
        names = set(RESERVED_DIRS)
        for name, spec in directories.items():
            path = f"directories.{name}"
            if not isinstance(name, str) or not _DIR_NAME_RE.match(name):
                self.add(path, "name matching [A-Za-z0-9_]+", name, "invalid directory name")
                continue
            names.add(name)
            if spec is None:
                continue
            if not isinstance(spec, Mapping):
                self.add(path, "mapping with path/owner/group/mode", spec,
                         "directory override must be a mapping")
                continue
            for key in sorted(k for k in spec if k not in DIRECTORY_KEYS):
                self.add(f"{path}.{key}", "one of " + ", ".join(sorted(DIRECTORY_KEYS)), key,
                         "unknown directory key")
            if "path" in spec and not (isinstance(spec["path"], str) and spec["path"]):
                self.add(f"{path}.path", "non-empty string", spec["path"], "path must be a string")
            if name == "base" and isinstance(spec.get("path"), str) and not spec["path"].startswith("/"):
                self.add(f"{path}.path", "absolute path", spec["path"], "base directory must be absolute")
            for key in ("owner", "group"):
                if key in spec and (isinstance(spec[key], bool) or not isinstance(spec[key], (str, int))):
                    self.add(f"{path}.{key}", "user/group name or id", spec[key], f"invalid {key}")
            if "mode" in spec and normalize_mode(spec["mode"]) is None:
                self.add(f"{path}.mode", "octal permission value 0000-7777", spec["mode"],
                         "invalid permission value")
        return {f"{SYMBOL_PREFIX}{n}" for n in names}

    # ── Services ────────────────────────────────────────────────

    def _services(
        self,
        mode: str | None,
        secrets: Mapping[str, Any],
        networks: Mapping[str, Any],
        symbols: set[str],
    ) -> None:
        services = self._mapping("services")
        for name, spec in services.items():
            path = f"services.{name}"
            if not isinstance(name, str) or not _SAFE_NAME_RE.match(name):
                self.add(path, "name matching [A-Za-z0-9][A-Za-z0-9_.-]*", name, "invalid service name")
            if not isinstance(spec, Mapping):
                self.add(path, "mapping", spec, "service must be a mapping")
                continue

            image = spec.get("image")
            if not (isinstance(image, str) and image.strip()):
                self.add(f"{path}.image", "non-empty string", image, "image is required")

            self._ports(path, spec.get("ports"))
            self._volumes(path, spec.get("volumes"), symbols)
            self._secret_refs(path, spec.get("secrets"), secrets)
            self._network_refs(path, spec.get("networks"), networks)
            self._key_values(f"{path}.environment", spec.get("environment"))
            self._key_values(f"{path}.labels", spec.get("labels"))
            self._reserved_label(path, spec.get("labels"))

            if "deploy" in spec:
                self._deploy(path, mode, spec["deploy"])

    def _list(self, path: str, value: Any) -> list[Any]:
        if value is None:
            return []
        if not isinstance(value, list):
            self.add(path, "list", value, "must be a list")
            return []
        return value

    def _ports(self, path: str, ports: Any) -> None:
        for index, entry in enumerate(self._list(f"{path}.ports", ports)):
            try:
                parse_port(entry)
            except ShorthandError as e:
                self.add(f"{path}.ports[{index}]", e.expected, entry, str(e))

    def _volumes(self, path: str, volumes: Any, symbols: set[str]) -> None:
        for index, entry in enumerate(self._list(f"{path}.volumes", volumes)):
            entry_path = f"{path}.volumes[{index}]"
            if isinstance(entry, Mapping):
                if not isinstance(entry.get("target"), str):
                    self.add(entry_path, "mapping with a target path", entry, "volume target is required")
            elif not isinstance(entry, str) or not entry:
                self.add(entry_path, "volume string or mapping", entry, "invalid volume entry")
                continue
            source = volume_source(entry)
            if source is None:
                continue
            try:
                split_symbol(source, symbols)
            except ShorthandError as e:
                self.add(entry_path, e.expected, entry, str(e))

    def _secret_refs(self, path: str, refs: Any, secrets: Mapping[str, Any]) -> None:
        for index, ref in enumerate(self._list(f"{path}.secrets", refs)):
            entry_path = f"{path}.secrets[{index}]"
            name = ref.get("source") if isinstance(ref, Mapping) else ref
            if not isinstance(name, str) or not name:
                self.add(entry_path, "secret name or {source: name}", ref, "invalid secret reference")
                continue
            if isinstance(ref, Mapping) and "mode" in ref and normalize_mode(ref["mode"]) is None:
                self.add(f"{entry_path}.mode", "octal permission value 0000-7777", ref["mode"],
                         "invalid secret file mode")
            if name not in secrets:
                self.add(entry_path, "one of declared secrets: " + (", ".join(sorted(secrets)) or "<none>"),
                         name, f"secret '{name}' is not declared", kind="reference")

    def _network_refs(self, path: str, refs: Any, networks: Mapping[str, Any]) -> None:
        if isinstance(refs, Mapping):
            names = list(refs)
            for name, options in refs.items():
                if options is not None and not isinstance(options, Mapping):
                    self.add(f"{path}.networks.{name}", "mapping of network options", options,
                             "invalid network options")
        else:
            names = self._list(f"{path}.networks", refs)
        for index, name in enumerate(names):
            entry_path = f"{path}.networks[{index}]"
            if not isinstance(name, str):
                self.add(entry_path, "network name", name, "invalid network reference")
            elif name not in networks:
                self.add(entry_path, "one of declared networks: " + (", ".join(sorted(networks)) or "<none>"),
                         name, f"network '{name}' is not declared", kind="reference")

    def _key_values(self, path: str, value: Any) -> None:
        if value is None or isinstance(value, Mapping):
            return
        if isinstance(value, list) and all(isinstance(v, str) for v in value):
            return
        self.add(path, "mapping or list of KEY=VALUE strings", value, "invalid key/value block")

    def _reserved_label(self, path: str, labels: Any) -> None:
        keys: list[str] = []
        if isinstance(labels, Mapping):
            keys = [str(k) for k in labels]
        elif isinstance(labels, list):
            keys = [str(v).split("=", 1)[0] for v in labels]
        if FINGERPRINT_LABEL in keys:
            self.add(f"{path}.labels.{FINGERPRINT_LABEL}", "label computed by the planner",
                     FINGERPRINT_LABEL, "label is reserved")

    def _deploy(self, path: str, mode: str | None, deploy: Any) -> None:
        deploy_path = f"{path}.deploy"
        if mode != "orchestrated":
            if mode is not None:
                self.add(deploy_path, "no deploy block under mode 'composition'", deploy,
                         "deploy requires mode 'orchestrated'")
            return
        if not isinstance(deploy, Mapping):
            self.add(deploy_path, "mapping", deploy, "deploy must be a mapping")
            return
        replicas = deploy.get("replicas")
        if replicas is not None and (isinstance(replicas, bool) or not isinstance(replicas, int) or replicas < 0):
            self.add(f"{deploy_path}.replicas", "non-negative integer", replicas, "invalid replica count")
        if deploy.get("mode") not in (None, "replicated", "global"):
            self.add(f"{deploy_path}.mode", "replicated | global", deploy.get("mode"), "unknown deploy mode")
        placement = deploy.get("placement")
        if placement is None:
            return
        if not isinstance(placement, Mapping):
            self.add(f"{deploy_path}.placement", "mapping", placement, "placement must be a mapping")
            return
        constraints = placement.get("constraints")
        if constraints is not None and not (
            isinstance(constraints, str)
            or (isinstance(constraints, list) and all(isinstance(c, str) for c in constraints))
        ):
            self.add(f"{deploy_path}.placement.constraints", "string or list of strings", constraints,
                     "invalid placement constraints")
        preferences = placement.get("preferences")
        if preferences is not None and not (
            isinstance(preferences, Mapping)
            or (isinstance(preferences, list) and all(isinstance(p, Mapping) for p in preferences))
        ):
            self.add(f"{deploy_path}.placement.preferences", "mapping or list of mappings", preferences,
                     "invalid placement preferences")
