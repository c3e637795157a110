"""
Directory resolver — the canonical on-disk layout of a stack.

    base      global root (PlannerDefaults.base_dir, overridable)
    stack     base/<stack name>
    config    stack/config
    data      stack/data
    secrets   stack/secrets   (only materialized in composition mode)
    <extra>   stack/<extra>   (any additional entry declared by the stack)

Every entry carries owner/group/mode, defaulted from PlannerDefaults and
overridable per entry. Relative override paths are taken relative to the
stack directory.

Resolution is pure: nothing here touches the filesystem.
"""

from __future__ import annotations

import posixpath
from collections.abc import Mapping
from typing import Any

from stackplane.core.config.defaults import PlannerDefaults, normalize_mode
from stackplane.core.errors import NormalizationError, ValidationIssue
from stackplane.core.models.plan import DirectoryEntry, DirectoryLayout
from stackplane.core.services.shorthand import SYMBOL_PREFIX

RESERVED_DIRS = ("base", "stack", "config", "data", "secrets")


def resolve(
    stack_name: str,
    base_override: str | None = None,
    extra_dirs: Mapping[str, Mapping[str, Any] | None] | None = None,
    defaults: PlannerDefaults | None = None,
) -> DirectoryLayout:
    """Compute the directory layout of one stack.

    Args:
        stack_name: Filesystem-safe stack name.
        base_override: Replacement for the global base directory.
        extra_dirs: Per-entry overrides keyed by logical name. Reserved
            names (config, data, ...) override the built-in entries;
            other names declare extra directories.
        defaults: Run defaults (built-in constants when omitted).
    """
    defaults = defaults or PlannerDefaults()
    overrides = {name: dict(value or {}) for name, value in (extra_dirs or {}).items()}

    base = _clean(base_override or overrides.get("base", {}).get("path") or defaults.base_dir)
    entries: dict[str, DirectoryEntry] = {}
    entries["base"] = _entry("base", base, overrides.get("base"), defaults)

    stack_override = overrides.get("stack", {}).get("path")
    stack_dir = _clean(posixpath.join(base, stack_override or stack_name))
    entries["stack"] = _entry("stack", stack_dir, overrides.get("stack"), defaults)

    fixed = {
        "config": defaults.config_subdir,
        "data": defaults.data_subdir,
        "secrets": defaults.secrets_subdir,
    }
    for name, subdir in fixed.items():
        path = _under(stack_dir, overrides.get(name, {}).get("path") or subdir)
        default_mode = defaults.secrets_dir_mode if name == "secrets" else defaults.dir_mode
        entries[name] = _entry(name, path, overrides.get(name), defaults, default_mode)

    for name in sorted(n for n in overrides if n not in RESERVED_DIRS):
        path = _under(stack_dir, overrides[name].get("path") or name)
        entries[name] = _entry(name, path, overrides[name], defaults)

    return DirectoryLayout(entries=entries)


def resolve_for_stack(merged: Mapping[str, Any], defaults: PlannerDefaults | None = None) -> DirectoryLayout:
    """Resolve the layout from a validated stack mapping."""
    return resolve(
        stack_name=merged["name"],
        extra_dirs=merged.get("directories") or {},
        defaults=defaults,
    )


def symbol_table(layout: DirectoryLayout) -> dict[str, str]:
    """Map every symbolic prefix (``$_data``, ...) to its absolute path."""
    return {f"{SYMBOL_PREFIX}{name}": entry.path for name, entry in layout.entries.items()}


# ── Helpers ─────────────────────────────────────────────────────────


def _clean(path: str) -> str:
    return posixpath.normpath(path)


def _under(stack_dir: str, path: str) -> str:
    """Absolute paths are kept, relative ones hang off the stack directory."""
    return _clean(path if posixpath.isabs(path) else posixpath.join(stack_dir, path))


def _entry(
    name: str,
    path: str,
    override: Mapping[str, Any] | None,
    defaults: PlannerDefaults,
    default_mode: str | None = None,
) -> DirectoryEntry:
    override = override or {}
    raw_mode = override.get("mode", default_mode or defaults.dir_mode)
    mode = normalize_mode(raw_mode)
    if mode is None:
        raise NormalizationError(
            ValidationIssue(
                path=f"directories.{name}.mode",
                expected="octal permission value",
                actual=raw_mode,
                message="invalid directory mode",
            )
        )
    return DirectoryEntry(
        name=name,
        path=path,
        owner=str(override.get("owner", defaults.dir_owner)),
        group=str(override.get("group", defaults.dir_group)),
        mode=mode,
    )
