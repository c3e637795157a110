"""
Check use case — validate layered stack files and report every issue.

Merges and validates each stack, then runs normalization without
resolving secret payloads so that shorthand errors surface too.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stackplane.core.config.defaults import load_defaults
from stackplane.core.config.loader import load_stack_layers
from stackplane.core.config.merge import merge
from stackplane.core.errors import ConfigError, NormalizationError, ValidationIssue
from stackplane.core.services.directories import resolve_for_stack
from stackplane.core.services.normalizer import ADDRESSING_SKIPPED, normalize
from stackplane.core.services.validator import validate


@dataclass
class StackCheck:
    """Validation outcome of one stack."""

    name: str
    issues: list[ValidationIssue] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "valid": self.valid,
            "issues": [issue.to_dict() for issue in self.issues],
            "diagnostics": self.diagnostics,
        }


@dataclass
class CheckResult:
    """Result of checking a set of stack files."""

    stacks: list[StackCheck] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors and all(stack.valid for stack in self.stacks)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "stack_count": len(self.stacks),
            "stacks": [stack.to_dict() for stack in self.stacks],
        }


def check_stacks(
    paths: Sequence[Path],
    defaults_path: Path | None = None,
    override_path: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> CheckResult:
    """Validate every stack declared across ``paths``.

    Args:
        paths: Layer files, lowest precedence first.
        defaults_path: Optional planner defaults file.
        override_path: Optional override applied on top of every stack.
        overrides: Explicit planner default values.

    Returns:
        CheckResult with all issues of every stack.
    """
    result = CheckResult()

    try:
        defaults = load_defaults(defaults_path, overrides=overrides)
        stacks = load_stack_layers(paths, defaults, override_path)
    except ConfigError as e:
        result.errors.append(str(e))
        return result

    if not stacks:
        result.errors.append("No stacks found in the given files.")
        return result

    for stack in stacks:
        check = StackCheck(name=stack.name)
        merged = merge(stack.layers)
        validation = validate(merged)
        check.issues.extend(validation.issues)
        if validation.ok:
            try:
                plan = normalize(merged, resolve_for_stack(merged, defaults), address_secrets=False)
                check.diagnostics = [d for d in plan.diagnostics if d != ADDRESSING_SKIPPED]
            except NormalizationError as e:
                check.issues.extend(e.issues)
        result.stacks.append(check)

    return result
