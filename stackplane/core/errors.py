"""
Error taxonomy — every failure the pipeline and backends can surface.

    StackplaneError
    ├── ConfigError                 malformed/incomplete input (all issues)
    │   ├── UnresolvedReferenceError  dangling secret/network references
    │   ├── NormalizationError        a shorthand that cannot be canonicalized
    │   └── InputError                unreadable or unparseable input files
    ├── AddressingError             content address collision / mismatch
    ├── BackendError                the runtime reported a failed intent
    ├── ReadinessTimeoutError       deploy accepted, services not ready in time
    └── InvalidTransitionError      planner state machine driven out of order

ConfigError is the only error that carries a list of issues; every other
error describes exactly one failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from stackplane.core.models.intent import Intent, Receipt


IssueKind = Literal["config", "reference"]


@dataclass(frozen=True)
class ValidationIssue:
    """One field-level violation found in a merged stack mapping."""

    path: str
    expected: str
    actual: Any
    message: str
    kind: IssueKind = "config"

    def __str__(self) -> str:
        return f"{self.path}: {self.message} (expected {self.expected}, got {self.actual!r})"

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "expected": self.expected,
            "actual": repr(self.actual),
            "message": self.message,
            "kind": self.kind,
        }


class StackplaneError(Exception):
    """Base class for all stackplane errors."""


class ConfigError(StackplaneError):
    """Raised when a stack's configuration is invalid.

    Carries the full list of issues so the caller gets one actionable
    report rather than the first violation only.
    """

    def __init__(self, issues: list[ValidationIssue], stack: str | None = None):
        self.issues = list(issues)
        self.stack = stack
        super().__init__(self._format())

    def _format(self) -> str:
        label = f"stack '{self.stack}'" if self.stack else "stack"
        lines = [f"Invalid configuration for {label} ({len(self.issues)} issue(s)):"]
        lines.extend(f"  - {issue}" for issue in self.issues)
        return "\n".join(lines)


class UnresolvedReferenceError(ConfigError):
    """Raised when a service references a secret or network that does not exist."""


class NormalizationError(ConfigError):
    """Raised when a field passed validation but cannot be canonicalized."""

    def __init__(self, issue: ValidationIssue, stack: str | None = None):
        super().__init__([issue], stack=stack)

    @property
    def issue(self) -> ValidationIssue:
        return self.issues[0]


class InputError(ConfigError):
    """Raised when raw input files are missing, unreadable or not YAML mappings."""

    def __init__(self, message: str, source: str = "<input>"):
        self.source = source
        super().__init__(
            [ValidationIssue(path=source, expected="readable YAML mapping", actual=None, message=message)]
        )


class AddressingError(StackplaneError):
    """Raised when a content address maps to different content.

    Either a hash collision or a corrupted payload on the target. Never
    resolved by overwriting.
    """

    def __init__(self, addressed_name: str, message: str):
        self.addressed_name = addressed_name
        super().__init__(f"{addressed_name}: {message}")


class BackendError(StackplaneError):
    """Raised when the runtime reports failure for an intent.

    The runtime's error text is kept verbatim and the originating intent
    is attached.
    """

    def __init__(self, intent: Intent, receipt: Receipt):
        self.intent = intent
        self.receipt = receipt
        super().__init__(f"{intent.kind} {intent.target!r} failed: {receipt.error}")


class ReadinessTimeoutError(StackplaneError, TimeoutError):
    """Raised when a deployment was accepted but did not become ready in time."""

    def __init__(self, stack: str, timeout: float, pending: dict[str, tuple[int, int]]):
        self.stack = stack
        self.timeout = timeout
        self.pending = dict(pending)
        detail = ", ".join(
            f"{name} {running}/{expected}" for name, (running, expected) in sorted(self.pending.items())
        )
        super().__init__(
            f"Stack '{stack}' deployment accepted but not healthy after {timeout:g}s: {detail}"
        )


class InvalidTransitionError(StackplaneError):
    """Raised when a stack run is advanced out of order."""
