"""
Intent and Receipt models: how backends talk to a runtime.

Backends send Intents; runtimes answer every one with a Receipt, even
when the work failed.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


IntentKind = Literal[
    "ensure_directory",
    "inspect_path",
    "inspect_network",
    "create_network",
    "inspect_secret",
    "materialize_secret",
    "list_secrets",
    "prune_secret",
    "inspect_deployment",
    "deploy_stack",
    "service_status",
    "remove_stack",
    "remove_path",
]

# Intents that destroy or replace something on the runtime.
DESTRUCTIVE_KINDS: frozenset[str] = frozenset({
    "prune_secret",
    "deploy_stack",
    "remove_stack",
    "remove_path",
})


class Intent(BaseModel):
    """A requested operation to be executed by a runtime.

    Intents are the backend's way of saying "make this so." The runtime
    decides how (docker CLI, in-memory simulation, ...).
    """

    kind: IntentKind
    stack: str                      # owning stack name
    target: str = ""                # network / secret / path the intent acts on
    params: dict[str, Any] = Field(default_factory=dict)

    @property
    def id(self) -> str:
        return f"{self.stack}:{self.kind}:{self.target}"

    @property
    def is_destructive(self) -> bool:
        return self.kind in DESTRUCTIVE_KINDS


class Receipt(BaseModel):
    """What a runtime reports back for one intent.

    A runtime never raises: an intent that could not be carried out comes
    back as a ``failed`` receipt with the error text. Query intents put
    their answer in ``metadata``.
    """

    runtime: str
    intent_id: str
    status: Literal["ok", "failed"] = "ok"
    duration_ms: int = 0
    output: str = ""
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def success(cls, runtime: str, intent_id: str, output: str = "", **kwargs: Any) -> Receipt:
        return cls(runtime=runtime, intent_id=intent_id, output=output, **kwargs)

    @classmethod
    def failure(cls, runtime: str, intent_id: str, error: str) -> Receipt:
        return cls(runtime=runtime, intent_id=intent_id, status="failed", error=error)
