"""
Mock runtime — an in-memory docker host for tests and ``--mock`` runs.

Keeps just enough state (directories, networks, secrets, deployments)
to answer query intents, so backends behave exactly as they would
against a real host: a second run with an unchanged plan finds
everything in place. Failures and unready services can be scripted.
"""

from __future__ import annotations

import hashlib
import posixpath
from typing import Any

import yaml

from stackplane.adapters.base import Runtime
from stackplane.core.models.intent import Intent, Receipt


class MockRuntime(Runtime):
    """In-memory runtime.

    By default, every mutating intent succeeds and deployed services
    report their full replica count on the first status poll.
    """

    def __init__(self, runtime_name: str = "mock", available: bool = True):
        self._name = runtime_name
        self._available = available
        self._call_log: list[Intent] = []
        self._failures: dict[tuple[str, str | None], str] = {}
        self._stalled: dict[str, dict[str, int]] = {}

        self.directories: dict[str, dict[str, Any]] = {}
        self.networks: dict[str, dict[str, Any]] = {}
        self.secrets: dict[str, dict[str, Any]] = {}       # key: path or object name
        self.deployments: dict[str, dict[str, Any]] = {}   # key: stack name

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[Intent]:
        """All intents this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def kinds(self) -> list[str]:
        """Intent kinds in call order."""
        return [intent.kind for intent in self._call_log]

    def intents_of(self, kind: str) -> list[Intent]:
        return [intent for intent in self._call_log if intent.kind == kind]

    def is_available(self) -> bool:
        return self._available

    def set_failure(self, kind: str, target: str | None = None, error: str = "Mock failure") -> None:
        """Make intents of ``kind`` (optionally only for ``target``) fail."""
        self._failures[(kind, target)] = error

    def stall(self, stack: str, running: dict[str, int]) -> None:
        """Report ``running`` replicas for the given services of ``stack``."""
        self._stalled[stack] = dict(running)

    # ── Dispatch ────────────────────────────────────────────────

    def handle(self, intent: Intent) -> Receipt:
        self._call_log.append(intent)

        error = self._failures.get((intent.kind, intent.target)) or self._failures.get((intent.kind, None))
        if error is not None:
            return Receipt.failure(runtime=self._name, intent_id=intent.id, error=error)

        handler = getattr(self, f"_{intent.kind}")
        metadata = handler(intent) or {}
        return Receipt.success(
            runtime=self._name,
            intent_id=intent.id,
            output=f"[mock] {intent.kind} {intent.target}".rstrip(),
            metadata=metadata,
        )

    # ── Handlers ────────────────────────────────────────────────

    def _ensure_directory(self, intent: Intent) -> None:
        self.directories[intent.target] = dict(intent.params)

    def _inspect_path(self, intent: Intent) -> dict:
        root = intent.target.rstrip("/")
        paths = [*self.directories, *(r["path"] for r in self.secrets.values())]
        paths += [d["path"] for d in self.deployments.values()]
        return {"exists": any(_inside(p, root) for p in paths)}

    def _inspect_network(self, intent: Intent) -> dict:
        return {"exists": intent.target in self.networks}

    def _create_network(self, intent: Intent) -> None:
        self.networks[intent.target] = dict(intent.params)

    def _secret_key(self, intent: Intent) -> str:
        return intent.params.get("path") or intent.target

    def _inspect_secret(self, intent: Intent) -> dict:
        record = self.secrets.get(self._secret_key(intent))
        if record is None:
            return {"exists": False, "sha256": None}
        return {"exists": True, "sha256": record["sha256"]}

    def _materialize_secret(self, intent: Intent) -> None:
        key = self._secret_key(intent)
        if key in self.secrets:
            raise FileExistsError(f"secret {key} already exists")
        payload: bytes = intent.params["payload"]
        self.secrets[key] = {
            "name": intent.target,
            "stack": intent.stack,
            "sha256": hashlib.sha256(payload).hexdigest(),
            "path": intent.params.get("path"),
            "mode": intent.params.get("mode"),
            "labels": dict(intent.params.get("labels") or {}),
        }

    def _list_secrets(self, intent: Intent) -> dict:
        directory = intent.params.get("path")
        names = sorted(
            record["name"]
            for record in self.secrets.values()
            if record["stack"] == intent.stack
            and (directory is None or (record["path"] and posixpath.dirname(record["path"]) == directory))
        )
        return {"names": names}

    def _prune_secret(self, intent: Intent) -> None:
        self.secrets.pop(self._secret_key(intent), None)

    def _inspect_deployment(self, intent: Intent) -> dict:
        deployment = self.deployments.get(intent.stack)
        return {"sha256": deployment["sha256"] if deployment else None}

    def _deploy_stack(self, intent: Intent) -> None:
        document: str = intent.params["document"]
        parsed = yaml.safe_load(document) or {}
        replicas = {
            name: int(((spec or {}).get("deploy") or {}).get("replicas", 1))
            for name, spec in (parsed.get("services") or {}).items()
        }
        self.deployments[intent.stack] = {
            "sha256": hashlib.sha256(document.encode("utf-8")).hexdigest(),
            "document": document,
            "path": intent.params.get("path"),
            "replicas": replicas,
        }

    def _service_status(self, intent: Intent) -> dict:
        deployment = self.deployments.get(intent.stack)
        if deployment is None:
            return {"services": {}}
        stalled = self._stalled.get(intent.stack, {})
        return {
            "services": {
                name: {"running": stalled.get(name, desired), "desired": desired}
                for name, desired in deployment["replicas"].items()
            }
        }

    def _remove_stack(self, intent: Intent) -> None:
        self.deployments.pop(intent.stack, None)

    def _remove_path(self, intent: Intent) -> None:
        root = intent.target.rstrip("/")
        if intent.params.get("recursive"):
            self.directories = {p: v for p, v in self.directories.items() if not _inside(p, root)}
            self.secrets = {k: v for k, v in self.secrets.items() if not _inside(v.get("path"), root)}
        else:
            self.secrets.pop(root, None)


def _inside(path: str | None, root: str) -> bool:
    return bool(path) and (path == root or path.startswith(root + "/"))
