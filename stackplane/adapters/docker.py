"""
Docker runtime — executes intents with the docker CLI and the local filesystem.

Uses the docker CLI — never the Docker API directly:

    networks      docker network inspect / create
    secrets       files under the stack's secrets dir (composition)
                  docker secret inspect / create / ls / rm (orchestrated)
    deployments   docker compose -p <stack> up -d / down
                  docker stack deploy / services / rm
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path

from stackplane.adapters.base import Runtime
from stackplane.core.models.intent import Intent, Receipt

logger = logging.getLogger(__name__)

SECRET_HASH_LABEL = "stackplane.sha256"
SECRET_STACK_LABEL = "stackplane.stack"


class DockerRuntime(Runtime):
    """Docker Engine / Compose / Swarm runtime.

    Intent params used:
        mode (str): 'composition' or 'orchestrated' (deploy/remove).
        path (str): file location for composition secrets and documents.
        payload (bytes): secret content (materialize_secret).
        timeout (int): command timeout in seconds (default: 300).
    """

    def __init__(self, timeout: int = 300):
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "docker"

    def is_available(self) -> bool:
        return shutil.which("docker") is not None

    def handle(self, intent: Intent) -> Receipt:
        handler = getattr(self, f"_{intent.kind}")
        output, metadata = handler(intent)
        return Receipt.success(
            runtime=self.name,
            intent_id=intent.id,
            output=output,
            metadata=metadata,
        )

    # ── Filesystem ──────────────────────────────────────────────

    def _ensure_directory(self, intent: Intent) -> tuple[str, dict]:
        path = Path(intent.target)
        path.mkdir(parents=True, exist_ok=True)
        os.chmod(path, int(intent.params.get("mode", "0750"), 8))
        _chown(path, intent.params.get("owner"), intent.params.get("group"))
        return str(path), {}

    def _inspect_path(self, intent: Intent) -> tuple[str, dict]:
        return "", {"exists": Path(intent.target).exists()}

    def _remove_path(self, intent: Intent) -> tuple[str, dict]:
        path = Path(intent.target)
        if intent.params.get("recursive"):
            if path.exists():
                shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
        return str(path), {}

    # ── Networks ────────────────────────────────────────────────

    def _inspect_network(self, intent: Intent) -> tuple[str, dict]:
        result = self._run(["network", "inspect", intent.target], check=False)
        return "", {"exists": result.returncode == 0}

    def _create_network(self, intent: Intent) -> tuple[str, dict]:
        params = intent.params
        args = ["network", "create", "--driver", params["driver"], "--scope", params["scope"]]
        if params.get("attachable"):
            args.append("--attachable")
        for key, value in sorted((params.get("labels") or {}).items()):
            args += ["--label", f"{key}={value}"]
        for key, value in sorted((params.get("options") or {}).items()):
            args += ["--opt", f"{key}={value}"]
        args.append(intent.target)
        return self._run(args).stdout.strip(), {}

    # ── Secrets ─────────────────────────────────────────────────

    def _inspect_secret(self, intent: Intent) -> tuple[str, dict]:
        path = intent.params.get("path")
        if path:
            file = Path(path)
            if not file.is_file():
                return "", {"exists": False, "sha256": None}
            return "", {"exists": True, "sha256": hashlib.sha256(file.read_bytes()).hexdigest()}

        result = self._run(
            ["secret", "inspect", intent.target, "--format", "{{ json .Spec.Labels }}"],
            check=False,
        )
        if result.returncode != 0:
            return "", {"exists": False, "sha256": None}
        labels = json.loads(result.stdout.strip() or "null") or {}
        # An object we did not create cannot be verified; report it as foreign content.
        return "", {"exists": True, "sha256": labels.get(SECRET_HASH_LABEL, "")}

    def _materialize_secret(self, intent: Intent) -> tuple[str, dict]:
        payload: bytes = intent.params["payload"]
        path = intent.params.get("path")
        if path:
            self._write_secret_file(Path(path), payload, intent.params)
            return path, {}

        args = ["secret", "create"]
        for key, value in sorted((intent.params.get("labels") or {}).items()):
            args += ["--label", f"{key}={value}"]
        args += [intent.target, "-"]
        return self._run(args, stdin=payload).stdout.strip(), {}

    @staticmethod
    def _write_secret_file(path: Path, payload: bytes, params: dict) -> None:
        """Write a complete file beside ``path``, then link it into place.

        Readers never see a partial payload, and an existing file is never
        replaced: the link fails with FileExistsError instead.
        """
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
            os.chmod(tmp, int(params.get("mode", "0600"), 8))
            _chown(Path(tmp), params.get("owner"), params.get("group"))
            os.link(tmp, path)
        finally:
            os.unlink(tmp)

    def _list_secrets(self, intent: Intent) -> tuple[str, dict]:
        path = intent.params.get("path")
        if path:
            directory = Path(path)
            if not directory.is_dir():
                return "", {"names": []}
            # dotfiles are secrets still being written
            names = sorted(p.name for p in directory.iterdir() if p.is_file() and not p.name.startswith("."))
            return "", {"names": names}

        result = self._run([
            "secret", "ls",
            "--filter", f"label={SECRET_STACK_LABEL}={intent.stack}",
            "--format", "{{.Name}}",
        ])
        return "", {"names": sorted(line for line in result.stdout.splitlines() if line.strip())}

    def _prune_secret(self, intent: Intent) -> tuple[str, dict]:
        path = intent.params.get("path")
        if path:
            Path(path).unlink(missing_ok=True)
            return path, {}
        return self._run(["secret", "rm", intent.target]).stdout.strip(), {}

    # ── Deployments ─────────────────────────────────────────────

    def _inspect_deployment(self, intent: Intent) -> tuple[str, dict]:
        path = Path(intent.params["path"])
        if not path.is_file():
            return "", {"sha256": None}
        return "", {"sha256": hashlib.sha256(path.read_bytes()).hexdigest()}

    def _deploy_stack(self, intent: Intent) -> tuple[str, dict]:
        """Deploy from a staging copy; the document only lands on success.

        The document on disk is what inspect_deployment compares against,
        so a failed deploy must not leave it behind.
        """
        path = Path(intent.params["path"])
        staging = path.with_name(f".{path.name}.next")
        path.parent.mkdir(parents=True, exist_ok=True)
        staging.write_text(intent.params["document"], encoding="utf-8")
        try:
            if intent.params.get("mode") == "orchestrated":
                args = ["stack", "deploy", "--with-registry-auth", "-c", str(staging)]
                if intent.params.get("prune"):
                    args.append("--prune")
                args.append(intent.stack)
                output = self._run(args).stdout.strip()
            else:
                output = self._run([
                    "compose", "-p", intent.stack, "-f", str(staging),
                    "up", "-d", "--remove-orphans",
                ]).stdout.strip()
            staging.replace(path)
        finally:
            staging.unlink(missing_ok=True)
        return output, {}

    def _service_status(self, intent: Intent) -> tuple[str, dict]:
        result = self._run([
            "stack", "services", intent.stack, "--format", "{{.Name}} {{.Replicas}}",
        ])
        return "", {"services": parse_service_replicas(result.stdout, intent.stack)}

    def _remove_stack(self, intent: Intent) -> tuple[str, dict]:
        if intent.params.get("mode") == "orchestrated":
            return self._run(["stack", "rm", intent.stack]).stdout.strip(), {}
        return self._run([
            "compose", "-p", intent.stack, "-f", intent.params["path"], "down", "--remove-orphans",
        ]).stdout.strip(), {}

    # ── Helpers ─────────────────────────────────────────────────

    def _run(
        self,
        args: list[str],
        stdin: bytes | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run a docker command; raise with stderr on failure when ``check``.

        Output is captured as bytes so secret payloads reach stdin untouched.
        """
        logger.debug("docker %s", " ".join(args))
        raw = subprocess.run(
            ["docker", *args],
            input=stdin,
            capture_output=True,
            timeout=self._timeout,
        )
        result = subprocess.CompletedProcess(
            raw.args,
            raw.returncode,
            raw.stdout.decode("utf-8", errors="replace"),
            raw.stderr.decode("utf-8", errors="replace"),
        )
        if check and result.returncode != 0:
            raise RuntimeError(result.stderr.strip() or f"docker {args[0]} failed")
        return result


def parse_service_replicas(output: str, stack: str) -> dict[str, dict[str, int]]:
    """Parse ``docker stack services`` lines like ``web_app 2/3 (max 1 per node)``."""
    services: dict[str, dict[str, int]] = {}
    prefix = f"{stack}_"
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 2 or "/" not in parts[1]:
            continue
        name = parts[0][len(prefix):] if parts[0].startswith(prefix) else parts[0]
        running, _, desired = parts[1].partition("/")
        if running.isdigit() and desired.isdigit():
            services[name] = {"running": int(running), "desired": int(desired)}
    return services


def _chown(path: Path, owner: str | None, group: str | None) -> None:
    """Apply ownership when running as root; unprivileged runs keep the caller's."""
    if not (owner or group) or os.geteuid() != 0:
        return
    shutil.chown(path, user=owner or None, group=group or None)
