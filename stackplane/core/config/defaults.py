"""
Planner defaults — the read-only global settings shared by every stack.

Loaded once per run and passed explicitly to the planner; never
mutated afterwards. Sources in precedence order:

    explicit overrides  >  STACKPLANE_* env vars  >  defaults file  >  constants
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from stackplane.core.errors import InputError

logger = logging.getLogger(__name__)

# ── Documented constants ────────────────────────────────────────────

DEFAULT_BASE_DIR = "/opt/stacks"
DEFAULT_OWNER = "root"
DEFAULT_GROUP = "root"
DEFAULT_DIR_MODE = "0750"
DEFAULT_SECRETS_DIR_MODE = "0700"
DEFAULT_SECRET_FILE_MODE = "0600"
DEFAULT_COMPOSE_FILENAME = "docker-compose.yml"
DEFAULT_WAIT_TIMEOUT = 300.0
DEFAULT_POLL_INTERVAL = 2.0

# Environment variables honoured by load_defaults()
ENV_BASE_DIR = "STACKPLANE_BASE_DIR"
ENV_WAIT_TIMEOUT = "STACKPLANE_WAIT_TIMEOUT"

_MODE_RE = re.compile(r"^0?[0-7]{3,4}$")


def normalize_mode(value: Any) -> str | None:
    """Return a permission value as a 4-digit octal string, or None if invalid.

    Accepts octal strings ("750", "0750") and integers. YAML reads an
    unquoted ``0750`` as the octal int 488, so ints are taken as already
    decoded permission bits.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        if 0 <= value <= 0o7777:
            return f"{value:04o}"
        return None
    if isinstance(value, str) and _MODE_RE.match(value):
        return f"{int(value, 8):04o}"
    return None


class PlannerDefaults(BaseModel):
    """Global, immutable defaults for directory layout and backend behaviour."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_dir: str = DEFAULT_BASE_DIR
    config_subdir: str = "config"
    data_subdir: str = "data"
    secrets_subdir: str = "secrets"

    dir_owner: str = DEFAULT_OWNER
    dir_group: str = DEFAULT_GROUP
    dir_mode: str = DEFAULT_DIR_MODE
    secrets_dir_mode: str = DEFAULT_SECRETS_DIR_MODE
    secret_file_mode: str = DEFAULT_SECRET_FILE_MODE

    compose_filename: str = DEFAULT_COMPOSE_FILENAME
    wait_timeout: float = Field(default=DEFAULT_WAIT_TIMEOUT, gt=0)
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)

    # Lowest-precedence layer merged under every stack
    stack_defaults: dict[str, Any] = Field(default_factory=dict)

    @field_validator("dir_mode", "secrets_dir_mode", "secret_file_mode", mode="before")
    @classmethod
    def _octal(cls, value: Any) -> str:
        mode = normalize_mode(value)
        if mode is None:
            raise ValueError(f"not a valid permission value: {value!r}")
        return mode

    @field_validator("base_dir")
    @classmethod
    def _absolute(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"base_dir must be absolute: {value!r}")
        return value.rstrip("/") or "/"


def load_defaults(
    path: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> PlannerDefaults:
    """Build the run's PlannerDefaults.

    Args:
        path: Optional YAML defaults file.
        overrides: Explicit values (e.g. CLI flags); highest precedence.
        environ: Environment to read STACKPLANE_* variables from
            (default: ``os.environ``).

    Raises:
        InputError: If the file is unreadable or the values are invalid.
    """
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {}

    if path is not None:
        if not path.is_file():
            raise InputError(f"Defaults file not found: {path}", source=str(path))
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise InputError(f"Cannot read defaults from {path}: {e}", source=str(path)) from e
        if not isinstance(loaded, dict):
            raise InputError(
                f"Expected a YAML mapping in {path}, got {type(loaded).__name__}",
                source=str(path),
            )
        data.update(loaded)
        logger.debug("Loaded planner defaults from %s", path)

    if env.get(ENV_BASE_DIR):
        data["base_dir"] = env[ENV_BASE_DIR]
    if env.get(ENV_WAIT_TIMEOUT):
        data["wait_timeout"] = env[ENV_WAIT_TIMEOUT]

    data.update({k: v for k, v in (overrides or {}).items() if v is not None})

    try:
        return PlannerDefaults.model_validate(data)
    except ValidationError as e:
        raise InputError(f"Invalid planner defaults: {e}", source=str(path or "<defaults>")) from e
