"""
Deploy use case — plan every stack and apply or remove it on a runtime.

The full vertical slice: load defaults and layer files, plan each
stack, hand each plan to its backend, and report per-stack outcomes.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from stackplane.adapters.base import Runtime
from stackplane.core.config.defaults import load_defaults
from stackplane.core.config.loader import load_stack_layers
from stackplane.core.engine.executor import RunReport, run_stacks
from stackplane.core.errors import ConfigError
from stackplane.core.services.planner import StackPlanner

logger = logging.getLogger(__name__)


@dataclass
class DeployResult:
    """Result of a deploy run."""

    report: RunReport | None = None
    runtime: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.report is not None and self.report.all_ok

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result
        result["runtime"] = self.runtime
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def deploy_stacks(
    paths: Sequence[Path],
    defaults_path: Path | None = None,
    override_path: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    mock_mode: bool = False,
    runtime: Runtime | None = None,
    all_or_nothing: bool = False,
    max_workers: int = 1,
) -> DeployResult:
    """Apply (or remove) every stack declared across ``paths``.

    Args:
        paths: Layer files, lowest precedence first.
        defaults_path: Optional planner defaults file.
        override_path: Optional override applied on top of every stack.
        overrides: Explicit planner default values (e.g. wait_timeout).
        mock_mode: Use the in-memory runtime instead of docker.
        runtime: Pre-configured runtime; takes precedence over ``mock_mode``.
        all_or_nothing: Apply nothing if any stack fails to plan.
        max_workers: Stacks applied concurrently.
    """
    result = DeployResult()

    try:
        defaults = load_defaults(defaults_path, overrides=overrides)
        stacks = load_stack_layers(paths, defaults, override_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    if not stacks:
        result.error = "No stacks found in the given files."
        return result

    if runtime is None:
        from stackplane.adapters.docker import DockerRuntime
        from stackplane.adapters.mock import MockRuntime

        runtime = MockRuntime() if mock_mode else DockerRuntime()

    if not runtime.is_available():
        result.error = f"Runtime '{runtime.name}' is not available."
        return result

    result.runtime = runtime.name
    logger.info("Deploying %d stack(s) with runtime '%s'", len(stacks), runtime.name)
    result.report = run_stacks(
        stacks,
        StackPlanner(defaults),
        runtime=runtime,
        all_or_nothing=all_or_nothing,
        max_workers=max_workers,
    )
    return result
