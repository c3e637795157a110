"""Backend adapters — turn a canonical plan into runtime intents."""

from __future__ import annotations

from stackplane.adapters.base import Runtime
from stackplane.core.backends.base import BackendAdapter, BackendReport, Plan
from stackplane.core.backends.composition import CompositionBackend
from stackplane.core.backends.orchestration import OrchestrationBackend
from stackplane.core.backends.rendering import Renderer, render_document, yaml_renderer
from stackplane.core.config.defaults import PlannerDefaults

BACKENDS: dict[str, type[BackendAdapter]] = {
    CompositionBackend.mode: CompositionBackend,
    OrchestrationBackend.mode: OrchestrationBackend,
}


def backend_for(
    plan: Plan,
    runtime: Runtime,
    defaults: PlannerDefaults | None = None,
    renderer: Renderer | None = None,
    **kwargs,
) -> BackendAdapter:
    """Pick the backend matching the plan's mode."""
    return BACKENDS[plan.mode](runtime, defaults=defaults, renderer=renderer, **kwargs)


__all__ = [
    "BACKENDS",
    "BackendAdapter",
    "BackendReport",
    "CompositionBackend",
    "OrchestrationBackend",
    "backend_for",
    "render_document",
    "yaml_renderer",
]
