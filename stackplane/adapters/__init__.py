"""Runtimes — the execution collaborators that carry out backend intents.

Public re-exports for convenient access.
"""

from stackplane.adapters.base import Runtime
from stackplane.adapters.docker import DockerRuntime
from stackplane.adapters.mock import MockRuntime

__all__ = [
    "DockerRuntime",
    "MockRuntime",
    "Runtime",
]
