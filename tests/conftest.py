"""
Shared test fixtures and configuration.
"""

import copy
import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest

from stackplane.adapters.mock import MockRuntime
from stackplane.core.config.defaults import PlannerDefaults
from stackplane.core.services.planner import StackPlanner


@pytest.fixture
def defaults() -> PlannerDefaults:
    """Built-in defaults with a fast poll interval."""
    return PlannerDefaults(poll_interval=0.01, wait_timeout=5)


@pytest.fixture
def planner(defaults: PlannerDefaults) -> StackPlanner:
    return StackPlanner(defaults)


@pytest.fixture
def mock_runtime() -> MockRuntime:
    return MockRuntime()


@pytest.fixture
def webapp_stack() -> dict:
    """A composition stack with one secret-consuming service."""
    return copy.deepcopy({
        "name": "webapp",
        "mode": "composition",
        "services": {
            "app": {
                "image": "nginx:1.25",
                "ports": ["8080:80"],
                "volumes": ["$_data:/var/lib/app", "$_config/nginx.conf:/etc/nginx/nginx.conf:ro"],
                "secrets": ["app_secret"],
            },
        },
        "secrets": {"app_secret": {"value": "supersecret"}},
    })


@pytest.fixture
def swarm_stack() -> dict:
    """An orchestrated stack with replicas, placement and an overlay network."""
    return copy.deepcopy({
        "name": "api",
        "mode": "orchestrated",
        "services": {
            "web": {
                "image": "ghcr.io/acme/api:2.1",
                "ports": [{"target": 8000, "published": 80}],
                "secrets": ["db_password", {"source": "api_key", "target": "key", "mode": "0400"}],
                "networks": ["backend"],
                "deploy": {
                    "replicas": 3,
                    "placement": {"constraints": "node.role == worker"},
                },
            },
            "worker": {
                "image": "ghcr.io/acme/worker:2.1",
                "secrets": ["db_password"],
                "networks": ["backend"],
            },
        },
        "secrets": {
            "db_password": {"value": "hunter2"},
            "api_key": {"value": "k-123"},
        },
        "networks": {"backend": {}},
    })


@pytest.fixture
def write_yaml(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a dedented YAML document under tmp_path and return its path."""

    def _write(name: str, content: str) -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(content))
        return path

    return _write
