"""
Tests for the check / plan / deploy use cases.
"""

from stackplane.adapters.mock import MockRuntime
from stackplane.core.use_cases.check import check_stacks
from stackplane.core.use_cases.deploy import deploy_stacks
from stackplane.core.use_cases.plan import plan_stacks

STACK = """\
    name: api
    mode: orchestrated
    services:
      web:
        image: ghcr.io/acme/api:2.1
        secrets: [token]
    secrets:
      token:
        value_from:
          env: API_TOKEN
"""


class TestCheck:
    def test_valid_without_secret_values(self, write_yaml, monkeypatch):
        monkeypatch.delenv("API_TOKEN", raising=False)
        result = check_stacks([write_yaml("s.yml", STACK)])
        assert result.valid
        assert result.stacks[0].name == "api"

    def test_normalization_issue_reported(self, write_yaml):
        path = write_yaml("s.yml", """\
            name: api
            mode: orchestrated
            services:
              web:
                image: ghcr.io/acme/api:2.1
                volumes: ["$_secrets:/run/keys"]
        """)
        result = check_stacks([path])
        assert not result.valid
        assert result.stacks[0].issues[0].path == "services.web.volumes[0]"

    def test_no_stacks(self, write_yaml):
        result = check_stacks([write_yaml("empty.yml", "")])
        assert result.errors == ["No stacks found in the given files."]

    def test_bad_defaults(self, write_yaml):
        result = check_stacks([write_yaml("s.yml", STACK)], defaults_path=write_yaml("d.yml", "base_dir: rel\n"))
        assert not result.valid
        assert result.errors


class TestPlanStacks:
    def test_plans_and_documents(self, write_yaml, monkeypatch):
        monkeypatch.setenv("API_TOKEN", "t-1")
        result = plan_stacks([write_yaml("s.yml", STACK)], render=True)
        assert result.ok
        plan = result.plans["api"]
        assert plan.secrets["token"].addressed_name.startswith("token_")
        assert plan.secrets["token"].addressed_name in result.documents["api"]

    def test_unresolvable_secret_is_a_failure(self, write_yaml, monkeypatch):
        monkeypatch.delenv("API_TOKEN", raising=False)
        result = plan_stacks([write_yaml("s.yml", STACK)])
        assert not result.ok
        assert result.outcomes[0].error_type == "AddressingError"
        assert "API_TOKEN" in result.to_dict()["failures"][0]["error"]

    def test_removal_not_rendered(self, write_yaml, monkeypatch):
        monkeypatch.delenv("API_TOKEN", raising=False)
        result = plan_stacks([write_yaml("s.yml", STACK + "    state: absent\n")], render=True)
        assert result.ok
        assert result.documents == {}


class TestDeployStacks:
    def test_with_runtime(self, write_yaml, monkeypatch):
        monkeypatch.setenv("API_TOKEN", "t-1")
        runtime = MockRuntime()
        result = deploy_stacks([write_yaml("s.yml", STACK)], runtime=runtime)
        assert result.ok
        assert result.runtime == "mock"
        assert "api" in runtime.deployments

    def test_unavailable_runtime(self, write_yaml):
        result = deploy_stacks([write_yaml("s.yml", STACK)], runtime=MockRuntime(available=False))
        assert not result.ok
        assert result.error == "Runtime 'mock' is not available."

    def test_timeout_override(self, write_yaml, monkeypatch):
        monkeypatch.setenv("API_TOKEN", "t-1")
        runtime = MockRuntime()
        result = deploy_stacks(
            [write_yaml("s.yml", STACK)], runtime=runtime, overrides={"wait_timeout": 0.5, "poll_interval": 0.01},
        )
        assert result.ok
