"""
Tests for the stack validator — every issue collected with path/expected/actual.
"""

import pytest

from stackplane.core.errors import ConfigError, UnresolvedReferenceError
from stackplane.core.services.validator import validate


def _paths(result) -> list[str]:
    return [issue.path for issue in result.issues]


class TestValidStacks:
    def test_composition_stack_ok(self, webapp_stack):
        result = validate(webapp_stack)
        assert result.ok, result.issues

    def test_orchestrated_stack_ok(self, swarm_stack):
        result = validate(swarm_stack)
        assert result.ok, result.issues

    def test_minimal_stack(self):
        assert validate({"name": "x", "mode": "composition"}).ok

    def test_validator_does_not_mutate(self, webapp_stack):
        import copy

        before = copy.deepcopy(webapp_stack)
        validate(webapp_stack)
        assert webapp_stack == before

    def test_unknown_service_keys_pass_through(self, webapp_stack):
        webapp_stack["services"]["app"]["restart"] = "unless-stopped"
        webapp_stack["services"]["app"]["healthcheck"] = {"test": ["CMD", "true"]}
        assert validate(webapp_stack).ok


class TestTopLevel:
    def test_name_required(self):
        result = validate({"mode": "composition"})
        assert _paths(result) == ["name"]
        assert result.issues[0].message == "name is required"

    @pytest.mark.parametrize("name", ["", "  ", "a/b", "..", 42])
    def test_bad_names(self, name):
        result = validate({"name": name, "mode": "composition"})
        assert _paths(result) == ["name"]

    def test_mode_required(self):
        assert _paths(validate({"name": "x"})) == ["mode"]

    def test_unknown_mode(self):
        result = validate({"name": "x", "mode": "kubernetes"})
        issue = result.issues[0]
        assert issue.path == "mode"
        assert issue.actual == "kubernetes"
        assert issue.expected == "composition | orchestrated"

    def test_bad_state_and_prune(self):
        result = validate({"name": "x", "mode": "composition", "state": "gone", "allow_prune": "yes"})
        assert _paths(result) == ["state", "allow_prune"]

    def test_unknown_top_level_key(self):
        result = validate({"name": "x", "mode": "composition", "volumes": {}})
        assert _paths(result) == ["volumes"]
        assert result.issues[0].message == "unknown stack key"

    def test_removal_is_strict_too(self):
        result = validate({"name": "x", "mode": "composition", "state": "absent", "extra": 1})
        assert _paths(result) == ["extra"]

    def test_collects_every_issue(self):
        result = validate({
            "mode": "swarm",
            "services": {
                "app": {"ports": ["99999:80"], "secrets": ["missing"]},
            },
        })
        assert _paths(result) == [
            "name",
            "mode",
            "services.app.image",
            "services.app.ports[0]",
            "services.app.secrets[0]",
        ]


class TestServices:
    def test_missing_secret_reference(self, webapp_stack):
        webapp_stack["services"]["app"]["secrets"] = ["app_secret", "db_password"]
        result = validate(webapp_stack)
        issue = result.issues[0]
        assert issue.path == "services.app.secrets[1]"
        assert issue.kind == "reference"
        assert issue.actual == "db_password"
        assert "app_secret" in issue.expected

    def test_missing_network_reference(self, swarm_stack):
        swarm_stack["services"]["worker"]["networks"] = ["frontend"]
        result = validate(swarm_stack)
        assert _paths(result) == ["services.worker.networks[0]"]
        assert result.issues[0].kind == "reference"

    def test_network_options_must_be_mappings(self, swarm_stack):
        swarm_stack["services"]["web"]["networks"] = {"backend": {"aliases": ["api-internal"]}}
        assert validate(swarm_stack).ok
        swarm_stack["services"]["web"]["networks"] = {"backend": "api-internal"}
        assert _paths(validate(swarm_stack)) == ["services.web.networks.backend"]

    def test_bad_port(self, webapp_stack):
        webapp_stack["services"]["app"]["ports"] = ["8080:80", "8080:80/sctp"]
        result = validate(webapp_stack)
        assert _paths(result) == ["services.app.ports[1]"]
        assert result.issues[0].actual == "8080:80/sctp"

    def test_unknown_volume_symbol(self, webapp_stack):
        webapp_stack["services"]["app"]["volumes"] = ["$_logs:/var/log"]
        result = validate(webapp_stack)
        assert _paths(result) == ["services.app.volumes[0]"]

    def test_bare_symbolic_volume(self, webapp_stack):
        webapp_stack["services"]["app"]["volumes"] = ["$_data", "$_bogus"]
        result = validate(webapp_stack)
        assert _paths(result) == ["services.app.volumes[1]"]
        assert "$_bogus" in result.issues[0].message

    def test_extra_directory_symbol_allowed(self, webapp_stack):
        webapp_stack["directories"] = {"logs": {"mode": "0755"}}
        webapp_stack["services"]["app"]["volumes"] = ["$_logs:/var/log"]
        assert validate(webapp_stack).ok

    def test_bad_secret_mount_mode(self, swarm_stack):
        swarm_stack["services"]["web"]["secrets"][1]["mode"] = "rw"
        result = validate(swarm_stack)
        assert _paths(result) == ["services.web.secrets[1].mode"]

    def test_reserved_fingerprint_label(self, webapp_stack):
        webapp_stack["services"]["app"]["labels"] = ["secrets_fingerprint=abc"]
        result = validate(webapp_stack)
        assert _paths(result) == ["services.app.labels.secrets_fingerprint"]

    def test_environment_forms(self, webapp_stack):
        webapp_stack["services"]["app"]["environment"] = ["A=1", "B=2"]
        assert validate(webapp_stack).ok
        webapp_stack["services"]["app"]["environment"] = "A=1"
        assert _paths(validate(webapp_stack)) == ["services.app.environment"]


class TestDeployGate:
    def test_deploy_under_composition_is_an_error(self, webapp_stack):
        webapp_stack["services"]["app"]["deploy"] = {"replicas": 2}
        result = validate(webapp_stack)
        assert not result.ok
        issue = result.issues[0]
        assert issue.path == "services.app.deploy"
        assert issue.message == "deploy requires mode 'orchestrated'"
        assert issue.expected == "no deploy block under mode 'composition'"
        assert issue.actual == {"replicas": 2}

        with pytest.raises(ConfigError) as exc:
            result.raise_for_issues("webapp")
        assert "services.app.deploy" in str(exc.value)
        assert not isinstance(exc.value, UnresolvedReferenceError)

    def test_bad_deploy_fields(self, swarm_stack):
        swarm_stack["services"]["web"]["deploy"] = {
            "replicas": -1,
            "mode": "daemon",
            "placement": {"constraints": [1], "preferences": "spread"},
        }
        assert _paths(validate(swarm_stack)) == [
            "services.web.deploy.replicas",
            "services.web.deploy.mode",
            "services.web.deploy.placement.constraints",
            "services.web.deploy.placement.preferences",
        ]


class TestSecretsAndDirectories:
    def test_secret_needs_exactly_one_source(self):
        result = validate({
            "name": "x", "mode": "composition",
            "secrets": {"a": {}, "b": {"value": "v", "value_from": {"env": "B"}}, "c": {"value": 3}},
        })
        assert _paths(result) == ["secrets.a", "secrets.b", "secrets.c.value"]

    def test_directory_overrides(self):
        result = validate({
            "name": "x", "mode": "composition",
            "directories": {
                "data": {"mode": "999"},
                "base": {"path": "relative"},
                "bad-name": {},
                "logs": {"colour": "blue"},
            },
        })
        assert _paths(result) == [
            "directories.data.mode",
            "directories.base.path",
            "directories.bad-name",
            "directories.logs.colour",
        ]


class TestRaiseForIssues:
    def test_reference_only_issues(self, webapp_stack):
        webapp_stack["services"]["app"]["secrets"] = ["nope"]
        with pytest.raises(UnresolvedReferenceError) as exc:
            validate(webapp_stack).raise_for_issues("webapp")
        assert exc.value.stack == "webapp"
        assert len(exc.value.issues) == 1

    def test_ok_does_not_raise(self, webapp_stack):
        validate(webapp_stack).raise_for_issues("webapp")

    def test_to_dict(self, webapp_stack):
        webapp_stack["services"]["app"]["image"] = ""
        data = validate(webapp_stack).to_dict()
        assert data["ok"] is False
        assert data["issues"][0]["path"] == "services.app.image"
