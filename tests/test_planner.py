"""
Tests for the stack planner — pipeline, state machine and hand-off.
"""

import hashlib

import pytest

from stackplane.adapters.mock import MockRuntime
from stackplane.core.errors import BackendError, ConfigError, InvalidTransitionError, UnresolvedReferenceError
from stackplane.core.services.planner import PlanStage, StackPlanner, StackRun


class TestPlan:
    def test_end_to_end_scenario(self, planner):
        plan = planner.plan([{
            "name": "webapp",
            "mode": "composition",
            "services": {"app": {"image": "nginx", "secrets": ["app_secret"]}},
            "secrets": {"app_secret": {"value": "supersecret"}},
        }])
        addressed = "app_secret_" + hashlib.sha256(b"supersecret").hexdigest()[:8]
        assert plan.secrets["app_secret"].addressed_name == addressed
        assert plan.services["app"].labels["secrets_fingerprint"] == \
            hashlib.sha256(addressed.encode()).hexdigest()

    def test_layers_merged_in_order(self, planner, webapp_stack):
        override = {"services": {"app": {"image": "nginx:1.27", "ports": ["8443:443"]}}}
        plan = planner.plan([{"allow_prune": True}, webapp_stack, override])
        app = plan.services["app"]
        assert app.image == "nginx:1.27"
        assert [p.published for p in app.ports] == [8080, 8443]
        assert plan.allow_prune is True

    def test_idempotent_replan(self, planner, swarm_stack):
        first = planner.plan([swarm_stack]).to_json()
        second = StackPlanner(planner.defaults).plan([swarm_stack]).to_json()
        assert first == second

    def test_config_error_lists_every_issue(self, planner, webapp_stack):
        webapp_stack["services"]["app"]["deploy"] = {"replicas": 2}
        webapp_stack["services"]["app"]["ports"] = ["0:80"]
        with pytest.raises(ConfigError) as exc:
            planner.plan([webapp_stack])
        assert exc.value.stack == "webapp"
        assert [i.path for i in exc.value.issues] == ["services.app.ports[0]", "services.app.deploy"]

    def test_reference_error(self, planner, webapp_stack):
        webapp_stack["secrets"] = {}
        with pytest.raises(UnresolvedReferenceError):
            planner.plan([webapp_stack])

    def test_removal_still_validates(self, planner, webapp_stack):
        webapp_stack["state"] = "absent"
        webapp_stack["mode"] = "compose"
        with pytest.raises(ConfigError):
            planner.plan([webapp_stack])

    def test_removal_skips_secret_resolution(self, planner, webapp_stack, monkeypatch):
        monkeypatch.delenv("NEVER_SET_FOR_TESTS", raising=False)
        webapp_stack["state"] = "absent"
        webapp_stack["secrets"]["app_secret"] = {"value_from": {"env": "NEVER_SET_FOR_TESTS"}}
        plan = planner.plan([webapp_stack])
        assert plan.action == "remove"
        assert plan.secrets == {}

    def test_stack_defaults_layer(self):
        from stackplane.core.config.defaults import PlannerDefaults

        defaults = PlannerDefaults(base_dir="/srv", stack_defaults={"allow_prune": True})
        plan = StackPlanner(defaults).plan([defaults.stack_defaults, {"name": "x", "mode": "composition"}])
        assert plan.allow_prune is True
        assert plan.directories.stack == "/srv/x"


class TestStackRun:
    def test_sequential_stages(self, planner, webapp_stack):
        run = planner.start([webapp_stack])
        assert run.name == "webapp"
        assert run.stage == PlanStage.RAW
        planner.merge(run)
        assert run.stage == PlanStage.MERGED
        planner.validate(run)
        assert run.stage == PlanStage.VALIDATED
        planner.normalize(run)
        assert run.stage == PlanStage.PLANNED

    def test_cannot_skip_stage(self):
        run = StackRun(name="x")
        with pytest.raises(InvalidTransitionError):
            run.advance(PlanStage.VALIDATED)

    def test_cannot_go_back(self):
        run = StackRun(name="x", stage=PlanStage.PLANNED)
        with pytest.raises(InvalidTransitionError):
            run.advance(PlanStage.MERGED)

    def test_terminal_stages(self):
        run = StackRun(name="x", stage=PlanStage.APPLIED)
        assert run.done
        with pytest.raises(InvalidTransitionError):
            run.advance(PlanStage.REMOVED)

    def test_failed_run_stays_put(self, planner):
        run = planner.start([{"name": "x", "mode": "nope"}])
        with pytest.raises(ConfigError):
            planner.plan_run(run)
        assert run.failed
        assert run.stage == PlanStage.MERGED
        with pytest.raises(InvalidTransitionError):
            run.advance(PlanStage.VALIDATED)

    def test_name_from_highest_layer(self, planner):
        assert planner.start([{"name": "a"}, {"name": "b"}]).name == "b"
        assert planner.start([{}]).name == "<unnamed>"


class TestRun:
    def test_apply(self, planner, webapp_stack, mock_runtime):
        run = planner.run([webapp_stack], runtime=mock_runtime)
        assert run.stage == PlanStage.APPLIED
        assert run.report.deployed
        assert "webapp" in mock_runtime.deployments

    def test_remove(self, planner, webapp_stack, mock_runtime):
        planner.run([webapp_stack], runtime=mock_runtime)
        webapp_stack["state"] = "absent"
        run = planner.run([webapp_stack], runtime=mock_runtime)
        assert run.stage == PlanStage.REMOVED
        assert "webapp" not in mock_runtime.deployments

    def test_backend_failure_recorded(self, planner, webapp_stack):
        runtime = MockRuntime()
        runtime.set_failure("deploy_stack", error="compose exploded")
        with pytest.raises(BackendError, match="compose exploded"):
            planner.run([webapp_stack], runtime=runtime)

    def test_execute_requires_planned_run(self, planner, mock_runtime):
        with pytest.raises(InvalidTransitionError):
            planner.execute(StackRun(name="x"), planner.backend_factory(mock_runtime))

    def test_requires_runtime_or_factory(self, planner, webapp_stack):
        with pytest.raises(ValueError):
            planner.run([webapp_stack])
