"""
Tests for the engine executor — isolation, all-or-nothing, concurrency.
"""

import pytest

from stackplane.adapters.mock import MockRuntime
from stackplane.core.config.loader import StackLayers
from stackplane.core.engine.executor import RunReport, StackOutcome, plan_all, run_stacks


def _layers(*stacks: dict) -> list[StackLayers]:
    return [StackLayers(name=s["name"], layers=[s]) for s in stacks]


@pytest.fixture
def broken_stack() -> dict:
    return {"name": "broken", "mode": "composition", "services": {"app": {"image": "x", "secrets": ["nope"]}}}


class TestPlanAll:
    def test_failures_recorded_not_raised(self, planner, webapp_stack, broken_stack):
        runs = plan_all(_layers(webapp_stack, broken_stack), planner)
        assert [r.name for r in runs] == ["webapp", "broken"]
        assert not runs[0].failed
        assert runs[1].failed
        assert type(runs[1].error).__name__ == "UnresolvedReferenceError"


class TestRunStacks:
    def test_all_succeed(self, planner, webapp_stack, swarm_stack, mock_runtime):
        report = run_stacks(_layers(webapp_stack, swarm_stack), planner, runtime=mock_runtime)
        assert report.status == "ok"
        assert report.succeeded == 2
        assert report.get("api").stage == "applied"
        assert set(mock_runtime.deployments) == {"webapp", "api"}

    def test_failure_is_isolated(self, planner, webapp_stack, broken_stack, mock_runtime):
        report = run_stacks(_layers(broken_stack, webapp_stack), planner, runtime=mock_runtime)
        assert report.status == "partial"
        broken = report.get("broken")
        assert broken.status == "failed"
        assert broken.issues[0]["path"] == "services.app.secrets[0]"
        assert report.get("webapp").ok
        assert "webapp" in mock_runtime.deployments

    def test_backend_failure_isolated(self, planner, webapp_stack, swarm_stack):
        runtime = MockRuntime()
        runtime.set_failure("deploy_stack", target="api", error="swarm not initialised")
        report = run_stacks(_layers(swarm_stack, webapp_stack), planner, runtime=runtime)
        api = report.get("api")
        assert api.status == "failed"
        assert api.stage == "planned"
        assert api.error_type == "BackendError"
        assert "swarm not initialised" in api.error
        assert report.get("webapp").ok

    def test_all_or_nothing_applies_nothing(self, planner, webapp_stack, broken_stack, mock_runtime):
        report = run_stacks(
            _layers(webapp_stack, broken_stack), planner, runtime=mock_runtime, all_or_nothing=True,
        )
        assert report.status == "failed"
        assert report.get("webapp").status == "skipped"
        assert "broken" in report.get("webapp").error
        assert report.skipped == 1
        assert mock_runtime.call_count == 0

    def test_all_or_nothing_when_clean(self, planner, webapp_stack, mock_runtime):
        report = run_stacks(_layers(webapp_stack), planner, runtime=mock_runtime, all_or_nothing=True)
        assert report.all_ok

    def test_concurrent_workers(self, planner, webapp_stack, swarm_stack, mock_runtime):
        other = dict(webapp_stack, name="blog")
        report = run_stacks(
            _layers(webapp_stack, swarm_stack, other), planner, runtime=mock_runtime, max_workers=3,
        )
        assert [o.stack for o in report.outcomes] == ["webapp", "api", "blog"]
        assert report.all_ok
        assert set(mock_runtime.deployments) == {"webapp", "api", "blog"}

    def test_removal(self, planner, webapp_stack, mock_runtime):
        run_stacks(_layers(webapp_stack), planner, runtime=mock_runtime)
        webapp_stack["state"] = "absent"
        report = run_stacks(_layers(webapp_stack), planner, runtime=mock_runtime)
        outcome = report.get("webapp")
        assert outcome.action == "remove"
        assert outcome.stage == "removed"

    def test_custom_backend_factory(self, planner, webapp_stack, mock_runtime):
        built = []

        def factory(plan):
            built.append(plan.name)
            return planner.backend_factory(mock_runtime)(plan)

        run_stacks(_layers(webapp_stack), planner, backend_factory=factory)
        assert built == ["webapp"]

    def test_needs_runtime_or_factory(self, planner, webapp_stack):
        with pytest.raises(ValueError):
            run_stacks(_layers(webapp_stack), planner)


class TestReportShapes:
    def test_outcome_to_dict(self):
        outcome = StackOutcome(stack="x", status="failed", error="boom", error_type="BackendError")
        assert outcome.to_dict() == {
            "stack": "x", "status": "failed", "stage": "raw", "action": None,
            "error": "boom", "error_type": "BackendError",
        }

    def test_report_to_dict(self, planner, webapp_stack, mock_runtime):
        data = run_stacks(_layers(webapp_stack), planner, runtime=mock_runtime).to_dict()
        assert data["status"] == "ok"
        assert data["stacks"][0]["report"]["deployed"] is True

    def test_empty_report(self):
        assert RunReport().status == "ok"
