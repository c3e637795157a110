"""
stackplane — CLI entrypoint.

Usage:
    python -m stackplane.main --help
    python -m stackplane.main validate -f stacks.yml
    python -m stackplane.main plan -f defaults.yml -f stacks.yml --override hotfix.yml
    python -m stackplane.main apply -f stacks.yml --mock
"""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from stackplane import __version__
from stackplane.core.observability.logging_config import (
    ENV_LOG_FILE,
    ENV_LOG_FILE_LEVEL,
    resolve_level,
    setup_logging,
)


@click.group()
@click.version_option(version=__version__, prog_name="stackplane")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--defaults",
    "defaults_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Planner defaults file (YAML).",
)
@click.option("--base-dir", default=None, help="Root directory for stack trees (default: /opt/stacks).")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    defaults_path: str | None,
    base_dir: str | None,
) -> None:
    """stackplane — plan and deploy layered container stacks."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["defaults_path"] = Path(defaults_path) if defaults_path else None
    ctx.obj["overrides"] = {"base_dir": base_dir}

    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get(ENV_LOG_FILE),
        log_file_level=os.environ.get(ENV_LOG_FILE_LEVEL),
        quiet_third_party=not debug,
    )


def stack_inputs(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Shared -f/--file, --override and --json options."""
    fn = click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")(fn)
    fn = click.option(
        "--override",
        "override_path",
        type=click.Path(exists=False, dir_okay=False),
        default=None,
        help="Override file applied on top of every stack.",
    )(fn)
    fn = click.option(
        "--file",
        "-f",
        "files",
        multiple=True,
        required=True,
        type=click.Path(exists=False, dir_okay=False),
        help="Stack layer file; repeat to layer (later files win).",
    )(fn)
    return fn


def _paths(files: tuple[str, ...]) -> list[Path]:
    return [Path(f) for f in files]


def _print_issues(issues: list[dict]) -> None:
    for issue in issues:
        click.echo(f"     • {issue['path']}: {issue['message']}")
        click.secho(f"       expected {issue['expected']}, got {issue['actual']}", dim=True)


@cli.command()
@stack_inputs
@click.pass_context
def validate(ctx: click.Context, files: tuple[str, ...], override_path: str | None, as_json: bool) -> None:
    """Validate stack files and report every issue.

    Examples:

        stackplane validate -f stacks.yml

        stackplane validate -f base.yml -f prod.yml --override hotfix.yml
    """
    from stackplane.core.use_cases.check import check_stacks

    result = check_stacks(
        _paths(files),
        defaults_path=ctx.obj.get("defaults_path"),
        override_path=Path(override_path) if override_path else None,
        overrides=ctx.obj.get("overrides"),
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    for err in result.errors:
        click.secho(f"❌ {err}", fg="red")

    for stack in result.stacks:
        if stack.valid:
            click.secho(f"✅ {stack.name}", fg="green", bold=True)
            if not ctx.obj.get("quiet"):
                for note in stack.diagnostics:
                    click.secho(f"     ⚠️  {note}", fg="yellow")
        else:
            click.secho(f"❌ {stack.name} ({len(stack.issues)} issue(s))", fg="red", bold=True)
            _print_issues([issue.to_dict() for issue in stack.issues])

    if not result.valid:
        sys.exit(1)


@cli.command()
@stack_inputs
@click.option("--render", is_flag=True, help="Also print each rendered composition document.")
@click.pass_context
def plan(
    ctx: click.Context,
    files: tuple[str, ...],
    override_path: str | None,
    as_json: bool,
    render: bool,
) -> None:
    """Build the canonical plan of every stack without applying it."""
    from stackplane.core.use_cases.plan import plan_stacks

    result = plan_stacks(
        _paths(files),
        defaults_path=ctx.obj.get("defaults_path"),
        override_path=Path(override_path) if override_path else None,
        overrides=ctx.obj.get("overrides"),
        render=render,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, sort_keys=True))
        sys.exit(0 if result.ok else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    for outcome in result.outcomes:
        stack_plan = result.plans.get(outcome.stack)
        if stack_plan is None:
            click.secho(f"\n❌ {outcome.stack}", fg="red", bold=True)
            click.echo(f"   {outcome.error_type}")
            if outcome.issues:
                _print_issues(outcome.issues)
            else:
                click.echo(f"   {outcome.error}")
            continue

        click.secho(f"\n📋 {stack_plan.name} [{stack_plan.mode}] → {stack_plan.action}", fg="cyan", bold=True)
        click.echo(f"   Stack dir: {stack_plan.directories.stack}")
        for name, service in stack_plan.services.items():
            fp = service.fingerprint
            fp_label = f"  secrets {fp[:12]}" if fp and service.secrets else ""
            click.echo(f"     • {name}  {service.image}{fp_label}")
        for secret in stack_plan.secrets.values():
            click.echo(f"     🔑 {secret.name} → {secret.addressed_name}")
        for note in stack_plan.diagnostics:
            click.secho(f"     ⚠️  {note}", fg="yellow")
        if render and outcome.stack in result.documents:
            click.echo()
            for line in result.documents[outcome.stack].splitlines():
                click.echo(f"     │ {line}")

    click.echo()
    if not result.ok:
        sys.exit(1)


@cli.command()
@stack_inputs
@click.option("--mock", is_flag=True, help="Use the in-memory runtime (no real execution).")
@click.option("--all-or-nothing", is_flag=True, help="Apply nothing if any stack fails to plan.")
@click.option("--workers", "-w", default=1, type=click.IntRange(min=1), help="Stacks applied concurrently.")
@click.option(
    "--timeout",
    default=None,
    type=click.FloatRange(min=0, min_open=True),
    help="Readiness wait bound in seconds (orchestrated stacks).",
)
@click.pass_context
def apply(
    ctx: click.Context,
    files: tuple[str, ...],
    override_path: str | None,
    as_json: bool,
    mock: bool,
    all_or_nothing: bool,
    workers: int,
    timeout: float | None,
) -> None:
    """Apply every stack (or remove those with state: absent).

    Examples:

        stackplane apply -f stacks.yml

        stackplane apply -f stacks.yml --mock --workers 4

        stackplane apply -f stacks.yml --all-or-nothing --timeout 120
    """
    from stackplane.core.use_cases.deploy import deploy_stacks

    overrides = dict(ctx.obj.get("overrides") or {})
    overrides["wait_timeout"] = timeout

    result = deploy_stacks(
        _paths(files),
        defaults_path=ctx.obj.get("defaults_path"),
        override_path=Path(override_path) if override_path else None,
        overrides=overrides,
        mock_mode=mock,
        all_or_nothing=all_or_nothing,
        max_workers=workers,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    report = result.report
    assert report is not None

    mode_label = "[mock] " if mock else ""
    click.secho(f"\n⚡ {mode_label}apply — {report.total} stack(s)", fg="cyan", bold=True)
    click.echo()

    for outcome in report.outcomes:
        if outcome.ok:
            changed = outcome.report.get("changed") if outcome.report else False
            click.secho(f"   ✓ {outcome.stack}", fg="green", nl=False)
            click.echo(f" ({outcome.action}{'' if changed else ', unchanged'})")
            if ctx.obj.get("verbose"):
                for receipt in outcome.receipts:
                    click.echo(f"     │ {receipt.intent_id} → {receipt.status}")
        elif outcome.status == "skipped":
            click.secho(f"   ⊘ {outcome.stack} ", fg="yellow", nl=False)
            click.echo(f"({outcome.error})")
        else:
            click.secho(f"   ✗ {outcome.stack}", fg="red", nl=False)
            click.echo(f" [{outcome.stage}] {outcome.error_type}")
            if outcome.issues:
                _print_issues(outcome.issues)
            elif outcome.error:
                for line in outcome.error.split("\n")[:5]:
                    click.echo(f"     │ {line}")

    click.echo()
    status_color = {"ok": "green", "partial": "yellow", "failed": "red"}.get(report.status, "white")
    click.secho(f"   Result: {report.succeeded}/{report.total} succeeded", fg=status_color, bold=True)

    if not report.all_ok:
        click.echo()
        sys.exit(1)

    click.echo()


if __name__ == "__main__":
    cli()
