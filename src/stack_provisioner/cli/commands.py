"""CLI command implementations."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal

import typer

from stack_provisioner.cli import app
from stack_provisioner.cli.errors import EXIT_CHANGES, EXIT_ERROR, handle_error
from stack_provisioner.config.loader import DEFAULT_CONFIG_FILE

if TYPE_CHECKING:
    from stack_provisioner.config.schema import Config
    from stack_provisioner.engine.types import ApplyResult, Plan

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the configuration file."),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]

AutoApprove = Annotated[
    bool,
    typer.Option("--auto-approve", help="Skip interactive approval."),
]

FailFast = Annotated[
    bool | None,
    typer.Option(
        "--fail-fast/--no-fail-fast",
        help="Stop starting new work after the first failure (overrides the config file).",
    ),
]

NoWait = Annotated[
    bool,
    typer.Option("--no-wait", help="Fail at once if another run holds the state lock."),
]


def _use_color(no_color: bool) -> bool:
    """Determine whether to use color output."""
    return not (no_color or os.environ.get("NO_COLOR"))


def _lock_mode(cfg: Config, no_wait: bool) -> Config:
    if not no_wait:
        return cfg
    execution = cfg.execution.model_copy(update={"wait_for_lock": False})
    return cfg.model_copy(update={"execution": execution})


def _apply_with_progress(
    plan_obj: Plan, cfg: Config, *, color: bool, fail_fast: bool | None
) -> ApplyResult:
    """Apply a plan with a Rich progress bar and per-resource status lines."""
    from rich.console import Console
    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    from stack_provisioner.cli.formatting import action_style
    from stack_provisioner.config import apply
    from stack_provisioner.engine.types import Action, ResourceChange

    console = Console(no_color=not color)
    actionable = [c for c in plan_obj.changes if c.action != Action.NOOP]

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Applying", total=len(actionable))

        def on_progress(change: ResourceChange, event: Literal["start", "done"]) -> None:
            s = action_style(change)
            if event == "start":
                progress.update(task, description=f"{change.address}: {s.progress_verb}...")
            elif event == "done":
                progress.console.print(f"  {change.address}: {s.done_verb}")
                progress.advance(task)

        return apply(plan_obj, cfg, progress=on_progress, fail_fast=fail_fast)


def _confirm_and_apply(
    plan_obj: Plan,
    cfg: Config,
    *,
    color: bool,
    auto_approve: bool,
    fail_fast: bool | None,
    confirm_msg: str,
    empty_msg: str,
) -> None:
    """Shared flow: show plan -> confirm -> apply with progress -> print summary.

    Exits with code 0 if there is nothing to do.
    """
    from stack_provisioner.cli.formatting import (
        changes_summary,
        format_apply_summary,
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )

    if not has_actionable_changes(plan_obj):
        typer.echo(empty_msg)
        raise typer.Exit(0)

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(changes_summary(plan_obj.changes), color=color))
    typer.echo()

    if not auto_approve:
        try:
            typer.confirm(confirm_msg, abort=True)
        except typer.Abort as e:
            typer.echo("Apply canceled.", err=True)
            raise typer.Exit(EXIT_ERROR) from e

    try:
        result = _apply_with_progress(plan_obj, cfg, color=color, fail_fast=fail_fast)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo()
    typer.echo(format_apply_summary(changes_summary(result.applied), color=color))


@app.command()
def plan(
    config: ConfigPath = Path(DEFAULT_CONFIG_FILE),
    out: Annotated[
        Path | None,
        typer.Option("--out", "-o", help="Save plan to file."),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the machine-readable diff instead of the plan."),
    ] = False,
    destroy: Annotated[
        bool,
        typer.Option("--destroy", help="Plan the removal of every managed resource."),
    ] = False,
    no_wait: NoWait = False,
    no_color: NoColor = False,
) -> None:
    """Show changes required by the current configuration.

    Exits with code 2 when the plan contains changes.
    """
    from stack_provisioner.cli.formatting import (
        changes_summary,
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )
    from stack_provisioner.config import load
    from stack_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = _lock_mode(load(config), no_wait)
        plan_obj = plan_fn(cfg, destroy=destroy)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if as_json:
        typer.echo(json.dumps(plan_obj.diff_report(), indent=2))
    else:
        typer.echo(format_plan(plan_obj, color=color))
        typer.echo()
        typer.echo(format_plan_summary(changes_summary(plan_obj.changes), color=color))

    if out is not None:
        plan_obj.save(out)
        typer.echo(f"\nPlan saved to {out}", err=as_json)

    if has_actionable_changes(plan_obj):
        raise typer.Exit(EXIT_CHANGES)


@app.command(name="apply")
def apply_cmd(
    plan_file: Annotated[
        Path | None,
        typer.Argument(help="Saved plan file to apply."),
    ] = None,
    config: ConfigPath = Path(DEFAULT_CONFIG_FILE),
    auto_approve: AutoApprove = False,
    fail_fast: FailFast = None,
    no_wait: NoWait = False,
    no_color: NoColor = False,
) -> None:
    """Apply the changes required by the current configuration."""
    from stack_provisioner.config import check_plan, load
    from stack_provisioner.config import plan as plan_fn
    from stack_provisioner.engine.types import Plan

    color = _use_color(no_color)
    try:
        cfg = _lock_mode(load(config), no_wait)
        if plan_file is not None:
            plan_obj = Plan.load(plan_file)
            check_plan(plan_obj, cfg)
        else:
            plan_obj = plan_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        fail_fast=fail_fast,
        confirm_msg="Do you want to apply these changes?",
        empty_msg="No changes. Resources are up-to-date.",
    )


@app.command()
def destroy(
    config: ConfigPath = Path(DEFAULT_CONFIG_FILE),
    auto_approve: AutoApprove = False,
    fail_fast: FailFast = None,
    no_wait: NoWait = False,
    no_color: NoColor = False,
) -> None:
    """Destroy all managed resources. Retained resources are left in place."""
    from stack_provisioner.config import load
    from stack_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = _lock_mode(load(config), no_wait)
        plan_obj = plan_fn(cfg, destroy=True)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        fail_fast=fail_fast,
        confirm_msg="Do you really want to destroy all resources?",
        empty_msg="No resources to destroy.",
    )


@app.command()
def validate(
    config: ConfigPath = Path(DEFAULT_CONFIG_FILE),
    no_color: NoColor = False,
) -> None:
    """Validate the configuration file without touching state."""
    from stack_provisioner.cli.formatting import styler
    from stack_provisioner.config import load
    from stack_provisioner.config import validate as validate_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        graph = validate_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    count = len(graph.resources)
    typer.echo(
        styler(color)(
            f"Configuration is valid. {len(graph.units)} units, "
            f"{count} resource{'s' if count != 1 else ''}.",
            fg="green",
        )
    )


@app.command(name="graph")
def graph_cmd(
    config: ConfigPath = Path(DEFAULT_CONFIG_FILE),
    no_color: NoColor = False,
) -> None:
    """Print the unit order and the resource waves."""
    from stack_provisioner.cli.formatting import format_graph
    from stack_provisioner.config import graph as graph_fn
    from stack_provisioner.config import load

    color = _use_color(no_color)
    try:
        cfg = load(config)
        graph = graph_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_graph(graph, color=color))
