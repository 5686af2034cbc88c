"""CLI command implementations."""

from __future__ import annotations

import os
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer

from gce_provisioner.cli import app
from gce_provisioner.cli.errors import describe_failure, handle_error

if TYPE_CHECKING:
    from collections.abc import Iterator

    from gce_provisioner.engine.types import ReconcileOptions

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

Refresh = Annotated[
    bool,
    typer.Option("--refresh", help="Query the provider instead of trusting the state file."),
]

Destroy = Annotated[
    bool,
    typer.Option("--destroy", help="Stop every instance instead of applying the config."),
]

Timeout = Annotated[
    float | None,
    typer.Option("--timeout", help="Seconds to wait for a state transition to converge."),
]

Delay = Annotated[
    float | None,
    typer.Option("--delay", help="Seconds between status polls."),
]

MinTimeout = Annotated[
    float | None,
    typer.Option("--min-timeout", help="Minimum seconds between status polls."),
]


def _use_color(no_color: bool) -> bool:
    """Determine whether to use color output."""
    return not (no_color or os.environ.get("NO_COLOR"))


def _options(
    *,
    refresh: bool,
    destroy: bool = False,
    timeout: float | None = None,
    delay: float | None = None,
    min_timeout: float | None = None,
) -> ReconcileOptions:
    from gce_provisioner.engine.types import ReconcileOptions

    return ReconcileOptions(
        force_refresh=refresh,
        destroy=destroy,
        timeout=timeout,
        delay=delay,
        min_timeout=min_timeout,
    )


@contextmanager
def _cancel_on_signals() -> Iterator[threading.Event]:
    """Yield an event that is set on SIGINT/SIGTERM for the duration of the block."""
    event = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield event
        return

    def _handler(signum: int, frame: object) -> None:
        _ = frame
        typer.echo(f"\nReceived {signal.Signals(signum).name}, canceling...", err=True)
        event.set()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield event
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


@app.command()
def plan(
    config: ConfigPath = Path("gce-provisioner.yaml"),
    refresh: Refresh = False,
    destroy: Destroy = False,
    no_color: NoColor = False,
) -> None:
    """Show changes required by the current configuration."""
    from gce_provisioner.cli.formatting import format_diffs, format_plan_summary, has_changes
    from gce_provisioner.config import load
    from gce_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        diffs = plan_fn(cfg, _options(refresh=refresh, destroy=destroy))
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_diffs(diffs, color=color))
    typer.echo()
    typer.echo(format_plan_summary(diffs, color=color))

    if has_changes(diffs):
        raise typer.Exit(2)


@app.command(name="apply")
def apply_cmd(
    config: ConfigPath = Path("gce-provisioner.yaml"),
    refresh: Refresh = False,
    destroy: Destroy = False,
    timeout: Timeout = None,
    delay: Delay = None,
    min_timeout: MinTimeout = None,
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Reconcile every instance toward the current configuration."""
    from rich.console import Console

    from gce_provisioner.cli.formatting import (
        format_apply_summary,
        format_diffs,
        format_plan_summary,
        has_changes,
        styler,
    )
    from gce_provisioner.config import load
    from gce_provisioner.config import plan as plan_fn
    from gce_provisioner.config import reconcile as reconcile_fn
    from gce_provisioner.engine.errors import EngineError

    color = _use_color(no_color)
    try:
        options = _options(
            refresh=refresh,
            destroy=destroy,
            timeout=timeout,
            delay=delay,
            min_timeout=min_timeout,
        )
        cfg = load(config)
        diffs = plan_fn(cfg, options)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not has_changes(diffs):
        typer.echo("No changes. Instances are up-to-date.")
        raise typer.Exit(0)

    typer.echo(format_diffs(diffs, color=color))
    typer.echo()
    typer.echo(format_plan_summary(diffs, color=color))
    typer.echo()

    if not auto_approve:
        try:
            typer.confirm("Do you want to apply these changes?", abort=True)
        except typer.Abort as e:
            typer.echo("Apply canceled.", err=True)
            raise typer.Exit(1) from e

    console = Console(no_color=not color, stderr=True)
    try:
        with _cancel_on_signals() as cancel, console.status("Reconciling instances..."):
            outcomes = reconcile_fn(cfg, options, cancel_event=cancel)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    style = styler(color)
    for resource_id, outcome in outcomes.items():
        if isinstance(outcome, EngineError):
            typer.echo(style(f"  {resource_id}: {describe_failure(outcome)}", fg="red"), err=True)
        elif outcome.diff.is_empty:
            typer.echo(f"  {resource_id}: up-to-date")
        else:
            typer.echo(f"  {resource_id}: {outcome.state.status or 'unknown'}")

    typer.echo()
    typer.echo(format_apply_summary(outcomes, color=color))
    if any(isinstance(o, EngineError) for o in outcomes.values()):
        raise typer.Exit(1)


@app.command()
def show(
    config: ConfigPath = Path("gce-provisioner.yaml"),
    no_color: NoColor = False,
) -> None:
    """Show the recorded state of every instance."""
    from gce_provisioner.cli.formatting import format_state
    from gce_provisioner.config import load, show_state

    color = _use_color(no_color)
    try:
        cfg = load(config)
        state_file = show_state(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_state(state_file, color=color))
