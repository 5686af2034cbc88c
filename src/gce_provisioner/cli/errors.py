"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

import typer


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def describe_failure(exc: BaseException) -> str:
    """One-line reason for a reconcile failure, naming the underlying cause."""
    from gce_provisioner.engine.errors import (
        ReconcileError,
        UnexpectedStatusError,
        WaitCanceledError,
        WaitTimeoutError,
    )

    cause = exc.__cause__ if isinstance(exc, ReconcileError) else exc
    if isinstance(cause, WaitTimeoutError):
        reason = "timed out"
    elif isinstance(cause, UnexpectedStatusError):
        reason = "unexpected status"
    elif isinstance(cause, WaitCanceledError):
        reason = "canceled"
    else:
        reason = type(cause).__name__ if cause is not None else "error"
    return f"{reason}: {exc}"


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    from gce_provisioner.config.loader import ConfigError
    from gce_provisioner.engine.errors import (
        NotFoundError,
        ReconcileError,
        StatePersistError,
        ValidationError,
    )

    fg = typer.colors.RED if color else None

    if isinstance(exc, ConfigError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, ValidationError):
        _err("Validation failed:", fg=fg)
        for e in exc.errors:
            _err(f"  - {e}", fg=fg)
    elif isinstance(exc, NotFoundError):
        _err(f"Resource not found: {exc}", fg=fg)
    elif isinstance(exc, ReconcileError):
        _err(f"Apply failed ({describe_failure(exc)})", fg=fg)
        _err(f"  Last observed status: {exc.state.status or 'unknown'}", fg=fg)
    elif isinstance(exc, StatePersistError):
        _err(f"State not saved: {exc}", fg=fg)
        _err("  Re-run with --refresh to recover state from the provider.", fg=fg)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
