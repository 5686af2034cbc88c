"""Typer entry point: global options and log routing for plan/apply runs."""

from __future__ import annotations

import logging
import os
import sys

import typer

from gce_provisioner import __version__

app = typer.Typer(
    name="gce-provisioner",
    help="Declarative start/stop and attribute reconciliation for GCE instances.",
    no_args_is_help=True,
    add_completion=False,
)

PACKAGE_LOGGER = "gce_provisioner"
LOG_ENV_VAR = "GCE_LOG"

# Client libraries that log every HTTP round-trip the poller makes.
_CLIENT_LOGGERS = ("google.api_core", "google.auth", "urllib3")

_LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
_VERBOSITY = {1: logging.INFO, 2: logging.DEBUG}


def resolve_log_level(verbose: int, env_value: str | None) -> int | None:
    """Pick the package log level; ``None`` leaves logging untouched.

    ``GCE_LOG`` wins over ``-v`` flags so CI jobs can pin a level.
    """
    if env_value:
        level = logging.getLevelName(env_value.strip().upper())
        if not isinstance(level, int):
            raise typer.BadParameter(
                f"{LOG_ENV_VAR}={env_value!r} is not a log level "
                "(use debug, info, warning, error or critical)"
            )
        return level
    if verbose <= 0:
        return None
    return _VERBOSITY.get(verbose, logging.DEBUG)


def configure_logging(level: int) -> None:
    """Route ``gce_provisioner`` records to stderr at ``level``.

    Re-running replaces the handler installed by a previous call. HTTP-level
    client chatter is only shown at DEBUG.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in [h for h in logger.handlers if getattr(h, "_gce_cli", False)]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    handler._gce_cli = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.setLevel(level)

    client_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in _CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(client_level)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"gce-provisioner {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Log reconcile progress (-v) or every provider call and poll (-vv).",
    ),
) -> None:
    _ = version
    level = resolve_log_level(verbose, os.environ.get(LOG_ENV_VAR))
    if level is not None:
        configure_logging(level)


from gce_provisioner.cli import commands as _commands  # noqa: E402, F401
