"""CLI application for stack-provisioner."""

from __future__ import annotations

import logging
import os
import sys

import typer

from stack_provisioner import __version__

_EXIT_CODES = (
    "Exit codes: 0 success, 1 error, 2 plan has changes, "
    "3 apply finished partially (state holds everything that succeeded)."
)

app = typer.Typer(
    name="stack-provisioner",
    help="Plan and apply infrastructure split into units that import each other's outputs.",
    epilog=_EXIT_CODES,
    no_args_is_help=True,
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"stack-provisioner {__version__}")
        raise typer.Exit


# Waves run resources on worker threads; the thread name tells them apart.
_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
_DEBUG_LOG_FORMAT = "%(levelname)s [%(threadName)s] %(name)s: %(message)s"
_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def _log_level(verbose: int) -> int | None:
    """Level from ``STACK_LOG`` if set, else from the ``-v`` count; ``None`` stays silent."""
    env_level = os.environ.get("STACK_LOG", "").upper()
    if env_level:
        if env_level not in _LEVELS:
            print(
                f"WARNING: invalid STACK_LOG level '{env_level}', "
                f"expected one of {', '.join(_LEVELS)}; using INFO",
                file=sys.stderr,
            )
        return _LEVELS.get(env_level, logging.INFO)
    if verbose >= 2:
        return logging.DEBUG
    if verbose == 1:
        return logging.INFO
    return None


def _configure_logging(verbose: int) -> None:
    level = _log_level(verbose)
    if level is None:
        return
    logging.basicConfig(
        level=logging.WARNING,
        format=_DEBUG_LOG_FORMAT if level <= logging.DEBUG else _LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("stack_provisioner").setLevel(level)


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
        help="Log engine progress (-v waves and retries, -vv every decision).",
    ),
) -> None:
    """Plan and apply multi-unit infrastructure with cross-unit references."""
    _ = version
    _configure_logging(verbose)


# Register commands after app is created to avoid circular imports.
from stack_provisioner.cli import commands as _commands  # noqa: E402, F401
