"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

import typer

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CHANGES = 2
EXIT_PARTIAL = 3


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def _partial(result_summary: dict[str, int], *, fg: str | None) -> None:
    parts = [
        f"{n} {verb}"
        for n, verb in (
            (result_summary["create"], "added"),
            (result_summary["update"], "changed"),
            (result_summary["replace"], "replaced"),
            (result_summary["delete"], "destroyed"),
        )
        if n
    ]
    if parts:
        _err(f"  Partial result: {', '.join(parts)}.", fg=fg)


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    An apply that failed part-way but left consistent state maps to exit
    code 3 so it can be resumed with a fresh plan. Everything else is 1.
    No tracebacks are printed.
    """
    from stack_provisioner.config.loader import ConfigError
    from stack_provisioner.engine.errors import (
        ApplyCanceled,
        ApplyError,
        ConfigurationError,
        StalePlanError,
        StateLockError,
        StateStoreError,
        ValidationError,
    )

    fg = typer.colors.RED if color else None

    if isinstance(exc, ConfigError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, ValidationError):
        _err("Validation failed:", fg=fg)
        for e in exc.errors:
            _err(f"  - {e}", fg=fg)
    elif isinstance(exc, ConfigurationError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, StalePlanError):
        _err(f"Plan is stale: {exc}", fg=fg)
    elif isinstance(exc, StateLockError):
        _err(f"State is locked: {exc}", fg=fg)
    elif isinstance(exc, StateStoreError):
        _err(f"State error: {exc}", fg=fg)
    elif isinstance(exc, ApplyError):
        _err(f"Apply failed: {exc}", fg=fg)
        for failure in exc.result.failures:
            attempts = f" after {failure.attempts} attempts" if failure.attempts > 1 else ""
            _err(
                f"  - {failure.address} [{failure.kind}]{attempts}: {failure.message}",
                fg=fg,
            )
        for change in exc.result.skipped:
            _err(f"  - {change.address}: {change.reason}", fg=fg)
        _partial(exc.result.summary(), fg=fg)
        if exc.result.state_error is None:
            return EXIT_PARTIAL
    elif isinstance(exc, ApplyCanceled):
        _err("Apply canceled.", fg=fg)
        if exc.result is not None:
            _partial(exc.result.summary(), fg=fg)
            return EXIT_PARTIAL
    else:
        _err(f"Error: {exc}", fg=fg)

    return EXIT_ERROR
