"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

import typer


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    from envgroups.config.loader import ConfigError
    from envgroups.core.errors import (
        BackendUnavailableError,
        ConflictError,
        NotFoundError,
        PermissionDeniedError,
        RestoreError,
        StoreLockError,
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
        _err(f"Not found: {exc.kind} '{exc.key}'", fg=fg)
    elif isinstance(exc, ConflictError):
        _err(f"Conflict: {exc}", fg=fg)
    elif isinstance(exc, PermissionDeniedError):
        _err(f"Permission denied: {exc}", fg=fg)
    elif isinstance(exc, BackendUnavailableError):
        _err(f"{exc}. Set a backend other than 'none' in your settings.", fg=fg)
    elif isinstance(exc, RestoreError):
        _err(f"Restore failed: {exc}", fg=fg)
        _err("  The record was kept in the trash.", fg=fg)
    elif isinstance(exc, StoreLockError):
        _err(f"Store is busy: {exc}", fg=fg)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
