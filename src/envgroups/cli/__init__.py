"""CLI application for envgroups."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import typer

from envgroups import __version__

app = typer.Typer(
    name="envgroups",
    no_args_is_help=True,
    add_completion=False,
)
groups_app = typer.Typer(help="Manage variable groups.", no_args_is_help=True)
vars_app = typer.Typer(help="Manage individual user variables.", no_args_is_help=True)
trash_app = typer.Typer(help="Browse and restore deleted or edited items.", no_args_is_help=True)
app.add_typer(groups_app, name="groups")
app.add_typer(vars_app, name="vars")
app.add_typer(trash_app, name="trash")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"envgroups {__version__}")
        raise typer.Exit


_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _configure_logging(verbose: int) -> None:
    """Set up stdlib logging based on ``-v`` flags or ``ENVGROUPS_LOG`` env var."""
    env_level = os.environ.get("ENVGROUPS_LOG", "").upper()
    if env_level:
        if env_level not in _VALID_LEVELS:
            print(
                f"WARNING: invalid ENVGROUPS_LOG level '{env_level}', "
                f"expected one of {', '.join(sorted(_VALID_LEVELS))}; defaulting to INFO",
                file=sys.stderr,
            )
        level = getattr(logging, env_level, logging.INFO)
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose >= 1:
        level = logging.INFO
    else:
        return
    logging.basicConfig(
        level=logging.WARNING,
        format=_LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("envgroups").setLevel(level)


@app.callback()
def main(
    ctx: typer.Context,
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
        help="Increase log verbosity (-v info, -vv debug).",
    ),
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Settings file (default: ~/.config/envgroups/config.yaml).",
    ),
) -> None:
    """Named groups of environment variables, switched on and off as a unit."""
    _ = version
    _configure_logging(verbose)
    ctx.obj = {"config": config}


# Register commands after the apps are created to avoid circular imports.
from envgroups.cli import commands as _commands  # noqa: E402, F401
