"""Shared utilities for handoff CLI commands."""
import logging
from pathlib import Path
from typing import Optional

import click

from ..config import HandoffConfig, load_config
from ..errors import ConfigurationError

# Verbosity levels
VERBOSITY_QUIET = 0
VERBOSITY_NORMAL = 1
VERBOSITY_VERBOSE = 2


def configure_logging(verbosity: int) -> None:
    """Route library logging to stderr at a level matching --verbose/--quiet."""
    level = {
        VERBOSITY_QUIET: logging.ERROR,
        VERBOSITY_NORMAL: logging.WARNING,
        VERBOSITY_VERBOSE: logging.DEBUG,
    }[verbosity]
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def get_config(ctx: click.Context) -> HandoffConfig:
    """Load the configuration selected by --config, exiting on errors."""
    path: Optional[Path] = ctx.obj.get('config_path')
    try:
        return load_config(path)
    except ConfigurationError as e:
        echo_quiet(click.style(f"Error: {e}", fg="red"), ctx.obj.get('verbosity', VERBOSITY_NORMAL))
        ctx.exit(1)


def echo_verbose(message: str, verbosity: int) -> None:
    """Print a message only in verbose mode."""
    if verbosity >= VERBOSITY_VERBOSE:
        click.echo(message)


def echo_normal(message: str, verbosity: int) -> None:
    """Print a message in normal and verbose modes."""
    if verbosity >= VERBOSITY_NORMAL:
        click.echo(message)


def echo_quiet(message: str, verbosity: int) -> None:
    """Print a critical message that should always be shown (even in quiet mode)."""
    click.echo(message)
