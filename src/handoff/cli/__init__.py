"""handoff CLI - operator diagnostics for cross-process state handoff

Command groups are organized into separate modules:
- config.py: config show, init
- diagnostics.py: check, inspect, listen
- common.py: shared utilities
"""
from pathlib import Path
import click

from .. import __version__
from .common import configure_logging, VERBOSITY_QUIET, VERBOSITY_NORMAL, VERBOSITY_VERBOSE
from .config import config_group
from .diagnostics import check, inspect, listen


@click.group()
@click.version_option(version=__version__, prog_name="handoff")
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), default=None,
              envvar='HANDOFF_CONFIG', help='Config file (default: ~/.handoff/config.yaml)')
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Enable verbose output')
@click.option('--quiet', '-q', is_flag=True, default=False,
              help='Suppress non-essential output')
@click.pass_context
def cli(ctx, config_path, verbose, quiet):
    """handoff - cross-process entity state handoff

    \b
    Examples:
        handoff config init --cluster-id survival
        handoff check
        handoff inspect 069a79f4-44e9-4726-a5be-fca90e38aaf5
        handoff listen
    """
    ctx.ensure_object(dict)

    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    if quiet:
        ctx.obj['verbosity'] = VERBOSITY_QUIET
    elif verbose:
        ctx.obj['verbosity'] = VERBOSITY_VERBOSE
    else:
        ctx.obj['verbosity'] = VERBOSITY_NORMAL

    ctx.obj['config_path'] = Path(config_path) if config_path else None
    configure_logging(ctx.obj['verbosity'])


cli.add_command(config_group, name='config')
cli.add_command(check)
cli.add_command(inspect)
cli.add_command(listen)


def main():
    """Entry point for the handoff command."""
    cli(obj={})


__all__ = ['cli', 'main']
