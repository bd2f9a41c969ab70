"""Configuration commands for handoff CLI."""
from pathlib import Path
from typing import Optional

import click
import yaml

from ..config import DEFAULT_CONFIG_PATH, HandoffConfig
from .common import get_config, echo_normal, echo_quiet, VERBOSITY_NORMAL


@click.group()
def config_group():
    """Configuration management commands."""
    pass


@config_group.command('show')
@click.pass_context
def config_show(ctx) -> None:
    """Display the effective configuration (password masked)."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = get_config(ctx)
    echo_normal(click.style("Effective configuration:", fg="cyan", bold=True), verbosity)
    echo_quiet(yaml.safe_dump(config.to_dict(mask_password=True), default_flow_style=False).rstrip(), verbosity)


@config_group.command('init')
@click.option('--cluster-id', default="", help='Cluster identifier scoping all keys and topics')
@click.option('--host', default="localhost", help='Redis host')
@click.option('--port', default=6379, type=int, help='Redis port')
@click.option('--force', is_flag=True, help='Overwrite an existing file')
@click.pass_context
def config_init(ctx, cluster_id: str, host: str, port: int, force: bool) -> None:
    """Write a default config file.

    Writes to --config if given, otherwise ~/.handoff/config.yaml.

    Examples:
        handoff config init --cluster-id survival
        handoff --config ./handoff.yaml config init --host redis.internal
    """
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    path: Path = ctx.obj.get('config_path') or DEFAULT_CONFIG_PATH

    if path.exists() and not force:
        echo_quiet(click.style(f"Error: {path} already exists (use --force to overwrite)", fg="red"), verbosity)
        ctx.exit(1)

    config = HandoffConfig.from_dict({"cluster_id": cluster_id, "redis": {"host": host, "port": port}})
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(config.to_dict(), default_flow_style=False))
    echo_normal(click.style(f"✓ Wrote {path}", fg="green"), verbosity)
