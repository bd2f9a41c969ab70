"""Connectivity and inspection commands for handoff CLI."""
import asyncio

import click

from ..cache import ExpiringCache
from ..channel import NotificationChannel, NotificationEnvelope
from ..connection import ConnectionManager
from ..errors import StoreUnavailable
from ..keys import KeyType, MessageType, SEPARATOR
from .common import get_config, echo_normal, echo_quiet, echo_verbose, VERBOSITY_NORMAL


@click.command('check')
@click.pass_context
def check(ctx) -> None:
    """Verify the configured Redis server is reachable."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = get_config(ctx)

    async def _check():
        async with ConnectionManager(config):
            pass

    try:
        asyncio.run(_check())
    except StoreUnavailable as e:
        echo_quiet(click.style(f"✗ {e}", fg="red"), verbosity)
        ctx.exit(1)
    echo_normal(click.style(f"✓ Redis reachable at {config.redis.host}:{config.redis.port}", fg="green"), verbosity)


@click.command('inspect')
@click.argument('entity_id')
@click.pass_context
def inspect(ctx, entity_id: str) -> None:
    """Show staged keys for ENTITY_ID without consuming them."""
    if not entity_id or SEPARATOR in entity_id:
        raise click.BadParameter(f"must not be empty or contain {SEPARATOR!r}", param_hint="ENTITY_ID")
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = get_config(ctx)

    async def _inspect():
        async with ConnectionManager(config) as connection:
            cache = ExpiringCache(connection, config.namespace, config.ttl)
            return {key_type: await cache.time_to_live(key_type, entity_id) for key_type in KeyType}

    try:
        remaining = asyncio.run(_inspect())
    except StoreUnavailable as e:
        echo_quiet(click.style(f"✗ {e}", fg="red"), verbosity)
        ctx.exit(1)

    for key_type, ttl in remaining.items():
        key = config.namespace.key(key_type, entity_id)
        status = click.style("absent", fg="yellow") if ttl is None else click.style(f"{ttl:.2f}s left", fg="green")
        echo_quiet(f"{key}: {status}", verbosity)


@click.command('listen')
@click.pass_context
def listen(ctx) -> None:
    """Print live update envelopes for this cluster until interrupted."""
    verbosity = ctx.obj.get('verbosity', VERBOSITY_NORMAL)
    config = get_config(ctx)

    def _print(envelope: NotificationEnvelope) -> None:
        echo_quiet(
            f"{envelope.timestamp.isoformat()} {envelope.message_type.name} "
            f"{envelope.target_entity_id} ({len(envelope.payload)} bytes)",
            verbosity,
        )
        echo_verbose(envelope.payload.decode("utf-8", errors="replace"), verbosity)

    async def _listen():
        async with ConnectionManager(config) as connection:
            channel = NotificationChannel(connection, config.namespace)
            await channel.subscribe(list(MessageType), _print)
            echo_normal(click.style("Listening... (Ctrl-C to stop)", fg="cyan"), verbosity)
            try:
                await asyncio.Event().wait()
            finally:
                await channel.close()

    try:
        asyncio.run(_listen())
    except StoreUnavailable as e:
        echo_quiet(click.style(f"✗ {e}", fg="red"), verbosity)
        ctx.exit(1)
    except KeyboardInterrupt:
        echo_normal("Stopped.", verbosity)
