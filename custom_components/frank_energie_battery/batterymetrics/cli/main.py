"""batterymetrics command-line interface."""

import asyncio
import json
import logging
import sys

import click

from .. import __version__
from ..api import create_engine
from ..core.errors import BatteryMetricsError
from ..core.rollover import DEFAULT_TIME_ZONE


def _run(ctx, operation):
    """Run ``operation(engine)`` on a fresh engine and return its result."""
    engine = create_engine(
        state_file=ctx.obj['state_file'], time_zone=ctx.obj['time_zone'],
    )

    async def _main():
        try:
            return await operation(engine)
        finally:
            await engine.async_shutdown()

    try:
        return asyncio.run(_main())
    except BatteryMetricsError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _echo_aggregate(aggregate):
    click.echo(json.dumps(aggregate.to_dict()))


@click.group()
@click.version_option(__version__)
@click.option('--state-file', required=True, type=click.Path(dir_okay=False),
              envvar='BATTERYMETRICS_STATE_FILE', help='Engine state file (JSON)')
@click.option('--time-zone', default=DEFAULT_TIME_ZONE, show_default=True,
              help='Reference time zone of the accounting day')
@click.pass_context
def main(ctx, state_file, time_zone):
    """batterymetrics: daily charge/discharge totals for home batteries."""
    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
    ctx.obj = {'state_file': state_file, 'time_zone': time_zone}


@main.command()
@click.argument('battery')
@click.argument('charged', type=float)
@click.argument('discharged', type=float)
@click.option('--percentage', default=0.0, type=float, help='State of charge (%)')
@click.pass_context
def record(ctx, battery, charged, discharged, percentage):
    """Record lifetime CHARGED/DISCHARGED kWh for BATTERY."""
    _echo_aggregate(_run(
        ctx,
        lambda engine: engine.async_record_cumulative(
            battery, charged, discharged, percentage,
        ),
    ))


@main.command('record-daily')
@click.argument('battery')
@click.argument('charged', type=float)
@click.argument('discharged', type=float)
@click.option('--percentage', default=0.0, type=float, help='State of charge (%)')
@click.pass_context
def record_daily(ctx, battery, charged, discharged, percentage):
    """Record today's CHARGED/DISCHARGED kWh for BATTERY."""
    _echo_aggregate(_run(
        ctx,
        lambda engine: engine.async_record_daily(
            battery, charged, discharged, percentage,
        ),
    ))


@main.command()
@click.pass_context
def show(ctx):
    """Print today's totals as JSON."""
    _echo_aggregate(_run(ctx, lambda engine: engine.async_get_aggregate()))


@main.command()
@click.pass_context
def sources(ctx):
    """List tracked batteries and when each last reported."""

    async def _list(engine):
        return {
            battery: await engine.async_get_last_seen(battery)
            for battery in await engine.async_get_tracked_sources()
        }

    for battery, last_seen in _run(ctx, _list).items():
        click.echo(f"{battery}\t{last_seen.isoformat() if last_seen else '-'}")


@main.command()
@click.option('--battery', default=None, help='Reset only this battery')
@click.pass_context
def reset(ctx, battery):
    """Emergency reset: use current readings as today's zero point."""
    _echo_aggregate(_run(ctx, lambda engine: engine.async_emergency_reset(battery)))


@main.command()
@click.argument('battery')
@click.pass_context
def remove(ctx, battery):
    """Stop tracking BATTERY."""
    if not _run(ctx, lambda engine: engine.async_remove_source(battery)):
        click.echo(f"Battery {battery} is not tracked", err=True)
        sys.exit(1)
    click.echo(f"Removed {battery}")


@main.command()
@click.confirmation_option(prompt='Forget all batteries and their baselines?')
@click.pass_context
def clear(ctx):
    """Forget every tracked battery."""
    _run(ctx, lambda engine: engine.async_clear_all())
    click.echo("Cleared")


if __name__ == '__main__':
    main()
