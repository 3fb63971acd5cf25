"""
Main entry point for MarketPulse
Provides CLI commands over the coordinator
"""

import asyncio
import json
import signal

import click

from .config import get_config
from .data.base import AllProvidersExhausted
from .orchestration import Coordinator
from .utils import MarketSession, get_logger

logger = get_logger(__name__)

INDICATORS = [
    "sp500",
    "vix",
    "sector_performance",
    "interest_rate",
    "cpi",
    "unemployment",
    "fear_greed_index",
]

SESSIONS = [s.value for s in MarketSession]


def _dump(data) -> str:
    return json.dumps(data, indent=2, default=str)


async def _with_coordinator(action):
    """Run one coroutine against a coordinator and always release its clients"""
    coordinator = Coordinator()
    try:
        return await action(coordinator)
    finally:
        await coordinator.orchestrator.close()


@click.group()
def cli():
    """MarketPulse market indicators CLI"""
    pass


@cli.command()
def status():
    """Check configuration, schedule, cache and provider quotas"""
    config = get_config()
    logger.info("MarketPulse status check")

    click.echo("\n📋 Configuration:")
    click.echo(f"  • Log Level: {config.system.log_level}")
    click.echo(f"  • Exchange Timezone: {config.timing.exchange_timezone}")
    click.echo(f"  • Market Hours: {config.timing.market_open_time}-{config.timing.market_close_time}")
    click.echo(f"  • Request Timeout: {config.api.request_timeout_seconds:.0f}s")
    click.echo(f"  • Cache File: {config.cache.cache_file or 'in-memory'}")

    click.echo("\n🔑 API Keys:")
    for name, is_set in [("Alpha Vantage", bool(config.api.alpha_vantage_key)),
                         ("FRED", bool(config.api.fred_key))]:
        click.echo(f"  • {name}: {'✅ Set' if is_set else '❌ Missing (mock fallback)'}")

    state = asyncio.run(_with_coordinator(lambda c: c.get_status()))

    click.echo("\n📅 Schedule:")
    for name, job in state["jobs"].items():
        click.echo(f"  • {name}: {job['schedule']} (next: {job['next_run'] or 'not scheduled'})")
    click.echo(f"  • Update window open: {'yes' if state['is_update_required'] else 'no'}")
    click.echo(f"  • Next session update: {state['next_update_time']}")

    click.echo("\n📊 API Quotas:")
    for provider, info in state["quota"].items():
        pct = info.get('percentage', 0)
        emoji = "🟢" if pct < 80 else "🟡" if pct < 95 else "🔴"
        click.echo(f"  • {provider}: {emoji} {info['used']}/{info['limit']} ({pct:.0f}%) per {info['period']}")

    cache = state.get("cache")
    if cache:
        click.echo(f"\n🗄️  Cache: {cache['total_entries']} entries, {cache['expired_entries']} expired")

    click.echo("\n✅ Status check complete!")


@cli.command()
@click.argument('indicator', type=click.Choice(INDICATORS))
def get(indicator):
    """Read an indicator through the cache"""
    try:
        result = asyncio.run(_with_coordinator(lambda c: c.get_cached_or_fresh(indicator)))
    except AllProvidersExhausted as e:
        click.echo(f"❌ {e}")
        raise SystemExit(1)

    if result.is_synthetic:
        click.echo("⚠️  Live providers unavailable, showing mock data", err=True)
    click.echo(_dump(result.to_dict()))


@cli.command()
@click.option('--session', type=click.Choice(SESSIONS), default=None,
              help='Session to refresh (defaults to the current one)')
def refresh(session):
    """Force an immediate refresh of a session's indicators"""
    target = MarketSession(session) if session else None
    summary = asyncio.run(_with_coordinator(lambda c: c.force_refresh(target)))

    click.echo(f"\n🔄 Refresh ({summary.session}): {summary.succeeded}/{summary.total_jobs} succeeded "
               f"in {summary.duration_ms}ms")
    for update in summary.results:
        mark = "✅" if update.success else "❌"
        detail = update.source if update.success else update.error
        click.echo(f"  {mark} {update.data_type}: {detail}")

    if summary.failed:
        raise SystemExit(1)


@cli.command()
def stats():
    """Show cache statistics"""
    result = asyncio.run(_with_coordinator(lambda c: c.get_cache_stats()))
    click.echo(_dump(result.to_dict()))


@cli.command(name='fear-greed')
def fear_greed():
    """Compute the fear & greed index now"""
    index = asyncio.run(_with_coordinator(lambda c: c.compute_fear_greed()))

    click.echo(f"\n😨/🤑 Fear & Greed: {index.value} ({index.status.value}), confidence {index.confidence}%")
    for name, score in index.components.to_dict().items():
        click.echo(f"  • {name}: {score:g}")


@cli.command()
def cleanup():
    """Remove expired cache entries"""
    removed = asyncio.run(_with_coordinator(lambda c: c.cleanup_cache()))
    click.echo(f"🧹 Removed {removed} expired cache entries")


@cli.command()
def run():
    """Run the scheduler until interrupted"""
    click.echo("🚀 Starting MarketPulse scheduler...")
    asyncio.run(run_scheduler())


async def run_scheduler():
    """Run background refresh until SIGINT/SIGTERM"""
    logger.info("Starting scheduler")
    coordinator = Coordinator()

    shutdown_event = asyncio.Event()

    def signal_handler(sig, frame):
        logger.info("Shutdown signal received")
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await coordinator.start()
        click.echo("✅ Scheduler running. Press Ctrl+C to stop.")
        await shutdown_event.wait()
    finally:
        click.echo("\n🛑 Shutting down...")
        await coordinator.stop()
        click.echo("👋 Goodbye!")


if __name__ == "__main__":
    cli()
