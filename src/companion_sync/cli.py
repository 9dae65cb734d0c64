import asyncio
import json
import logging
from typing import Optional, Tuple

import click
from dotenv import load_dotenv

from .database import CompanionDatabase
from .notifications.dispatcher import NotificationDispatcher
from .sync.config import SyncConfig
from .sync.exceptions import SyncError
from .sync.health_log import IntegrationHealthLog
from .sync.logging_config import setup_sync_logging
from .sync.registry import UserSyncRegistry
from .sync.services import SERVICES

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


def parse_credential(pairs: Tuple[str, ...]) -> dict:
    """Turn ``key=value`` pairs into a credentials dict; values may be JSON."""
    credentials = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--set")
        key, value = pair.split("=", 1)
        try:
            credentials[key.strip()] = json.loads(value)
        except json.JSONDecodeError:
            credentials[key.strip()] = value
    return credentials


def format_rate(rate: Optional[float]) -> str:
    return "n/a" if rate is None else f"{rate:.0%}"


async def run_syncs(registry: UserSyncRegistry, user_id: str, integrations: Tuple[str, ...]) -> list:
    bundle = registry.get(user_id)
    results = []
    for integration in integrations:
        service = bundle.service(integration)
        if not service.is_configured():
            logger.info(f"Skipping {integration}: not configured for {user_id}")
            continue
        results.append(await service.sync())
    await registry.stop_all()
    return results


@click.group()
@click.option('--db', 'db_path', envvar='COMPANION_DATABASE_PATH', default='companion.duckdb',
              show_default=True, help='DuckDB database file')
@click.option('--log-level', envvar='COMPANION_LOG_LEVEL', default='INFO', show_default=True,
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], case_sensitive=False),
              help='Logging level')
@click.pass_context
def main(ctx, db_path, log_level):
    """
    Companion sync: reconcile LMS deadlines and calendar schedules into the local store.
    """
    setup_sync_logging(log_level.upper())
    config = SyncConfig.from_env()
    config.database_path = db_path
    config.log_level = log_level.upper()
    ctx.obj = config


@main.command()
@click.argument('user_id')
@click.argument('integration', type=click.Choice(sorted(SERVICES)))
@click.option('--set', 'pairs', multiple=True, help='Credential as key=value (repeatable)')
@click.pass_obj
def connect(config: SyncConfig, user_id, integration, pairs):
    """Store credentials for one integration."""
    credentials = parse_credential(pairs)
    if not credentials:
        raise click.UsageError("Provide at least one --set key=value")
    try:
        with CompanionDatabase(config.database_path) as db:
            db.set_user_connection(user_id, integration, credentials)
    except SyncError as e:
        raise click.ClickException(f"Failed to store connection: {e}")
    click.echo(f"Stored {integration} connection for {user_id}")


@main.command()
@click.argument('user_id')
@click.argument('integrations', nargs=-1, type=click.Choice(sorted(SERVICES)))
@click.pass_obj
def sync(config: SyncConfig, user_id, integrations):
    """Run a one-off sync for a user (all integrations when none are given)."""
    selected = integrations or tuple(SERVICES)
    with CompanionDatabase(config.database_path) as db:
        registry = UserSyncRegistry(db, config)
        results = asyncio.run(run_syncs(registry, user_id, selected))

    if not results:
        click.echo("No configured integrations to sync")
        return

    failed = 0
    for result in results:
        if result.success:
            bridge = result.deadline_bridge.to_dict() if result.deadline_bridge else {}
            schedule = result.schedule.to_dict() if result.schedule else {}
            click.echo(
                f"{result.integration}: ok in {result.latency_ms:.0f}ms "
                f"deadlines(+{bridge.get('created', 0)} ~{bridge.get('updated', 0)} "
                f"-{bridge.get('removed', 0)} skipped {bridge.get('skipped', 0)}) "
                f"schedule(+{schedule.get('created', 0)} ~{schedule.get('updated', 0)} "
                f"-{schedule.get('deleted', 0)})"
            )
        else:
            failed += 1
            click.echo(f"{result.integration}: FAILED {result.error}", err=True)

    if failed:
        raise click.ClickException(f"{failed} integration(s) failed")


@main.command()
@click.option('--hours', type=float, default=24, show_default=True, help='Trailing window in hours')
@click.option('--user-id', default=None, help='Restrict to one user')
@click.option('--json', 'as_json', is_flag=True, help='Print the raw summary as JSON')
@click.pass_obj
def health(config: SyncConfig, hours, user_id, as_json):
    """Show the integration health summary."""
    with CompanionDatabase(config.database_path) as db:
        summary = db.get_integration_sync_summary(hours, user_id)

    if as_json:
        click.echo(json.dumps(summary, indent=2, default=str))
        return

    totals = summary["totals"]
    click.echo(f"Integration health (last {hours:g}h)")
    click.echo(f"Attempts: {totals['attempts']}  successes: {totals['successes']}  "
               f"failures: {totals['failures']}  skipped: {totals['skipped']}  "
               f"success rate: {format_rate(totals['success_rate'])}")
    click.echo("-" * 60)
    for entry in summary["integrations"]:
        causes = ", ".join(
            f"{cause}={count}" for cause, count in entry["failures_by_root_cause"].items() if count
        )
        latency = entry["average_latency_ms"]
        click.echo(f"{entry['integration']:<12} {entry['attempts']:>4} attempts  "
                   f"{format_rate(entry['success_rate'])} ok  "
                   f"avg {'-' if latency is None else f'{latency:.0f}ms'}"
                   + (f"  [{causes}]" if causes else ""))


@main.command()
@click.argument('user_id')
@click.pass_obj
def digest(config: SyncConfig, user_id):
    """Deliver every due scheduled notification for a user now."""
    with CompanionDatabase(config.database_path) as db:
        dispatcher = NotificationDispatcher(
            db, user_id,
            morning_hour=config.digest_morning_hour,
            evening_hour=config.digest_evening_hour,
        )
        result = dispatcher.process_scheduled_notifications()

    click.echo(f"Delivered {len(result.immediate)} immediate notification(s)")
    if result.digest is not None:
        click.echo(f"Delivered digest '{result.digest.title}' covering {result.batched} update(s)")


@main.command()
@click.option('--retention-days', type=int, default=None, help='Override the configured retention')
@click.pass_obj
def cleanup(config: SyncConfig, retention_days: Optional[int]):
    """Delete health log entries older than the retention window."""
    days = retention_days if retention_days is not None else config.health_log_retention_days
    if days < 1:
        raise click.BadParameter("must be >= 1", param_hint="--retention-days")
    with CompanionDatabase(config.database_path) as db:
        deleted = IntegrationHealthLog(db, user_id="*").cleanup(days)
    click.echo(f"Removed {deleted} health log entries older than {days} days")


@main.command()
@click.option('--host', envvar='WEB_HOST', default='0.0.0.0', show_default=True, help='Host to bind to')
@click.option('--port', envvar='WEB_PORT', type=int, default=8000, show_default=True, help='Port to bind to')
@click.option('--reload', is_flag=True, default=False, help='Enable auto-reload for development')
@click.pass_obj
def serve(config: SyncConfig, host, port, reload):
    """Run the status API."""
    import os
    import uvicorn

    # The web lifespan reads its configuration from the environment
    os.environ['COMPANION_DATABASE_PATH'] = config.database_path
    logger.info(f"Starting web server on {host}:{port}")
    uvicorn.run(
        "companion_sync.web:app",
        host=host,
        port=port,
        reload=reload,
        log_level=config.log_level.lower()
    )


if __name__ == '__main__':
    main()
