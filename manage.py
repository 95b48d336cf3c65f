"""
manage.py — CLI admin commands for the itinerary planner.

Usage:
    python manage.py init-db
    python manage.py fail-stale-plans
    python manage.py fail-stale-plans --minutes 30
"""

import asyncio
from datetime import datetime, timedelta, timezone

import click

import config
from database import SessionLocal, init_db
from errors import PersistenceError
from plan_store import PlanStore


@click.group()
def cli():
    """Itinerary planner administration."""


@cli.command('init-db')
def init_db_command():
    """Create every database table that does not exist yet."""
    init_db()
    click.echo('✓ Database tables ready')


@cli.command('fail-stale-plans')
@click.option('--minutes', type=click.IntRange(min=1),
              default=max(1, config.STALE_PLAN_SECONDS // 60), show_default=True,
              help='Plans still processing after this many minutes are marked failed')
def fail_stale_plans(minutes: int):
    """Mark plans orphaned in 'processing' (e.g. by a server restart) as failed."""
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=minutes)
    try:
        failed = asyncio.run(PlanStore(SessionLocal).fail_stale_plans(cutoff))
    except PersistenceError as exc:
        click.echo(f'✗ {exc}', err=True)
        raise SystemExit(1)
    click.echo(f'✓ Marked {failed} stale plan(s) as failed')


if __name__ == '__main__':
    cli()
