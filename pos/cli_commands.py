"""
Flask CLI commands for store administration.

Commands:
- flask init-db: Create missing tables in both stores
- flask sync-status: Show connectivity mode and pending sync entries
- flask sync-now: Run one probe/replay cycle immediately
- flask low-stock: List ingredients at or below their threshold
- flask purge-orders: Delete orders older than a date (irreversible)
"""

from datetime import datetime

import click

from pos.database import SCHEMA_VERSION
from pos.exceptions import PosError
from pos.services.purge_service import count_orders_before, purge_orders
from pos.services.unit_conversion import display_string


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    def stores():
        return app.extensions['pos_stores']

    def sync_service():
        return app.extensions['pos_sync']

    @app.cli.command('init-db')
    def init_db_command():
        """Create missing tables in both stores and check schema versions."""
        for name, store in stores().items():
            try:
                store.create_schema()
                version = store.schema_version()
            except PosError as e:
                click.echo(click.style(f'{name}: {e.message}', fg='red'))
                continue
            colour = 'green' if version == SCHEMA_VERSION else 'yellow'
            click.echo(click.style(f'{name}: schema version {version} (release {SCHEMA_VERSION})', fg=colour))

    @app.cli.command('sync-status')
    @click.option('--failures', is_flag=True, help='List entries that failed to replay')
    def sync_status_command(failures):
        """Show connectivity mode and the sync queue backlog."""
        service = sync_service()
        status = service.status()
        colour = 'green' if status['online'] else 'yellow'
        click.echo(click.style(f"Mode: {status['mode'].upper()} since {status['changed_at']}", fg=colour))
        for target, count in status['pending'].items():
            click.echo(f"Pending for {target}: {count}")
        if failures:
            for entry in service.failing_entries():
                click.echo(
                    f"  #{entry.id} {entry.operation.value} {entry.table_name} -> {entry.target.value} "
                    f"attempts={entry.attempts}: {entry.last_error}"
                )

    @app.cli.command('sync-now')
    def sync_now_command():
        """Probe the remote store and replay pending entries now."""
        service = sync_service()
        mode = service.tick()
        pending = service.pending_counts()
        click.echo(f"Mode: {mode.upper()}")
        for target, count in pending.items():
            click.echo(f"Pending for {target}: {count}")

    @app.cli.command('low-stock')
    def low_stock_command():
        """List ingredients at or below their minimum threshold."""
        items = app.extensions['pos_storage'].get_low_stock()
        if not items:
            click.echo(click.style('No ingredients are low on stock.', fg='green'))
            return
        for item in items:
            click.echo(
                f"{item['name']}: {item['display']} "
                f"(minimum {display_string(item['minimum_threshold'], item['unit'])})"
            )

    @app.cli.command('purge-orders')
    @click.option('--before', required=True, type=click.DateTime(formats=['%Y-%m-%d']),
                  help='Delete orders created before this date (YYYY-MM-DD)')
    @click.option('--yes', is_flag=True, help='Confirm the irreversible delete')
    def purge_orders_command(before: datetime, yes):
        """Delete old orders and their items from both stores. Stock is not restored."""
        for name, store in stores().items():
            try:
                with store.session_scope() as session:
                    count = count_orders_before(session, before)
                    if not yes:
                        click.echo(f"{name}: {count} orders would be deleted (re-run with --yes)")
                        continue
                    removed = purge_orders(session, before)
            except PosError as e:
                click.echo(click.style(f'{name}: {e.message}', fg='red'))
                continue
            click.echo(click.style(f'{name}: deleted {removed} orders', fg='green'))
