#!/usr/bin/env python3
"""
Dashboard Data CLI

Loads entity workbooks into the dashboard store and inspects what is there.

Usage:
    python scripts/dashboard_cli.py import --file "First Capital June.xlsx" --entity first-capital --month June --year 2025
    python scripts/dashboard_cli.py periods
    python scripts/dashboard_cli.py show --entity first-capital --month June --year 2025
    python scripts/dashboard_cli.py check
    python scripts/dashboard_cli.py migrate [--file data/dashboard_data.json]
    python scripts/dashboard_cli.py reconcile [--dry-run]
    python scripts/dashboard_cli.py cleanup [--older-than-hours 24]
"""

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import json
import logging
from typing import Optional

import click
from dotenv import load_dotenv

# Load environment variables before settings are read
load_dotenv()

from backend.config import settings
from backend.models.entities import ENTITIES, EntityId
from services.excel_import_service import ExcelImportService
from services.exceptions import DashboardError, StorageUnavailable
from services.migration_service import MigrationService
from services.reconcile_service import ReconcileService
from services.storage_service import StorageGateway
from services.upload_service import UploadService

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format=settings.LOG_FORMAT,
    handlers=[
        logging.FileHandler(settings.LOG_FILE),
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger('dashboard_cli')

ENTITY_CHOICE = click.Choice([e.value for e in EntityId])


def _progress_bar(stage: str, percent: float, message: str):
    bar_length = 40
    filled = int(bar_length * percent / 100)
    bar = '█' * filled + '░' * (bar_length - filled)
    click.echo(f"\r[{bar}] {percent:.1f}% - {stage}: {message}", nl=False)


@click.group()
@click.option('--database-url', envvar='DATABASE_URL', help='Override the configured database URL')
@click.pass_context
def cli(ctx, database_url: Optional[str]):
    """Dashboard data import and maintenance."""
    ctx.ensure_object(dict)
    ctx.obj['gateway'] = StorageGateway(database_url or settings.DATABASE_URL)
    ctx.call_on_close(ctx.obj['gateway'].close)


@cli.command('import')
@click.option('--file', '-f', 'file_path', required=True, type=click.Path(exists=True, dir_okay=False),
              help='Path to the entity workbook')
@click.option('--entity', '-e', required=True, type=ENTITY_CHOICE, help='Entity the workbook belongs to')
@click.option('--month', '-m', required=True, help='Month name, e.g. June')
@click.option('--year', '-y', required=True, type=int, help='Four digit year')
@click.option('--user', '-u', default=None, help='Recorded as the uploader in the audit log')
@click.pass_context
def import_cmd(ctx, file_path: str, entity: str, month: str, year: int, user: Optional[str]):
    """Import an entity workbook for one period."""
    gateway: StorageGateway = ctx.obj['gateway']
    filename = Path(file_path).name
    info = ENTITIES[EntityId(entity)]

    click.echo(f"\n📁 Importing: {file_path}")
    click.echo(f"🏢 Entity: {info.name} ({info.short_name})")
    click.echo(f"📅 Period: {month}-{year}\n")

    service = ExcelImportService(gateway, progress_callback=_progress_bar)
    try:
        result = service.ingest_file(file_path, entity, month, year)
    except DashboardError as e:
        click.echo()
        logger.error(f"Import failed: {e}")
        if not isinstance(e, StorageUnavailable):
            gateway.log_upload(filename, 'failed', entity_id=entity, error_message=str(e), uploaded_by=user)
        click.echo(f"\n✗ Import failed: {e}", err=True)
        sys.exit(1)

    click.echo()
    gateway.log_upload(
        filename, 'success', entity_id=entity, period_id=result.period_id,
        kpi_count=result.kpi_count, chart_count=result.chart_count, uploaded_by=user
    )

    click.echo(f"\n✓ Import successful!")
    click.echo(f"Period: {result.period_key} (ID: {result.period_id})")
    click.echo(f"  KPIs: {result.kpi_count}")
    click.echo(f"  Chart datasets: {result.chart_count}")
    for key in result.data_keys:
        click.echo(f"    - {key}")


@cli.command('periods')
@click.pass_context
def periods_cmd(ctx):
    """List stored periods, newest first."""
    periods = ctx.obj['gateway'].list_periods()
    if not periods:
        click.echo("No periods stored yet")
        return
    for period in periods:
        click.echo(f"  {period['period_key']:<20} (ID: {period['id']})")


@cli.command('show')
@click.option('--entity', '-e', required=True, type=ENTITY_CHOICE, help='Entity to show')
@click.option('--month', '-m', required=True, help='Month name, e.g. June')
@click.option('--year', '-y', required=True, type=int, help='Four digit year')
@click.option('--json', 'as_json', is_flag=True, help='Print raw JSON')
@click.pass_context
def show_cmd(ctx, entity: str, month: str, year: int, as_json: bool):
    """Show the KPIs and chart datasets stored for an entity and period."""
    gateway: StorageGateway = ctx.obj['gateway']
    period = gateway.get_period(month, year)
    if period is None:
        click.echo(f"Error: No data for {month}-{year}", err=True)
        sys.exit(1)

    data = gateway.get_entity_data(entity, period['id'])
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
        return

    click.echo(f"\n{ENTITIES[EntityId(entity)].name} - {period['period_key']}")
    click.echo("=" * 60)
    click.echo(f"KPIs ({len(data['kpis'])}):")
    for kpi in data['kpis']:
        unit = f" {kpi['unit']}" if kpi['unit'] else ''
        click.echo(f"  {kpi['name']:<35} actual={kpi['actual']}{unit}  budget={kpi['budget']}{unit}")

    charts = {k: v for k, v in data.items() if k != 'kpis'}
    click.echo(f"\nChart datasets ({len(charts)}):")
    for key, value in charts.items():
        size = len(value) if isinstance(value, (list, dict)) else 1
        click.echo(f"  {key:<35} {size} entries")


@cli.command('check')
@click.pass_context
def check_cmd(ctx):
    """Report table counts and per entity/period totals."""
    gateway: StorageGateway = ctx.obj['gateway']

    click.echo("\nDatabase Report")
    click.echo("=" * 60)
    for table, count in gateway.table_counts().items():
        click.echo(f"  {table:<15} {count}")

    summary = gateway.summary()
    click.echo("\nKPIs by entity and period:")
    for row in summary['kpis']:
        click.echo(f"  {row['entity_name']:<35} {row['period_key']:<15} {row['count']}")

    click.echo("\nChart datasets by entity and period:")
    for row in summary['chart_data']:
        click.echo(f"  {row['entity_name']:<35} {row['period_key']:<15} {row['count']}")


@cli.command('migrate')
@click.option('--file', '-f', 'file_path', default=None, type=click.Path(dir_okay=False),
              help='Legacy JSON data file (default: LEGACY_DATA_FILE)')
@click.option('--no-backup', is_flag=True, help='Do not copy the source file to the backup directory')
@click.pass_context
def migrate_cmd(ctx, file_path: Optional[str], no_backup: bool):
    """Import a legacy dashboard_data.json file."""
    service = MigrationService(ctx.obj['gateway'])
    try:
        result = service.migrate_file(file_path, backup=not no_backup)
    except (OSError, ValueError) as e:
        logger.error(f"Migration failed: {e}")
        click.echo(f"\n✗ Migration failed: {e}", err=True)
        sys.exit(1)

    click.echo(f"\n✓ Migration completed")
    click.echo(f"  Periods: {result.periods}")
    click.echo(f"  KPIs: {result.kpi_count}")
    click.echo(f"  Chart datasets: {result.chart_count}")
    if result.skipped:
        click.echo(f"  Skipped: {result.skipped}")
    if result.backup_path:
        click.echo(f"  Backup: {result.backup_path}")


@cli.command('reconcile')
@click.option('--dry-run', is_flag=True, help='Report duplicates without deleting anything')
@click.pass_context
def reconcile_cmd(ctx, dry_run: bool):
    """Remove duplicate KPI and chart rows and retire legacy chart keys."""
    service = ReconcileService(ctx.obj['gateway'])
    if dry_run:
        for table, count in service.preview().items():
            click.echo(f"  {table:<15} {count} duplicates")
        return

    result = service.reconcile()
    click.echo(f"\n✓ Deleted {result.deleted_count} rows, renamed {result.renamed_count}")
    for table, count in result.remaining.items():
        click.echo(f"  {table:<15} {count} remaining")


@cli.command('cleanup')
@click.option('--older-than-hours', default=24, show_default=True, type=click.IntRange(min=0),
              help='Only delete temp uploads older than this')
@click.option('--temp-dir', default=None, type=click.Path(file_okay=False),
              help='Upload temp directory (default: TEMP_UPLOAD_DIR)')
def cleanup_cmd(older_than_hours: int, temp_dir: Optional[str]):
    """Delete temp uploads left behind by interrupted imports."""
    deleted = UploadService(temp_dir=temp_dir).cleanup_temp_files(older_than_hours=older_than_hours)
    click.echo(f"✓ Deleted {deleted} temporary files")


if __name__ == '__main__':
    cli()
