#!/usr/bin/env python3
"""
Collapse duplicate KPI and chart rows.

Older stores were created without unique constraints, and superseded
snake_case chart keys still sit next to their camelCase replacements. This
keeps the newest row of every duplicate group and moves alias keys to the
canonical name.

Usage:
    python data_repair/reconcile_duplicates.py --dry-run
    python data_repair/reconcile_duplicates.py
"""

import sys
import os
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import click
from dotenv import load_dotenv
import logging

load_dotenv()

from services.reconcile_service import ReconcileService, key_aliases
from services.storage_service import StorageGateway

DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///./data/dashboard.db')

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger('reconcile_duplicates')


@click.command()
@click.option('--database-url', default=DATABASE_URL, show_default=True, help='Database to repair')
@click.option('--dry-run', is_flag=True, help='Show what would be removed without applying changes')
def reconcile_duplicates(database_url: str, dry_run: bool):
    """Remove duplicate dashboard rows."""
    gateway = StorageGateway(database_url)
    service = ReconcileService(gateway)

    try:
        click.echo(f"\nReconciling Duplicates")
        click.echo(f"{'=' * 60}")
        click.echo(f"Database: {gateway.dialect}")
        click.echo(f"Mode: {'DRY RUN' if dry_run else 'APPLY CHANGES'}")
        click.echo(f"")

        preview = service.preview()
        click.echo("Duplicate rows:")
        for table, count in preview.items():
            click.echo(f"  {table:<15} {count}")

        click.echo(f"\nKnown chart key aliases: {len(key_aliases())}")

        if dry_run:
            click.echo(f"\n✓ Dry run complete. Run without --dry-run to apply changes.")
            return

        result = service.reconcile()
        click.echo(f"\n✓ Deleted {result.deleted_count} rows")
        click.echo(f"✓ Renamed {result.renamed_count} alias rows")
        for table, count in result.remaining.items():
            click.echo(f"  {table:<15} {count} remaining")

    except Exception as e:
        logger.error(f"Reconcile failed: {e}", exc_info=True)
        click.echo(f"\n✗ Reconcile failed: {e}", err=True)
        sys.exit(1)
    finally:
        gateway.close()


if __name__ == '__main__':
    reconcile_duplicates()
