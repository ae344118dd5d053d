"""
Migration Service - import the legacy file-backed dashboard store.

Before the database existed, dashboard data lived in one JSON document:

    {"June-2025": {"first-capital": {"kpis": [...], "unitTrustAUM": [...]}}}

Every KPI goes through the normal upsert and every other key through the
normal chart save, so a migrated store obeys the same uniqueness rules as
an ingested one.
"""

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import BaseModel, Field

from backend.config import settings
from backend.models.entities import parse_entity_id
from services.exceptions import InvalidChartValue
from services.storage_service import StorageGateway

logger = logging.getLogger(__name__)


class MigrationResult(BaseModel):
    """Counts from one legacy file migration."""

    periods: int = Field(0, description="Periods touched")
    kpi_count: int = Field(0, description="KPIs upserted")
    chart_count: int = Field(0, description="Chart datasets saved")
    skipped: int = Field(0, description="Items skipped because of errors")
    backup_path: Optional[str] = Field(None, description="Where the source file was copied")


def split_period_key(period_key: str) -> Tuple[str, int]:
    """
    Split "June-2025" into ("June", 2025).

    Raises:
        ValueError: If the key has no year suffix
    """
    month, sep, year = str(period_key).rpartition('-')
    if not sep or not month:
        raise ValueError(f"Invalid period key: {period_key}")
    return month, int(year)


class MigrationService:
    """Replays a legacy dashboard_data.json into the storage gateway."""

    def __init__(self, gateway: StorageGateway, backup_dir: Optional[str] = None):
        self.gateway = gateway
        self.backup_dir = backup_dir or settings.LEGACY_BACKUP_DIR

    def migrate_file(self, file_path: Union[str, Path, None] = None, backup: bool = True) -> MigrationResult:
        """
        Migrate a legacy data file and copy it into the backup directory.

        Args:
            file_path: Legacy JSON file (default: settings.LEGACY_DATA_FILE)
            backup: Copy the source file to the backup directory afterwards

        Returns:
            MigrationResult with counts

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file is not valid JSON
        """
        path = Path(file_path or settings.LEGACY_DATA_FILE)
        logger.info(f"Starting migration from {path}")
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        result = self.migrate(data)

        if backup:
            backup_dir = Path(self.backup_dir)
            backup_dir.mkdir(parents=True, exist_ok=True)
            target = backup_dir / f"{path.name}.backup"
            shutil.copyfile(path, target)
            result.backup_path = str(target)
            logger.info(f"Original file backed up to {target}")

        return result

    def migrate(self, data: Dict[str, Dict[str, Dict[str, Any]]]) -> MigrationResult:
        """Migrate an already-parsed legacy document."""
        result = MigrationResult()

        for period_key, entities in data.items():
            try:
                month, year = split_period_key(period_key)
            except ValueError as e:
                logger.error(f"Skipping period {period_key}: {e}")
                result.skipped += 1
                continue

            logger.info(f"Migrating period: {period_key}")
            period = self.gateway.create_or_get_period(month, year)
            result.periods += 1

            for entity_key, entity_data in (entities or {}).items():
                entity = parse_entity_id(entity_key)
                if entity is None:
                    logger.error(f"Skipping unknown entity {entity_key} in {period_key}")
                    result.skipped += 1
                    continue
                self._migrate_entity(entity, period['id'], entity_data or {}, result)

        logger.info(
            f"Migration completed: {result.periods} periods, {result.kpi_count} KPIs, "
            f"{result.chart_count} charts, {result.skipped} skipped"
        )
        return result

    def _migrate_entity(self, entity, period_id: int, entity_data: Dict[str, Any], result: MigrationResult):
        kpis = entity_data.get('kpis')
        if isinstance(kpis, list):
            for kpi in kpis:
                try:
                    self.gateway.upsert_kpi(
                        entity, period_id, kpi.get('name'),
                        _as_float(kpi.get('actual')), _as_float(kpi.get('budget')),
                        kpi.get('unit') or ''
                    )
                    result.kpi_count += 1
                except (ValueError, TypeError, AttributeError) as e:
                    logger.error(f"Error migrating KPI {kpi!r} for {entity.value}: {e}")
                    result.skipped += 1
            logger.info(f"  {entity.value}: migrated {len(kpis)} KPIs")

        for chart_key, value in entity_data.items():
            if chart_key == 'kpis':
                continue
            try:
                saved = self.gateway.save_chart_dataset(entity, period_id, chart_key, chart_key, value)
            except InvalidChartValue as e:
                logger.error(f"Error migrating chart {chart_key}: {e}")
                result.skipped += 1
                continue
            if saved is not None:
                result.chart_count += 1


def _as_float(value) -> Optional[float]:
    if value is None or value == '':
        return None
    return float(value)
