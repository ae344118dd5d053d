"""
Reconcile Service - repair duplicate and mis-keyed dashboard records.

Runs against the persisted store independently of ingestion. Each pass
keeps the most recently inserted row (highest id) of a duplicate group.
Running it again on a repaired store deletes nothing.
"""

import logging
from typing import Dict, List, Tuple

from pydantic import BaseModel, Field
from sqlalchemy import text

from services import strategy_registry
from services.storage_service import StorageGateway

logger = logging.getLogger(__name__)

# Legacy keys that are not plain snake_case spellings of the current ones
EXTRA_KEY_ALIASES: Dict[str, str] = {
    'wacd': 'wacdMovement',
    'marketTurnover': 'fceMarketTurnover',
    'market_turnover': 'fceMarketTurnover',
}

DUPLICATE_PERIODS = "SELECT id FROM periods WHERE id NOT IN (SELECT MIN(id) FROM periods GROUP BY period_key)"

REPOINT_TO_FIRST_PERIOD = """
    UPDATE {table}
    SET period_id = (
        SELECT MIN(p2.id) FROM periods p2
        WHERE p2.period_key = (SELECT p.period_key FROM periods p WHERE p.id = {table}.period_id)
    )
    WHERE period_id IN ({duplicates})
"""

DELETE_SHADOWED_ALIAS = """
    DELETE FROM chart_data
    WHERE data_key = :alias
      AND EXISTS (
        SELECT 1 FROM chart_data c2
        WHERE c2.entity_id = chart_data.entity_id
          AND c2.period_id = chart_data.period_id
          AND c2.data_key = :canonical
      )
"""

RENAME_ALIAS = """
    UPDATE chart_data
    SET chart_type = CASE WHEN chart_type = :alias THEN :canonical ELSE chart_type END,
        data_key = :canonical
    WHERE data_key = :alias
"""

DELETE_DUPLICATE_KPIS = """
    DELETE FROM kpis
    WHERE id NOT IN (SELECT MAX(id) FROM kpis GROUP BY entity_id, period_id, name)
"""

DELETE_DUPLICATE_CHARTS = """
    DELETE FROM chart_data
    WHERE id NOT IN (SELECT MAX(id) FROM chart_data GROUP BY entity_id, period_id, chart_type)
"""

COUNT_DUPLICATE_KPIS = """
    SELECT COUNT(*) FROM kpis
    WHERE id NOT IN (SELECT MAX(id) FROM kpis GROUP BY entity_id, period_id, name)
"""

COUNT_DUPLICATE_CHARTS = """
    SELECT COUNT(*) FROM chart_data
    WHERE id NOT IN (SELECT MAX(id) FROM chart_data GROUP BY entity_id, period_id, chart_type)
"""


def key_aliases() -> List[Tuple[str, str]]:
    """(alias, canonical) pairs for every known chart key."""
    pairs = []
    for key in strategy_registry.chart_keys():
        legacy = strategy_registry.snake_case(key)
        if legacy != key:
            pairs.append((legacy, key))
    for alias, canonical in EXTRA_KEY_ALIASES.items():
        if (alias, canonical) not in pairs:
            pairs.append((alias, canonical))
    return pairs


class ReconcileResult(BaseModel):
    """Outcome of a reconcile pass."""

    deleted_count: int = Field(0, description="Rows deleted across all passes")
    renamed_count: int = Field(0, description="Alias rows moved to their canonical key")
    remaining: Dict[str, int] = Field(default_factory=dict, description="Row counts after the pass")


class ReconcileService:
    """Batch repair of duplicate KPI, chart and period rows."""

    def __init__(self, gateway: StorageGateway):
        self.gateway = gateway

    def reconcile(self) -> ReconcileResult:
        """
        Collapse duplicates and retire legacy chart keys.

        Order: duplicate periods are merged into the first one created,
        alias keys are resolved, then KPI and chart duplicates are removed.
        All passes share one transaction.
        """
        deleted = 0
        renamed = 0

        with self.gateway.transaction() as conn:
            for table in ('kpis', 'chart_data'):
                conn.execute(text(REPOINT_TO_FIRST_PERIOD.format(table=table, duplicates=DUPLICATE_PERIODS)))
            result = conn.execute(text(f"DELETE FROM periods WHERE id IN ({DUPLICATE_PERIODS})"))
            if result.rowcount:
                logger.info(f"Merged {result.rowcount} duplicate periods")
            deleted += max(result.rowcount, 0)

            for alias, canonical in key_aliases():
                params = {'alias': alias, 'canonical': canonical}
                result = conn.execute(text(DELETE_SHADOWED_ALIAS), params)
                if result.rowcount:
                    logger.info(f"Discarded {result.rowcount} '{alias}' rows shadowed by '{canonical}'")
                deleted += max(result.rowcount, 0)

                result = conn.execute(text(RENAME_ALIAS), params)
                if result.rowcount:
                    logger.info(f"Renamed {result.rowcount} '{alias}' rows to '{canonical}'")
                renamed += max(result.rowcount, 0)

            result = conn.execute(text(DELETE_DUPLICATE_KPIS))
            logger.info(f"Removed {result.rowcount} duplicate KPI rows")
            deleted += max(result.rowcount, 0)

            result = conn.execute(text(DELETE_DUPLICATE_CHARTS))
            logger.info(f"Removed {result.rowcount} duplicate chart rows")
            deleted += max(result.rowcount, 0)

        remaining = self.remaining_counts()
        logger.info(f"Reconcile complete: {deleted} deleted, {renamed} renamed, remaining {remaining}")
        return ReconcileResult(deleted_count=deleted, renamed_count=renamed, remaining=remaining)

    def preview(self) -> Dict[str, int]:
        """Duplicate rows a reconcile would delete, without touching anything."""
        with self.gateway.transaction() as conn:
            return {
                'periods': conn.execute(text(f"SELECT COUNT(*) FROM ({DUPLICATE_PERIODS}) d")).scalar(),
                'kpis': conn.execute(text(COUNT_DUPLICATE_KPIS)).scalar(),
                'chart_data': conn.execute(text(COUNT_DUPLICATE_CHARTS)).scalar(),
            }

    def remaining_counts(self) -> Dict[str, int]:
        counts = self.gateway.table_counts()
        return {table: counts[table] for table in ('kpis', 'chart_data')}
