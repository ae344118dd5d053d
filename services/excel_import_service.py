"""
Excel Import Service - Framework-agnostic business logic.

This module turns an uploaded entity workbook into stored KPIs and chart
datasets, with progress callback support for CLI or API callers.
"""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Union

from pydantic import BaseModel, Field

from backend.models.charts import chart_payload_adapter
from backend.models.entities import ENTITIES, EntityId, parse_entity_id
from services import strategy_registry
from services.exceptions import EntityMismatch, InvalidChartValue, UploadRejected
from services.storage_service import StorageGateway, empty_reason
from services.upload_service import UploadService
from services.validation_service import validate_filename
from services.workbook_reader import Workbook, WorkbookReader

logger = logging.getLogger(__name__)


class ImportResult(BaseModel):
    """Counts reported back to the caller after an ingestion."""

    entity_id: str = Field(..., description="Entity the workbook was ingested for")
    period_key: str = Field(..., description="Period key, e.g. June-2025")
    period_id: int = Field(..., description="Stored period id")
    kpi_count: int = Field(0, description="KPIs upserted")
    chart_count: int = Field(0, description="Chart datasets saved")
    data_keys: List[str] = Field(default_factory=list, description="Dataset keys written")


class ExcelImportService:
    """
    Framework-agnostic entity workbook import service.

    Sheets are processed one at a time in registry order; a sheet's writes
    are committed before the next sheet starts.
    """

    def __init__(
        self,
        gateway: StorageGateway,
        upload_service: Optional[UploadService] = None,
        progress_callback: Optional[Callable[[str, float, str], None]] = None
    ):
        """
        Initialize Excel import service.

        Args:
            gateway: Storage gateway the records are written through
            upload_service: Temp file handling for ingest_upload
            progress_callback: Optional callback for progress updates
                              Signature: callback(stage: str, percent: float, message: str)
        """
        self.gateway = gateway
        self.upload_service = upload_service or UploadService()
        self.progress_callback = progress_callback or (lambda *args: None)

    def _emit_progress(self, stage: str, percent: float, message: str):
        """Emit progress update via callback."""
        self.progress_callback(stage, percent, message)
        logger.info(f"Progress: {stage} ({percent:.1f}%) - {message}")

    @staticmethod
    def _require_entity(entity_id) -> EntityId:
        entity = parse_entity_id(entity_id)
        if entity is None:
            raise UploadRejected(f"Invalid entity ID: {entity_id}")
        return entity

    def ingest(self, entity_id, month: str, year: Union[int, str], workbook: Workbook) -> ImportResult:
        """
        Extract and store every recognised sheet of a workbook.

        Args:
            entity_id: Entity the workbook belongs to
            month: Month name, e.g. "June"
            year: Four digit year
            workbook: Opened workbook

        Returns:
            ImportResult with KPI and chart counts

        Raises:
            UploadRejected: Unknown entity id
            StorageUnavailable: Backend unreachable
        """
        entity = self._require_entity(entity_id)
        info = ENTITIES[entity]

        period = self.gateway.create_or_get_period(month, year)
        result = ImportResult(
            entity_id=entity.value,
            period_key=period['period_key'],
            period_id=period['id']
        )

        sheet_names = workbook.sheet_names()
        logger.info(f"Processing upload for {info.short_name}, available sheets: {sheet_names}")
        matched = strategy_registry.resolve(entity, sheet_names)
        self._emit_progress('matching', 5, f"{len(matched)} of {len(sheet_names)} sheets recognised")

        for index, (rule, sheet_name) in enumerate(matched):
            try:
                grid = workbook.read_sheet(sheet_name)
                records = rule.strategy(grid)
                if not rule.is_kpi_table:
                    records = chart_payload_adapter.validate_python(records)
            except Exception as e:
                logger.error(f"Skipping sheet '{sheet_name}' ({rule.data_key}): {e}")
                continue

            if rule.is_kpi_table:
                for kpi in records:
                    self.gateway.upsert_kpi(
                        entity, period['id'], kpi.name, kpi.actual, kpi.budget, kpi.unit
                    )
                    result.kpi_count += 1
                logger.info(f"KPIs processed: {len(records)} entries")
            elif self._save_chart(entity, period['id'], rule.data_key, records.to_value()):
                result.chart_count += 1
                result.data_keys.append(rule.data_key)

            percent = 5 + 90 * (index + 1) / len(matched)
            self._emit_progress('extracting', percent, f"Processed sheet '{sheet_name}'")

        self._emit_progress('complete', 100, f"{result.kpi_count} KPIs, {result.chart_count} charts")
        logger.info(
            f"Data uploaded for {info.short_name} - {result.period_key}: "
            f"{result.kpi_count} KPIs, {result.chart_count} chart datasets"
        )
        return result

    def _save_chart(self, entity: EntityId, period_id: int, data_key: str, value) -> bool:
        """Store one chart dataset; empty or invalid values are skipped."""
        reason = empty_reason(value)
        if reason is not None:
            logger.warning(f"Not storing {data_key} for {entity.value}: {reason}")
            return False
        try:
            saved = self.gateway.save_chart_dataset(entity, period_id, data_key, data_key, value)
        except InvalidChartValue as e:
            logger.warning(str(e))
            return False
        return saved is not None

    def ingest_upload(self, entity_id, month: str, year: Union[int, str],
                      filename: str, file_bytes: bytes) -> ImportResult:
        """
        Full upload path: checks, scoped temp file, filename guard, ingest.

        The temp file is removed on success, rejection and parse failure.

        Raises:
            UploadRejected: Bad entity id, extension or size
            EntityMismatch: Filename belongs to another entity
            MalformedWorkbook: File is not a readable workbook
        """
        self._require_entity(entity_id)
        self.upload_service.validate_file_extension(filename)
        self.upload_service.validate_file_size(len(file_bytes))

        with self.upload_service.scoped_upload(filename, file_bytes) as temp_path:
            validation = validate_filename(filename, entity_id)
            if not validation.is_valid:
                raise EntityMismatch(validation)

            self._emit_progress('parsing', 0, f"Reading {filename}")
            with WorkbookReader.open_path(temp_path) as workbook:
                return self.ingest(entity_id, month, year, workbook)

    def ingest_file(self, file_path: Union[str, Path], entity_id,
                    month: str, year: Union[int, str]) -> ImportResult:
        """Ingest a workbook from disk as if it had been uploaded."""
        path = Path(file_path)
        return self.ingest_upload(entity_id, month, year, path.name, path.read_bytes())
