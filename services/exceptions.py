"""
Error taxonomy for the ingestion and storage services.

Workbook, filename and storage problems are fatal to an ingestion call and
propagate as one of these. Sheet- and dataset-level problems are logged
and skipped by the import service instead of being raised.
"""


class DashboardError(Exception):
    """Base class for all service-level failures."""


class MalformedWorkbook(DashboardError):
    """The uploaded container could not be parsed as a workbook."""


class EntityMismatch(DashboardError):
    """The uploaded filename does not belong to the selected entity."""

    def __init__(self, result):
        self.result = result
        message = (
            f"File name does not match selected entity "
            f"'{result.selected_entity_name or 'unknown'}'"
        )
        if result.detected_entity_name:
            message += f" (looks like {result.detected_entity_name})"
        super().__init__(message)


class InvalidChartValue(DashboardError):
    """A chart dataset is empty or otherwise not worth persisting."""

    def __init__(self, data_key: str, reason: str):
        self.data_key = data_key
        self.reason = reason
        super().__init__(f"Invalid chart value for {data_key}: {reason}")


class UploadRejected(DashboardError):
    """The upload failed a pre-parse check (extension, size, entity id)."""


class StorageUnavailable(DashboardError):
    """The storage backend could not be reached."""
