"""Models package for the dashboard store."""
from backend.models.schema import Base, Entity, Period, KPIRecord, ChartDataset, UploadLog
from backend.models.entities import EntityId, EntityInfo, ENTITIES

__all__ = [
    'Base', 'Entity', 'Period', 'KPIRecord', 'ChartDataset', 'UploadLog',
    'EntityId', 'EntityInfo', 'ENTITIES',
]
