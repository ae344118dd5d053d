"""
Normalized records produced by sheet extraction.

Chart payloads form a closed set of tagged variants. Each variant pins
its own persisted shape through ``to_value()``; the storage layer only
ever sees that JSON-able value.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from typing_extensions import Annotated, Literal


class KPIRow(BaseModel):
    """One row of a KPIs sheet. Missing actual/budget stay None (no data)."""

    name: str = Field(..., min_length=1, description="KPI name")
    actual: Optional[float] = Field(None, description="Actual value")
    budget: Optional[float] = Field(None, description="Budget value")
    unit: str = Field('', description="Unit label, e.g. 'LKR Mn' or '%'")


class PieSlice(BaseModel):
    name: str
    value: float
    color: str


class LineSeries(BaseModel):
    """Label/actual/budget points for line and bar charts."""

    kind: Literal['line'] = 'line'
    points: List[Dict[str, Any]] = Field(default_factory=list)

    def to_value(self) -> List[Dict[str, Any]]:
        return [dict(point) for point in self.points]


class PieSeries(BaseModel):
    """Category/value slices with an assigned palette color."""

    kind: Literal['pie'] = 'pie'
    slices: List[PieSlice] = Field(default_factory=list)

    def to_value(self) -> List[Dict[str, Any]]:
        return [s.model_dump() for s in self.slices]


class MultiMetricMatrix(BaseModel):
    """One data point per row, one numeric field per labelled column."""

    kind: Literal['matrix'] = 'matrix'
    rows: List[Dict[str, Any]] = Field(default_factory=list)

    def to_value(self) -> List[Dict[str, Any]]:
        return [dict(row) for row in self.rows]


class CompositeBucketed(BaseModel):
    """
    Per-bucket metric values plus the raw header labels.

    Buckets are the fixed month slots (``jun``, ``jul``, ``aug``); each maps
    metric name to a formatted percentage string.
    """

    kind: Literal['composite'] = 'composite'
    buckets: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    labels: List[str] = Field(default_factory=list)

    def to_value(self) -> Dict[str, Any]:
        value: Dict[str, Any] = {name: dict(metrics) for name, metrics in self.buckets.items()}
        if self.labels:
            value['labels'] = list(self.labels)
        return value


CHART_PAYLOAD_TYPES = (LineSeries, PieSeries, MultiMetricMatrix, CompositeBucketed)

ChartPayload = Annotated[
    Union[LineSeries, PieSeries, MultiMetricMatrix, CompositeBucketed],
    Field(discriminator='kind')
]

# Validates a payload (model instance, dict or JSON) against the tagged union
chart_payload_adapter = TypeAdapter(ChartPayload)
