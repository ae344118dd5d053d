"""
Extraction strategies - translate one sheet's raw grid into normalized records.

Every strategy is a pure function over a grid (list of rows, header row
at index 0). Shared rules:

- A row is present when its key column (column 0) is non-blank and at
  least one of its value columns holds a cell (not None).
- Numbers are coerced with ``parse_number``. KPIs default to None so
  "no data" survives; chart fields default to 0.0 for a plotting baseline.
"""

import logging
import math
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from backend.models.charts import (
    KPIRow, PieSlice, LineSeries, PieSeries, MultiMetricMatrix, CompositeBucketed
)

logger = logging.getLogger(__name__)

PALETTE: Tuple[str, ...] = ('#8B5CF6', '#06B6D4', '#10B981', '#F59E0B', '#EF4444')

# Leading float literal, like a lenient parseFloat ("10%" -> 10.0)
NUMBER_PATTERN = re.compile(r'^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?')

# Bucket name -> header substrings. "sep" and "oct" landing in "aug" mirrors
# how the market turnover sheets have drifted; kept until product confirms.
MONTH_BUCKETS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ('jun', ('jun',)),
    ('jul', ('jul',)),
    ('aug', ('aug', 'sep', 'oct')),
)

TURNOVER_METRICS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ('volume', ('volume',)),
    ('commission', ('commission',)),
)


# ============================================================================
# Cell helpers
# ============================================================================

def is_blank(value: Any) -> bool:
    """True for absent cells and whitespace-only strings."""
    return value is None or (isinstance(value, str) and not value.strip())


def cell_at(row: Sequence[Any], index: int) -> Any:
    if index < len(row):
        return row[index]
    return None


def has_cell(row: Sequence[Any], index: int) -> bool:
    return cell_at(row, index) is not None


def is_present(row: Sequence[Any], value_columns: Sequence[int]) -> bool:
    """Row validity: non-blank key column and at least one value cell."""
    if not row or is_blank(row[0]):
        return False
    return any(has_cell(row, i) for i in value_columns)


def parse_number(value: Any, default: Optional[float] = None) -> Optional[float]:
    """
    Parse a cell as a float.

    Args:
        value: Raw cell value
        default: Returned when the value is blank or unparsable

    Returns:
        Parsed float, or ``default``
    """
    if value is None or isinstance(value, bool):
        return default

    if isinstance(value, (int, float)):
        number = float(value)
        if math.isnan(number) or math.isinf(number):
            return default
        return number

    if isinstance(value, str):
        match = NUMBER_PATTERN.match(value.strip().replace(',', ''))
        if not match:
            return default
        number = float(match.group(0))
        if math.isinf(number):
            return default
        return number

    return default


def format_label(value: Any) -> str:
    """Render a key/header cell as display text."""
    if value is None:
        return ''
    if isinstance(value, (datetime, date)):
        # Month headers typed as "Jun-25" come back from Excel as dates
        return value.strftime('%b-%y')
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def format_percent(value: Any) -> str:
    """Format a turnover cell as a percentage string; falsy cells are '0%'."""
    if not value:
        return '0%'
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    if text.endswith('%'):
        text = text[:-1].strip()
    return f"{text}%"


# ============================================================================
# Strategies
# ============================================================================

def extract_kpis(grid: Sequence[Sequence[Any]]) -> List[KPIRow]:
    """KPI table: [Name, Actual, Budget, Unit]. Header row ignored."""
    kpis = []
    for row in grid[1:]:
        if not is_present(row, (1, 2)):
            continue
        unit = cell_at(row, 3)
        kpis.append(KPIRow(
            name=format_label(row[0]),
            actual=parse_number(cell_at(row, 1), None),
            budget=parse_number(cell_at(row, 2), None),
            unit='' if is_blank(unit) else format_label(unit),
        ))

    logger.debug(f"Extracted {len(kpis)} KPI rows")
    return kpis


def extract_pie(grid: Sequence[Sequence[Any]],
                palette: Sequence[str] = PALETTE) -> PieSeries:
    """
    Category/value slices. Colors follow row position and wrap around
    the palette when a sheet has more rows than colors.
    """
    slices = []
    for index, row in enumerate(grid[1:]):
        name, raw_value = cell_at(row, 0), cell_at(row, 1)
        if not name or not raw_value or is_blank(name):
            continue
        slices.append(PieSlice(
            name=format_label(name),
            value=parse_number(raw_value, 0.0),
            color=palette[index % len(palette)],
        ))
    return PieSeries(slices=slices)


def extract_line(grid: Sequence[Sequence[Any]], label_field: str = 'month') -> LineSeries:
    """Label/actual/budget rows (month series or category bars)."""
    points = []
    for row in grid[1:]:
        if not is_present(row, (1, 2)):
            continue
        points.append({
            label_field: format_label(row[0]),
            'actual': parse_number(cell_at(row, 1), 0.0),
            'budget': parse_number(cell_at(row, 2), 0.0),
        })
    return LineSeries(points=points)


def extract_matrix(grid: Sequence[Sequence[Any]],
                   fields: Optional[Sequence[str]] = None) -> MultiMetricMatrix:
    """
    Multi-series matrix.

    With ``fields`` the output keys are positional (fields[0] names the
    label column). Without it, keys come verbatim from the header row and
    unlabelled columns are dropped.
    """
    if not grid:
        return MultiMetricMatrix()

    header = grid[0]
    if fields:
        label_key = fields[0]
        columns = [(i, name) for i, name in enumerate(fields) if i > 0]
    else:
        label_key = format_label(cell_at(header, 0)) or 'category'
        columns = [
            (i, value if isinstance(value, str) else format_label(value))
            for i, value in enumerate(header)
            if i > 0 and not is_blank(value)
        ]

    value_columns = [i for i, _ in columns]
    rows = []
    for row in grid[1:]:
        if not is_present(row, value_columns):
            continue
        point: Dict[str, Any] = {label_key: format_label(row[0])}
        for i, key in columns:
            point[key] = parse_number(cell_at(row, i), 0.0)
        rows.append(point)

    return MultiMetricMatrix(rows=rows)


def _match(label: str, table: Sequence[Tuple[str, Tuple[str, ...]]]) -> Optional[str]:
    lowered = label.lower()
    for name, patterns in table:
        if any(p in lowered for p in patterns):
            return name
    return None


def extract_composite(grid: Sequence[Sequence[Any]],
                      metrics: Sequence[Tuple[str, Tuple[str, ...]]] = TURNOVER_METRICS,
                      buckets: Sequence[Tuple[str, Tuple[str, ...]]] = MONTH_BUCKETS
                      ) -> CompositeBucketed:
    """
    Row-label dispatch: metric rows x month-bucket columns.

    Every bucket starts with '0%' for every metric. When several header
    columns map to the same bucket the rightmost one wins.
    """
    result = {name: {metric: '0%' for metric, _ in metrics} for name, _ in buckets}
    if not grid:
        return CompositeBucketed(buckets=result)

    header = grid[0]
    labels = [format_label(h) for h in header[1:]]
    column_buckets = []
    for i, label in enumerate(labels, start=1):
        bucket = _match(label, buckets)
        if bucket is not None:
            column_buckets.append((i, bucket))
        else:
            logger.debug(f"Header '{label}' maps to no month bucket, ignored")

    for row in grid[1:]:
        if not row or is_blank(row[0]):
            continue
        metric = _match(format_label(row[0]), metrics)
        if metric is None:
            continue
        for i, bucket in column_buckets:
            result[bucket][metric] = format_percent(cell_at(row, i))

    return CompositeBucketed(buckets=result, labels=labels)
