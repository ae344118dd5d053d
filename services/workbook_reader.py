"""
Workbook reader - raw cell grids from uploaded spreadsheets.

Wraps openpyxl in read-only, cached-values mode. No formulas are
evaluated and no numeric coercion happens here; strategies decide how
to interpret each cell.
"""

import io
import logging
import zipfile
from pathlib import Path
from typing import Any, Iterator, List, Union

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from services.exceptions import MalformedWorkbook

logger = logging.getLogger(__name__)

Row = List[Any]
Grid = List[Row]

_OPEN_ERRORS = (
    zipfile.BadZipFile,
    InvalidFileException,
    KeyError,
    ValueError,
    TypeError,
    OSError,
)


class Workbook:
    """Read-only view over an opened workbook."""

    def __init__(self, wb, source: str = '<bytes>'):
        self._wb = wb
        self.source = source

    def sheet_names(self) -> List[str]:
        """Sheet titles in workbook order."""
        return list(self._wb.sheetnames)

    def iter_rows(self, name: str) -> Iterator[Row]:
        """
        Lazily yield rows of a sheet as lists of raw values.

        Trailing absent cells (None) are trimmed from each row, so rows are
        ragged the same way they appear in the sheet. Cells holding an empty
        string are kept.
        """
        if name not in self._wb.sheetnames:
            raise KeyError(f"Sheet not found: {name}")

        ws = self._wb[name]
        if not hasattr(ws, 'iter_rows'):
            # Chartsheets carry no cells
            return

        # Declared dimensions are unreliable in files written by some tools
        if hasattr(ws, 'reset_dimensions'):
            ws.reset_dimensions()

        for values in ws.iter_rows(values_only=True):
            row = list(values)
            while row and row[-1] is None:
                row.pop()
            yield row

    def read_sheet(self, name: str) -> Grid:
        """
        Read one sheet into a row-major grid (header row at index 0).

        Trailing blank rows are dropped.
        """
        grid = list(self.iter_rows(name))
        while grid and not grid[-1]:
            grid.pop()
        logger.debug(f"Read sheet '{name}' from {self.source}: {len(grid)} rows")
        return grid

    def close(self):
        self._wb.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class WorkbookReader:
    """Open workbooks from bytes or from a path on disk."""

    @staticmethod
    def open(data: bytes, source: str = '<bytes>') -> Workbook:
        """
        Open a workbook from raw bytes.

        Raises:
            MalformedWorkbook: If the container cannot be parsed
        """
        if not data:
            raise MalformedWorkbook(f"Empty workbook: {source}")
        try:
            wb = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        except _OPEN_ERRORS as e:
            logger.error(f"Could not open workbook {source}: {e}")
            raise MalformedWorkbook(f"Could not read workbook {source}: {e}") from e

        logger.info(f"Opened workbook {source} with sheets: {wb.sheetnames}")
        return Workbook(wb, source)

    @staticmethod
    def open_path(file_path: Union[str, Path]) -> Workbook:
        """Open a workbook from a file path."""
        path = Path(file_path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise MalformedWorkbook(f"Could not read file {path}: {e}") from e
        return WorkbookReader.open(data, source=path.name)
