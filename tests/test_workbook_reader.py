"""
Tests for the openpyxl-backed workbook reader.
"""

import pytest
from services.exceptions import MalformedWorkbook
from services.workbook_reader import WorkbookReader


class TestOpen:
    """Test opening workbooks from bytes and paths."""

    def test_sheet_names_in_order(self, open_workbook):
        workbook = open_workbook({'KPIs': [['Name']], 'Unit Trust AUM': [['Month']], 'Notes': []})
        assert workbook.sheet_names() == ['KPIs', 'Unit Trust AUM', 'Notes']

    def test_garbage_bytes(self):
        with pytest.raises(MalformedWorkbook):
            WorkbookReader.open(b'this is not a spreadsheet')

    def test_empty_bytes(self):
        with pytest.raises(MalformedWorkbook):
            WorkbookReader.open(b'')

    def test_zip_that_is_not_a_workbook(self, tmp_path):
        import zipfile
        path = tmp_path / 'fake.xlsx'
        with zipfile.ZipFile(path, 'w') as zf:
            zf.writestr('hello.txt', 'hi')

        with pytest.raises(MalformedWorkbook):
            WorkbookReader.open_path(path)

    def test_missing_path(self, tmp_path):
        with pytest.raises(MalformedWorkbook):
            WorkbookReader.open_path(tmp_path / 'missing.xlsx')

    def test_open_path(self, tmp_path, make_workbook_bytes):
        path = tmp_path / 'JXG.xlsx'
        path.write_bytes(make_workbook_bytes({'KPIs': [['Name', 'Actual'], ['PAT', 1]]}))

        with WorkbookReader.open_path(path) as workbook:
            assert workbook.source == 'JXG.xlsx'
            assert workbook.read_sheet('KPIs') == [['Name', 'Actual'], ['PAT', 1]]


class TestReadSheet:
    """Test grid shape returned by read_sheet()."""

    def test_raw_values_kept(self, open_workbook):
        workbook = open_workbook({'Data': [['Month', 'Actual'], ['Jan', 10.5], ['Feb', '12%']]})
        assert workbook.read_sheet('Data') == [['Month', 'Actual'], ['Jan', 10.5], ['Feb', '12%']]

    def test_ragged_rows_and_trailing_blanks(self, open_workbook):
        workbook = open_workbook({'Data': [
            ['Month', 'Actual', 'Budget'],
            ['Jan', 10],
            [None, None, None],
            ['Feb', None, 5],
            [],
            [],
        ]})
        assert workbook.read_sheet('Data') == [
            ['Month', 'Actual', 'Budget'],
            ['Jan', 10],
            [],
            ['Feb', None, 5],
        ]

    def test_empty_sheet(self, open_workbook):
        workbook = open_workbook({'Blank': []})
        assert workbook.read_sheet('Blank') == []

    def test_unknown_sheet(self, open_workbook):
        workbook = open_workbook({'KPIs': [['Name']]})
        with pytest.raises(KeyError):
            workbook.read_sheet('Nope')
