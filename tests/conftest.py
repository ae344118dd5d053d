"""
Pytest configuration and fixtures for dashboard import tests.
"""

import io
import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool
from dotenv import load_dotenv
from openpyxl import Workbook as OpenpyxlWorkbook

from services.storage_service import StorageGateway
from services.upload_service import UploadService
from services.workbook_reader import WorkbookReader

# Load environment
load_dotenv()

# In-memory SQLite; every gateway fixture starts from an empty store
TEST_DATABASE_URL = 'sqlite://'

# Tables as they were created before unique constraints existed
LEGACY_DDL = [
    """
    CREATE TABLE periods (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        month TEXT NOT NULL,
        year INTEGER NOT NULL,
        period_key TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE kpis (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_id TEXT NOT NULL,
        period_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        actual_value REAL,
        budget_value REAL,
        unit TEXT DEFAULT '',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE chart_data (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_id TEXT NOT NULL,
        period_id INTEGER NOT NULL,
        chart_type TEXT NOT NULL,
        data_key TEXT NOT NULL,
        data_value TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]


@pytest.fixture(scope='function')
def gateway():
    """Fresh storage gateway with the current schema."""
    gw = StorageGateway(TEST_DATABASE_URL)
    gw.init_schema()
    yield gw
    gw.close()


@pytest.fixture(scope='function')
def legacy_gateway():
    """In-memory gateway over tables without unique constraints."""
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool
    )
    with engine.begin() as conn:
        for ddl in LEGACY_DDL:
            conn.execute(text(ddl))

    gw = StorageGateway(engine=engine)
    gw.init_schema()
    yield gw
    gw.close()


@pytest.fixture
def make_workbook_bytes():
    """
    Build an .xlsx in memory.

    Usage:
        make_workbook_bytes({'KPIs': [['Name', 'Actual'], ['PAT', 10]]})
    """
    def _build(sheets):
        wb = OpenpyxlWorkbook()
        wb.remove(wb.active)
        for title, rows in sheets.items():
            ws = wb.create_sheet(title)
            for row in rows:
                ws.append(list(row))
        buffer = io.BytesIO()
        wb.save(buffer)
        return buffer.getvalue()

    return _build


@pytest.fixture
def open_workbook(make_workbook_bytes):
    """Build a workbook and open it through the reader."""
    opened = []

    def _open(sheets):
        workbook = WorkbookReader.open(make_workbook_bytes(sheets), source='test.xlsx')
        opened.append(workbook)
        return workbook

    yield _open

    for workbook in opened:
        workbook.close()


@pytest.fixture
def upload_service(tmp_path):
    """Upload service writing temp files under a per-test directory."""
    return UploadService(temp_dir=str(tmp_path / 'uploads'))


@pytest.fixture
def first_capital_sheets():
    """A First Capital workbook with a mix of full, blank and unknown sheets."""
    return {
        'KPIs': [
            ['Name', 'Actual', 'Budget', 'Unit'],
            ['Net Income', 120.5, 100, 'LKR Mn'],
            ['ROE', '15%', 12, '%'],
            ['NPL Ratio', 0, 0],
            ['Pending'],
        ],
        'Unit Trust AUM': [
            ['Month', 'Actual', 'Budget'],
            ['Jan', 1000, 950],
            ['Feb', 1100, None],
        ],
        'Trading Composition': [
            ['Category', 'Value'],
            ['Equity', 40],
            ['Debt', 60],
        ],
        'Market Turnover': [
            ['Metric', '25-Jun', '25-Jul', '25-Aug'],
            ['Volume %', 10, 12, 15],
            ['Commission %', 2, 3, 4],
        ],
        'Dealing Securities': [
            ['Month', 'Jan', 'Feb'],
        ],
        'Notes': [
            ['Anything', 'goes', 'here'],
        ],
    }
