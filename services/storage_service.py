"""
Storage Service - one query contract over the embedded and networked backends.

The backend is chosen by ``DATABASE_URL``: ``sqlite:///...`` for the
embedded file-based engine, ``postgresql://...`` for the networked one.
Callers never branch on backend identity; reads come back as lists of
row mappings and writes as a ``MutationResult``.
"""

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Union

from sqlalchemy import create_engine, select, delete, func, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.pool import StaticPool

from backend.config import settings
from backend.models.charts import CHART_PAYLOAD_TYPES, ChartPayload
from backend.models.entities import ENTITIES, EntityId
from backend.models.schema import Base, Entity, Period, KPIRecord, ChartDataset, UploadLog
from services.exceptions import InvalidChartValue, StorageUnavailable

logger = logging.getLogger(__name__)

# Serialized forms that mean "nothing here"
EMPTY_SENTINELS = ('', 'undefined', 'null', '[]', '{}')

MONTHS = (
    'January', 'February', 'March', 'April', 'May', 'June',
    'July', 'August', 'September', 'October', 'November', 'December'
)

READ_VERBS = ('SELECT', 'WITH', 'PRAGMA', 'EXPLAIN', 'SHOW')

TABLES = ('entities', 'periods', 'kpis', 'chart_data', 'upload_logs')


class MutationResult(NamedTuple):
    """Backend-normalized outcome of an INSERT/UPDATE/DELETE."""
    last_id: Optional[int]
    changes: int


def empty_reason(value: Any) -> Optional[str]:
    """Why a chart value must not be stored, or None when it is fine."""
    if value is None:
        return 'value is null'
    if isinstance(value, (list, tuple)) and len(value) == 0:
        return 'empty array'
    if isinstance(value, Mapping) and len(value) == 0:
        return 'empty object'
    if isinstance(value, str) and value.strip() in EMPTY_SENTINELS:
        return f'sentinel string {value!r}'
    try:
        serialized = json.dumps(value)
    except (TypeError, ValueError) as e:
        return f'not serializable: {e}'
    if serialized in EMPTY_SENTINELS:
        return f'serializes to {serialized}'
    return None


def is_valid_chart_value(value: Any) -> bool:
    return empty_reason(value) is None


def make_period_key(month: str, year: Union[int, str]) -> str:
    return f"{str(month).strip()}-{int(year)}"


def _month_index(month: str) -> int:
    try:
        return MONTHS.index(str(month).strip().capitalize())
    except ValueError:
        return -1


def _to_named_params(sql: str, params: Sequence[Any]):
    """Rewrite ``?`` placeholders (outside quotes) as :p0, :p1, ..."""
    out = []
    bound = {}
    quote = None
    for ch in sql:
        if ch in ("'", '"'):
            if quote is None:
                quote = ch
            elif quote == ch:
                quote = None
        if ch == '?' and quote is None:
            name = f"p{len(bound)}"
            if len(bound) >= len(params):
                raise ValueError("Not enough parameters for query placeholders")
            bound[name] = params[len(bound)]
            out.append(f":{name}")
        else:
            out.append(ch)
    if len(bound) != len(params):
        raise ValueError(f"Query has {len(bound)} placeholders but {len(params)} parameters")
    return ''.join(out), bound


def create_engine_for(database_url: str) -> Engine:
    """
    Create an engine for the embedded or networked backend.

    Args:
        database_url: SQLAlchemy URL (sqlite:///path.db or postgresql://...)
    """
    if database_url.startswith('sqlite'):
        path = database_url.split(':///', 1)[-1] if ':///' in database_url else ''
        if path and path != ':memory:':
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            return create_engine(
                database_url,
                connect_args={'check_same_thread': False},
                echo=settings.DEBUG
            )
        # In-memory database must be shared by every connection
        return create_engine(
            'sqlite://',
            connect_args={'check_same_thread': False},
            poolclass=StaticPool,
            echo=settings.DEBUG
        )

    return create_engine(
        database_url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=settings.DB_POOL_PRE_PING,
        connect_args={'connect_timeout': settings.DB_CONNECT_TIMEOUT},
        echo=settings.DEBUG
    )


class StorageGateway:
    """
    Uniform storage interface over SQLite and PostgreSQL.

    Owns schema creation, KPI/chart upserts and period create-or-get.
    Every write commits on its own; nothing spans multiple calls.
    """

    def __init__(self, database_url: Optional[str] = None, engine: Optional[Engine] = None):
        """
        Initialize storage gateway.

        Args:
            database_url: Backend URL (default: settings.DATABASE_URL)
            engine: Pre-built engine, takes precedence over database_url
        """
        self.engine = engine or create_engine_for(database_url or settings.DATABASE_URL)
        self.dialect = self.engine.dialect.name
        self._initialized = False

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def _connect(self) -> Connection:
        try:
            return self.engine.connect()
        except DBAPIError as e:
            logger.error(f"Database connection failed ({self.dialect}): {e}")
            raise StorageUnavailable(f"Cannot connect to {self.dialect} backend: {e.orig}") from e

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Connection with a transaction that commits on success."""
        self._ensure_initialized()
        with self._connect() as conn:
            with conn.begin():
                yield conn

    def _ensure_initialized(self):
        if not self._initialized:
            self.init_schema()

    def _insert(self, table):
        if self.dialect == 'postgresql':
            return pg_insert(table)
        return sqlite_insert(table)

    def _mutation(self, result, is_insert: bool = False) -> MutationResult:
        """
        Normalize a write result.

        With RETURNING, the first returned column is last_id and the number
        of returned rows is the change count. Otherwise the count comes from
        rowcount, and last_id is only read for SQLite INSERTs (lastrowid
        keeps the previous insert's id across other statements).
        """
        if result.returns_rows:
            rows = result.all()
            return MutationResult(rows[0][0] if rows else None, len(rows))

        last_id = result.lastrowid if is_insert and self.dialect == 'sqlite' else None
        changes = result.rowcount if result.rowcount and result.rowcount > 0 else 0
        return MutationResult(last_id, changes)

    def init_schema(self):
        """
        Create tables if missing and seed the entity reference set.

        Safe to run repeatedly: existing tables and entity rows are left as
        they are.
        """
        with self._connect() as conn:
            with conn.begin():
                Base.metadata.create_all(conn)
                for info in ENTITIES.values():
                    stmt = self._insert(Entity.__table__).values(
                        id=info.id.value,
                        name=info.name,
                        short_name=info.short_name,
                        description=info.description
                    ).on_conflict_do_nothing(index_elements=['id'])
                    conn.execute(stmt)

        self._initialized = True
        logger.info(f"Schema verified on {self.dialect} backend")

    def close(self):
        self.engine.dispose()
        self._initialized = False

    # ------------------------------------------------------------------
    # Raw query primitive
    # ------------------------------------------------------------------

    def query(self, sql: str, params: Union[Sequence[Any], Mapping[str, Any], None] = None
              ) -> Union[List[Dict[str, Any]], MutationResult]:
        """
        Run a parameterized statement.

        Args:
            sql: Statement text with ``?`` (positional) or ``:name`` placeholders
            params: Sequence for ``?`` placeholders, mapping for named ones

        Returns:
            List of row dicts for reads; MutationResult for writes. A write
            with RETURNING reports the first returned column as last_id.
        """
        if params is None:
            params = {}
        if isinstance(params, Mapping):
            statement, bound = sql, dict(params)
        else:
            statement, bound = _to_named_params(sql, list(params))

        verb = statement.lstrip().split(None, 1)[0].upper() if statement.strip() else ''

        try:
            with self.transaction() as conn:
                result = conn.execute(text(statement), bound)
                if verb in READ_VERBS:
                    return [dict(row) for row in result.mappings()]
                return self._mutation(result, is_insert=(verb == 'INSERT'))
        except DBAPIError as e:
            logger.error(f"Database query failed: {e.orig}")
            logger.error(f"Query: {sql}")
            logger.error(f"Params: {params}")
            raise

    # ------------------------------------------------------------------
    # Periods
    # ------------------------------------------------------------------

    def get_period(self, month: str, year: Union[int, str]) -> Optional[Dict[str, Any]]:
        key = make_period_key(month, year)
        with self.transaction() as conn:
            row = conn.execute(
                select(Period.__table__).where(Period.period_key == key)
            ).mappings().first()
        return dict(row) if row else None

    def create_or_get_period(self, month: str, year: Union[int, str]) -> Dict[str, Any]:
        """
        Return the period for (month, year), creating it on first reference.

        Concurrent first-time creators both succeed: the insert ignores a
        conflict on period_key and everyone re-reads the one stored row.
        """
        key = make_period_key(month, year)
        existing = self.get_period(month, year)
        if existing:
            return existing

        with self.transaction() as conn:
            conn.execute(
                self._insert(Period.__table__).values(
                    month=str(month).strip(), year=int(year), period_key=key
                ).on_conflict_do_nothing(index_elements=['period_key'])
            )
            row = conn.execute(
                select(Period.__table__).where(Period.period_key == key)
            ).mappings().first()

        logger.info(f"Created period {key} (id={row['id']})")
        return dict(row)

    def list_periods(self) -> List[Dict[str, Any]]:
        """Periods newest first (year, then calendar month)."""
        with self.transaction() as conn:
            rows = [dict(r) for r in conn.execute(select(Period.__table__)).mappings()]
        rows.sort(key=lambda r: (r['year'], _month_index(r['month'])), reverse=True)
        return rows

    # ------------------------------------------------------------------
    # KPIs
    # ------------------------------------------------------------------

    def upsert_kpi(self, entity_id, period_id: int, name: str,
                   actual: Optional[float], budget: Optional[float], unit: str = '') -> MutationResult:
        """
        Insert or update a KPI keyed by (entity, period, name).

        The update path refreshes actual, budget, unit and updated_at only.
        """
        entity_id = EntityId(entity_id).value
        if not name or not str(name).strip():
            raise ValueError("KPI name is required")

        table = KPIRecord.__table__
        stmt = self._insert(table).values(
            entity_id=entity_id,
            period_id=period_id,
            name=name,
            actual_value=actual,
            budget_value=budget,
            unit=unit or ''
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=['entity_id', 'period_id', 'name'],
            set_={
                'actual_value': stmt.excluded.actual_value,
                'budget_value': stmt.excluded.budget_value,
                'unit': stmt.excluded.unit,
                'updated_at': func.current_timestamp(),
            }
        )
        if self.engine.dialect.insert_returning:
            stmt = stmt.returning(table.c.id)

        with self.transaction() as conn:
            return self._mutation(conn.execute(stmt), is_insert=True)

    def get_kpis(self, entity_id, period_id: int) -> List[Dict[str, Any]]:
        stmt = select(
            KPIRecord.name,
            KPIRecord.actual_value.label('actual'),
            KPIRecord.budget_value.label('budget'),
            KPIRecord.unit
        ).where(
            KPIRecord.entity_id == EntityId(entity_id).value,
            KPIRecord.period_id == period_id
        ).order_by(KPIRecord.name)

        with self.transaction() as conn:
            return [dict(r) for r in conn.execute(stmt).mappings()]

    # ------------------------------------------------------------------
    # Chart datasets
    # ------------------------------------------------------------------

    def save_chart_dataset(self, entity_id, period_id: int, chart_type: str,
                           data_key: str, value: Union[ChartPayload, List[Any], Dict[str, Any]]
                           ) -> Optional[MutationResult]:
        """
        Replace the dataset stored under (entity, period, data_key).

        Deletes any existing row and inserts the new one in a single
        transaction. Empty values are not stored. Chart payload models are
        stored as their ``to_value()`` shape.

        Returns:
            MutationResult of the insert, or None when the value was skipped
        """
        entity_id = EntityId(entity_id).value
        if isinstance(value, CHART_PAYLOAD_TYPES):
            value = value.to_value()

        reason = empty_reason(value)
        if reason is not None:
            if reason.startswith('not serializable'):
                raise InvalidChartValue(data_key, reason)
            logger.warning(f"Skipping chart data {data_key} for {entity_id}: {reason}")
            return None

        serialized = json.dumps(value)
        logger.info(f"Saving chart data: {entity_id} - {data_key} - {len(serialized)} chars")

        table = ChartDataset.__table__
        with self.transaction() as conn:
            conn.execute(
                delete(table).where(
                    table.c.entity_id == entity_id,
                    table.c.period_id == period_id,
                    table.c.data_key == data_key
                )
            )
            stmt = table.insert().values(
                entity_id=entity_id,
                period_id=period_id,
                chart_type=chart_type,
                data_key=data_key,
                data_value=serialized
            )
            if self.engine.dialect.insert_returning:
                stmt = stmt.returning(table.c.id)
            return self._mutation(conn.execute(stmt), is_insert=True)

    def get_chart_datasets(self, entity_id, period_id: int) -> Dict[str, Any]:
        """
        Load every stored dataset for an entity and period as key -> value.

        Rows that are empty or fail to decode are logged and left out.
        """
        table = ChartDataset.__table__
        stmt = select(table.c.id, table.c.data_key, table.c.data_value).where(
            table.c.entity_id == EntityId(entity_id).value,
            table.c.period_id == period_id,
            table.c.data_key.isnot(None),
            table.c.data_value.isnot(None),
            table.c.data_value.notin_(EMPTY_SENTINELS)
        ).order_by(table.c.id)

        with self.transaction() as conn:
            rows = conn.execute(stmt).mappings().all()

        data = {}
        for row in rows:
            try:
                parsed = json.loads(row['data_value'])
            except (TypeError, ValueError) as e:
                logger.error(f"Parse error for {row['data_key']} (row {row['id']}): {e}")
                continue

            reason = empty_reason(parsed)
            if reason is not None:
                logger.warning(f"Stored chart data {row['data_key']} is unusable: {reason}")
                continue
            data[row['data_key']] = parsed

        logger.debug(f"Loaded {len(data)} chart datasets for {entity_id}, period {period_id}")
        return data

    # ------------------------------------------------------------------
    # Read models and maintenance
    # ------------------------------------------------------------------

    def get_entity_data(self, entity_id, period_id: int) -> Dict[str, Any]:
        """KPIs plus chart datasets for one entity and period."""
        data = {'kpis': self.get_kpis(entity_id, period_id)}
        data.update(self.get_chart_datasets(entity_id, period_id))
        return data

    def get_dashboard_data(self) -> Dict[str, Dict[str, Any]]:
        """
        Everything stored, as period_key -> entity_id -> data.

        Entities without KPIs or charts and periods without entities are
        omitted.
        """
        dashboard = {}
        for period in self.list_periods():
            entities = {}
            for entity_id in EntityId:
                data = self.get_entity_data(entity_id, period['id'])
                if data['kpis'] or len(data) > 1:
                    entities[entity_id.value] = data
            if entities:
                dashboard[period['period_key']] = entities
        return dashboard

    def delete_entity_period(self, entity_id, month: str, year: Union[int, str]) -> Dict[str, int]:
        """Remove one entity's KPIs and charts for a period. The period row stays."""
        period = self.get_period(month, year)
        if period is None:
            return {'kpis': 0, 'chart_data': 0}

        entity_id = EntityId(entity_id).value
        with self.transaction() as conn:
            kpis = conn.execute(delete(KPIRecord.__table__).where(
                KPIRecord.__table__.c.entity_id == entity_id,
                KPIRecord.__table__.c.period_id == period['id']
            ))
            charts = conn.execute(delete(ChartDataset.__table__).where(
                ChartDataset.__table__.c.entity_id == entity_id,
                ChartDataset.__table__.c.period_id == period['id']
            ))
        counts = {'kpis': kpis.rowcount, 'chart_data': charts.rowcount}
        logger.info(f"Deleted {entity_id} data for {period['period_key']}: {counts}")
        return counts

    def log_upload(self, filename: str, status: str, entity_id=None, period_id: Optional[int] = None,
                   kpi_count: int = 0, chart_count: int = 0, error_message: Optional[str] = None,
                   uploaded_by: Optional[str] = None) -> MutationResult:
        """Write an upload audit row."""
        entity = EntityId(entity_id).value if entity_id is not None else None
        with self.transaction() as conn:
            result = conn.execute(UploadLog.__table__.insert().values(
                uploaded_by=uploaded_by,
                entity_id=entity,
                period_id=period_id,
                filename=filename,
                status=status,
                error_message=error_message,
                kpi_count=kpi_count,
                chart_count=chart_count
            ))
            return self._mutation(result, is_insert=True)

    def table_counts(self) -> Dict[str, int]:
        counts = {}
        for table in TABLES:
            rows = self.query(f"SELECT COUNT(*) AS count FROM {table}")
            counts[table] = int(rows[0]['count'])
        return counts

    def summary(self) -> Dict[str, List[Dict[str, Any]]]:
        """Per entity/period KPI and chart dataset counts."""
        kpis = self.query("""
            SELECT e.name AS entity_name, p.period_key AS period_key, COUNT(k.id) AS count
            FROM kpis k
            JOIN entities e ON e.id = k.entity_id
            JOIN periods p ON p.id = k.period_id
            GROUP BY e.name, p.period_key
            ORDER BY p.period_key DESC, e.name
        """)
        charts = self.query("""
            SELECT e.name AS entity_name, p.period_key AS period_key, COUNT(c.id) AS count
            FROM chart_data c
            JOIN entities e ON e.id = c.entity_id
            JOIN periods p ON p.id = c.period_id
            GROUP BY e.name, p.period_key
            ORDER BY p.period_key DESC, e.name
        """)
        return {'kpis': kpis, 'chart_data': charts}
