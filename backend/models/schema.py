"""
SQLAlchemy models for the dashboard store.

This module defines the persisted layout shared by the embedded (SQLite)
and networked (PostgreSQL) backends. Only portable column types are used
so that one metadata definition creates the same schema on both.
"""

from sqlalchemy import (
    Column, Integer, String, Text, Float, TIMESTAMP,
    ForeignKey, Index, UniqueConstraint, text
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Entity(Base):
    """A business unit the dashboard reports on (fixed reference set)."""

    __tablename__ = 'entities'

    id = Column(String(64), primary_key=True, nullable=False)
    name = Column(String(255), nullable=False)
    short_name = Column(String(32), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    def __repr__(self):
        return f"<Entity(id='{self.id}', short_name='{self.short_name}')>"


class Period(Base):
    """A canonical (month, year) reporting period."""

    __tablename__ = 'periods'
    __table_args__ = (
        Index('idx_periods_year_month', 'year', 'month'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    month = Column(String(32), nullable=False)
    year = Column(Integer, nullable=False)
    period_key = Column(
        String(64),
        unique=True,
        nullable=False,
        comment='Deterministic key derived from month and year'
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    def __repr__(self):
        return f"<Period(id={self.id}, period_key='{self.period_key}')>"


class KPIRecord(Base):
    """A named scalar metric with actual and budget values."""

    __tablename__ = 'kpis'
    __table_args__ = (
        UniqueConstraint('entity_id', 'period_id', 'name', name='uq_kpis_entity_period_name'),
        Index('idx_kpis_entity_period', 'entity_id', 'period_id'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    entity_id = Column(String(64), ForeignKey('entities.id'), nullable=False)
    period_id = Column(Integer, ForeignKey('periods.id'), nullable=False)
    name = Column(String(255), nullable=False)
    actual_value = Column(Float, nullable=True, comment='NULL means no data')
    budget_value = Column(Float, nullable=True, comment='NULL means no data')
    unit = Column(String(64), nullable=False, server_default='')
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )
    updated_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False,
        comment='Last modification timestamp'
    )

    entity = relationship('Entity')
    period = relationship('Period')

    def __repr__(self):
        return f"<KPIRecord(entity_id='{self.entity_id}', period_id={self.period_id}, name='{self.name}')>"


class ChartDataset(Base):
    """A serialized chart payload for one entity, period and dataset key."""

    __tablename__ = 'chart_data'
    __table_args__ = (
        UniqueConstraint('entity_id', 'period_id', 'data_key', name='uq_chart_data_entity_period_key'),
        Index('idx_chart_data_entity_period', 'entity_id', 'period_id'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    entity_id = Column(String(64), ForeignKey('entities.id'), nullable=False)
    period_id = Column(Integer, ForeignKey('periods.id'), nullable=False)
    chart_type = Column(String(64), nullable=False)
    data_key = Column(String(64), nullable=False)
    data_value = Column(Text, nullable=False, comment='JSON-encoded payload')
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    def __repr__(self):
        return f"<ChartDataset(entity_id='{self.entity_id}', period_id={self.period_id}, data_key='{self.data_key}')>"


class UploadLog(Base):
    """Audit row for one upload attempt, written by the inbound caller."""

    __tablename__ = 'upload_logs'
    __table_args__ = (
        Index('idx_upload_logs_uploaded_at', 'uploaded_at'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    uploaded_by = Column(String(255), nullable=True)
    entity_id = Column(String(64), ForeignKey('entities.id'), nullable=True)
    period_id = Column(Integer, ForeignKey('periods.id'), nullable=True)
    filename = Column(String(512), nullable=True)
    status = Column(String(20), nullable=False)
    error_message = Column(Text, nullable=True)
    kpi_count = Column(Integer, nullable=False, server_default='0')
    chart_count = Column(Integer, nullable=False, server_default='0')
    uploaded_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    def __repr__(self):
        return f"<UploadLog(id={self.id}, filename='{self.filename}', status='{self.status}')>"
