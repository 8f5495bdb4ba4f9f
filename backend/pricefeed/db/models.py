# backend/pricefeed/db/models.py

import datetime
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class PriceSnapshotRecord(Base):
    __tablename__ = "price_snapshots"

    # Insert-only; rows are removed by retention cleanup alone
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    symbol = Column(String(16), nullable=False)
    price = Column(Numeric(28, 10, asdecimal=True), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    source = Column(String, nullable=False)

    __table_args__ = (
        Index("ix_price_snapshots_symbol_timestamp", "symbol", "timestamp"),
        Index("ix_price_snapshots_timestamp", "timestamp"),
    )

    def __repr__(self):
        return f"<PriceSnapshotRecord(symbol='{self.symbol}', price='{self.price}', timestamp='{self.timestamp}')>"


class PriceMarkdown(Base):
    __tablename__ = "price_markdowns"

    # Managed by the admin surface; read-only here
    id = Column(Integer, primary_key=True)
    markdown_percentage = Column(Numeric(5, 2, asdecimal=True), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    source = Column(String, nullable=False, default="manual")
    updated_by = Column(String, nullable=False, default="admin")
    description = Column(String, default="Global markdown percentage for all assets")
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<PriceMarkdown(markdown_percentage='{self.markdown_percentage}', is_active={self.is_active})>"
