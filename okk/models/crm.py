"""CRM and telephony mirror tables.

These rows are written by the RetailCRM/Telphin synchronization jobs; the audit
engine only reads them.
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Float, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from okk.database import Base


class Order(Base):
    """Order snapshot - current status and manager."""

    __tablename__ = "orders"

    order_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    number: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    manager_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    totalsumm: Mapped[float | None] = mapped_column(Numeric(14, 2), nullable=True)
    raw_payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class OrderMetrics(Base):
    """Denormalized per-order context used by field conditions."""

    __tablename__ = "order_metrics"

    retailcrm_order_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    manager_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    current_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    full_order_context: Mapped[dict | None] = mapped_column(JSONB, nullable=True)


class RawCall(Base):
    """Telephony call row, with transcript once transcription has run."""

    __tablename__ = "raw_telphin_calls"

    telphin_call_id: Mapped[str] = mapped_column(Text, primary_key=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    direction: Mapped[str | None] = mapped_column(String(20), nullable=True)
    duration_sec: Mapped[int | None] = mapped_column(Integer, nullable=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)


class CallOrderMatch(Base):
    """Call-to-order link produced by the phone matching job."""

    __tablename__ = "call_order_matches"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    telphin_call_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    retailcrm_order_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)


class OrderEvent(Base):
    """Raw lifecycle event as delivered by the CRM history API."""

    __tablename__ = "raw_order_events"

    event_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    retailcrm_order_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    manager_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    raw_payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)


class OrderHistoryLog(Base):
    """Field transition history - append-only."""

    __tablename__ = "order_history_log"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    retailcrm_order_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    field: Mapped[str] = mapped_column(Text, nullable=False)
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_order_history_log_order_field_time", "retailcrm_order_id", "field", "occurred_at"),
    )
