"""Violation model."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from okk.database import Base


class OkkViolation(Base):
    """Detected violations - upserted by violation_key, never deleted by the engine."""

    __tablename__ = "okk_violations"

    # sha256 over (rule_code, order_id, violation_time, call_id)
    violation_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    rule_code: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    order_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    manager_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    violation_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    call_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[str] = mapped_column(Text, nullable=False, default="")
    evidence_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    checklist_result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
