"""Rule, prompt and sync-state models."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from okk.database import Base


class OkkRule(Base):
    """Audit rule definitions - logic and checklist kept as JSON."""

    __tablename__ = "okk_rules"

    code: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)  # call|order|event|stage
    logic: Mapped[dict] = mapped_column(JSONB, nullable=False)
    checklist: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notify_telegram: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class AiPrompt(Base):
    """Editable system prompts for the judgment calls."""

    __tablename__ = "ai_prompts"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    system_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SyncState(Base):
    """Key/value bookkeeping (last engine run etc.)."""

    __tablename__ = "sync_state"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
