"""Initial schema - CRM mirror tables, okk_rules, okk_violations, ai_prompts, sync_state.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("order_id", sa.BigInteger(), primary_key=True),
        sa.Column("number", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=True),
        sa.Column("manager_id", sa.BigInteger(), nullable=True),
        sa.Column("totalsumm", sa.Numeric(14, 2), nullable=True),
        sa.Column("raw_payload", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_index("ix_orders_status", "orders", ["status"])

    op.create_table(
        "order_metrics",
        sa.Column("retailcrm_order_id", sa.BigInteger(), primary_key=True),
        sa.Column("manager_id", sa.BigInteger(), nullable=True),
        sa.Column("current_status", sa.Text(), nullable=True),
        sa.Column("full_order_context", postgresql.JSONB(), nullable=True),
    )

    op.create_table(
        "raw_telphin_calls",
        sa.Column("telphin_call_id", sa.Text(), primary_key=True),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("direction", sa.String(20), nullable=True),
        sa.Column("duration_sec", sa.Integer(), nullable=True),
        sa.Column("transcript", sa.Text(), nullable=True),
        sa.Column("raw_payload", postgresql.JSONB(), nullable=True),
    )
    op.create_index("ix_raw_telphin_calls_started_at", "raw_telphin_calls", ["started_at"])

    op.create_table(
        "call_order_matches",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("telphin_call_id", sa.Text(), nullable=False),
        sa.Column("retailcrm_order_id", sa.BigInteger(), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=False, server_default="0"),
    )
    op.create_index("ix_call_order_matches_telphin_call_id", "call_order_matches", ["telphin_call_id"])
    op.create_index("ix_call_order_matches_retailcrm_order_id", "call_order_matches", ["retailcrm_order_id"])

    op.create_table(
        "raw_order_events",
        sa.Column("event_id", sa.BigInteger(), primary_key=True),
        sa.Column("retailcrm_order_id", sa.BigInteger(), nullable=False),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("occurred_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("manager_id", sa.BigInteger(), nullable=True),
        sa.Column("raw_payload", postgresql.JSONB(), nullable=True),
    )
    op.create_index("ix_raw_order_events_retailcrm_order_id", "raw_order_events", ["retailcrm_order_id"])
    op.create_index("ix_raw_order_events_occurred_at", "raw_order_events", ["occurred_at"])

    op.create_table(
        "order_history_log",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("retailcrm_order_id", sa.BigInteger(), nullable=False),
        sa.Column("occurred_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("field", sa.Text(), nullable=False),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
    )
    # Transition lookups: order + field + value, newest first
    op.create_index(
        "ix_order_history_log_order_field_time",
        "order_history_log",
        ["retailcrm_order_id", "field", "occurred_at"],
    )

    op.create_table(
        "okk_rules",
        sa.Column("code", sa.Text(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("logic", postgresql.JSONB(), nullable=False),
        sa.Column("checklist", postgresql.JSONB(), nullable=True),
        sa.Column("severity", sa.String(20), nullable=False, server_default="medium"),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notify_telegram", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )

    op.create_table(
        "okk_violations",
        sa.Column("violation_key", sa.String(64), primary_key=True),
        sa.Column("rule_code", sa.Text(), nullable=False),
        sa.Column("order_id", sa.BigInteger(), nullable=True),
        sa.Column("manager_id", sa.BigInteger(), nullable=True),
        sa.Column("violation_time", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("call_id", sa.Text(), nullable=True),
        sa.Column("details", sa.Text(), nullable=False, server_default=""),
        sa.Column("evidence_text", sa.Text(), nullable=True),
        sa.Column("checklist_result", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_okk_violations_rule_code", "okk_violations", ["rule_code"])
    op.create_index("ix_okk_violations_order_id", "okk_violations", ["order_id"])

    op.create_table(
        "ai_prompts",
        sa.Column("key", sa.Text(), primary_key=True),
        sa.Column("system_prompt", sa.Text(), nullable=False),
        sa.Column("model", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "sync_state",
        sa.Column("key", sa.Text(), primary_key=True),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("sync_state")
    op.drop_table("ai_prompts")
    op.drop_index("ix_okk_violations_order_id", table_name="okk_violations")
    op.drop_index("ix_okk_violations_rule_code", table_name="okk_violations")
    op.drop_table("okk_violations")
    op.drop_table("okk_rules")
    op.drop_index("ix_order_history_log_order_field_time", table_name="order_history_log")
    op.drop_table("order_history_log")
    op.drop_index("ix_raw_order_events_occurred_at", table_name="raw_order_events")
    op.drop_index("ix_raw_order_events_retailcrm_order_id", table_name="raw_order_events")
    op.drop_table("raw_order_events")
    op.drop_index("ix_call_order_matches_retailcrm_order_id", table_name="call_order_matches")
    op.drop_index("ix_call_order_matches_telphin_call_id", table_name="call_order_matches")
    op.drop_table("call_order_matches")
    op.drop_index("ix_raw_telphin_calls_started_at", table_name="raw_telphin_calls")
    op.drop_table("raw_telphin_calls")
    op.drop_table("order_metrics")
    op.drop_index("ix_orders_status", table_name="orders")
    op.drop_table("orders")
