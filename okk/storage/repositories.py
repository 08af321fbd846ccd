"""Repository over the audit and CRM mirror tables.

Statements are built by module-level functions so their SQL can be checked
without a database; :class:`AuditRepository` only executes them.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.dialects.postgresql import Insert, insert
from sqlalchemy.ext.asyncio import AsyncSession

from okk.config import settings
from okk.database import recover_session
from okk.engine.payload import flatten_custom_fields
from okk.models import (
    AiPrompt,
    CallOrderMatch,
    OkkRule,
    OkkViolation,
    Order,
    OrderEvent,
    OrderHistoryLog,
    OrderMetrics,
    RawCall,
    SyncState,
)
from okk.schemas.audit import Violation
from okk.schemas.rule import RuleDefinition
from okk.storage.base import CallRecord, EventRecord, HistoryRecord, OrderContext, OrderRecord

logger = logging.getLogger(__name__)

LAST_RUN_KEY = "rule_engine_last_run"

# Columns a re-run may refresh; the identity columns behind violation_key never change
VIOLATION_UPDATE_COLUMNS = (
    "manager_id",
    "severity",
    "points",
    "details",
    "evidence_text",
    "checklist_result",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def rule_from_row(row: OkkRule) -> RuleDefinition:
    return RuleDefinition.model_validate(
        {
            "code": row.code,
            "name": row.name,
            "description": row.description,
            "entity_type": row.entity_type,
            "logic": row.logic or {},
            "checklist": row.checklist or None,
            "severity": row.severity,
            "points": row.points,
            "notify": row.notify_telegram,
            "is_active": row.is_active,
        }
    )


def _call_record(call: RawCall, order_id: int | None = None) -> CallRecord:
    return CallRecord(
        call_id=call.telphin_call_id,
        started_at=call.started_at,
        direction=call.direction,
        duration_sec=call.duration_sec or 0,
        transcript=call.transcript,
        raw_payload=call.raw_payload or {},
        order_id=order_id,
    )


def calls_with_best_link(start: datetime, end: datetime) -> Select:
    """Calls started in ``[start, end]`` with their highest-confidence order (or NULL)."""
    ranked = select(
        CallOrderMatch.telphin_call_id,
        CallOrderMatch.retailcrm_order_id,
        func.row_number()
        .over(
            partition_by=CallOrderMatch.telphin_call_id,
            order_by=CallOrderMatch.confidence_score.desc(),
        )
        .label("rank"),
    ).subquery("best_link")
    return (
        select(RawCall, ranked.c.retailcrm_order_id)
        .outerjoin(
            ranked,
            (ranked.c.telphin_call_id == RawCall.telphin_call_id) & (ranked.c.rank == 1),
        )
        .where(RawCall.started_at >= start, RawCall.started_at <= end)
        .order_by(RawCall.started_at)
    )


def field_change_query(order_id: int, field: str, after: datetime, until: datetime | None = None) -> Select:
    """Any transition of ``field`` strictly after ``after`` and at or before ``until``."""
    query = select(OrderHistoryLog.id).where(
        OrderHistoryLog.retailcrm_order_id == order_id,
        OrderHistoryLog.field == field,
        OrderHistoryLog.occurred_at > after,
    )
    if until is not None:
        query = query.where(OrderHistoryLog.occurred_at <= until)
    return query.limit(1)


def latest_transition_query(order_id: int, field: str, value: str) -> Select:
    return (
        select(OrderHistoryLog.occurred_at)
        .where(
            OrderHistoryLog.retailcrm_order_id == order_id,
            OrderHistoryLog.field == field,
            OrderHistoryLog.new_value == value,
        )
        .order_by(OrderHistoryLog.occurred_at.desc())
        .limit(1)
    )


def violation_row(violation: Violation, created_at: datetime) -> dict[str, Any]:
    return {
        "violation_key": violation.key,
        "rule_code": violation.rule_code,
        "order_id": violation.order_id,
        "manager_id": violation.manager_id,
        "violation_time": violation.violation_time,
        "severity": violation.severity,
        "points": violation.points,
        "call_id": violation.call_id,
        "details": violation.details,
        "evidence_text": violation.evidence_text,
        "checklist_result": violation.checklist_result,
        "created_at": created_at,
    }


def violation_upsert(rows: Sequence[Mapping[str, Any]]) -> Insert:
    stmt = insert(OkkViolation).values(list(rows))
    return stmt.on_conflict_do_update(
        index_elements=[OkkViolation.violation_key],
        set_={column: stmt.excluded[column] for column in VIOLATION_UPDATE_COLUMNS},
    )


def merge_context_fields(
    raw_payload: Mapping[str, Any] | None,
    metrics_context: Mapping[str, Any] | None,
    total_sum: Any = None,
) -> dict[str, Any]:
    """Denormalized order fields.

    ``order_metrics.full_order_context`` is the base; values read from the
    order row itself (custom fields, manager comment, total) are newer and win.
    """
    raw = raw_payload or {}
    fields: dict[str, Any] = dict(metrics_context or {})
    fields.update(flatten_custom_fields(raw, settings.custom_field_prefix))
    if raw.get("managerComment") is not None:
        fields[settings.comment_field] = raw["managerComment"]
    fields["total_sum"] = float(total_sum) if total_sum is not None else None
    return fields


class AuditRepository:
    """PostgreSQL implementation of :class:`okk.storage.base.AuditStore`."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def reset(self) -> None:
        await recover_session(self.db)

    async def list_rules(self, active_only: bool = True, code: str | None = None) -> list[RuleDefinition]:
        query = select(OkkRule).order_by(OkkRule.code)
        if active_only:
            query = query.where(OkkRule.is_active.is_(True))
        if code:
            query = query.where(OkkRule.code == code)
        result = await self.db.execute(query)
        rules = []
        for row in result.scalars().all():
            try:
                rules.append(rule_from_row(row))
            except ValueError:
                logger.exception("Rule %s has an invalid definition, skipping", row.code)
        return rules

    async def get_rule(self, code: str) -> RuleDefinition | None:
        row = await self.db.get(OkkRule, code)
        return rule_from_row(row) if row else None

    async def fetch_calls(self, start: datetime, end: datetime) -> list[CallRecord]:
        result = await self.db.execute(calls_with_best_link(start, end))
        return [_call_record(call, order_id) for call, order_id in result.all()]

    async def fetch_orders(self, statuses: Sequence[str] | None = None) -> list[OrderRecord]:
        query = select(Order)
        if statuses:
            query = query.where(Order.status.in_(list(statuses)))
        result = await self.db.execute(query.order_by(Order.order_id))
        return [
            OrderRecord(
                order_id=o.order_id,
                status=o.status,
                manager_id=o.manager_id,
                created_at=o.created_at,
                updated_at=o.updated_at,
                raw_payload=o.raw_payload or {},
            )
            for o in result.scalars().all()
        ]

    async def fetch_events(
        self, start: datetime, end: datetime, event_type: str | None = None
    ) -> list[EventRecord]:
        query = select(OrderEvent).where(OrderEvent.occurred_at >= start, OrderEvent.occurred_at <= end)
        if event_type:
            query = query.where(OrderEvent.event_type == event_type)
        result = await self.db.execute(query.order_by(OrderEvent.occurred_at))
        return [
            EventRecord(
                event_id=e.event_id,
                order_id=e.retailcrm_order_id,
                event_type=e.event_type,
                occurred_at=e.occurred_at,
                manager_id=e.manager_id,
                raw_payload=e.raw_payload or {},
            )
            for e in result.scalars().all()
        ]

    async def fetch_order_contexts(self, order_ids: Iterable[int]) -> dict[int, OrderContext]:
        ids = list(set(order_ids))
        if not ids:
            return {}
        result = await self.db.execute(
            select(Order, OrderMetrics)
            .outerjoin(OrderMetrics, OrderMetrics.retailcrm_order_id == Order.order_id)
            .where(Order.order_id.in_(ids))
        )
        contexts: dict[int, OrderContext] = {}
        for order, metrics in result.all():
            raw = order.raw_payload or {}
            contexts[order.order_id] = OrderContext(
                order_id=order.order_id,
                status=(metrics.current_status if metrics and metrics.current_status else order.status),
                manager_id=(metrics.manager_id if metrics and metrics.manager_id else order.manager_id),
                fields=merge_context_fields(
                    raw, metrics.full_order_context if metrics else None, order.totalsumm
                ),
                raw_payload=raw,
            )
        return contexts

    async def latest_transition(self, order_id: int, field: str, value: str) -> datetime | None:
        result = await self.db.execute(latest_transition_query(order_id, field, value))
        return result.scalar_one_or_none()

    async def calls_for_order(
        self, order_id: int, start: datetime | None = None, end: datetime | None = None
    ) -> list[CallRecord]:
        query = (
            select(RawCall)
            .join(CallOrderMatch, CallOrderMatch.telphin_call_id == RawCall.telphin_call_id)
            .where(CallOrderMatch.retailcrm_order_id == order_id)
        )
        if start is not None:
            query = query.where(RawCall.started_at >= start)
        if end is not None:
            query = query.where(RawCall.started_at <= end)
        result = await self.db.execute(query.order_by(RawCall.started_at))
        return [_call_record(c, order_id) for c in result.scalars().unique().all()]

    async def history_for_order(self, order_id: int) -> list[HistoryRecord]:
        result = await self.db.execute(
            select(OrderHistoryLog)
            .where(OrderHistoryLog.retailcrm_order_id == order_id)
            .order_by(OrderHistoryLog.occurred_at)
        )
        return [
            HistoryRecord(
                order_id=h.retailcrm_order_id,
                occurred_at=h.occurred_at,
                field=h.field,
                old_value=h.old_value,
                new_value=h.new_value,
            )
            for h in result.scalars().all()
        ]

    async def has_field_change(
        self, order_id: int, field: str, after: datetime, until: datetime | None = None
    ) -> bool:
        result = await self.db.execute(field_change_query(order_id, field, after, until))
        return result.scalar_one_or_none() is not None

    async def get_system_prompt(self, key: str) -> str | None:
        result = await self.db.execute(
            select(AiPrompt.system_prompt).where(AiPrompt.key == key, AiPrompt.is_active.is_(True))
        )
        return result.scalar_one_or_none()

    async def upsert_violations(self, violations: Sequence[Violation]) -> int:
        """Insert or overwrite violations by key in one statement and commit."""
        if not violations:
            return 0
        now = _now()
        rows = [violation_row(v, now) for v in violations]
        try:
            await self.db.execute(violation_upsert(rows))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return len(rows)

    async def list_violations(
        self,
        rule_code: str | None = None,
        order_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
    ) -> list[OkkViolation]:
        query = select(OkkViolation)
        if rule_code:
            query = query.where(OkkViolation.rule_code == rule_code)
        if order_id is not None:
            query = query.where(OkkViolation.order_id == order_id)
        if start is not None:
            query = query.where(OkkViolation.violation_time >= start)
        if end is not None:
            query = query.where(OkkViolation.violation_time <= end)
        result = await self.db.execute(query.order_by(OkkViolation.violation_time.desc()).limit(limit))
        return list(result.scalars().all())

    async def count_violations(self) -> int:
        result = await self.db.execute(select(func.count()).select_from(OkkViolation))
        return result.scalar_one()

    async def get_sync_state(self, key: str) -> str | None:
        result = await self.db.execute(select(SyncState.value).where(SyncState.key == key))
        return result.scalar_one_or_none()

    async def set_sync_state(self, key: str, value: str) -> None:
        stmt = insert(SyncState).values(key=key, value=value, updated_at=_now())
        stmt = stmt.on_conflict_do_update(
            index_elements=[SyncState.key],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )
        await self.db.execute(stmt)
        await self.db.commit()
