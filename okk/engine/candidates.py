"""Candidate selection and occurrence-time resolution."""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from okk.config import settings
from okk.engine.payload import Payload
from okk.schemas.rule import EntityType, RuleDefinition, StatusChangeBlock
from okk.storage.base import AuditStore, CallRecord, EventRecord, OrderContext, OrderRecord

logger = logging.getLogger(__name__)

STATUS_FIELD = "status"


@dataclass
class Candidate:
    """One entity checked against one rule."""

    entity_type: EntityType
    entity_id: str
    order_id: int | None
    manager_id: int | None
    occurred_at: datetime | None
    payload: Payload
    context: Payload = field(default_factory=Payload)
    current_status: str | None = None
    transcript: str | None = None
    call_id: str | None = None
    # Storage-level timestamps, used only when no transition is found
    updated_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_state_based(self) -> bool:
        return self.entity_type in ("order", "stage")


def _status_trigger(rule: RuleDefinition) -> StatusChangeBlock | None:
    trigger = rule.logic.trigger
    return trigger if isinstance(trigger, StatusChangeBlock) else None


class CandidateFetcher:
    """Loads candidate rows for a rule plus the order context they need."""

    def __init__(self, store: AuditStore):
        self._store = store

    async def fetch(self, rule: RuleDefinition, start: datetime, end: datetime) -> list[Candidate]:
        """Candidates for ``rule`` in ``[start, end]``; fetch errors yield no candidates."""
        try:
            candidates = await self._fetch_rows(rule, start, end)
            order_ids = {c.order_id for c in candidates if c.order_id is not None}
            contexts = await self._store.fetch_order_contexts(order_ids) if order_ids else {}
        except Exception:
            logger.exception("Candidate fetch failed for rule %s (%s)", rule.code, rule.entity_type)
            await self._store.reset()
            return []

        for candidate in candidates:
            _attach_context(candidate, contexts.get(candidate.order_id))
        logger.info("Rule %s: %d %s candidates", rule.code, len(candidates), rule.entity_type)
        return candidates

    async def _fetch_rows(self, rule: RuleDefinition, start: datetime, end: datetime) -> list[Candidate]:
        trigger = _status_trigger(rule)
        if rule.entity_type == "call":
            calls = await self._store.fetch_calls(start, end)
            linked = [c for c in calls if c.order_id is not None]
            if len(linked) < len(calls):
                logger.debug("Rule %s: skipped %d calls without order link", rule.code, len(calls) - len(linked))
            return [_from_call(c) for c in linked]
        if rule.entity_type in ("order", "stage"):
            # Window is ignored for snapshots; the target status narrows the query instead
            statuses = None
            if trigger is not None and trigger.params.direction == "to":
                statuses = [trigger.params.target_status]
            orders = await self._store.fetch_orders(statuses)
            return [_from_order(o, rule.entity_type) for o in orders]
        if rule.entity_type == "event":
            event_type = settings.status_event_type if trigger is not None else None
            events = await self._store.fetch_events(start, end, event_type)
            return [_from_event(e) for e in events]
        raise ValueError(f"Unsupported entity type: {rule.entity_type}")


def _from_call(call: CallRecord) -> Candidate:
    payload = dict(call.raw_payload)
    payload.update(
        {
            "direction": call.direction,
            "duration_sec": call.duration_sec,
            "started_at": call.started_at,
        }
    )
    return Candidate(
        entity_type="call",
        entity_id=call.call_id,
        order_id=call.order_id,
        manager_id=None,
        occurred_at=call.started_at,
        payload=Payload(payload),
        transcript=call.transcript,
        call_id=call.call_id,
    )


def _from_order(order: OrderRecord, entity_type: EntityType) -> Candidate:
    payload = dict(order.raw_payload)
    payload["status"] = order.status
    return Candidate(
        entity_type=entity_type,
        entity_id=str(order.order_id),
        order_id=order.order_id,
        manager_id=order.manager_id,
        occurred_at=None,
        payload=Payload(payload),
        current_status=order.status,
        updated_at=order.updated_at,
        created_at=order.created_at,
    )


def _from_event(event: EventRecord) -> Candidate:
    payload = Payload(event.raw_payload)
    status = payload.code("status")
    # newValue is a status only when the event changed the status field
    if payload.text("field") in (None, STATUS_FIELD):
        status = payload.code("newValue") or status
    return Candidate(
        entity_type="event",
        entity_id=str(event.event_id),
        order_id=event.order_id,
        manager_id=event.manager_id,
        occurred_at=event.occurred_at,
        payload=payload,
        current_status=status,
    )


def _attach_context(candidate: Candidate, context: OrderContext | None) -> None:
    if context is None:
        return
    fields = dict(context.fields)
    fields.setdefault("status", context.status)
    fields.setdefault("manager_id", context.manager_id)
    candidate.context = Payload(fields)
    if candidate.manager_id is None:
        candidate.manager_id = context.manager_id
    if candidate.current_status is None and candidate.is_state_based:
        candidate.current_status = context.status


class OccurrenceResolver:
    """Finds when a state-based candidate entered its current status."""

    def __init__(self, store: AuditStore):
        self._store = store

    async def resolve(self, candidate: Candidate, now: datetime) -> datetime:
        """Authoritative ``occurred_at`` for the candidate.

        Snapshot rows use the latest transition into their current status, since
        ``updated_at`` also moves on unrelated writes. Events and calls keep their
        own timestamp.
        """
        if candidate.is_state_based:
            if candidate.order_id is not None and candidate.current_status:
                entered = await self._store.latest_transition(
                    candidate.order_id, STATUS_FIELD, candidate.current_status
                )
                if entered is not None:
                    return entered
            return candidate.updated_at or candidate.created_at or now
        return candidate.occurred_at or now
