"""Stage evidence collection.

Nothing links a call or comment to a stage directly; the stage dialogue is
rebuilt from timestamps alone, so it is only as good as the entry/exit
boundaries passed in.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from okk.config import settings
from okk.engine.payload import Payload
from okk.schemas.audit import Interaction, StageEvidence, StageMetrics
from okk.storage.base import AuditStore

logger = logging.getLogger(__name__)

CONTACT_DATE_FIELD = "custom_data_kontakta"
SHIPPED_HINTS = ("отгружен", "упд", "отгруз")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StageEvidenceCollector:
    """Builds the ordered interaction timeline of one order stage."""

    def __init__(self, store: AuditStore, clock: Callable[[], datetime] = _utcnow):
        self._store = store
        self._clock = clock

    async def collect(
        self,
        order_id: int,
        status: str,
        entry_time: datetime,
        exit_time: datetime | None = None,
    ) -> StageEvidence:
        now = self._clock()
        end = exit_time or now

        interactions: list[Interaction] = []

        calls = await self._store.calls_for_order(order_id, entry_time, end)
        for call in calls:
            if not (entry_time <= call.started_at <= end):
                continue
            if not call.transcript or not call.transcript.strip():
                continue
            interactions.append(
                Interaction(
                    type="call",
                    timestamp=call.started_at,
                    content=call.transcript,
                    metadata={
                        "call_id": call.call_id,
                        "direction": call.direction,
                        "duration_sec": call.duration_sec,
                    },
                )
            )

        contact_date_shifts = 0
        was_shipped_hint = False
        for row in await self._store.history_for_order(order_id):
            # Date shifts count over the whole order life, not just this stage
            if row.field == CONTACT_DATE_FIELD:
                contact_date_shifts += 1
            if not (entry_time <= row.occurred_at <= end):
                continue
            if row.field == settings.comment_field:
                if not row.new_value:
                    continue
                lowered = row.new_value.lower()
                if any(hint in lowered for hint in SHIPPED_HINTS):
                    was_shipped_hint = True
                interactions.append(
                    Interaction(type="comment", timestamp=row.occurred_at, content=row.new_value)
                )
            elif row.field.startswith(settings.custom_field_prefix):
                interactions.append(
                    Interaction(
                        type="field_change",
                        timestamp=row.occurred_at,
                        content=f"Поле {row.field} изменено на: {row.new_value}",
                        metadata={"field": row.field, "value": row.new_value},
                    )
                )

        interactions.sort(key=lambda i: i.timestamp)

        contexts = await self._store.fetch_order_contexts([order_id])
        raw = Payload(contexts[order_id].raw_payload if order_id in contexts else None)
        orders_count = raw.number("contact.ordersCount") or raw.number("customer.ordersCount")

        last_seen = interactions[-1].timestamp if interactions else entry_time
        metrics = StageMetrics(
            contact_date_shifts=contact_date_shifts,
            days_since_last_interaction=max((now - last_seen).days, 0),
            is_corporate=raw.get("customer.type") == "customer_corporate" or not raw.is_empty("company"),
            has_email=any(
                not raw.is_empty(path) for path in ("email", "contact.email", "customer.email")
            ),
            was_shipped_hint=was_shipped_hint,
        )

        logger.debug(
            "Order %s stage %s: %d interactions between %s and %s",
            order_id, status, len(interactions), entry_time, end,
        )
        return StageEvidence(
            order_id=order_id,
            status=status,
            entry_time=entry_time,
            exit_time=end,
            interactions=interactions,
            customer_orders_count=int(orders_count) if orders_count is not None else None,
            metrics=metrics,
        )
