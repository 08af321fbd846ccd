"""Store interface the audit engine reads from and writes to.

:class:`okk.storage.repositories.AuditRepository` implements it on PostgreSQL;
the records below decouple the engine from ORM rows.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from okk.schemas.audit import Violation
from okk.schemas.rule import RuleDefinition


@dataclass
class CallRecord:
    call_id: str
    started_at: datetime
    direction: str | None = None
    duration_sec: int = 0
    transcript: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)
    # Highest-confidence linked order
    order_id: int | None = None


@dataclass
class OrderRecord:
    order_id: int
    status: str | None
    manager_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class EventRecord:
    event_id: int
    order_id: int
    event_type: str
    occurred_at: datetime
    manager_id: int | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class HistoryRecord:
    order_id: int
    occurred_at: datetime
    field: str
    old_value: str | None = None
    new_value: str | None = None


@dataclass
class OrderContext:
    """Denormalized order state: status, manager and flattened fields."""

    order_id: int
    status: str | None = None
    manager_id: int | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    raw_payload: dict[str, Any] = field(default_factory=dict)


class AuditStore(Protocol):
    async def list_rules(
        self, active_only: bool = True, code: str | None = None
    ) -> list[RuleDefinition]: ...

    async def fetch_calls(self, start: datetime, end: datetime) -> list[CallRecord]: ...

    async def fetch_orders(self, statuses: Sequence[str] | None = None) -> list[OrderRecord]: ...

    async def fetch_events(
        self, start: datetime, end: datetime, event_type: str | None = None
    ) -> list[EventRecord]: ...

    async def fetch_order_contexts(self, order_ids: Iterable[int]) -> dict[int, OrderContext]: ...

    async def latest_transition(self, order_id: int, field: str, value: str) -> datetime | None: ...

    async def calls_for_order(
        self, order_id: int, start: datetime | None = None, end: datetime | None = None
    ) -> list[CallRecord]: ...

    async def history_for_order(self, order_id: int) -> list[HistoryRecord]: ...

    async def has_field_change(
        self, order_id: int, field: str, after: datetime, until: datetime | None = None
    ) -> bool: ...

    async def get_system_prompt(self, key: str) -> str | None: ...

    async def upsert_violations(self, violations: Sequence[Violation]) -> int: ...

    async def reset(self) -> None:
        """Make the store usable again after a failed call."""
        ...
