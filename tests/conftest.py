"""Shared fixtures: in-memory store and scripted judge."""

from datetime import datetime, timezone

import pytest

from okk.engine.judge import JudgmentError
from okk.storage.base import CallRecord, EventRecord, HistoryRecord, OrderContext, OrderRecord

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def at(day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc)


class FakeStore:
    """AuditStore over plain lists; records every call for assertions."""

    def __init__(self):
        self.rules = []
        self.calls: list[CallRecord] = []
        self.call_links: dict[str, list[int]] = {}
        self.orders: list[OrderRecord] = []
        self.events: list[EventRecord] = []
        self.history: list[HistoryRecord] = []
        self.contexts: dict[int, OrderContext] = {}
        self.prompts: dict[str, str] = {}
        self.violations: dict[str, object] = {}
        self.calls_made: list[tuple] = []
        self.fail_on: set[str] = set()
        # Like a PostgreSQL transaction: after one failure every call fails until reset
        self.aborted = False

    def _record(self, name, *args):
        self.calls_made.append((name, *args))
        if self.aborted:
            raise RuntimeError("current transaction is aborted")
        if name in self.fail_on:
            self.aborted = True
            raise RuntimeError(f"{name} unavailable")

    async def reset(self):
        self.calls_made.append(("reset",))
        self.aborted = False

    def count(self, name: str) -> int:
        return sum(1 for c in self.calls_made if c[0] == name)

    def link(self, call: CallRecord, *order_ids: int) -> None:
        self.calls.append(call)
        self.call_links[call.call_id] = list(order_ids)

    async def list_rules(self, active_only=True, code=None):
        self._record("list_rules", active_only, code)
        rules = [r for r in self.rules if r.is_active or not active_only]
        return [r for r in rules if code is None or r.code == code]

    async def fetch_calls(self, start, end):
        self._record("fetch_calls", start, end)
        # Links are registered best-confidence first
        return [
            CallRecord(**{**c.__dict__, "order_id": (self.call_links.get(c.call_id) or [None])[0]})
            for c in self.calls
            if start <= c.started_at <= end
        ]

    async def fetch_orders(self, statuses=None):
        self._record("fetch_orders", statuses)
        return [o for o in self.orders if statuses is None or o.status in statuses]

    async def fetch_events(self, start, end, event_type=None):
        self._record("fetch_events", start, end, event_type)
        return [
            e for e in self.events
            if start <= e.occurred_at <= end and (event_type is None or e.event_type == event_type)
        ]

    async def fetch_order_contexts(self, order_ids):
        ids = set(order_ids)
        self._record("fetch_order_contexts", ids)
        return {i: c for i, c in self.contexts.items() if i in ids}

    async def latest_transition(self, order_id, field, value):
        self._record("latest_transition", order_id, field, value)
        times = [
            h.occurred_at for h in self.history
            if h.order_id == order_id and h.field == field and h.new_value == value
        ]
        return max(times) if times else None

    async def calls_for_order(self, order_id, start=None, end=None):
        self._record("calls_for_order", order_id, start, end)
        return [
            CallRecord(**{**c.__dict__, "order_id": order_id})
            for c in self.calls
            if order_id in self.call_links.get(c.call_id, [])
            and (start is None or c.started_at >= start)
            and (end is None or c.started_at <= end)
        ]

    async def history_for_order(self, order_id):
        self._record("history_for_order", order_id)
        return sorted((h for h in self.history if h.order_id == order_id), key=lambda h: h.occurred_at)

    async def has_field_change(self, order_id, field, after, until=None):
        self._record("has_field_change", order_id, field, after, until)
        return any(
            h.order_id == order_id and h.field == field and h.occurred_at > after
            and (until is None or h.occurred_at <= until)
            for h in self.history
        )

    async def get_system_prompt(self, key):
        self._record("get_system_prompt", key)
        return self.prompts.get(key)

    async def upsert_violations(self, violations):
        self._record("upsert_violations", len(violations))
        for v in violations:
            self.violations[v.key] = v
        return len(violations)


class FakeJudge:
    """Returns queued verdicts in order; raises queued exceptions."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[tuple[str, str]] = []

    async def judge(self, system_prompt, user_payload):
        self.requests.append((system_prompt, user_payload))
        if not self.responses:
            raise JudgmentError("no scripted response")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def judge():
    return FakeJudge()
