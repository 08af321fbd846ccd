"""Unit tests for the PostgreSQL repository statements."""

from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy.dialects import postgresql

from okk.schemas.audit import Violation
from okk.storage.repositories import (
    AuditRepository,
    calls_with_best_link,
    field_change_query,
    latest_transition_query,
    merge_context_fields,
    violation_row,
    violation_upsert,
)

from tests.conftest import NOW, at


def compiled(stmt):
    c = stmt.compile(dialect=postgresql.dialect())
    return " ".join(str(c).split()), c.params


def violation(**kw):
    kw.setdefault("rule_code", "cancel_without_comment")
    kw.setdefault("order_id", 100)
    kw.setdefault("violation_time", at(10, 9))
    kw.setdefault("severity", "medium")
    return Violation(**kw)


def test_upsert_conflicts_on_violation_key():
    """Re-running a window updates rows keyed by violation_key."""
    sql, _ = compiled(violation_upsert([violation_row(violation(), NOW)]))
    assert "ON CONFLICT (violation_key) DO UPDATE SET" in sql
    assert "details = excluded.details" in sql
    assert "checklist_result = excluded.checklist_result" in sql


def test_upsert_never_rewrites_identity():
    """Columns behind the key and created_at stay as first written."""
    sql, _ = compiled(violation_upsert([violation_row(violation(), NOW)]))
    update = sql.split("DO UPDATE SET", 1)[1]
    for column in ("violation_key", "rule_code", "order_id", "violation_time", "call_id", "created_at"):
        assert f"{column} = excluded.{column}" not in update


def test_upsert_batches_rows():
    rows = [violation_row(violation(order_id=i), NOW) for i in (1, 2, 3)]
    _, params = compiled(violation_upsert(rows))
    assert sorted(v for k, v in params.items() if k.startswith("order_id")) == [1, 2, 3]


def test_violation_row_uses_null_safe_key():
    """A missing call id still yields a stable key."""
    row = violation_row(violation(call_id=None), NOW)
    assert row["violation_key"] == violation(call_id=None).key
    assert row["violation_key"] != violation(call_id="c1").key


def test_best_link_ranks_by_confidence():
    """Each call joins only its highest-confidence order link."""
    sql, params = compiled(calls_with_best_link(at(9), at(10)))
    assert (
        "row_number() OVER (PARTITION BY call_order_matches.telphin_call_id "
        "ORDER BY call_order_matches.confidence_score DESC)"
    ) in sql
    assert "LEFT OUTER JOIN" in sql
    assert "best_link.rank =" in sql
    assert 1 in [v for k, v in params.items() if k.startswith("rank")]


def test_best_link_window_inclusive():
    sql, params = compiled(calls_with_best_link(at(9), at(10)))
    assert "raw_telphin_calls.started_at >=" in sql
    assert "raw_telphin_calls.started_at <=" in sql
    assert at(9) in params.values()
    assert at(10) in params.values()


def test_field_change_bounds():
    """Strictly after the occurrence, up to and including the window end."""
    sql, params = compiled(field_change_query(100, "manager_comment", at(9), at(10)))
    assert "order_history_log.occurred_at >" in sql
    assert "order_history_log.occurred_at <=" in sql
    assert "order_history_log.occurred_at >=" not in sql
    assert at(9) in params.values()
    assert at(10) in params.values()
    assert "manager_comment" in params.values()


def test_field_change_unbounded():
    sql, params = compiled(field_change_query(100, "manager_comment", at(9)))
    assert "order_history_log.occurred_at <=" not in sql
    assert list(params.values()).count(at(9)) == 1


def test_latest_transition_takes_newest():
    sql, params = compiled(latest_transition_query(100, "status", "cancelled"))
    assert "ORDER BY order_history_log.occurred_at DESC" in sql
    assert "LIMIT" in sql
    assert "cancelled" in params.values()


def test_order_row_wins_over_metrics_context():
    """Comment and custom fields from the order row override the denormalized copy."""
    fields = merge_context_fields(
        {"managerComment": "свежий", "customFields": {"reason": "дорого"}},
        {"manager_comment": "старый", "custom_reason": "нет", "city": "Москва"},
        total_sum="1500.50",
    )
    assert fields["manager_comment"] == "свежий"
    assert fields["custom_reason"] == "дорого"
    assert fields["city"] == "Москва"
    assert fields["total_sum"] == 1500.5


def test_metrics_comment_kept_without_order_comment():
    fields = merge_context_fields({}, {"manager_comment": "из метрик"})
    assert fields["manager_comment"] == "из метрик"
    assert fields["total_sum"] is None


@pytest.mark.asyncio
async def test_failed_upsert_rolls_back():
    db = AsyncMock()
    db.execute.side_effect = RuntimeError("deadlock detected")
    with pytest.raises(RuntimeError):
        await AuditRepository(db).upsert_violations([violation()])
    db.rollback.assert_awaited_once()
    db.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_upsert_executes_and_commits():
    db = AsyncMock()
    assert await AuditRepository(db).upsert_violations([violation(), violation(order_id=101)]) == 2
    sql, _ = compiled(db.execute.await_args.args[0])
    assert "ON CONFLICT (violation_key)" in sql
    db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_empty_upsert_skips_database():
    db = AsyncMock()
    assert await AuditRepository(db).upsert_violations([]) == 0
    db.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_reset_rolls_back_session():
    """After a failed statement the session is rolled back before reuse."""
    db = AsyncMock()
    await AuditRepository(db).reset()
    db.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_has_field_change_reads_first_row():
    db = AsyncMock()
    db.execute.return_value = Mock(**{"scalar_one_or_none.return_value": 42})
    assert await AuditRepository(db).has_field_change(100, "manager_comment", at(9), at(10))
    db.execute.return_value = Mock(**{"scalar_one_or_none.return_value": None})
    assert not await AuditRepository(db).has_field_change(100, "manager_comment", at(9))
