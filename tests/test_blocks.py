"""Unit tests for logic blocks and rule definitions."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from okk.engine.blocks import EvaluationContext, evaluate_logic, match_block, status_values
from okk.engine.candidates import Candidate
from okk.engine.judge import JudgmentError
from okk.engine.payload import Payload
from okk.schemas.rule import RuleDefinition, RuleLogic
from okk.storage.base import CallRecord, HistoryRecord

from tests.conftest import NOW, FakeJudge

BLOCK = RuleLogic.model_validate


def block(name, **params):
    return BLOCK({"conditions": [{"block": name, "params": params}]}).conditions[0]


def candidate(payload=None, context=None, **kw):
    kw.setdefault("entity_type", "order")
    kw.setdefault("entity_id", "100")
    kw.setdefault("order_id", 100)
    kw.setdefault("manager_id", 7)
    kw.setdefault("occurred_at", NOW - timedelta(hours=5))
    return Candidate(payload=Payload(payload or {}), context=Payload(context or {}), **kw)


def ctx_for(cand, store, judge=None):
    return EvaluationContext(candidate=cand, store=store, judge=judge or FakeJudge(), now=NOW)


class TestStatusChange:
    @pytest.mark.asyncio
    async def test_snapshot_status(self, store):
        ctx = ctx_for(candidate({"status": "cancelled"}), store)
        assert await match_block(block("status_change", target="cancelled"), ctx)
        assert not await match_block(block("status_change", target="new"), ctx)

    @pytest.mark.asyncio
    async def test_delta_with_code_objects(self, store):
        payload = {"field": "status", "newValue": {"code": "cancelled"}, "oldValue": {"code": "new"}}
        ctx = ctx_for(candidate(payload, entity_type="event"), store)
        assert await match_block(block("status_change", target_status="cancelled"), ctx)
        assert await match_block(block("status_change", target_status="new", direction="from"), ctx)
        assert not await match_block(block("status_change", target_status="new"), ctx)

    @pytest.mark.asyncio
    async def test_snapshot_never_matches_from(self, store):
        ctx = ctx_for(candidate({"status": "new"}), store)
        assert not await match_block(block("status_change", target="new", direction="from"), ctx)

    def test_delta_of_other_field_falls_back_to_status(self):
        cand = candidate({"field": "manager_comment", "newValue": "hi", "status": {"code": "work"}})
        assert status_values(cand) == ("work", None)


class TestFieldEmpty:
    @pytest.mark.asyncio
    async def test_empty_and_missing(self, store):
        path = block("field_empty", field_path="manager_comment")
        assert await match_block(path, ctx_for(candidate(context={"manager_comment": "  "}), store))
        assert await match_block(path, ctx_for(candidate(context={}), store))

    @pytest.mark.asyncio
    async def test_filled(self, store):
        path = block("field_empty", field_path="manager_comment")
        assert not await match_block(path, ctx_for(candidate(context={"manager_comment": "звонил"}), store))

    @pytest.mark.asyncio
    async def test_nested_path(self, store):
        path = block("field_empty", field_path="delivery.address")
        ctx = ctx_for(candidate(context={"delivery": {"address": "Москва"}}), store)
        assert not await match_block(path, ctx)


class TestTimeElapsed:
    @pytest.mark.asyncio
    async def test_threshold_against_now(self, store):
        ctx = ctx_for(candidate(), store)  # occurred 5h before NOW
        assert await match_block(block("time_elapsed", hours=4), ctx)
        assert await match_block(block("time_elapsed", hours=5), ctx)
        assert not await match_block(block("time_elapsed", hours=6), ctx)


class TestNoNewComments:
    @pytest.mark.asyncio
    async def test_comment_after_occurrence(self, store):
        store.history.append(
            HistoryRecord(order_id=100, occurred_at=NOW - timedelta(hours=1), field="manager_comment", new_value="ok")
        )
        assert not await match_block(block("no_new_comments"), ctx_for(candidate(), store))

    @pytest.mark.asyncio
    async def test_comment_before_occurrence_ignored(self, store):
        store.history.append(
            HistoryRecord(order_id=100, occurred_at=NOW - timedelta(hours=6), field="manager_comment", new_value="ok")
        )
        assert await match_block(block("no_new_comments"), ctx_for(candidate(), store))

    @pytest.mark.asyncio
    async def test_window_bounded_by_hours(self, store):
        store.history.append(
            HistoryRecord(order_id=100, occurred_at=NOW - timedelta(hours=1), field="manager_comment", new_value="ok")
        )
        # Window is [occurred, occurred + 2h]; the comment came 4h after
        assert await match_block(block("no_new_comments", hours=2), ctx_for(candidate(), store))
        _, _, _, after, until = store.calls_made[-1]
        assert until - after == timedelta(hours=2)


class TestSemanticCheck:
    @pytest.mark.asyncio
    async def test_no_text_skips_judgment(self, store):
        judge = FakeJudge({"is_violation": True})
        ctx = ctx_for(candidate(context={}), store, judge)
        assert not await match_block(block("semantic_check", prompt="rude?"), ctx)
        assert judge.requests == []

    @pytest.mark.asyncio
    async def test_violation_recorded(self, store):
        judge = FakeJudge({"is_violation": True, "evidence": "клиент отказался", "confidence": 0.9, "reasoning": "нет причины"})
        ctx = ctx_for(candidate(context={"manager_comment": "клиент отказался"}), store, judge)
        assert await match_block(block("semantic_check", prompt="reason given?"), ctx)
        assert ctx.semantic_results[0].evidence == "клиент отказался"
        system_prompt, payload = judge.requests[0]
        assert "Manager Comment" in system_prompt
        assert "RULE: reason given?" in payload

    @pytest.mark.asyncio
    async def test_transcript_preferred_for_calls(self, store):
        judge = FakeJudge({"is_violation": False})
        cand = candidate(entity_type="call", transcript="Добрый день, компания Ромашка", context={"manager_comment": "c"})
        assert not await match_block(block("semantic_check", prompt="p"), ctx_for(cand, store, judge))
        assert "Ромашка" in judge.requests[0][1]

    @pytest.mark.asyncio
    async def test_field_path_for_orders(self, store):
        judge = FakeJudge({"is_violation": False})
        cand = candidate(context={"manager_comment": "c", "custom_reason": "дорого"})
        await match_block(block("semantic_check", prompt="p", field_path="custom_reason"), ctx_for(cand, store, judge))
        system_prompt, payload = judge.requests[0]
        assert "Field custom_reason" in system_prompt
        assert payload.endswith("дорого")

    @pytest.mark.asyncio
    async def test_judgment_error_means_no_violation(self, store):
        judge = FakeJudge(JudgmentError("timeout"))
        ctx = ctx_for(candidate(context={"manager_comment": "text"}), store, judge)
        assert not await match_block(block("semantic_check", prompt="p"), ctx)


class TestCallExists:
    @pytest.fixture
    def with_call(self, store):
        store.link(CallRecord(call_id="c1", started_at=NOW - timedelta(hours=7), duration_sec=45), 100)
        return store

    @pytest.mark.asyncio
    async def test_present(self, with_call):
        assert await match_block(block("call_exists"), ctx_for(candidate(), with_call))

    @pytest.mark.asyncio
    async def test_min_duration(self, with_call):
        assert not await match_block(block("call_exists", min_duration_sec=60), ctx_for(candidate(), with_call))

    @pytest.mark.asyncio
    async def test_within_hours(self, with_call):
        # Call was 2h before occurrence
        assert not await match_block(block("call_exists", within_hours=1), ctx_for(candidate(), with_call))
        assert await match_block(block("call_exists", within_hours=3), ctx_for(candidate(), with_call))

    @pytest.mark.asyncio
    async def test_absent_inverted(self, store):
        assert await match_block(block("call_exists", present=False), ctx_for(candidate(), store))


class TestEvaluateLogic:
    @pytest.mark.asyncio
    async def test_failed_condition_stops_later_lookups(self, store):
        logic = BLOCK(
            {
                "trigger": {"block": "status_change", "params": {"target": "cancelled"}},
                "conditions": [
                    {"block": "field_empty", "params": {"field_path": "manager_comment"}},
                    {"block": "no_new_comments", "params": {}},
                ],
            }
        )
        ctx = ctx_for(candidate({"status": "cancelled"}, {"manager_comment": "есть"}), store)
        assert not await evaluate_logic(logic, ctx)
        assert store.count("has_field_change") == 0

    @pytest.mark.asyncio
    async def test_trigger_miss_skips_conditions(self, store):
        logic = BLOCK(
            {
                "trigger": {"block": "status_change", "params": {"target": "cancelled"}},
                "conditions": [{"block": "no_new_comments", "params": {}}],
            }
        )
        assert not await evaluate_logic(logic, ctx_for(candidate({"status": "new"}), store))
        assert store.count("has_field_change") == 0

    @pytest.mark.asyncio
    async def test_all_pass(self, store):
        logic = BLOCK(
            {
                "trigger": None,
                "conditions": [
                    {"block": "time_elapsed", "params": {"hours": 1}},
                    {"block": "no_new_comments", "params": {}},
                ],
            }
        )
        assert await evaluate_logic(logic, ctx_for(candidate(), store))
        assert store.count("has_field_change") == 1


class TestRuleDefinition:
    def test_unknown_block_rejected(self):
        with pytest.raises(ValidationError):
            RuleDefinition.model_validate(
                {"code": "x", "entity_type": "order", "logic": {"conditions": [{"block": "mystery", "params": {}}]}}
            )

    def test_checklist_only_for_call_or_stage(self):
        checklist = [{"section": "s", "items": [{"description": "d", "weight": 10}]}]
        RuleDefinition(code="a", entity_type="call", checklist=checklist)
        RuleDefinition(code="b", entity_type="stage", checklist=checklist)
        with pytest.raises(ValidationError):
            RuleDefinition(code="c", entity_type="order", checklist=checklist)

    def test_missing_params_rejected(self):
        with pytest.raises(ValidationError):
            RuleLogic.model_validate({"trigger": {"block": "field_empty", "params": {}}})

    def test_two_semantic_checks_rejected(self):
        semantic = {"block": "semantic_check", "params": {"prompt": "p"}}
        with pytest.raises(ValidationError):
            RuleDefinition.model_validate(
                {"code": "x", "entity_type": "event", "logic": {"conditions": [semantic, semantic]}}
            )

    def test_semantic_check_with_checklist_rejected(self):
        checklist = [{"section": "s", "items": [{"description": "d", "weight": 10}]}]
        logic = {"conditions": [{"block": "semantic_check", "params": {"prompt": "p"}}]}
        with pytest.raises(ValidationError):
            RuleDefinition.model_validate({"code": "x", "entity_type": "call", "logic": logic, "checklist": checklist})

    def test_single_semantic_check_allowed(self):
        logic = {"conditions": [{"block": "semantic_check", "params": {"prompt": "p"}}]}
        rule = RuleDefinition.model_validate({"code": "x", "entity_type": "event", "logic": logic})
        assert rule.logic.count_blocks("semantic_check") == 1
