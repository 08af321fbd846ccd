"""Logic block evaluation."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from okk.config import settings
from okk.engine.candidates import Candidate
from okk.engine.judge import Judge
from okk.engine.semantic import analyze_text
from okk.schemas.audit import SemanticResult
from okk.schemas.rule import (
    CallExistsBlock,
    FieldEmptyBlock,
    LogicBlock,
    NoNewCommentsBlock,
    RuleLogic,
    SemanticCheckBlock,
    StatusChangeBlock,
    TimeElapsedBlock,
)
from okk.storage.base import AuditStore

logger = logging.getLogger(__name__)


@dataclass
class EvaluationContext:
    """What a block can see while evaluating one candidate.

    ``candidate.occurred_at`` must already be resolved. ``semantic_results``
    collects verdicts of matched semantic checks so the violation can quote them.
    """

    candidate: Candidate
    store: AuditStore
    judge: Judge
    now: datetime
    semantic_prompt: str | None = None
    semantic_results: list[SemanticResult] = field(default_factory=list)

    @property
    def occurred_at(self) -> datetime:
        return self.candidate.occurred_at or self.now


def status_values(candidate: Candidate) -> tuple[str | None, str | None]:
    """(current, previous) status of a candidate.

    Event-shaped payloads carry a ``newValue``/``oldValue`` delta (plain codes
    or ``{"code": ...}`` objects); snapshots only have ``status``.
    """
    payload = candidate.payload
    changed_field = payload.text("field")
    has_delta = payload.get("newValue") is not None or payload.get("oldValue") is not None
    if has_delta and changed_field in (None, "status"):
        return payload.code("newValue"), payload.code("oldValue")
    return payload.code("status") or candidate.current_status, None


def _match_status_change(block: StatusChangeBlock, ctx: EvaluationContext) -> bool:
    current, previous = status_values(ctx.candidate)
    if block.params.direction == "to":
        return current == block.params.target_status
    return previous == block.params.target_status


def _match_field_empty(block: FieldEmptyBlock, ctx: EvaluationContext) -> bool:
    return ctx.candidate.context.is_empty(block.params.field_path)


def _match_time_elapsed(block: TimeElapsedBlock, ctx: EvaluationContext) -> bool:
    # Measured against wall-clock now: re-running an old window can change the answer
    return ctx.now - ctx.occurred_at >= timedelta(hours=block.params.hours)


async def _match_no_new_comments(block: NoNewCommentsBlock, ctx: EvaluationContext) -> bool:
    order_id = ctx.candidate.order_id
    if order_id is None:
        return True
    until = ctx.now
    if block.params.hours is not None:
        until = min(ctx.occurred_at + timedelta(hours=block.params.hours), ctx.now)
    commented = await ctx.store.has_field_change(
        order_id, settings.comment_field, after=ctx.occurred_at, until=until
    )
    return not commented


def _semantic_text(block: SemanticCheckBlock, candidate: Candidate) -> tuple[str | None, str]:
    if candidate.transcript:
        return candidate.transcript, "Call Transcript"
    if block.params.field_path:
        path = block.params.field_path
        return candidate.context.text(path) or candidate.payload.text(path), f"Field {path}"
    return candidate.context.text(settings.comment_field), "Manager Comment"


async def _match_semantic_check(block: SemanticCheckBlock, ctx: EvaluationContext) -> bool:
    text, description = _semantic_text(block, ctx.candidate)
    if not text:
        return False
    result = await analyze_text(
        ctx.judge, text, block.params.prompt, description, system_prompt=ctx.semantic_prompt
    )
    if result.is_violation:
        ctx.semantic_results.append(result)
    return result.is_violation


async def _match_call_exists(block: CallExistsBlock, ctx: EvaluationContext) -> bool:
    order_id = ctx.candidate.order_id
    if order_id is None:
        return not block.params.present
    start = None
    if block.params.within_hours is not None:
        start = ctx.occurred_at - timedelta(hours=block.params.within_hours)
    calls = await ctx.store.calls_for_order(order_id, start, ctx.occurred_at)
    found = any((c.duration_sec or 0) >= block.params.min_duration_sec for c in calls)
    return found == block.params.present


async def match_block(block: LogicBlock, ctx: EvaluationContext) -> bool:
    """Evaluate one block against the candidate in ``ctx``."""
    if isinstance(block, StatusChangeBlock):
        return _match_status_change(block, ctx)
    if isinstance(block, FieldEmptyBlock):
        return _match_field_empty(block, ctx)
    if isinstance(block, TimeElapsedBlock):
        return _match_time_elapsed(block, ctx)
    if isinstance(block, NoNewCommentsBlock):
        return await _match_no_new_comments(block, ctx)
    if isinstance(block, SemanticCheckBlock):
        return await _match_semantic_check(block, ctx)
    if isinstance(block, CallExistsBlock):
        return await _match_call_exists(block, ctx)
    raise TypeError(f"Unhandled logic block: {type(block).__name__}")


async def evaluate_logic(logic: RuleLogic, ctx: EvaluationContext) -> bool:
    """Trigger first, then conditions in order; stops at the first miss."""
    if logic.trigger is not None and not await match_block(logic.trigger, ctx):
        return False
    for condition in logic.conditions:
        if not await match_block(condition, ctx):
            logger.debug(
                "Candidate %s failed condition %s", ctx.candidate.entity_id, condition.block
            )
            return False
    return True
