"""Checklist judging and score reconciliation.

The judgment capability scores each checklist item; section and total scores
are always re-summed here from the item scores, never taken from the verdict.
Audits fail closed: short transcripts and judgment errors produce the
worst-case result.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from okk.config import settings
from okk.engine.judge import Judge, JudgmentError
from okk.schemas.audit import ItemResult, QualityControlResult, SectionResult, StageEvidence
from okk.schemas.rule import ChecklistSection
from okk.utils.canonical import prompt_json

logger = logging.getLogger(__name__)

PromptLookup = Callable[[str], Awaitable[str | None]]

CALL_PROMPT_KEY = "qc_checklist_audit"
STAGE_PROMPT_KEY = "qc_stage_audit"
WORST_CASE_MAX_SCORE = 100.0

_OUTPUT_FORMAT = """
OUTPUT JSON FORMAT:
{
  "summary": "Short summary in Russian",
  "sections": [
    {
      "section": "Section name",
      "items": [
        {"description": "Criterion", "weight": 10, "score": 10, "status": "pass", "reasoning": "In Russian"}
      ]
    }
  ]
}
"""

DEFAULT_CALL_PROMPT = (
    """
You audit a single sales call transcript against a weighted quality checklist.

For every checklist item decide whether the manager met it. Award the full
weight when met and 0 when missed; use a partial score only when the criterion
explicitly allows it. Give a short reasoning in Russian for each item, quoting
the transcript where possible. When the transcript is ambiguous, give the
manager the benefit of the doubt unless the criterion says "explicitly ask".
Return every checklist item exactly once.
"""
    + _OUTPUT_FORMAT
)

DEFAULT_STAGE_PROMPT = (
    """
You audit how an order was handled while it stayed in one CRM status.

The evidence is a chronological list of interactions: call transcripts, manager
comments and CRM field changes. Read them as one context. A criterion is met if
ANY interaction satisfies it; it does not have to be repeated in every call.
Manager comments count as documentation. If the rule only concerns a customer's
first orders and customer_orders_count is higher, mark all items as passed and
say so in the summary. Award the full weight when met and 0 when missed, and
name the interaction that provided the evidence in the reasoning (in Russian).
"""
    + _OUTPUT_FORMAT
)


def worst_case(summary: str) -> QualityControlResult:
    return QualityControlResult(
        total_score=0,
        max_score=WORST_CASE_MAX_SCORE,
        sections=[],
        summary=summary,
        is_violation=True,
    )


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _item_status(raw_status: Any, score: float, weight: float) -> str:
    if raw_status in ("pass", "fail", "partial"):
        return raw_status
    if weight > 0 and score >= weight:
        return "pass"
    return "partial" if score > 0 else "fail"


def reconcile(raw: dict[str, Any]) -> QualityControlResult:
    """Rebuild section and total scores from the judged items.

    Item scores are clamped into ``[0, weight]``. A verdict without any usable
    item is malformed.
    """
    raw_sections = raw.get("sections")
    if not isinstance(raw_sections, list):
        raise JudgmentError("verdict has no sections list")

    sections: list[SectionResult] = []
    item_count = 0
    for raw_section in raw_sections:
        if not isinstance(raw_section, dict):
            continue
        items: list[ItemResult] = []
        raw_items = raw_section.get("items")
        for raw_item in raw_items if isinstance(raw_items, list) else []:
            if not isinstance(raw_item, dict):
                continue
            weight = max(_number(raw_item.get("weight")), 0.0)
            score = min(max(_number(raw_item.get("score")), 0.0), weight)
            items.append(
                ItemResult(
                    description=str(raw_item.get("description") or ""),
                    weight=weight,
                    score=score,
                    status=_item_status(raw_item.get("status"), score, weight),
                    reasoning=str(raw_item.get("reasoning") or ""),
                )
            )
        item_count += len(items)
        sections.append(
            SectionResult(
                section=str(raw_section.get("section") or ""),
                items=items,
                section_score=sum(i.score for i in items),
                section_max_score=sum(i.weight for i in items),
            )
        )

    if item_count == 0:
        raise JudgmentError("verdict contains no checklist items")

    total_score = sum(s.section_score for s in sections)
    max_score = sum(s.section_max_score for s in sections)
    summary = raw.get("summary")
    return QualityControlResult(
        total_score=total_score,
        max_score=max_score,
        sections=sections,
        summary=summary if isinstance(summary, str) else "",
        # Any deduction counts
        is_violation=total_score < max_score,
    )


def _checklist_json(checklist: Sequence[ChecklistSection]) -> str:
    return prompt_json([section.model_dump() for section in checklist])


class ChecklistJudge:
    """Scores call transcripts (atomic) or stage timelines against a checklist."""

    def __init__(
        self,
        judge: Judge,
        prompt_lookup: PromptLookup | None = None,
        min_transcript_length: int | None = None,
    ):
        self._judge = judge
        self._prompt_lookup = prompt_lookup
        self._min_length = (
            settings.min_transcript_length if min_transcript_length is None else min_transcript_length
        )

    async def _system_prompt(self, key: str, default: str) -> str:
        if self._prompt_lookup is None:
            return default
        try:
            prompt = await self._prompt_lookup(key)
        except Exception as e:
            logger.warning("Failed to load prompt %s, using default: %s", key, e)
            return default
        return prompt or default

    async def evaluate(self, transcript: str | None, checklist: Sequence[ChecklistSection]) -> QualityControlResult:
        """Atomic mode: one transcript against the checklist."""
        if not transcript or len(transcript.strip()) < self._min_length:
            return worst_case("Transcript too short or empty.")

        system_prompt = await self._system_prompt(CALL_PROMPT_KEY, DEFAULT_CALL_PROMPT)
        payload = f"TRANSCRIPT:\n{transcript}\n\nCHECKLIST STRUCTURE:\n{_checklist_json(checklist)}"
        return await self._run(system_prompt, payload, "call")

    async def evaluate_stage(
        self, evidence: StageEvidence, checklist: Sequence[ChecklistSection]
    ) -> QualityControlResult:
        """Stage mode: the whole interaction timeline judged once."""
        if not evidence.has_calls:
            # Nothing to audit - pass without deduction
            full = sum(item.weight for section in checklist for item in section.items) or WORST_CASE_MAX_SCORE
            return QualityControlResult(
                total_score=full,
                max_score=full,
                sections=[],
                summary="Нет звонков для анализа на этой стадии. Проверка пропущена.",
                is_violation=False,
            )

        system_prompt = await self._system_prompt(STAGE_PROMPT_KEY, DEFAULT_STAGE_PROMPT)
        context = evidence.model_dump(mode="json")
        payload = (
            f"EVIDENCE CONTEXT:\n{prompt_json(context)}\n\n"
            f"CHECKLIST STRUCTURE:\n{_checklist_json(checklist)}"
        )
        return await self._run(system_prompt, payload, "stage")

    async def _run(self, system_prompt: str, payload: str, mode: str) -> QualityControlResult:
        try:
            raw = await self._judge.judge(system_prompt, payload)
            return reconcile(raw)
        except Exception:
            logger.exception("Checklist evaluation failed (%s mode)", mode)
            return worst_case(f"Error during {mode} checklist evaluation.")
