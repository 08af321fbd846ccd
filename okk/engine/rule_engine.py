"""Rule engine - runs audit rules over a time window.

Per rule: fetch candidates, then for each candidate resolve its occurrence
time, collect stage evidence when needed, evaluate trigger and conditions, and
build a violation. Violations are upserted once per rule, after which
notifications go out fire-and-forget.

Rules and candidates are processed sequentially. A failure anywhere inside one
rule drops that rule's output for this pass and the pass moves on; re-running
the same window is safe because persistence is an upsert. The store is reset
after every caught store failure, since one failed statement leaves the
PostgreSQL transaction unusable for the next rule.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from okk.engine.blocks import EvaluationContext, evaluate_logic
from okk.engine.candidates import Candidate, CandidateFetcher, OccurrenceResolver
from okk.engine.checklist import ChecklistJudge
from okk.engine.evidence import StageEvidenceCollector
from okk.engine.judge import Judge
from okk.engine.semantic import SEMANTIC_PROMPT_KEY
from okk.notify.telegram import NotificationDispatcher, format_violation
from okk.schemas.audit import Violation
from okk.schemas.rule import RuleDefinition
from okk.storage.base import AuditStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RuleEngine:
    """Evaluates rule definitions against the CRM and telephony stores."""

    def __init__(
        self,
        store: AuditStore,
        judge: Judge,
        dispatcher: NotificationDispatcher | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._judge = judge
        self._dispatcher = dispatcher
        self._clock = clock
        self._fetcher = CandidateFetcher(store)
        self._resolver = OccurrenceResolver(store)
        self._collector = StageEvidenceCollector(store, clock)
        self._checklists = ChecklistJudge(judge, prompt_lookup=self._system_prompt)

    async def run_pass(
        self,
        start: datetime,
        end: datetime,
        rule_code: str | None = None,
        dry_run: bool = False,
        rule: RuleDefinition | None = None,
    ) -> list[Violation] | int:
        """Run active rules (or just ``rule``) over ``[start, end]``.

        Returns the number of persisted violations, or with ``dry_run`` the
        violations themselves; a dry run never writes or notifies.
        """
        if rule is not None:
            rules = [rule]
        else:
            rules = await self._store.list_rules(active_only=True, code=rule_code)
        logger.info(
            "Rule engine pass %s -> %s: %d rules%s",
            start.isoformat(), end.isoformat(), len(rules), " (dry run)" if dry_run else "",
        )

        semantic_prompt = await self._semantic_prompt(rules)
        found: list[Violation] = []
        saved = 0
        for current in rules:
            try:
                violations = await self.execute_rule(current, start, end, semantic_prompt)
            except Exception:
                logger.exception("Error executing rule %s", current.code)
                await self._store.reset()
                continue
            if not violations:
                continue
            if dry_run:
                found.extend(violations)
                continue
            try:
                saved += await self._store.upsert_violations(violations)
            except Exception:
                logger.exception("Failed to save %d violations for rule %s", len(violations), current.code)
                await self._store.reset()
                continue
            if current.notify:
                self._notify(current, violations)

        if dry_run:
            logger.info("Dry run found %d violations", len(found))
            return found
        logger.info("Rule engine pass saved %d violations", saved)
        return saved

    async def execute_rule(
        self,
        rule: RuleDefinition,
        start: datetime,
        end: datetime,
        semantic_prompt: str | None = None,
    ) -> list[Violation]:
        candidates = await self._fetcher.fetch(rule, start, end)
        if not candidates:
            return []

        now = self._clock()
        by_key: dict[str, Violation] = {}
        for candidate in candidates:
            candidate.occurred_at = await self._resolver.resolve(candidate, now)
            ctx = EvaluationContext(
                candidate=candidate,
                store=self._store,
                judge=self._judge,
                now=now,
                semantic_prompt=semantic_prompt,
            )
            if not await evaluate_logic(rule.logic, ctx):
                continue
            if rule.checklist:
                violation = await self._checklist_violation(rule, candidate)
            else:
                violation = _standard_violation(rule, ctx)
            if violation is not None:
                # One row per upsert key within a batch
                by_key[violation.key] = violation

        logger.info("[%s] %d violations from %d candidates", rule.code, len(by_key), len(candidates))
        return list(by_key.values())

    async def _checklist_violation(self, rule: RuleDefinition, candidate: Candidate) -> Violation | None:
        if candidate.entity_type == "stage":
            evidence = await self._collector.collect(
                candidate.order_id, candidate.current_status or "", candidate.occurred_at
            )
            result = await self._checklists.evaluate_stage(evidence, rule.checklist)
        else:
            result = await self._checklists.evaluate(candidate.transcript, rule.checklist)

        if not result.is_violation:
            return None
        details = f"{rule.name or rule.code}: {result.total_score:g}/{result.max_score:g}"
        if result.summary:
            details = f"{details}. {result.summary}"
        return Violation(
            rule_code=rule.code,
            order_id=candidate.order_id,
            manager_id=candidate.manager_id,
            violation_time=candidate.occurred_at,
            severity=rule.severity,
            points=rule.points,
            call_id=candidate.call_id,
            details=details,
            checklist_result=result.model_dump(mode="json"),
        )

    async def _semantic_prompt(self, rules: list[RuleDefinition]) -> str | None:
        if not any(r.logic.count_blocks("semantic_check") for r in rules):
            return None
        return await self._system_prompt(SEMANTIC_PROMPT_KEY)

    async def _system_prompt(self, key: str) -> str | None:
        """Operator override for a prompt; None (use the default) on any error."""
        try:
            return await self._store.get_system_prompt(key)
        except Exception as e:
            logger.warning("Failed to load prompt %s, using default: %s", key, e)
            await self._store.reset()
            return None

    def _notify(self, rule: RuleDefinition, violations: list[Violation]) -> None:
        if self._dispatcher is None:
            return
        for violation in violations:
            self._dispatcher.dispatch(format_violation(rule, violation))


def _standard_violation(rule: RuleDefinition, ctx: EvaluationContext) -> Violation:
    candidate = ctx.candidate
    details = rule.description or f"Detected by rule {rule.name or rule.code}"
    evidence_text = None
    if ctx.semantic_results:
        verdict = ctx.semantic_results[-1]
        evidence_text = verdict.evidence
        if verdict.reasoning:
            details = f"{details}: {verdict.reasoning}"
    return Violation(
        rule_code=rule.code,
        order_id=candidate.order_id,
        manager_id=candidate.manager_id,
        violation_time=ctx.occurred_at,
        severity=rule.severity,
        points=rule.points,
        call_id=candidate.call_id,
        details=details,
        evidence_text=evidence_text,
    )
