"""Rule endpoints - list, execute, dry-run."""

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, HTTPException, status

from okk.api.deps import EngineDep, RepositoryDep
from okk.auth.middleware import AuthDep
from okk.config import settings
from okk.schemas.api import DryRunRequest, DryRunResponse, ExecuteRequest, ExecuteResponse
from okk.schemas.rule import RuleDefinition
from okk.storage.repositories import LAST_RUN_KEY

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/rules", response_model=list[RuleDefinition])
async def list_rules(
    _: AuthDep,
    repo: RepositoryDep,
    active_only: bool = False,
):
    """List rule definitions."""
    return await repo.list_rules(active_only=active_only)


@router.post("/rules/execute", response_model=ExecuteResponse)
async def execute_rules(
    body: ExecuteRequest,
    _: AuthDep,
    repo: RepositoryDep,
    engine: EngineDep,
):
    """
    Run a pass over the window and persist violations.
    Defaults to the last ``default_pass_hours``; re-running a window is safe.
    """
    now = datetime.now(timezone.utc)
    if body.start is not None and body.end is not None:
        start, end = body.start, body.end
    else:
        start, end = now - timedelta(hours=body.hours or settings.default_pass_hours), now

    if body.rule_code and await repo.get_rule(body.rule_code) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rule not found")

    logger.info("Triggering rule engine for %s -> %s", start.isoformat(), end.isoformat())
    saved = await engine.run_pass(start, end, rule_code=body.rule_code)
    await repo.set_sync_state(LAST_RUN_KEY, now.isoformat())

    return ExecuteResponse(start=start, end=end, violations_saved=saved)


@router.post("/rules/dry-run", response_model=DryRunResponse)
async def dry_run(
    body: DryRunRequest,
    _: AuthDep,
    repo: RepositoryDep,
    engine: EngineDep,
):
    """Evaluate a rule (stored or unsaved) without persisting or notifying."""
    rule = body.rule
    if rule is None:
        rule = await repo.get_rule(body.rule_code)
        if rule is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rule not found")

    end = datetime.now(timezone.utc)
    start = end - timedelta(days=body.days or settings.dry_run_days)
    violations = await engine.run_pass(start, end, dry_run=True, rule=rule)
    return DryRunResponse(count=len(violations), violations=violations)
