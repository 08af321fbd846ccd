"""Violation listing endpoint."""

from datetime import datetime

from fastapi import APIRouter, Query

from okk.api.deps import RepositoryDep
from okk.auth.middleware import AuthDep
from okk.schemas.api import ViolationOut

router = APIRouter()


@router.get("/violations", response_model=list[ViolationOut])
async def list_violations(
    _: AuthDep,
    repo: RepositoryDep,
    rule_code: str | None = None,
    order_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
):
    """Stored violations, newest first."""
    rows = await repo.list_violations(
        rule_code=rule_code, order_id=order_id, start=start, end=end, limit=limit
    )
    return [ViolationOut.model_validate(r) for r in rows]
