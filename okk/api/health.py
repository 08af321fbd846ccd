"""Liveness and service metrics."""

from fastapi import APIRouter

from okk.api.deps import RepositoryDep
from okk.storage.repositories import LAST_RUN_KEY

router = APIRouter()

VERSION = "0.1.0"


@router.get("/health")
async def health():
    """Liveness check; does not touch the database."""
    return {"status": "ok"}


@router.get("/metrics")
async def metrics(repo: RepositoryDep):
    """Last engine pass and stored violation count."""
    return {
        "service": "okk",
        "version": VERSION,
        "rule_engine_last_run": await repo.get_sync_state(LAST_RUN_KEY),
        "violations_total": await repo.count_violations(),
    }
