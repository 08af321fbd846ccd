"""Shared dependencies: repository, judge, notifications, engine."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from okk.database import get_db
from okk.engine.judge import OpenAIJudge
from okk.engine.rule_engine import RuleEngine
from okk.notify.telegram import NotificationDispatcher, TelegramNotifier
from okk.storage.repositories import AuditRepository

judge = OpenAIJudge()
dispatcher = NotificationDispatcher(TelegramNotifier())


def get_repository(db: Annotated[AsyncSession, Depends(get_db)]) -> AuditRepository:
    return AuditRepository(db)


RepositoryDep = Annotated[AuditRepository, Depends(get_repository)]


def get_rule_engine(repo: RepositoryDep) -> RuleEngine:
    return RuleEngine(repo, judge, dispatcher)


EngineDep = Annotated[RuleEngine, Depends(get_rule_engine)]
