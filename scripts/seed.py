#!/usr/bin/env python3
"""
Seed script: creates the starter set of OKK audit rules.
Run after migrations: python scripts/seed.py
Existing rules with the same code are overwritten.
"""

import asyncio
import json
import os
import sys
from datetime import datetime, timezone

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text

from okk.database import engine, session_scope
from okk.schemas.rule import RuleDefinition

NEW_STATUS = "novyi"
QUALIFIED_STATUS = "zayavka-otkalifitsirovana"
CANCEL_STATUS = "sdelka-provalena-ukazat-prichiny-provala-tseh-uspeh"

RULES = [
    {
        "code": "cancel_without_comment",
        "name": "Отмена без комментария",
        "description": "Заказ переведён в отказ без комментария менеджера",
        "entity_type": "order",
        "logic": {
            "trigger": {"block": "status_change", "params": {"target_status": CANCEL_STATUS, "direction": "to"}},
            "conditions": [{"block": "field_empty", "params": {"field_path": "manager_comment"}}],
        },
        "severity": "medium",
        "points": 5,
        "notify": True,
    },
    {
        "code": "new_order_overdue",
        "name": "Просрочен статус «Новый»",
        "description": "Заказ висит в статусе «Новый» больше 4 часов без комментариев",
        "entity_type": "order",
        "logic": {
            "trigger": {"block": "status_change", "params": {"target_status": NEW_STATUS}},
            "conditions": [
                {"block": "time_elapsed", "params": {"hours": 4}},
                {"block": "no_new_comments", "params": {}},
            ],
        },
        "severity": "medium",
        "points": 3,
    },
    {
        "code": "qualification_without_call",
        "name": "Квалификация без звонка",
        "description": "Заявка квалифицирована без разговора с клиентом дольше 20 секунд",
        "entity_type": "event",
        "logic": {
            "trigger": {"block": "status_change", "params": {"target_status": QUALIFIED_STATUS}},
            "conditions": [
                {"block": "call_exists", "params": {"min_duration_sec": 20, "present": False}},
            ],
        },
        "severity": "high",
        "points": 10,
        "notify": True,
    },
    {
        "code": "cancel_reason_unclear",
        "name": "Неясная причина отказа",
        "description": "Комментарий к отказу не объясняет причину",
        "entity_type": "event",
        "logic": {
            "trigger": {"block": "status_change", "params": {"target_status": CANCEL_STATUS}},
            "conditions": [
                {
                    "block": "semantic_check",
                    "params": {
                        "prompt": "Нарушение, если комментарий не называет конкретную причину отказа клиента.",
                    },
                },
            ],
        },
        "severity": "low",
        "points": 2,
    },
    {
        "code": "call_quality_checklist",
        "name": "Чек-лист звонка",
        "description": "Оценка разговора по чек-листу качества",
        "entity_type": "call",
        "logic": {"trigger": None, "conditions": []},
        "checklist": [
            {
                "section": "Установление контакта",
                "items": [
                    {"description": "Менеджер представился и назвал компанию", "weight": 10},
                    {"description": "Уточнил, как обращаться к клиенту", "weight": 10},
                ],
            },
            {
                "section": "Выявление потребностей",
                "items": [
                    {"description": "Выяснил объём и сроки закупки", "weight": 30},
                    {"description": "Определил лицо, принимающее решение", "weight": 30},
                ],
            },
            {
                "section": "Завершение",
                "items": [{"description": "Договорился о следующем шаге", "weight": 20}],
            },
        ],
        "severity": "medium",
        "points": 5,
    },
    {
        "code": "qualification_stage_audit",
        "name": "Аудит этапа квалификации",
        "description": "Проверка всей работы с заявкой на этапе квалификации",
        "entity_type": "stage",
        "logic": {
            "trigger": {"block": "status_change", "params": {"target_status": QUALIFIED_STATUS}},
            "conditions": [],
        },
        "checklist": [
            {
                "section": "Квалификация",
                "items": [
                    {"description": "Выявлена потребность клиента", "weight": 40},
                    {"description": "Определён бюджет или ожидаемая сумма", "weight": 30},
                    {"description": "Итог зафиксирован комментарием в CRM", "weight": 30},
                ],
            },
        ],
        "severity": "high",
        "points": 10,
        "notify": True,
    },
]


async def seed():
    now = datetime.now(timezone.utc)
    async with session_scope() as session:
        for raw in RULES:
            # Validate before writing - a bad block name fails here, not at run time
            rule = RuleDefinition.model_validate(raw)
            await session.execute(
                text("""
                    INSERT INTO okk_rules (code, name, description, entity_type, logic, checklist,
                                           severity, points, notify_telegram, is_active, updated_at)
                    VALUES (:code, :name, :description, :entity_type, CAST(:logic AS JSONB),
                            CAST(:checklist AS JSONB), :severity, :points, :notify, :active, :now)
                    ON CONFLICT (code) DO UPDATE SET
                        name = EXCLUDED.name,
                        description = EXCLUDED.description,
                        entity_type = EXCLUDED.entity_type,
                        logic = EXCLUDED.logic,
                        checklist = EXCLUDED.checklist,
                        severity = EXCLUDED.severity,
                        points = EXCLUDED.points,
                        notify_telegram = EXCLUDED.notify_telegram,
                        updated_at = EXCLUDED.updated_at
                """),
                {
                    "code": rule.code,
                    "name": rule.name,
                    "description": rule.description,
                    "entity_type": rule.entity_type,
                    "logic": json.dumps(rule.logic.model_dump(), ensure_ascii=False),
                    "checklist": (
                        json.dumps([s.model_dump() for s in rule.checklist], ensure_ascii=False)
                        if rule.checklist
                        else None
                    ),
                    "severity": rule.severity,
                    "points": rule.points,
                    "notify": rule.notify,
                    "active": rule.is_active,
                    "now": now,
                },
            )
            print(f"Seeded rule {rule.code} ({rule.entity_type})")

    await engine.dispose()
    print(f"Done: {len(RULES)} rules.")


if __name__ == "__main__":
    asyncio.run(seed())
