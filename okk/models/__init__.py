"""Database models."""

from okk.models.crm import (
    CallOrderMatch,
    Order,
    OrderEvent,
    OrderHistoryLog,
    OrderMetrics,
    RawCall,
)
from okk.models.rule import AiPrompt, OkkRule, SyncState
from okk.models.violation import OkkViolation

__all__ = [
    "Order",
    "OrderMetrics",
    "RawCall",
    "CallOrderMatch",
    "OrderEvent",
    "OrderHistoryLog",
    "OkkRule",
    "AiPrompt",
    "SyncState",
    "OkkViolation",
]
