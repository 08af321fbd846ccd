"""Evidence, checklist verdict and violation schemas."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from okk.utils.canonical import violation_key


class Interaction(BaseModel):
    """One call, comment or field change inside a stage."""

    type: Literal["call", "comment", "field_change"]
    timestamp: datetime
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class StageMetrics(BaseModel):
    """Heuristics derived from the order history while collecting evidence."""

    contact_date_shifts: int = 0
    days_since_last_interaction: int = 0
    is_corporate: bool = False
    has_email: bool = False
    was_shipped_hint: bool = False


class StageEvidence(BaseModel):
    """Everything that happened to an order while it sat in one status."""

    order_id: int
    status: str
    entry_time: datetime
    exit_time: datetime
    interactions: list[Interaction] = Field(default_factory=list)
    customer_orders_count: int | None = None
    metrics: StageMetrics = Field(default_factory=StageMetrics)

    @property
    def has_calls(self) -> bool:
        return any(i.type == "call" for i in self.interactions)


class ItemResult(BaseModel):
    """Judged checklist criterion."""

    description: str
    weight: float
    score: float
    status: Literal["pass", "fail", "partial"] = "fail"
    reasoning: str = ""


class SectionResult(BaseModel):
    """Judged section with locally summed scores."""

    section: str
    items: list[ItemResult] = Field(default_factory=list)
    section_score: float = 0
    section_max_score: float = 0


class QualityControlResult(BaseModel):
    """Checklist verdict after score reconciliation."""

    total_score: float
    max_score: float
    sections: list[SectionResult] = Field(default_factory=list)
    summary: str = ""
    is_violation: bool


class SemanticResult(BaseModel):
    """Verdict of a semantic_check block."""

    is_violation: bool = False
    evidence: str | None = None
    confidence: float = 0.0
    reasoning: str = ""


class Violation(BaseModel):
    """Violation produced by one engine pass."""

    rule_code: str
    order_id: int | None
    manager_id: int | None = None
    violation_time: datetime
    severity: str
    points: int = 0
    call_id: str | None = None
    details: str = ""
    evidence_text: str | None = None
    checklist_result: dict[str, Any] | None = None

    @property
    def key(self) -> str:
        """Upsert key over (rule_code, order_id, violation_time, call_id)."""
        return violation_key(self.rule_code, self.order_id, self.violation_time, self.call_id)
