"""Request/response schemas for the rule and violation endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from okk.schemas.audit import Violation
from okk.schemas.rule import RuleDefinition


class ExecuteRequest(BaseModel):
    """POST /v1/rules/execute request.

    Either an explicit window or ``hours`` back from now.
    """

    hours: int | None = Field(default=None, gt=0)
    start: datetime | None = None
    end: datetime | None = None
    rule_code: str | None = None

    @model_validator(mode="after")
    def window_is_consistent(self) -> "ExecuteRequest":
        if (self.start is None) != (self.end is None):
            raise ValueError("start and end must be given together")
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError("start must not be after end")
        return self


class ExecuteResponse(BaseModel):
    success: bool = True
    start: datetime
    end: datetime
    violations_saved: int


class DryRunRequest(BaseModel):
    """POST /v1/rules/dry-run request - an unsaved rule or a stored rule code."""

    rule: RuleDefinition | None = None
    rule_code: str | None = None
    days: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def needs_rule(self) -> "DryRunRequest":
        if self.rule is None and not self.rule_code:
            raise ValueError("either rule or rule_code is required")
        return self


class DryRunResponse(BaseModel):
    success: bool = True
    count: int
    violations: list[Violation] = Field(default_factory=list)


class ViolationOut(BaseModel):
    """Stored violation row."""

    model_config = {"from_attributes": True}

    violation_key: str
    rule_code: str
    order_id: int | None
    manager_id: int | None
    violation_time: datetime
    severity: str
    points: int
    call_id: str | None
    details: str
    evidence_text: str | None
    checklist_result: dict[str, Any] | None
    created_at: datetime
