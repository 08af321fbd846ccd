"""Rule definition schemas.

Logic blocks form a closed union discriminated on ``block``; an unknown block
name fails validation instead of silently evaluating to false.
"""

from typing import Annotated, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

EntityType = Literal["call", "order", "event", "stage"]


class _Params(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class StatusChangeParams(_Params):
    target_status: str = Field(validation_alias=AliasChoices("target_status", "target"))
    direction: Literal["to", "from"] = "to"


class FieldEmptyParams(_Params):
    field_path: str


class TimeElapsedParams(_Params):
    hours: float = Field(ge=0)


class NoNewCommentsParams(_Params):
    hours: float | None = Field(default=None, ge=0)


class SemanticCheckParams(_Params):
    prompt: str
    field_path: str | None = None


class CallExistsParams(_Params):
    within_hours: float | None = Field(default=None, ge=0)
    min_duration_sec: int = Field(default=0, ge=0)
    present: bool = True


class StatusChangeBlock(BaseModel):
    """Candidate moved to (or away from) a status."""

    model_config = ConfigDict(frozen=True)

    block: Literal["status_change"] = "status_change"
    params: StatusChangeParams


class FieldEmptyBlock(BaseModel):
    """A denormalized context field is missing or blank."""

    model_config = ConfigDict(frozen=True)

    block: Literal["field_empty"] = "field_empty"
    params: FieldEmptyParams


class TimeElapsedBlock(BaseModel):
    """At least N hours passed since the candidate occurred."""

    model_config = ConfigDict(frozen=True)

    block: Literal["time_elapsed"] = "time_elapsed"
    params: TimeElapsedParams


class NoNewCommentsBlock(BaseModel):
    """No manager comment was written after the candidate occurred."""

    model_config = ConfigDict(frozen=True)

    block: Literal["no_new_comments"] = "no_new_comments"
    params: NoNewCommentsParams = Field(default_factory=NoNewCommentsParams)


class SemanticCheckBlock(BaseModel):
    """Text judged against a rule prompt by the judgment capability."""

    model_config = ConfigDict(frozen=True)

    block: Literal["semantic_check"] = "semantic_check"
    params: SemanticCheckParams


class CallExistsBlock(BaseModel):
    """A linked call happened before the candidate occurred."""

    model_config = ConfigDict(frozen=True)

    block: Literal["call_exists"] = "call_exists"
    params: CallExistsParams = Field(default_factory=CallExistsParams)


LogicBlock = Annotated[
    Union[
        StatusChangeBlock,
        FieldEmptyBlock,
        TimeElapsedBlock,
        NoNewCommentsBlock,
        SemanticCheckBlock,
        CallExistsBlock,
    ],
    Field(discriminator="block"),
]


class RuleLogic(BaseModel):
    """Trigger block plus ordered condition blocks."""

    model_config = ConfigDict(frozen=True)

    trigger: LogicBlock | None = None
    conditions: list[LogicBlock] = Field(default_factory=list)

    def count_blocks(self, name: str) -> int:
        blocks = ([self.trigger] if self.trigger is not None else []) + list(self.conditions)
        return sum(1 for block in blocks if block.block == name)


class ChecklistItem(BaseModel):
    """Weighted criterion."""

    description: str
    weight: float = Field(ge=0)


class ChecklistSection(BaseModel):
    """Named group of criteria."""

    section: str
    items: list[ChecklistItem] = Field(default_factory=list)


class RuleDefinition(BaseModel):
    """Declarative audit rule."""

    model_config = ConfigDict(frozen=True)

    code: str
    name: str = ""
    description: str | None = None
    entity_type: EntityType
    logic: RuleLogic = Field(default_factory=RuleLogic)
    checklist: list[ChecklistSection] | None = None
    severity: str = "medium"
    points: int = 0
    notify: bool = False
    is_active: bool = True

    @model_validator(mode="after")
    def checklist_needs_text_entity(self) -> "RuleDefinition":
        """Checklists audit call transcripts (atomic) or stage timelines."""
        if self.checklist and self.entity_type not in ("call", "stage"):
            raise ValueError(
                f"checklist is only supported for call or stage rules, got {self.entity_type!r}"
            )
        return self

    @model_validator(mode="after")
    def one_judgment_per_candidate(self) -> "RuleDefinition":
        """At most one judgment call per candidate: one semantic_check, or a checklist."""
        judged = self.logic.count_blocks("semantic_check") + (1 if self.checklist else 0)
        if judged > 1:
            raise ValueError(
                "a rule may use either one semantic_check block or a checklist, not several judgments"
            )
        return self

    @property
    def max_checklist_score(self) -> float:
        return sum(item.weight for section in self.checklist or [] for item in section.items)
