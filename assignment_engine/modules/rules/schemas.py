import uuid
from datetime import datetime
from typing import Annotated
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from assignment_engine.core.errors import RuleEvaluationError
from assignment_engine.modules.rules.conditions import parse_conditions

RULE_TYPE_PATTERN = "^(EXPERTISE_BASED|WORKLOAD_BASED|CLIENT_CONTINUITY|CUSTOM)$"

class RuleActions(BaseModel):
    """Recognized ``rule_actions`` keys; unknown keys are kept for forward compatibility."""
    model_config = ConfigDict(extra="allow")

    role_type: str | None = Field(default=None, min_length=1, max_length=32)
    workload_weight: float | None = Field(default=None, gt=0, le=10)
    notify: bool = False

def _validate_conditions(v: dict | None) -> dict | None:
    # reject malformed predicates at write time; the engine still guards at read time
    try:
        parse_conditions(v)
    except RuleEvaluationError as e:
        raise ValueError(e.message)
    return v

RuleConditions = Annotated[dict | None, AfterValidator(_validate_conditions)]

class RuleCreate(BaseModel):
    rule_name: str = Field(..., min_length=1, max_length=128)
    rule_type: str = Field(default="EXPERTISE_BASED", pattern=RULE_TYPE_PATTERN)
    case_type: str | None = Field(default=None, max_length=64)
    priority_order: int = Field(default=100, ge=0)
    active: bool = True
    max_workload_percentage: float = Field(default=85.0, ge=0, le=300)
    min_expertise_score: float = Field(default=0.0, ge=0, le=100)
    prefer_previous_attorney: bool = False
    rule_conditions: RuleConditions = None
    rule_actions: RuleActions | None = None

class RuleUpdate(BaseModel):
    rule_name: str | None = Field(default=None, min_length=1, max_length=128)
    rule_type: str | None = Field(default=None, pattern=RULE_TYPE_PATTERN)
    case_type: str | None = Field(default=None, max_length=64)
    priority_order: int | None = Field(default=None, ge=0)
    active: bool | None = None
    max_workload_percentage: float | None = Field(default=None, ge=0, le=300)
    min_expertise_score: float | None = Field(default=None, ge=0, le=100)
    prefer_previous_attorney: bool | None = None
    rule_conditions: RuleConditions = None
    rule_actions: RuleActions | None = None

class RuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    org_id: uuid.UUID
    rule_name: str
    rule_type: str
    case_type: str | None
    priority_order: int
    active: bool
    max_workload_percentage: float
    min_expertise_score: float
    prefer_previous_attorney: bool
    rule_conditions: dict | None
    rule_actions: dict | None
    created_at: datetime | None = None
    updated_at: datetime | None = None
