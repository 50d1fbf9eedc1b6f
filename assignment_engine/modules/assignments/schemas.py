import uuid
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

ROLE_TYPE_FIELD = Field(default=None, min_length=1, max_length=32)

class AssignCaseRequest(BaseModel):
    case_id: uuid.UUID
    user_id: uuid.UUID | None = None  # given: manual path, rules are not consulted
    role_type: str | None = ROLE_TYPE_FIELD
    assignment_type: str | None = Field(default=None, pattern="^(MANUAL|AUTOMATIC|RULE_BASED)$")
    effective_from: datetime | None = None
    effective_to: datetime | None = None
    workload_weight: float | None = Field(default=None, gt=0, le=10)
    notes: str | None = None
    reason: str | None = None
    # overrides what the case-management service reports (case_type, priority, client_id, practice_area, ...)
    case_attributes: dict | None = None

class ReassignRequest(BaseModel):
    case_id: uuid.UUID
    new_user_id: uuid.UUID
    role_type: str | None = ROLE_TYPE_FIELD
    reason: str | None = None
    notes: str | None = None
    workload_weight: float | None = Field(default=None, gt=0, le=10)

class DeactivateRequest(BaseModel):
    reason_code: str = Field(default="REMOVED", pattern="^(REMOVED|EXPIRED)$")
    reason: str | None = None

class RecommendRequest(BaseModel):
    case_attributes: dict | None = None

class AssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    case_id: uuid.UUID
    user_id: uuid.UUID
    role_type: str
    assignment_type: str
    assigned_by: uuid.UUID | None
    assigned_at: datetime
    effective_from: datetime
    effective_to: datetime | None
    active: bool
    workload_weight: float
    expertise_match_score: float | None
    notes: str | None
    rule_id: uuid.UUID | None

class AssignmentResult(BaseModel):
    """Outcome of assignCase. Only ASSIGNED carries an assignment; the others leave the case unassigned."""
    outcome: str  # ASSIGNED | NO_RULE | NO_ELIGIBLE_CANDIDATE
    assignment: AssignmentOut | None = None
    rule_id: uuid.UUID | None = None
    message: str | None = None
    rejected: dict[str, str] = {}

class HistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    case_assignment_id: uuid.UUID
    case_id: uuid.UUID
    user_id: uuid.UUID
    action: str
    previous_user_id: uuid.UUID | None
    new_user_id: uuid.UUID | None
    reason: str | None
    performed_by: uuid.UUID | None
    performed_at: datetime
    metadata: dict | None = Field(default=None, validation_alias="details")

class HistoryPage(BaseModel):
    items: list[HistoryOut]
    next_cursor: str | None = None

class RecommendedCandidate(BaseModel):
    user_id: uuid.UUID
    score: float
    expertise_score: float
    capacity_percentage: float
    active_cases_count: int
    preferred: bool = False
    strengths: list[str] = []
    concerns: list[str] = []

class Recommendation(BaseModel):
    case_id: uuid.UUID
    rule_id: uuid.UUID | None = None
    rule_name: str | None = None
    candidates: list[RecommendedCandidate] = []
    message: str | None = None
