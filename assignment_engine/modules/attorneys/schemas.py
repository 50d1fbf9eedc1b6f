import uuid
from datetime import date, datetime
from pydantic import BaseModel, ConfigDict, Field

PROFICIENCY_PATTERN = "^(BEGINNER|INTERMEDIATE|ADVANCED|EXPERT)$"

class AttorneyCreate(BaseModel):
    id: uuid.UUID | None = None  # reuse the identity-service user id when known
    display_name: str = Field(..., min_length=1, max_length=160)
    email: str | None = None
    active: bool = True
    max_capacity_points: float | None = Field(default=None, gt=0)

class AttorneyUpdate(BaseModel):
    display_name: str | None = Field(default=None, min_length=1, max_length=160)
    email: str | None = None
    active: bool | None = None
    max_capacity_points: float | None = Field(default=None, gt=0)

class AttorneyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    org_id: uuid.UUID
    display_name: str
    email: str | None
    active: bool
    max_capacity_points: float | None

class ExpertiseUpsert(BaseModel):
    expertise_area: str = Field(..., min_length=1, max_length=64)
    proficiency_level: str = Field(..., pattern=PROFICIENCY_PATTERN)
    years_experience: int = Field(default=0, ge=0)
    cases_handled: int = Field(default=0, ge=0)
    success_rate: float | None = Field(default=None, ge=0, le=100)
    last_case_date: date | None = None

class ExpertiseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    attorney_id: uuid.UUID
    expertise_area: str
    proficiency_level: str
    years_experience: int
    cases_handled: int
    success_rate: float | None
    last_case_date: date | None
    updated_at: datetime | None = None

class ExpertiseScoreOut(BaseModel):
    attorney_id: uuid.UUID
    practice_area: str
    score: float

class CaseOutcome(BaseModel):
    successful: bool
    closed_on: date | None = None
