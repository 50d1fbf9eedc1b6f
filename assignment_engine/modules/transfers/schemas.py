import uuid
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

class TransferRequestCreate(BaseModel):
    case_id: uuid.UUID
    from_user_id: uuid.UUID
    to_user_id: uuid.UUID
    reason: str | None = Field(default=None, max_length=2000)
    urgency: str = Field(default="MEDIUM", pattern="^(LOW|MEDIUM|HIGH|URGENT)$")

class TransferDecision(BaseModel):
    decision: str = Field(..., pattern="^(APPROVED|REJECTED|CANCELLED)$")
    notes: str | None = Field(default=None, max_length=2000)

class TransferOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    case_id: uuid.UUID
    from_user_id: uuid.UUID
    to_user_id: uuid.UUID
    requested_by: uuid.UUID | None
    reason: str | None
    urgency: str
    status: str
    approved_by: uuid.UUID | None
    approval_notes: str | None
    requested_at: datetime
    processed_at: datetime | None
    resulting_assignment_id: uuid.UUID | None
