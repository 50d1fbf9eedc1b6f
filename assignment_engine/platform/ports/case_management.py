import uuid
from datetime import datetime
from typing import Protocol, runtime_checkable
from pydantic import BaseModel, ConfigDict

class CaseAttributes(BaseModel):
    """Case fields the engine matches rules against; unknown fields are kept in ``extra``."""
    model_config = ConfigDict(extra="allow")

    case_id: uuid.UUID
    case_type: str | None = None
    priority: str | None = None
    client_id: str | None = None
    practice_area: str | None = None

    def as_map(self) -> dict:
        return self.model_dump(mode="json")

class TaskMetrics(BaseModel):
    overdue_tasks_count: int = 0
    upcoming_deadlines_count: int = 0
    billable_hours_week: float = 0.0

@runtime_checkable
class CaseManagementPort(Protocol):
    async def get_case_attributes(self, org_id: uuid.UUID, case_id: uuid.UUID) -> CaseAttributes | None: ...

    async def get_task_metrics(self, org_id: uuid.UUID, attorney_id: uuid.UUID, deadline_horizon: datetime) -> TaskMetrics: ...
