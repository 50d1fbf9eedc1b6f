import uuid
from datetime import date, datetime
from pydantic import BaseModel, ConfigDict

class WorkloadCaseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    case_id: uuid.UUID
    assignment_id: uuid.UUID | None = None
    role_type: str
    workload_weight: float
    points: float

class WorkloadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    calculation_date: date
    active_cases_count: int
    total_workload_points: float
    max_capacity_points: float
    capacity_percentage: float
    billable_hours_week: float
    overdue_tasks_count: int
    upcoming_deadlines_count: int
    last_calculated_at: datetime | None = None
    status: str | None = None
    cases: list[WorkloadCaseOut] = []

class WorkloadTrendPoint(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    calculation_date: date
    capacity_percentage: float
    total_workload_points: float
    active_cases_count: int

class WorkloadAnalytics(BaseModel):
    as_of: date
    total_attorneys: int
    overloaded_count: int
    available_count: int
    average_capacity: float
    by_status: dict[str, int]

class RecalculationReport(BaseModel):
    organizations: int = 0
    expired_assignments: int = 0
    recalculated: int = 0
    failed: int = 0
