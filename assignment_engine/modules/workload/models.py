import uuid
from datetime import date, datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Float, Date, ForeignKey, TIMESTAMP, UniqueConstraint
from assignment_engine.core.base import Base, TimestampedTenantMixin, utcnow

class UserWorkload(Base, TimestampedTenantMixin):
    """Workload snapshot of one attorney for one calculation date. Overwritten on recalculation."""
    __table_args__ = (UniqueConstraint("org_id", "user_id", "calculation_date", name="uq_userworkload_user_date"),)

    user_id: Mapped[uuid.UUID] = mapped_column(index=True)
    calculation_date: Mapped[date] = mapped_column(Date, index=True)
    active_cases_count: Mapped[int] = mapped_column(Integer, default=0)
    total_workload_points: Mapped[float] = mapped_column(Float, default=0.0)
    max_capacity_points: Mapped[float] = mapped_column(Float, default=40.0)
    capacity_percentage: Mapped[float] = mapped_column(Float, default=0.0)
    billable_hours_week: Mapped[float] = mapped_column(Float, default=0.0)
    overdue_tasks_count: Mapped[int] = mapped_column(Integer, default=0)
    upcoming_deadlines_count: Mapped[int] = mapped_column(Integer, default=0)
    last_calculated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)

class WorkloadCalculation(Base, TimestampedTenantMixin):
    """Per-assignment contribution to a snapshot; replaced wholesale with its snapshot."""

    workload_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("userworkload.id", ondelete="CASCADE"), index=True)
    case_id: Mapped[uuid.UUID] = mapped_column()
    assignment_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    role_type: Mapped[str] = mapped_column(String(32))
    workload_weight: Mapped[float] = mapped_column(Float, default=1.0)
    points: Mapped[float] = mapped_column(Float, default=0.0)
