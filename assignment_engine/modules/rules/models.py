from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Float, JSON
from assignment_engine.core.base import Base, TimestampedTenantMixin

class AssignmentRule(Base, TimestampedTenantMixin):
    rule_name: Mapped[str] = mapped_column(String(128))
    rule_type: Mapped[str] = mapped_column(String(32), default="EXPERTISE_BASED")  # EXPERTISE_BASED | WORKLOAD_BASED | CLIENT_CONTINUITY | CUSTOM
    case_type: Mapped[str | None] = mapped_column(String(64), nullable=True)  # None matches every case type
    priority_order: Mapped[int] = mapped_column(Integer, default=100, index=True)
    active: Mapped[bool] = mapped_column(default=True)
    max_workload_percentage: Mapped[float] = mapped_column(Float, default=85.0)
    min_expertise_score: Mapped[float] = mapped_column(Float, default=0.0)
    prefer_previous_attorney: Mapped[bool] = mapped_column(default=False)
    rule_conditions: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # {"priority": "HIGH", "claim_value": {"op": "gte", "value": 50000}}
    rule_actions: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # {"role_type": "LEAD_ATTORNEY", "workload_weight": 1.5, "notify": true}
