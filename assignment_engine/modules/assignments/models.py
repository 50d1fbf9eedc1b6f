import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, Float, JSON, ForeignKey, TIMESTAMP, Integer, UniqueConstraint, Index, event, text
from assignment_engine.core.base import Base, TimestampedTenantMixin, utcnow

ASSIGNMENT_TYPES = ("MANUAL", "AUTOMATIC", "RULE_BASED")
HISTORY_ACTIONS = ("ASSIGNED", "REASSIGNED", "REMOVED", "TRANSFERRED", "EXPIRED")

class CaseAssignment(Base, TimestampedTenantMixin):
    __table_args__ = (
        Index("ix_caseassignment_case_role_active", "org_id", "case_id", "role_type", "active"),
        Index("ix_caseassignment_user_active", "org_id", "user_id", "active"),
    )

    case_id: Mapped[uuid.UUID] = mapped_column()
    user_id: Mapped[uuid.UUID] = mapped_column()  # assignee
    role_type: Mapped[str] = mapped_column(String(32), default="LEAD_ATTORNEY")  # LEAD_ATTORNEY, CO_COUNSEL, ASSOCIATE, PARALEGAL, ...
    assignment_type: Mapped[str] = mapped_column(String(16), default="MANUAL")  # see ASSIGNMENT_TYPES
    assigned_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)
    effective_from: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)
    effective_to: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)  # None = open-ended
    active: Mapped[bool] = mapped_column(default=True)
    workload_weight: Mapped[float] = mapped_column(Float, default=1.0)
    expertise_match_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # denormalized from the case at assignment time; drives prefer-previous-attorney lookups
    rule_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    client_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    case_type: Mapped[str | None] = mapped_column(String(64), nullable=True)

class CaseAssignmentHistory(Base):
    """Append-only transition log. Rows are never updated or deleted."""
    __tablename__ = "caseassignmenthistory"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(index=True)
    case_assignment_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("caseassignment.id"), index=True)
    case_id: Mapped[uuid.UUID] = mapped_column(index=True)
    user_id: Mapped[uuid.UUID] = mapped_column()
    action: Mapped[str] = mapped_column(String(16))  # see HISTORY_ACTIONS
    previous_user_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    new_user_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    performed_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    performed_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

class AssignmentSlot(Base):
    """One row per (org, case, role): the row every transition locks and version-bumps."""
    __tablename__ = "assignmentslot"
    __table_args__ = (UniqueConstraint("org_id", "case_id", "role_type", name="uq_assignment_slot"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column()
    case_id: Mapped[uuid.UUID] = mapped_column()
    role_type: Mapped[str] = mapped_column(String(32))
    revision: Mapped[int] = mapped_column(Integer, nullable=False)
    last_transition_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=text("CURRENT_TIMESTAMP"), default=utcnow
    )

    __mapper_args__ = {"version_id_col": revision}

@event.listens_for(CaseAssignmentHistory, "before_update")
def _history_is_immutable(mapper, connection, target):
    raise ValueError("CaseAssignmentHistory rows are append-only")

@event.listens_for(CaseAssignmentHistory, "before_delete")
def _history_is_undeletable(mapper, connection, target):
    raise ValueError("CaseAssignmentHistory rows are append-only")
