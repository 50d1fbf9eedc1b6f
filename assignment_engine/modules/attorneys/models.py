import uuid
from datetime import date
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Float, Date, ForeignKey, UniqueConstraint
from assignment_engine.core.base import Base, TimestampedTenantMixin

# ordered weakest -> strongest
PROFICIENCY_LEVELS = ("BEGINNER", "INTERMEDIATE", "ADVANCED", "EXPERT")

class AttorneyProfile(Base, TimestampedTenantMixin):
    display_name: Mapped[str] = mapped_column(String(160), index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    active: Mapped[bool] = mapped_column(default=True)
    max_capacity_points: Mapped[float | None] = mapped_column(Float, nullable=True)  # None -> DEFAULT_MAX_CAPACITY_POINTS

class AttorneyExpertise(Base, TimestampedTenantMixin):
    __table_args__ = (UniqueConstraint("attorney_id", "expertise_area", name="uq_attorney_expertise_area"),)

    attorney_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("attorneyprofile.id"), index=True)
    expertise_area: Mapped[str] = mapped_column(String(64), index=True)  # PERSONAL_INJURY, FAMILY_LAW, ...
    proficiency_level: Mapped[str] = mapped_column(String(16), default="BEGINNER")  # see PROFICIENCY_LEVELS
    years_experience: Mapped[int] = mapped_column(Integer, default=0)
    cases_handled: Mapped[int] = mapped_column(Integer, default=0)
    success_rate: Mapped[float | None] = mapped_column(Float, nullable=True)  # percentage 0..100
    last_case_date: Mapped[date | None] = mapped_column(Date, nullable=True)
