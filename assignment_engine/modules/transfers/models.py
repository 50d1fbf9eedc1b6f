import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, TIMESTAMP, Index, text
from assignment_engine.core.base import Base, TimestampedTenantMixin, utcnow

TRANSFER_STATUSES = ("PENDING", "APPROVED", "REJECTED", "CANCELLED")
TRANSFER_URGENCIES = ("LOW", "MEDIUM", "HIGH", "URGENT")

class CaseTransferRequest(Base, TimestampedTenantMixin):
    __table_args__ = (
        # at most one outstanding request per case
        Index(
            "uq_casetransferrequest_pending_case", "org_id", "case_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    case_id: Mapped[uuid.UUID] = mapped_column(index=True)
    from_user_id: Mapped[uuid.UUID] = mapped_column()
    to_user_id: Mapped[uuid.UUID] = mapped_column()
    requested_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    urgency: Mapped[str] = mapped_column(String(8), default="MEDIUM")  # see TRANSFER_URGENCIES
    status: Mapped[str] = mapped_column(String(16), default="PENDING", index=True)  # see TRANSFER_STATUSES
    approved_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)  # whoever processed it
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    requested_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), default=utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    resulting_assignment_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
