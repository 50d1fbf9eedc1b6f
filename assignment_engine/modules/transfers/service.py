import uuid
import logging
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from assignment_engine.core.base import utcnow
from assignment_engine.core.config import settings
from assignment_engine.core.errors import (
    NotFoundError,
    ValidationFailedError,
    InvalidStateTransitionError,
    DuplicateTransferRequestError,
)
from assignment_engine.core.locks import KeyedLock
from assignment_engine.core.resilience import transactional_retry
from assignment_engine.modules.assignments.lifecycle import AssignmentLifecycle
from assignment_engine.modules.transfers.models import CaseTransferRequest
from assignment_engine.modules.transfers.repository import TransferRepository
from assignment_engine.modules.transfers.schemas import TransferRequestCreate, TransferDecision
from assignment_engine.modules.workload.service import refresh_workloads

logger = logging.getLogger(__name__)

class TransferWorkflow:
    """PENDING -> APPROVED | REJECTED | CANCELLED. Terminal states never change again."""

    def __init__(self, session: AsyncSession, locks: KeyedLock | None = None):
        self.session = session
        self.transfers = TransferRepository(session)
        self.lifecycle = AssignmentLifecycle(session, locks)

    @transactional_retry()
    async def request_transfer(self, org_id: uuid.UUID, payload: TransferRequestCreate, requested_by: uuid.UUID | None) -> CaseTransferRequest:
        if payload.from_user_id == payload.to_user_id:
            raise ValidationFailedError("from_user_id and to_user_id must differ")

        async with self.lifecycle.transition(org_id, payload.case_id):
            existing = await self.transfers.pending_for_case(org_id, payload.case_id)
            if existing is not None:
                raise DuplicateTransferRequestError(
                    f"Case {payload.case_id} already has a pending transfer request",
                    {"case_id": str(payload.case_id), "request_id": str(existing.id)},
                )
            if not await self.lifecycle.assignments.active_for_case_user(org_id, payload.case_id, payload.from_user_id):
                raise ValidationFailedError(
                    f"{payload.from_user_id} holds no active assignment on case {payload.case_id}",
                    {"case_id": str(payload.case_id), "from_user_id": str(payload.from_user_id)},
                )
            try:
                req = await self.transfers.create(
                    org_id,
                    case_id=payload.case_id,
                    from_user_id=payload.from_user_id,
                    to_user_id=payload.to_user_id,
                    requested_by=requested_by,
                    reason=payload.reason,
                    urgency=payload.urgency,
                    status="PENDING",
                    requested_at=utcnow(),
                )
            except IntegrityError as e:
                # another instance created the pending request first
                raise DuplicateTransferRequestError(
                    f"Case {payload.case_id} already has a pending transfer request", {"case_id": str(payload.case_id)}
                ) from e
            await self.lifecycle.outbox.enqueue(org_id, "TRANSFER_REQUESTED", "case", payload.case_id, {
                "request_id": str(req.id),
                "case_id": str(req.case_id),
                "from_user_id": str(req.from_user_id),
                "to_user_id": str(req.to_user_id),
                "urgency": req.urgency,
            })
        logger.info(f"Transfer {req.id} requested for case {req.case_id}: {req.from_user_id} -> {req.to_user_id} ({req.urgency})")
        return req

    @transactional_retry()
    async def process(self, org_id: uuid.UUID, request_id: uuid.UUID, decision: TransferDecision, approver: uuid.UUID | None) -> CaseTransferRequest:
        """Decide a PENDING request. On approval the case's primary role moves to ``to_user_id``
        in the same transaction that marks the request APPROVED."""
        req = await self.transfers.get(org_id, request_id)
        if req is None:
            raise NotFoundError("Transfer request", request_id)

        async with self.lifecycle.transition(org_id, req.case_id):
            req = await self.transfers.get(org_id, request_id, for_update=True)
            if req.status != "PENDING":
                raise InvalidStateTransitionError(
                    f"Transfer request {request_id} is already {req.status}",
                    {"request_id": str(request_id), "status": req.status},
                )
            if decision.decision == "APPROVED":
                assignment = await self.lifecycle._reassign(
                    org_id,
                    req.case_id,
                    req.to_user_id,
                    role_type=settings.PRIMARY_ROLE_TYPE,
                    performed_by=approver,
                    reason=req.reason,
                    action="TRANSFERRED",
                    expected_user_id=req.from_user_id,
                    details={"transfer_request_id": str(req.id)},
                )
                req.resulting_assignment_id = assignment.id
            req.status = decision.decision
            req.approved_by = approver
            req.approval_notes = decision.notes
            req.processed_at = utcnow()
            await self.session.flush()
            await self.lifecycle.outbox.enqueue(org_id, "TRANSFER_PROCESSED", "case", req.case_id, {
                "request_id": str(req.id),
                "case_id": str(req.case_id),
                "status": req.status,
                "from_user_id": str(req.from_user_id),
                "to_user_id": str(req.to_user_id),
                "assignment_id": str(req.resulting_assignment_id) if req.resulting_assignment_id else None,
            })

        logger.info(f"Transfer {req.id} on case {req.case_id} processed: {req.status}")
        if req.status == "APPROVED":
            await refresh_workloads(self.session, org_id, [req.from_user_id, req.to_user_id])
        return req

    async def get(self, org_id: uuid.UUID, request_id: uuid.UUID) -> CaseTransferRequest:
        req = await self.transfers.get(org_id, request_id)
        if req is None:
            raise NotFoundError("Transfer request", request_id)
        return req

    async def list_pending(self, org_id: uuid.UUID, limit: int = 50, offset: int = 0):
        return await self.transfers.list_pending(org_id, limit=limit, offset=offset)
