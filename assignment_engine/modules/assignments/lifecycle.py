"""Assignment state machine: NONE -> ACTIVE -> (DEACTIVATED | EXPIRED).

Public transitions each run as one transaction while holding the case lock
(in-process ``KeyedLock`` plus the ``AssignmentSlot`` row lock) and append
exactly one history row per assignment they change. The underscore variants
do the same work inside a transaction the caller already owns; the transfer
workflow uses them to approve a request and reassign in a single commit.
"""

import uuid
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.ext.asyncio import AsyncSession

from assignment_engine.core.base import utcnow, as_utc
from assignment_engine.core.config import settings
from assignment_engine.core.errors import (
    NotFoundError,
    ValidationFailedError,
    OverlappingAssignmentError,
    InvalidStateTransitionError,
)
from assignment_engine.core.locks import KeyedLock, case_locks
from assignment_engine.core.resilience import transaction_scope, transactional_retry
from assignment_engine.modules.assignments.models import CaseAssignment, ASSIGNMENT_TYPES
from assignment_engine.modules.assignments.repository import (
    CaseAssignmentRepository,
    AssignmentHistoryRepository,
    AssignmentSlotRepository,
)
from assignment_engine.modules.events.outbox import OutboxService

logger = logging.getLogger(__name__)

DEACTIVATION_CODES = ("REMOVED", "EXPIRED")

def windows_overlap(existing: CaseAssignment, start: datetime, end: datetime | None) -> bool:
    """Half-open windows [from, to); a missing ``to`` never ends."""
    ex_from = as_utc(existing.effective_from)
    ex_to = as_utc(existing.effective_to)
    if end is not None and ex_from >= end:
        return False
    if ex_to is not None and ex_to <= start:
        return False
    return True

def _lapsed(row: CaseAssignment, now: datetime) -> bool:
    return row.effective_to is not None and as_utc(row.effective_to) <= now

def _current_holder(rows: Sequence[CaseAssignment], now: datetime) -> CaseAssignment | None:
    live = [r for r in rows if not _lapsed(r, now)]
    for r in live:
        if as_utc(r.effective_from) <= now:
            return r
    return live[0] if live else None

def _event_payload(row: CaseAssignment, **extra) -> dict:
    payload = {
        "assignment_id": str(row.id),
        "case_id": str(row.case_id),
        "user_id": str(row.user_id),
        "role_type": row.role_type,
        "assignment_type": row.assignment_type,
        "active": row.active,
    }
    for k, v in extra.items():
        payload[k] = str(v) if isinstance(v, uuid.UUID) else v
    return payload

class AssignmentLifecycle:
    def __init__(self, session: AsyncSession, locks: KeyedLock | None = None):
        self.session = session
        self.locks = locks or case_locks
        self.assignments = CaseAssignmentRepository(session)
        self.history = AssignmentHistoryRepository(session)
        self.slots = AssignmentSlotRepository(session)
        self.outbox = OutboxService(session)

    @asynccontextmanager
    async def transition(self, org_id: uuid.UUID, case_id: uuid.UUID):
        """Serialize on the case, run the body as one transaction and commit it."""
        async with self.locks.hold((org_id, case_id)):
            async with transaction_scope(self.session):
                try:
                    yield
                    await self.session.commit()
                except (StaleDataError, IntegrityError) as e:
                    # another writer changed the slot between our read and our write
                    raise OverlappingAssignmentError(
                        "Concurrent assignment change on this case; re-read and retry",
                        {"case_id": str(case_id)},
                    ) from e

    # ---- Public transitions ----

    @transactional_retry()
    async def create(self, org_id: uuid.UUID, case_id: uuid.UUID, user_id: uuid.UUID, **fields) -> CaseAssignment:
        async with self.transition(org_id, case_id):
            row = await self._create(org_id, case_id, user_id, **fields)
        logger.info(f"Assigned case {case_id} ({row.role_type}) to {user_id} [{row.assignment_type}] as {row.id}")
        return row

    @transactional_retry()
    async def deactivate(
        self,
        org_id: uuid.UUID,
        assignment_id: uuid.UUID,
        *,
        reason_code: str = "REMOVED",
        reason: str | None = None,
        performed_by: uuid.UUID | None = None,
    ) -> CaseAssignment:
        """Deactivate one assignment. Deactivating an inactive assignment is a successful no-op."""
        if reason_code not in DEACTIVATION_CODES:
            raise ValidationFailedError(f"reason_code must be one of {', '.join(DEACTIVATION_CODES)}", {"reason_code": reason_code})
        row = await self.assignments.get(org_id, assignment_id)
        if row is None:
            raise NotFoundError("Assignment", assignment_id)
        async with self.transition(org_id, row.case_id):
            row, changed = await self._deactivate_locked(org_id, row, reason_code, performed_by, reason)
        if changed:
            logger.info(f"Deactivated assignment {assignment_id} on case {row.case_id} ({reason_code})")
        else:
            logger.debug(f"Assignment {assignment_id} already inactive; nothing to do")
        return row

    @transactional_retry()
    async def reassign(self, org_id: uuid.UUID, case_id: uuid.UUID, new_user_id: uuid.UUID, **fields) -> CaseAssignment:
        async with self.transition(org_id, case_id):
            row = await self._reassign(org_id, case_id, new_user_id, **fields)
        logger.info(f"Reassigned case {case_id} ({row.role_type}) to {new_user_id}")
        return row

    @transactional_retry()
    async def unassign(
        self,
        org_id: uuid.UUID,
        case_id: uuid.UUID,
        user_id: uuid.UUID,
        *,
        reason_code: str = "REMOVED",
        reason: str | None = None,
        performed_by: uuid.UUID | None = None,
    ) -> list[CaseAssignment]:
        """Deactivate every active assignment ``user_id`` holds on the case, whatever the role."""
        if reason_code not in DEACTIVATION_CODES:
            raise ValidationFailedError(f"reason_code must be one of {', '.join(DEACTIVATION_CODES)}", {"reason_code": reason_code})
        async with self.transition(org_id, case_id):
            rows = await self.assignments.active_for_case_user(org_id, case_id, user_id)
            if not rows:
                raise NotFoundError("Assignment", f"{case_id}/{user_id}")
            removed = []
            for row in rows:
                row, changed = await self._deactivate_locked(org_id, row, reason_code, performed_by, reason)
                if changed:
                    removed.append(row)
        logger.info(f"Unassigned {user_id} from case {case_id} ({len(removed)} assignments)")
        return removed

    async def expire_lapsed(self, org_id: uuid.UUID, now: datetime | None = None, limit: int = 500) -> int:
        """Deactivate active assignments whose window has ended. One transaction per assignment."""
        now = now or utcnow()
        expired = 0
        # plain values: a failed transition rolls back and expires loaded rows
        pending = [(r.id, r.case_id, r.role_type) for r in await self.assignments.lapsed(org_id, now, limit=limit)]
        for assignment_id, case_id, role_type in pending:
            try:
                async with self.transition(org_id, case_id):
                    slot = await self.slots.lock(org_id, case_id, role_type)
                    fresh = await self.assignments.get(org_id, assignment_id, for_update=True)
                    if fresh is None or not fresh.active or not _lapsed(fresh, now):
                        continue
                    await self._deactivate(fresh, "EXPIRED", None, "Effective window elapsed", now)
                    await self.slots.bump(slot)
                    await self.outbox.enqueue(org_id, "CASE_UNASSIGNED", "case", fresh.case_id, _event_payload(fresh, reason_code="EXPIRED"))
            except OverlappingAssignmentError:
                logger.warning(f"Assignment {assignment_id} changed while expiring; leaving it for the next sweep")
                continue
            expired += 1
        if expired:
            logger.info(f"Expired {expired} lapsed assignments in org {org_id}")
        return expired

    # ---- Steps inside a caller-owned transaction ----

    async def _insert_assignment(self, org_id: uuid.UUID, **data) -> CaseAssignment:
        return await self.assignments.create(org_id, **data)

    async def _create(
        self,
        org_id: uuid.UUID,
        case_id: uuid.UUID,
        user_id: uuid.UUID,
        *,
        role_type: str | None = None,
        assignment_type: str = "MANUAL",
        performed_by: uuid.UUID | None = None,
        effective_from: datetime | None = None,
        effective_to: datetime | None = None,
        reason: str | None = None,
        **attrs,
    ) -> CaseAssignment:
        role_type = role_type or settings.PRIMARY_ROLE_TYPE
        if assignment_type not in ASSIGNMENT_TYPES:
            raise ValidationFailedError(f"Unknown assignment type {assignment_type}", {"assignment_type": assignment_type})
        now = utcnow()
        start = as_utc(effective_from) or now
        end = as_utc(effective_to)
        if end is not None and end <= start:
            raise ValidationFailedError("effective_to must be after effective_from")

        slot = await self.slots.lock(org_id, case_id, role_type)
        for existing in await self.assignments.active_for_case_role(org_id, case_id, role_type, for_update=True):
            if _lapsed(existing, now):
                # window already over but not swept yet
                await self._deactivate(existing, "EXPIRED", performed_by, "Effective window elapsed", now)
                continue
            if windows_overlap(existing, start, end):
                raise OverlappingAssignmentError(
                    f"Case {case_id} already has an active {role_type} assignment for this window",
                    {"case_id": str(case_id), "role_type": role_type, "assignment_id": str(existing.id), "user_id": str(existing.user_id)},
                )

        row = await self._insert_assignment(
            org_id,
            case_id=case_id,
            user_id=user_id,
            role_type=role_type,
            assignment_type=assignment_type,
            assigned_by=performed_by,
            assigned_at=now,
            effective_from=start,
            effective_to=end,
            active=True,
            **attrs,
        )
        await self.history.append(
            org_id,
            case_assignment_id=row.id,
            case_id=case_id,
            user_id=user_id,
            action="ASSIGNED",
            new_user_id=user_id,
            reason=reason,
            performed_by=performed_by,
            performed_at=now,
            details={"role_type": role_type, "assignment_type": assignment_type, "rule_id": str(row.rule_id) if row.rule_id else None},
        )
        await self.slots.bump(slot)
        await self.outbox.enqueue(org_id, "CASE_ASSIGNED", "case", case_id, _event_payload(row))
        return row

    async def _deactivate(
        self,
        row: CaseAssignment,
        reason_code: str,
        performed_by: uuid.UUID | None,
        reason: str | None,
        now: datetime,
        *,
        record_history: bool = True,
    ) -> bool:
        if not row.active:
            return False
        row.active = False
        # an expiring row keeps the end it already had
        if reason_code != "EXPIRED" or not _lapsed(row, now):
            row.effective_to = max(now, as_utc(row.effective_from))
        if record_history:
            await self.history.append(
                row.org_id,
                case_assignment_id=row.id,
                case_id=row.case_id,
                user_id=row.user_id,
                action=reason_code,
                previous_user_id=row.user_id,
                reason=reason,
                performed_by=performed_by,
                performed_at=now,
                details={"role_type": row.role_type},
            )
        await self.session.flush()
        return True

    async def _deactivate_locked(
        self,
        org_id: uuid.UUID,
        row: CaseAssignment,
        reason_code: str,
        performed_by: uuid.UUID | None,
        reason: str | None,
    ) -> tuple[CaseAssignment, bool]:
        slot = await self.slots.lock(org_id, row.case_id, row.role_type)
        fresh = await self.assignments.get(org_id, row.id, for_update=True)
        if fresh is None:
            raise NotFoundError("Assignment", row.id)
        changed = await self._deactivate(fresh, reason_code, performed_by, reason, utcnow())
        if changed:
            await self.slots.bump(slot)
            await self.outbox.enqueue(org_id, "CASE_UNASSIGNED", "case", fresh.case_id, _event_payload(fresh, reason_code=reason_code))
        return fresh, changed

    async def _reassign(
        self,
        org_id: uuid.UUID,
        case_id: uuid.UUID,
        new_user_id: uuid.UUID,
        *,
        role_type: str | None = None,
        performed_by: uuid.UUID | None = None,
        reason: str | None = None,
        notes: str | None = None,
        workload_weight: float | None = None,
        action: str = "REASSIGNED",
        expected_user_id: uuid.UUID | None = None,
        details: dict | None = None,
    ) -> CaseAssignment:
        """Swap the holder of (case, role): deactivate current, insert new, one history row.

        With ``expected_user_id`` the swap only happens if that attorney is the
        current holder.
        """
        role_type = role_type or settings.PRIMARY_ROLE_TYPE
        now = utcnow()
        slot = await self.slots.lock(org_id, case_id, role_type)
        current = list(await self.assignments.active_for_case_role(org_id, case_id, role_type, for_update=True))
        previous = _current_holder(current, now)

        if expected_user_id is not None and (previous is None or previous.user_id != expected_user_id):
            raise InvalidStateTransitionError(
                f"{expected_user_id} no longer holds the {role_type} assignment on case {case_id}",
                {"case_id": str(case_id), "current_user_id": str(previous.user_id) if previous else None},
            )
        if previous is not None and previous.user_id == new_user_id:
            raise InvalidStateTransitionError(
                f"Case {case_id} is already assigned to {new_user_id} as {role_type}",
                {"case_id": str(case_id), "assignment_id": str(previous.id)},
            )

        for row in current:
            if row is previous:
                # covered by the single reassignment history row below
                await self._deactivate(row, "REMOVED", performed_by, reason, now, record_history=False)
            else:
                code = "EXPIRED" if _lapsed(row, now) else "REMOVED"
                await self._deactivate(row, code, performed_by, reason, now)

        new_row = await self._insert_assignment(
            org_id,
            case_id=case_id,
            user_id=new_user_id,
            role_type=role_type,
            assignment_type="MANUAL",
            assigned_by=performed_by,
            assigned_at=now,
            effective_from=now,
            effective_to=None,
            active=True,
            workload_weight=workload_weight if workload_weight is not None else (previous.workload_weight if previous else 1.0),
            notes=notes,
            client_id=previous.client_id if previous else None,
            case_type=previous.case_type if previous else None,
        )
        meta = {"role_type": role_type, "previous_assignment_id": str(previous.id) if previous else None}
        meta.update(details or {})
        await self.history.append(
            org_id,
            case_assignment_id=new_row.id,
            case_id=case_id,
            user_id=new_user_id,
            action=action,
            previous_user_id=previous.user_id if previous else None,
            new_user_id=new_user_id,
            reason=reason,
            performed_by=performed_by,
            performed_at=now,
            details=meta,
        )
        await self.slots.bump(slot)
        await self.outbox.enqueue(
            org_id, "CASE_REASSIGNED", "case", case_id,
            _event_payload(new_row, previous_user_id=previous.user_id if previous else None, action=action),
        )
        return new_row
