import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy import select, and_, or_, func
from sqlalchemy.ext.asyncio import AsyncSession
from assignment_engine.core.base import utcnow
from assignment_engine.modules.assignments.models import CaseAssignment, CaseAssignmentHistory, AssignmentSlot

class AssignmentSlotRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def lock(self, org_id: uuid.UUID, case_id: uuid.UUID, role_type: str) -> AssignmentSlot:
        """SELECT ... FOR UPDATE the slot row, creating it on first use.

        Two transactions racing to create the same slot collide on the unique
        constraint; the loser gets an IntegrityError at flush.
        """
        q = select(AssignmentSlot).where(
            AssignmentSlot.org_id == org_id,
            AssignmentSlot.case_id == case_id,
            AssignmentSlot.role_type == role_type,
        ).with_for_update().execution_options(populate_existing=True)
        res = await self.session.execute(q)
        slot = res.scalar_one_or_none()
        if slot is None:
            slot = AssignmentSlot(org_id=org_id, case_id=case_id, role_type=role_type)
            self.session.add(slot)
            await self.session.flush()
        return slot

    async def bump(self, slot: AssignmentSlot) -> None:
        # any UPDATE increments the revision; a concurrent writer fails with StaleDataError
        slot.last_transition_at = utcnow()
        await self.session.flush()

class CaseAssignmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, org_id: uuid.UUID, **data) -> CaseAssignment:
        obj = CaseAssignment(org_id=org_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, org_id: uuid.UUID, assignment_id: uuid.UUID, *, for_update: bool = False) -> CaseAssignment | None:
        q = select(CaseAssignment).where(
            CaseAssignment.id == assignment_id,
            CaseAssignment.org_id == org_id,
            CaseAssignment.deleted_at.is_(None),
        )
        if for_update:
            q = q.with_for_update().execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def active_for_case_role(self, org_id: uuid.UUID, case_id: uuid.UUID, role_type: str, *, for_update: bool = False) -> Sequence[CaseAssignment]:
        q = select(CaseAssignment).where(
            CaseAssignment.org_id == org_id,
            CaseAssignment.case_id == case_id,
            CaseAssignment.role_type == role_type,
            CaseAssignment.active.is_(True),
            CaseAssignment.deleted_at.is_(None),
        ).order_by(CaseAssignment.effective_from.asc())
        if for_update:
            q = q.with_for_update().execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def active_for_case(self, org_id: uuid.UUID, case_id: uuid.UUID) -> Sequence[CaseAssignment]:
        q = select(CaseAssignment).where(
            CaseAssignment.org_id == org_id,
            CaseAssignment.case_id == case_id,
            CaseAssignment.active.is_(True),
            CaseAssignment.deleted_at.is_(None),
        ).order_by(CaseAssignment.role_type.asc(), CaseAssignment.assigned_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def active_for_case_user(self, org_id: uuid.UUID, case_id: uuid.UUID, user_id: uuid.UUID) -> Sequence[CaseAssignment]:
        q = select(CaseAssignment).where(
            CaseAssignment.org_id == org_id,
            CaseAssignment.case_id == case_id,
            CaseAssignment.user_id == user_id,
            CaseAssignment.active.is_(True),
            CaseAssignment.deleted_at.is_(None),
        )
        res = await self.session.execute(q)
        return res.scalars().all()

    async def list_for_user(self, org_id: uuid.UUID, user_id: uuid.UUID, *, active_only: bool = True, limit: int = 50, offset: int = 0) -> Sequence[CaseAssignment]:
        conditions = [
            CaseAssignment.org_id == org_id,
            CaseAssignment.user_id == user_id,
            CaseAssignment.deleted_at.is_(None),
        ]
        if active_only: conditions.append(CaseAssignment.active.is_(True))
        q = select(CaseAssignment).where(and_(*conditions)).order_by(CaseAssignment.assigned_at.desc()).limit(limit).offset(offset)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def active_for_user(self, org_id: uuid.UUID, user_id: uuid.UUID, as_of: datetime) -> Sequence[CaseAssignment]:
        """Assignments counting toward the attorney's workload at ``as_of``."""
        q = select(CaseAssignment).where(
            CaseAssignment.org_id == org_id,
            CaseAssignment.user_id == user_id,
            CaseAssignment.active.is_(True),
            CaseAssignment.deleted_at.is_(None),
            CaseAssignment.effective_from <= as_of,
        ).order_by(CaseAssignment.case_id.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def previous_attorney(self, org_id: uuid.UUID, *, case_id: uuid.UUID, role_type: str, client_id: str | None, case_type: str | None) -> uuid.UUID | None:
        """Most recent assignee of this case, or of the same client and matter type."""
        match = [CaseAssignment.case_id == case_id]
        if client_id:
            same_client = CaseAssignment.client_id == client_id
            if case_type:
                same_client = and_(same_client, func.upper(CaseAssignment.case_type) == case_type.upper())
            match.append(same_client)
        q = select(CaseAssignment.user_id).where(
            CaseAssignment.org_id == org_id,
            CaseAssignment.role_type == role_type,
            CaseAssignment.deleted_at.is_(None),
            or_(*match),
        ).order_by(CaseAssignment.assigned_at.desc(), CaseAssignment.id.asc()).limit(1)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def lapsed(self, org_id: uuid.UUID, now: datetime, limit: int = 500) -> Sequence[CaseAssignment]:
        q = select(CaseAssignment).where(
            CaseAssignment.org_id == org_id,
            CaseAssignment.active.is_(True),
            CaseAssignment.deleted_at.is_(None),
            CaseAssignment.effective_to.is_not(None),
            CaseAssignment.effective_to < now,
        ).order_by(CaseAssignment.effective_to.asc()).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def count_active(self, org_id: uuid.UUID, case_id: uuid.UUID, role_type: str) -> int:
        q = select(func.count()).select_from(CaseAssignment).where(
            CaseAssignment.org_id == org_id,
            CaseAssignment.case_id == case_id,
            CaseAssignment.role_type == role_type,
            CaseAssignment.active.is_(True),
        )
        return (await self.session.execute(q)).scalar_one()

class AssignmentHistoryRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, org_id: uuid.UUID, **data) -> CaseAssignmentHistory:
        obj = CaseAssignmentHistory(org_id=org_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def list_for_case(self, org_id: uuid.UUID, case_id: uuid.UUID, *, limit: int = 50, after: tuple[datetime, uuid.UUID] | None = None) -> Sequence[CaseAssignmentHistory]:
        """Oldest first; ``after`` is the (performed_at, id) of the last row of the previous page."""
        conditions = [CaseAssignmentHistory.org_id == org_id, CaseAssignmentHistory.case_id == case_id]
        if after is not None:
            at, last_id = after
            conditions.append(or_(
                CaseAssignmentHistory.performed_at > at,
                and_(CaseAssignmentHistory.performed_at == at, CaseAssignmentHistory.id > last_id),
            ))
        q = select(CaseAssignmentHistory).where(*conditions).order_by(
            CaseAssignmentHistory.performed_at.asc(), CaseAssignmentHistory.id.asc()
        ).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def count_for_case(self, org_id: uuid.UUID, case_id: uuid.UUID) -> int:
        q = select(func.count()).select_from(CaseAssignmentHistory).where(
            CaseAssignmentHistory.org_id == org_id,
            CaseAssignmentHistory.case_id == case_id,
        )
        return (await self.session.execute(q)).scalar_one()
