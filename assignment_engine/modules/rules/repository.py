import uuid
from typing import Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from assignment_engine.modules.rules.models import AssignmentRule

class AssignmentRuleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, org_id: uuid.UUID, **data) -> AssignmentRule:
        obj = AssignmentRule(org_id=org_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, org_id: uuid.UUID, rule_id: uuid.UUID) -> AssignmentRule | None:
        q = select(AssignmentRule).where(
            AssignmentRule.id == rule_id,
            AssignmentRule.org_id == org_id,
            AssignmentRule.deleted_at.is_(None),
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_active(self, org_id: uuid.UUID) -> Sequence[AssignmentRule]:
        # ties on priority_order fall back to creation order so evaluation is reproducible
        q = select(AssignmentRule).where(
            AssignmentRule.org_id == org_id,
            AssignmentRule.active.is_(True),
            AssignmentRule.deleted_at.is_(None),
        ).order_by(AssignmentRule.priority_order.asc(), AssignmentRule.created_at.asc(), AssignmentRule.id.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def list(self, org_id: uuid.UUID, *, include_inactive: bool = False) -> Sequence[AssignmentRule]:
        conditions = [AssignmentRule.org_id == org_id, AssignmentRule.deleted_at.is_(None)]
        if not include_inactive:
            conditions.append(AssignmentRule.active.is_(True))
        q = select(AssignmentRule).where(*conditions).order_by(AssignmentRule.priority_order.asc(), AssignmentRule.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def update_fields(self, org_id: uuid.UUID, rule_id: uuid.UUID, **data) -> AssignmentRule | None:
        obj = await self.get(org_id, rule_id)
        if not obj:
            return None
        for k, v in data.items():
            setattr(obj, k, v)
        await self.session.flush()
        return obj
