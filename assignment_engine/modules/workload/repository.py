import uuid
from datetime import date
from typing import Sequence
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
from assignment_engine.modules.workload.models import UserWorkload, WorkloadCalculation

class WorkloadRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, org_id: uuid.UUID, user_id: uuid.UUID, calculation_date: date) -> UserWorkload | None:
        q = select(UserWorkload).where(
            UserWorkload.org_id == org_id,
            UserWorkload.user_id == user_id,
            UserWorkload.calculation_date == calculation_date,
            UserWorkload.deleted_at.is_(None),
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def latest(self, org_id: uuid.UUID, user_id: uuid.UUID) -> UserWorkload | None:
        q = select(UserWorkload).where(
            UserWorkload.org_id == org_id,
            UserWorkload.user_id == user_id,
            UserWorkload.deleted_at.is_(None),
        ).order_by(UserWorkload.calculation_date.desc()).limit(1)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def latest_for_users(self, org_id: uuid.UUID, user_ids: Sequence[uuid.UUID], on_or_before: date | None = None) -> dict[uuid.UUID, UserWorkload]:
        """Most recent snapshot per user; users without one are absent from the result."""
        if not user_ids:
            return {}
        conditions = [
            UserWorkload.org_id == org_id,
            UserWorkload.user_id.in_(list(user_ids)),
            UserWorkload.deleted_at.is_(None),
        ]
        if on_or_before is not None:
            conditions.append(UserWorkload.calculation_date <= on_or_before)
        q = select(UserWorkload).where(*conditions).order_by(UserWorkload.user_id, UserWorkload.calculation_date.desc())
        res = await self.session.execute(q)
        latest: dict[uuid.UUID, UserWorkload] = {}
        for row in res.scalars().all():
            latest.setdefault(row.user_id, row)
        return latest

    async def history(self, org_id: uuid.UUID, user_id: uuid.UUID, since: date) -> Sequence[UserWorkload]:
        q = select(UserWorkload).where(
            UserWorkload.org_id == org_id,
            UserWorkload.user_id == user_id,
            UserWorkload.calculation_date >= since,
            UserWorkload.deleted_at.is_(None),
        ).order_by(UserWorkload.calculation_date.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def upsert(self, org_id: uuid.UUID, user_id: uuid.UUID, calculation_date: date, **data) -> UserWorkload:
        obj = await self.get(org_id, user_id, calculation_date)
        if obj is None:
            obj = UserWorkload(org_id=org_id, user_id=user_id, calculation_date=calculation_date, **data)
            self.session.add(obj)
        else:
            for k, v in data.items():
                setattr(obj, k, v)
        await self.session.flush()
        return obj

    async def replace_details(self, workload: UserWorkload, rows: list[dict]) -> list[WorkloadCalculation]:
        await self.session.execute(delete(WorkloadCalculation).where(WorkloadCalculation.workload_id == workload.id))
        objs = [WorkloadCalculation(org_id=workload.org_id, workload_id=workload.id, **r) for r in rows]
        self.session.add_all(objs)
        await self.session.flush()
        return objs

    async def details(self, workload_id: uuid.UUID) -> Sequence[WorkloadCalculation]:
        q = select(WorkloadCalculation).where(WorkloadCalculation.workload_id == workload_id).order_by(
            WorkloadCalculation.points.desc(), WorkloadCalculation.case_id.asc()
        )
        res = await self.session.execute(q)
        return res.scalars().all()
