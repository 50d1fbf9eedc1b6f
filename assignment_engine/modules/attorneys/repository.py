import uuid
from typing import Sequence
from sqlalchemy import select, case
from sqlalchemy.ext.asyncio import AsyncSession
from assignment_engine.modules.attorneys.models import AttorneyProfile, AttorneyExpertise, PROFICIENCY_LEVELS

class AttorneyRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, org_id: uuid.UUID, **data) -> AttorneyProfile:
        obj = AttorneyProfile(org_id=org_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, org_id: uuid.UUID, attorney_id: uuid.UUID) -> AttorneyProfile | None:
        q = select(AttorneyProfile).where(
            AttorneyProfile.id == attorney_id,
            AttorneyProfile.org_id == org_id,
            AttorneyProfile.deleted_at.is_(None),
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_profiles(self, org_id: uuid.UUID, *, active: bool | None = None, limit: int = 100, offset: int = 0) -> Sequence[AttorneyProfile]:
        conditions = [AttorneyProfile.org_id == org_id, AttorneyProfile.deleted_at.is_(None)]
        if active is not None: conditions.append(AttorneyProfile.active.is_(active))
        q = select(AttorneyProfile).where(*conditions).order_by(AttorneyProfile.display_name.asc()).limit(limit).offset(offset)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def list_active(self, org_id: uuid.UUID, practice_area: str | None = None) -> Sequence[AttorneyProfile]:
        """Active attorneys; with a practice area, only those holding an expertise record for it."""
        q = select(AttorneyProfile).where(
            AttorneyProfile.org_id == org_id,
            AttorneyProfile.active.is_(True),
            AttorneyProfile.deleted_at.is_(None),
        )
        if practice_area:
            q = q.join(AttorneyExpertise, AttorneyExpertise.attorney_id == AttorneyProfile.id).where(
                AttorneyExpertise.expertise_area == practice_area,
                AttorneyExpertise.deleted_at.is_(None),
            )
        res = await self.session.execute(q.order_by(AttorneyProfile.id.asc()))
        return res.scalars().unique().all()

    async def update_fields(self, org_id: uuid.UUID, attorney_id: uuid.UUID, **data) -> AttorneyProfile | None:
        obj = await self.get(org_id, attorney_id)
        if not obj:
            return None
        for k, v in data.items():
            if v is not None:
                setattr(obj, k, v)
        await self.session.flush()
        return obj

    async def org_ids_with_active_attorneys(self) -> list[uuid.UUID]:
        q = select(AttorneyProfile.org_id).where(
            AttorneyProfile.active.is_(True),
            AttorneyProfile.deleted_at.is_(None),
        ).distinct()
        res = await self.session.execute(q)
        return list(res.scalars().all())

class ExpertiseRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, org_id: uuid.UUID, attorney_id: uuid.UUID, area: str) -> AttorneyExpertise | None:
        q = select(AttorneyExpertise).where(
            AttorneyExpertise.org_id == org_id,
            AttorneyExpertise.attorney_id == attorney_id,
            AttorneyExpertise.expertise_area == area,
            AttorneyExpertise.deleted_at.is_(None),
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def upsert(self, org_id: uuid.UUID, attorney_id: uuid.UUID, area: str, **data) -> AttorneyExpertise:
        obj = await self.get(org_id, attorney_id, area)
        if obj is None:
            obj = AttorneyExpertise(org_id=org_id, attorney_id=attorney_id, expertise_area=area, **data)
            self.session.add(obj)
        else:
            for k, v in data.items():
                setattr(obj, k, v)
        await self.session.flush()
        return obj

    async def list_for_attorney(self, org_id: uuid.UUID, attorney_id: uuid.UUID) -> Sequence[AttorneyExpertise]:
        rank = case({lvl: i for i, lvl in enumerate(PROFICIENCY_LEVELS)}, value=AttorneyExpertise.proficiency_level, else_=-1)
        q = select(AttorneyExpertise).where(
            AttorneyExpertise.org_id == org_id,
            AttorneyExpertise.attorney_id == attorney_id,
            AttorneyExpertise.deleted_at.is_(None),
        ).order_by(rank.desc(), AttorneyExpertise.expertise_area.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def list_for_area(self, org_id: uuid.UUID, area: str, attorney_ids: list[uuid.UUID]) -> Sequence[AttorneyExpertise]:
        if not attorney_ids:
            return []
        q = select(AttorneyExpertise).where(
            AttorneyExpertise.org_id == org_id,
            AttorneyExpertise.expertise_area == area,
            AttorneyExpertise.attorney_id.in_(attorney_ids),
            AttorneyExpertise.deleted_at.is_(None),
        )
        res = await self.session.execute(q)
        return res.scalars().all()
