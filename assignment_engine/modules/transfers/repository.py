import uuid
from typing import Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from assignment_engine.modules.transfers.models import CaseTransferRequest

class TransferRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, org_id: uuid.UUID, **data) -> CaseTransferRequest:
        obj = CaseTransferRequest(org_id=org_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, org_id: uuid.UUID, request_id: uuid.UUID, *, for_update: bool = False) -> CaseTransferRequest | None:
        q = select(CaseTransferRequest).where(
            CaseTransferRequest.id == request_id,
            CaseTransferRequest.org_id == org_id,
            CaseTransferRequest.deleted_at.is_(None),
        )
        if for_update:
            q = q.with_for_update().execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def pending_for_case(self, org_id: uuid.UUID, case_id: uuid.UUID) -> CaseTransferRequest | None:
        q = select(CaseTransferRequest).where(
            CaseTransferRequest.org_id == org_id,
            CaseTransferRequest.case_id == case_id,
            CaseTransferRequest.status == "PENDING",
            CaseTransferRequest.deleted_at.is_(None),
        )
        res = await self.session.execute(q)
        return res.scalars().first()

    async def list_pending(self, org_id: uuid.UUID, *, limit: int = 50, offset: int = 0) -> Sequence[CaseTransferRequest]:
        q = select(CaseTransferRequest).where(
            CaseTransferRequest.org_id == org_id,
            CaseTransferRequest.status == "PENDING",
            CaseTransferRequest.deleted_at.is_(None),
        ).order_by(CaseTransferRequest.requested_at.asc(), CaseTransferRequest.id.asc()).limit(limit).offset(offset)
        res = await self.session.execute(q)
        return res.scalars().all()
