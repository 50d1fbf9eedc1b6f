import uuid
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from assignment_engine.core.db import get_session
from assignment_engine.core.security import get_principal, require_scopes, Principal
from assignment_engine.modules.attorneys.schemas import (
    AttorneyCreate, AttorneyUpdate, AttorneyOut,
    ExpertiseUpsert, ExpertiseOut, ExpertiseScoreOut, CaseOutcome,
)
from assignment_engine.modules.attorneys.service import AttorneyExpertiseStore

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> AttorneyExpertiseStore:
    return AttorneyExpertiseStore(session)

@router.post("/attorneys", response_model=AttorneyOut, dependencies=[Depends(require_scopes("attorneys:write"))])
async def create_attorney(
    payload: AttorneyCreate,
    principal: Principal = Depends(get_principal),
    service: AttorneyExpertiseStore = Depends(svc),
):
    return await service.create_attorney(principal.org_id, payload)

@router.get("/attorneys", response_model=list[AttorneyOut], dependencies=[Depends(require_scopes("attorneys:read"))])
async def list_attorneys(
    active: bool | None = None,
    limit: int = Query(100, ge=1, le=500), offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_principal),
    service: AttorneyExpertiseStore = Depends(svc),
):
    return await service.list_attorneys(principal.org_id, active=active, limit=limit, offset=offset)

@router.patch("/attorneys/{attorney_id}", response_model=AttorneyOut, dependencies=[Depends(require_scopes("attorneys:write"))])
async def update_attorney(
    attorney_id: uuid.UUID,
    payload: AttorneyUpdate,
    principal: Principal = Depends(get_principal),
    service: AttorneyExpertiseStore = Depends(svc),
):
    return await service.update_attorney(principal.org_id, attorney_id, payload)

@router.put("/attorneys/{attorney_id}/expertise", response_model=ExpertiseOut, dependencies=[Depends(require_scopes("attorneys:write"))])
async def upsert_expertise(
    attorney_id: uuid.UUID,
    payload: ExpertiseUpsert,
    principal: Principal = Depends(get_principal),
    service: AttorneyExpertiseStore = Depends(svc),
):
    return await service.upsert_expertise(principal.org_id, attorney_id, payload)

@router.get("/attorneys/{attorney_id}/expertise", response_model=list[ExpertiseOut], dependencies=[Depends(require_scopes("attorneys:read"))])
async def list_expertise(
    attorney_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: AttorneyExpertiseStore = Depends(svc),
):
    return await service.list_expertise(principal.org_id, attorney_id)

@router.get("/attorneys/{attorney_id}/expertise/{area}/score", response_model=ExpertiseScoreOut, dependencies=[Depends(require_scopes("attorneys:read"))])
async def expertise_score(
    attorney_id: uuid.UUID,
    area: str,
    principal: Principal = Depends(get_principal),
    service: AttorneyExpertiseStore = Depends(svc),
):
    score = await service.expertise_score(principal.org_id, attorney_id, area)
    return ExpertiseScoreOut(attorney_id=attorney_id, practice_area=area, score=score)

@router.post("/attorneys/{attorney_id}/expertise/{area}/outcome", response_model=ExpertiseOut, dependencies=[Depends(require_scopes("attorneys:write"))])
async def record_case_outcome(
    attorney_id: uuid.UUID,
    area: str,
    payload: CaseOutcome,
    principal: Principal = Depends(get_principal),
    service: AttorneyExpertiseStore = Depends(svc),
):
    return await service.record_case_outcome(principal.org_id, attorney_id, area, payload)
