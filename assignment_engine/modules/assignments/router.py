import uuid
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from assignment_engine.core.db import get_session
from assignment_engine.core.security import get_principal, require_scopes, Principal
from assignment_engine.modules.assignments.schemas import (
    AssignCaseRequest, AssignmentResult, AssignmentOut, ReassignRequest, DeactivateRequest,
    RecommendRequest, Recommendation, HistoryPage,
)
from assignment_engine.modules.assignments.service import AssignmentService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> AssignmentService:
    return AssignmentService(session)

@router.post("/assignments", response_model=AssignmentResult, dependencies=[Depends(require_scopes("assignments:write"))])
async def assign_case(
    payload: AssignCaseRequest,
    principal: Principal = Depends(get_principal),
    service: AssignmentService = Depends(svc),
):
    return await service.assign_case(principal.org_id, payload, principal.user_id)

@router.post("/assignments/recommend/{case_id}", response_model=Recommendation, dependencies=[Depends(require_scopes("assignments:read"))])
async def recommend(
    case_id: uuid.UUID,
    payload: RecommendRequest | None = None,
    principal: Principal = Depends(get_principal),
    service: AssignmentService = Depends(svc),
):
    return await service.recommend(principal.org_id, case_id, payload.case_attributes if payload else None)

@router.post("/assignments/reassign", response_model=AssignmentOut, dependencies=[Depends(require_scopes("assignments:write"))])
async def reassign(
    payload: ReassignRequest,
    principal: Principal = Depends(get_principal),
    service: AssignmentService = Depends(svc),
):
    return await service.reassign(principal.org_id, payload, principal.user_id)

@router.post("/assignments/{assignment_id}/deactivate", response_model=AssignmentOut, dependencies=[Depends(require_scopes("assignments:write"))])
async def deactivate(
    assignment_id: uuid.UUID,
    payload: DeactivateRequest,
    principal: Principal = Depends(get_principal),
    service: AssignmentService = Depends(svc),
):
    return await service.deactivate(principal.org_id, assignment_id, payload, principal.user_id)

@router.delete("/assignments/case/{case_id}/user/{user_id}", response_model=list[AssignmentOut], dependencies=[Depends(require_scopes("assignments:write"))])
async def unassign(
    case_id: uuid.UUID,
    user_id: uuid.UUID,
    reason_code: str = Query("REMOVED", pattern="^(REMOVED|EXPIRED)$"),
    reason: str | None = None,
    principal: Principal = Depends(get_principal),
    service: AssignmentService = Depends(svc),
):
    payload = DeactivateRequest(reason_code=reason_code, reason=reason)
    return await service.unassign(principal.org_id, case_id, user_id, payload, principal.user_id)

@router.get("/assignments/case/{case_id}", response_model=list[AssignmentOut], dependencies=[Depends(require_scopes("assignments:read"))])
async def case_team(
    case_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: AssignmentService = Depends(svc),
):
    return await service.team(principal.org_id, case_id)

@router.get("/assignments/case/{case_id}/primary", response_model=AssignmentOut, dependencies=[Depends(require_scopes("assignments:read"))])
async def primary_assignment(
    case_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: AssignmentService = Depends(svc),
):
    return await service.primary(principal.org_id, case_id)

@router.get("/assignments/case/{case_id}/history", response_model=HistoryPage, dependencies=[Depends(require_scopes("assignments:read"))])
async def assignment_history(
    case_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    cursor: str | None = None,
    principal: Principal = Depends(get_principal),
    service: AssignmentService = Depends(svc),
):
    return await service.history(principal.org_id, case_id, limit=limit, cursor=cursor)

@router.get("/assignments/user/{user_id}", response_model=list[AssignmentOut], dependencies=[Depends(require_scopes("assignments:read"))])
async def user_assignments(
    user_id: uuid.UUID,
    active_only: bool = True,
    limit: int = Query(50, ge=1, le=200), offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_principal),
    service: AssignmentService = Depends(svc),
):
    return await service.for_user(principal.org_id, user_id, active_only=active_only, limit=limit, offset=offset)
