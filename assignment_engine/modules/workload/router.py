import uuid
from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from assignment_engine.core.db import get_session
from assignment_engine.core.security import get_principal, require_scopes, Principal
from assignment_engine.modules.workload.schemas import WorkloadOut, WorkloadTrendPoint, WorkloadAnalytics, RecalculationReport
from assignment_engine.modules.workload.service import WorkloadTracker

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> WorkloadTracker:
    return WorkloadTracker(session)

# declared before /workload/{attorney_id} so "analytics" is not parsed as an id
@router.get("/workload/analytics", response_model=WorkloadAnalytics, dependencies=[Depends(require_scopes("workload:read"))])
async def workload_analytics(
    as_of: date | None = None,
    principal: Principal = Depends(get_principal),
    service: WorkloadTracker = Depends(svc),
):
    return await service.analytics(principal.org_id, as_of)

@router.post("/workload/recalculate", response_model=RecalculationReport, dependencies=[Depends(require_scopes("workload:write"))])
async def recalculate_organization(
    as_of: date | None = None,
    principal: Principal = Depends(get_principal),
    service: WorkloadTracker = Depends(svc),
):
    return await service.recalculate_organization(principal.org_id, as_of)

@router.get("/workload/{attorney_id}", response_model=WorkloadOut, dependencies=[Depends(require_scopes("workload:read"))])
async def get_workload(
    attorney_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: WorkloadTracker = Depends(svc),
):
    return await service.snapshot(principal.org_id, attorney_id)

@router.post("/workload/{attorney_id}/recalculate", response_model=WorkloadOut, dependencies=[Depends(require_scopes("workload:write"))])
async def recalculate_workload(
    attorney_id: uuid.UUID,
    as_of: date | None = None,
    principal: Principal = Depends(get_principal),
    service: WorkloadTracker = Depends(svc),
):
    snapshot = await service.recalculate(principal.org_id, attorney_id, as_of)
    return await service.describe(snapshot)

@router.get("/workload/{attorney_id}/trend", response_model=list[WorkloadTrendPoint], dependencies=[Depends(require_scopes("workload:read"))])
async def workload_trend(
    attorney_id: uuid.UUID,
    days: int = Query(30, ge=1, le=365),
    principal: Principal = Depends(get_principal),
    service: WorkloadTracker = Depends(svc),
):
    return await service.trend(principal.org_id, attorney_id, days)
