import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from assignment_engine.core.db import get_session
from assignment_engine.core.security import get_principal, require_scopes, Principal
from assignment_engine.modules.rules.schemas import RuleCreate, RuleUpdate, RuleOut
from assignment_engine.modules.rules.service import RuleAdminService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> RuleAdminService:
    return RuleAdminService(session)

@router.get("/rules", response_model=list[RuleOut], dependencies=[Depends(require_scopes("rules:read"))])
async def list_rules(
    include_inactive: bool = False,
    principal: Principal = Depends(get_principal),
    service: RuleAdminService = Depends(svc),
):
    return await service.list(principal.org_id, include_inactive=include_inactive)

@router.post("/rules", response_model=RuleOut, dependencies=[Depends(require_scopes("rules:write"))])
async def create_rule(
    payload: RuleCreate,
    principal: Principal = Depends(get_principal),
    service: RuleAdminService = Depends(svc),
):
    return await service.create(principal.org_id, payload)

@router.get("/rules/{rule_id}", response_model=RuleOut, dependencies=[Depends(require_scopes("rules:read"))])
async def get_rule(
    rule_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: RuleAdminService = Depends(svc),
):
    return await service.get(principal.org_id, rule_id)

@router.patch("/rules/{rule_id}", response_model=RuleOut, dependencies=[Depends(require_scopes("rules:write"))])
async def update_rule(
    rule_id: uuid.UUID,
    payload: RuleUpdate,
    principal: Principal = Depends(get_principal),
    service: RuleAdminService = Depends(svc),
):
    return await service.update(principal.org_id, rule_id, payload)

@router.post("/rules/{rule_id}/deactivate", response_model=RuleOut, dependencies=[Depends(require_scopes("rules:write"))])
async def deactivate_rule(
    rule_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: RuleAdminService = Depends(svc),
):
    return await service.deactivate(principal.org_id, rule_id)
