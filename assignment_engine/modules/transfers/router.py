import uuid
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from assignment_engine.core.db import get_session
from assignment_engine.core.security import get_principal, require_scopes, Principal
from assignment_engine.modules.transfers.schemas import TransferRequestCreate, TransferDecision, TransferOut
from assignment_engine.modules.transfers.service import TransferWorkflow

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> TransferWorkflow:
    return TransferWorkflow(session)

@router.post("/transfers", response_model=TransferOut, dependencies=[Depends(require_scopes("transfers:write"))])
async def request_transfer(
    payload: TransferRequestCreate,
    principal: Principal = Depends(get_principal),
    service: TransferWorkflow = Depends(svc),
):
    return await service.request_transfer(principal.org_id, payload, principal.user_id)

@router.get("/transfers/pending", response_model=list[TransferOut], dependencies=[Depends(require_scopes("transfers:read"))])
async def list_pending_transfers(
    limit: int = Query(50, ge=1, le=200), offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_principal),
    service: TransferWorkflow = Depends(svc),
):
    return await service.list_pending(principal.org_id, limit=limit, offset=offset)

@router.get("/transfers/{request_id}", response_model=TransferOut, dependencies=[Depends(require_scopes("transfers:read"))])
async def get_transfer(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: TransferWorkflow = Depends(svc),
):
    return await service.get(principal.org_id, request_id)

@router.post("/transfers/{request_id}/process", response_model=TransferOut, dependencies=[Depends(require_scopes("transfers:write"))])
async def process_transfer(
    request_id: uuid.UUID,
    payload: TransferDecision,
    principal: Principal = Depends(get_principal),
    service: TransferWorkflow = Depends(svc),
):
    # approving or rejecting needs the approver scope; the requester may always cancel their own request
    if not principal.has_scope("transfers:approve"):
        req = await service.get(principal.org_id, request_id)
        if payload.decision != "CANCELLED" or req.requested_by != principal.user_id:
            raise HTTPException(status_code=403, detail="Insufficient scopes")
    return await service.process(principal.org_id, request_id, payload, principal.user_id)
