from fastapi import APIRouter
from assignment_engine.modules.assignments.router import router as assignments_router
from assignment_engine.modules.attorneys.router import router as attorneys_router
from assignment_engine.modules.rules.router import router as rules_router
from assignment_engine.modules.transfers.router import router as transfers_router
from assignment_engine.modules.workload.router import router as workload_router

api_router = APIRouter()
api_router.include_router(assignments_router, tags=["assignments"])
api_router.include_router(attorneys_router, tags=["attorneys"])
api_router.include_router(rules_router, tags=["rules"])
api_router.include_router(transfers_router, tags=["transfers"])
api_router.include_router(workload_router, tags=["workload"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
