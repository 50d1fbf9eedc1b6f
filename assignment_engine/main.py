import time
import asyncio
import logging
from dotenv import load_dotenv

# Load environment variables from .env file before anything else
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from assignment_engine.core.config import settings
from assignment_engine.core.logging import setup_logging, request_id_ctx
from assignment_engine.core.db import init_models, SessionLocal
from assignment_engine.core.errors import AssignmentEngineError
from assignment_engine.api.router import api_router
from assignment_engine.modules.events.outbox import run_outbox_relay
from assignment_engine.modules.workload.jobs import WorkloadRecalculationJob
from assignment_engine.platform.provider_registry import registry

setup_logging()
app = FastAPI(title=settings.APP_NAME)

logger = logging.getLogger(__name__)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    process_time = (time.time() - start_time) * 1000
    logger.info(
        f"Request: {request.method} {request.url.path} - Response: {response.status_code} - Time: {process_time:.2f}ms"
    )
    return response

# outermost middleware: the request id is already set when the timing line is logged
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id", "-")
    token = request_id_ctx.set(rid)
    try:
        response = await call_next(request)
    finally:
        request_id_ctx.reset(token)
    response.headers["x-request-id"] = rid
    return response

@app.exception_handler(AssignmentEngineError)
async def assignment_engine_error_handler(request: Request, exc: AssignmentEngineError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.critical(f"Unhandled exception for request {request.method} {request.url.path}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "INTERNAL_ERROR", "message": "An internal server error occurred.", "details": {}}},
    )

async def _stop(task: asyncio.Task | None):
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass

@app.on_event("startup")
async def on_startup():
    await init_models()
    app.state.outbox_task = None
    app.state.workload_task = None
    if settings.OUTBOX_RELAY_ENABLED:
        app.state.outbox_task = asyncio.create_task(run_outbox_relay(SessionLocal))
    if settings.WORKLOAD_RECALC_ENABLED:
        job = WorkloadRecalculationJob(SessionLocal)
        app.state.workload_task = asyncio.create_task(job.run_forever())

@app.on_event("shutdown")
async def on_shutdown():
    await _stop(getattr(app.state, "outbox_task", None))
    await _stop(getattr(app.state, "workload_task", None))
    await registry.close()

app.include_router(api_router, prefix=settings.API_PREFIX)
