# storage_gateway/main.py
"""
Main FastAPI app with monitoring integration and health endpoints.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from uuid import uuid4
import traceback

from storage_gateway.config import settings
from storage_gateway.db.session import init_models
from storage_gateway.errors import ServiceUnavailableError, StorageGatewayError
from storage_gateway.monitoring.logger import log
from storage_gateway.monitoring.slack_alerts import send_slack_alert
from storage_gateway.monitoring.context import set_request_context
from storage_gateway.scheduler.scheduler import start_scheduler, shutdown_scheduler
from storage_gateway.api.admin.health import router as health_router
from storage_gateway.api.admin.monitoring import router as monitoring_router
from storage_gateway.api.storage import router as storage_router
from storage_gateway.api.files import router as files_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    if settings.SCHEDULER_ENABLED:
        await start_scheduler(app)
    log("INFO", "Storage gateway started", module="main")
    yield
    await shutdown_scheduler(app)


app = FastAPI(title="Storage Gateway", lifespan=lifespan)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    request.state.request_id = request_id
    set_request_context(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response

@app.exception_handler(ServiceUnavailableError)
async def service_unavailable_handler(request: Request, exc: ServiceUnavailableError):
    return JSONResponse(status_code=exc.status_code, content=exc.payload)

@app.exception_handler(StorageGatewayError)
async def storage_gateway_error_handler(request: Request, exc: StorageGatewayError):
    request_id = getattr(request.state, "request_id", None)
    level = "ERROR" if exc.status_code >= 500 else "WARNING"
    log(level, f"{exc.error_type}: {exc.message}", module="main", request_id=request_id)
    return JSONResponse(
        status_code=exc.status_code,
        content={**exc.to_dict(), "request_id": request_id},
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", None)
    tb = traceback.format_exc()
    log(
        "ERROR",
        f"Unhandled exception: {exc}",
        module="main",
        request_id=request_id
    )
    await send_slack_alert(
        message=f"Critical error: {exc}",
        context={"traceback": tb},
        severity="CRITICAL",
        module="main",
        request_id=request_id
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred.",
            "details": {},
            "request_id": request_id,
        }
    )

# Mount routers
app.include_router(health_router)
app.include_router(monitoring_router)
app.include_router(storage_router)
app.include_router(files_router)
