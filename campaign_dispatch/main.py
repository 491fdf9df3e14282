"""
FastAPI application main module.
Campaign dispatch service: signed scheduler ticks, campaign intake, job status.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
import time
import os
from contextlib import asynccontextmanager
from campaign_dispatch.api.v1 import api_router
from campaign_dispatch.api.v1.endpoints import marketing
from campaign_dispatch.config import DEDUP_SETTINGS
from campaign_dispatch.database import Base, SessionLocal, engine
from campaign_dispatch.exceptions import InvalidCampaign, TriggerRejected
from campaign_dispatch.services.runtime import build_runtime
from campaign_dispatch.utils import setup_logging, get_logger
from campaign_dispatch.utils.observability import REQUEST_ID_HEADER, client_address, ensure_request_id, request_id_of

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/dispatch.log"),
    enable_console=True
)

logger = get_logger(__name__)

SERVICE_NAME = "campaign-dispatch"
VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Creates tables and builds the dispatch runtime (caches, guards, sender).
    """
    logger.info("Application startup initiated")
    runtime = None
    try:
        logger.info("Creating database tables")
        Base.metadata.create_all(bind=engine)

        runtime = build_runtime(SessionLocal)
        app.state.dispatch = runtime  # type: ignore[attr-defined]
        logger.info(
            "Dispatch runtime ready",
            dedup_backend=type(runtime.dedup).__name__,
            sender=type(runtime.sender).__name__,
        )
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        if runtime is not None:
            await runtime.close()
        logger.info("Application shutdown completed")


app = FastAPI(
    title="Campaign Dispatch Service",
    description="""
    Lease-based, resumable newsletter dispatch.

    ## Endpoints
    * **POST /marketing/cron-send** - one scheduler tick (x-cron-key + x-cron-ts/x-cron-sig)
    * **POST /marketing/send** - queue a campaign (x-lb-ts/x-lb-sig)
    * **GET /marketing/jobs/{id}** - job status (x-cron-key)
    """,
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)


@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    """
    request_id = ensure_request_id(request.headers)
    request.state.request_id = request_id
    request.state.start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        path=request.url.path,
        remote_addr=client_address(request),
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - request.state.start_time
    response.headers[REQUEST_ID_HEADER] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

    logger.info(
        "Request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )
    return response


@app.exception_handler(TriggerRejected)
async def trigger_rejected_handler(request: Request, exc: TriggerRejected):
    """Auth gate failures: 403 for the IP allow-list, 401 otherwise."""
    logger.warning(
        "Trigger rejected",
        reason=exc.reason,
        path=request.url.path,
        remote_addr=client_address(request),
        request_id=request_id_of(request),
    )
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.reason})


@app.exception_handler(InvalidCampaign)
async def invalid_campaign_handler(request: Request, exc: InvalidCampaign):
    logger.info("Campaign rejected", code=exc.code, request_id=request_id_of(request))
    return JSONResponse(status_code=400, content={"ok": False, "error": exc.code})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = request_id_of(request)
    logger.warning("Request validation failed", errors=exc.errors(), request_id=request_id, path=request.url.path)
    return JSONResponse(
        status_code=422,
        content={"ok": False, "error": "VALIDATION_FAILED", "details": exc.errors(), "request_id": request_id}
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    request_id = request_id_of(request)
    logger.warning("HTTP exception", status_code=exc.status_code, detail=exc.detail, request_id=request_id, path=request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.detail, "request_id": request_id}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions and raise a best-effort admin alert."""
    request_id = request_id_of(request)
    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        path=request.url.path,
        method=request.method,
        exc_info=True
    )
    runtime = getattr(request.app.state, "dispatch", None)
    if runtime is not None:
        await runtime.notifier.notify("cron_send_unexpected", str(exc), {"path": request.url.path, "requestId": request_id})
    return JSONResponse(
        status_code=500,
        content={"ok": False, "error": "SERVER_ERROR", "request_id": request_id}
    )


@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "timestamp": time.time(),
        "dedup_backend": str(DEDUP_SETTINGS.get("backend", "sql")),
    }


@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
async def detailed_health_check(request: Request):
    """Database probe plus queued jobs by status."""
    health_status = {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "timestamp": time.time(),
        "checks": {}
    }

    runtime = getattr(request.app.state, "dispatch", None)
    try:
        db = runtime.store.session_factory() if runtime is not None else SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    if runtime is not None and health_status["checks"]["database"] == "healthy":
        health_status["checks"]["jobs"] = runtime.store.counts_by_status()
    return health_status


@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "Campaign Dispatch Service",
        "version": VERSION,
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }


# Same routes served at the historical /marketing prefix and under /api/v1
app.include_router(marketing.router, prefix="/marketing", tags=["marketing"])
app.include_router(api_router, prefix="/api/v1")

if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")
    uvicorn.run(
        "campaign_dispatch.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        reload_dirs=["campaign_dispatch"],
        log_level="info",
        access_log=True
    )
