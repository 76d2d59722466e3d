"""
Standing Engine — API process

Trust & safety standing for a two-sided marketplace: report ledger, safety
score, badges, supplier tiers, onboarding state machines and the
suspension/appeal workflow.

Start with:
    uvicorn standing.main:app --host 0.0.0.0 --port 8000
"""
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from standing._logger import configure_logging
from standing.api.admin import admin_router
from standing.api.events import events_router
from standing.api.standing import router as standing_router
from standing.config import settings
from standing.errors import StandingError

VERSION = "1.0.0"

configure_logging(settings.LOG_LEVEL)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("standing_engine_starting", version=VERSION, environment=settings.ENVIRONMENT)

    if settings.HISTORY_ENABLED:
        # History is best effort; the API serves standings without it
        from standing.store import neo4j
        if neo4j.ping():
            neo4j.init_schema()
        else:
            logger.warning("history_unavailable_at_startup", uri=settings.NEO4J_URI)

    yield

    from standing.services import shutdown as services_shutdown
    services_shutdown()
    if settings.HISTORY_ENABLED:
        from standing.store.neo4j import close
        close()
    logger.info("standing_engine_stopped")


app = FastAPI(
    title="Standing Engine",
    description="Trust & safety standing: reports, safety score, badges, tiers, onboarding and appeals.",
    version=VERSION,
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id", "Retry-After"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    # Honour an id set by the calling service
    request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex[:12]
    request.state.request_id = request_id
    structlog.contextvars.bind_contextvars(request_id=request_id)
    start = time.perf_counter()
    try:
        response = await call_next(request)
    finally:
        structlog.contextvars.unbind_contextvars("request_id")
    elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
    response.headers["X-Request-Id"] = request_id
    if request.url.path != "/health":
        logger.info("request_handled", method=request.method, path=request.url.path,
                    status=response.status_code, elapsed_ms=elapsed_ms)
    return response


@app.exception_handler(StandingError)
async def standing_error_handler(request: Request, exc: StandingError):
    logger.info("request_rejected",
                path=request.url.path,
                error=exc.code,
                message=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            **exc.to_dict(),
            "request_id": getattr(request.state, "request_id", "unknown"),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_exception",
                 path=request.url.path,
                 error=str(exc),
                 type=type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal",
            "message": "Unexpected server error.",
            "request_id": getattr(request.state, "request_id", "unknown"),
        },
    )


app.include_router(standing_router)
app.include_router(admin_router)
app.include_router(events_router)


@app.get("/health")
async def health():
    from standing.services import get_services
    try:
        store_ok = get_services().store.ping()
    except Exception as e:
        logger.warning("health_store_unreachable", error=str(e))
        store_ok = False

    history = "disabled"
    if settings.HISTORY_ENABLED:
        from standing.store import neo4j
        history = "ok" if neo4j.ping() else "unreachable"

    return {
        "status": "healthy" if store_ok else "degraded",
        "service": "standing-engine",
        "version": VERSION,
        "store": settings.STORE_BACKEND,
        "history": history,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
