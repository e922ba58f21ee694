"""
backend/leagueops/main.py

Purpose:
    FastAPI application bootstrap: builds the pipeline services once from
    Settings, wires routers and error handlers, and runs the APScheduler
    jobs (task queue drain, optional daily cron).

Dependencies:
    - leagueops.database
    - leagueops.services.container
    - leagueops.workers.daily_jobs
"""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError
from starlette.exceptions import HTTPException as StarletteHTTPException

import leagueops.database as _db
from leagueops.config import settings
from leagueops.database import close_db, connect_db
from leagueops.middleware.logging import StructuredLoggingMiddleware, setup_logging
from leagueops.routers.ops import router as ops_router
from leagueops.routers.results import router as results_router
from leagueops.services.container import build_services
from leagueops.services.errors import PipelineError
from leagueops.workers.daily_jobs import register_daily_jobs, register_task_drain

logger = logging.getLogger("leagueops")
scheduler = AsyncIOScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    db = await connect_db(settings)
    services = build_services(settings, db)
    app.state.settings = settings
    app.state.services = services

    register_task_drain(scheduler, services)
    cron_jobs = register_daily_jobs(scheduler, services)
    scheduler.start()
    logger.info(
        "Pipeline started (tz=%s, dispatch=%s, storage=%s, cron_jobs=%d)",
        settings.OPERATING_TZ,
        settings.DISPATCH_MODE,
        "on" if services.storage else "off",
        cron_jobs,
    )

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)
    await services.aclose()
    await close_db()


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError):
        level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(level, "%s on %s %s: %s", exc.code, request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"ok": False, "detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = ".".join(str(part) for part in loc[1:]) if len(loc) > 1 else "body"
            errors.append({"field": field, "message": err.get("msg", "Invalid value.")})
        return JSONResponse(status_code=422, content={"ok": False, "detail": "Validation error.", "errors": errors})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        logger.warning("ValueError on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=400, content={"ok": False, "detail": "Invalid input."})

    @app.exception_handler(ServerSelectionTimeoutError)
    async def db_timeout_handler(request: Request, exc: ServerSelectionTimeoutError):
        logger.error("Database timeout: %s %s", request.method, request.url.path)
        return JSONResponse(status_code=503, content={"ok": False, "detail": "Service temporarily unavailable."})

    @app.exception_handler(ConnectionFailure)
    async def db_connection_handler(request: Request, exc: ConnectionFailure):
        logger.error("Database connection failure: %s %s", request.method, request.url.path)
        return JSONResponse(status_code=503, content={"ok": False, "detail": "Service temporarily unavailable."})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"ok": False, "detail": "An internal error occurred."})


app = FastAPI(
    title="League Ops",
    description="Daily league simulation pipeline: lock, dispatch, ingest, recover",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(StructuredLoggingMiddleware)
install_exception_handlers(app)
app.include_router(ops_router)
app.include_router(results_router)


@app.get("/health")
async def health():
    """Health check -- verifies the DB connection."""
    try:
        result = await _db.db.command("ping")
        db_ok = result.get("ok") == 1.0
    except Exception:
        db_ok = False

    return {
        "status": "healthy" if db_ok else "degraded",
        "db": "connected" if db_ok else "disconnected",
        "scheduler": scheduler.running,
    }
