from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import routes_security
from .auth.dependencies import resolve_principal
from .auth.routes_auth import router as auth_router
from .auth.seed import seed_admin
from .config import settings
from .database import init_db
from .security.errors import SecurityError, StoreUnavailable, ValidationFailed
from .security.middleware import SecurityMiddleware, SecurityPipeline, apply_security_headers, error_response
from .security.monitor import SecurityMonitor
from .security.routes import build_route_configs
from .telemetry.logger import configure_logging

VERSION = "0.3.0"

configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger("gatekeeper.main")

# Initialise database tables and the first admin on startup
init_db()
seed_admin()


# ---------------------------------------------------------------------------
# Periodic maintenance
# ---------------------------------------------------------------------------

async def _cleanup_loop(monitor: SecurityMonitor, interval_seconds: int) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await run_in_threadpool(monitor.cleanup)
        except StoreUnavailable as exc:
            logger.warning("Scheduled security cleanup skipped: %s", exc)
        except Exception:
            logger.exception("Scheduled security cleanup failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = None
    interval = settings.cleanup_interval_seconds
    if interval > 0:
        task = asyncio.create_task(_cleanup_loop(app.state.monitor, interval))
        logger.info("Security cleanup scheduled every %ds", interval)
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        app.state.monitor.close()


app = FastAPI(
    title="Marketplace Gatekeeper",
    version=VERSION,
    description=(
        "Application-level security gate for the freelancer marketplace API: "
        "rate limiting, brute-force lockout, IP reputation, CSRF checks and "
        "a severity-tiered security alert log."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.state.monitor = SecurityMonitor.from_settings(settings)
app.state.security_pipeline = SecurityPipeline.from_monitor(app.state.monitor, resolve_principal)


# ---------------------------------------------------------------------------
# Error rendering: {"error": <reason>, "message": <text>}
# ---------------------------------------------------------------------------

_HTTP_REASONS = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


async def _security_error_handler(request: Request, exc: SecurityError) -> JSONResponse:
    # Other kinds are counted where they are raised.
    if isinstance(exc, StoreUnavailable):
        await run_in_threadpool(request.app.state.security_pipeline.record_rejection, exc)
    return error_response(exc)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    failure = ValidationFailed()
    response = JSONResponse({**failure.to_dict(), "details": details}, status_code=failure.status_code)
    return apply_security_headers(response)


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    response = JSONResponse(
        {"error": _HTTP_REASONS.get(exc.status_code, "http_error"), "message": str(exc.detail)},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )
    return apply_security_headers(response)


app.add_exception_handler(SecurityError, _security_error_handler)
app.add_exception_handler(RequestValidationError, _validation_error_handler)
app.add_exception_handler(StarletteHTTPException, _http_error_handler)

app.add_middleware(SecurityMiddleware, routes=build_route_configs(settings))
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(routes_security.router)


@app.get("/", tags=["meta"])
def root() -> dict:
    return {"status": "ok", "service": "marketplace-gatekeeper", "version": VERSION}


@app.get("/health", tags=["meta"])
def health() -> dict:
    store_ok = app.state.monitor.store_healthy()
    return {"status": "healthy" if store_ok else "degraded", "store": store_ok}
