"""FastAPI application for the FormFlow submission collector."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import dispose_engine
from .deps import build_admission_pipeline, build_throttle_store
from .errors import AdmissionRejected
from .logging_setup import RequestContextMiddleware, get_correlation_id, setup_logging
from .routers.submissions import SECURITY_HEADERS
from .worker import integration_worker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    # Auto-create tables for SQLite (local dev)
    if "sqlite" in settings.database_url:
        from .database import engine
        from .models import Base
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    if not settings.csrf_configured:
        logger.warning("COLLECTOR_CSRF_SECRET is not set; CSRF token issuance is unavailable")
    if not settings.altcha_configured:
        logger.info("COLLECTOR_ALTCHA_HMAC_KEY is not set; proof-of-work challenges are unavailable")
    app.state.throttle_store.start()
    integration_worker.start()
    yield
    await integration_worker.stop()
    await app.state.throttle_store.stop()
    await dispose_engine()


app = FastAPI(title=settings.app_title, lifespan=lifespan)

app.state.throttle_store = build_throttle_store()
app.state.admission_pipeline = build_admission_pipeline(app.state.throttle_store)

app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-CSRF-Token", "X-Altcha-Spam-Filter", "X-Request-ID"],
    expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-Request-ID"],
)


@app.exception_handler(AdmissionRejected)
async def admission_rejected_handler(request: Request, exc: AdmissionRejected):
    content = exc.to_dict()
    content["correlationId"] = get_correlation_id(request)
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers={**SECURITY_HEADERS, **exc.headers()},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error")
    content = {
        "error": "Internal server error",
        "reason": "internal_error",
        "correlationId": get_correlation_id(request),
    }
    if not settings.is_production:
        content["detail"] = f"{type(exc).__name__}: {exc}"
    return JSONResponse(status_code=500, content=content, headers=SECURITY_HEADERS)


# Import and register routers
from .routers import health, submissions  # noqa: E402

app.include_router(health.router)
app.include_router(submissions.router)
