"""AIStory API — FastAPI application."""
from __future__ import annotations

import logging
import resource
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from aistory.logging_config import setup_logging
setup_logging()

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from aistory.db.engine import engine
from aistory.db.tables import Base
from aistory.errors import AppError
from aistory.services.housekeeping import start_scheduler, stop_scheduler
from config.settings import settings

# ── Sentry Error Tracking ────────────────────────
if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.WARNING, event_level=logging.ERROR),
        ],
        # Tokens and emails travel in bodies and headers; keep them out of events
        send_default_pii=False,
        before_send=lambda event, hint: (
            {**event, "request": {**event.get("request", {}), "cookies": None, "data": None}}
            if "request" in event else event
        ),
    )

logger = logging.getLogger(__name__)

_started = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup and run the housekeeping scheduler."""
    from aistory.startup_checks import validate_settings
    validate_settings()

    # Import all tables so they're registered with Base.metadata
    import aistory.db.user_tables  # noqa: F401
    import aistory.db.email_code_tables  # noqa: F401
    import aistory.db.report_tables  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")

    if settings.SCHEDULER_ENABLED:
        start_scheduler()

    yield

    logger.info("Shutting down — draining connections...")
    stop_scheduler()
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="AIStory API",
    version="1.0.0",
    description="Accounts, plaza submissions and moderation for the AIourStory app",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

from aistory.middleware.security_headers import SecurityHeadersMiddleware
app.add_middleware(SecurityHeadersMiddleware)

from aistory.middleware.request_id import RequestIDMiddleware
app.add_middleware(RequestIDMiddleware)

from aistory.middleware.rate_limit import RateLimitMiddleware
app.add_middleware(RateLimitMiddleware)


# ---- Routers ----
from aistory.api.auth import router as auth_router
from aistory.api.plaza import prompts_router, stories_router
from aistory.api.admin import router as admin_router
from aistory.api.reports import router as reports_router

app.include_router(auth_router)
app.include_router(prompts_router)
app.include_router(stories_router)
app.include_router(admin_router)
app.include_router(reports_router)


def _memory_usage() -> dict:
    """Peak resident set size of this process, in bytes."""
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports KiB, macOS bytes
    rss = peak if sys.platform == "darwin" else peak * 1024
    return {"maxRss": rss}


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "uptime": round(time.monotonic() - _started, 3),
        "memory": _memory_usage(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# --- Structured Error Responses ---

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Schema failures are a plain 400 with a readable summary."""
    errors = []
    for err in exc.errors():
        field = ".".join(str(loc) for loc in err["loc"] if loc != "body") if err.get("loc") else "unknown"
        errors.append(f"{field}: {err['msg']}")
    return JSONResponse(status_code=400, content={
        "error": "Invalid request parameters",
        "details": "; ".join(errors),
    })


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    """Consistent error envelope for framework errors (404 route, 405 method...)."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail if isinstance(exc.detail, str) else "Request failed"},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """Catch-all for unhandled exceptions — never leak stack traces."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("aistory.api.main:app", host=settings.API_HOST, port=settings.API_PORT)
