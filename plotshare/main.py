import re as _re
import time as _time
import uuid as _uuid
from contextlib import asynccontextmanager

import sentry_sdk
import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from plotshare.admin.routes import router as admin_router
from plotshare.config import settings
from plotshare.database import async_session
from plotshare.disputes.routes import router as disputes_router
from plotshare.exceptions import DisputeError, InvalidContent, InvalidResolutionPayload
from plotshare.services.notifications import close_http_client
from plotshare.utils.rate_limit import limiter

# Configure structlog: JSON in production, console in development
processors = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]
if settings.is_production:
    processors.append(structlog.processors.JSONRenderer())
else:
    processors.append(structlog.dev.ConsoleRenderer())

structlog.configure(
    processors=processors,
    wrapper_class=structlog.make_filtering_bound_logger(0),
)

logger = structlog.get_logger()

# Sentry error tracking
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=0.1,
        environment=settings.APP_ENV,
        send_default_pii=False,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    from plotshare.services.scheduler import scheduler, start_scheduler

    logger.info("plotshare_disputes_startup", env=settings.APP_ENV)
    if not settings.STRIPE_SECRET_KEY:
        logger.warning(
            "stripe_mock_mode",
            message="STRIPE_SECRET_KEY is not set; dispute refunds are mocked.",
        )

    start_scheduler()
    yield
    scheduler.shutdown(wait=True)
    await close_http_client()
    logger.info("plotshare_disputes_shutdown")


app = FastAPI(
    title="PlotShare Disputes API",
    description="Booking dispute filing, messaging and resolution",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(DisputeError)
async def dispute_error_handler(request: Request, exc: DisputeError):
    """Report engine errors by kind; never as a raw exception."""
    if exc.retriable:
        logger.warning("dispute_error_retriable", kind=exc.kind, path=request.url.path, detail=exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": exc.detail, "retriable": exc.retriable},
    )


def _format_validation_errors(errors) -> str:
    parts = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p != "body"]
        parts.append(f"{'.'.join(loc) or 'request'}: {err.get('msg', 'invalid value')}")
    return "; ".join(parts)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report request validation failures with the same error kinds as the engine."""
    errors = exc.errors()
    logger.info("request_validation_failed", path=request.url.path, error_count=len(errors))

    detail = _format_validation_errors(errors)
    in_body = any(err.get("loc", ("",))[0] == "body" for err in errors)
    if in_body and request.url.path.endswith("/resolve"):
        error: DisputeError = InvalidResolutionPayload(detail)
    else:
        error = InvalidContent(detail)
    return await dispute_error_handler(request, error)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions and return a safe 500 response outside development."""
    logger.exception("unhandled_exception", path=request.url.path)
    if settings.APP_ENV != "development":
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
    # In development, re-raise so the default handler shows the traceback
    raise exc


if settings.is_production:
    # allow_credentials is only safe because origins are an explicit list
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type"],
    )
    if not settings.cors_origins_list:
        logger.warning("cors_origins_empty_in_production", app_env=settings.APP_ENV)
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )


_REQUEST_ID_RE = _re.compile(r"^[a-zA-Z0-9\-]{1,64}$")


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a request ID to logs and responses and time every request."""
    # Client-supplied ids are validated to keep them out of log injection range
    client_id = request.headers.get("X-Request-ID")
    request_id = client_id if client_id and _REQUEST_ID_RE.match(client_id) else str(_uuid.uuid4())
    structlog.contextvars.bind_contextvars(request_id=request_id)
    start = _time.monotonic()
    try:
        response = await call_next(request)
        duration_ms = (_time.monotonic() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"
        if duration_ms > 1000:
            logger.warning(
                "slow_request",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 1),
                status_code=response.status_code,
            )
        return response
    finally:
        structlog.contextvars.clear_contextvars()


# Custom instrumentation instead of metrics.default(), which crashes on
# non-numeric Content-Length headers
def _safe_metrics(info) -> None:
    from prometheus_client import Counter, Histogram
    if not hasattr(_safe_metrics, "_total"):
        _safe_metrics._total = Counter(
            "plotshare_http_requests_total", "Total HTTP requests",
            ["method", "status", "handler"],
        )
        _safe_metrics._latency = Histogram(
            "plotshare_http_request_duration_seconds", "Request latency",
            ["method", "handler"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
        )
    _safe_metrics._total.labels(info.method, info.modified_status, info.modified_handler).inc()
    _safe_metrics._latency.labels(info.method, info.modified_handler).observe(info.modified_duration)


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/health", "/metrics"],
).add(_safe_metrics).instrument(app)


@app.get("/metrics", include_in_schema=False)
async def metrics_endpoint(request: Request):
    """Prometheus metrics endpoint (protected by API key)."""
    from prometheus_client import generate_latest
    from starlette.responses import Response as StarletteResponse

    if settings.is_production and not settings.METRICS_API_KEY:
        raise HTTPException(status_code=503, detail="Metrics not available")

    if settings.METRICS_API_KEY:
        api_key = request.headers.get("x-metrics-key", "")
        if api_key != settings.METRICS_API_KEY:
            raise HTTPException(status_code=403, detail="Invalid metrics API key")

    return StarletteResponse(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


app.include_router(disputes_router)
app.include_router(admin_router)


@app.get("/health")
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Health check with database connectivity and scheduler state."""
    result: dict = {"status": "ok", "database": "connected"}

    try:
        async with async_session() as db:
            await db.execute(text("SELECT 1"))
    except Exception:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected"},
        )

    from plotshare.services.scheduler import scheduler
    result["scheduler"] = "running" if scheduler.running else "stopped"
    if settings.is_production and not scheduler.running:
        result["status"] = "unhealthy"
    return result
