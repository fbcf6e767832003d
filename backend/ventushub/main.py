import json
import logging
import sys
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ventushub.config import get_settings
from ventushub.core.errors import ConflictError, NotFoundError, ValidationError
from ventushub.db.session import engine
from ventushub.api.v1.router import api_router


# ── Logging ──────────────────────────────────────────────────

# Libraries whose INFO chatter drowns out delivery and trigger logs
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, so the platform log shipper can index worker
    and API records by logger name without parsing free text."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging():
    """Route every ventushub logger to stdout.

    DEBUG=true keeps a human-readable line format for local runs; anything
    else emits JSON.
    """
    settings = get_settings()

    handler = logging.StreamHandler(sys.stdout)
    if settings.debug:
        handler.setFormatter(logging.Formatter(
            "[%(asctime)s] %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
    else:
        handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.setLevel(logging.INFO)
    root.handlers = [handler]
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger("ventushub")


# ── Lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    from ventushub.core.metrics import APP_INFO
    APP_INFO.info({"version": "0.1.0", "name": "VentusHub Notifications"})
    logger.info("VentusHub notification service starting up")
    yield
    logger.info("VentusHub notification service shutting down")
    await engine.dispose()


# ── Error mapping ────────────────────────────────────────────


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ConflictError)
    async def conflict(request: Request, exc: ConflictError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})


# ── HTTP helpers ─────────────────────────────────────────────

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def metric_path(path: str) -> str:
    """Request path as a metrics label: notification UUIDs and numeric ids become `<id>`."""
    if not path.startswith("/api/v1/"):
        return path
    return "/".join(
        "<id>" if segment.isdigit() or (len(segment) > 20 and "-" in segment) else segment
        for segment in path.split("/")
    )


# ── App Factory ──────────────────────────────────────────────


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "## VentusHub Notifications\n\n"
            "Event log, trigger rules, notification store and multi-channel delivery "
            "for the VentusHub brokerage platform.\n\n"
            "### Authentication\n"
            "Requests arrive through the platform gateway, which forwards the caller as "
            "`X-User-Id` and, for staff, `X-User-Role`. Template, trigger and metrics "
            "management require the `admin` or `operator` role.\n"
        ),
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=[
            {"name": "notifications", "description": "Notification feed, read state, archive, pin"},
            {"name": "preferences", "description": "Per-user channels, quiet hours, digest and caps"},
            {"name": "groups", "description": "Notifications clustered by entity and category"},
            {"name": "events", "description": "Activity event intake (trigger source)"},
            {"name": "templates", "description": "Operator-managed notification templates"},
            {"name": "triggers", "description": "Operator-managed trigger rules"},
            {"name": "delivery", "description": "Delivery logs, engagement callbacks, provider webhooks"},
            {"name": "push", "description": "Push device subscriptions and channel tests"},
            {"name": "metrics", "description": "Daily delivery metrics"},
        ],
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "X-Requested-With", "X-User-Id", "X-User-Role"],
    )

    # Request count and latency per route
    @app.middleware("http")
    async def record_request_metrics(request: Request, call_next):
        from ventushub.core.metrics import HTTP_REQUESTS, HTTP_REQUEST_DURATION

        start = time.monotonic()
        response: Response = await call_next(request)
        elapsed = time.monotonic() - start

        route = metric_path(request.url.path)
        HTTP_REQUESTS.labels(method=request.method, path=route, status_code=str(response.status_code)).inc()
        HTTP_REQUEST_DURATION.labels(method=request.method, path=route).observe(elapsed)
        return response

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)
        if "server" in response.headers:
            del response.headers["server"]
        return response

    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api/v1")

    # ── Prometheus metrics endpoint ──────────────────────────

    @app.get("/metrics")
    async def metrics():
        from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST,
        )

    # ── Health check ─────────────────────────────────────────

    @app.get("/health")
    async def health():
        from sqlalchemy import text
        from ventushub.api.v1.deps import get_registry

        checks = {"status": "ok"}
        overall_ok = True

        # Database reachable
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"error: {e}"
            overall_ok = False

        # Channel circuit breakers (an open breaker degrades one channel, not the service)
        checks["circuit_breakers"] = {cb.name: cb.state.value for cb in get_registry().breakers.all()}

        checks["status"] = "ok" if overall_ok else "degraded"
        return checks

    return app


app = create_app()
