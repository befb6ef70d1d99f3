"""FastAPI application entrypoint.

Responsibilities kept minimal:
  * App / lifespan initialization (schema, logging, periodic sync loop)
  * Router registration (availability, rules, bookings, sync, connections)
  * Cross-cutting concerns: metrics middleware & exception handlers
"""

from contextlib import asynccontextmanager
import logging
import os
from fastapi import FastAPI, Request, Response
try:  # Optional OpenTelemetry
    from opentelemetry import trace
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    _otel_available = True
except Exception:  # pragma: no cover
    _otel_available = False
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from .api.availability import router as availability_router
from .api.availability_rules import router as availability_rules_router
from .api.bookings import router as bookings_router
from .api.connections import router as connections_router
from .api.sync import router as sync_router
from .api.deps import get_sync_scheduler
from .config import get_settings
from .db.session import ensure_tables
from .errors import BaseAppException, InternalServerError
from .metrics import REQUEST_COUNT, REQUEST_LATENCY

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - simple startup path
    """Create the schema (idempotent for tests) and run the periodic sync loop when enabled."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ensure_tables()
    scheduler = None
    if settings.sync_scheduler_enabled:
        scheduler = get_sync_scheduler()
        scheduler.start()
    yield
    if scheduler is not None:
        scheduler.stop()


app = FastAPI(title="SlotSync API", version="0.1.0", lifespan=lifespan)

# --- OpenTelemetry Tracing (optional) ---
if _otel_available and os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"):
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    resource = Resource.create({"service.name": "slotsync-backend"})
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(endpoint=endpoint)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    tracer = trace.get_tracer(__name__)
else:  # pragma: no cover
    tracer = None

# --- CORS (for local frontend dev) ---
cors_origins_env = os.getenv("CORS_ALLOW_ORIGINS")
if cors_origins_env:
    allow_origins = [o.strip() for o in cors_origins_env.split(",") if o.strip()]
else:
    allow_origins = ["http://localhost:3000"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(availability_rules_router)
app.include_router(availability_router)
app.include_router(bookings_router)
app.include_router(sync_router)
app.include_router(connections_router)


def _path_label(path: str) -> str:
    # Collapse ids so metric cardinality stays bounded
    for prefix in ("/sync/connections/", "/connections/", "/availability/rules/", "/bookings/"):
        if path.startswith(prefix) and len(path) > len(prefix):
            return prefix + ":id"
    return path


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    method = request.method
    path_label = _path_label(request.url.path)
    with REQUEST_LATENCY.labels(method=method, path=path_label).time():
        if tracer:
            with tracer.start_as_current_span(f"HTTP {method} {path_label}"):
                response: Response = await call_next(request)
        else:
            response: Response = await call_next(request)
    REQUEST_COUNT.labels(method=method, path=path_label, status=str(response.status_code)).inc()
    return response


@app.get("/metrics")
def metrics():  # pragma: no cover - external scrape
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.exception_handler(BaseAppException)
async def app_exception_handler(request: Request, exc: BaseAppException):
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": {"code": exc.code, "message": exc.message}},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):  # pragma: no cover
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    err = InternalServerError("unexpected error")
    return JSONResponse(
        status_code=err.http_status,
        content={"detail": {"code": err.code, "message": err.message}},
    )


@app.get("/healthz")
async def health():
    settings = get_settings()
    return {
        "status": "ok",
        "scheduler": "enabled" if settings.sync_scheduler_enabled else "disabled",
        "tracing": "enabled" if tracer else "disabled",
    }
