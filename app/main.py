"""
FraudGuard — Main Application Entry Point
Transaction Risk Evaluation & Blacklist Recommendation Service
"""

import time
import uuid
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from prometheus_client import make_asgi_app

from app.api.routes import blacklist, health, recommendations, rules, thresholds, transactions
from app.services.kafka_producer import KafkaProducer
from app.services.db import init_db
from app.services.observability import (
    setup_logging,
    metrics_middleware,
    Metrics,
    REQUEST_ID_CTX,
)
from app.services.errors import exception_to_response, FraudGuardException
from app.config import settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
setup_logging()
logger = logging.getLogger("fraudguard")


# ---------------------------------------------------------------------------
# Rate Limiting
# ---------------------------------------------------------------------------
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.RATE_LIMIT_REQUESTS_PER_MINUTE}/minute"],
    enabled=settings.RATE_LIMIT_ENABLED,
)


# ---------------------------------------------------------------------------
# Lifespan (startup / shutdown)
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Bootstrap heavy resources once; tear down on shutdown."""
    logger.info("FraudGuard — initialising …")

    # 1. Create all DB tables (idempotent)
    await init_db()

    # 2. Warm Kafka producer connection
    if settings.KAFKA_ENABLED and settings.KAFKA_BOOTSTRAP_SERVERS:
        app.state.kafka_producer = KafkaProducer()
        await app.state.kafka_producer.start()
        logger.info("Kafka producer connected.")
    else:
        app.state.kafka_producer = None
        logger.warning("Kafka disabled — assessments will not be published.")

    yield  # ← application runs here

    # --- shutdown ---
    if app.state.kafka_producer is not None:
        await app.state.kafka_producer.stop()
    logger.info("FraudGuard — shut down complete.")


# ---------------------------------------------------------------------------
# FastAPI instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Rule-based transaction risk evaluation for mobile-money, card and bank "
        "payments, with a recipient blacklist and advisory blacklist recommendations."
    ),
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production() else None,
    redoc_url="/redoc" if not settings.is_production() else None,
    openapi_url="/openapi.json" if not settings.is_production() else None,
)


# ---------------------------------------------------------------------------
# Exception Handlers
# ---------------------------------------------------------------------------
def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded."""
    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMIT_EXCEEDED",
                "message": f"Too many requests. {exc.detail}",
                "request_id": getattr(request.state, "request_id", None),
                "retryable": True,
            }
        },
    )


@app.exception_handler(FraudGuardException)
async def fraudguard_exception_handler(request: Request, exc: FraudGuardException):
    """Handle FraudGuard domain exceptions."""
    request_id = getattr(request.state, "request_id", None)
    resp, log_level = exception_to_response(exc, request_id=request_id)
    getattr(logger, log_level)("%s: %s", exc.__class__.__name__, exc)
    return resp


@app.exception_handler(OperationalError)
@app.exception_handler(InterfaceError)
async def store_exception_handler(request: Request, exc: Exception):
    """Surface unbounded store failures (writes) as retryable 503s."""
    request_id = getattr(request.state, "request_id", None)
    Metrics.store_errors_total.labels(kind="unavailable").inc()
    resp, log_level = exception_to_response(exc, request_id=request_id)
    getattr(logger, log_level)("Store failure on %s %s: %s", request.method, request.url.path, exc.__class__.__name__)
    return resp


@app.exception_handler(StarletteHTTPException)
@app.exception_handler(RequestValidationError)
async def request_exception_handler(request: Request, exc: Exception):
    """Wrap framework and validation errors in the standard error envelope."""
    request_id = getattr(request.state, "request_id", None)
    resp, _ = exception_to_response(exc, request_id=request_id)
    return resp


# ---------------------------------------------------------------------------
# Middleware Stack (last added runs first)
# ---------------------------------------------------------------------------

# 1. GZip compression
app.add_middleware(GZipMiddleware, minimum_size=1000)

# 2. CORS
if settings.CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        allow_credentials=True,
    )

# 3. Trusted hosts
if settings.ALLOWED_HOSTS != ["*"]:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.ALLOWED_HOSTS,
    )

# 4. Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
if settings.RATE_LIMIT_ENABLED:
    app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def metrics_collection_middleware(request: Request, call_next) -> Response:
    """Record metrics for requests."""
    if settings.METRICS_ENABLED:
        return await metrics_middleware(request, call_next)
    return await call_next(request)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next) -> Response:
    """
    Attach a request-id (honouring an inbound X-Request-Id), set context
    variables, and log latency.
    """
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    REQUEST_ID_CTX.set(request_id)
    request.state.request_id = request_id
    start_time = time.perf_counter()

    try:
        response: Response = await call_next(request)
    except Exception as exc:
        response, log_level = exception_to_response(exc, request_id=request_id)
        getattr(logger, log_level)("Unhandled exception: %s", exc)

    elapsed_ms = (time.perf_counter() - start_time) * 1_000
    response.headers["X-Request-Id"] = request_id
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"

    logger.info(
        "HTTP request completed",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": elapsed_ms,
        },
    )
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(health.router,          prefix="/api/v1/health",          tags=["Health"])
app.include_router(transactions.router,    prefix="/api/v1/transactions",    tags=["Transactions"])
app.include_router(rules.router,           prefix="/api/v1/rules",           tags=["Rules"])
app.include_router(blacklist.router,       prefix="/api/v1/blacklist",       tags=["Blacklist"])
app.include_router(recommendations.router, prefix="/api/v1/recommendations", tags=["Recommendations"])
app.include_router(thresholds.router,      prefix="/api/v1/thresholds",      tags=["Thresholds"])


# ---------------------------------------------------------------------------
# Prometheus Metrics Endpoint
# ---------------------------------------------------------------------------
if settings.METRICS_ENABLED:
    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)


# ---------------------------------------------------------------------------
# Custom OpenAPI schema
# ---------------------------------------------------------------------------
def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "bearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
            "description": "JWT Bearer token authentication",
        },
        "apiKeyAuth": {
            "type": "apiKey",
            "in": "header",
            "name": "X-API-Key",
            "description": "API Key authentication (fallback)",
        },
    }
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi


# ---------------------------------------------------------------------------
# Root endpoint
# ---------------------------------------------------------------------------
@app.get("/", tags=["Info"])
async def root():
    """API root."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.APP_ENV,
        "docs": "/docs" if not settings.is_production() else None,
    }
