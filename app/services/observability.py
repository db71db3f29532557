"""
FraudGuard — Observability Layer

Provides:
- Structured JSON logging
- Prometheus metrics
- Request correlation IDs
"""

import logging
import time
from typing import Optional, Dict, Any
from contextvars import ContextVar

from prometheus_client import Counter, Histogram
from pythonjsonlogger import jsonlogger
from fastapi import Request, Response

from app.config import settings

# ===========================================================================
# Context Variables (for distributed tracing)
# ===========================================================================
REQUEST_ID_CTX: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
USER_ID_CTX: ContextVar[Optional[str]] = ContextVar("user_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return REQUEST_ID_CTX.get()


def set_request_id(request_id: str) -> None:
    """Set the request ID in context."""
    REQUEST_ID_CTX.set(request_id)


def get_user_id() -> Optional[str]:
    """Get the current user ID from context."""
    return USER_ID_CTX.get()


def set_user_id(user_id: str) -> None:
    """Set the user ID in context."""
    USER_ID_CTX.set(user_id)


# ===========================================================================
# Structured Logging
# ===========================================================================
class StructuredLogFormatter(jsonlogger.JsonFormatter):
    """Custom JSON log formatter with additional context fields."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        """Add context variables to log record."""
        super().add_fields(log_record, record, message_dict)

        request_id = get_request_id()
        user_id = get_user_id()

        if request_id:
            log_record["request_id"] = request_id
        if user_id:
            log_record["user_id"] = user_id

        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["env"] = settings.APP_ENV
        log_record["service"] = settings.APP_NAME
        log_record["version"] = settings.APP_VERSION


def setup_logging() -> None:
    """Configure structured JSON logging for the application."""
    if not settings.STRUCTURED_LOGGING_ENABLED:
        logging.basicConfig(level=settings.LOG_LEVEL)
        return

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.LOG_LEVEL)

    # Remove default handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(StructuredLogFormatter())
    root_logger.addHandler(console_handler)

    for logger_name in [
        "fraudguard",
        "fastapi",
        "uvicorn",
    ]:
        logging.getLogger(logger_name).setLevel(settings.LOG_LEVEL)
    # SQL echo stays off unless explicitly debugging
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


# ===========================================================================
# Prometheus Metrics
# ===========================================================================
class Metrics:
    """Application metrics collector."""

    # Request metrics
    http_requests_total = Counter(
        "fraudguard_http_requests_total",
        "Total HTTP requests",
        ["method", "endpoint", "status"],
    )

    http_request_duration_seconds = Histogram(
        "fraudguard_http_request_duration_seconds",
        "HTTP request duration in seconds",
        ["method", "endpoint"],
        buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
    )

    # Evaluation metrics
    evaluations_total = Counter(
        "fraudguard_evaluations_total",
        "Transaction risk evaluations by resulting level",
        ["level"],  # LOW, MEDIUM, HIGH
    )

    evaluation_duration_seconds = Histogram(
        "fraudguard_evaluation_duration_seconds",
        "End-to-end evaluation time (fetch, score, upsert)",
        buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
    )

    risk_scores_distribution = Histogram(
        "fraudguard_risk_scores_distribution",
        "Distribution of integer risk scores",
        buckets=(10, 20, 30, 40, 50, 60, 70, 80, 100, 150),
    )

    rules_skipped_total = Counter(
        "fraudguard_rules_skipped_total",
        "Malformed rules skipped during evaluation",
        ["rule_code"],
    )

    # Blacklist metrics
    blacklist_operations_total = Counter(
        "fraudguard_blacklist_operations_total",
        "Blacklist registry writes",
        ["operation", "result"],  # add|remove × success|conflict|not_found
    )

    recommendations_computed_total = Counter(
        "fraudguard_recommendations_computed_total",
        "Recipients evaluated for blacklist recommendation",
        ["outcome"],  # recommended, blacklisted, clear
    )

    # Store metrics
    store_errors_total = Counter(
        "fraudguard_store_errors_total",
        "Retryable store failures surfaced to callers",
        ["kind"],  # timeout, unavailable
    )

    # Kafka metrics
    kafka_messages_sent_total = Counter(
        "fraudguard_kafka_messages_sent_total",
        "Total Kafka messages sent",
        ["topic"],
    )

    kafka_messages_errors_total = Counter(
        "fraudguard_kafka_messages_errors_total",
        "Kafka message send errors",
        ["topic"],
    )


# ===========================================================================
# Middleware for automatic metric collection
# ===========================================================================
async def metrics_middleware(request: Request, call_next) -> Response:
    """Record HTTP request metrics."""
    start_time = time.perf_counter()
    path = request.url.path
    method = request.method
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration = time.perf_counter() - start_time

        Metrics.http_requests_total.labels(
            method=method,
            endpoint=path,
            status=status_code,
        ).inc()

        Metrics.http_request_duration_seconds.labels(
            method=method,
            endpoint=path,
        ).observe(duration)


# ===========================================================================
# Logging utilities
# ===========================================================================
def log_transaction_evaluated(
    transaction_id: str,
    risk_level: str,
    risk_score: int,
    reasons: str,
    duration_ms: float,
) -> None:
    """Log a transaction evaluation event."""
    logger = logging.getLogger("fraudguard.scoring")
    logger.info(
        "Transaction evaluated",
        extra={
            "transaction_id": transaction_id,
            "risk_level": risk_level,
            "risk_score": risk_score,
            "reasons": reasons,
            "duration_ms": duration_ms,
        },
    )

    Metrics.risk_scores_distribution.observe(risk_score)
    Metrics.evaluations_total.labels(level=risk_level).inc()
    Metrics.evaluation_duration_seconds.observe(duration_ms / 1000)
