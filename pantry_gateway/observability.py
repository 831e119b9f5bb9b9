from __future__ import annotations

import logging
import sys
import uuid
from time import perf_counter

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from structlog import dev

from .config import Settings

_LOGGING_CONFIGURED = False
_SENTRY_CONFIGURED = False

access_logger = logging.getLogger("pantry_gateway.access")

REDACTED = "***"
# Event keys that may carry upstream or inbound credentials.
_SECRET_KEYS = frozenset(
    {
        "authorization",
        "grocy_api_key",
        "grocy-api-key",
        "cf_access_client_secret",
        "cf-access-client-secret",
        "gateway_bearer_token",
    }
)

# Server loggers re-parented onto the root handler.
_ADOPTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")
# httpx logs every upstream request URL at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore")


def redact_credentials(_logger, _method_name, event_dict):
    for key in list(event_dict):
        if key.lower() in _SECRET_KEYS and event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def _renderer(json_logs: bool) -> structlog.types.Processor:
    if json_logs:
        return structlog.processors.JSONRenderer(sort_keys=True)
    return dev.ConsoleRenderer(colors=False)


def configure_logging(json_logs: bool, level: str = "INFO") -> None:
    """Send gateway, server and structlog records through one formatter.

    Request context bound by ``RequestContextMiddleware`` is merged into
    every record, stdlib ones included, and credential-bearing keys are
    masked before rendering.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    context_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_credentials,
    ]

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=context_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(json_logs),
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(log_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            *context_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for name in _ADOPTED_LOGGERS:
        adopted = logging.getLogger(name)
        adopted.handlers.clear()
        adopted.propagate = True
        adopted.setLevel(log_level)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    _LOGGING_CONFIGURED = True


def init_sentry(settings: Settings) -> None:
    """Initialise Sentry, capturing breadcrumbs from logging if configured."""
    global _SENTRY_CONFIGURED
    if _SENTRY_CONFIGURED:
        return

    dsn = getattr(settings, "sentry_dsn", None)
    if not dsn:
        return

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_logging = LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)

    sentry_sdk.init(
        dsn=dsn,
        environment=settings.environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        integrations=[FastApiIntegration(), sentry_logging],
        send_default_pii=False,
    )

    _SENTRY_CONFIGURED = True


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the log context and emit one access line per request."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex[:16]
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        started = perf_counter()
        try:
            response = await call_next(request)
        finally:
            elapsed_ms = (perf_counter() - started) * 1000
        access_logger.info("request completed status=%s elapsed_ms=%.1f", response.status_code, elapsed_ms)
        response.headers.setdefault("X-Request-Id", request_id)
        return response
