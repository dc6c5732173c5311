"""Structured logging and request tracing."""
import logging
import re
import time
import uuid
from typing import Callable

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from splitlab.config import get_settings

TRACE_HEADER = "X-Trace-ID"

_TEST_PATH = re.compile(r"^/ab-tests/([0-9a-fA-F-]{36})(?:/|$)")


def configure_logging(debug: bool = False) -> None:
    """JSON logs on stdout; DEBUG level when debug is on."""
    level = logging.DEBUG if debug else logging.INFO
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False
    )


configure_logging(get_settings().debug)

logger = structlog.get_logger()


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Binds a trace id (and the test id for /ab-tests/{id} routes) to every
    log line emitted while serving a request.

    An incoming X-Trace-ID is kept, so the assignment made on page load and
    the conversion reported later in the same visitor journey share one id.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        trace_id = request.headers.get(TRACE_HEADER) or str(uuid.uuid4())
        request.state.trace_id = trace_id

        context = {"trace_id": trace_id}
        match = _TEST_PATH.match(request.url.path)
        if match:
            context["test_id"] = match.group(1).lower()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**context)

        logger.debug(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None
        )

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=_elapsed_ms(started)
            )
            raise

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=_elapsed_ms(started)
        )
        response.headers[TRACE_HEADER] = trace_id
        return response


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def get_logger():
    """Get configured structured logger."""
    return logger
