import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from app.metrics import record_http_request


# Context variable to store request_id for the current request
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

UNMATCHED_ROUTE = "<unmatched>"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter to ensure ISO-8601 timestamps and request_id."""

    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
        if not log_record.get('ts'):
            log_record['ts'] = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
        log_record['level'] = record.levelname

        if 'request_id' not in log_record:
            req_id = request_id_ctx.get()
            if req_id:
                log_record['request_id'] = req_id


def setup_logging(log_level: str = "INFO"):
    """
    Setup structured JSON logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger = logging.getLogger()
    logger.setLevel(log_level.upper())

    # Remove existing handlers
    logger.handlers = []

    json_handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        '%(ts)s %(level)s %(name)s %(message)s'
    )
    json_handler.setFormatter(formatter)

    logger.addHandler(json_handler)

    # Route Uvicorn loggers through the same JSON handler
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(json_handler)
        uvicorn_logger.propagate = False

    # Disable uvicorn.access logger since we have our own middleware
    logging.getLogger("uvicorn.access").disabled = True

    return logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests in structured JSON format.

    Log keys:
    - ts, level, request_id
    - method, path, status, latency_ms

    For message endpoints, also includes whatever the handler attached
    with log_message_data (message_id, result).
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())

        token = request_id_ctx.set(request_id)
        start_time = time.perf_counter()

        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                # Uncaught errors: render the 500 here so it carries X-Request-ID
                handler = request.app.exception_handlers.get(Exception)
                if handler is None:
                    raise
                response = await handler(request, exc)

            response.headers["X-Request-ID"] = request_id

            latency_seconds = time.perf_counter() - start_time
            latency_ms = round(latency_seconds * 1000, 2)

            # Label by route template so /api/messages/1 and /api/messages/2 share a series
            route = request.scope.get("route")
            route_path = getattr(route, "path", UNMATCHED_ROUTE)
            if route_path != "/metrics":
                record_http_request(
                    method=request.method,
                    path=route_path,
                    status=response.status_code,
                    latency_seconds=latency_seconds
                )

            log_data = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": latency_ms,
            }

            if hasattr(request.state, "message_log_data"):
                log_data.update(request.state.message_log_data)

            logger = logging.getLogger("app.requests")

            if response.status_code >= 500:
                logger.error("Request completed", extra=log_data)
            elif response.status_code >= 400:
                logger.warning("Request completed", extra=log_data)
            else:
                logger.info("Request completed", extra=log_data)

            return response
        finally:
            request_id_ctx.reset(token)


def log_message_data(request: Request, message_id: Optional[int] = None, result: Optional[str] = None):
    """
    Attach message-specific logging data to the request state.
    This data will be included in the request log by the middleware.

    Args:
        request: FastAPI request object
        message_id: Id of the message the request touched
        result: Processing result (created, deleted, not_found, validation_error, ...)
    """
    message_data = {}

    if message_id is not None:
        message_data["message_id"] = message_id

    if result is not None:
        message_data["result"] = result

    request.state.message_log_data = message_data
