import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Annotated, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Path, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import Settings, get_settings
from app.errors import GuestbookError
from app.logging_utils import setup_logging, RequestLoggingMiddleware, log_message_data
from app.metrics import record_message_operation, get_metrics, get_metrics_content_type
from app.storage import (
    create_db_engine,
    create_session_factory,
    init_db,
    check_db_health,
    get_db,
    create_message,
    get_messages,
    get_message_by_id,
    delete_message,
    get_database_status,
    describe_schema,
)
from app.schemas import (
    MessageCreate,
    MessageResponse,
    MessagesListResponse,
    MessageDetailResponse,
    MessageCreatedResponse,
    MessageDeletedResponse,
    ErrorResponse,
    HealthResponse,
    ReadinessResponse,
    DatabaseStatusResponse,
    DatabaseInfo,
    MessageCount,
    SchemaResponse,
)


logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Validation failed"},
    404: {"model": ErrorResponse, "description": "Message not found"},
    500: {"model": ErrorResponse, "description": "Storage failure"},
}

MessageId = Annotated[int, Path(description="Message id")]

root_router = APIRouter()
api_router = APIRouter(prefix="/api")


# =============================================================================
# Error Responses
# =============================================================================

def error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[str] = None,
) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def _show_details(request: Request) -> bool:
    return request.app.state.settings.is_development


def _describe_validation_errors(errors) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "path", "query"))
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts) or "Invalid request"


async def guestbook_error_handler(request: Request, exc: GuestbookError) -> JSONResponse:
    """Render store errors (validation, not found, storage) and count the outcome."""
    result = {400: "validation_error", 404: "not_found"}.get(exc.status_code, "storage_error")
    operation = getattr(request.scope.get("route"), "name", "unknown")
    record_message_operation(operation, result)
    log_message_data(request, message_id=getattr(exc, "message_id", None), result=result)

    if exc.status_code >= 500:
        logger.error(f"{operation} failed: {exc.message}")

    details = exc.details if _show_details(request) else None
    return error_response(exc.status_code, exc.error, exc.message, details)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and path parameters are client errors: 400, not 422."""
    logger.warning(f"Request validation failed: {exc.errors()}")
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "Validation failed",
        _describe_validation_errors(exc.errors()),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code in (status.HTTP_404_NOT_FOUND, status.HTTP_405_METHOD_NOT_ALLOWED):
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"
        return error_response(status.HTTP_404_NOT_FOUND, "Not found", f"Route {path} not found")

    return error_response(exc.status_code, HTTPStatus(exc.status_code).phrase, str(exc.detail))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error: {exc}", exc_info=exc)
    details = str(exc) if _show_details(request) else None
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        "Something went wrong",
        details,
    )


# =============================================================================
# Root Routes
# =============================================================================

@root_router.get("/")
def root() -> dict:
    """Welcome document listing the available endpoints."""
    return {
        "message": "Welcome to the Guestbook API",
        "version": API_VERSION,
        "endpoints": {
            "health": "/api/health",
            "ready": "/api/health/ready",
            "testDb": "/api/test-db",
            "checkTables": "/api/check-tables",
            "createMessage": "POST /api/messages",
            "getMessages": "GET /api/messages",
            "getMessage": "GET /api/messages/:id",
            "deleteMessage": "DELETE /api/messages/:id",
            "metrics": "/metrics",
        },
    }


@root_router.get("/metrics")
def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@api_router.get("/health", response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    """Liveness check - always 200 once the app is running."""
    return HealthResponse(
        timestamp=datetime.now(timezone.utc),
        uptime=round(time.monotonic() - request.app.state.started_at, 3),
    )


@api_router.get("/health/ready", response_model=ReadinessResponse)
def health_ready(request: Request, response: Response) -> ReadinessResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    messages table exists. Otherwise returns 503 (Service Unavailable).
    """
    if not check_db_health(request.app.state.engine):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return ReadinessResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )
    return ReadinessResponse(status="ready")


@api_router.get("/test-db", response_model=DatabaseStatusResponse, responses={500: ERROR_RESPONSES[500]})
def database_status(db: Session = Depends(get_db)) -> DatabaseStatusResponse:
    """Check connectivity and report server time, version and message count."""
    db_status = get_database_status(db)
    logger.info(f"Database connection successful: version {db_status['version']}")
    return DatabaseStatusResponse(
        database=DatabaseInfo(time=db_status["time"], version=db_status["version"]),
        messages=MessageCount(count=db_status["count"]),
    )


@api_router.get("/check-tables", response_model=SchemaResponse, responses={500: ERROR_RESPONSES[500]})
def check_tables(request: Request) -> SchemaResponse:
    """List database tables and the columns of the messages table."""
    schema = describe_schema(request.app.state.engine)
    return SchemaResponse(**schema)


# =============================================================================
# Messages Routes
# =============================================================================

@api_router.get(
    "/messages",
    response_model=MessagesListResponse,
    responses={500: ERROR_RESPONSES[500]},
)
def list_messages(request: Request, db: Session = Depends(get_db)) -> MessagesListResponse:
    """List every message, newest first."""
    messages = get_messages(db)
    data = [MessageResponse.model_validate(msg) for msg in messages]

    record_message_operation("list_messages", "ok")
    log_message_data(request, result="ok")
    return MessagesListResponse(count=len(data), data=data)


@api_router.get(
    "/messages/{message_id}",
    response_model=MessageDetailResponse,
    responses={404: ERROR_RESPONSES[404], 500: ERROR_RESPONSES[500]},
)
def read_message(message_id: MessageId, request: Request, db: Session = Depends(get_db)) -> MessageDetailResponse:
    """Fetch a single message."""
    msg = get_message_by_id(db, message_id)

    record_message_operation("read_message", "found")
    log_message_data(request, message_id=message_id, result="found")
    return MessageDetailResponse(data=MessageResponse.model_validate(msg))


@api_router.post(
    "/messages",
    status_code=status.HTTP_201_CREATED,
    response_model=MessageCreatedResponse,
    responses={400: ERROR_RESPONSES[400], 500: ERROR_RESPONSES[500]},
)
def submit_message(payload: MessageCreate, request: Request, db: Session = Depends(get_db)) -> MessageCreatedResponse:
    """
    Store a guestbook message.

    All three fields are required and trimmed; name and email are limited
    to 255 characters. Validation happens before the database is touched.
    """
    msg = create_message(db, name=payload.name, email=payload.email, message=payload.message)

    record_message_operation("submit_message", "created")
    log_message_data(request, message_id=msg.id, result="created")
    return MessageCreatedResponse(data=MessageResponse.model_validate(msg))


@api_router.delete(
    "/messages/{message_id}",
    response_model=MessageDeletedResponse,
    responses={404: ERROR_RESPONSES[404], 500: ERROR_RESPONSES[500]},
)
def remove_message(message_id: MessageId, request: Request, db: Session = Depends(get_db)) -> Response:
    """Delete a message. 404 if it does not exist (or was already deleted)."""
    if not delete_message(db, message_id):
        record_message_operation("remove_message", "not_found")
        log_message_data(request, message_id=message_id, result="not_found")
        return error_response(status.HTTP_404_NOT_FOUND, "Not found", "Message not found")

    record_message_operation("remove_message", "deleted")
    log_message_data(request, message_id=message_id, result="deleted")
    return MessageDeletedResponse()


# =============================================================================
# Application Factory
# =============================================================================

def startup_banner(settings: Settings) -> list[str]:
    """Lines logged once the schema is ready and the server is about to serve."""
    base_url = f"http://localhost:{settings.PORT}"
    return [
        "Guestbook API started",
        f"Local: {base_url}",
        f"Health: {base_url}/api/health",
        f"DB Test: {base_url}/api/test-db",
        f"Tables: {base_url}/api/check-tables",
        f"Environment: {settings.ENVIRONMENT}",
    ]


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    The database engine is created and the schema provisioned in the
    lifespan startup, before any request is served; the engine's pool is
    disposed on shutdown once in-flight requests have finished.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        engine = create_db_engine(settings)
        try:
            init_db(engine)
        except Exception:
            engine.dispose()
            raise

        app.state.engine = engine
        app.state.session_factory = create_session_factory(engine)
        for line in startup_banner(settings):
            logger.info(line, extra={"environment": settings.ENVIRONMENT, "port": settings.PORT})
        try:
            yield
        finally:
            # Shutdown
            logger.info("Shutting down, closing database pool")
            engine.dispose()

    app = FastAPI(
        title="Guestbook API",
        description="Guestbook messages backed by a relational table",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.started_at = time.monotonic()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(GuestbookError, guestbook_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(root_router)
    app.include_router(api_router)
    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn on HOST:PORT."""
    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        # Logging is configured by setup_logging
        log_config=None,
    )


if __name__ == "__main__":
    run()
