import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.config import get_settings, Settings
from app.db.session import get_db, storage_monitor
from app.exceptions import ConflictError, NotFoundError, StorageUnavailable, ValidationError
from app.api.v1.endpoints import users, maintenance
from app.api.v1.schemas.common import ErrorResponse, FieldError

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    storage_monitor.start()
    yield
    storage_monitor.stop()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Pairs registered students one-to-one by major",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"],
    allow_headers=["*"],
)

app.include_router(users.router, prefix="/api")
app.include_router(maintenance.router, prefix="/api")


def _error(status_code: int, error: str, details=None) -> JSONResponse:
    body = ErrorResponse(error=error, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc.message)
    return _error(
        status.HTTP_400_BAD_REQUEST,
        exc.message,
        [FieldError(**detail) for detail in exc.details],
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    details = []
    for error in exc.errors():
        loc = [str(part) for part in error["loc"] if part != "body"]
        details.append(FieldError(field=".".join(loc) or "body", message=error["msg"]))
    logger.warning("Malformed request %s %s", request.method, request.url.path)
    return _error(status.HTTP_400_BAD_REQUEST, "Invalid request body", details)


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    logger.warning("Not found: %s - %s %s", exc.registrant_id, request.method, request.url.path)
    return _error(status.HTTP_404_NOT_FOUND, exc.message)


@app.exception_handler(ConflictError)
async def conflict_error_handler(request: Request, exc: ConflictError):
    logger.warning("Conflict on %s - %s %s", exc.field, request.method, request.url.path)
    return _error(status.HTTP_409_CONFLICT, exc.message)


@app.exception_handler(StorageUnavailable)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
    logger.error("Storage unavailable - %s %s: %s", request.method, request.url.path, exc.message)
    return _error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Storage temporarily unavailable, please retry",
        exc.message,
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(
        "Unexpected error %s - %s %s",
        exc.__class__.__name__,
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", str(exc))


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "ok",
        "message": f"{settings.app_name} is running",
    }


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Health check endpoint with database connectivity test."""
    try:
        # Test database connection
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "components": {
            "api": "healthy",
            "database": db_status,
            "storage_monitor": {
                "running": storage_monitor.running,
                "available": storage_monitor.is_available,
                "last_error": storage_monitor.last_error,
            },
        },
        "version": settings.app_version,
    }


@app.get("/config")
async def get_config(settings: Settings = Depends(get_settings)):
    """Get application configuration (non-sensitive values)."""
    return {
        "app_name": settings.app_name,
        "app_version": settings.app_version,
        "app_env": settings.app_env,
        "matching": {
            "max_attempts": settings.match_max_attempts,
        },
        "storage": {
            "timeout_seconds": settings.store_timeout_seconds,
            "reconnect_interval_seconds": settings.reconnect_interval_seconds,
            "reconnect_backoff_max_seconds": settings.reconnect_backoff_max_seconds,
        },
        "cors_origins": settings.cors_origins,
    }
