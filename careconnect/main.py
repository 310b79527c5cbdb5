from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import logging

from .api.deps import enforce_api_rate_limit, get_client_ip
from .api.v1.auth import router as auth_router
from .api.v1.practitioner import router as practitioner_router
from .api.v1.realtime import router as realtime_router
from .core.config import settings
from .core.database import get_session_factory, init_db
from .core.errors import AppError, StorageError, error_code_for_status, validation_details
from .models.audit_log import AuditStatus
from .services.audit_service import AuditLogger

# Configure logging
logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "Content-Security-Policy": "default-src 'self'; img-src 'self' data: https:; style-src 'self' 'unsafe-inline'",
}

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Authentication, practitioner availability and real-time practitioner presence",
    openapi_url="/api/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Middleware setup
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)

# Only add TrustedHostMiddleware in production, not in testing
if not settings.TESTING:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.ALLOWED_HOSTS
    )

# Request logging, timing and security headers
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)

    # Log request
    logger.info(
        f"{request.method} {request.url.path} - "
        f"Status: {response.status_code} - "
        f"Time: {process_time:.4f}s"
    )

    if request.url.path.startswith("/api/"):
        audit_request(request, response.status_code, process_time)

    return response

def audit_request(request: Request, status_code: int, process_time: float) -> None:
    """One audit row per API request with its outcome and duration."""
    # Resolve through the overrides so tests audit into their own database
    provider = app.dependency_overrides.get(get_session_factory, get_session_factory)
    with provider()() as db:
        AuditLogger(db).log(
            request.method,
            request.url.path,
            status=AuditStatus.SUCCESS if 200 <= status_code < 300 else AuditStatus.FAILURE,
            user_id=getattr(request.state, "user_id", None),
            user_role=getattr(request.state, "user_role", None),
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("User-Agent") or "Unknown",
            details=f"Response code: {status_code}, Duration: {process_time * 1000:.0f}ms",
        )

# Exception handlers
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=exc.headers,
    )

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    content = {
        "error": error_code_for_status(exc.status_code),
        "message": exc.detail if exc.status_code < 500 else "An unexpected error occurred",
    }
    if exc.status_code == 404:
        content["message"] = "The requested resource was not found"
        content["path"] = str(request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None),
    )

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Validation failed",
            "details": validation_details(exc.errors()),
        }
    )

@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Storage error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content=StorageError().to_dict())

@app.exception_handler(500)
async def internal_error_handler(request: Request, exc: Exception):
    logger.error(f"Internal server error: {str(exc)}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An internal server error occurred"
        }
    )

# Include routers
api_limit = [Depends(enforce_api_rate_limit)]
app.include_router(auth_router, prefix="/api", dependencies=api_limit)
app.include_router(practitioner_router, prefix="/api", dependencies=api_limit)
app.include_router(realtime_router, prefix="/api")

# Startup and shutdown events
@app.on_event("startup")
async def startup_event():
    """Initialize application on startup."""
    logger.info(f"Starting {settings.APP_NAME}...")

    if settings.uses_default_secret:
        logger.warning("Using the default SECRET_KEY. Set SECRET_KEY before deploying.")

    db_url = settings.get_database_url
    db_type = "PostgreSQL" if "postgresql" in db_url else "SQLite" if "sqlite" in db_url else "Unknown"
    logger.info(f"Using {db_type} database")

    # Initialize database
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {str(e)}")
        raise

    logger.info("Application startup complete")

@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on application shutdown."""
    logger.info(f"Shutting down {settings.APP_NAME}...")

# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.VERSION
    }

# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health"
    }

# API Info endpoint
@app.get("/api/info")
async def api_info():
    """API information endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.VERSION,
        "endpoints": {
            "authentication": "/api/auth",
            "practitioners": "/api/practitioner",
            "presence": "/api/ws/presence",
            "docs": "/docs",
            "openapi": "/api/openapi.json"
        }
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "careconnect.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info"
    )
