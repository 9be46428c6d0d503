from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text

from app.config import settings
from app.api.v1.router import api_router
from app.core.exceptions import ReconciliationError
from app.database import init_db, async_session_factory


logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# HTTP status for each error kind
ERROR_STATUS_CODES = {
    "ValidationError": status.HTTP_400_BAD_REQUEST,
    "PermissionError": status.HTTP_403_FORBIDDEN,
    "InvalidStateTransition": status.HTTP_409_CONFLICT,
    "DuplicateItem": status.HTTP_409_CONFLICT,
    "NotFound": status.HTTP_404_NOT_FOUND,
    "ConcurrencyConflict": status.HTTP_409_CONFLICT,
}

# Error kind for framework-raised HTTP errors (auth, unknown routes)
HTTP_ERROR_KINDS = {
    status.HTTP_401_UNAUTHORIZED: "Unauthenticated",
    status.HTTP_403_FORBIDDEN: "PermissionError",
    status.HTTP_404_NOT_FOUND: "NotFound",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create reconciliation tables when missing
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()

    yield

    logger.info("Shutting down...")


# OpenAPI Tags with detailed descriptions
OPENAPI_TAGS = [
    {"name": "Stock Reconciliation", "description": "Physical stock counts, discrepancies and approval workflow"},
    {"name": "Health", "description": "Service and database health"},
]

FULL_API_DESCRIPTION = """
## Stock Reconciliation API

Record physical stock counts against system stock, review discrepancies
and push approved counts back into inventory.

### Workflow

`DRAFT` -> `PENDING_APPROVAL` -> `APPROVED` | `REJECTED`

| Action | From | Roles |
|--------|------|-------|
| submit | DRAFT | ADMIN, MANAGER |
| approve | PENDING_APPROVAL | ADMIN |
| reject | PENDING_APPROVAL | ADMIN |
| delete | DRAFT | ADMIN, MANAGER |

### Authentication

All endpoints except `/health` require a bearer JWT whose `sub` is the user
id and `role` is `ADMIN`, `MANAGER` or `STAFF`.

### Error Codes

| Code | error_kind |
|------|-------------|
| 400 | ValidationError |
| 401 | Invalid/expired token |
| 403 | PermissionError |
| 404 | NotFound |
| 409 | InvalidStateTransition, DuplicateItem, ConcurrencyConflict |
| 500 | Internal Server Error |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=FULL_API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
    swagger_ui_parameters={
        "deepLinking": True,
        "persistAuthorization": True,
        "filter": True,
    },
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    """Convert domain errors into the error envelope."""
    return JSONResponse(
        status_code=ERROR_STATUS_CODES.get(exc.error_kind, status.HTTP_400_BAD_REQUEST),
        content=exc.to_dict(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Wrap framework HTTP errors in the error envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error_kind": HTTP_ERROR_KINDS.get(exc.status_code, "HTTPError"),
            "message": str(exc.detail),
            "details": {},
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed requests are reported as ValidationError."""
    errors = [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "error_kind": "ValidationError",
            "message": "Request validation failed",
            "details": {"errors": errors},
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unexpected errors and hide their internals from the caller."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")

    error_detail = {
        "success": False,
        "error_kind": "InternalError",
        "message": "Internal server error",
        "details": {"type": type(exc).__name__, "path": str(request.url.path)},
    }
    if settings.DEBUG:
        error_detail["details"]["error"] = str(exc)

    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=error_detail)


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        logger.warning(f"Health check database error: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status
