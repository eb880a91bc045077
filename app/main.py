from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings
from app.api.v1.router import api_router
from app.core.exceptions import CheckoutError
from app.database import init_db, async_session_factory
from app.middleware.tenant import tenant_middleware

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create tables when AUTO_CREATE_TABLES is set (schema is otherwise
      managed by alembic)
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    if settings.AUTO_CREATE_TABLES:
        await init_db()
    if settings.DEMO_MODE:
        logger.warning("DEMO_MODE is on: payments go to the simulated gateway")

    yield

    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Checkout", "description": "Public checkout funnel: lead, validate, address, payment, retry"},
    {"name": "Health", "description": "Liveness and database connectivity"},
]

API_DESCRIPTION = """
Multi-tenant checkout funnel API.

Every checkout request is scoped to a tenant, sent as the `X-Tenant-ID`
header (tenant id or subdomain) or taken from the request subdomain.

| Code | Description |
|------|-------------|
| 400 | Bad Request - validation failed or step not allowed |
| 403 | Forbidden - tenant is not active |
| 404 | Not Found - campaign, offer or customer doesn't exist |
| 502 | Payment gateway unreachable |
| 503 | No payment gateway configured |
| 500 | Internal Server Error |
"""

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.middleware("http")(tenant_middleware)

app.include_router(api_router)


# ==================== Exception Handlers ====================

@app.exception_handler(CheckoutError)
async def checkout_exception_handler(request: Request, exc: CheckoutError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, **exc.details},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


def format_validation_error(error: dict) -> str:
    """'<field>: <reason>' for the first failing field."""
    field = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path"))
    reason = error.get("msg", "Invalid value")
    if reason.startswith("Value error, "):
        reason = reason[len("Value error, "):]
    return f"{field}: {reason}" if field else reason


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = format_validation_error(errors[0]) if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log the traceback; never leak internals to the caller."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ==================== Health ====================

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

    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = "error"

    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
