"""
FastAPI application factory.

Startup sequence:
  1. Validate settings
  2. Check DB connectivity (warn on failure — do not crash, the load balancer will detect)
  3. Mount all API routers

Numbering errors raised anywhere below the routers are mapped to HTTP here:
  TenantNotResolvedError   → 400
  InvalidPrefixError       → 422
  RetryableNumberingError  → 503 + Retry-After
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from invoicing.core.config import get_settings
from invoicing.core.db import check_db_connection
from invoicing.api.v1.health import router as health_router
from invoicing.api.v1.invoice_numbers import router as invoice_numbers_router
from invoicing.api.v1.organization import router as organization_router
from invoicing.services.exceptions import (
    InvalidPrefixError,
    RetryableNumberingError,
    TenantNotResolvedError,
)

settings = get_settings()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.is_development else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting invoicing backend (env=%s)", settings.environment)
    db_ok = await check_db_connection()
    if db_ok:
        logger.info("Database connection: OK")
    else:
        logger.warning("Database connection: FAILED — check DB_HOST / credentials")

    yield

    logger.info("Shutting down invoicing backend")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Invoicing — numbering API",
        version="0.1.0",
        description="Gapless per-organization invoice numbering",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # ------------------------------------------------------------------ #
    # Numbering errors
    # ------------------------------------------------------------------ #
    @app.exception_handler(TenantNotResolvedError)
    async def tenant_not_resolved_handler(request: Request, exc: TenantNotResolvedError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": str(exc)},
        )

    @app.exception_handler(InvalidPrefixError)
    async def invalid_prefix_handler(request: Request, exc: InvalidPrefixError):
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc)},
        )

    @app.exception_handler(RetryableNumberingError)
    async def retryable_numbering_handler(request: Request, exc: RetryableNumberingError):
        logger.warning("Numbering failed on %s %s: %s", request.method, request.url, exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": str(exc)},
            headers={"Retry-After": "1"},
        )

    # ------------------------------------------------------------------ #
    # Global exception handler
    # ------------------------------------------------------------------ #
    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # ------------------------------------------------------------------ #
    # Routers
    # ------------------------------------------------------------------ #
    app.include_router(health_router)
    app.include_router(invoice_numbers_router, prefix="/api/v1")
    app.include_router(organization_router, prefix="/api/v1")

    return app


app = create_app()
