"""
GET /health — load balancer health check endpoint.

No tenant header required. Reports DB connectivity; the numbering endpoints
cannot work without it.
"""
from fastapi import APIRouter
from pydantic import BaseModel

from invoicing.core.config import get_settings
from invoicing.core.db import check_db_connection

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    db: str
    environment: str


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check() -> HealthResponse:
    db_ok = await check_db_connection()
    return HealthResponse(
        status="ok" if db_ok else "degraded",
        db="ok" if db_ok else "error",
        environment=get_settings().environment,
    )
