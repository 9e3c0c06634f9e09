"""
Tenant resolution.

The organization is resolved once per request and handed to the numbering
service as an explicit TenantContext; nothing is kept in module or context
variables between requests.

Authentication of the X-Organization-ID header is the job of whatever sits
in front of this service.
"""
from dataclasses import dataclass

from fastapi import Depends, Header
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from invoicing.core.db import get_db
from invoicing.models.organization import OrganizationSettings
from invoicing.services.exceptions import TenantNotResolvedError
from invoicing.services.sequence_store import translate_storage_error


@dataclass(frozen=True)
class TenantContext:
    organization_id: str
    # None → the configured default prefix applies
    invoice_prefix: str | None = None


async def get_tenant_context(
    x_organization_id: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> TenantContext:
    """FastAPI dependency: build the TenantContext for the current request."""
    organization_id = (x_organization_id or "").strip()
    if not organization_id:
        raise TenantNotResolvedError("X-Organization-ID header is required")
    if len(organization_id) > 64:
        raise TenantNotResolvedError("X-Organization-ID must be at most 64 characters")

    try:
        org_settings = await db.get(OrganizationSettings, organization_id)
    except DBAPIError as exc:
        raise translate_storage_error(exc, "resolve the organization") from exc
    return TenantContext(
        organization_id=organization_id,
        invoice_prefix=org_settings.invoice_prefix if org_settings else None,
    )
