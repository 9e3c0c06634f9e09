"""
Organization numbering settings.

Changing the prefix does not touch counters that already exist; it applies to
the next counter created for the organization (i.e. the next calendar year).
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from invoicing.core.config import get_settings
from invoicing.core.db import get_db
from invoicing.core.tenant import TenantContext, get_tenant_context
from invoicing.models.organization import OrganizationSettings
from invoicing.schemas.numbering import NumberingSettingsResponse, NumberingSettingsUpdate
from invoicing.services.sequence_store import translate_storage_error

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/organization", tags=["organization"])


def _to_response(organization_id: str, invoice_prefix: str | None) -> NumberingSettingsResponse:
    return NumberingSettingsResponse(
        organization_id=organization_id,
        invoice_prefix=invoice_prefix,
        effective_prefix=invoice_prefix or get_settings().invoice_default_prefix,
    )


async def _save_invoice_prefix(
    db: AsyncSession, organization_id: str, invoice_prefix: str | None
) -> None:
    row = await db.get(OrganizationSettings, organization_id)
    if row is None:
        try:
            async with db.begin_nested():
                db.add(
                    OrganizationSettings(
                        organization_id=organization_id, invoice_prefix=invoice_prefix
                    )
                )
                await db.flush()
            return
        except IntegrityError:
            # Another first PUT created the row meanwhile; update theirs
            logger.info("Settings row for org=%s created concurrently", organization_id)
            row = await db.get(OrganizationSettings, organization_id, populate_existing=True)
    row.invoice_prefix = invoice_prefix
    await db.flush()


@router.get("/numbering-settings", response_model=NumberingSettingsResponse)
async def get_numbering_settings(
    tenant: TenantContext = Depends(get_tenant_context),
) -> NumberingSettingsResponse:
    return _to_response(tenant.organization_id, tenant.invoice_prefix)


@router.put("/numbering-settings", response_model=NumberingSettingsResponse)
async def update_numbering_settings(
    payload: NumberingSettingsUpdate,
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> NumberingSettingsResponse:
    try:
        await _save_invoice_prefix(db, tenant.organization_id, payload.invoice_prefix)
        await db.commit()
    except DBAPIError as exc:
        await db.rollback()
        raise translate_storage_error(exc, "save the numbering settings") from exc

    logger.info(
        "Invoice prefix for org=%s set to %s", tenant.organization_id, payload.invoice_prefix
    )
    return _to_response(tenant.organization_id, payload.invoice_prefix)
