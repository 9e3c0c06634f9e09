"""
Invoice number endpoints.

POST allocates the next number for the caller's organization and commits it
in the same request; a failed commit rolls back and surfaces as 503 so the
client can retry without leaving a gap.
"""
import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from invoicing.core.db import get_db
from invoicing.core.tenant import TenantContext, get_tenant_context
from invoicing.schemas.numbering import InvoiceNumberResponse, SequenceResponse
from invoicing.services.exceptions import NumberingError
from invoicing.services.numbering import NumberingService
from invoicing.services.sequence_store import SqlSequenceStore, translate_storage_error

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/invoice-numbers", tags=["invoice-numbers"])


@router.post("", response_model=InvoiceNumberResponse, status_code=status.HTTP_201_CREATED)
async def allocate_invoice_number(
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> InvoiceNumberResponse:
    service = NumberingService.for_session(db)
    try:
        number = await service.allocate_next(tenant)
        await db.commit()
    except DBAPIError as exc:
        await db.rollback()
        raise translate_storage_error(exc, "commit the sequence") from exc
    except NumberingError:
        await db.rollback()
        raise
    return InvoiceNumberResponse(invoice_number=number)


@router.get("/sequences", response_model=list[SequenceResponse])
async def list_sequences(
    tenant: TenantContext = Depends(get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> list[SequenceResponse]:
    """Per-year counters of the caller's organization, newest first."""
    counters = await SqlSequenceStore(db).list_for_organization(tenant.organization_id)
    return [SequenceResponse.model_validate(c) for c in counters]
