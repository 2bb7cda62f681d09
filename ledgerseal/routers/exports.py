"""
LedgerSeal - Ledger Export Router

Downloads of FEC-format ledger files: full periods for the tax
administration, and per-invoice audit trails for auditors.
"""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerseal.config import settings
from ledgerseal.context import ActorContext
from ledgerseal.database import get_async_session
from ledgerseal.dependencies import get_actor_context
from ledgerseal.schemas.invoice import InvoiceIdsRequest
from ledgerseal.services.ledger_export import (
    ExportEncoding,
    LedgerExportService,
    audit_trail_filename,
    batch_audit_trail_filename,
    period_filename,
)


router = APIRouter(
    prefix="/api/v1/exports",
    tags=["Ledger Export"],
)


def _attachment(content: bytes, filename: str, encoding: ExportEncoding) -> Response:
    return Response(
        content=content,
        media_type=f"text/plain; charset={encoding.value}",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/fec", summary="Export the ledger of a period")
async def export_fec(
    start_date: date = Query(...),
    end_date: date = Query(...),
    encoding: ExportEncoding = Query(ExportEncoding(settings.fec_default_encoding)),
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    """Every finalized invoice and issued credit note dated within the period."""
    service = LedgerExportService(db)
    tenant = await service.get_tenant(actor.tenant_id)
    content = await service.export_period(actor.tenant_id, start_date, end_date, encoding)
    return _attachment(content, period_filename(tenant.siret, start_date, end_date), encoding)


@router.get("/invoices/{invoice_id}/audit-trail", summary="Export the audit trail of one invoice")
async def export_invoice_audit_trail(
    invoice_id: UUID,
    encoding: ExportEncoding = Query(ExportEncoding(settings.fec_default_encoding)),
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    service = LedgerExportService(db)
    invoices = await service.load_finalized_invoices(actor.tenant_id, [invoice_id])
    content = await service.export_invoice_audit_trail(actor.tenant_id, invoice_id, encoding)
    return _attachment(content, audit_trail_filename(invoices[0].invoice_number), encoding)


@router.post("/audit-trail/batch", summary="Export the audit trail of several invoices")
async def export_batch_audit_trail(
    request: InvoiceIdsRequest,
    encoding: ExportEncoding = Query(ExportEncoding(settings.fec_default_encoding)),
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    content = await LedgerExportService(db).export_batch_audit_trail(actor.tenant_id, request.invoice_ids, encoding)
    return _attachment(content, batch_audit_trail_filename(), encoding)
