"""
LedgerSeal - Invoices Router

Draft creation, finalization (send), payment and cancellation of invoices,
plus read access to their signed audit entries.

Sent invoices are sealed: their amounts only change through credit notes.
"""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerseal.context import ActorContext
from ledgerseal.database import get_async_session
from ledgerseal.dependencies import get_actor_context
from ledgerseal.models.invoice import InvoiceStatus
from ledgerseal.schemas.credit_note import CreditNoteListResponse, CreditNoteResponse
from ledgerseal.schemas.invoice import (
    InvoiceAuditLogResponse,
    InvoiceCancelRequest,
    InvoiceCreate,
    InvoiceIdsRequest,
    InvoiceListResponse,
    InvoicePaymentRequest,
    InvoiceResponse,
)
from ledgerseal.services.audit_trail import AuditTrailRecorder
from ledgerseal.services.credit_note_service import CreditNoteWorkflow
from ledgerseal.services.invoice_service import InvoiceService, quantize


router = APIRouter(
    prefix="/api/v1/invoices",
    tags=["Invoices"],
)


# ===========================================
# DRAFTS & QUERIES
# ===========================================

@router.post(
    "",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a draft invoice",
)
async def create_invoice(
    request: InvoiceCreate,
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    """Create a draft invoice. It gets its definitive number when sent."""
    mentions = request.model_dump(
        exclude={"client_id", "issue_date", "due_date", "currency", "line_items"},
        exclude_none=True,
    )
    service = InvoiceService(db)
    return await service.create_invoice(
        actor,
        client_id=request.client_id,
        issue_date=request.issue_date,
        due_date=request.due_date,
        currency=request.currency,
        line_items_data=[item.model_dump() for item in request.line_items],
        **mentions,
    )


@router.get(
    "",
    response_model=InvoiceListResponse,
    summary="List invoices",
)
async def list_invoices(
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    invoices = await InvoiceService(db).list_invoices(actor.tenant_id, status_filter, start_date, end_date)
    return InvoiceListResponse(
        invoices=[InvoiceResponse.model_validate(invoice) for invoice in invoices],
        total=len(invoices),
    )


@router.get(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    summary="Get invoice details",
)
async def get_invoice(
    invoice_id: UUID,
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    return await InvoiceService(db).get_invoice(invoice_id, actor.tenant_id)


# ===========================================
# LIFECYCLE
# ===========================================

@router.post(
    "/{invoice_id}/send",
    response_model=InvoiceResponse,
    summary="Finalize and send an invoice",
)
async def send_invoice(
    invoice_id: UUID,
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Assign the next sequence number, chain the hash and sign the invoice.

    After this call the invoice can no longer be edited or deleted.
    """
    return await InvoiceService(db).send_invoice(invoice_id, actor)


@router.post(
    "/{invoice_id}/pay",
    response_model=InvoiceResponse,
    summary="Mark an invoice as paid",
)
async def pay_invoice(
    invoice_id: UUID,
    request: Optional[InvoicePaymentRequest] = None,
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    paid_at = request.paid_at if request else None
    return await InvoiceService(db).mark_paid(invoice_id, actor, paid_at=paid_at)


@router.post(
    "/{invoice_id}/cancel",
    response_model=CreditNoteResponse,
    summary="Cancel an invoice with a full credit note",
)
async def cancel_invoice(
    invoice_id: UUID,
    request: InvoiceCancelRequest,
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    """Issue a full credit note and mark the invoice cancelled, atomically."""
    return await CreditNoteWorkflow(db).cancel_invoice(invoice_id, actor, request.reason)


# ===========================================
# CREDIT NOTES & AUDIT TRAIL
# ===========================================

@router.get(
    "/{invoice_id}/credit-notes",
    response_model=CreditNoteListResponse,
    summary="Credit notes of an invoice",
)
async def list_invoice_credit_notes(
    invoice_id: UUID,
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    workflow = CreditNoteWorkflow(db)
    invoice = await workflow.invoices.get_invoice(invoice_id, actor.tenant_id)
    credit_notes = await workflow.list_credit_notes_for_invoice(invoice.id, actor.tenant_id)
    credited = await workflow.get_total_credited(invoice.id)
    return CreditNoteListResponse(
        credit_notes=[CreditNoteResponse.model_validate(cn) for cn in credit_notes],
        total_credited=credited,
        remaining=quantize(invoice.total - credited),
    )


@router.get(
    "/{invoice_id}/audit-logs",
    response_model=List[InvoiceAuditLogResponse],
    summary="Signed audit entries of an invoice",
)
async def get_invoice_audit_logs(
    invoice_id: UUID,
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    invoice = await InvoiceService(db).get_invoice(invoice_id, actor.tenant_id)
    return await AuditTrailRecorder(db).list_for_invoice(invoice.id)


@router.post(
    "/audit-logs/batch",
    response_model=List[InvoiceAuditLogResponse],
    summary="Signed audit entries of several invoices",
)
async def get_batch_audit_logs(
    request: InvoiceIdsRequest,
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    service = InvoiceService(db)
    invoice_ids = [
        (await service.get_invoice(invoice_id, actor.tenant_id)).id
        for invoice_id in dict.fromkeys(request.invoice_ids)
    ]
    return await AuditTrailRecorder(db).list_for_invoices(invoice_ids)
