"""
LedgerSeal - Credit Notes Router

Credit notes are the only way to reduce the amount of a sent invoice.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerseal.context import ActorContext
from ledgerseal.database import get_async_session
from ledgerseal.dependencies import get_actor_context
from ledgerseal.schemas.credit_note import CreditNoteCreate, CreditNoteResponse
from ledgerseal.services.credit_note_service import CreditNoteWorkflow, CreditSelection


router = APIRouter(
    prefix="/api/v1/credit-notes",
    tags=["Credit Notes"],
)


@router.post(
    "/from-invoice",
    response_model=CreditNoteResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a credit note from an invoice",
)
async def create_credit_note(
    request: CreditNoteCreate,
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Create a draft credit note, either for the whole invoice or for
    selected lines (optionally with reduced quantities).

    Fails with CREDIT_AMOUNT_EXCEEDED when the amount does not fit in what
    remains creditable on the invoice.
    """
    selection = None
    if request.selected_items:
        selection = [CreditSelection(item.item_id, item.quantity) for item in request.selected_items]

    return await CreditNoteWorkflow(db).create_from_invoice(
        request.invoice_id,
        actor,
        reason=request.reason,
        selected_items=selection,
        full_credit=request.full_credit,
        description=request.description,
        credit_note_date=request.credit_note_date,
    )


@router.get(
    "/{credit_note_id}",
    response_model=CreditNoteResponse,
    summary="Get credit note details",
)
async def get_credit_note(
    credit_note_id: UUID,
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    return await CreditNoteWorkflow(db).get_credit_note(credit_note_id, actor.tenant_id)


@router.post(
    "/{credit_note_id}/issue",
    response_model=CreditNoteResponse,
    summary="Issue a draft credit note",
)
async def issue_credit_note(
    credit_note_id: UUID,
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    return await CreditNoteWorkflow(db).issue_credit_note(credit_note_id, actor)


@router.post(
    "/{credit_note_id}/apply",
    response_model=CreditNoteResponse,
    summary="Apply an issued credit note",
)
async def apply_credit_note(
    credit_note_id: UUID,
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    return await CreditNoteWorkflow(db).apply_credit_note(credit_note_id, actor)
