"""
LedgerSeal - Compliance Router

Read-only integrity and legal-mention checks.
"""

from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerseal.context import ActorContext
from ledgerseal.database import get_async_session
from ledgerseal.dependencies import get_actor_context
from ledgerseal.models.sequence import DocumentFamily
from ledgerseal.services.compliance_service import ComplianceValidator
from ledgerseal.services.invoice_service import InvoiceService


router = APIRouter(
    prefix="/api/v1/compliance",
    tags=["Compliance"],
)


@router.get("/sequence", summary="Check gapless numbering")
async def check_sequence(
    family: DocumentFamily = Query(DocumentFamily.INVOICE),
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
) -> Dict[str, Any]:
    result = await ComplianceValidator(db).check_sequential_numbering(actor.tenant_id, family)
    return result.to_dict()


@router.get("/hash-chain", summary="Verify the hash chain")
async def check_hash_chain(
    year: Optional[int] = Query(None, ge=1900, le=9999),
    family: DocumentFamily = Query(DocumentFamily.INVOICE),
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
) -> Dict[str, Any]:
    result = await ComplianceValidator(db).check_hash_chain(actor.tenant_id, year, family)
    return result.to_dict()


@router.get("/invoices/{invoice_id}", summary="Check mandatory mentions of an invoice")
async def check_invoice(
    invoice_id: UUID,
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
) -> Dict[str, Any]:
    service = InvoiceService(db)
    invoice = await service.get_invoice(invoice_id, actor.tenant_id)
    tenant = await service.get_tenant(actor.tenant_id)
    report = await ComplianceValidator(db).check_compliance(invoice, tenant)
    return report.to_dict()


@router.get("/invoices/{invoice_id}/audit-trail", summary="Verify audit entry signatures")
async def check_audit_trail(
    invoice_id: UUID,
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
) -> Dict[str, Any]:
    invoice = await InvoiceService(db).get_invoice(invoice_id, actor.tenant_id)
    result = await ComplianceValidator(db).check_audit_trail(invoice.id)
    return result.to_dict()


@router.get("/tenant", summary="Can the tenant issue invoices")
async def check_tenant(
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
) -> Dict[str, Any]:
    tenant = await InvoiceService(db).get_tenant(actor.tenant_id)
    return ComplianceValidator(db).check_tenant(tenant).to_dict()


@router.get("/clients/{client_id}", summary="Can the client receive invoices")
async def check_client(
    client_id: UUID,
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
) -> Dict[str, Any]:
    client = await InvoiceService(db).get_client(client_id, actor.tenant_id)
    return ComplianceValidator(db).check_client(client).to_dict()


@router.get("/metrics", summary="Compliance dashboard metrics")
async def compliance_metrics(
    actor: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
) -> Dict[str, Any]:
    return await ComplianceValidator(db).compliance_metrics(actor.tenant_id)
