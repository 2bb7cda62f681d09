"""
LedgerSeal - Tenant and Client Models

The issuing business (tenant) and the customers it invoices. Legal
identifiers live here because they are mandatory mentions on every invoice.
"""

import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ledgerseal.models.base import BaseModel


class Tenant(BaseModel):
    """A business issuing invoices and credit notes."""

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Legal identifiers
    siret: Mapped[Optional[str]] = mapped_column(String(14), nullable=True)
    vat_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    legal_form: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    capital: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    rcs_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    rcs_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    rm_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # VAT regime
    vat_subject: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    vat_exemption_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_auto_entrepreneur: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Bank details
    iban: Mapped[Optional[str]] = mapped_column(String(34), nullable=True)
    bic: Mapped[Optional[str]] = mapped_column(String(11), nullable=True)

    @property
    def display_name(self) -> str:
        return self.company_name or self.name


class Client(BaseModel):
    """A customer of a tenant."""

    __tablename__ = "clients"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    vat_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    is_company: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
