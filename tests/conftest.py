"""
LedgerSeal - Test Configuration

Pytest fixtures and configuration.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("DATABASE_URL_ASYNC", "sqlite+aiosqlite:///:memory:")

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Dict
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from ledgerseal.context import ActorContext
from ledgerseal.database import Base, get_async_session
from ledgerseal.models.invoice import Invoice
from ledgerseal.models.tenant import Client, Tenant
from ledgerseal.services.credit_note_service import CreditNoteWorkflow
from ledgerseal.services.invoice_service import InvoiceService
from main import app
from factories import MANDATORY_MENTIONS, STANDARD_LINES


# In-memory database shared by every connection of the test engine
test_engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database for each test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# DATA FIXTURES
# ===========================================

@pytest_asyncio.fixture
async def tenant(db_session: AsyncSession) -> Tenant:
    """A fully documented SAS, able to issue invoices."""
    tenant = Tenant(
        id=uuid4(),
        name="Atelier Durand",
        company_name="Atelier Durand SAS",
        address="12 rue des Lilas",
        postal_code="75011",
        city="Paris",
        email="compta@atelier-durand.fr",
        siret="12345678900012",
        vat_number="FR12345678901",
        legal_form="SAS",
        capital=Decimal("10000.00"),
        rcs_number="RCS Paris 123 456 789",
        rcs_city="Paris",
        vat_subject=True,
        iban="FR7630006000011234567890189",
        bic="AGRIFRPP",
    )
    db_session.add(tenant)
    await db_session.commit()
    return tenant


@pytest_asyncio.fixture
async def test_client(db_session: AsyncSession, tenant: Tenant) -> Client:
    customer = Client(
        id=uuid4(),
        tenant_id=tenant.id,
        name="Boulangerie Martin",
        address="3 place du Marche",
        postal_code="69002",
        city="Lyon",
        email="contact@boulangerie-martin.fr",
        vat_number="FR98765432109",
        is_company=True,
    )
    db_session.add(customer)
    await db_session.commit()
    return customer


@pytest.fixture
def actor(tenant: Tenant) -> ActorContext:
    return ActorContext(
        tenant_id=tenant.id,
        user_id=uuid4(),
        ip_address="203.0.113.7",
        user_agent="pytest",
    )


@pytest.fixture
def api_headers(actor: ActorContext) -> Dict[str, str]:
    return {"X-Tenant-ID": str(actor.tenant_id), "X-User-ID": str(actor.user_id)}


@pytest.fixture
def invoice_service(db_session: AsyncSession) -> InvoiceService:
    return InvoiceService(db_session)


@pytest.fixture
def workflow(db_session: AsyncSession) -> CreditNoteWorkflow:
    return CreditNoteWorkflow(db_session)


@pytest_asyncio.fixture
async def draft_invoice(invoice_service: InvoiceService, actor: ActorContext, test_client: Client) -> Invoice:
    return await invoice_service.create_invoice(
        actor,
        client_id=test_client.id,
        issue_date=date(2026, 3, 15),
        due_date=date(2026, 4, 14),
        line_items_data=STANDARD_LINES,
        **MANDATORY_MENTIONS,
    )


@pytest_asyncio.fixture
async def sent_invoice(invoice_service: InvoiceService, actor: ActorContext, draft_invoice: Invoice) -> Invoice:
    return await invoice_service.send_invoice(draft_invoice.id, actor)
