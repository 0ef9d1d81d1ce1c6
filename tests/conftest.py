import pytest
from datetime import date, datetime

from invoicing.models.client import Address, Client, CompanyProfile, ContactPerson, Project
from invoicing.models.invoice import Invoice
from invoicing.services.calculator import calculate
from invoicing.services.invoice_service import InvoiceService
from invoicing.settings import Settings
from invoicing.storage.repo import InvoiceRepository


NOW = datetime(2024, 3, 10, 12, 0, 0)

SCENARIO_ITEMS = [
    {"description": "Logo design", "quantity": 2, "rate": 100, "tax_rate": 10},
    {"description": "Hosting", "quantity": 1, "rate": 50, "tax_rate": 0},
]


class FakeClock:
    """Horloge figée et réglable pour les tests."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repo(tmp_path):
    return InvoiceRepository(tmp_path / "invoices.json", backup_enabled=False)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def service(repo, settings, clock):
    return InvoiceService(repo=repo, settings=settings, clock=clock)


@pytest.fixture
def client():
    return Client(
        id="client-1",
        company_name="Globex Corporation",
        contact_person=ContactPerson(first_name="Hank", last_name="Scorpio", email="hank@globex.com"),
        address=Address(street="1 Volcano Way", city="Cypress Creek", state="OR", zip_code="97000", country="USA"),
    )


@pytest.fixture
def company():
    return CompanyProfile(
        name="Afterink Studio",
        address="123 Business Street, Suite 100, City, State 12345",
        phone="+91 98765 43210",
        email="hello@afterink.com",
        website="www.afterink.com",
    )


@pytest.fixture
def project():
    return Project(id="proj-1", name="Website redesign", client_id="client-1")


def make_invoice(items=None, discount=0, **overrides) -> Invoice:
    """Facture calculée, hors stockage."""
    normalized, totals = calculate(items or SCENARIO_ITEMS, discount, overrides.get("currency", "INR"))
    data = dict(
        id="inv-1",
        invoice_number="A00001",
        client_id="client-1",
        issue_date=date(2024, 3, 1),
        due_date=date(2024, 3, 31),
        items=normalized,
        subtotal=totals.subtotal,
        tax_amount=totals.tax_amount,
        discount_amount=totals.discount_amount,
        total_amount=totals.total_amount,
    )
    data.update(overrides)
    return Invoice(**data)


@pytest.fixture
def invoice():
    return make_invoice()


@pytest.fixture
def invoice_factory():
    return make_invoice


@pytest.fixture
def scenario_items():
    return [dict(it) for it in SCENARIO_ITEMS]
