"""
Pytest configuration for the invoice tests.

Sets up the test environment and shared fixtures: sample line items, render
configs, an in-memory SQLite session and a Flask test client.
"""
import os
from datetime import date
from decimal import Decimal

import pytest

# Set before config.py is imported so Config picks them up
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from invoice_math import InvoiceDocument, Party, ProductItem, ServiceItem, TimeItem  # noqa: E402
from models import Base, Company, Customer, Invoice, InvoiceItem, make_engine, make_session_factory  # noqa: E402
from render_config import default_render_config  # noqa: E402


@pytest.fixture
def company():
    return Party(
        name="Your Company Name",
        address="123 Business St\nCity, ST 12345",
        email="contact@yourcompany.com",
        phone="5551234567",
    )


@pytest.fixture
def customer():
    return Party(
        name="John Willis",
        address="456 Client Ave, City, State 67890",
        email="john.willis@example.com",
        phone="(555) 987-6543",
    )


@pytest.fixture
def sample_items():
    """One of each kind."""
    return [
        TimeItem(description="Consultation Services", date=date(2024, 3, 5), hours=5, hourly_rate="100.00"),
        ServiceItem(description="Project Management", quantity=1, unit_price=200),
        ProductItem(description="USB Cable", long_description="2m braided", quantity=3, unit_price="9.99"),
    ]


@pytest.fixture
def render_config():
    return default_render_config()


@pytest.fixture
def make_document(company, customer, sample_items):
    """Factory: make_document(items=None, **kw) -> InvoiceDocument with computed totals."""
    def _make(items=None, **kw):
        kw.setdefault("number", "2024000001")
        kw.setdefault("company", company)
        kw.setdefault("customer", customer)
        kw.setdefault("date", date(2024, 3, 5))
        kw.setdefault("due_date", date(2024, 4, 4))
        return InvoiceDocument.build(items=sample_items if items is None else items, **kw)
    return _make


@pytest.fixture
def db_session():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(engine)
    SessionLocal = make_session_factory(engine)
    with SessionLocal() as s:
        yield s
    engine.dispose()


def _add_invoice(session, number="2024000001", items=None, **kw):
    """Insert a company, customer and invoice; returns the Invoice."""
    company = Company(name="Your Company Name", address="123 Business St", phone="5551234567")
    customer = Customer(company=company, name="John Willis", email="john.willis@example.com")
    inv = Invoice(
        invoice_number=number,
        company=company,
        customer=customer,
        date=kw.pop("date", date(2024, 3, 5)),
        **kw,
    )
    if items is None:
        items = [InvoiceItem(position=0, kind="TIME", description="Consultation Services",
                             hours=Decimal("5"), hourly_rate=Decimal("100"))]
    inv.items = items
    session.add(inv)
    session.commit()
    return inv


@pytest.fixture
def app(tmp_path):
    from app import create_app

    return create_app({
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{(tmp_path / 'test.db').as_posix()}",
        "SQLALCHEMY_ECHO": False,
        "EXPORTS_DIR": (tmp_path / "exports").as_posix(),
        "DISPLAY_CONFIG_PATH": (tmp_path / "invoice-display.json").as_posix(),
        "PRINT_CONFIG_PATH": (tmp_path / "invoice-print.json").as_posix(),
        "LOG_LEVEL": "WARNING",
        "TESTING": True,
    })


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def add_invoice():
    return _add_invoice
