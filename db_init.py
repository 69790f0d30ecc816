# db_init.py
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path

from sqlalchemy import select

from config import Config
from models import Base, Company, Customer, Invoice, InvoiceItem, make_engine, make_session_factory, next_invoice_number


def seed(session, seq_width: int = 6) -> bool:
    """Insert the default company, two customers and a sample invoice. No-op if a company exists."""
    if session.execute(select(Company)).first() is not None:
        return False

    company = Company(
        name="Your Company Name",
        address="123 Business St, City, State 12345",
        email="contact@yourcompany.com",
        phone="(555) 123-4567",
    )
    john = Customer(
        company=company,
        name="John Willis",
        email="john.willis@example.com",
        address="456 Client Ave, City, State 67890",
        phone="(555) 987-6543",
    )
    catharine = Customer(
        company=company,
        name="Catharine Hamilton",
        email="catharine.hamilton@example.com",
        address="789 Customer Blvd, City, State 54321",
        phone="(555) 456-7890",
    )
    session.add_all([company, john, catharine])
    session.flush()

    today = date.today()
    inv = Invoice(
        invoice_number=next_invoice_number(session, today.year, seq_width),
        company=company,
        customer=john,
        date=today,
        due_date=today + timedelta(days=30),
        status="DRAFT",
        notes="Thank you for your business!",
    )
    inv.items = [
        InvoiceItem(position=0, kind="TIME", description="Consultation Services", date=today,
                    hours=Decimal("5"), hourly_rate=Decimal("100")),
        InvoiceItem(position=1, kind="TIME", description="Development Work", date=today,
                    hours=Decimal("3"), hourly_rate=Decimal("100")),
        InvoiceItem(position=2, kind="SERVICE", description="Project Management",
                    quantity=Decimal("1"), unit_price=Decimal("200")),
    ]
    inv.recompute_totals()
    session.add(inv)
    session.commit()
    return True


def main():
    # Ensure instance/ exists for SQLite local dev
    if Config.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        Path("instance").mkdir(parents=True, exist_ok=True)

    # Ensure exports/ exists for PDFs
    Path(Config.EXPORTS_DIR).mkdir(parents=True, exist_ok=True)

    engine = make_engine(Config.SQLALCHEMY_DATABASE_URI, echo=Config.SQLALCHEMY_ECHO)
    Base.metadata.create_all(engine)

    SessionLocal = make_session_factory(engine)
    with SessionLocal() as s:
        seeded = seed(s, Config.INVOICE_SEQ_WIDTH)

    print("✅ Database initialized.")
    print("Seeded default company and sample invoice." if seeded else "Existing data found, seed skipped.")
    print(f"DB: {Config.SQLALCHEMY_DATABASE_URI}")
    print(f"Exports dir: {Config.EXPORTS_DIR}")

if __name__ == "__main__":
    main()
