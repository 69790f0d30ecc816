# models.py
from __future__ import annotations

import datetime as dt
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    create_engine,
    String,
    Integer,
    Boolean,
    Numeric,
    Date,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    select,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
    sessionmaker,
    validates,
)

from formatting import format_address, format_name
from invoice_math import (
    FeePolicy,
    InvoiceDocument,
    Party,
    TaxSelection,
    ProductItem,
    ServiceItem,
    TimeItem,
    compute_totals,
)

MONEY = Numeric(12, 2)
QTY = Numeric(12, 4)

# -----------------------------
# SQLAlchemy base
# -----------------------------
class Base(DeclarativeBase):
    pass


# -----------------------------
# Tables
# -----------------------------
class InvoiceSequence(Base):
    """
    Stores the last used sequence number per year.
    Used to generate invoice_number like: YYYY###### (no dash).
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = (UniqueConstraint("year", name="uq_invoice_sequences_year"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    last_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    customers: Mapped[list["Customer"]] = relationship(back_populates="company", order_by="Customer.id")

    # Business names keep their own casing (LLC, IBM)
    @validates("address")
    def _normalize_address(self, key, value):
        return format_address(value) if value else value

    def to_party(self) -> Party:
        return Party(name=self.name or "", address=self.address, email=self.email, phone=self.phone)


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    company: Mapped["Company"] = relationship(back_populates="customers")

    @validates("name")
    def _normalize_name(self, key, value):
        return format_name(value) if value else value

    @validates("address")
    def _normalize_address(self, key, value):
        return format_address(value) if value else value

    def to_party(self) -> Party:
        return Party(name=self.name or "", address=self.address, email=self.email, phone=self.phone)


class Invoice(Base):
    """
    Invoice header: parties, dates, tax/fee selections and the stored totals.
    Totals are a cache of compute_totals(); call recompute_totals() after editing items.
    """
    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Human-friendly invoice number: YYYY###### (no dash)
    invoice_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)

    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), nullable=False, index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), nullable=False, index=True)

    date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    due_date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="DRAFT")
    notes: Mapped[str] = mapped_column(String, nullable=False, default="")

    # Jurisdiction codes (e.g. "CA"); NULL means not selected
    tax_state: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    tax_state_time: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    tax_state_service: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    tax_state_product: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)

    use_card_fee: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    card_fee_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("2.9"))

    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    fee: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    # Stored PDF (file path on disk)
    pdf_path: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    pdf_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    company: Mapped["Company"] = relationship()
    customer: Mapped["Customer"] = relationship()
    items: Mapped[list["InvoiceItem"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
    )

    def line_items(self) -> list:
        return [it.to_line_item() for it in self.items]

    def tax_selection(self) -> TaxSelection:
        return TaxSelection(
            general=self.tax_state,
            time=self.tax_state_time,
            service=self.tax_state_service,
            product=self.tax_state_product,
        )

    def fee_policy(self) -> FeePolicy:
        percent = self.card_fee_percent if self.card_fee_percent is not None else Decimal("2.9")
        return FeePolicy(enabled=bool(self.use_card_fee), percent=percent)

    def recompute_totals(self):
        """Recompute every amount from the items and store it; returns the InvoiceTotals."""
        totals = compute_totals(self.line_items(), self.tax_selection(), self.fee_policy())
        for row, amount in zip(self.items, totals.item_amounts):
            row.amount = amount
        self.subtotal = totals.subtotal
        self.tax = totals.tax
        self.fee = totals.fee
        self.total = totals.total
        return totals

    def to_document(self) -> InvoiceDocument:
        return InvoiceDocument.build(
            number=self.invoice_number,
            company=self.company.to_party() if self.company else None,
            customer=self.customer.to_party() if self.customer else None,
            items=self.line_items(),
            tax_selection=self.tax_selection(),
            fee_policy=self.fee_policy(),
            date=self.date,
            due_date=self.due_date,
            status=self.status or "",
            notes=self.notes or "",
        )


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="SERVICE")  # TIME / SERVICE / PRODUCT
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    long_description: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # TIME
    date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    hours: Mapped[Decimal] = mapped_column(QTY, nullable=False, default=Decimal("0"))
    hourly_rate: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    # SERVICE / PRODUCT
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False, default=Decimal("0"))
    unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    tax_rate_percent: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False, default=Decimal("0"))
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    invoice: Mapped["Invoice"] = relationship(back_populates="items")

    def to_line_item(self):
        kind = (self.kind or "").upper()
        common = dict(
            description=self.description or "",
            long_description=self.long_description,
            tax_rate_percent=self.tax_rate_percent,
        )
        if kind == TimeItem.kind:
            return TimeItem(**common, date=self.date, hours=self.hours, hourly_rate=self.hourly_rate)
        if kind == ServiceItem.kind:
            return ServiceItem(**common, quantity=self.quantity, unit_price=self.unit_price)
        if kind == ProductItem.kind:
            return ProductItem(**common, quantity=self.quantity, unit_price=self.unit_price)
        raise ValueError(f"Unknown line item kind: {self.kind!r} (item id={self.id})")


# -----------------------------
# Engine / Session factory
# -----------------------------
def make_engine(db_url: str, echo: bool = False):
    """
    Create SQLAlchemy engine.
    Note: SQLite path must exist (instance/ folder); db_init.py creates it.
    """
    return create_engine(db_url, echo=echo, future=True)


def make_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


# -----------------------------
# Invoice number generator
# -----------------------------
def next_invoice_number(session, year: int, seq_width: int = 6) -> str:
    """
    Returns next invoice number like YYYY###### (no dash).
    Uses a per-year counter in invoice_sequences.
    """
    seq_row = session.execute(
        select(InvoiceSequence).where(InvoiceSequence.year == year)
    ).scalar_one_or_none()

    if seq_row is None:
        seq_row = InvoiceSequence(year=year, last_seq=0)
        session.add(seq_row)
        session.flush()

    seq_row.last_seq += 1
    session.flush()

    return f"{year}{seq_row.last_seq:0{seq_width}d}"
