# invoice_math.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation, localcontext
from typing import ClassVar, Mapping, Sequence

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

# Inputs at or above 10**31 are coerced to 0. MONEY_CONTEXT keeps every
# product of two accepted inputs exact through quantizing to cents.
MAX_EXPONENT = 30
MONEY_CONTEXT = Context(prec=80, rounding=ROUND_HALF_UP)

# State sales tax rates (decimal fraction, e.g. 0.0725 = 7.25%)
STATE_TAX_RATES: dict[str, Decimal] = {
    "AL": Decimal("0.04"),
    "AK": Decimal("0.00"),  # no state sales tax
    "AZ": Decimal("0.056"),
    "AR": Decimal("0.065"),
    "CA": Decimal("0.0725"),
    "CO": Decimal("0.029"),
    "CT": Decimal("0.0635"),
    "DE": Decimal("0.00"),  # no sales tax
    "FL": Decimal("0.06"),
    "GA": Decimal("0.04"),
    "HI": Decimal("0.04"),
    "ID": Decimal("0.06"),
    "IL": Decimal("0.0625"),
    "IN": Decimal("0.07"),
    "IA": Decimal("0.06"),
    "KS": Decimal("0.065"),
    "KY": Decimal("0.06"),
    "LA": Decimal("0.0445"),
    "ME": Decimal("0.055"),
    "MD": Decimal("0.06"),
    "MA": Decimal("0.0625"),
    "MI": Decimal("0.06"),
    "MN": Decimal("0.06875"),
    "MS": Decimal("0.07"),
    "MO": Decimal("0.04225"),
    "MT": Decimal("0.00"),  # no state sales tax
    "NE": Decimal("0.055"),
    "NV": Decimal("0.0685"),
    "NH": Decimal("0.00"),  # no sales tax
    "NJ": Decimal("0.06625"),
    "NM": Decimal("0.05125"),
    "NY": Decimal("0.04"),
    "NC": Decimal("0.0475"),
    "ND": Decimal("0.05"),
    "OH": Decimal("0.0575"),
    "OK": Decimal("0.045"),
    "OR": Decimal("0.00"),  # no sales tax
    "PA": Decimal("0.06"),
    "RI": Decimal("0.07"),
    "SC": Decimal("0.06"),
    "SD": Decimal("0.045"),
    "TN": Decimal("0.07"),
    "TX": Decimal("0.0625"),
    "UT": Decimal("0.061"),
    "VT": Decimal("0.06"),
    "VA": Decimal("0.053"),
    "WA": Decimal("0.065"),
    "WV": Decimal("0.06"),
    "WI": Decimal("0.05"),
    "WY": Decimal("0.04"),
    "DC": Decimal("0.06"),
}


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP, context=MONEY_CONTEXT)


def to_decimal(value, field: str = "value") -> Decimal:
    """
    Coerce a raw numeric input to a non-negative Decimal.

    Unparsable, non-finite and negative inputs become 0 instead of raising.
    This keeps a half-filled invoice renderable, but it can also hide bad
    upstream data, so every coercion of a real value is logged.
    """
    if value is None or value == "":
        return Decimal(0)
    if isinstance(value, bool):
        value = int(value)
    try:
        if isinstance(value, Decimal):
            d = value
        elif isinstance(value, float):
            if not math.isfinite(value):
                raise InvalidOperation
            d = Decimal(str(value))
        else:
            d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        logger.warning("Coerced unparsable %s to 0", field)
        return Decimal(0)
    if not d.is_finite():
        logger.warning("Coerced non-finite %s to 0", field)
        return Decimal(0)
    if d < 0:
        logger.warning("Coerced negative %s to 0", field)
        return Decimal(0)
    if d.adjusted() > MAX_EXPONENT:
        logger.warning("Coerced out-of-range %s to 0", field)
        return Decimal(0)
    return d


def to_percent(value, field: str = "percent") -> Decimal:
    pct = to_decimal(value, field)
    if pct > HUNDRED:
        logger.warning("Clamped %s above 100 to 100", field)
        return HUNDRED
    return pct


# -----------------------------
# Line items
# -----------------------------
@dataclass(frozen=True)
class LineItem:
    kind: ClassVar[str] = ""

    description: str = ""
    long_description: str | None = None
    tax_rate_percent: object = 0


@dataclass(frozen=True)
class TimeItem(LineItem):
    kind: ClassVar[str] = "TIME"

    date: date | str | None = None
    hours: object = 0
    hourly_rate: object = 0


@dataclass(frozen=True)
class ServiceItem(LineItem):
    kind: ClassVar[str] = "SERVICE"

    quantity: object = 0
    unit_price: object = 0


@dataclass(frozen=True)
class ProductItem(LineItem):
    kind: ClassVar[str] = "PRODUCT"

    quantity: object = 0
    unit_price: object = 0


ITEM_KINDS: dict[str, type[LineItem]] = {
    TimeItem.kind: TimeItem,
    ServiceItem.kind: ServiceItem,
    ProductItem.kind: ProductItem,
}


def _require_mapping(data, what: str) -> Mapping:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"{what} must be an object, got {type(data).__name__}")
    return data


def _pick(data: Mapping, *keys, default=None):
    for k in keys:
        if k in data and data[k] is not None:
            return data[k]
    return default


def _to_bool(value, field: str) -> bool:
    """Accept a real bool or the strings "true"/"false" (any case)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValueError(f"{field} must be true or false, got {value!r}")


def _code(value, field: str) -> str | None:
    if value is None or isinstance(value, str):
        return value
    raise ValueError(f"{field} must be a jurisdiction code, got {value!r}")


def line_item_from_dict(data: Mapping) -> LineItem:
    """Build the matching LineItem variant from a form/JSON mapping (camelCase or snake_case keys)."""
    if not isinstance(data, Mapping):
        raise ValueError(f"line item must be an object, got {type(data).__name__}")
    kind = str(_pick(data, "type", "kind", default="") or "").strip().upper()
    cls = ITEM_KINDS.get(kind)
    if cls is None:
        raise ValueError(f"Unknown line item kind: {kind!r}")

    common = {
        "description": str(_pick(data, "description", default="") or ""),
        "long_description": _pick(data, "longDescription", "long_description"),
        "tax_rate_percent": _pick(data, "taxRate", "taxRatePercent", "itemTaxRatePercent", "tax_rate_percent", default=0),
    }
    if cls is TimeItem:
        return TimeItem(
            **common,
            date=_pick(data, "date"),
            hours=_pick(data, "hours", default=0),
            hourly_rate=_pick(data, "hourlyRate", "hourly_rate", default=0),
        )
    return cls(
        **common,
        quantity=_pick(data, "quantity", default=0),
        unit_price=_pick(data, "unitPrice", "unit_price", default=0),
    )


def item_quantity(item: LineItem) -> Decimal:
    """Hours for time entries, quantity otherwise."""
    if isinstance(item, TimeItem):
        return to_decimal(item.hours, "hours")
    if isinstance(item, (ServiceItem, ProductItem)):
        return to_decimal(item.quantity, "quantity")
    raise TypeError(f"Unhandled line item type: {type(item).__name__}")


def item_rate(item: LineItem) -> Decimal:
    """Hourly rate for time entries, unit price otherwise."""
    if isinstance(item, TimeItem):
        return to_decimal(item.hourly_rate, "hourly rate")
    if isinstance(item, (ServiceItem, ProductItem)):
        return to_decimal(item.unit_price, "unit price")
    raise TypeError(f"Unhandled line item type: {type(item).__name__}")


def item_amount(item: LineItem) -> Decimal:
    qty, rate = item_quantity(item), item_rate(item)
    with localcontext(MONEY_CONTEXT):
        return round2(qty * rate)


# -----------------------------
# Tax / fee inputs
# -----------------------------
@dataclass(frozen=True)
class TaxSelection:
    """Jurisdiction codes; blank means not selected."""
    general: str | None = None
    time: str | None = None
    service: str | None = None
    product: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping | None) -> "TaxSelection":
        data = _require_mapping(data, "taxSelection")
        return cls(
            general=_code(_pick(data, "taxState", "general"), "taxState"),
            time=_code(_pick(data, "taxStateTime", "time", "timeCategory"), "taxStateTime"),
            service=_code(_pick(data, "taxStateService", "service", "serviceCategory"), "taxStateService"),
            product=_code(_pick(data, "taxStateProduct", "product", "productCategory"), "taxStateProduct"),
        )

    def category_code(self, item: LineItem) -> str | None:
        if isinstance(item, TimeItem):
            return self.time
        if isinstance(item, ServiceItem):
            return self.service
        if isinstance(item, ProductItem):
            return self.product
        raise TypeError(f"Unhandled line item type: {type(item).__name__}")


@dataclass(frozen=True)
class FeePolicy:
    enabled: bool = False
    percent: object = Decimal("2.9")

    @classmethod
    def from_dict(cls, data: Mapping | None) -> "FeePolicy":
        data = _require_mapping(data, "feePolicy")
        return cls(
            enabled=_to_bool(_pick(data, "useCreditCardFee", "enabled", default=False), "useCreditCardFee"),
            percent=_pick(data, "creditCardFeePercent", "percent", default=Decimal("2.9")),
        )


def jurisdiction_rate(code: str | None, rates: Mapping[str, object] | None = None) -> Decimal:
    key = (code or "").strip().upper()
    if not key:
        return Decimal(0)
    table = STATE_TAX_RATES if rates is None else rates
    raw = table.get(key)
    if raw is None:
        return Decimal(0)
    return to_decimal(raw, f"tax rate for {key}")


# -----------------------------
# Totals
# -----------------------------
@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    tax: Decimal
    fee: Decimal
    total: Decimal
    item_amounts: tuple[Decimal, ...] = ()
    item_taxes: tuple[Decimal, ...] = ()

    def as_dict(self) -> dict:
        return {
            "subtotal": str(self.subtotal),
            "tax": str(self.tax),
            "fee": str(self.fee),
            "total": str(self.total),
            "itemAmounts": [str(a) for a in self.item_amounts],
            "itemTaxes": [str(t) for t in self.item_taxes],
        }


def compute_item_tax(
    item: LineItem,
    amount: Decimal,
    selection: TaxSelection,
    rates: Mapping[str, object] | None = None,
) -> Decimal:
    # Individual, category and general taxes stack on the same amount. With
    # both a category and a general jurisdiction selected this taxes the item
    # twice; kept as-is until product confirms the intended rule.
    pct = to_percent(item.tax_rate_percent, "item tax rate")
    category_rate = jurisdiction_rate(selection.category_code(item), rates)
    general_rate = jurisdiction_rate(selection.general, rates)
    with localcontext(MONEY_CONTEXT):
        individual = amount * pct / HUNDRED
        return round2(individual + amount * category_rate + amount * general_rate)


def compute_totals(
    items: Sequence[LineItem],
    tax_selection: TaxSelection | None = None,
    fee_policy: FeePolicy | None = None,
    rates: Mapping[str, object] | None = None,
) -> InvoiceTotals:
    """
    Compute subtotal, per-item tax, tax, fee and total.

    Items are folded in input order. Amounts are rounded per item before
    summing, and the aggregate tax is re-summed from the per-item rounded
    values, so results match the invoice form to the cent.
    """
    selection = tax_selection or TaxSelection()
    policy = fee_policy or FeePolicy()

    fee_percent = to_percent(policy.percent, "fee percent") if policy.enabled else None

    with localcontext(MONEY_CONTEXT):
        amounts = tuple(item_amount(it) for it in items)
        subtotal = round2(sum(amounts, ZERO))

        item_taxes = tuple(
            compute_item_tax(it, amt, selection, rates) for it, amt in zip(items, amounts)
        )
        tax = round2(sum(item_taxes, ZERO))

        fee = ZERO
        if fee_percent is not None:
            fee = round2((subtotal + tax) * fee_percent / HUNDRED)

        total = round2(subtotal + tax + fee)
    return InvoiceTotals(
        subtotal=subtotal,
        tax=tax,
        fee=fee,
        total=total,
        item_amounts=amounts,
        item_taxes=item_taxes,
    )


# -----------------------------
# Invoice with totals attached
# -----------------------------
@dataclass(frozen=True)
class Party:
    """Company or customer contact block."""
    name: str = ""
    address: str | None = None
    email: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class InvoiceDocument:
    number: str
    company: Party | None
    customer: Party | None
    items: Sequence[LineItem] | None
    totals: InvoiceTotals | None = None
    date: date | str | None = None
    due_date: date | str | None = None
    status: str = ""
    notes: str = ""

    @classmethod
    def build(
        cls,
        *,
        number: str,
        company: Party | None,
        customer: Party | None,
        items: Sequence[LineItem],
        tax_selection: TaxSelection | None = None,
        fee_policy: FeePolicy | None = None,
        rates: Mapping[str, object] | None = None,
        **kw,
    ) -> "InvoiceDocument":
        items = tuple(items)
        totals = compute_totals(items, tax_selection, fee_policy, rates)
        return cls(number=number, company=company, customer=customer, items=items, totals=totals, **kw)
