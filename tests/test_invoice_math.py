"""
Tests for the invoice computation engine.

Tests cover:
- Per-item amounts and half-up cent rounding
- Individual, category and general jurisdiction tax (stacked)
- Card fee on subtotal + tax
- Numeric coercion of bad inputs
- Building line items, tax selections and fee policies from form JSON
- Amounts beyond the default Decimal precision
"""

import logging
from decimal import Decimal

import pytest

from invoice_math import (
    FeePolicy,
    InvoiceDocument,
    Party,
    ProductItem,
    ServiceItem,
    TaxSelection,
    TimeItem,
    compute_totals,
    item_amount,
    jurisdiction_rate,
    line_item_from_dict,
    round2,
    to_decimal,
)


class TestWorkedExamples:
    """Reference invoices the form must reproduce to the cent."""

    def test_time_item_no_tax_no_fee(self):
        totals = compute_totals([TimeItem(hours=5, hourly_rate="100.00")])

        assert totals.subtotal == Decimal("500.00")
        assert totals.tax == Decimal("0.00")
        assert totals.fee == Decimal("0.00")
        assert totals.total == Decimal("500.00")

    def test_individual_item_tax(self):
        totals = compute_totals([TimeItem(hours=5, hourly_rate=100, tax_rate_percent=5)])

        assert totals.item_taxes == (Decimal("25.00"),)
        assert totals.tax == Decimal("25.00")
        assert totals.total == Decimal("525.00")

    def test_category_and_general_tax_stack(self):
        """CA (7.25%) on time items plus NY (4%) on everything."""
        selection = TaxSelection(general="NY", time="CA")
        totals = compute_totals([TimeItem(hours=5, hourly_rate=100)], selection)

        assert totals.item_taxes == (Decimal("56.25"),)
        assert totals.tax == Decimal("56.25")
        assert totals.total == Decimal("556.25")

    def test_card_fee_on_subtotal_plus_tax(self):
        item = ServiceItem(quantity=1, unit_price=1000, tax_rate_percent=10)
        totals = compute_totals([item], fee_policy=FeePolicy(enabled=True, percent="2.9"))

        assert totals.subtotal == Decimal("1000.00")
        assert totals.tax == Decimal("100.00")
        assert totals.fee == Decimal("31.90")
        assert totals.total == Decimal("1131.90")


class TestTotalsProperties:
    """Invariants that hold for any item list."""

    ITEMS = [
        TimeItem(hours="0.333", hourly_rate="10"),
        TimeItem(hours="0.333", hourly_rate="10"),
        ProductItem(quantity=3, unit_price="0.335", tax_rate_percent="8.25"),
        ServiceItem(quantity="1.5", unit_price="19.99", tax_rate_percent=7),
    ]

    def test_subtotal_is_sum_of_rounded_item_amounts(self):
        totals = compute_totals(self.ITEMS)

        assert totals.item_amounts == (Decimal("3.33"), Decimal("3.33"), Decimal("1.01"), Decimal("29.99"))
        assert totals.subtotal == sum(totals.item_amounts)

    def test_tax_is_sum_of_rounded_item_taxes(self):
        totals = compute_totals(self.ITEMS, TaxSelection(general="CA"))

        assert all(t == round2(t) for t in totals.item_taxes)
        assert totals.tax == sum(totals.item_taxes)

    def test_total_is_rounded_sum(self):
        totals = compute_totals(self.ITEMS, TaxSelection(general="TX"), FeePolicy(enabled=True))

        assert totals.total == round2(totals.subtotal + totals.tax + totals.fee)

    def test_no_selection_and_no_item_rates_means_no_tax(self):
        items = [TimeItem(hours=2, hourly_rate=50), ProductItem(quantity=1, unit_price=20)]

        assert compute_totals(items).tax == Decimal("0.00")

    def test_item_order_is_preserved(self):
        items = [ServiceItem(quantity=1, unit_price=1), ServiceItem(quantity=1, unit_price=2)]

        assert compute_totals(items).item_amounts == (Decimal("1.00"), Decimal("2.00"))

    def test_fee_disabled_is_zero(self):
        totals = compute_totals([ServiceItem(quantity=1, unit_price=100)], fee_policy=FeePolicy(percent=50))

        assert totals.fee == Decimal("0.00")

    def test_empty_invoice(self):
        totals = compute_totals([])

        assert totals.total == Decimal("0.00")
        assert totals.item_amounts == ()


class TestRounding:
    """Half-up cent rounding on exact decimals."""

    def test_half_cent_rounds_up(self):
        assert item_amount(ServiceItem(quantity=1, unit_price="0.005")) == Decimal("0.01")

    def test_no_binary_float_drift(self):
        # 2.675 is 2.67499999... as a binary float
        assert item_amount(ServiceItem(quantity=1, unit_price=2.675)) == Decimal("2.68")

    def test_large_amounts_keep_every_cent(self):
        totals = compute_totals(
            [ServiceItem(quantity="1e27", unit_price=10), ServiceItem(quantity=1, unit_price="0.01")],
            TaxSelection(general="CA"),
            FeePolicy(enabled=True),
        )

        assert totals.subtotal == Decimal("1" + "0" * 28 + ".01")
        assert totals.tax == Decimal("725" + "0" * 24)
        assert totals.fee == Decimal("311025" + "0" * 21)
        assert totals.total == Decimal("11036025" + "0" * 21 + ".01")

    def test_round2_beyond_default_precision(self):
        assert round2(Decimal("123456789012345678901234567890.125")) == Decimal("123456789012345678901234567890.13")


class TestJurisdictions:
    def test_code_is_normalized(self):
        assert jurisdiction_rate(" ca ") == Decimal("0.0725")

    def test_unknown_and_blank_codes_are_zero(self):
        assert jurisdiction_rate("ZZ") == 0
        assert jurisdiction_rate("") == 0
        assert jurisdiction_rate(None) == 0

    def test_injected_rate_table(self):
        totals = compute_totals(
            [ProductItem(quantity=2, unit_price=50)],
            TaxSelection(product="X1"),
            rates={"X1": "0.10"},
        )

        assert totals.tax == Decimal("10.00")

    def test_category_rate_only_hits_its_kind(self):
        items = [TimeItem(hours=1, hourly_rate=100), ServiceItem(quantity=1, unit_price=100)]
        totals = compute_totals(items, TaxSelection(service="CA"))

        assert totals.item_taxes == (Decimal("0.00"), Decimal("7.25"))


class TestNumericCoercion:
    """Bad numbers become 0 and are reported."""

    def test_negative_is_zero_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="invoice_math"):
            assert item_amount(TimeItem(hours=-3, hourly_rate=100)) == Decimal("0.00")

        assert "negative hours" in caplog.text

    def test_unparsable_is_zero_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="invoice_math"):
            assert to_decimal("abc", "unit price") == 0

        assert "unparsable unit price" in caplog.text

    def test_non_finite_is_zero(self):
        assert to_decimal(float("inf")) == 0
        assert to_decimal("NaN") == 0

    def test_out_of_range_is_zero_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="invoice_math"):
            totals = compute_totals([ServiceItem(quantity="1e40", unit_price=1)])

        assert totals.total == Decimal("0.00")
        assert "out-of-range quantity" in caplog.text

    def test_unset_is_zero_without_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="invoice_math"):
            assert to_decimal(None) == 0
            assert to_decimal("") == 0

        assert caplog.records == []

    def test_percent_is_clamped_to_100(self):
        totals = compute_totals([ServiceItem(quantity=1, unit_price=10, tax_rate_percent=150)])

        assert totals.tax == Decimal("10.00")


class TestLineItemFromDict:
    """Form payloads (camelCase) map to the right item variant."""

    def test_time_item(self):
        item = line_item_from_dict({"type": "TIME", "hours": "2.5", "hourlyRate": "80", "date": "2024-03-05"})

        assert isinstance(item, TimeItem)
        assert item_amount(item) == Decimal("200.00")

    def test_product_item_snake_case(self):
        item = line_item_from_dict({"kind": "product", "quantity": 4, "unit_price": "2.50", "tax_rate_percent": 5})

        assert isinstance(item, ProductItem)
        assert item_amount(item) == Decimal("10.00")

    def test_unknown_kind_raises(self):
        with pytest.raises(ValueError, match="Unknown line item kind"):
            line_item_from_dict({"type": "SUBSCRIPTION"})

    def test_selection_and_fee_from_form(self):
        selection = TaxSelection.from_dict({"taxState": "NY", "taxStateTime": "CA"})
        policy = FeePolicy.from_dict({"useCreditCardFee": True})

        assert selection == TaxSelection(general="NY", time="CA")
        assert policy.enabled is True
        assert policy.percent == Decimal("2.9")

    def test_fee_flag_strings(self):
        assert FeePolicy.from_dict({"useCreditCardFee": "false"}).enabled is False
        assert FeePolicy.from_dict({"useCreditCardFee": "TRUE"}).enabled is True
        assert FeePolicy.from_dict(None).enabled is False

    @pytest.mark.parametrize("flag", ["yes", 1, [True]])
    def test_fee_flag_must_be_boolean(self, flag):
        with pytest.raises(ValueError, match="useCreditCardFee"):
            FeePolicy.from_dict({"useCreditCardFee": flag})

    @pytest.mark.parametrize("parse", [TaxSelection.from_dict, FeePolicy.from_dict, line_item_from_dict])
    def test_non_mapping_is_rejected(self, parse):
        with pytest.raises(ValueError, match="must be an object"):
            parse(5)

    def test_jurisdiction_code_must_be_text(self):
        with pytest.raises(ValueError, match="taxState"):
            TaxSelection.from_dict({"taxState": 7})


class TestInvoiceDocument:
    def test_build_computes_totals(self):
        doc = InvoiceDocument.build(
            number="2024000001",
            company=Party(name="Acme"),
            customer=Party(name="John Willis"),
            items=[TimeItem(hours=5, hourly_rate=100)],
            tax_selection=TaxSelection(general="NY"),
        )

        assert doc.totals.total == Decimal("520.00")
        assert isinstance(doc.items, tuple)

    def test_totals_as_dict_uses_strings(self):
        data = compute_totals([TimeItem(hours=5, hourly_rate=100)]).as_dict()

        assert data["total"] == "500.00"
        assert data["itemAmounts"] == ["500.00"]
