"""
Tests for the currency, date and contact formatters.
"""

import logging
from datetime import date, datetime
from decimal import Decimal

from formatting import (
    address_lines,
    format_address,
    format_currency,
    format_invoice_date,
    format_name,
    format_phone,
    format_quantity,
    group_number,
)
from render_config import CurrencyFormat


class TestCurrency:
    def test_default_us_dollars(self):
        assert format_currency(Decimal("1234.5"), CurrencyFormat()) == "$1,234.50"

    def test_symbol_after_with_german_separators(self):
        euro = CurrencyFormat(symbol="€", locale="de-DE", placement="after")

        assert format_currency(Decimal("1234.5"), euro) == "1.234,50€"

    def test_zero_decimal_places_round_half_up(self):
        yen = CurrencyFormat(symbol="¥", decimal_places=0, locale="ja-JP")

        assert format_currency(Decimal("1234.5"), yen) == "¥1,235"

    def test_unknown_locale_uses_english_separators(self):
        assert group_number(Decimal("9876543.21"), 2, "xx-YY") == "9,876,543.21"

    def test_negative_amount(self):
        assert group_number(Decimal("-1234.5")) == "-1,234.50"

    def test_amount_past_default_precision(self):
        assert group_number(Decimal("1E+28")) == "10,000,000,000,000,000,000,000,000,000.00"

    def test_quantity_has_two_places_no_grouping(self):
        assert format_quantity(Decimal("5")) == "5.00"
        assert format_quantity("1234.5") == "1234.50"


class TestDates:
    """date-fns style patterns."""

    D = date(2024, 3, 5)  # a Tuesday

    def test_default_pattern(self):
        assert format_invoice_date(self.D, "MMMM d, yyyy") == "March 5, 2024"

    def test_numeric_patterns(self):
        assert format_invoice_date(self.D, "yyyy-MM-dd") == "2024-03-05"
        assert format_invoice_date(self.D, "dd/MM/yy") == "05/03/24"
        assert format_invoice_date(self.D, "yyyyMMdd") == "20240305"

    def test_weekday_and_short_month(self):
        assert format_invoice_date(self.D, "EEE, MMM d") == "Tue, Mar 5"
        assert format_invoice_date(self.D, "EEEE") == "Tuesday"

    def test_quoted_literal(self):
        assert format_invoice_date(self.D, "d 'of' MMMM") == "5 of March"

    def test_accepts_datetime_and_iso_string(self):
        assert format_invoice_date(datetime(2024, 3, 5, 14, 30), "M/d/yyyy") == "3/5/2024"
        assert format_invoice_date("2024-03-05T10:00:00Z", "M/d/yyyy") == "3/5/2024"

    def test_invalid_pattern_falls_back_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="formatting"):
            assert format_invoice_date(self.D, "QQQ yyyy") == "March 5, 2024"

        assert "Invalid date format" in caplog.text

    def test_unparsable_value_is_blank(self, caplog):
        with caplog.at_level(logging.WARNING, logger="formatting"):
            assert format_invoice_date("next tuesday") == ""

        assert "Could not parse date" in caplog.text

    def test_missing_value_is_blank(self):
        assert format_invoice_date(None) == ""


class TestContactDetails:
    def test_phone(self):
        assert format_phone("5551234567") == "(555) 123-4567"
        assert format_phone("1-555-123-4567") == "+1 (555) 123-4567"
        assert format_phone("ext. 12") == "ext. 12"
        assert format_phone(None) == ""

    def test_name_keeps_particles_lowercase(self):
        assert format_name("john VAN der berg jr") == "John van der Berg jr"

    def test_address_capitalization(self):
        raw = "123 main st nw\nspringfield il 62701"

        assert format_address(raw) == "123 Main St NW\nSpringfield IL 62701"

    def test_address_ordinals(self):
        assert format_address("500 w 21ST street") == "500 W 21st Street"

    def test_address_lines_split_on_real_and_escaped_newlines(self):
        assert address_lines("123 Business St\\nSuite 4\n\nCity, ST 12345") == [
            "123 Business St",
            "Suite 4",
            "City, ST 12345",
        ]
