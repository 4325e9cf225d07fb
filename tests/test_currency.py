"""
Tests for currency handling and amount formatting
"""

import pytest
from decimal import Decimal

from nova_banking.currency import Currency, to_amount, format_amount
from nova_banking.errors import ValidationError


class TestCurrency:
    """Test Currency enum"""

    def test_currency_properties(self):
        assert Currency.USD.code == "USD"
        assert Currency.USD.precision == 2
        assert Currency.INR.symbol == "₹"
        assert Currency.JPY.precision == 0

    def test_from_code(self):
        assert Currency.from_code("inr") is Currency.INR
        assert Currency.from_code("EUR") is Currency.EUR

    def test_unknown_code(self):
        with pytest.raises(ValidationError):
            Currency.from_code("XYZ")


class TestToAmount:
    """Test parsing of monetary amounts"""

    def test_string_amount(self):
        assert to_amount("100.5") == Decimal("100.50")

    def test_int_amount(self):
        assert to_amount(2000) == Decimal("2000.00")

    def test_rounds_half_up(self):
        assert to_amount("10.005") == Decimal("10.01")
        assert to_amount("10.004") == Decimal("10.00")

    def test_zero_precision_currency(self):
        assert to_amount("1234.5", Currency.JPY) == Decimal("1235")

    @pytest.mark.parametrize("value", ["abc", "", "NaN", "Infinity", 1.5, True])
    def test_invalid_amounts(self, value):
        with pytest.raises(ValidationError, match="Please enter a valid amount"):
            to_amount(value)

    @pytest.mark.parametrize("value", ["1e30", "1e40", "9" * 31])
    def test_amounts_beyond_precision(self, value):
        with pytest.raises(ValidationError, match="Please enter a valid amount"):
            to_amount(value)

    def test_large_amount_within_precision(self):
        assert to_amount("9" * 26) == Decimal("9" * 26 + ".00")


class TestFormatAmount:
    """Test user-facing amount formatting"""

    def test_usd_formatting(self):
        assert format_amount(Decimal("1234.5"), Currency.USD) == "$1,234.50"

    def test_inr_uses_indian_grouping(self):
        assert format_amount(Decimal("1000"), Currency.INR) == "₹1,000.00"
        assert format_amount(Decimal("100000"), Currency.INR) == "₹1,00,000.00"
        assert format_amount(Decimal("12345678.9"), "INR") == "₹1,23,45,678.90"

    def test_small_amounts(self):
        assert format_amount(Decimal("100"), "INR") == "₹100.00"
        assert format_amount(Decimal("0.5"), "USD") == "$0.50"

    def test_currency_code_string(self):
        assert format_amount("300", "GBP") == "£300.00"

    def test_zero_precision(self):
        assert format_amount(Decimal("5000"), Currency.JPY) == "¥5,000"

    def test_negative_amount(self):
        assert format_amount(Decimal("-25"), Currency.EUR) == "-€25.00"
