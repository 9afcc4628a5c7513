"""
Test suite for currency module

Tests Money class, minor-unit conversion, and proper Decimal handling.
All monetary calculations must use Decimal precision.
"""

import pytest
from decimal import Decimal

from debt_collections.currency import (
    Money, Currency, currency_from_code, decimal_from_string
)
from debt_collections.errors import NegativeBalanceError


class TestMoney:
    """Test Money class operations"""

    def test_money_creation(self):
        """Test Money object creation and rounding"""
        money = Money(Decimal('100.50'), Currency.USD)
        assert money.amount == Decimal('100.50')
        assert money.currency == Currency.USD

        # Rounded half-up to currency precision
        assert Money(Decimal('100.555'), Currency.USD).amount == Decimal('100.56')
        assert Money(Decimal('100.5'), Currency.JPY).amount == Decimal('101')

    def test_money_rejects_floats(self):
        """Floats never reach the money math"""
        with pytest.raises(TypeError):
            Money(100.5, Currency.USD)

    def test_money_accepts_strings(self):
        """String amounts are converted to Decimal"""
        assert Money('19.99', Currency.EUR).amount == Decimal('19.99')

    def test_money_arithmetic(self):
        """Test Money arithmetic operations"""
        money1 = Money(Decimal('100.50'), Currency.USD)
        money2 = Money(Decimal('50.25'), Currency.USD)

        assert (money1 + money2).amount == Decimal('150.75')
        assert (money1 - money2).amount == Decimal('50.25')
        assert (money1 * 2).amount == Decimal('201.00')

    def test_mixed_currency_operations_fail(self):
        """Mixing currencies is an error"""
        usd = Money(Decimal('10'), Currency.USD)
        eur = Money(Decimal('10'), Currency.EUR)

        with pytest.raises(ValueError):
            usd + eur
        with pytest.raises(ValueError):
            usd < eur
        assert usd != eur

    def test_money_comparison(self):
        """Test Money comparison operations"""
        money1 = Money(Decimal('100.00'), Currency.USD)
        money2 = Money(Decimal('50.00'), Currency.USD)

        assert money1 == Money(Decimal('100'), Currency.USD)
        assert money2 < money1
        assert money1 >= money2
        assert min(money1, money2) == money2

    def test_minor_units(self):
        """Fixed-precision integer form"""
        assert Money(Decimal('123.45'), Currency.USD).minor_units == 12345
        assert Money(Decimal('500'), Currency.JPY).minor_units == 500
        assert Money.from_minor_units(12345, Currency.USD).amount == Decimal('123.45')
        assert Money.from_minor_units(7, Currency.JPY).amount == Decimal('7')

    def test_subtract_non_negative(self):
        """Balances never go below zero"""
        balance = Money(Decimal('100.00'), Currency.USD)

        assert balance.subtract_non_negative(Money(Decimal('100.00'), Currency.USD)).is_zero()

        with pytest.raises(NegativeBalanceError):
            balance.subtract_non_negative(Money(Decimal('100.01'), Currency.USD))

    def test_predicates_and_formatting(self):
        """Zero/sign checks and display strings"""
        assert Money.zero(Currency.USD).is_zero()
        assert Money(Decimal('1'), Currency.USD).is_positive()
        assert Money(Decimal('-1'), Currency.USD).is_negative()

        assert Money(Decimal('1234.5'), Currency.USD).to_string() == "USD 1,234.50"
        assert Money(Decimal('1234'), Currency.JPY).to_string() == "JPY 1,234"


class TestCurrencyHelpers:
    """Test module level helpers"""

    def test_currency_from_code(self):
        assert currency_from_code("usd") == Currency.USD
        assert currency_from_code("KES") == Currency.KES

        with pytest.raises(ValueError):
            currency_from_code("XYZ")

    def test_decimal_from_string(self):
        """User-entered amounts"""
        assert decimal_from_string("100.50") == Decimal('100.50')
        assert decimal_from_string("$1,200.00") == Decimal('1200.00')
        assert decimal_from_string("12,50") == Decimal('12.50')

        with pytest.raises(ValueError):
            decimal_from_string("")
        with pytest.raises(ValueError):
            decimal_from_string("abc")

    def test_decimal_from_string_keeps_exponents(self):
        """Scientific notation is parsed, not stripped down to its digits"""
        assert decimal_from_string("3e2") == Decimal('300')
        assert decimal_from_string(str(Decimal('3E+2'))) == Decimal('300')
        assert decimal_from_string(" € 1.5E1 ") == Decimal('15')

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-inf", "12abc", "1e999", "$"])
    def test_decimal_from_string_rejects_junk(self, value):
        with pytest.raises(ValueError):
            decimal_from_string(value)
