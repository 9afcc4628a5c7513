"""
Currency and Money Module

Handles ISO 4217 currency codes and fixed-precision money arithmetic for
collection balances. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from functools import total_ordering
from enum import Enum
import re

from .errors import NegativeBalanceError

# Set global decimal context for financial precision
getcontext().prec = 28

# Symbols and spacing tolerated around user-entered amounts
CURRENCY_NOISE = re.compile(r"[\s$€£¥]")


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    USD = ("USD", 2)  # US Dollar, 2 decimal places
    EUR = ("EUR", 2)  # Euro, 2 decimal places
    GBP = ("GBP", 2)  # British Pound, 2 decimal places
    JPY = ("JPY", 0)  # Japanese Yen, 0 decimal places
    CAD = ("CAD", 2)  # Canadian Dollar, 2 decimal places
    KES = ("KES", 2)  # Kenyan Shilling, 2 decimal places

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision


@total_ordering
@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    The amount is always quantized to the currency's minor unit.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if isinstance(self.amount, float):
            raise TypeError("Money amounts must not be floats; use Decimal or str")
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        # Round to currency precision
        rounded = self.amount.quantize(
            Decimal('0.1') ** self.currency.precision,
            rounding=ROUND_HALF_UP
        )
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)

    @classmethod
    def from_minor_units(cls, minor_units: int, currency: Currency) -> 'Money':
        """Build Money from an integer count of minor units (cents)"""
        return cls(Decimal(minor_units).scaleb(-currency.precision), currency)

    @property
    def minor_units(self) -> int:
        """Amount as an integer count of minor units"""
        return int(self.amount.scaleb(self.currency.precision))

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier) -> 'Money':
        if not isinstance(multiplier, Decimal):
            multiplier = Decimal(str(multiplier))
        return Money(self.amount * multiplier, self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def subtract_non_negative(self, other: 'Money') -> 'Money':
        """
        Subtract from a tracked balance.

        Raises:
            NegativeBalanceError: If the result would be below zero
        """
        result = self - other
        if result.is_negative():
            raise NegativeBalanceError(
                f"Subtracting {other.to_string()} from {self.to_string()} "
                f"would leave a negative balance"
            )
        return result

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        """Check if amount is negative"""
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        if self.currency.precision == 0:
            return f"{self.currency.code} {self.amount:,.0f}"
        else:
            return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


def currency_from_code(code: str) -> Currency:
    """Look up a Currency by its ISO code"""
    try:
        return Currency[code.upper()]
    except KeyError:
        raise ValueError(f"Unsupported currency code: {code}")


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    # Only currency symbols and whitespace are dropped; letters stay so that
    # exponents parse and stray text is rejected
    clean_value = CURRENCY_NOISE.sub('', value)

    # Handle comma as decimal separator (European format)
    if ',' in clean_value and '.' in clean_value:
        # Both comma and dot - assume comma is thousands separator
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 2:  # Likely decimal separator
            clean_value = clean_value.replace(',', '.')
        else:  # Likely thousands separator
            clean_value = clean_value.replace(',', '')
    elif ',' in clean_value:
        clean_value = clean_value.replace(',', '')

    try:
        result = Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")

    if not result.is_finite():
        raise ValueError(f"Amount must be a finite number, got '{value}'")
    if result.adjusted() >= getcontext().prec:
        raise ValueError(f"Amount '{value}' is out of range")
    return result
