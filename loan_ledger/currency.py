"""
Currency Support Module

Decimal coercion for ledger amounts and currency-aware rounding for display.
Ledger math NEVER uses float and NEVER rounds; rounding happens only when a
value is presented through Money.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Union

# Set global decimal context for financial precision
getcontext().prec = 28

ZERO = Decimal('0')

Amount = Union[Decimal, int, float, str]


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    INR = ("INR", 2)  # Indian Rupee, 2 decimal places
    USD = ("USD", 2)  # US Dollar, 2 decimal places
    EUR = ("EUR", 2)  # Euro, 2 decimal places
    GBP = ("GBP", 2)  # British Pound, 2 decimal places
    JPY = ("JPY", 0)  # Japanese Yen, 0 decimal places

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by its ISO code"""
        for currency in cls:
            if currency.code == code.upper():
                return currency
        raise ValueError(f"Unsupported currency code: {code}")


def to_decimal(value: Amount) -> Decimal:
    """
    Convert a raw amount into Decimal without losing precision.

    Floats go through str() so 0.1 becomes Decimal('0.1') rather than
    its binary expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    try:
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid amount: {value!r}")


def round_for_display(value: Amount, precision: int = 2) -> Decimal:
    """Round an amount for presentation (ROUND_HALF_UP)"""
    return to_decimal(value).quantize(Decimal('0.1') ** precision, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Money:
    """
    Immutable, display-rounded money value.
    Used by reports when a figure leaves the engine; never fed back into
    ledger math.
    """
    amount: Decimal
    currency: Currency = Currency.INR

    def __post_init__(self):
        # Round to currency precision
        object.__setattr__(
            self, 'amount', round_for_display(self.amount, self.currency.precision)
        )

    def __add__(self, other: 'Money') -> 'Money':
        if self.currency != other.currency:
            raise ValueError(f"Cannot add {self.currency.code} and {other.currency.code}")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        if self.currency != other.currency:
            raise ValueError(f"Cannot subtract {other.currency.code} from {self.currency.code}")
        return Money(self.amount - other.amount, self.currency)

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == ZERO

    def is_negative(self) -> bool:
        """Check if amount is negative"""
        return self.amount < ZERO

    def to_string(self) -> str:
        """Format for display"""
        if self.currency.precision == 0:
            return f"{self.currency.code} {self.amount:,.0f}"
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"
