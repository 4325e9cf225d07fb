"""
Currency Support Module

Handles ISO 4217 currency codes, Decimal precision for monetary amounts and
user-facing amount formatting. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Optional, Union
from enum import Enum

from .errors import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28  # High precision for financial calculations


class Currency(Enum):
    """ISO 4217 Currency Codes with precision and display symbol"""
    USD = ("USD", 2, "$")   # US Dollar
    EUR = ("EUR", 2, "€")   # Euro
    GBP = ("GBP", 2, "£")   # British Pound
    INR = ("INR", 2, "₹")   # Indian Rupee
    JPY = ("JPY", 0, "¥")   # Japanese Yen, 0 decimal places

    def __init__(self, code: str, precision: int, symbol: str):
        self.code = code
        self.precision = precision
        self.symbol = symbol

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by ISO code"""
        for currency in cls:
            if currency.code == str(code).upper():
                return currency
        raise ValidationError(f"Unsupported currency: {code}")


def to_amount(value: Union[str, int, Decimal], currency: Optional[Currency] = None) -> Decimal:
    """
    Parse a monetary amount into a Decimal at currency precision

    Args:
        value: String, int or Decimal representation of the amount
        currency: Currency defining precision (2 places when omitted)

    Returns:
        Decimal rounded half-up to the currency precision

    Raises:
        ValidationError: If the value is not a finite number
    """
    if isinstance(value, (bool, float)):
        raise ValidationError("Please enter a valid amount")

    precision = currency.precision if currency else 2
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            raise ValidationError("Please enter a valid amount")
        # Raises InvalidOperation when the result exceeds context precision
        return amount.quantize(Decimal('0.1') ** precision, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValidationError("Please enter a valid amount")


def _indian_grouping(digits: str) -> str:
    """Group digits as 12,34,567 (last three, then pairs)"""
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    pairs = []
    while len(head) > 2:
        pairs.insert(0, head[-2:])
        head = head[:-2]
    if head:
        pairs.insert(0, head)
    return ",".join(pairs + [tail])


def format_amount(amount: Union[str, Decimal], currency: Union[Currency, str]) -> str:
    """
    Format an amount for display in notifications and messages

    INR uses Indian digit grouping (₹1,00,000.00); other currencies use
    western grouping ($1,234.56).
    """
    if not isinstance(currency, Currency):
        currency = Currency.from_code(currency)

    value = to_amount(amount, currency)
    sign = "-" if value < 0 else ""
    text = f"{abs(value):.{currency.precision}f}"
    whole, _, fraction = text.partition(".")

    if currency is Currency.INR:
        whole = _indian_grouping(whole)
    else:
        whole = f"{int(whole):,}"

    return f"{sign}{currency.symbol}{whole}" + (f".{fraction}" if fraction else "")
