"""Integer minor-unit money primitive.

All amounts inside the engine are plain ``int`` cents (minor units). Decimal
is only used at the boundary, when converting user-entered major-unit
amounts, and never for arithmetic on stored values.
"""

from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import CurrencyMismatchError

# ISO 4217 currencies whose minor unit is not 1/100
_MINOR_UNIT_EXPONENTS = {
    "BHD": 3,
    "CLP": 0,
    "ISK": 0,
    "JOD": 3,
    "JPY": 0,
    "KRW": 0,
    "KWD": 3,
    "OMR": 3,
    "TND": 3,
    "VND": 0,
}

_CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥"}


def minor_unit_exponent(currency: str) -> int:
    """Number of decimal places of the currency's minor unit."""
    return _MINOR_UNIT_EXPONENTS.get(currency.upper(), 2)


def is_cents(value: object) -> bool:
    """True if value is a usable integer amount (bool is not an amount)."""
    return isinstance(value, int) and not isinstance(value, bool)


def to_cents(amount: Decimal | str | int, currency: str = "USD") -> int:
    """
    Convert a major-unit amount to integer minor units.
    Uses ROUND_HALF_UP for consistency.

    Args:
        amount: Major-unit amount (e.g. Decimal("12.345") dollars)
        currency: ISO 4217 code, decides the minor-unit exponent

    Returns:
        Amount in minor units (integer)

    Raises:
        ValueError: If the amount is NaN or infinite
        decimal.InvalidOperation: If the amount is not a number
    """
    scale = Decimal(10) ** minor_unit_exponent(currency)
    minor = Decimal(str(amount)) * scale
    if not minor.is_finite():
        raise ValueError(f"Amount must be a finite number, got {amount!r}")
    return int(minor.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int, currency: str = "USD") -> Decimal:
    """Convert integer minor units back to an exact major-unit Decimal."""
    return Decimal(cents).scaleb(-minor_unit_exponent(currency))


def format_cents(cents: int, currency: str = "USD") -> str:
    """
    Format minor units as a currency string.

    Negative amounts use accounting parentheses: ($85.02)
    """
    exponent = minor_unit_exponent(currency)
    major = abs(from_cents(cents, currency))
    symbol = _CURRENCY_SYMBOLS.get(currency.upper())
    number = f"{major:,.{exponent}f}"
    text = f"{symbol}{number}" if symbol else f"{number} {currency.upper()}"
    return f"({text})" if cents < 0 else text


class Money(BaseModel):
    """An amount of one currency, in integer minor units."""

    model_config = ConfigDict(frozen=True, strict=True)

    cents: int
    currency: str = Field(default="USD", pattern=r"^[A-Z]{3}$")

    def _check_currency(self, other: "Money") -> None:
        if other.currency != self.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(cents=self.cents + other.cents, currency=self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(cents=self.cents - other.cents, currency=self.currency)

    def __neg__(self) -> "Money":
        return Money(cents=-self.cents, currency=self.currency)

    def is_zero(self) -> bool:
        return self.cents == 0

    def __str__(self) -> str:
        return format_cents(self.cents, self.currency)
