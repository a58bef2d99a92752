"""
Money Value Object

Immutable monetary amount stored as an integer number of minor units
(cents for USD, whole units for JPY/VND) tied to an ISO-4217 currency.

DESIGN DECISION: No float ever touches a stored amount.
- Construction takes integer minor units only
- Decimal input is converted through Decimal and rounded exactly once
- Arithmetic is plain integer addition/subtraction
- Mixing currencies is an error, never a silent conversion

Currency codes and their exponents come from the CLDR data bundled
with Babel, which also does the locale-aware formatting.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Union

from babel.numbers import format_currency, get_currency_precision, is_currency
from pydantic import BaseModel, ConfigDict, field_validator


class MoneyError(Exception):
    """Base exception for money errors."""
    pass


class InvalidCurrency(MoneyError):
    """Currency code is not a recognized ISO-4217 code."""

    def __init__(self, code: Any):
        self.code = code
        super().__init__(f"Unknown currency code: {code!r}")


class InvalidAmount(MoneyError):
    """Amount is not numeric, or not an integer where minor units are required."""

    def __init__(self, value: Any, reason: str = "not a valid amount"):
        self.value = value
        super().__init__(f"Invalid amount {value!r}: {reason}")


class CurrencyMismatch(MoneyError):
    """Arithmetic or comparison attempted between two currencies."""

    def __init__(self, left: str, right: str):
        self.left = left
        self.right = right
        super().__init__(f"Currency mismatch: {left} vs {right}")


DecimalInput = Union[str, int, float, Decimal]


def normalize_currency(code: Any) -> str:
    """Upper-case and verify an ISO-4217 code."""
    if not isinstance(code, str):
        raise InvalidCurrency(code)
    normalized = code.strip().upper()
    if len(normalized) != 3 or not is_currency(normalized):
        raise InvalidCurrency(code)
    return normalized


def currency_exponent(code: str) -> int:
    """Number of minor-unit digits for a currency (USD=2, JPY=0, KWD=3)."""
    return get_currency_precision(normalize_currency(code))


class Money(BaseModel):
    """
    Immutable amount in integer minor units.

    Negative amounts are allowed (refunds, balance deltas).

    Examples:
        >>> Money(amount=2550, currency="USD").amount_decimal()
        '25.50'
        >>> Money.from_decimal("10.005", "USD").amount
        1001
    """

    model_config = ConfigDict(frozen=True)

    amount: int
    currency: str

    @field_validator("amount", mode="before")
    @classmethod
    def require_integer(cls, v: Any) -> int:
        # bool is an int subclass; a True amount is a bug, not a cent.
        if type(v) is not int:
            raise InvalidAmount(v, "minor units must be an integer")
        return v

    @field_validator("currency", mode="before")
    @classmethod
    def require_known_currency(cls, v: Any) -> str:
        return normalize_currency(v)

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def from_decimal(cls, amount: DecimalInput, currency: str) -> "Money":
        """
        Build Money from a human-readable amount such as "25.50".

        Rounds to the currency's exponent once, half away from zero:
        "10.005" USD -> 1001, "10.004" USD -> 1000, "-10.005" USD -> -1001.
        """
        code = normalize_currency(currency)
        value = _to_decimal(amount)
        exponent = get_currency_precision(code)
        try:
            minor = value.scaleb(exponent).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        except InvalidOperation:
            raise InvalidAmount(amount, "too many digits")
        return cls(amount=int(minor), currency=code)

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(amount=0, currency=currency)

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def exponent(self) -> int:
        return get_currency_precision(self.currency)

    def to_decimal(self) -> Decimal:
        """Exact Decimal in major units."""
        return Decimal(self.amount).scaleb(-self.exponent)

    def amount_decimal(self) -> str:
        """Exact decimal string in major units, e.g. '25.50'."""
        return str(self.to_decimal())

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_negative(self) -> bool:
        return self.amount < 0

    # -------------------------------------------------------------------------
    # Arithmetic
    # -------------------------------------------------------------------------

    def _check_currency(self, other: "Money") -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Expected Money, got {type(other).__name__}")
        if other.currency != self.currency:
            raise CurrencyMismatch(self.currency, other.currency)

    def add(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def subtract(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def negate(self) -> "Money":
        return Money(amount=-self.amount, currency=self.currency)

    def abs(self) -> "Money":
        return Money(amount=abs(self.amount), currency=self.currency)

    def __add__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        return self.subtract(other)

    def __neg__(self) -> "Money":
        return self.negate()

    def __lt__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount < other.amount

    def __le__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount >= other.amount

    # -------------------------------------------------------------------------
    # Presentation
    # -------------------------------------------------------------------------

    def format(self, locale: str = "en_US") -> str:
        """Locale-aware display string. Does not change the stored value."""
        return format_currency(self.to_decimal(), self.currency, locale=locale)

    def __str__(self) -> str:
        return self.format()


def _to_decimal(amount: Any) -> Decimal:
    """Convert user/parser input to a finite Decimal or raise InvalidAmount."""
    if isinstance(amount, bool) or amount is None:
        raise InvalidAmount(amount, "not numeric")
    if isinstance(amount, float):
        # repr-round-trip string, not the binary expansion
        amount = str(amount)
    if isinstance(amount, str):
        amount = amount.strip()
        if not amount:
            raise InvalidAmount(amount, "empty")
    if not isinstance(amount, (str, int, Decimal)):
        raise InvalidAmount(amount, "not numeric")
    try:
        value = Decimal(amount)
    except (InvalidOperation, ValueError):
        raise InvalidAmount(amount, "not numeric")
    if not value.is_finite():
        raise InvalidAmount(amount, "not finite")
    return value
