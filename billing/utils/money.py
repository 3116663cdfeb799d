"""
Fixed-point money helpers.

Every amount is an integer number of minor units (cents). Rounding happens
only through ``round_half_up`` so results are identical on every backend.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from billing.core.exceptions import ValidationError


def round_half_up(numerator: int, denominator: int) -> int:
    """Divide two integers and round halves away from zero."""
    if denominator == 0:
        raise ValidationError("Cannot divide an amount by zero")
    quotient = Decimal(numerator) / Decimal(denominator)
    return int(quotient.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def percent_of(cents: int, percent: int) -> int:
    """``round(cents * percent / 100)`` with half-up rounding."""
    return round_half_up(cents * percent, 100)


def ensure_cents(value, field: str = "amount_cents") -> int:
    """Reject anything that is not a plain integer (floats, Decimals, bools)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer number of cents")
    return value


def ensure_percent(value, field: str = "percent") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value < 0 or value > 100:
        raise ValidationError(f"{field} must be between 0 and 100")
    return value


def normalize_currency(currency: str | None, default: str) -> str:
    code = (currency or default).strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(f"Invalid currency code: {currency!r}")
    return code


def format_cents(cents: int) -> str:
    """12345 -> '123.45'"""
    sign = "-" if cents < 0 else ""
    whole, minor = divmod(abs(cents), 100)
    return f"{sign}{whole}.{minor:02d}"


@dataclass(frozen=True)
class Money:
    amount_cents: int
    currency: str

    def __post_init__(self):
        ensure_cents(self.amount_cents)
        if not self.currency:
            raise ValidationError("Currency is required")

    def _check(self, other: "Money") -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot combine Money with {type(other).__name__}")
        if other.currency != self.currency:
            raise ValidationError(
                f"Currency mismatch: {self.currency} vs {other.currency}"
            )

    def __add__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount_cents + other.amount_cents, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount_cents - other.amount_cents, self.currency)

    def __neg__(self) -> "Money":
        return Money(-self.amount_cents, self.currency)

    def __lt__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount_cents < other.amount_cents

    def __le__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount_cents <= other.amount_cents

    def percent(self, percent: int) -> "Money":
        return Money(percent_of(self.amount_cents, percent), self.currency)

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(0, currency)

    def __str__(self) -> str:
        return f"{format_cents(self.amount_cents)} {self.currency}"
