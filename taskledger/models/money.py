"""Fixed-point money stored as integer cents."""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from ..errors import InvalidAmount, NegativeResult

CENTS_PER_UNIT = 100

Numeric = Union[int, str, Decimal]


def to_decimal(value: Numeric) -> Decimal:
    """Convert a scalar to Decimal, refusing floats."""
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmount(f"Use a string or Decimal instead of {value!r}")
    try:
        result = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except InvalidOperation:
        raise InvalidAmount(f"Not a number: {value!r}")
    if not result.is_finite():
        raise InvalidAmount(f"Not a finite number: {value!r}")
    return result


@dataclass(frozen=True, order=True)
class Money:
    """A non-negative amount of the platform currency."""

    cents: int = 0

    def __post_init__(self):
        if not isinstance(self.cents, int) or isinstance(self.cents, bool):
            raise InvalidAmount(f"Money must be built from integer cents, got {self.cents!r}")
        if self.cents < 0:
            raise NegativeResult(f"Money cannot be negative ({self.cents} cents)")

    @classmethod
    def zero(cls) -> "Money":
        return cls(0)

    @classmethod
    def parse(cls, value: Numeric) -> "Money":
        """Build from a major-unit amount such as ``"75.00"``.

        Sub-cent precision is rejected rather than silently rounded.
        """
        amount = to_decimal(value)
        cents = amount * CENTS_PER_UNIT
        if cents != cents.to_integral_value():
            raise InvalidAmount(f"{value} has more precision than one cent")
        return cls(int(cents))

    @property
    def amount(self) -> Decimal:
        """Value in major units."""
        return (Decimal(self.cents) / CENTS_PER_UNIT).quantize(Decimal("0.01"))

    @property
    def is_zero(self) -> bool:
        return self.cents == 0

    def __add__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.cents + other.cents)

    def __sub__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        if other.cents > self.cents:
            raise NegativeResult(f"{self.format()} - {other.format()} would be negative")
        return Money(self.cents - other.cents)

    def multiply(self, factor: Numeric) -> "Money":
        """Multiply by a scalar, rounding half-up to the nearest cent."""
        factor = to_decimal(factor)
        if factor < 0:
            raise InvalidAmount(f"Cannot multiply money by negative factor {factor}")
        cents = (Decimal(self.cents) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return Money(int(cents))

    def split(self, fraction: Numeric) -> tuple["Money", "Money"]:
        """Split into ``(share, remainder)``; the two always sum to self."""
        fraction = to_decimal(fraction)
        if fraction < 0 or fraction > 1:
            raise InvalidAmount(f"Split fraction must be within [0, 1], got {fraction}")
        share = self.multiply(fraction)
        return share, self - share

    def format(self, symbol: str = "$") -> str:
        return f"{symbol}{self.amount:,.2f}"

    def __str__(self) -> str:
        return self.format()

    def to_str(self) -> str:
        """Serialized form used in JSON files."""
        return str(self.amount)
