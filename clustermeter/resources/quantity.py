"""Resource quantities in the Kubernetes notation.

    <quantity>        ::= <signedNumber><suffix>
    <number>          ::= <digits> | <digits>.<digits> | <digits>. | .<digits>
    <suffix>          ::= <binarySI> | <decimalExponent> | <decimalSI>
    <binarySI>        ::= Ki | Mi | Gi | Ti | Pi | Ei
    <decimalSI>       ::= n | u | m | "" | k | M | G | T | P | E
    <decimalExponent> ::= "e" <signedNumber> | "E" <signedNumber>

Values are held as exact fractions so that milli-value arithmetic on
memory sizes never drifts. milli_value() and value() round up.
"""

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from typing import Dict, Union

from clustermeter.exceptions import InvalidQuantityError


class QuantityFormat(Enum):
    """Notation a quantity was written in (and is rendered back in)."""

    DECIMAL_EXPONENT = "DecimalExponent"
    BINARY_SI = "BinarySI"
    DECIMAL_SI = "DecimalSI"


_BINARY_SUFFIXES: Dict[str, int] = {
    "Ki": 1 << 10,
    "Mi": 1 << 20,
    "Gi": 1 << 30,
    "Ti": 1 << 40,
    "Pi": 1 << 50,
    "Ei": 1 << 60,
}

_DECIMAL_SUFFIXES: Dict[str, Fraction] = {
    "n": Fraction(1, 10**9),
    "u": Fraction(1, 10**6),
    "m": Fraction(1, 10**3),
    "": Fraction(1),
    "k": Fraction(10**3),
    "M": Fraction(10**6),
    "G": Fraction(10**9),
    "T": Fraction(10**12),
    "P": Fraction(10**15),
    "E": Fraction(10**18),
}

_NUMBER_RE = re.compile(r"^([+-]?)(\d+(?:\.\d*)?|\.\d+)(.*)$")
_EXPONENT_RE = re.compile(r"^[eE]([+-]?\d+)$")
# Same range as the decimal SI suffixes (n..E).
MAX_EXPONENT = 18


@dataclass(frozen=True, order=True)
class Quantity:
    """An exact resource amount (cores, bytes, ...)."""

    amount: Fraction
    format: QuantityFormat = field(default=QuantityFormat.DECIMAL_SI, compare=False)

    # ── Construction ──────────────────────────────────────────────────

    @classmethod
    def parse(cls, text: str) -> "Quantity":
        """Parse a quantity string such as "1500m", "256Mi" or "1e3"."""
        if not isinstance(text, str) or not text:
            raise InvalidQuantityError(text, "quantity must be a non-empty string")

        match = _NUMBER_RE.match(text)
        if match is None:
            raise InvalidQuantityError(text)
        sign, number, suffix = match.groups()

        if suffix in _BINARY_SUFFIXES:
            multiplier = Fraction(_BINARY_SUFFIXES[suffix])
            fmt = QuantityFormat.BINARY_SI
        elif suffix in _DECIMAL_SUFFIXES:
            multiplier = _DECIMAL_SUFFIXES[suffix]
            fmt = QuantityFormat.DECIMAL_SI
        else:
            exp = _EXPONENT_RE.match(suffix)
            if exp is None:
                raise InvalidQuantityError(text, "unknown quantity suffix")
            exponent = int(exp.group(1))
            if abs(exponent) > MAX_EXPONENT:
                raise InvalidQuantityError(text, "quantity exponent out of range")
            multiplier = Fraction(10) ** exponent
            fmt = QuantityFormat.DECIMAL_EXPONENT

        amount = Fraction(number) * multiplier
        if sign == "-":
            amount = -amount
        return cls(amount, fmt)

    @classmethod
    def from_int(cls, value: int, fmt: QuantityFormat = QuantityFormat.DECIMAL_SI) -> "Quantity":
        return cls(Fraction(value), fmt)

    @classmethod
    def from_milli(cls, value: int, fmt: QuantityFormat = QuantityFormat.DECIMAL_SI) -> "Quantity":
        return cls(Fraction(value, 1000), fmt)

    # ── Accessors ─────────────────────────────────────────────────────

    def milli_value(self) -> int:
        """Amount in thousandths, rounded up."""
        return math.ceil(self.amount * 1000)

    def value(self) -> int:
        """Amount in whole units, rounded up."""
        return math.ceil(self.amount)

    def is_zero(self) -> bool:
        return self.amount == 0

    def __add__(self, other: "Quantity") -> "Quantity":
        if not isinstance(other, Quantity):
            return NotImplemented
        return Quantity(self.amount + other.amount, self.format)

    # ── Rendering ─────────────────────────────────────────────────────

    def __str__(self) -> str:
        if self.amount == 0:
            return "0"
        sign = "-" if self.amount < 0 else ""
        magnitude = abs(self.amount)

        if self.format == QuantityFormat.BINARY_SI and magnitude.denominator == 1:
            for suffix in ("Ei", "Pi", "Ti", "Gi", "Mi", "Ki"):
                mantissa, rest = divmod(magnitude.numerator, _BINARY_SUFFIXES[suffix])
                if rest == 0:
                    return f"{sign}{mantissa}{suffix}"
            return f"{sign}{magnitude.numerator}"

        for suffix in ("E", "P", "T", "G", "M", "k", "", "m", "u", "n"):
            scaled = magnitude / _DECIMAL_SUFFIXES[suffix]
            if scaled.denominator == 1:
                if self.format == QuantityFormat.DECIMAL_EXPONENT:
                    exponent = round(math.log10(_DECIMAL_SUFFIXES[suffix]))
                    return f"{sign}{scaled.numerator}" + (f"e{exponent}" if exponent else "")
                return f"{sign}{scaled.numerator}{suffix}"

        # Finer than a nano: round up to the next nano like the API server.
        return f"{sign}{math.ceil(magnitude * 10**9)}n"


QuantityLike = Union[Quantity, str, int]


def as_quantity(value: QuantityLike) -> Quantity:
    """Coerce a string or integer to a Quantity."""
    if isinstance(value, Quantity):
        return value
    if isinstance(value, bool):
        raise InvalidQuantityError(value, "quantity must not be a bool")
    if isinstance(value, int):
        return Quantity.from_int(value)
    return Quantity.parse(value)
