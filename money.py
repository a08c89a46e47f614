"""Currency and calendar helpers shared by the ledger engine.

Amounts are integer cents end to end; ``Decimal`` only appears while parsing
user text. Month arithmetic follows calendar overflow: adding a month to
Jan 31 lands on Mar 3 (or Mar 2 in leap years), never on Feb 28.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

ROUNDING_TOLERANCE_CENTS = 1

_NON_DIGITS = re.compile(r"\D")


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    """Parse ``"1.234,56"``, ``"1234.56"`` or ``"R$ 10"`` into cents."""
    clean = value.strip().replace("R$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole:,}".replace(",", ".") + f",{frac:02d}"


def round_half_up(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    value = Decimal(numerator) / Decimal(denominator)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class AmountInput:
    """Signed amount as typed: a sign flag plus the digits seen so far.

    Keeping the sign apart from the digits means a lone ``"-"`` survives a
    re-render even though its numeric value is still zero.
    """

    negative: bool = False
    digits: str = ""

    @classmethod
    def from_text(cls, raw: str) -> "AmountInput":
        text = (raw or "").strip()
        negative = text.startswith("-")
        digits = _NON_DIGITS.sub("", text).lstrip("0")
        return cls(negative=negative, digits=digits)

    @classmethod
    def from_cents(cls, cents: int) -> "AmountInput":
        digits = str(abs(cents)) if cents else ""
        return cls(negative=cents < 0, digits=digits)

    @property
    def cents(self) -> int:
        value = int(self.digits) if self.digits else 0
        return -value if self.negative else value

    def render(self) -> str:
        if not self.digits:
            return "-" if self.negative else ""
        text = format_cents(int(self.digits))
        return f"-{text}" if self.negative else text


def month_start(d: date) -> date:
    return d.replace(day=1)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def month_end(d: date) -> date:
    return d.replace(day=days_in_month(d.year, d.month))


def add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    # Days past the end of the target month spill into the following one.
    return date(year, month, 1) + timedelta(days=base.day - 1)


def shift_month(base: date, months: int) -> date:
    """First day of the month ``months`` away from ``base``'s month."""
    month_index = (base.year * 12) + (base.month - 1) + months
    return date(month_index // 12, (month_index % 12) + 1, 1)


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def same_month(a: date, b: date) -> bool:
    return a.year == b.year and a.month == b.month
