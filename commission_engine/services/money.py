"""
Money and period helpers.

Amounts are carried as Decimal cents while a commission is computed and
only rounded (half-up, 2 places) once, on the final amount.
"""

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, str, float]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so floats keep their printed value, not binary noise
    return Decimal(str(value))


def to_cents(amount: Number) -> Decimal:
    """Major units -> exact (possibly fractional) cents."""
    return to_decimal(amount) * HUNDRED


def cents_to_amount(cents: Decimal) -> Decimal:
    """Round cents half-up to a whole cent and return major units."""
    whole_cents = cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return (whole_cents / HUNDRED).quantize(TWOPLACES)


def percentage_of_cents(cents: Decimal, rate: Decimal) -> Decimal:
    """rate is a percentage (6.5 == 6.5%); result stays unrounded."""
    return cents * to_decimal(rate) / HUNDRED


def quantize(amount: Number) -> Decimal:
    return to_decimal(amount).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_start(moment: datetime) -> date:
    return ensure_utc(moment).date()


def month_start(moment: datetime) -> date:
    return ensure_utc(moment).date().replace(day=1)


def next_month_start(start: date) -> date:
    if start.month == 12:
        return date(start.year + 1, 1, 1)
    return date(start.year, start.month + 1, 1)


def as_datetime(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
