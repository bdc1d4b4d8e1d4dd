"""
Decimal arithmetic substrate shared by all calculation engines.
Pure helpers for money/ratio math, date handling and input-shape checks.
"""

import math
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterator, Optional, Sequence


ZERO = Decimal(0)
ONE = Decimal(1)
HUNDRED = Decimal(100)

TRADING_DAYS_PER_YEAR = 252
CALENDAR_DAYS_PER_YEAR = 365
BUSINESS_DAYS_PER_YEAR = 260  # Approximate
QUARTERS_PER_YEAR = 4
MONTHS_PER_YEAR = 12

DEFAULT_AUM_TOLERANCE = 0.01
DEFAULT_PRICE_TOLERANCE = 0.0001
DEFAULT_QUANTITY_TOLERANCE = 0.001

MAX_DAILY_RETURN = 0.50
MIN_DAILY_RETURN = -0.50

ASSET_CLASSES = {
    'EQUITY': 'EQUITY',
    'FIXED_INCOME': 'FIXED_INCOME',
    'CASH': 'CASH',
    'ALTERNATIVES': 'ALTERNATIVES',
    'COMMODITIES': 'COMMODITIES',
    'REAL_ESTATE': 'REAL_ESTATE',
    'FOREIGN_EXCHANGE': 'FOREIGN_EXCHANGE',
}

CONTRIBUTION_TYPES = ('CONTRIBUTION', 'DEPOSIT')
WITHDRAWAL_TYPES = ('WITHDRAWAL', 'DISTRIBUTION')
BUY_TYPES = ('BUY', 'PURCHASE')
SELL_TYPES = ('SELL', 'SALE')


class InvalidInputError(ValueError):
    """Raised when an engine function is called with an invalid input shape."""
    pass


def to_decimal(value: Any, default: Any = 0) -> Decimal:
    """
    Convert a numeric-like value to Decimal.

    Floats go through ``str`` so that 0.1 becomes Decimal('0.1') rather than
    its binary expansion. None, empty strings and unparseable values resolve
    to ``default``.

    Args:
        value: int, float, str, Decimal or None
        default: Value used when ``value`` is missing or unparseable

    Returns:
        Decimal representation
    """
    if value is None or value == '':
        return Decimal(str(default))

    if isinstance(value, Decimal):
        return value

    if isinstance(value, bool):
        return Decimal(int(value))

    if isinstance(value, float):
        if not math.isfinite(value):
            return Decimal(str(default))
        return Decimal(str(value))

    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal(str(default))

    if not result.is_finite():
        return Decimal(str(default))
    return result


def to_float(value: Decimal) -> float:
    """Convert a Decimal to float at the presentation boundary."""
    result = float(value)
    # Avoid leaking negative zero into reports
    return 0.0 if result == 0 else result


def safe_divide(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Divide, yielding 0 when the denominator is 0."""
    if denominator == 0:
        return ZERO
    return numerator / denominator


def to_date(value: Any) -> Optional[date]:
    """
    Normalize a date-like value to ``datetime.date``.

    Args:
        value: date, datetime, or ISO string (``YYYY-MM-DD`` or full timestamp)

    Returns:
        date object, or None when value is None/empty

    Raises:
        InvalidInputError: If the value cannot be interpreted as a date
    """
    if value is None or value == '':
        return None

    if isinstance(value, datetime):
        return value.date()

    if isinstance(value, date):
        return value

    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError as e:
            raise InvalidInputError(f"Invalid date string: {value!r}") from e

    # pandas Timestamp and numpy datetime64 wrappers expose .date()
    if hasattr(value, 'date') and callable(value.date):
        return value.date()

    raise InvalidInputError(f"Unsupported date value: {value!r}")


def iso_date(value: Any) -> Optional[str]:
    """Format a date-like value as ``YYYY-MM-DD`` (None passes through)."""
    parsed = to_date(value)
    return parsed.isoformat() if parsed is not None else None


def iter_days(start_date: date, end_date: date) -> Iterator[date]:
    """Yield every calendar day from start_date to end_date inclusive."""
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def is_business_day(day: date) -> bool:
    """Monday-Friday check (no holiday calendar)."""
    return day.weekday() < 5


def business_days(start_date: date, end_date: date) -> Iterator[date]:
    """Yield Monday-Friday days from start_date to end_date inclusive."""
    return (day for day in iter_days(start_date, end_date) if is_business_day(day))


def business_day_count(start_date: date, end_date: date) -> int:
    """Count Monday-Friday days between two dates inclusive."""
    return sum(1 for _ in business_days(start_date, end_date))


def annual_to_daily(annual_rate: Any) -> Decimal:
    """Convert an annual rate to a simple daily rate (365-day year)."""
    return to_decimal(annual_rate) / CALENDAR_DAYS_PER_YEAR


def daily_to_annual(daily_rate: Any) -> Decimal:
    """Convert a simple daily rate to an annual rate (365-day year)."""
    return to_decimal(daily_rate) * CALENDAR_DAYS_PER_YEAR


def round_to(value: Any, decimals: int = 2) -> float:
    """Round half-up to a number of decimal places."""
    quantum = Decimal(1).scaleb(-decimals)
    return to_float(to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def format_percent(value: Any, decimals: int = 2) -> str:
    """Format a decimal ratio (0.01) as a percentage string ('1.00%')."""
    scaled = to_decimal(value) * HUNDRED
    quantum = Decimal(1).scaleb(-decimals)
    return f"{scaled.quantize(quantum, rounding=ROUND_HALF_UP)}%"


def format_currency(value: Any, currency: str = 'USD') -> str:
    """Format a value as currency with thousands separators."""
    amount = to_decimal(value).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    symbol = '$' if currency == 'USD' else f'{currency} '
    sign = '-' if amount < 0 else ''
    return f"{sign}{symbol}{abs(amount):,.2f}"


def require_sequence(name: str, value: Any) -> Sequence:
    """
    Check that a collection argument is a list or tuple.

    Args:
        name: Argument name for the error message
        value: Collection to check (None is treated as empty)

    Returns:
        The collection (empty list when None)

    Raises:
        InvalidInputError: If value is not a list or tuple
    """
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise InvalidInputError(f"{name} must be a list, got {type(value).__name__}")
    return value


def require_identifier(name: str, value: Any) -> Any:
    """Check that a required identifier (account id, security id) is present."""
    if value is None or value == '':
        raise InvalidInputError(f"{name} is required")
    return value


def require_date_range(start_date: Any, end_date: Any) -> tuple:
    """
    Normalize and check a calculation window.

    Raises:
        InvalidInputError: If either bound is missing or start is after end
    """
    start = to_date(start_date)
    end = to_date(end_date)
    if start is None or end is None:
        raise InvalidInputError("start_date and end_date are required")
    if start > end:
        raise InvalidInputError(f"start_date {start} is after end_date {end}")
    return start, end


def row_date(row: dict) -> Optional[date]:
    """Date of a record, accepting the ``transaction_date`` alias."""
    value = row.get('date')
    if value is None:
        value = row.get('transaction_date')
    return to_date(value)


def row_type(row: dict) -> str:
    """Transaction type of a record, accepting the ``transaction_type`` alias."""
    return (row.get('type') or row.get('transaction_type') or '').upper()
