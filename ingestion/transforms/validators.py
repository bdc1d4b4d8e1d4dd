"""
Core validators for canonical data rows.
Pure functions - no IO, network, or side effects.
"""

import math
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Any, List

from analysis.calculations.decimal_math import (
    ASSET_CLASSES,
    BUY_TYPES,
    CONTRIBUTION_TYPES,
    SELL_TYPES,
    WITHDRAWAL_TYPES,
)


TRANSACTION_TYPES = CONTRIBUTION_TYPES + WITHDRAWAL_TYPES + BUY_TYPES + SELL_TYPES


class ValidationError(ValueError):
    """Raised when data validation fails."""
    pass


def _check_required(row: Dict[str, Any], required_keys: set) -> None:
    missing = required_keys - set(row.keys())
    if missing:
        raise ValidationError(f"Missing required keys: {sorted(missing)}")


def _check_string(row: Dict[str, Any], field: str) -> None:
    value = row[field]
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be string, got {type(value)}")
    if not value.strip():
        raise ValidationError(f"{field} must be non-empty")


def _check_numeric(row: Dict[str, Any], field: str) -> None:
    value = row[field]
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValidationError(f"{field} must be numeric, got {type(value)}")

    finite = value.is_finite() if isinstance(value, Decimal) else math.isfinite(value)
    if not finite:
        raise ValidationError(f"{field} must be finite, got {value}")


def _check_metadata(row: Dict[str, Any]) -> None:
    if not isinstance(row['date'], date) or isinstance(row['date'], datetime):
        raise ValidationError(f"date must be date, got {type(row['date'])}")

    if not isinstance(row['ingested_at'], datetime):
        raise ValidationError(f"ingested_at must be datetime, got {type(row['ingested_at'])}")

    _check_string(row, 'source')


def validate_position_row(row: Dict[str, Any]) -> None:
    """
    Validate a canonical position row.

    Args:
        row: Dictionary containing position data

    Raises:
        ValidationError: If validation fails
    """
    _check_required(row, {
        'account_id', 'security_id', 'date', 'quantity', 'average_cost',
        'market_value', 'source', 'ingested_at'
    })

    _check_string(row, 'account_id')
    _check_string(row, 'security_id')
    _check_metadata(row)

    for field in ['quantity', 'average_cost', 'market_value']:
        _check_numeric(row, field)

    if row['average_cost'] < 0:
        raise ValidationError(f"average_cost must be non-negative, got {row['average_cost']}")


def validate_transaction_row(row: Dict[str, Any]) -> None:
    """
    Validate a canonical transaction row.

    Flows (contributions, withdrawals) need an amount; trades need a
    security, a non-zero quantity and a non-negative price.

    Raises:
        ValidationError: If validation fails
    """
    _check_required(row, {
        'transaction_id', 'account_id', 'date', 'type', 'source', 'ingested_at'
    })

    _check_string(row, 'transaction_id')
    _check_string(row, 'account_id')
    _check_metadata(row)

    transaction_type = row['type']
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"type must be one of {TRANSACTION_TYPES}, got {transaction_type}")

    if transaction_type in CONTRIBUTION_TYPES + WITHDRAWAL_TYPES:
        if row.get('amount') is None:
            raise ValidationError(f"{transaction_type} requires an amount")
        _check_numeric(row, 'amount')
        return

    if not row.get('security_id'):
        raise ValidationError(f"{transaction_type} requires a security_id")

    for field in ['quantity', 'price']:
        if row.get(field) is None:
            raise ValidationError(f"{transaction_type} requires {field}")
        _check_numeric(row, field)

    if row['quantity'] == 0:
        raise ValidationError("quantity must be non-zero for trades")

    if row['price'] < 0:
        raise ValidationError(f"price must be non-negative, got {row['price']}")


def validate_price_row(row: Dict[str, Any]) -> None:
    """
    Validate a canonical price row.

    Close is required and positive; open/high/low and volume are optional
    but must be consistent when present.

    Raises:
        ValidationError: If validation fails
    """
    _check_required(row, {'security_id', 'date', 'close', 'source', 'ingested_at'})

    _check_string(row, 'security_id')
    _check_metadata(row)

    present = {}
    for field in ['open', 'high', 'low', 'close']:
        if row.get(field) is None:
            continue
        _check_numeric(row, field)
        if row[field] <= 0:
            raise ValidationError(f"{field} must be positive, got {row[field]}")
        present[field] = row[field]

    if 'close' not in present:
        raise ValidationError("close is required")

    volume = row.get('volume')
    if volume is not None:
        if isinstance(volume, bool) or not isinstance(volume, int):
            raise ValidationError(f"volume must be integer, got {type(volume)}")
        if volume < 0:
            raise ValidationError(f"volume must be non-negative, got {volume}")

    high = present.get('high')
    low = present.get('low')

    if high is not None and low is not None and high < low:
        raise ValidationError(f"high ({high}) must be >= low ({low})")

    for field in ['open', 'close']:
        value = present.get(field)
        if value is None:
            continue
        if high is not None and high < value:
            raise ValidationError(f"high ({high}) must be >= {field} ({value})")
        if low is not None and low > value:
            raise ValidationError(f"low ({low}) must be <= {field} ({value})")


def validate_security_row(row: Dict[str, Any]) -> None:
    """
    Validate a canonical security reference row.

    Raises:
        ValidationError: If validation fails
    """
    _check_required(row, {'id', 'symbol', 'currency', 'ingested_at'})

    _check_string(row, 'id')
    _check_string(row, 'symbol')

    if not isinstance(row['ingested_at'], datetime):
        raise ValidationError(f"ingested_at must be datetime, got {type(row['ingested_at'])}")

    currency = row['currency']
    if not isinstance(currency, str) or len(currency) != 3 or not currency.isupper():
        raise ValidationError(f"currency must be a 3-letter uppercase code, got {currency!r}")

    asset_class = row.get('asset_class')
    if asset_class is not None and asset_class not in ASSET_CLASSES:
        raise ValidationError(
            f"asset_class must be one of {sorted(ASSET_CLASSES)}, got {asset_class}"
        )


def check_price_date_monotonicity(prices: List[Dict[str, Any]]) -> None:
    """
    Check that dates are strictly increasing for each security.

    Args:
        prices: List of price rows with 'security_id' and 'date' fields

    Raises:
        ValidationError: If dates are not monotonic or have duplicates
    """
    if not prices:
        return

    security_dates: Dict[str, List[date]] = {}
    for row in prices:
        security_dates.setdefault(row.get('security_id'), []).append(row.get('date'))

    for security_id, dates in security_dates.items():
        if len(dates) <= 1:
            continue

        if len(dates) != len(set(dates)):
            raise ValidationError(f"Duplicate date found for security {security_id}")

        for i in range(1, len(dates)):
            if dates[i] <= dates[i-1]:
                raise ValidationError(
                    f"Security {security_id} dates not monotonic: "
                    f"{dates[i-1]} >= {dates[i]}"
                )
