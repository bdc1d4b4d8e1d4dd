"""
Normalizers for transforming raw export records to canonical shape.
Pure functions - no IO, network, or side effects.
Minimal normalization - only when necessary.
"""

import hashlib
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Any, List, Optional


class NormalizationError(ValueError):
    """Raised when a raw record cannot be mapped to canonical shape."""
    pass


def _field(raw: Dict[str, Any], *names: str) -> Any:
    """First present value among alternative field names."""
    for name in names:
        if name in raw and raw[name] is not None and raw[name] != '':
            return raw[name]
    return None


def _parse_date(value: Any, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            raise NormalizationError(f"Invalid {field}: {value!r}")
    raise NormalizationError(f"Missing or invalid {field}: {value!r}")


def _parse_decimal(value: Any, field: str) -> Optional[Decimal]:
    """
    Parse a numeric value to Decimal, keeping None for missing values.

    Floats go through str so 0.1 stays 0.1. Thousands separators and a
    leading '$' are stripped from strings.
    """
    if value is None or value == '':
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise NormalizationError(f"{field} must be numeric, got {value!r}")
    text = str(value).strip().replace(',', '').replace('$', '')
    try:
        return Decimal(text)
    except InvalidOperation:
        raise NormalizationError(f"{field} must be numeric, got {value!r}")


def transaction_id_for(row: Dict[str, Any]) -> str:
    """
    Deterministic id for a transaction without one.

    Hashes the canonical fields so re-ingesting the same export is idempotent.
    """
    parts = [
        row['account_id'],
        row['date'].isoformat(),
        row['type'],
        row.get('security_id') or '',
        str(row.get('quantity') if row.get('quantity') is not None else ''),
        str(row.get('price') if row.get('price') is not None else ''),
        str(row.get('amount') if row.get('amount') is not None else ''),
    ]
    return hashlib.sha256('|'.join(parts).encode('utf-8')).hexdigest()[:32]


def normalize_positions(
    raw_rows: List[Dict[str, Any]],
    *,
    source: str,
    ingested_at: datetime
) -> List[Dict[str, Any]]:
    """
    Transform raw position records to canonical shape.

    Minimal normalization:
    - camelCase export names mapped to canonical names
    - Date strings to date objects, numbers to Decimal
    - market_value derived as quantity x average_cost when absent
    - Deduplication by (account_id, security_id, date), keeping the last

    Args:
        raw_rows: Raw position dictionaries
        source: Data source name
        ingested_at: Pipeline processing timestamp

    Returns:
        List of canonical position dictionaries
    """
    if not raw_rows:
        return []

    seen_positions = {}

    for raw in raw_rows:
        account_id = _field(raw, 'account_id', 'accountId')
        security_id = _field(raw, 'security_id', 'securityId')
        position_date = _parse_date(_field(raw, 'date', 'positionDate'), 'date')
        quantity = _parse_decimal(_field(raw, 'quantity'), 'quantity')
        average_cost = _parse_decimal(_field(raw, 'average_cost', 'averageCost'), 'average_cost')
        market_value = _parse_decimal(_field(raw, 'market_value', 'marketValue'), 'market_value')

        if market_value is None and quantity is not None and average_cost is not None:
            market_value = quantity * average_cost

        canonical = {
            'account_id': str(account_id) if account_id is not None else None,
            'security_id': str(security_id) if security_id is not None else None,
            'date': position_date,
            'quantity': quantity,
            'average_cost': average_cost,
            'market_value': market_value,
            'source': source,
            'ingested_at': ingested_at,
        }

        pk = (canonical['account_id'], canonical['security_id'], position_date)
        seen_positions[pk] = canonical

    return list(seen_positions.values())


def normalize_transactions(
    raw_rows: List[Dict[str, Any]],
    *,
    source: str,
    ingested_at: datetime
) -> List[Dict[str, Any]]:
    """
    Transform raw transaction records to canonical shape.

    Minimal normalization:
    - transaction_type/transactionType aliases, uppercased
    - transaction_date/transactionDate aliases
    - Trade quantities stored as positive magnitudes
    - transaction_id generated from content when missing

    Args:
        raw_rows: Raw transaction dictionaries
        source: Data source name
        ingested_at: Pipeline processing timestamp

    Returns:
        List of canonical transaction dictionaries
    """
    if not raw_rows:
        return []

    seen_transactions = {}

    for raw in raw_rows:
        transaction_type = _field(raw, 'type', 'transaction_type', 'transactionType')
        account_id = _field(raw, 'account_id', 'accountId')
        security_id = _field(raw, 'security_id', 'securityId')
        quantity = _parse_decimal(_field(raw, 'quantity'), 'quantity')

        canonical = {
            'account_id': str(account_id) if account_id is not None else None,
            'date': _parse_date(
                _field(raw, 'date', 'transaction_date', 'transactionDate'), 'date'
            ),
            'type': str(transaction_type).strip().upper() if transaction_type is not None else None,
            'security_id': str(security_id) if security_id is not None else None,
            'quantity': abs(quantity) if quantity is not None else None,
            'price': _parse_decimal(_field(raw, 'price'), 'price'),
            'amount': _parse_decimal(_field(raw, 'amount'), 'amount'),
            'source': source,
            'ingested_at': ingested_at,
        }

        transaction_id = _field(raw, 'transaction_id', 'transactionId', 'id')
        if transaction_id is None:
            if canonical['account_id'] is None or canonical['type'] is None:
                raise NormalizationError(f"Transaction missing account or type: {raw!r}")
            transaction_id = transaction_id_for(canonical)
        canonical['transaction_id'] = str(transaction_id)

        seen_transactions[canonical['transaction_id']] = canonical

    return list(seen_transactions.values())


def normalize_prices(
    raw_rows: List[Dict[str, Any]],
    *,
    source: str,
    ingested_at: datetime
) -> List[Dict[str, Any]]:
    """
    Transform raw price records to canonical shape.

    Accepts both canonical names and OHLCV export headers
    (Date/Open/High/Low/Close/Volume). Deduplicates by (security_id, date)
    keeping the last row to handle corrections.

    Returns:
        List of canonical price dictionaries
    """
    if not raw_rows:
        return []

    seen_prices = {}

    for raw in raw_rows:
        security_id = _field(raw, 'security_id', 'securityId')
        price_date = _parse_date(_field(raw, 'date', 'Date'), 'date')
        volume = _field(raw, 'volume', 'Volume')

        canonical = {
            'security_id': str(security_id) if security_id is not None else None,
            'date': price_date,
            'open': _parse_decimal(_field(raw, 'open', 'Open'), 'open'),
            'high': _parse_decimal(_field(raw, 'high', 'High'), 'high'),
            'low': _parse_decimal(_field(raw, 'low', 'Low'), 'low'),
            'close': _parse_decimal(_field(raw, 'close', 'Close'), 'close'),
            'volume': int(Decimal(str(volume))) if volume is not None else None,
            'source': source,
            'ingested_at': ingested_at,
        }

        pk = (canonical['security_id'], price_date)
        seen_prices[pk] = canonical

    return list(seen_prices.values())


def normalize_securities(
    raw_rows: List[Dict[str, Any]],
    *,
    ingested_at: datetime
) -> List[Dict[str, Any]]:
    """
    Transform raw security reference records to canonical shape.

    - Symbols and currencies uppercased; currency defaults to USD
    - Asset classes uppercased with spaces as underscores
      ('Fixed Income' -> 'FIXED_INCOME')

    Returns:
        List of canonical security dictionaries, deduplicated by id
    """
    if not raw_rows:
        return []

    seen_securities = {}

    for raw in raw_rows:
        security_id = _field(raw, 'id', 'security_id', 'securityId')
        symbol = _field(raw, 'symbol', 'ticker')
        asset_class = _field(raw, 'asset_class', 'assetClass')
        currency = _field(raw, 'currency') or 'USD'

        canonical = {
            'id': str(security_id) if security_id is not None else None,
            'symbol': str(symbol).strip().upper() if symbol is not None else None,
            'name': _field(raw, 'name'),
            'asset_class': (
                str(asset_class).strip().upper().replace(' ', '_').replace('-', '_')
                if asset_class is not None else None
            ),
            'exchange': _field(raw, 'exchange'),
            'currency': str(currency).strip().upper(),
            'ingested_at': ingested_at,
        }

        seen_securities[canonical['id']] = canonical

    return list(seen_securities.values())
