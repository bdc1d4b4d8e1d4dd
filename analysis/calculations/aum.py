"""
Assets Under Management (AUM) calculation utilities.
Pure functions reconciling beginning/ending value, flows and market P&L.

Accounting identity: EOP - BOP = NetFlows + MarketPnL
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from analysis.calculations.decimal_math import (
    CONTRIBUTION_TYPES,
    HUNDRED,
    WITHDRAWAL_TYPES,
    ZERO,
    iter_days,
    require_date_range,
    require_identifier,
    require_sequence,
    row_date,
    row_type,
    safe_divide,
    to_decimal,
    to_float,
)


def _latest_position(
    positions: List[Dict[str, Any]],
    account_id: str,
    on_or_before: date,
    not_before: Optional[date] = None
) -> Optional[Dict[str, Any]]:
    """Most recent account position dated within [not_before, on_or_before]."""
    latest = None
    latest_date = None
    for position in positions:
        if position.get('account_id') != account_id:
            continue
        position_date = row_date(position)
        if position_date is None or position_date > on_or_before:
            continue
        if not_before is not None and position_date < not_before:
            continue
        if latest_date is None or position_date > latest_date:
            latest = position
            latest_date = position_date
    return latest


def sum_flows(
    transactions: List[Dict[str, Any]],
    account_id: str,
    start_date: date,
    end_date: date
) -> Dict[str, Decimal]:
    """
    Sum external cash flows for an account within a window.

    Withdrawals are accumulated as positive magnitudes regardless of the sign
    they were stored with.

    Returns:
        Dictionary with Decimal 'contributions' and 'withdrawals'
    """
    contributions = ZERO
    withdrawals = ZERO

    for transaction in transactions:
        if transaction.get('account_id') != account_id:
            continue
        transaction_date = row_date(transaction)
        if transaction_date is None or not (start_date <= transaction_date <= end_date):
            continue

        amount = to_decimal(transaction.get('amount'))
        transaction_type = row_type(transaction)

        if transaction_type in CONTRIBUTION_TYPES:
            contributions += amount
        elif transaction_type in WITHDRAWAL_TYPES:
            withdrawals += abs(amount)

    return {'contributions': contributions, 'withdrawals': withdrawals}


def _build_result(
    bop: Decimal,
    eop: Decimal,
    contributions: Decimal,
    withdrawals: Decimal,
    net_flows: Decimal,
    market_pnl: Decimal
) -> Dict[str, Any]:
    """Identity check and returns shared by single and aggregate results."""
    identity_difference = (eop - bop) - (net_flows + market_pnl)

    return {
        'bop': to_float(bop),
        'eop': to_float(eop),
        'contributions': to_float(contributions),
        'withdrawals': to_float(withdrawals),
        'net_flows': to_float(net_flows),
        'market_pnl': to_float(market_pnl),
        'identity_check': identity_difference == 0,
        'identity_difference': to_float(identity_difference),
        'total_return': to_float(safe_divide(market_pnl, bop) * HUNDRED),
        'net_return': to_float(safe_divide(eop - bop, bop) * HUNDRED),
    }


def _aum_components(
    account_id: str,
    start: date,
    end: date,
    positions: List[Dict[str, Any]],
    transactions: List[Dict[str, Any]]
) -> Dict[str, Decimal]:
    bop_position = _latest_position(positions, account_id, start)
    bop = to_decimal(bop_position.get('market_value')) if bop_position else ZERO

    eop_position = _latest_position(positions, account_id, end, not_before=start)
    eop = to_decimal(eop_position.get('market_value')) if eop_position else ZERO

    flows = sum_flows(transactions, account_id, start, end)
    net_flows = flows['contributions'] - flows['withdrawals']

    # MarketPnL is derived from the identity, not measured
    market_pnl = eop - bop - net_flows

    return {
        'bop': bop,
        'eop': eop,
        'contributions': flows['contributions'],
        'withdrawals': flows['withdrawals'],
        'net_flows': net_flows,
        'market_pnl': market_pnl,
    }


def calculate_aum(
    account_id: str,
    start_date: date,
    end_date: date,
    data: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Calculate AUM for an account over a date range.

    BOP is the most recent position at or before start_date; EOP is the most
    recent position inside the window. MarketPnL is derived so the identity
    holds exactly.

    Args:
        account_id: Account identifier
        start_date: Start of the calculation period
        end_date: End of the calculation period (inclusive)
        data: Dictionary with 'positions' and 'transactions' lists

    Returns:
        Dictionary with bop, eop, flows, market_pnl, identity check and returns
        (total_return and net_return in percent)

    Raises:
        InvalidInputError: If the call shape is invalid
    """
    require_identifier('account_id', account_id)
    start, end = require_date_range(start_date, end_date)
    positions = require_sequence('positions', data.get('positions'))
    transactions = require_sequence('transactions', data.get('transactions'))

    components = _aum_components(account_id, start, end, positions, transactions)

    result = {
        'account_id': account_id,
        'start_date': start.isoformat(),
        'end_date': end.isoformat(),
    }
    result.update(_build_result(**components))
    return result


def calculate_multiple_aum(
    account_ids: List[str],
    start_date: date,
    end_date: date,
    data: Dict[str, Any]
) -> List[Dict[str, Any]]:
    """Calculate AUM independently for each account."""
    require_sequence('account_ids', account_ids)
    return [
        calculate_aum(account_id, start_date, end_date, data)
        for account_id in account_ids
    ]


def calculate_aggregate_aum(
    account_ids: List[str],
    start_date: date,
    end_date: date,
    data: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Aggregate AUM across accounts.

    Components are summed first and the identity and returns are recomputed on
    the aggregate, so the aggregate return is not an average of per-account
    returns.
    """
    require_sequence('account_ids', account_ids)
    start, end = require_date_range(start_date, end_date)
    positions = require_sequence('positions', data.get('positions'))
    transactions = require_sequence('transactions', data.get('transactions'))

    totals = {
        'bop': ZERO,
        'eop': ZERO,
        'contributions': ZERO,
        'withdrawals': ZERO,
        'net_flows': ZERO,
        'market_pnl': ZERO,
    }

    for account_id in account_ids:
        require_identifier('account_id', account_id)
        components = _aum_components(account_id, start, end, positions, transactions)
        for key in totals:
            totals[key] += components[key]

    result = {
        'account_ids': list(account_ids),
        'start_date': start.isoformat(),
        'end_date': end.isoformat(),
    }
    result.update(_build_result(**totals))
    result['number_of_accounts'] = len(account_ids)
    return result


def calculate_daily_aum(
    account_id: str,
    start_date: date,
    end_date: date,
    data: Dict[str, Any]
) -> List[Dict[str, Any]]:
    """
    Calculate the AUM series for each calendar day in the range.

    Each day re-runs calculate_aum from start_date to that day, so cost grows
    with days x records.

    Returns:
        List of {'date', 'aum', 'market_value'} rows
    """
    start, end = require_date_range(start_date, end_date)

    daily_values = []
    for day in iter_days(start, end):
        aum_data = calculate_aum(account_id, start, day, data)
        daily_values.append({
            'date': day.isoformat(),
            'aum': aum_data['eop'],
            'market_value': aum_data['eop'],
        })

    return daily_values
