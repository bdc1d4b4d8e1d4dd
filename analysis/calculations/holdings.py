"""
Holdings calculation utilities.
Pure functions for point-in-time holdings, weights, unrealized P&L,
concentration risk and single-period attribution.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from analysis.calculations.decimal_math import (
    HUNDRED,
    ONE,
    ZERO,
    InvalidInputError,
    iso_date,
    require_identifier,
    require_sequence,
    row_date,
    safe_divide,
    to_date,
    to_decimal,
    to_float,
)


logger = logging.getLogger(__name__)

UNKNOWN_ASSET_CLASS = 'Unknown'


def _latest_by_key(
    rows: List[Dict[str, Any]],
    key: str,
    as_of: date,
    account_id: Optional[str] = None
) -> Dict[Any, Dict[str, Any]]:
    """Most recent row per key value dated at or before as_of."""
    latest: Dict[Any, Dict[str, Any]] = {}
    latest_dates: Dict[Any, date] = {}

    for row in rows:
        if account_id is not None and row.get('account_id') != account_id:
            continue
        current_date = row_date(row)
        if current_date is None or current_date > as_of:
            continue
        row_key = row.get(key)
        if row_key not in latest_dates or current_date > latest_dates[row_key]:
            latest[row_key] = row
            latest_dates[row_key] = current_date

    return latest


def get_holdings(
    account_id: str,
    as_of_date: date,
    data: Dict[str, Any]
) -> List[Dict[str, Any]]:
    """
    Build holdings for an account as of a date.

    Takes the most recent position per security at or before as_of_date,
    joins the latest close at or before as_of_date and security reference
    data. Zero-quantity positions are dropped. Missing prices value the
    holding at 0; missing securities fall back to "Unknown" labels.

    Args:
        account_id: Account identifier
        as_of_date: Valuation date
        data: Dictionary with 'positions', 'prices' and 'securities' lists

    Returns:
        List of holding dictionaries sorted by market value descending
    """
    require_identifier('account_id', account_id)
    as_of = to_date(as_of_date)
    if as_of is None:
        raise InvalidInputError("as_of_date is required")

    positions = require_sequence('positions', data.get('positions'))
    prices = require_sequence('prices', data.get('prices'))
    securities = require_sequence('securities', data.get('securities'))

    latest_positions = _latest_by_key(positions, 'security_id', as_of, account_id=account_id)
    latest_prices = _latest_by_key(prices, 'security_id', as_of)
    securities_by_id = {security.get('id'): security for security in securities}

    holdings = []
    for security_id, position in latest_positions.items():
        quantity = to_decimal(position.get('quantity'))
        if quantity == 0:
            continue

        security = securities_by_id.get(security_id)
        if security is None:
            logger.debug(f"No security reference data for {security_id}")
            security = {}

        latest_price = latest_prices.get(security_id)
        if latest_price is None:
            logger.debug(f"No price for {security_id} on or before {as_of}")

        price = to_decimal(latest_price.get('close')) if latest_price else ZERO
        average_cost = to_decimal(position.get('average_cost'))

        market_value = quantity * price
        book_value = quantity * average_cost
        unrealized_pnl = market_value - book_value

        holdings.append({
            'security_id': security_id,
            'symbol': security.get('symbol') or 'Unknown',
            'name': security.get('name') or 'Unknown Security',
            'asset_class': security.get('asset_class') or UNKNOWN_ASSET_CLASS,
            'exchange': security.get('exchange'),
            'currency': security.get('currency') or 'USD',
            'quantity': to_float(quantity),
            'price': to_float(price),
            'average_cost': to_float(average_cost),
            'market_value': to_float(market_value),
            'book_value': to_float(book_value),
            'unrealized_pnl': to_float(unrealized_pnl),
            'unrealized_pnl_percent': to_float(safe_divide(unrealized_pnl, book_value) * HUNDRED),
            'price_date': iso_date(latest_price.get('date')) if latest_price else None,
            'position_date': iso_date(position.get('date')),
        })

    return sorted(holdings, key=lambda h: h['market_value'], reverse=True)


def calculate_weights(holdings: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Calculate portfolio weights and asset-class weights.

    weight = market_value / total_market_value (0 when the total is 0)

    Returns:
        Dictionary with weighted 'holdings', 'total_market_value',
        'asset_class_weights', 'number_of_holdings' and 'as_of_date'
    """
    require_sequence('holdings', holdings)

    total_market_value = sum((to_decimal(h.get('market_value')) for h in holdings), ZERO)

    weighted_holdings = []
    asset_class_weights: Dict[str, Decimal] = {}

    for holding in holdings:
        weight = safe_divide(to_decimal(holding.get('market_value')), total_market_value)

        weighted = dict(holding)
        weighted['weight'] = to_float(weight)
        weighted['weight_percent'] = to_float(weight * HUNDRED)
        weighted_holdings.append(weighted)

        asset_class = holding.get('asset_class')
        asset_class_weights[asset_class] = asset_class_weights.get(asset_class, ZERO) + weight

    asset_class_summary = [
        {
            'asset_class': asset_class,
            'weight': to_float(weight),
            'weight_percent': to_float(weight * HUNDRED),
            'market_value': to_float(weight * total_market_value),
        }
        for asset_class, weight in asset_class_weights.items()
    ]

    return {
        'holdings': weighted_holdings,
        'total_market_value': to_float(total_market_value),
        'asset_class_weights': asset_class_summary,
        'number_of_holdings': len(holdings),
        'as_of_date': holdings[0].get('position_date') if holdings else None,
    }


def calculate_unrealized_pnl(holdings: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Summarize unrealized P&L across holdings, split into gains and losses.

    Losses are reported as positive magnitudes. Averages are 0 for empty
    buckets.
    """
    require_sequence('holdings', holdings)

    total_unrealized = ZERO
    total_market_value = ZERO
    total_book_value = ZERO
    gains = ZERO
    losses = ZERO
    gains_count = 0
    losses_count = 0

    for holding in holdings:
        unrealized = to_decimal(holding.get('unrealized_pnl'))
        total_unrealized += unrealized
        total_market_value += to_decimal(holding.get('market_value'))
        total_book_value += to_decimal(holding.get('book_value'))

        if unrealized > 0:
            gains += unrealized
            gains_count += 1
        elif unrealized < 0:
            losses += abs(unrealized)
            losses_count += 1

    return {
        'total_unrealized_pnl': to_float(total_unrealized),
        'total_unrealized_pnl_percent': to_float(
            safe_divide(total_unrealized, total_book_value) * HUNDRED
        ),
        'total_market_value': to_float(total_market_value),
        'total_book_value': to_float(total_book_value),
        'total_gains': to_float(gains),
        'total_losses': to_float(losses),
        'gains_count': gains_count,
        'losses_count': losses_count,
        'total_positions': len(holdings),
        'average_gain': to_float(safe_divide(gains, Decimal(gains_count))),
        'average_loss': to_float(safe_divide(losses, Decimal(losses_count))),
    }


def group_by_asset_class(holdings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Group holdings by asset class with per-group totals.

    Missing asset classes are grouped under "Unknown".

    Returns:
        List of groups sorted by total market value descending
    """
    require_sequence('holdings', holdings)

    groups: Dict[str, Dict[str, Any]] = {}
    for holding in holdings:
        asset_class = holding.get('asset_class') or UNKNOWN_ASSET_CLASS

        group = groups.setdefault(asset_class, {
            'asset_class': asset_class,
            'holdings': [],
            'total_market_value': ZERO,
            'total_book_value': ZERO,
            'total_unrealized_pnl': ZERO,
            'count': 0,
        })
        group['holdings'].append(holding)
        group['total_market_value'] += to_decimal(holding.get('market_value'))
        group['total_book_value'] += to_decimal(holding.get('book_value'))
        group['total_unrealized_pnl'] += to_decimal(holding.get('unrealized_pnl'))
        group['count'] += 1

    grouped = []
    for group in groups.values():
        grouped.append({
            'asset_class': group['asset_class'],
            'holdings': group['holdings'],
            'count': group['count'],
            'total_market_value': to_float(group['total_market_value']),
            'total_book_value': to_float(group['total_book_value']),
            'total_unrealized_pnl': to_float(group['total_unrealized_pnl']),
            'unrealized_pnl_percent': to_float(
                safe_divide(group['total_unrealized_pnl'], group['total_book_value']) * HUNDRED
            ),
            'average_holding_size': to_float(
                safe_divide(group['total_market_value'], Decimal(group['count']))
            ),
        })

    return sorted(grouped, key=lambda g: g['total_market_value'], reverse=True)


def calculate_concentration_risk(holdings: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Calculate concentration metrics from weighted holdings.

    Holdings must carry a 'weight' field (0-1), e.g. from calculate_weights.

    - Top-N concentration: sum of the N largest weights x 100
    - Herfindahl index: HHI = sum(weight_i^2)
    - Effective number of holdings: 1 / HHI (0 when HHI is 0)

    Returns:
        Dictionary of concentration metrics; zeroed for empty input
    """
    if not holdings:
        return {
            'top5_concentration': 0,
            'top10_concentration': 0,
            'herfindahl_index': 0,
            'effective_number_of_holdings': 0,
            'largest_holding': 0,
            'largest_holding_symbol': None,
            'total_holdings': 0,
        }

    require_sequence('holdings', holdings)

    weights = [(to_decimal(h.get('weight')), h) for h in holdings]
    ranked = sorted(weights, key=lambda pair: pair[0], reverse=True)

    top5 = sum((w for w, _ in ranked[:5]), ZERO)
    top10 = sum((w for w, _ in ranked[:10]), ZERO)
    herfindahl = sum((w * w for w, _ in weights), ZERO)
    effective_n = safe_divide(ONE, herfindahl)

    largest_weight, largest = ranked[0]

    return {
        'top5_concentration': to_float(top5 * HUNDRED),
        'top10_concentration': to_float(top10 * HUNDRED),
        'herfindahl_index': to_float(herfindahl),
        'effective_number_of_holdings': to_float(effective_n),
        'largest_holding': to_float(largest_weight * HUNDRED),
        'largest_holding_symbol': largest.get('symbol'),
        'total_holdings': len(holdings),
    }


def calculate_performance_attribution(
    current_holdings: List[Dict[str, Any]],
    previous_holdings: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """
    Single-period contribution to return by security.

    price_return = current_price / previous_price - 1 (0 for new positions)
    contribution = previous_weight x price_return

    Securities missing from one snapshot default weight and price to 0.
    Weights, returns and contributions are reported in percent.

    Returns:
        List of attribution rows sorted by absolute contribution descending
    """
    require_sequence('current_holdings', current_holdings)
    require_sequence('previous_holdings', previous_holdings)

    current_map = {h.get('security_id'): h for h in current_holdings}
    previous_map = {h.get('security_id'): h for h in previous_holdings}

    security_ids = list(current_map)
    security_ids.extend(sid for sid in previous_map if sid not in current_map)

    attribution = []
    for security_id in security_ids:
        current = current_map.get(security_id) or {}
        previous = previous_map.get(security_id) or {}

        current_price = to_decimal(current.get('price'))
        previous_price = to_decimal(previous.get('price'))
        current_weight = to_decimal(current.get('weight'))
        previous_weight = to_decimal(previous.get('weight'))

        price_return = ZERO
        if previous_price != 0:
            price_return = current_price / previous_price - ONE

        contribution = previous_weight * price_return

        attribution.append({
            'security_id': security_id,
            'symbol': current.get('symbol') or previous.get('symbol'),
            'name': current.get('name') or previous.get('name'),
            'previous_weight': to_float(previous_weight * HUNDRED),
            'current_weight': to_float(current_weight * HUNDRED),
            'weight_change': to_float((current_weight - previous_weight) * HUNDRED),
            'previous_price': to_float(previous_price),
            'current_price': to_float(current_price),
            'price_return': to_float(price_return * HUNDRED),
            'contribution': to_float(contribution * HUNDRED),
        })

    return sorted(attribution, key=lambda row: abs(row['contribution']), reverse=True)
