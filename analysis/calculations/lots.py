"""
Tax lot calculation utilities.
Lot tracking with FIFO/LIFO/HighCost/LowCost matching, realized and
unrealized P&L, wash sale detection and a tax reporting summary.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from analysis.calculations.decimal_math import (
    BUY_TYPES,
    CALENDAR_DAYS_PER_YEAR,
    HUNDRED,
    SELL_TYPES,
    ZERO,
    InvalidInputError,
    require_sequence,
    row_date,
    row_type,
    safe_divide,
    to_date,
    to_decimal,
    to_float,
)


logger = logging.getLogger(__name__)

LOT_METHODS = ('FIFO', 'LIFO', 'HighCost', 'LowCost')
DEFAULT_LOT_METHOD = 'FIFO'
LONG_TERM_DAYS = CALENDAR_DAYS_PER_YEAR
WASH_SALE_WINDOW_DAYS = 30


@dataclass(frozen=True)
class Lot:
    """An open purchase of a security."""
    lot_id: str
    security_id: str
    purchase_date: date
    original_quantity: Decimal
    remaining_quantity: Decimal
    purchase_price: Decimal
    total_cost: Decimal
    method: str = DEFAULT_LOT_METHOD

    @property
    def is_open(self) -> bool:
        return self.remaining_quantity > 0


def holding_period_days(purchase_date: date, sale_date: date) -> int:
    """Calendar days between purchase and sale."""
    return abs((sale_date - purchase_date).days)


def _lot_sort_key(method: str):
    if method == 'LIFO':
        return lambda lot: (-lot.purchase_date.toordinal(),)
    if method == 'HighCost':
        return lambda lot: (-lot.purchase_price, lot.purchase_date)
    if method == 'LowCost':
        return lambda lot: (lot.purchase_price, lot.purchase_date)
    return lambda lot: (lot.purchase_date,)


def match_sale(
    lots: List[Lot],
    quantity: Any,
    sale_date: date,
    method: str = DEFAULT_LOT_METHOD
) -> Tuple[List[Lot], List[Dict[str, Any]]]:
    """
    Match a sale against open lots.

    Open lots are consumed greedily in method order (FIFO oldest first,
    LIFO newest first, HighCost/LowCost by purchase price; unknown methods
    fall back to FIFO). A sale larger than the open quantity matches what
    exists.

    Args:
        lots: Lots for one security
        quantity: Quantity sold (sign ignored)
        sale_date: Date of the sale
        method: Lot selection method

    Returns:
        Tuple of (updated lots in their original order, assignments). The
        input lots are left untouched.
    """
    remaining_to_sell = abs(to_decimal(quantity))
    sale_day = to_date(sale_date)

    open_lots = sorted((lot for lot in lots if lot.is_open), key=_lot_sort_key(method))

    consumed: Dict[str, Decimal] = {}
    assignments = []

    for lot in open_lots:
        if remaining_to_sell <= 0:
            break

        matched = min(remaining_to_sell, lot.remaining_quantity)
        consumed[lot.lot_id] = matched
        remaining_to_sell -= matched

        assignments.append({
            'lot_id': lot.lot_id,
            'security_id': lot.security_id,
            'quantity': matched,
            'purchase_price': lot.purchase_price,
            'purchase_date': lot.purchase_date,
            'sale_date': sale_day,
            'holding_period': holding_period_days(lot.purchase_date, sale_day),
        })

    if remaining_to_sell > 0:
        security_id = lots[0].security_id if lots else None
        logger.warning(
            f"Sale of {security_id} on {sale_day} exceeds open lots by {remaining_to_sell}"
        )

    updated_lots = [
        replace(lot, remaining_quantity=lot.remaining_quantity - consumed[lot.lot_id])
        if lot.lot_id in consumed else lot
        for lot in lots
    ]

    return updated_lots, assignments


def _chronological_trades(transactions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """BUY/SELL rows ordered by date, buys ahead of sells on the same day."""
    trades = []
    for index, transaction in enumerate(transactions):
        transaction_type = row_type(transaction)
        if transaction_type not in BUY_TYPES and transaction_type not in SELL_TYPES:
            continue
        transaction_date = row_date(transaction)
        if transaction_date is None:
            raise InvalidInputError(f"Trade without a date: {transaction!r}")
        is_sell = 1 if transaction_type in SELL_TYPES else 0
        trades.append((transaction_date, is_sell, index, transaction))

    trades.sort(key=lambda trade: trade[:3])
    return [trade[3] for trade in trades]


def _replay(
    transactions: List[Dict[str, Any]],
    method: str
) -> Dict[str, List[Lot]]:
    """Replay trades into lots in date order."""
    require_sequence('transactions', transactions)

    lots: Dict[str, List[Lot]] = {}
    lot_sequence = 0

    for transaction in _chronological_trades(transactions):
        security_id = transaction.get('security_id')
        transaction_date = row_date(transaction)
        quantity = abs(to_decimal(transaction.get('quantity')))
        security_lots = lots.setdefault(security_id, [])

        if row_type(transaction) in BUY_TYPES:
            lot_sequence += 1
            price = to_decimal(transaction.get('price'))
            security_lots.append(Lot(
                lot_id=f"{security_id}-{transaction_date.isoformat()}-{lot_sequence}",
                security_id=security_id,
                purchase_date=transaction_date,
                original_quantity=quantity,
                remaining_quantity=quantity,
                purchase_price=price,
                total_cost=quantity * price,
                method=method,
            ))
        else:
            updated, _ = match_sale(security_lots, quantity, transaction_date, method)
            lots[security_id] = updated

    return lots


def track_lots(
    transactions: List[Dict[str, Any]],
    method: str = DEFAULT_LOT_METHOD
) -> Dict[str, List[Lot]]:
    """
    Build tax lots from a transaction history.

    Args:
        transactions: Transaction rows (BUY/PURCHASE open lots, SELL/SALE
            consume them; other types are ignored)
        method: 'FIFO', 'LIFO', 'HighCost' or 'LowCost'

    Returns:
        Dictionary of security_id to lots in purchase order, including
        fully consumed lots
    """
    return _replay(transactions, method)


def _summarize_realized(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    total_gain_loss = ZERO
    total_proceeds = ZERO
    total_cost = ZERO
    short_term = ZERO
    long_term = ZERO
    gains = ZERO
    losses = ZERO
    gains_count = 0
    losses_count = 0

    for row in rows:
        gain_loss = to_decimal(row['gain_loss'])
        total_gain_loss += gain_loss
        total_proceeds += to_decimal(row['proceeds'])
        total_cost += to_decimal(row['cost'])

        if row['is_long_term']:
            long_term += gain_loss
        else:
            short_term += gain_loss

        if gain_loss > 0:
            gains += gain_loss
            gains_count += 1
        elif gain_loss < 0:
            losses += abs(gain_loss)
            losses_count += 1

    decided = gains_count + losses_count
    win_rate = safe_divide(Decimal(gains_count), Decimal(decided))

    if losses == 0:
        profit_factor = 'Infinity' if gains > 0 else 0
    else:
        profit_factor = to_float(gains / losses)

    return {
        'total_gain_loss': to_float(total_gain_loss),
        'total_proceeds': to_float(total_proceeds),
        'total_cost': to_float(total_cost),
        'short_term_gain_loss': to_float(short_term),
        'long_term_gain_loss': to_float(long_term),
        'total_gains': to_float(gains),
        'total_losses': to_float(losses),
        'gains_count': gains_count,
        'losses_count': losses_count,
        'win_rate': to_float(win_rate),
        'win_rate_percent': to_float(win_rate * HUNDRED),
        'average_gain': to_float(safe_divide(gains, Decimal(gains_count))),
        'average_loss': to_float(safe_divide(losses, Decimal(losses_count))),
        'profit_factor': profit_factor,
        'return_on_investment': to_float(safe_divide(total_gain_loss, total_cost) * HUNDRED),
    }


def calculate_realized_pnl(
    transactions: List[Dict[str, Any]],
    method: str = DEFAULT_LOT_METHOD
) -> Dict[str, Any]:
    """
    Calculate realized gains and losses by lot.

    Lots are re-derived from BUY transactions only, then SELL transactions
    are replayed chronologically against that full set of lots. One row is
    produced per lot assignment, so a sale spanning several lots yields
    several rows.

    proceeds = quantity x sale_price
    cost = quantity x purchase_price
    gain_loss = proceeds - cost
    Long term when the holding period is at least 365 days.

    Args:
        transactions: Transaction history for one or more securities
        method: Lot selection method

    Returns:
        Dictionary with 'transactions' (realized rows), 'summary', 'method'
        and 'total_transactions'
    """
    require_sequence('transactions', transactions)

    buys = [t for t in transactions if row_type(t) in BUY_TYPES]
    lots = track_lots(buys, method)

    sales = []
    for sale in _chronological_trades([t for t in transactions if row_type(t) in SELL_TYPES]):
        security_id = sale.get('security_id')
        quantity = abs(to_decimal(sale.get('quantity')))
        updated, assignments = match_sale(lots.get(security_id, []), quantity, row_date(sale), method)
        lots[security_id] = updated
        sales.append((sale, assignments))

    rows = []
    for sale, assignments in sales:
        sale_price = to_decimal(sale.get('price'))

        for assignment in assignments:
            quantity = assignment['quantity']
            purchase_price = assignment['purchase_price']
            proceeds = quantity * sale_price
            cost = quantity * purchase_price
            is_long_term = assignment['holding_period'] >= LONG_TERM_DAYS

            rows.append({
                'security_id': assignment['security_id'],
                'sale_date': assignment['sale_date'].isoformat(),
                'purchase_date': assignment['purchase_date'].isoformat(),
                'quantity': to_float(quantity),
                'purchase_price': to_float(purchase_price),
                'sale_price': to_float(sale_price),
                'cost': to_float(cost),
                'proceeds': to_float(proceeds),
                'gain_loss': to_float(proceeds - cost),
                'holding_period': assignment['holding_period'],
                'is_long_term': is_long_term,
                'is_short_term': not is_long_term,
                'method': method,
                'lot_id': assignment['lot_id'],
            })

    return {
        'transactions': rows,
        'summary': _summarize_realized(rows),
        'method': method,
        'total_transactions': len(rows),
    }


def calculate_lot_unrealized_pnl(
    lots: Dict[str, List[Lot]],
    current_prices: Dict[str, Any],
    as_of_date: date
) -> List[Dict[str, Any]]:
    """
    Calculate unrealized P&L for every open lot.

    Args:
        lots: Output of track_lots
        current_prices: {security_id: price}; missing prices value at 0
        as_of_date: Date used for the holding period

    Returns:
        List of open-lot rows sorted by unrealized P&L descending
    """
    as_of = to_date(as_of_date)
    if as_of is None:
        raise InvalidInputError("as_of_date is required")

    current_prices = current_prices or {}
    rows = []

    for security_id, security_lots in lots.items():
        current_price = to_decimal(current_prices.get(security_id))

        for lot in security_lots:
            if not lot.is_open:
                continue

            quantity = lot.remaining_quantity
            current_value = quantity * current_price
            book_value = quantity * lot.purchase_price
            unrealized = current_value - book_value
            holding_period = holding_period_days(lot.purchase_date, as_of)

            rows.append({
                'lot_id': lot.lot_id,
                'security_id': security_id,
                'purchase_date': lot.purchase_date.isoformat(),
                'quantity': to_float(quantity),
                'purchase_price': to_float(lot.purchase_price),
                'current_price': to_float(current_price),
                'book_value': to_float(book_value),
                'current_value': to_float(current_value),
                'unrealized_pnl': to_float(unrealized),
                'unrealized_pnl_percent': to_float(safe_divide(unrealized, book_value) * HUNDRED),
                'holding_period': holding_period,
                'is_long_term': holding_period >= LONG_TERM_DAYS,
                'is_short_term': holding_period < LONG_TERM_DAYS,
            })

    return sorted(rows, key=lambda row: row['unrealized_pnl'], reverse=True)


def calculate_wash_sales(
    realized_pnl: List[Dict[str, Any]],
    transactions: List[Dict[str, Any]]
) -> Dict[str, Any]:
    """
    Detect wash sales among realized losses.

    A loss is a wash sale when the same security was bought within 30 days
    before or after the sale date (buys on the sale date itself excluded).

    disallowed_loss = loss x min(loss_quantity, repurchase_quantity) / loss_quantity
    allowed_loss = loss - disallowed_loss

    Args:
        realized_pnl: Realized rows from calculate_realized_pnl
        transactions: Full transaction history

    Returns:
        Dictionary with 'wash_sales', 'total_disallowed_loss',
        'affected_transactions' and 'summary'
    """
    require_sequence('realized_pnl', realized_pnl)
    require_sequence('transactions', transactions)

    window = timedelta(days=WASH_SALE_WINDOW_DAYS)
    buys = [t for t in transactions if row_type(t) in BUY_TYPES]

    wash_sales = []
    original_total_loss = ZERO
    total_disallowed = ZERO

    for loss in realized_pnl:
        loss_amount = to_decimal(loss.get('gain_loss'))
        if loss_amount >= 0:
            continue
        original_total_loss += loss_amount

        sale_date = to_date(loss.get('sale_date'))
        repurchases = []
        for buy in buys:
            if buy.get('security_id') != loss.get('security_id'):
                continue
            buy_date = row_date(buy)
            if buy_date is None or buy_date == sale_date:
                continue
            if sale_date - window <= buy_date <= sale_date + window:
                repurchases.append(buy)

        if not repurchases:
            continue

        repurchase_quantity = sum(
            (abs(to_decimal(buy.get('quantity'))) for buy in repurchases), ZERO
        )
        loss_quantity = abs(to_decimal(loss.get('quantity')))
        wash_quantity = min(loss_quantity, repurchase_quantity)
        ratio = safe_divide(wash_quantity, loss_quantity)
        disallowed = loss_amount * ratio
        total_disallowed += disallowed

        wash_sales.append({
            'original_lot_id': loss.get('lot_id'),
            'security_id': loss.get('security_id'),
            'sale_date': sale_date.isoformat(),
            'original_loss': to_float(loss_amount),
            'wash_sale_quantity': to_float(wash_quantity),
            'disallowed_loss': to_float(disallowed),
            'allowed_loss': to_float(loss_amount - disallowed),
            'wash_sale_purchases': [
                {
                    'date': row_date(buy).isoformat(),
                    'quantity': to_float(abs(to_decimal(buy.get('quantity')))),
                    'price': to_float(to_decimal(buy.get('price'))),
                }
                for buy in repurchases
            ],
        })

    return {
        'wash_sales': wash_sales,
        'total_disallowed_loss': to_float(total_disallowed),
        'affected_transactions': len(wash_sales),
        'summary': {
            'original_total_loss': to_float(original_total_loss),
            'adjusted_total_loss': to_float(original_total_loss - total_disallowed),
            'wash_sale_adjustment': to_float(total_disallowed),
        },
    }


def generate_tax_reporting_summary(
    realized_results: Dict[str, Any],
    wash_results: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Summarize realized results for tax reporting.

    Disallowed wash-sale losses are removed from the short-term bucket only;
    since disallowed losses are negative, the short-term figure rises.
    """
    summary = realized_results['summary']
    wash_results = wash_results or {}

    disallowed = to_decimal(wash_results.get('total_disallowed_loss'))
    short_term = to_decimal(summary['short_term_gain_loss']) - disallowed
    long_term = to_decimal(summary['long_term_gain_loss'])

    return {
        'short_term': {
            'gain_loss': to_float(short_term),
            'gains': to_float(max(ZERO, short_term)),
            'losses': to_float(min(ZERO, short_term)),
        },
        'long_term': {
            'gain_loss': to_float(long_term),
            'gains': to_float(max(ZERO, long_term)),
            'losses': to_float(min(ZERO, long_term)),
        },
        'total': {
            'gain_loss': to_float(short_term + long_term),
            'proceeds': summary['total_proceeds'],
            'cost': summary['total_cost'],
        },
        'wash_sales': {
            'disallowed_loss': to_float(disallowed),
            'affected_transactions': wash_results.get('affected_transactions', 0),
        },
        'method': realized_results.get('method'),
    }
