"""
Quality control checks over calculation inputs and outputs.
Each check returns {'status', 'messages', 'check', 'data'}; the
comprehensive run folds them into one PASS/WARN/FAIL verdict.
"""

import logging
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

from analysis.calculations.decimal_math import (
    BUY_TYPES,
    DEFAULT_AUM_TOLERANCE,
    DEFAULT_QUANTITY_TOLERANCE,
    MAX_DAILY_RETURN,
    MIN_DAILY_RETURN,
    SELL_TYPES,
    ZERO,
    InvalidInputError,
    require_date_range,
    require_sequence,
    row_date,
    row_type,
    business_days,
    safe_divide,
    to_date,
    to_decimal,
    to_float,
)


logger = logging.getLogger(__name__)

COST_TOLERANCE = Decimal('0.01')
WARN_TOLERANCE_MULTIPLIER = 1000
BENCHMARK_MISSING_THRESHOLD = 0.10


class QCStatus(str, Enum):
    """Enumeration of quality control outcomes."""
    PASS = 'PASS'
    WARN = 'WARN'
    FAIL = 'FAIL'


def _severity_summary(issues: List[Dict[str, Any]], key: str = 'severity') -> Dict[str, int]:
    return {
        'total': len(issues),
        'high': sum(1 for issue in issues if issue[key] == 'HIGH'),
        'medium': sum(1 for issue in issues if issue[key] == 'MEDIUM'),
        'low': sum(1 for issue in issues if issue[key] == 'LOW'),
    }


def check_aum_identity(aum_data: Dict[str, Any], tolerance: Any = DEFAULT_AUM_TOLERANCE) -> Dict[str, Any]:
    """
    Check the AUM identity EOP - BOP = NetFlows + MarketPnL.

    Tolerances below 1 use three tiers: PASS within tolerance, WARN up to
    1000 x tolerance, FAIL beyond. Tolerances of 1 or more fail on any excess.

    Args:
        aum_data: Dictionary with bop, eop, net_flows and market_pnl
        tolerance: Absolute tolerance (default one cent)

    Returns:
        QC check result
    """
    if tolerance is None:
        tolerance = DEFAULT_AUM_TOLERANCE

    bop = to_decimal(aum_data.get('bop'))
    eop = to_decimal(aum_data.get('eop'))
    net_flows = to_decimal(aum_data.get('net_flows'))
    market_pnl = to_decimal(aum_data.get('market_pnl'))
    tolerance_value = to_decimal(tolerance)

    left_side = eop - bop
    right_side = net_flows + market_pnl
    difference = abs(left_side - right_side)
    within_tolerance = difference <= tolerance_value

    status = QCStatus.PASS
    messages = []

    if within_tolerance:
        messages.append('AUM identity check passed')
    elif tolerance_value < 1:
        if difference > tolerance_value * WARN_TOLERANCE_MULTIPLIER:
            status = QCStatus.FAIL
            messages.append(
                f"AUM identity check failed: difference of {difference:.2f} "
                f"exceeds maximum tolerance"
            )
        else:
            status = QCStatus.WARN
            messages.append(
                f"AUM identity check warning: difference of {difference:.2f} "
                f"exceeds preferred tolerance"
            )
    else:
        status = QCStatus.FAIL
        messages.append(
            f"AUM identity check failed: difference of {difference:.2f} "
            f"exceeds tolerance of {tolerance_value:.2f}"
        )

    return {
        'status': status,
        'messages': messages,
        'check': 'AUM_IDENTITY',
        'data': {
            'bop': to_float(bop),
            'eop': to_float(eop),
            'net_flows': to_float(net_flows),
            'market_pnl': to_float(market_pnl),
            'left_side': to_float(left_side),
            'right_side': to_float(right_side),
            'difference': to_float(difference),
            'tolerance': to_float(tolerance_value),
            'is_within_tolerance': within_tolerance,
        },
    }


def find_missing_prices(
    account_id: str,
    date_range: Dict[str, Any],
    data: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Find business days with no close price for securities the account touched.

    Securities are those with an account position or transaction inside the
    range. A missing close is HIGH priority on a transaction day and MEDIUM
    when a positive position exists on or before the day.

    Args:
        account_id: Account identifier
        date_range: {'start': date, 'end': date}
        data: Dictionary with 'positions', 'transactions' and 'prices'

    Returns:
        QC check result (HIGH -> FAIL, MEDIUM -> WARN)
    """
    start, end = require_date_range(date_range.get('start'), date_range.get('end'))
    positions = require_sequence('positions', data.get('positions'))
    transactions = require_sequence('transactions', data.get('transactions'))
    prices = require_sequence('prices', data.get('prices'))

    account_positions = [p for p in positions if p.get('account_id') == account_id]
    account_transactions = [t for t in transactions if t.get('account_id') == account_id]

    relevant_securities = []
    for row in account_positions + account_transactions:
        security_id = row.get('security_id')
        if security_id is None or security_id in relevant_securities:
            continue
        row_day = row_date(row)
        if row_day is not None and start <= row_day <= end:
            relevant_securities.append(security_id)

    priced = {(p.get('security_id'), row_date(p)) for p in prices}
    traded = {(t.get('security_id'), row_date(t)) for t in account_transactions}

    first_held: Dict[Any, Any] = {}
    for position in account_positions:
        if to_decimal(position.get('quantity')) <= 0:
            continue
        security_id = position.get('security_id')
        position_date = row_date(position)
        if position_date is None:
            continue
        if security_id not in first_held or position_date < first_held[security_id]:
            first_held[security_id] = position_date

    missing_prices = []
    for day in business_days(start, end):
        for security_id in relevant_securities:
            if (security_id, day) in priced:
                continue

            has_transaction = (security_id, day) in traded
            has_position = security_id in first_held and first_held[security_id] <= day
            if not (has_transaction or has_position):
                continue

            missing_prices.append({
                'security_id': security_id,
                'date': day.isoformat(),
                'has_position': has_position,
                'has_transaction': has_transaction,
                'priority': 'HIGH' if has_transaction else 'MEDIUM',
            })

    summary = _severity_summary(missing_prices, key='priority')

    status = QCStatus.PASS
    messages = []
    if summary['high'] > 0:
        status = QCStatus.FAIL
        messages.append(f"{summary['high']} high-priority missing prices found (transaction days)")
    elif summary['medium'] > 0:
        status = QCStatus.WARN
        messages.append(f"{summary['medium']} medium-priority missing prices found (position days)")
    else:
        messages.append('No missing prices found')

    return {
        'status': status,
        'messages': messages,
        'check': 'MISSING_PRICES',
        'data': {
            'account_id': account_id,
            'date_range': {'start': start.isoformat(), 'end': end.isoformat()},
            'missing_prices': missing_prices,
            'summary': summary,
            'relevant_securities': relevant_securities,
        },
    }


def validate_benchmark_dates(
    returns: List[Dict[str, Any]],
    benchmark_data: List[Dict[str, Any]]
) -> Dict[str, Any]:
    """
    Check that every return date has a benchmark observation.

    More than 10% of return dates missing fails; any missing warns. Extra
    benchmark dates are reported only.
    """
    require_sequence('returns', returns)
    require_sequence('benchmark_data', benchmark_data)

    return_dates = {str(r.get('date')) for r in returns}
    benchmark_dates = {str(b.get('date')) for b in benchmark_data}

    missing = sorted(str(r.get('date')) for r in returns if str(r.get('date')) not in benchmark_dates)
    extra = sorted(str(b.get('date')) for b in benchmark_data if str(b.get('date')) not in return_dates)

    missing_ratio = safe_divide(Decimal(len(missing)), Decimal(len(returns)))

    status = QCStatus.PASS
    messages = []
    if missing:
        if missing_ratio > Decimal(str(BENCHMARK_MISSING_THRESHOLD)):
            status = QCStatus.FAIL
            messages.append(
                f"{len(missing)} return dates missing from benchmark data "
                f"({to_float(missing_ratio) * 100:.1f}%)"
            )
        else:
            status = QCStatus.WARN
            messages.append(f"{len(missing)} return dates missing from benchmark data")

    if extra:
        messages.append(f"{len(extra)} extra dates in benchmark data")

    if status == QCStatus.PASS:
        messages.append('Benchmark dates properly aligned with return data')

    alignment_ratio = 0
    if return_dates:
        # Duplicate return dates count once in the denominator
        alignment_ratio = (len(return_dates) - len(set(missing))) / len(return_dates)

    return {
        'status': status,
        'messages': messages,
        'check': 'BENCHMARK_DATES',
        'data': {
            'return_periods': len(returns),
            'benchmark_periods': len(benchmark_data),
            'missing_in_benchmark': missing,
            'extra_in_benchmark': extra,
            'alignment_ratio': alignment_ratio,
        },
    }


def _replay_average_cost(transactions: List[Dict[str, Any]]) -> tuple:
    """Expected (quantity, average_cost) from BUY/SELL rows under average cost."""
    quantity = ZERO
    cost = ZERO

    for transaction in sorted(transactions, key=row_date):
        transaction_type = row_type(transaction)
        trade_quantity = to_decimal(transaction.get('quantity'))
        price = to_decimal(transaction.get('price'))

        if transaction_type in BUY_TYPES:
            quantity += trade_quantity
            cost += trade_quantity * price
        elif transaction_type in SELL_TYPES:
            sold = abs(trade_quantity)
            cost -= cost * safe_divide(sold, quantity)
            quantity -= sold

    return quantity, safe_divide(cost, quantity)


def validate_position_reconciliation(
    positions: List[Dict[str, Any]],
    transactions: List[Dict[str, Any]],
    account_id: str
) -> Dict[str, Any]:
    """
    Reconcile stored positions against a replay of trades.

    Each security's BUY/SELL history is replayed with average-cost
    accounting (sales remove cost in proportion to quantity sold) and
    compared with the security's latest stored position.

    - Quantity off by more than 0.001: HIGH when more than 1 share,
      otherwise MEDIUM
    - Average cost off by more than 0.01 (positions with quantity only):
      HIGH when more than 10, otherwise MEDIUM

    Returns:
        QC check result (HIGH -> FAIL, MEDIUM -> WARN)
    """
    require_sequence('positions', positions)
    require_sequence('transactions', transactions)

    account_positions = [
        p for p in positions
        if p.get('account_id') == account_id and row_date(p) is not None
    ]
    account_trades = [
        t for t in transactions
        if t.get('account_id') == account_id and row_date(t) is not None
        and row_type(t) in BUY_TYPES + SELL_TYPES
        and t.get('security_id') is not None
    ]

    latest_positions: Dict[Any, Dict[str, Any]] = {}
    for position in account_positions:
        security_id = position.get('security_id')
        current = latest_positions.get(security_id)
        if current is None or row_date(position) > row_date(current):
            latest_positions[security_id] = position

    securities_checked = list(latest_positions)
    trades_by_security: Dict[Any, List[Dict[str, Any]]] = {}
    for trade in account_trades:
        security_id = trade.get('security_id')
        trades_by_security.setdefault(security_id, []).append(trade)
        if security_id not in securities_checked:
            securities_checked.append(security_id)

    quantity_tolerance = Decimal(str(DEFAULT_QUANTITY_TOLERANCE))
    issues = []

    for security_id, trades in trades_by_security.items():
        position = latest_positions.get(security_id)
        if position is None:
            continue

        expected_quantity, expected_cost = _replay_average_cost(trades)
        actual_quantity = to_decimal(position.get('quantity'))
        actual_cost = to_decimal(position.get('average_cost'))

        quantity_diff = abs(expected_quantity - actual_quantity)
        if quantity_diff > quantity_tolerance:
            issues.append({
                'security_id': security_id,
                'issue': 'QUANTITY_MISMATCH',
                'expected': to_float(expected_quantity),
                'actual': to_float(actual_quantity),
                'difference': to_float(expected_quantity - actual_quantity),
                'severity': 'HIGH' if quantity_diff > 1 else 'MEDIUM',
            })

        cost_diff = abs(expected_cost - actual_cost)
        if cost_diff > COST_TOLERANCE and actual_quantity != 0:
            issues.append({
                'security_id': security_id,
                'issue': 'COST_BASIS_MISMATCH',
                'expected': to_float(expected_cost),
                'actual': to_float(actual_cost),
                'difference': to_float(expected_cost - actual_cost),
                'severity': 'HIGH' if cost_diff > 10 else 'MEDIUM',
            })

    summary = _severity_summary(issues)

    status = QCStatus.PASS
    messages = []
    if summary['high'] > 0:
        status = QCStatus.FAIL
        messages.append(f"{summary['high']} high-severity position reconciliation issues found")
    elif summary['medium'] > 0:
        status = QCStatus.WARN
        messages.append(f"{summary['medium']} medium-severity position reconciliation issues found")
    else:
        messages.append('Position reconciliation passed')

    return {
        'status': status,
        'messages': messages,
        'check': 'POSITION_RECONCILIATION',
        'data': {
            'account_id': account_id,
            'reconciliation_issues': issues,
            'summary': summary,
            'securities_checked': securities_checked,
        },
    }


def _parse_return(raw: Any) -> Optional[Decimal]:
    """Decimal return value, or None when missing, NaN or non-numeric."""
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, (int, float, np.integer, np.floating)):
        if not np.isfinite(raw):
            return None
        return Decimal(str(raw))

    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    return value if value.is_finite() else None


def _parse_date(raw: Any):
    try:
        return to_date(raw)
    except InvalidInputError:
        return None


def validate_returns(
    returns: List[Dict[str, Any]],
    max_daily_return: Any = MAX_DAILY_RETURN,
    min_daily_return: Any = MIN_DAILY_RETURN
) -> Dict[str, Any]:
    """
    Validate a daily return series.

    - Missing, NaN or non-numeric values: HIGH
    - Returns beyond the bounds: MEDIUM, HIGH beyond +/-100%
    - Dates not strictly increasing: HIGH

    Args:
        returns: Rows with 'date' and 'daily_return'
        max_daily_return: Upper bound (default 0.50)
        min_daily_return: Lower bound (default -0.50)

    Returns:
        QC check result (HIGH -> FAIL, MEDIUM -> WARN)
    """
    require_sequence('returns', returns)

    upper = to_decimal(max_daily_return, default=MAX_DAILY_RETURN)
    lower = to_decimal(min_daily_return, default=MIN_DAILY_RETURN)
    issues = []

    for index, row in enumerate(returns):
        raw_value = row.get('daily_return')
        daily_return = _parse_return(raw_value)

        if daily_return is None:
            issues.append({
                'date': row.get('date'),
                'issue': 'INVALID_RETURN_VALUE',
                'value': None if isinstance(raw_value, float) else raw_value,
                'error': f"Invalid return value: {raw_value!r}",
                'severity': 'HIGH',
            })
        elif daily_return > upper:
            issues.append({
                'date': row.get('date'),
                'issue': 'EXTREME_POSITIVE_RETURN',
                'value': to_float(daily_return),
                'threshold': to_float(upper),
                'severity': 'HIGH' if daily_return > 1 else 'MEDIUM',
            })
        elif daily_return < lower:
            issues.append({
                'date': row.get('date'),
                'issue': 'EXTREME_NEGATIVE_RETURN',
                'value': to_float(daily_return),
                'threshold': to_float(lower),
                'severity': 'HIGH' if daily_return < -1 else 'MEDIUM',
            })

        if index > 0:
            previous_date = _parse_date(returns[index - 1].get('date'))
            current_date = _parse_date(row.get('date'))
            if previous_date is None or current_date is None or current_date <= previous_date:
                issues.append({
                    'date': row.get('date'),
                    'issue': 'DATE_SEQUENCE_ERROR',
                    'previous_date': returns[index - 1].get('date'),
                    'current_date': row.get('date'),
                    'severity': 'HIGH',
                })

    summary = _severity_summary(issues)

    status = QCStatus.PASS
    messages = []
    if summary['high'] > 0:
        status = QCStatus.FAIL
        messages.append(f"{summary['high']} high-severity return validation issues found")
    elif summary['medium'] > 0:
        status = QCStatus.WARN
        messages.append(f"{summary['medium']} medium-severity return validation issues found")
    else:
        messages.append('Return validation passed')

    return {
        'status': status,
        'messages': messages,
        'check': 'RETURN_VALIDATION',
        'data': {
            'issues': issues,
            'summary': summary,
            'return_periods': len(returns),
        },
    }


def run_comprehensive_qc(data: Dict[str, Any], generated_at: Optional[str] = None) -> Dict[str, Any]:
    """
    Run every check whose inputs are present and fold the results.

    Overall status is FAIL if any check fails, else WARN if any warns, else
    PASS. The report carries no wall-clock timestamp; generated_at is echoed
    back when given.

    Args:
        data: Dictionary with any of 'account_id', 'aum_data', 'returns',
            'benchmark_data', 'positions', 'transactions', 'prices',
            'date_range' and 'tolerances' ({'aum': float, 'returns':
            {'max_daily_return', 'min_daily_return'}})
        generated_at: Optional timestamp to stamp on the report

    Returns:
        Dictionary with 'overall_status', 'summary', 'checks' and 'account_id'
    """
    account_id = data.get('account_id')
    aum_data = data.get('aum_data')
    returns = data.get('returns')
    benchmark_data = data.get('benchmark_data')
    positions = data.get('positions')
    transactions = data.get('transactions')
    date_range = data.get('date_range')
    tolerances = data.get('tolerances') or {}

    checks = []

    if aum_data:
        checks.append(check_aum_identity(aum_data, tolerances.get('aum')))

    if account_id and date_range and positions is not None and transactions is not None:
        checks.append(find_missing_prices(account_id, date_range, data))

    if returns is not None and benchmark_data is not None:
        checks.append(validate_benchmark_dates(returns, benchmark_data))

    if positions is not None and transactions is not None and account_id:
        checks.append(validate_position_reconciliation(positions, transactions, account_id))

    if returns is not None:
        checks.append(validate_returns(returns, **(tolerances.get('returns') or {})))

    failed = sum(1 for check in checks if check['status'] == QCStatus.FAIL)
    warnings = sum(1 for check in checks if check['status'] == QCStatus.WARN)

    overall_status = QCStatus.PASS
    if failed > 0:
        overall_status = QCStatus.FAIL
    elif warnings > 0:
        overall_status = QCStatus.WARN

    logger.info(
        f"QC for {account_id or 'unknown account'}: {overall_status.value} "
        f"({len(checks)} checks, {warnings} warnings, {failed} failed)"
    )

    report = {
        'overall_status': overall_status,
        'summary': {
            'total_checks': len(checks),
            'passed': len(checks) - failed - warnings,
            'warnings': warnings,
            'failed': failed,
        },
        'checks': checks,
        'account_id': account_id,
    }
    if generated_at is not None:
        report['generated_at'] = generated_at
    return report
