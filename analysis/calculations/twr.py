"""
Time-weighted return (TWR) calculation utilities.
Pure functions for flow-neutral daily returns, compounding, rolling windows
and risk statistics.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from analysis.calculations.decimal_math import (
    CALENDAR_DAYS_PER_YEAR,
    CONTRIBUTION_TYPES,
    HUNDRED,
    ONE,
    TRADING_DAYS_PER_YEAR,
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


def calculate_daily_returns(
    account_id: str,
    start_date: date,
    end_date: date,
    data: Dict[str, Any]
) -> List[Dict[str, Any]]:
    """
    Calculate daily returns for an account, excluding external flows.

    Formula: r_t = (EndValue_t - Flows_t) / BeginValue_t - 1

    Begin value is the previous day's end value, seeded from the latest
    position at or before start_date. Days without a position row carry the
    previous value forward. A non-positive begin value yields a 0 return.

    Args:
        account_id: Account identifier
        start_date: First return day
        end_date: Last return day (inclusive)
        data: Dictionary with 'positions' and 'transactions' lists

    Returns:
        List of daily return rows (date, begin_value, end_value, flows,
        adjusted_end_value, daily_return, daily_return_percent)
    """
    require_identifier('account_id', account_id)
    start, end = require_date_range(start_date, end_date)
    positions = require_sequence('positions', data.get('positions'))
    transactions = require_sequence('transactions', data.get('transactions'))

    # Index account rows by day once instead of scanning per day
    value_by_day: Dict[date, Decimal] = {}
    seed_date: Optional[date] = None
    previous_value = ZERO

    for position in positions:
        if position.get('account_id') != account_id:
            continue
        position_date = row_date(position)
        if position_date is None:
            continue
        if start <= position_date <= end and position_date not in value_by_day:
            value_by_day[position_date] = to_decimal(position.get('market_value'))
        if position_date <= start and (seed_date is None or position_date > seed_date):
            seed_date = position_date
            previous_value = to_decimal(position.get('market_value'))

    flows_by_day: Dict[date, Decimal] = {}
    for transaction in transactions:
        if transaction.get('account_id') != account_id:
            continue
        transaction_date = row_date(transaction)
        if transaction_date is None or not (start <= transaction_date <= end):
            continue

        amount = to_decimal(transaction.get('amount'))
        transaction_type = row_type(transaction)
        if transaction_type in CONTRIBUTION_TYPES:
            flows_by_day[transaction_date] = flows_by_day.get(transaction_date, ZERO) + amount
        elif transaction_type in WITHDRAWAL_TYPES:
            flows_by_day[transaction_date] = flows_by_day.get(transaction_date, ZERO) - abs(amount)

    daily_returns = []
    for day in iter_days(start, end):
        current_value = value_by_day.get(day, previous_value)
        day_flows = flows_by_day.get(day, ZERO)
        adjusted_end_value = current_value - day_flows

        daily_return = ZERO
        if previous_value > 0:
            daily_return = adjusted_end_value / previous_value - ONE

        daily_returns.append({
            'date': day.isoformat(),
            'begin_value': to_float(previous_value),
            'end_value': to_float(current_value),
            'flows': to_float(day_flows),
            'adjusted_end_value': to_float(adjusted_end_value),
            'daily_return': to_float(daily_return),
            'daily_return_percent': to_float(daily_return * HUNDRED),
        })

        previous_value = current_value

    return daily_returns


def _empty_twr() -> Dict[str, Any]:
    return {
        'total_return': 0,
        'total_return_percent': 0,
        'annualized_return': 0,
        'annualized_return_percent': 0,
        'periods': 0,
        'start_date': None,
        'end_date': None,
        'compounding_factor': 1,
    }


def calculate_twr(
    daily_returns: List[Dict[str, Any]],
    annualize: bool = True,
    compounding_period: int = CALENDAR_DAYS_PER_YEAR
) -> Dict[str, Any]:
    """
    Chain daily returns into a time-weighted return.

    Formula: TWR = (1 + r1) x (1 + r2) x ... x (1 + rn) - 1
    Annualized: (1 + TWR)^(compounding_period / n) - 1, applied only when
    n > 1.

    Args:
        daily_returns: Rows carrying 'daily_return' (decimal) and 'date'
        annualize: Whether to annualize the result
        compounding_period: Periods per year used for annualization

    Returns:
        Dictionary with total/annualized return (decimal and percent),
        periods, start/end dates and compounding factor
    """
    if not daily_returns:
        return _empty_twr()

    require_sequence('daily_returns', daily_returns)

    cumulative = ONE
    for day_return in daily_returns:
        cumulative *= ONE + to_decimal(day_return.get('daily_return'))

    total_return = cumulative - ONE
    periods = len(daily_returns)

    annualized_return = total_return
    # Fractional powers of a non-positive factor are undefined
    if annualize and periods > 1 and cumulative > 0:
        exponent = Decimal(compounding_period) / Decimal(periods)
        annualized_return = cumulative ** exponent - ONE

    return {
        'total_return': to_float(total_return),
        'total_return_percent': to_float(total_return * HUNDRED),
        'annualized_return': to_float(annualized_return),
        'annualized_return_percent': to_float(annualized_return * HUNDRED),
        'periods': periods,
        'start_date': daily_returns[0].get('date'),
        'end_date': daily_returns[-1].get('date'),
        'compounding_factor': to_float(cumulative),
    }


def calculate_twr_with_fees(
    account_id: str,
    start_date: date,
    end_date: date,
    data: Dict[str, Any],
    fee_data: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Calculate gross and net-of-fee TWR.

    Net returns subtract a flat fee_rate / 365 from every daily return before
    compounding. The drag does not depend on the day's AUM.

    Args:
        account_id: Account identifier
        start_date: Start of the period
        end_date: End of the period
        data: Dictionary with 'positions' and 'transactions'
        fee_data: Optional {'fee_rate': annual rate, default 0.01}

    Returns:
        Dictionary with 'gross', 'net', 'fee_impact' and net 'daily_returns'
    """
    fee_data = fee_data or {}
    fee_rate = to_decimal(fee_data.get('fee_rate'), default='0.01')

    daily_returns = calculate_daily_returns(account_id, start_date, end_date, data)
    gross_twr = calculate_twr(daily_returns)

    daily_fee_rate = fee_rate / CALENDAR_DAYS_PER_YEAR

    net_daily_returns = []
    for day_return in daily_returns:
        gross_return = to_decimal(day_return['daily_return'])
        net_return = gross_return - daily_fee_rate

        row = dict(day_return)
        row.update({
            'gross_daily_return': day_return['daily_return'],
            'net_daily_return': to_float(net_return),
            'daily_fee': to_float(daily_fee_rate),
            'daily_return': to_float(net_return),
        })
        net_daily_returns.append(row)

    net_twr = calculate_twr(net_daily_returns)

    total_difference = (
        to_decimal(gross_twr['total_return']) - to_decimal(net_twr['total_return'])
    )
    annualized_difference = (
        to_decimal(gross_twr['annualized_return']) - to_decimal(net_twr['annualized_return'])
    )

    return {
        'gross': dict(gross_twr, type='gross'),
        'net': dict(net_twr, type='net'),
        'fee_impact': {
            'total_return_difference': to_float(total_difference),
            'annualized_return_difference': to_float(annualized_difference),
            'total_fee_impact_percent': to_float(total_difference * HUNDRED),
            'annualized_fee_rate': to_float(fee_rate),
        },
        'daily_returns': net_daily_returns,
    }


def calculate_rolling_returns(
    daily_returns: List[Dict[str, Any]],
    window_days: int = 30
) -> List[Dict[str, Any]]:
    """
    Calculate TWR over every trailing window of window_days returns.

    Returns:
        List of rolling rows (start_date, end_date, period_days, total_return,
        annualized_return); empty when there are fewer returns than the window
    """
    require_sequence('daily_returns', daily_returns)
    if window_days <= 0:
        raise ValueError("window_days must be positive")

    rolling_returns = []
    if len(daily_returns) < window_days:
        return rolling_returns

    for i in range(window_days - 1, len(daily_returns)):
        window = daily_returns[i - window_days + 1:i + 1]
        twr = calculate_twr(window, annualize=True)

        rolling_returns.append({
            'start_date': window[0].get('date'),
            'end_date': daily_returns[i].get('date'),
            'period_days': window_days,
            'total_return': twr['total_return'],
            'annualized_return': twr['annualized_return'],
        })

    return rolling_returns


def calculate_performance_statistics(daily_returns: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Calculate risk statistics from daily returns.

    - Population standard deviation of daily returns
    - Volatility: sigma x sqrt(252)
    - Sharpe ratio: mean x 252 / volatility (0% risk-free rate)
    - Max drawdown: largest fall from the running peak of compounded value

    Returns:
        Dictionary of statistics; all zero for empty input
    """
    if not daily_returns:
        return {
            'count': 0,
            'mean': 0,
            'mean_annualized': 0,
            'standard_deviation': 0,
            'volatility': 0,
            'sharpe_ratio': 0,
            'max_drawdown': 0,
            'max_drawdown_percent': 0,
        }

    require_sequence('daily_returns', daily_returns)

    returns = [to_decimal(row.get('daily_return')) for row in daily_returns]
    count = len(returns)

    mean = sum(returns, ZERO) / count
    variance = sum(((r - mean) ** 2 for r in returns), ZERO) / count
    standard_deviation = variance.sqrt()
    annualized_volatility = standard_deviation * Decimal(TRADING_DAYS_PER_YEAR).sqrt()

    sharpe_ratio = ZERO
    if standard_deviation != 0:
        sharpe_ratio = safe_divide(mean * TRADING_DAYS_PER_YEAR, annualized_volatility)

    peak = ONE
    cumulative = ONE
    max_drawdown = ZERO
    for r in returns:
        cumulative *= ONE + r
        peak = max(peak, cumulative)
        drawdown = safe_divide(peak - cumulative, peak)
        max_drawdown = max(max_drawdown, drawdown)

    return {
        'count': count,
        'mean': to_float(mean),
        'mean_annualized': to_float(mean * TRADING_DAYS_PER_YEAR),
        'standard_deviation': to_float(standard_deviation),
        'volatility': to_float(annualized_volatility),
        'sharpe_ratio': to_float(sharpe_ratio),
        'max_drawdown': to_float(max_drawdown),
        'max_drawdown_percent': to_float(max_drawdown * HUNDRED),
    }
