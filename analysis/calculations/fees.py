"""
Fee calculation utilities.
Pure functions for daily management fee accrual, high-water-mark
performance fees and tiered (marginal bracket) fee schedules.
"""

import calendar
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from analysis.calculations.decimal_math import (
    CALENDAR_DAYS_PER_YEAR,
    HUNDRED,
    ZERO,
    InvalidInputError,
    iter_days,
    require_date_range,
    require_identifier,
    require_sequence,
    row_date,
    safe_divide,
    to_date,
    to_decimal,
    to_float,
)


DEFAULT_MANAGEMENT_FEE_RATE = 0.01
DEFAULT_PERFORMANCE_FEE_RATE = 0.20
FEE_CALCULATION_METHODS = ('average', 'beginning', 'ending')
CRYSTALLIZATION_FREQUENCIES = ('annual', 'quarterly', 'monthly')

QUARTER_ENDS = ((3, 31), (6, 30), (9, 30), (12, 31))


def is_crystallization_date(day: date, frequency: str) -> bool:
    """
    Check whether a date closes a crystallization period.

    Args:
        day: Date to check
        frequency: 'annual' (Dec 31), 'quarterly' (quarter ends) or
            'monthly' (last day of month)

    Returns:
        True on a period end; False for unknown frequencies
    """
    if frequency == 'annual':
        return day.month == 12 and day.day == 31
    if frequency == 'quarterly':
        return (day.month, day.day) in QUARTER_ENDS
    if frequency == 'monthly':
        return day.day == calendar.monthrange(day.year, day.month)[1]
    return False


def _account_positions_by_date(
    positions: List[Dict[str, Any]],
    account_id: str
) -> List[tuple]:
    """(date, market_value) pairs for an account, sorted by date, first row per date kept."""
    seen = {}
    for position in positions:
        if position.get('account_id') != account_id:
            continue
        position_date = row_date(position)
        if position_date is None or position_date in seen:
            continue
        seen[position_date] = to_decimal(position.get('market_value'))
    return sorted(seen.items())


def _value_on_or_before(series: List[tuple], day: date, strict: bool = False) -> Optional[Decimal]:
    value = None
    for position_date, market_value in series:
        if position_date > day or (strict and position_date == day):
            break
        value = market_value
    return value


def _aum_for_fee(series: List[tuple], day: date, method: str) -> Decimal:
    latest = _value_on_or_before(series, day)

    if method == 'beginning':
        start_value = _value_on_or_before(series, day, strict=True)
        if start_value is None:
            start_value = latest
        return start_value if start_value is not None else ZERO

    if method == 'ending':
        return latest if latest is not None else ZERO

    start_value = _value_on_or_before(series, day, strict=True)
    if start_value is None:
        start_value = latest
    start_value = start_value if start_value is not None else ZERO

    end_value = start_value
    for position_date, market_value in series:
        if position_date == day:
            end_value = market_value
            break

    return (start_value + end_value) / 2


def accrue_fees(
    account_id: str,
    start_date: date,
    end_date: date,
    data: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Accrue daily management fees for an account.

    Daily fee = aum_for_fee x management_fee_rate / 365 + manual adjustment

    The AUM basis depends on fee_calculation_method:
    - 'average': mean of start-of-day and end-of-day value
    - 'beginning': start-of-day value (latest position before the day)
    - 'ending': latest position at or before the day

    Args:
        account_id: Account identifier
        start_date: First accrual day
        end_date: Last accrual day (inclusive)
        data: Dictionary with 'positions', 'fee_schedule' and
            'manual_adjustments'

    Returns:
        Dictionary with totals, average AUM, effective/nominal annual rates
        and per-day 'daily_fees' rows

    Raises:
        InvalidInputError: If the call shape or fee_calculation_method is invalid
    """
    require_identifier('account_id', account_id)
    start, end = require_date_range(start_date, end_date)
    positions = require_sequence('positions', data.get('positions'))
    adjustments = require_sequence('manual_adjustments', data.get('manual_adjustments'))
    fee_schedule = data.get('fee_schedule') or {}

    management_fee_rate = to_decimal(
        fee_schedule.get('management_fee_rate'), default=DEFAULT_MANAGEMENT_FEE_RATE
    )
    method = fee_schedule.get('fee_calculation_method') or 'average'
    if method not in FEE_CALCULATION_METHODS:
        raise InvalidInputError(
            f"fee_calculation_method must be one of {FEE_CALCULATION_METHODS}, got {method!r}"
        )
    daily_rate = management_fee_rate / CALENDAR_DAYS_PER_YEAR

    series = _account_positions_by_date(positions, account_id)

    adjustments_by_day: Dict[date, Decimal] = {}
    for adjustment in adjustments:
        if adjustment.get('account_id') != account_id:
            continue
        adjustment_date = row_date(adjustment)
        # First adjustment per day applies
        if adjustment_date is not None and adjustment_date not in adjustments_by_day:
            adjustments_by_day[adjustment_date] = to_decimal(adjustment.get('amount'))

    daily_fees = []
    cumulative = ZERO
    total_management = ZERO
    total_adjustments = ZERO
    total_aum = ZERO

    for day in iter_days(start, end):
        aum_for_fee = _aum_for_fee(series, day, method)
        management_fee = aum_for_fee * daily_rate
        manual_adjustment = adjustments_by_day.get(day, ZERO)
        total_fee = management_fee + manual_adjustment
        cumulative += total_fee

        total_management += management_fee
        total_adjustments += manual_adjustment
        total_aum += aum_for_fee

        daily_fees.append({
            'date': day.isoformat(),
            'account_id': account_id,
            'aum_for_fee': to_float(aum_for_fee),
            'management_fee_rate': to_float(daily_rate),
            'management_fee': to_float(management_fee),
            'manual_adjustment': to_float(manual_adjustment),
            'total_fee': to_float(total_fee),
            'cumulative_fee': to_float(cumulative),
        })

    total_days = len(daily_fees)
    total_fees = total_management + total_adjustments
    average_aum = safe_divide(total_aum, Decimal(total_days))

    effective_annual_rate = ZERO
    if average_aum > 0:
        effective_annual_rate = (
            total_fees / average_aum * Decimal(CALENDAR_DAYS_PER_YEAR) / Decimal(total_days)
        )

    return {
        'account_id': account_id,
        'start_date': start.isoformat(),
        'end_date': end.isoformat(),
        'total_days': total_days,
        'total_management_fees': to_float(total_management),
        'total_manual_adjustments': to_float(total_adjustments),
        'total_fees': to_float(total_fees),
        'average_aum': to_float(average_aum),
        'effective_annual_rate': to_float(effective_annual_rate),
        'nominal_annual_rate': to_float(management_fee_rate),
        'fee_calculation_method': method,
        'daily_fees': daily_fees,
    }


def calculate_performance_fees(
    account_id: str,
    start_date: date,
    end_date: date,
    data: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Calculate a performance fee against a high-water mark.

    outperformance = end_value - max(start_value, hwm) - net_flows
    fee = max(outperformance, 0) x performance_fee_rate

    With use_high_water_mark disabled the start value alone is the hurdle and
    the new mark is simply the end value.

    Args:
        account_id: Account identifier
        start_date: Start of the fee period
        end_date: End of the fee period
        data: Dictionary with 'performance_data' (records with account_id,
            start_date, end_date, start_value, end_value, net_flows),
            'high_water_mark_data' ({account_id: mark}) and 'fee_schedule'

    Returns:
        Dictionary with the fee, old/new high-water mark and crystallization
        flag; a zero-fee result when no performance record covers the period

    Raises:
        InvalidInputError: If crystallization_frequency is unknown
    """
    require_identifier('account_id', account_id)
    start, end = require_date_range(start_date, end_date)
    performance_data = require_sequence('performance_data', data.get('performance_data'))
    high_water_marks = data.get('high_water_mark_data') or {}
    fee_schedule = data.get('fee_schedule') or {}

    performance_fee_rate = to_decimal(
        fee_schedule.get('performance_fee_rate'), default=DEFAULT_PERFORMANCE_FEE_RATE
    )
    use_high_water_mark = fee_schedule.get('use_high_water_mark', True)
    frequency = fee_schedule.get('crystallization_frequency') or 'annual'
    if frequency not in CRYSTALLIZATION_FREQUENCIES:
        raise InvalidInputError(
            f"crystallization_frequency must be one of {CRYSTALLIZATION_FREQUENCIES}, got {frequency!r}"
        )

    current_hwm = to_decimal(high_water_marks.get(account_id))

    period = None
    for record in performance_data:
        if record.get('account_id') != account_id:
            continue
        record_start = to_date(record.get('start_date'))
        record_end = to_date(record.get('end_date'))
        if record_start is None or record_end is None:
            continue
        if record_start <= start and record_end >= end:
            period = record
            break

    result = {
        'account_id': account_id,
        'start_date': start.isoformat(),
        'end_date': end.isoformat(),
        'performance_fee_rate': to_float(performance_fee_rate),
        'use_high_water_mark': bool(use_high_water_mark),
        'high_water_mark': to_float(current_hwm),
    }

    if period is None:
        result.update({
            'start_value': 0,
            'end_value': 0,
            'net_flows': 0,
            'new_high_water_mark': to_float(current_hwm),
            'outperformance': 0,
            'performance_fee': 0,
            'crystallized': False,
        })
        return result

    start_value = to_decimal(period.get('start_value'))
    end_value = to_decimal(period.get('end_value'))
    net_flows = to_decimal(period.get('net_flows'))

    hurdle = max(start_value, current_hwm) if use_high_water_mark else start_value
    outperformance = end_value - hurdle - net_flows

    performance_fee = ZERO
    if outperformance > 0:
        performance_fee = outperformance * performance_fee_rate

    new_hwm = max(current_hwm, end_value) if use_high_water_mark else end_value

    result.update({
        'start_value': to_float(start_value),
        'end_value': to_float(end_value),
        'net_flows': to_float(net_flows),
        'new_high_water_mark': to_float(new_hwm),
        'outperformance': to_float(outperformance),
        'performance_fee': to_float(performance_fee),
        'crystallized': is_crystallization_date(end, frequency),
    })
    return result


def calculate_tiered_fees(aum: Any, tiers: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """
    Calculate a fee on marginal AUM brackets.

    Each tier charges its rate on the slice of AUM between its minimum and the
    next tier's minimum. Tiers are sorted by minimum first.

    Example:
        tiers = [{'minimum': 0, 'rate': 0.015},
                 {'minimum': 1000000, 'rate': 0.01}]
        aum 2,500,000 -> 15,000 + 15,000 = 30,000 (1.2% effective)

    Args:
        aum: Assets under management
        tiers: List of {'minimum', 'rate'} dictionaries

    Returns:
        Dictionary with aum, total_fee, effective_rate(_percent) and the
        per-tier breakdown
    """
    tiers = require_sequence('tiers', tiers)
    aum_value = to_decimal(aum)

    if not tiers:
        return {
            'aum': to_float(aum_value),
            'total_fee': 0,
            'effective_rate': 0,
            'effective_rate_percent': 0,
            'tiers': [],
        }

    sorted_tiers = sorted(tiers, key=lambda tier: to_decimal(tier.get('minimum')))

    total_fee = ZERO
    tier_details = []

    for i, tier in enumerate(sorted_tiers):
        tier_min = to_decimal(tier.get('minimum'))
        tier_rate = to_decimal(tier.get('rate'))
        tier_max = None
        if i + 1 < len(sorted_tiers):
            tier_max = to_decimal(sorted_tiers[i + 1].get('minimum'))

        if aum_value < tier_min:
            break

        if tier_max is not None and aum_value > tier_max:
            applicable_aum = tier_max - tier_min
        else:
            applicable_aum = aum_value - tier_min

        tier_fee = applicable_aum * tier_rate
        total_fee += tier_fee

        tier_details.append({
            'tier_number': i + 1,
            'minimum': to_float(tier_min),
            'maximum': to_float(tier_max) if tier_max is not None else None,
            'rate': to_float(tier_rate),
            'rate_percent': to_float(tier_rate * HUNDRED),
            'applicable_aum': to_float(applicable_aum),
            'fee': to_float(tier_fee),
        })

        if tier_max is None or aum_value <= tier_max:
            break

    effective_rate = safe_divide(total_fee, aum_value)

    return {
        'aum': to_float(aum_value),
        'total_fee': to_float(total_fee),
        'effective_rate': to_float(effective_rate),
        'effective_rate_percent': to_float(effective_rate * HUNDRED),
        'tiers': tier_details,
    }


def calculate_multi_account_fees(
    account_ids: List[str],
    start_date: date,
    end_date: date,
    data: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Accrue fees for several accounts and summarize them.

    total_aum is the sum of each account's average AUM;
    weighted_average_rate = total_fees / total_aum x 365 / days.
    """
    require_sequence('account_ids', account_ids)
    start, end = require_date_range(start_date, end_date)

    account_fees = [
        accrue_fees(account_id, start, end, data)
        for account_id in account_ids
    ]

    total_management = sum(
        (to_decimal(fees['total_management_fees']) for fees in account_fees), ZERO
    )
    total_adjustments = sum(
        (to_decimal(fees['total_manual_adjustments']) for fees in account_fees), ZERO
    )
    total_fees = sum((to_decimal(fees['total_fees']) for fees in account_fees), ZERO)
    total_aum = sum((to_decimal(fees['average_aum']) for fees in account_fees), ZERO)

    weighted_average_rate = ZERO
    if total_aum != 0:
        total_days = account_fees[0]['total_days'] or 1
        weighted_average_rate = (
            total_fees / total_aum * Decimal(CALENDAR_DAYS_PER_YEAR) / Decimal(total_days)
        )

    return {
        'account_fees': account_fees,
        'summary': {
            'total_management_fees': to_float(total_management),
            'total_manual_adjustments': to_float(total_adjustments),
            'total_fees': to_float(total_fees),
            'total_aum': to_float(total_aum),
            'weighted_average_rate': to_float(weighted_average_rate),
            'number_of_accounts': len(account_ids),
        },
        'start_date': start.isoformat(),
        'end_date': end.isoformat(),
    }
