"""
Report aggregator - composes every calculation engine into one account report.
Pure function over in-memory records; the job layer handles IO.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, Any, Optional, List

from analysis.calculations import (
    accrue_fees,
    calculate_aum,
    calculate_concentration_risk,
    calculate_daily_returns,
    calculate_lot_unrealized_pnl,
    calculate_performance_attribution,
    calculate_performance_fees,
    calculate_performance_statistics,
    calculate_realized_pnl,
    calculate_rolling_returns,
    calculate_tiered_fees,
    calculate_twr,
    calculate_twr_with_fees,
    calculate_unrealized_pnl,
    calculate_wash_sales,
    calculate_weights,
    generate_tax_reporting_summary,
    get_holdings,
    group_by_asset_class,
    run_comprehensive_qc,
    track_lots,
)
from analysis.calculations.decimal_math import (
    business_day_count,
    require_date_range,
    require_identifier,
    row_date,
    to_decimal,
    to_float,
)
from analysis.config import DEFAULT_FEE_SCHEDULE
from analysis.guardrails import validate_calculation_inputs


logger = logging.getLogger(__name__)

REPORT_VERSION = '1.0.0'
ROLLING_WINDOW_DAYS = 30


class ReportAggregatorError(Exception):
    """Raised when report composition fails."""
    pass


def build_account_valuations(positions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Roll security positions up to one account valuation per date.

    Args:
        positions: Position rows (one per account, security and date)

    Returns:
        List of {'account_id', 'date', 'market_value'} rows sorted by
        account and date
    """
    totals: Dict[tuple, Decimal] = {}
    for position in positions:
        position_date = row_date(position)
        if position_date is None:
            continue
        key = (position.get('account_id'), position_date)
        totals[key] = totals.get(key, Decimal(0)) + to_decimal(position.get('market_value'))

    return [
        {'account_id': account_id, 'date': position_date, 'market_value': market_value}
        for (account_id, position_date), market_value in sorted(
            totals.items(), key=lambda item: (str(item[0][0]), item[0][1])
        )
    ]


def compose_account_report(
    account_id: str,
    start_date: date,
    end_date: date,
    data: Dict[str, Any],
    fee_schedule: Optional[Dict[str, Any]] = None,
    lot_method: str = 'FIFO',
    qc_aum_tolerance: float = 0.01,
    generated_at: Optional[str] = None
) -> Dict[str, Any]:
    """
    Compose AUM, performance, holdings, fees, tax lots and QC for one account.

    Args:
        account_id: Account identifier
        start_date: Start of the reporting window
        end_date: End of the reporting window
        data: Dictionary with 'positions', 'transactions', 'prices' and
            'securities'; optionally 'manual_adjustments',
            'performance_data', 'high_water_mark_data' and 'benchmark_data'
        fee_schedule: Account fee schedule (built-in default if None)
        lot_method: Lot selection method for realized P&L
        qc_aum_tolerance: Tolerance for the AUM identity check
        generated_at: Optional timestamp stamped on the report

    Returns:
        Account report dictionary

    Raises:
        ReportAggregatorError: If required inputs are missing
    """
    require_identifier('account_id', account_id)
    start, end = require_date_range(start_date, end_date)

    validation = validate_calculation_inputs(data, ['positions', 'transactions', 'prices', 'securities'])
    if not validation['is_valid']:
        raise ReportAggregatorError(validation['message'])

    schedule = dict(DEFAULT_FEE_SCHEDULE)
    schedule.update(fee_schedule or {})

    positions = list(data['positions'])
    transactions = list(data['transactions'])
    account_transactions = [t for t in transactions if t.get('account_id') == account_id]

    valuations = build_account_valuations(
        [p for p in positions if p.get('account_id') == account_id]
    )
    valuation_data = {'positions': valuations, 'transactions': account_transactions}

    logger.debug(f"Composing report for {account_id} from {start} to {end}")

    aum = calculate_aum(account_id, start, end, valuation_data)
    daily_returns = calculate_daily_returns(account_id, start, end, valuation_data)

    holdings_data = {
        'positions': positions,
        'prices': data['prices'],
        'securities': data['securities'],
    }

    report = {
        'account_id': account_id,
        'period': {
            'start_date': start.isoformat(),
            'end_date': end.isoformat(),
            'calendar_days': (end - start).days + 1,
            'business_days': business_day_count(start, end),
        },
        'aum': aum,
        'performance': _performance_section(account_id, start, end, valuation_data, daily_returns, schedule),
        'holdings': _holdings_section(account_id, start, end, holdings_data),
        'fees': _fees_section(account_id, start, end, valuations, data, schedule, aum),
        'tax_lots': _tax_lot_section(account_transactions, end, holdings_data, lot_method),
    }

    qc_data = {
        'account_id': account_id,
        'aum_data': aum,
        'returns': daily_returns,
        'positions': positions,
        'transactions': account_transactions,
        'prices': data['prices'],
        'date_range': {'start': start, 'end': end},
        'tolerances': {'aum': qc_aum_tolerance},
    }
    if data.get('benchmark_data') is not None:
        qc_data['benchmark_data'] = data['benchmark_data']

    report['quality_control'] = run_comprehensive_qc(qc_data, generated_at=generated_at)

    report['metadata'] = {
        'report_version': REPORT_VERSION,
        'lot_method': lot_method,
        'fee_calculation_method': schedule.get('fee_calculation_method'),
        'record_counts': {
            'positions': len(positions),
            'transactions': len(account_transactions),
            'prices': len(data['prices']),
            'securities': len(data['securities']),
        },
    }
    if generated_at is not None:
        report['metadata']['generated_at'] = generated_at

    return report


def _performance_section(
    account_id: str,
    start: date,
    end: date,
    valuation_data: Dict[str, Any],
    daily_returns: List[Dict[str, Any]],
    schedule: Dict[str, Any]
) -> Dict[str, Any]:
    """TWR, net-of-fee TWR, risk statistics and rolling returns."""
    with_fees = calculate_twr_with_fees(
        account_id, start, end, valuation_data,
        fee_data={'fee_rate': schedule.get('management_fee_rate')}
    )

    return {
        'twr': calculate_twr(daily_returns),
        'net_of_fees': with_fees['net'],
        'fee_impact': with_fees['fee_impact'],
        'statistics': calculate_performance_statistics(daily_returns),
        'rolling_returns': calculate_rolling_returns(daily_returns, ROLLING_WINDOW_DAYS),
        'daily_returns': daily_returns,
    }


def _holdings_section(
    account_id: str,
    start: date,
    end: date,
    holdings_data: Dict[str, Any]
) -> Dict[str, Any]:
    """Holdings at period end with weights, P&L, groups, concentration and attribution."""
    current = calculate_weights(get_holdings(account_id, end, holdings_data))
    previous = calculate_weights(get_holdings(account_id, start, holdings_data))

    asset_classes = [
        {key: value for key, value in group.items() if key != 'holdings'}
        for group in group_by_asset_class(current['holdings'])
    ]

    return {
        'as_of_date': end.isoformat(),
        'positions': current['holdings'],
        'total_market_value': current['total_market_value'],
        'number_of_holdings': current['number_of_holdings'],
        'asset_class_weights': current['asset_class_weights'],
        'asset_classes': asset_classes,
        'unrealized_pnl': calculate_unrealized_pnl(current['holdings']),
        'concentration': calculate_concentration_risk(current['holdings']),
        'attribution': calculate_performance_attribution(current['holdings'], previous['holdings']),
    }


def _fees_section(
    account_id: str,
    start: date,
    end: date,
    valuations: List[Dict[str, Any]],
    data: Dict[str, Any],
    schedule: Dict[str, Any],
    aum: Dict[str, Any]
) -> Dict[str, Any]:
    """Management fee accrual plus tiered and performance fees when configured."""
    management = accrue_fees(account_id, start, end, {
        'positions': valuations,
        'fee_schedule': schedule,
        'manual_adjustments': data.get('manual_adjustments') or [],
    })

    section = {'management': management, 'tiered': None, 'performance': None}

    if schedule.get('tiers'):
        section['tiered'] = calculate_tiered_fees(aum['eop'], schedule['tiers'])

    if data.get('performance_data'):
        section['performance'] = calculate_performance_fees(account_id, start, end, {
            'performance_data': data['performance_data'],
            'high_water_mark_data': data.get('high_water_mark_data') or {},
            'fee_schedule': schedule,
        })

    return section


def _tax_lot_section(
    account_transactions: List[Dict[str, Any]],
    end: date,
    holdings_data: Dict[str, Any],
    lot_method: str
) -> Dict[str, Any]:
    """Realized P&L, wash sales, tax summary and open lots through period end."""
    trades = [t for t in account_transactions if row_date(t) is not None and row_date(t) <= end]

    realized = calculate_realized_pnl(trades, lot_method)
    wash_sales = calculate_wash_sales(realized['transactions'], trades)
    tax_summary = generate_tax_reporting_summary(realized, wash_sales)

    # Latest close per security at period end for open lot valuation
    current_prices = {}
    latest_dates = {}
    for price in holdings_data['prices']:
        price_date = row_date(price)
        if price_date is None or price_date > end:
            continue
        security_id = price.get('security_id')
        if security_id not in latest_dates or price_date > latest_dates[security_id]:
            latest_dates[security_id] = price_date
            current_prices[security_id] = price.get('close')

    open_lots = calculate_lot_unrealized_pnl(track_lots(trades, lot_method), current_prices, end)

    return {
        'method': lot_method,
        'realized': realized,
        'wash_sales': wash_sales,
        'tax_summary': tax_summary,
        'open_lots': open_lots,
        'open_lots_unrealized_pnl': to_float(
            sum((to_decimal(lot['unrealized_pnl']) for lot in open_lots), Decimal(0))
        ),
    }
