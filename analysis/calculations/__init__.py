"""
Pure calculation engines for investment reporting.
"""

from analysis.calculations.aum import (
    calculate_aggregate_aum,
    calculate_aum,
    calculate_daily_aum,
    calculate_multiple_aum,
)
from analysis.calculations.decimal_math import (
    ASSET_CLASSES,
    BUSINESS_DAYS_PER_YEAR,
    CALENDAR_DAYS_PER_YEAR,
    DEFAULT_AUM_TOLERANCE,
    DEFAULT_PRICE_TOLERANCE,
    DEFAULT_QUANTITY_TOLERANCE,
    MAX_DAILY_RETURN,
    MIN_DAILY_RETURN,
    MONTHS_PER_YEAR,
    QUARTERS_PER_YEAR,
    TRADING_DAYS_PER_YEAR,
    InvalidInputError,
    annual_to_daily,
    business_day_count,
    business_days,
    daily_to_annual,
    format_currency,
    format_percent,
    is_business_day,
    round_to,
)
from analysis.calculations.fees import (
    accrue_fees,
    calculate_multi_account_fees,
    calculate_performance_fees,
    calculate_tiered_fees,
)
from analysis.calculations.holdings import (
    calculate_concentration_risk,
    calculate_performance_attribution,
    calculate_unrealized_pnl,
    calculate_weights,
    get_holdings,
    group_by_asset_class,
)
from analysis.calculations.lots import (
    Lot,
    calculate_lot_unrealized_pnl,
    calculate_realized_pnl,
    calculate_wash_sales,
    generate_tax_reporting_summary,
    match_sale,
    track_lots,
)
from analysis.calculations.qc import (
    QCStatus,
    check_aum_identity,
    find_missing_prices,
    run_comprehensive_qc,
    validate_benchmark_dates,
    validate_position_reconciliation,
    validate_returns,
)
from analysis.calculations.twr import (
    calculate_daily_returns,
    calculate_performance_statistics,
    calculate_rolling_returns,
    calculate_twr,
    calculate_twr_with_fees,
)
