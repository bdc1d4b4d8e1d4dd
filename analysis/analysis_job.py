"""
Orchestrated analysis job - SQLite to account report pipeline.
Queries database, calls pure engines, persists report JSON.
"""

import sqlite3
import json
import logging
import pandas as pd
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Any, Optional, List

from analysis.config import get_fee_schedule
from analysis.guardrails import validate_numeric_outputs
from analysis.report_aggregator import compose_account_report
from storage.loaders import (
    query_positions,
    query_prices,
    query_securities,
    query_transactions,
)


logger = logging.getLogger(__name__)


class AnalysisJobError(Exception):
    """Raised when analysis job fails."""
    pass


def analyze_account(
    conn: sqlite3.Connection,
    account_id: str,
    output_path: Path,
    start_date: date,
    end_date: date,
    fee_schedule: Optional[Dict[str, Any]] = None,
    lot_method: str = 'FIFO',
    qc_aum_tolerance: float = 0.01,
    generated_at: Optional[str] = None
) -> Dict[str, Any]:
    """
    Run the complete report for an account and save it to JSON.

    Args:
        conn: SQLite database connection
        account_id: Account to report on
        output_path: Path to save the report JSON
        start_date: Start of the reporting window
        end_date: End of the reporting window
        fee_schedule: Account fee schedule (built-in default if None)
        lot_method: Lot selection method for realized P&L
        qc_aum_tolerance: Tolerance for the AUM identity check
        generated_at: Optional timestamp stamped on the report

    Returns:
        Dictionary with job status, output path, QC verdict and timing.
        Failures are reported with status 'failed' and an error_message.
    """
    start_time = datetime.now()
    logger.info(f"Analyzing account {account_id} from {start_date} to {end_date}")

    try:
        if start_date > end_date:
            raise AnalysisJobError(f"start_date {start_date} is after end_date {end_date}")

        positions_df = query_positions(conn, account_id, end_date)
        transactions_df = query_transactions(conn, account_id, end_date)

        if positions_df.empty and transactions_df.empty:
            return _failed(
                account_id,
                f'No positions or transactions found for account {account_id}',
                start_time
            )

        security_ids = sorted(
            set(positions_df['security_id'].dropna()) | set(transactions_df['security_id'].dropna())
        )
        prices_df = query_prices(conn, security_ids, end_date=end_date)
        securities_df = query_securities(conn, security_ids)

        data = {
            'positions': _frame_to_records(positions_df),
            'transactions': _frame_to_records(transactions_df),
            'prices': _frame_to_records(prices_df),
            'securities': _frame_to_records(securities_df),
        }

        report = compose_account_report(
            account_id=account_id,
            start_date=start_date,
            end_date=end_date,
            data=data,
            fee_schedule=fee_schedule,
            lot_method=lot_method,
            qc_aum_tolerance=qc_aum_tolerance,
            generated_at=generated_at,
        )

        validate_numeric_outputs(report)

        # Create output directory if needed
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w') as f:
            json.dump(report, f, indent=2, default=str)

        qc_status = report['quality_control']['overall_status']
        duration = (datetime.now() - start_time).total_seconds()
        logger.info(f"Report for {account_id} written to {output_path} (QC {qc_status.value}, {duration:.2f}s)")

        return {
            'account_id': account_id,
            'status': 'completed',
            'output_path': str(output_path),
            'qc_status': qc_status.value,
            'position_rows': len(positions_df),
            'transaction_rows': len(transactions_df),
            'price_rows': len(prices_df),
            'duration_seconds': duration
        }

    except Exception as e:
        logger.error(f"Analysis failed for account {account_id}: {e}")
        return _failed(account_id, str(e), start_time)


def _failed(account_id: str, message: str, start_time: datetime) -> Dict[str, Any]:
    return {
        'account_id': account_id,
        'status': 'failed',
        'error_message': message,
        'output_path': None,
        'qc_status': None,
        'duration_seconds': (datetime.now() - start_time).total_seconds()
    }


def _frame_to_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """
    Convert a query DataFrame to engine records.

    Missing values become None so engines apply their own defaults.
    """
    if df.empty:
        return []
    return df.astype(object).where(pd.notnull(df), None).to_dict('records')


def batch_analyze_accounts(
    conn: sqlite3.Connection,
    account_ids: List[str],
    output_dir: Path,
    start_date: date,
    end_date: date,
    fee_schedules: Optional[Dict[str, Dict[str, Any]]] = None,
    lot_method: str = 'FIFO',
    qc_aum_tolerance: float = 0.01,
    generated_at: Optional[str] = None
) -> Dict[str, Any]:
    """
    Run reports for multiple accounts.

    Args:
        conn: SQLite connection
        account_ids: Accounts to report on
        output_dir: Directory to save JSON files
        start_date: Start of the reporting window
        end_date: End of the reporting window
        fee_schedules: Schedules keyed by account id with a 'default' entry
        lot_method: Lot selection method
        qc_aum_tolerance: Tolerance for the AUM identity check
        generated_at: Optional timestamp stamped on every report

    Returns:
        Summary of batch results
    """
    fee_schedules = fee_schedules or {}
    output_dir.mkdir(parents=True, exist_ok=True)

    results = []
    start_time = datetime.now()

    for account_id in account_ids:
        output_path = output_dir / f'{account_id}_{start_date}_{end_date}.json'

        result = analyze_account(
            conn=conn,
            account_id=account_id,
            output_path=output_path,
            start_date=start_date,
            end_date=end_date,
            fee_schedule=get_fee_schedule(fee_schedules, account_id),
            lot_method=lot_method,
            qc_aum_tolerance=qc_aum_tolerance,
            generated_at=generated_at,
        )

        results.append(result)

    completed = [r for r in results if r['status'] == 'completed']
    failed = [r for r in results if r['status'] == 'failed']
    qc_failures = [r for r in completed if r.get('qc_status') == 'FAIL']

    return {
        'total_accounts': len(account_ids),
        'completed': len(completed),
        'failed': len(failed),
        'qc_failures': len(qc_failures),
        'success_rate': len(completed) / len(account_ids) if account_ids else 0,
        'duration_seconds': (datetime.now() - start_time).total_seconds(),
        'results': results
    }
