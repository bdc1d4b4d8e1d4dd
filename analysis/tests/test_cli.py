"""
Tests for the analyze_account CLI.
Runs the script in a subprocess against a temporary database.
"""

import pytest
import sqlite3
import subprocess
import sys
import json
from datetime import date, datetime, timedelta
from pathlib import Path

from storage.loaders import (
    init_database,
    upsert_positions,
    upsert_prices,
    upsert_securities,
    upsert_transactions,
)


PROJECT_ROOT = Path(__file__).parent.parent.parent
CLI_SCRIPT = PROJECT_ROOT / 'analysis' / 'analyze_account.py'


@pytest.fixture
def temp_workspace(tmp_path):
    """Create temporary workspace with a seeded portfolio database."""
    db_path = tmp_path / 'portfolio.db'
    conn = sqlite3.connect(str(db_path))
    init_database(conn)

    ingested_at = datetime(2024, 2, 1, 6, 0, 0)

    upsert_securities(conn, [
        {'id': 'SEC-MSFT', 'symbol': 'MSFT', 'name': 'Microsoft Corp.', 'asset_class': 'EQUITY',
         'exchange': 'NASDAQ', 'currency': 'USD', 'ingested_at': ingested_at},
    ])
    upsert_positions(conn, [
        {'account_id': 'ACC-001', 'security_id': 'SEC-MSFT', 'date': day,
         'quantity': 50, 'average_cost': 370, 'market_value': value,
         'source': 'custodian', 'ingested_at': ingested_at}
        for day, value in [(date(2023, 12, 29), 18500), (date(2024, 1, 31), 20000)]
    ])
    upsert_transactions(conn, [
        {'transaction_id': 'T1', 'account_id': 'ACC-001', 'date': date(2023, 12, 29),
         'type': 'BUY', 'security_id': 'SEC-MSFT', 'quantity': 50, 'price': 370,
         'amount': None, 'source': 'custodian', 'ingested_at': ingested_at},
    ])

    prices = []
    day = date(2023, 12, 29)
    while day <= date(2024, 1, 31):
        if day.weekday() < 5:
            prices.append({'security_id': 'SEC-MSFT', 'date': day, 'open': None, 'high': None,
                           'low': None, 'close': 400, 'volume': None,
                           'source': 'vendor', 'ingested_at': ingested_at})
        day += timedelta(days=1)
    upsert_prices(conn, prices)
    conn.close()

    yield tmp_path


def _run(args, cwd=PROJECT_ROOT):
    return subprocess.run(
        [sys.executable, str(CLI_SCRIPT)] + args,
        capture_output=True, text=True, cwd=str(cwd)
    )


class TestAnalyzeAccountCLI:
    """Tests for analyze_account CLI command."""

    def test_cli_success(self, temp_workspace):
        """Test successful CLI execution."""
        output_path = temp_workspace / 'ACC-001.json'

        result = _run([
            'ACC-001',
            '--start', '2024-01-01',
            '--end', '2024-01-31',
            '--db-path', str(temp_workspace / 'portfolio.db'),
            '--output', str(output_path),
            '--fee-schedules', str(temp_workspace / 'no_fees.yml'),
        ])

        assert result.returncode == 0, f"CLI failed: {result.stderr}"
        assert output_path.exists()
        assert 'Quick Summary for ACC-001' in result.stdout

        with open(output_path, 'r') as f:
            report = json.load(f)

        assert report['account_id'] == 'ACC-001'
        assert report['aum']['eop'] == 20000
        assert report['quality_control']['overall_status'] == 'PASS'

    def test_cli_quiet_with_lot_method(self, temp_workspace):
        output_path = temp_workspace / 'quiet.json'

        result = _run([
            'ACC-001',
            '--start', '2024-01-01',
            '--end', '2024-01-31',
            '--db-path', str(temp_workspace / 'portfolio.db'),
            '--output', str(output_path),
            '--lot-method', 'LowCost',
            '--quiet',
        ])

        assert result.returncode == 0, f"CLI failed: {result.stderr}"
        assert 'report complete' in result.stdout
        assert 'Quick Summary' not in result.stdout
        assert json.loads(output_path.read_text())['tax_lots']['method'] == 'LowCost'

    def test_cli_unknown_account(self, temp_workspace):
        """Test CLI with an account that has no data."""
        output_path = temp_workspace / 'ACC-404.json'

        result = _run([
            'ACC-404',
            '--start', '2024-01-01',
            '--end', '2024-01-31',
            '--db-path', str(temp_workspace / 'portfolio.db'),
            '--output', str(output_path),
        ])

        assert result.returncode != 0
        assert 'No positions or transactions' in result.stderr
        assert not output_path.exists()

    def test_cli_missing_database(self, temp_workspace):
        result = _run([
            'ACC-001',
            '--start', '2024-01-01',
            '--end', '2024-01-31',
            '--db-path', str(temp_workspace / 'absent.db'),
        ])

        assert result.returncode == 1
        assert 'Database not found' in result.stderr

    def test_cli_rejects_bad_arguments(self, temp_workspace):
        bad_method = _run(['ACC-001', '--start', '2024-01-01', '--end', '2024-01-31',
                           '--lot-method', 'RANDOM'])
        bad_date = _run(['ACC-001', '--start', '2024-13-01', '--end', '2024-01-31'])
        inverted = _run(['ACC-001', '--start', '2024-02-01', '--end', '2024-01-31',
                         '--db-path', str(temp_workspace / 'portfolio.db')])

        assert bad_method.returncode == 2
        assert bad_date.returncode == 2
        assert inverted.returncode == 1
        assert 'after' in inverted.stderr

    def test_cli_default_output_path(self, temp_workspace):
        """Without --output the report lands under the default report directory."""
        result = _run([
            'ACC-001',
            '--start', '2024-01-01',
            '--end', '2024-01-31',
            '--db-path', str(temp_workspace / 'portfolio.db'),
        ], cwd=temp_workspace)

        assert result.returncode == 0, f"CLI failed: {result.stderr}"
        default_output = (
            temp_workspace / 'data' / 'processed' / 'reports' / 'ACC-001_2024-01-01_2024-01-31.json'
        )
        assert default_output.exists()
