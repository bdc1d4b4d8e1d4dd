"""
Tests for quality control checks.
"""

import pytest
from datetime import date

from analysis.calculations.qc import (
    QCStatus,
    check_aum_identity,
    find_missing_prices,
    run_comprehensive_qc,
    validate_benchmark_dates,
    validate_position_reconciliation,
    validate_returns,
)


def _aum(difference=0):
    """AUM payload whose identity is off by the given amount."""
    return {'bop': 100000, 'eop': 110000 + difference, 'net_flows': 5000, 'market_pnl': 5000}


class TestAUMIdentity:
    """Tests for check_aum_identity tolerance tiers."""

    def test_exact_identity_passes(self):
        result = check_aum_identity(_aum())

        assert result['status'] == QCStatus.PASS
        assert result['check'] == 'AUM_IDENTITY'
        assert result['data']['is_within_tolerance'] is True

    def test_within_tolerance(self):
        assert check_aum_identity(_aum(0.005))['status'] == QCStatus.PASS

    def test_warn_band(self):
        """Beyond tolerance but within 1000x warns."""
        result = check_aum_identity(_aum(5))

        assert result['status'] == QCStatus.WARN
        assert 'preferred tolerance' in result['messages'][0]

    def test_fail_beyond_max(self):
        result = check_aum_identity(_aum(11))

        assert result['status'] == QCStatus.FAIL
        assert result['data']['difference'] == pytest.approx(11)

    def test_large_tolerance_fails_on_any_excess(self):
        result = check_aum_identity(_aum(5), tolerance=1)

        assert result['status'] == QCStatus.FAIL

    def test_status_is_string_compatible(self):
        assert check_aum_identity(_aum())['status'] == 'PASS'


class TestMissingPrices:
    """Tests for find_missing_prices."""

    @pytest.fixture
    def data(self):
        return {
            'positions': [
                {'account_id': 'ACC-001', 'security_id': 'SEC-A', 'date': date(2024, 1, 1), 'quantity': 10},
                {'account_id': 'ACC-001', 'security_id': 'SEC-B', 'date': date(2024, 1, 3), 'quantity': 0},
            ],
            'transactions': [
                {'account_id': 'ACC-001', 'security_id': 'SEC-B', 'date': date(2024, 1, 4),
                 'type': 'BUY', 'quantity': 5, 'price': 10},
            ],
            'prices': [
                {'security_id': 'SEC-A', 'date': date(2024, 1, 1), 'close': 100},
                {'security_id': 'SEC-A', 'date': date(2024, 1, 2), 'close': 100},
                {'security_id': 'SEC-A', 'date': date(2024, 1, 3), 'close': 100},
                {'security_id': 'SEC-A', 'date': date(2024, 1, 5), 'close': 100},
            ],
        }

    def test_priorities(self, data):
        result = find_missing_prices('ACC-001', {'start': date(2024, 1, 1), 'end': date(2024, 1, 7)}, data)
        missing = {(m['security_id'], m['date']): m['priority'] for m in result['data']['missing_prices']}

        # Weekend days are not checked; SEC-B has no positive position
        assert missing == {
            ('SEC-A', '2024-01-04'): 'MEDIUM',
            ('SEC-B', '2024-01-04'): 'HIGH',
        }
        assert result['status'] == QCStatus.FAIL
        assert result['data']['summary']['high'] == 1

    def test_medium_only_warns(self, data):
        data['transactions'] = []
        result = find_missing_prices('ACC-001', {'start': date(2024, 1, 1), 'end': date(2024, 1, 5)}, data)

        assert result['status'] == QCStatus.WARN

    def test_all_priced(self, data):
        result = find_missing_prices('ACC-001', {'start': date(2024, 1, 1), 'end': date(2024, 1, 3)}, data)

        assert result['status'] == QCStatus.PASS
        assert result['data']['date_range'] == {'start': '2024-01-01', 'end': '2024-01-03'}


class TestBenchmarkDates:
    """Tests for validate_benchmark_dates."""

    def test_aligned(self):
        returns = [{'date': '2024-01-01'}, {'date': '2024-01-02'}]
        benchmark = [{'date': '2024-01-01'}, {'date': '2024-01-02'}, {'date': '2024-01-03'}]

        result = validate_benchmark_dates(returns, benchmark)

        assert result['status'] == QCStatus.PASS
        assert result['data']['extra_in_benchmark'] == ['2024-01-03']
        assert result['data']['alignment_ratio'] == 1

    def test_few_missing_warn(self):
        returns = [{'date': f'2024-01-{d:02d}'} for d in range(1, 21)]
        benchmark = returns[1:]

        assert validate_benchmark_dates(returns, benchmark)['status'] == QCStatus.WARN

    def test_many_missing_fail(self):
        returns = [{'date': f'2024-01-{d:02d}'} for d in range(1, 11)]
        benchmark = returns[:8]

        result = validate_benchmark_dates(returns, benchmark)

        assert result['status'] == QCStatus.FAIL
        assert result['data']['missing_in_benchmark'] == ['2024-01-09', '2024-01-10']


class TestPositionReconciliation:
    """Tests for validate_position_reconciliation."""

    TRADES = [
        {'account_id': 'ACC-001', 'security_id': 'SEC-A', 'date': date(2024, 1, 2),
         'type': 'BUY', 'quantity': 100, 'price': 10},
        {'account_id': 'ACC-001', 'security_id': 'SEC-A', 'date': date(2024, 1, 3),
         'type': 'BUY', 'quantity': 100, 'price': 20},
        {'account_id': 'ACC-001', 'security_id': 'SEC-A', 'date': date(2024, 1, 4),
         'type': 'SELL', 'quantity': 50, 'price': 25},
    ]

    def _position(self, quantity, average_cost):
        return [
            {'account_id': 'ACC-001', 'security_id': 'SEC-A', 'date': date(2024, 1, 2),
             'quantity': 100, 'average_cost': 10},
            {'account_id': 'ACC-001', 'security_id': 'SEC-A', 'date': date(2024, 1, 4),
             'quantity': quantity, 'average_cost': average_cost},
        ]

    def test_matching_position(self):
        """Average cost survives a partial sale."""
        result = validate_position_reconciliation(self._position(150, 15), self.TRADES, 'ACC-001')

        assert result['status'] == QCStatus.PASS
        assert result['data']['securities_checked'] == ['SEC-A']

    def test_small_quantity_mismatch_warns(self):
        result = validate_position_reconciliation(self._position(150.5, 15), self.TRADES, 'ACC-001')

        issue = result['data']['reconciliation_issues'][0]
        assert issue['issue'] == 'QUANTITY_MISMATCH'
        assert issue['severity'] == 'MEDIUM'
        assert result['status'] == QCStatus.WARN

    def test_large_mismatches_fail(self):
        result = validate_position_reconciliation(self._position(140, 30), self.TRADES, 'ACC-001')
        issues = {i['issue']: i for i in result['data']['reconciliation_issues']}

        assert issues['QUANTITY_MISMATCH']['severity'] == 'HIGH'
        assert issues['QUANTITY_MISMATCH']['difference'] == 10
        assert issues['COST_BASIS_MISMATCH']['severity'] == 'HIGH'
        assert result['status'] == QCStatus.FAIL

    def test_other_account_ignored(self):
        positions = self._position(150, 15)
        for position in positions:
            position['account_id'] = 'ACC-002'

        result = validate_position_reconciliation(positions, self.TRADES, 'ACC-001')

        assert result['status'] == QCStatus.PASS
        assert result['data']['reconciliation_issues'] == []


class TestValidateReturns:
    """Tests for validate_returns."""

    def test_clean_series(self):
        returns = [
            {'date': '2024-01-01', 'daily_return': 0.01},
            {'date': '2024-01-02', 'daily_return': -0.02},
        ]

        assert validate_returns(returns)['status'] == QCStatus.PASS

    def test_extreme_returns(self):
        returns = [
            {'date': '2024-01-01', 'daily_return': 0.6},
            {'date': '2024-01-02', 'daily_return': -0.7},
        ]

        result = validate_returns(returns)

        assert result['status'] == QCStatus.WARN
        assert [i['issue'] for i in result['data']['issues']] == [
            'EXTREME_POSITIVE_RETURN', 'EXTREME_NEGATIVE_RETURN'
        ]

    def test_below_minus_one_is_high(self):
        result = validate_returns([{'date': '2024-01-01', 'daily_return': -1.5}])

        assert result['data']['issues'][0]['severity'] == 'HIGH'
        assert result['status'] == QCStatus.FAIL

    def test_invalid_values(self):
        returns = [
            {'date': '2024-01-01', 'daily_return': float('nan')},
            {'date': '2024-01-02', 'daily_return': 'abc'},
            {'date': '2024-01-03', 'daily_return': None},
        ]

        result = validate_returns(returns)

        assert result['data']['summary']['high'] == 3
        assert all(i['issue'] == 'INVALID_RETURN_VALUE' for i in result['data']['issues'])

    def test_date_sequence(self):
        returns = [
            {'date': '2024-01-02', 'daily_return': 0},
            {'date': '2024-01-02', 'daily_return': 0},
            {'date': 'garbage', 'daily_return': 0},
        ]

        result = validate_returns(returns)

        assert [i['issue'] for i in result['data']['issues']] == ['DATE_SEQUENCE_ERROR'] * 2

    def test_custom_bounds(self):
        result = validate_returns(
            [{'date': '2024-01-01', 'daily_return': 0.06}], max_daily_return=0.05
        )

        assert result['status'] == QCStatus.WARN


class TestComprehensiveQC:
    """Tests for run_comprehensive_qc."""

    def test_runs_available_checks(self):
        report = run_comprehensive_qc({
            'aum_data': _aum(),
            'returns': [{'date': '2024-01-01', 'daily_return': 0.01}],
        })

        assert report['overall_status'] == QCStatus.PASS
        assert report['summary'] == {'total_checks': 2, 'passed': 2, 'warnings': 0, 'failed': 0}
        assert 'generated_at' not in report

    def test_worst_status_wins(self):
        report = run_comprehensive_qc({
            'aum_data': _aum(5),
            'returns': [{'date': '2024-01-01', 'daily_return': -1.5}],
        }, generated_at='2024-02-01T00:00:00')

        assert report['overall_status'] == QCStatus.FAIL
        assert report['summary']['warnings'] == 1
        assert report['summary']['failed'] == 1
        assert report['generated_at'] == '2024-02-01T00:00:00'

    def test_tolerances_passed_through(self):
        report = run_comprehensive_qc({
            'aum_data': _aum(5),
            'returns': [{'date': '2024-01-01', 'daily_return': 0.6}],
            'tolerances': {'aum': 10, 'returns': {'max_daily_return': 0.7}},
        })

        assert report['overall_status'] == QCStatus.PASS

    def test_empty_input(self):
        report = run_comprehensive_qc({})

        assert report['overall_status'] == QCStatus.PASS
        assert report['checks'] == []
