"""
Tests for fee calculation utilities.
Management accrual, high-water-mark performance fees and tiered schedules.
"""

import pytest
from datetime import date

from analysis.calculations.decimal_math import InvalidInputError
from analysis.calculations.fees import (
    accrue_fees,
    calculate_multi_account_fees,
    calculate_performance_fees,
    calculate_tiered_fees,
    is_crystallization_date,
)


def _fee_data(method='ending', adjustments=None):
    return {
        'positions': [
            {'account_id': 'ACC-001', 'date': date(2024, 1, 1), 'market_value': 365000},
            {'account_id': 'ACC-001', 'date': date(2024, 1, 3), 'market_value': 730000},
            {'account_id': 'ACC-002', 'date': date(2024, 1, 1), 'market_value': 730000},
        ],
        'fee_schedule': {'management_fee_rate': 0.01, 'fee_calculation_method': method},
        'manual_adjustments': adjustments or [],
    }


class TestAccrueFees:
    """Tests for accrue_fees."""

    def test_ending_method(self):
        result = accrue_fees('ACC-001', date(2024, 1, 1), date(2024, 1, 3), _fee_data('ending'))

        fees = [day['management_fee'] for day in result['daily_fees']]
        assert fees == pytest.approx([10, 10, 20])
        assert result['total_fees'] == pytest.approx(40)
        assert result['total_days'] == 3
        assert result['effective_annual_rate'] == pytest.approx(0.01)
        assert result['nominal_annual_rate'] == pytest.approx(0.01)
        assert result['fee_calculation_method'] == 'ending'

    def test_beginning_method(self):
        """Start-of-day value ignores the same-day revaluation."""
        result = accrue_fees('ACC-001', date(2024, 1, 1), date(2024, 1, 3), _fee_data('beginning'))

        assert [d['aum_for_fee'] for d in result['daily_fees']] == [365000, 365000, 365000]
        assert result['total_fees'] == pytest.approx(30)

    def test_average_method(self):
        result = accrue_fees('ACC-001', date(2024, 1, 1), date(2024, 1, 3), _fee_data('average'))

        assert [d['aum_for_fee'] for d in result['daily_fees']] == [365000, 365000, 547500]
        assert result['total_fees'] == pytest.approx(35)

    def test_manual_adjustments(self):
        """Only the first adjustment for a day is applied."""
        adjustments = [
            {'account_id': 'ACC-001', 'date': date(2024, 1, 2), 'amount': 5},
            {'account_id': 'ACC-001', 'date': date(2024, 1, 2), 'amount': 100},
            {'account_id': 'ACC-002', 'date': date(2024, 1, 2), 'amount': 7},
        ]
        result = accrue_fees(
            'ACC-001', date(2024, 1, 1), date(2024, 1, 3), _fee_data('ending', adjustments)
        )

        assert result['total_manual_adjustments'] == 5
        assert result['total_fees'] == pytest.approx(45)
        assert result['daily_fees'][1]['total_fee'] == pytest.approx(15)
        assert result['daily_fees'][-1]['cumulative_fee'] == pytest.approx(45)

    def test_no_positions(self):
        result = accrue_fees('ACC-009', date(2024, 1, 1), date(2024, 1, 3), _fee_data())

        assert result['total_fees'] == 0
        assert result['average_aum'] == 0
        assert result['effective_annual_rate'] == 0

    def test_default_rate(self):
        data = _fee_data()
        data['fee_schedule'] = {}
        result = accrue_fees('ACC-001', date(2024, 1, 1), date(2024, 1, 1), data)

        assert result['nominal_annual_rate'] == pytest.approx(0.01)
        assert result['fee_calculation_method'] == 'average'

    def test_invalid_range(self):
        with pytest.raises(InvalidInputError):
            accrue_fees('ACC-001', date(2024, 1, 3), date(2024, 1, 1), _fee_data())

    def test_unknown_method_rejected(self):
        with pytest.raises(InvalidInputError, match='fee_calculation_method'):
            accrue_fees('ACC-001', date(2024, 1, 1), date(2024, 1, 3), _fee_data('begining'))


class TestPerformanceFees:
    """Tests for calculate_performance_fees."""

    def _data(self, end_value, use_high_water_mark=True):
        return {
            'performance_data': [{
                'account_id': 'ACC-001',
                'start_date': date(2024, 1, 1),
                'end_date': date(2024, 12, 31),
                'start_value': 1000000,
                'end_value': end_value,
                'net_flows': 50000,
            }],
            'high_water_mark_data': {'ACC-001': 1100000},
            'fee_schedule': {
                'performance_fee_rate': 0.20,
                'use_high_water_mark': use_high_water_mark,
                'crystallization_frequency': 'annual',
            },
        }

    def test_fee_above_high_water_mark(self):
        result = calculate_performance_fees(
            'ACC-001', date(2024, 1, 1), date(2024, 12, 31), self._data(1200000)
        )

        assert result['outperformance'] == 50000
        assert result['performance_fee'] == pytest.approx(10000)
        assert result['new_high_water_mark'] == 1200000
        assert result['crystallized'] is True

    def test_no_fee_below_high_water_mark(self):
        result = calculate_performance_fees(
            'ACC-001', date(2024, 1, 1), date(2024, 12, 31), self._data(1050000)
        )

        assert result['performance_fee'] == 0
        assert result['outperformance'] < 0
        assert result['new_high_water_mark'] == 1100000

    def test_without_high_water_mark(self):
        result = calculate_performance_fees(
            'ACC-001', date(2024, 1, 1), date(2024, 12, 31), self._data(1200000, False)
        )

        assert result['outperformance'] == 150000
        assert result['performance_fee'] == pytest.approx(30000)
        assert result['new_high_water_mark'] == 1200000

    def test_not_crystallized_mid_year(self):
        result = calculate_performance_fees(
            'ACC-001', date(2024, 3, 1), date(2024, 6, 30), self._data(1200000)
        )

        assert result['performance_fee'] == pytest.approx(10000)
        assert result['crystallized'] is False

    def test_unknown_frequency_rejected(self):
        data = self._data(1200000)
        data['fee_schedule']['crystallization_frequency'] = 'weekly'

        with pytest.raises(InvalidInputError, match='crystallization_frequency'):
            calculate_performance_fees('ACC-001', date(2024, 1, 1), date(2024, 12, 31), data)

    def test_no_covering_record(self):
        result = calculate_performance_fees(
            'ACC-002', date(2024, 1, 1), date(2024, 12, 31), self._data(1200000)
        )

        assert result['performance_fee'] == 0
        assert result['start_value'] == 0
        assert result['end_value'] == 0
        assert result['crystallized'] is False


class TestTieredFees:
    """Tests for calculate_tiered_fees."""

    TIERS = [
        {'minimum': 1000000, 'rate': 0.01},
        {'minimum': 0, 'rate': 0.015},
    ]

    def test_marginal_brackets(self):
        """2.5M over 0-1M at 1.5% and 1M+ at 1.0%."""
        result = calculate_tiered_fees(2500000, self.TIERS)

        assert result['total_fee'] == pytest.approx(30000)
        assert result['effective_rate'] == pytest.approx(0.012)
        assert result['effective_rate_percent'] == pytest.approx(1.2)
        assert [t['fee'] for t in result['tiers']] == pytest.approx([15000, 15000])
        assert result['tiers'][0]['maximum'] == 1000000
        assert result['tiers'][1]['maximum'] is None

    def test_within_first_tier(self):
        result = calculate_tiered_fees(500000, self.TIERS)

        assert result['total_fee'] == pytest.approx(7500)
        assert len(result['tiers']) == 1

    def test_three_tiers(self):
        tiers = self.TIERS + [{'minimum': 5000000, 'rate': 0.0075}]
        result = calculate_tiered_fees(6000000, tiers)

        assert result['total_fee'] == pytest.approx(15000 + 40000 + 7500)

    def test_no_tiers(self):
        result = calculate_tiered_fees(1000000)

        assert result['total_fee'] == 0
        assert result['tiers'] == []


class TestCrystallizationAndMultiAccount:
    """Tests for crystallization dates and multi-account summaries."""

    def test_crystallization_dates(self):
        assert is_crystallization_date(date(2024, 12, 31), 'annual')
        assert not is_crystallization_date(date(2024, 6, 30), 'annual')
        assert is_crystallization_date(date(2024, 6, 30), 'quarterly')
        assert is_crystallization_date(date(2024, 2, 29), 'monthly')
        assert not is_crystallization_date(date(2024, 2, 28), 'monthly')
        assert not is_crystallization_date(date(2024, 12, 31), 'weekly')

    def test_multi_account_summary(self):
        result = calculate_multi_account_fees(
            ['ACC-001', 'ACC-002'], date(2024, 1, 1), date(2024, 1, 3), _fee_data('ending')
        )

        summary = result['summary']
        assert len(result['account_fees']) == 2
        assert summary['total_fees'] == pytest.approx(40 + 60)
        assert summary['number_of_accounts'] == 2
        assert summary['weighted_average_rate'] == pytest.approx(0.01)
