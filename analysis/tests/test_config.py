"""
Tests for environment settings and fee schedule loading.
"""

import pytest

from analysis.config import (
    DEFAULT_FEE_SCHEDULE,
    ConfigError,
    get_fee_schedule,
    get_settings,
    load_fee_schedules,
)


class TestGetSettings:
    """Tests for get_settings."""

    def test_defaults(self, monkeypatch):
        for name in ['PORTFOLIO_DB_PATH', 'REPORT_OUTPUT_DIR', 'DEFAULT_LOT_METHOD',
                     'QC_AUM_TOLERANCE', 'FEE_SCHEDULES_PATH', 'LOG_LEVEL']:
            monkeypatch.delenv(name, raising=False)

        settings = get_settings()

        assert settings['db_path'] == './data/portfolio.db'
        assert settings['lot_method'] == 'FIFO'
        assert settings['qc_aum_tolerance'] == 0.01
        assert settings['log_level'] == 'INFO'

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv('PORTFOLIO_DB_PATH', '/tmp/other.db')
        monkeypatch.setenv('DEFAULT_LOT_METHOD', 'HighCost')
        monkeypatch.setenv('QC_AUM_TOLERANCE', '0.5')
        monkeypatch.setenv('LOG_LEVEL', 'debug')

        settings = get_settings()

        assert settings['db_path'] == '/tmp/other.db'
        assert settings['lot_method'] == 'HighCost'
        assert settings['qc_aum_tolerance'] == 0.5
        assert settings['log_level'] == 'DEBUG'

    def test_invalid_lot_method(self, monkeypatch):
        monkeypatch.setenv('DEFAULT_LOT_METHOD', 'RANDOM')

        with pytest.raises(ConfigError, match='DEFAULT_LOT_METHOD'):
            get_settings()

    def test_invalid_tolerance(self, monkeypatch):
        monkeypatch.setenv('DEFAULT_LOT_METHOD', 'FIFO')
        monkeypatch.setenv('QC_AUM_TOLERANCE', 'lots')

        with pytest.raises(ConfigError, match='QC_AUM_TOLERANCE'):
            get_settings()


class TestFeeSchedules:
    """Tests for load_fee_schedules and get_fee_schedule."""

    def test_missing_file_uses_defaults(self, tmp_path):
        schedules = load_fee_schedules(str(tmp_path / 'absent.yml'))

        assert schedules == {'default': DEFAULT_FEE_SCHEDULE}

    def test_merge_order(self, tmp_path):
        config_file = tmp_path / 'fees.yml'
        config_file.write_text(
            "default:\n"
            "  management_fee_rate: 0.0125\n"
            "  fee_calculation_method: ending\n"
            "ACC-001:\n"
            "  management_fee_rate: 0.02\n"
            "  tiers:\n"
            "    - {minimum: 0, rate: 0.02}\n"
            "ACC-002:\n"
        )

        schedules = load_fee_schedules(str(config_file))
        acc1 = get_fee_schedule(schedules, 'ACC-001')
        acc2 = get_fee_schedule(schedules, 'ACC-002')
        other = get_fee_schedule(schedules, 'ACC-404')

        assert acc1['management_fee_rate'] == 0.02
        assert acc1['fee_calculation_method'] == 'ending'
        assert acc1['tiers'] == [{'minimum': 0, 'rate': 0.02}]
        assert acc2['management_fee_rate'] == 0.0125
        assert other['performance_fee_rate'] == 0.20

    def test_malformed_yaml(self, tmp_path):
        config_file = tmp_path / 'fees.yml'
        config_file.write_text("default: [unclosed\n")

        with pytest.raises(ConfigError):
            load_fee_schedules(str(config_file))

    def test_non_mapping_schedule(self, tmp_path):
        config_file = tmp_path / 'fees.yml'
        config_file.write_text("ACC-001: 0.01\n")

        with pytest.raises(ConfigError, match='ACC-001'):
            load_fee_schedules(str(config_file))

    def test_defaults_not_mutated(self):
        schedule = get_fee_schedule({}, 'ACC-001')
        schedule['management_fee_rate'] = 0.5

        assert DEFAULT_FEE_SCHEDULE['management_fee_rate'] == 0.01
