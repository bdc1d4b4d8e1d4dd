"""
Runtime configuration - environment settings and per-account fee schedules.
"""

import os
import logging
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

LOT_METHODS = ('FIFO', 'LIFO', 'HighCost', 'LowCost')

DEFAULT_FEE_SCHEDULE = {
    'management_fee_rate': 0.01,
    'fee_calculation_method': 'average',
    'performance_fee_rate': 0.20,
    'use_high_water_mark': True,
    'crystallization_frequency': 'annual',
    'tiers': [],
}


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or is invalid."""
    pass


def get_settings() -> Dict[str, Any]:
    """
    Read job settings from the environment.

    Returns:
        Dictionary with db_path, output_dir, lot_method, qc_aum_tolerance,
        fee_schedules_path and log_level

    Raises:
        ConfigError: If a value is malformed
    """
    lot_method = os.getenv('DEFAULT_LOT_METHOD', 'FIFO')
    if lot_method not in LOT_METHODS:
        raise ConfigError(f"DEFAULT_LOT_METHOD must be one of {LOT_METHODS}, got {lot_method}")

    try:
        qc_aum_tolerance = float(os.getenv('QC_AUM_TOLERANCE', '0.01'))
    except ValueError as e:
        raise ConfigError(f"QC_AUM_TOLERANCE must be a number: {e}")

    return {
        'db_path': os.getenv('PORTFOLIO_DB_PATH', './data/portfolio.db'),
        'output_dir': os.getenv('REPORT_OUTPUT_DIR', './data/processed/reports'),
        'lot_method': lot_method,
        'qc_aum_tolerance': qc_aum_tolerance,
        'fee_schedules_path': os.getenv('FEE_SCHEDULES_PATH', './config/fee_schedules.yml'),
        'log_level': os.getenv('LOG_LEVEL', 'INFO').upper(),
    }


def load_fee_schedules(config_path: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
    """
    Load per-account fee schedules from YAML.

    The file maps account ids to schedule overrides, with a 'default' entry
    applied to every account. A missing file yields the built-in default.

    Args:
        config_path: Path to the schedules file (FEE_SCHEDULES_PATH if None)

    Returns:
        Dictionary of account id (or 'default') to schedule

    Raises:
        ConfigError: If the file exists but cannot be parsed
    """
    if config_path is None:
        config_path = os.getenv('FEE_SCHEDULES_PATH', './config/fee_schedules.yml')

    config_file = Path(config_path)
    if not config_file.exists():
        logger.info(f"Fee schedule file not found at {config_path}, using defaults")
        return {'default': dict(DEFAULT_FEE_SCHEDULE)}

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load fee schedules: {e}")

    if not isinstance(config, dict):
        raise ConfigError("Fee schedule config must be a mapping of account ids to schedules")

    schedules = {}
    for account_id, schedule in config.items():
        if schedule is None:
            schedule = {}
        if not isinstance(schedule, dict):
            raise ConfigError(f"Fee schedule for {account_id} must be a mapping")
        schedules[str(account_id)] = schedule

    schedules.setdefault('default', {})
    return schedules


def get_fee_schedule(schedules: Dict[str, Dict[str, Any]], account_id: str) -> Dict[str, Any]:
    """Resolve an account's schedule: built-in defaults < 'default' entry < account entry."""
    schedule = dict(DEFAULT_FEE_SCHEDULE)
    schedule.update(schedules.get('default', {}))
    schedule.update(schedules.get(account_id, {}))
    return schedule
