"""
Guardrails for the calculation engines - call-shape validation and
report sanity checks run before results are written.
"""

import numpy as np
from typing import Dict, Any, List


class DataQualityError(Exception):
    """Raised when a report carries values that must not be published."""
    pass


def validate_calculation_inputs(data: Dict[str, Any], required_fields: List[str] = None) -> Dict[str, Any]:
    """
    Check that required input fields are present and not None.

    Args:
        data: Input dictionary passed to an engine
        required_fields: Field names that must be present

    Returns:
        Dictionary with is_valid, missing_fields, invalid_fields and message
    """
    required_fields = required_fields or []
    missing_fields = []
    invalid_fields = []

    for field in required_fields:
        if field not in data:
            missing_fields.append(field)
        elif data[field] is None:
            invalid_fields.append(field)

    is_valid = not missing_fields and not invalid_fields

    if is_valid:
        message = 'All required fields are present and valid'
    else:
        message = (
            f"Validation failed: missing fields [{', '.join(missing_fields)}], "
            f"invalid fields [{', '.join(invalid_fields)}]"
        )

    return {
        'is_valid': is_valid,
        'missing_fields': missing_fields,
        'invalid_fields': invalid_fields,
        'message': message,
    }


def validate_numeric_outputs(report: Dict[str, Any]) -> None:
    """
    Check that every number in a report is finite.

    Walks nested dictionaries and lists; None is acceptable for missing data.

    Args:
        report: Account report dictionary

    Raises:
        DataQualityError: If a NaN or infinite value is found
    """
    def check_value(value, path: str):
        if value is None or isinstance(value, bool):
            return

        if isinstance(value, dict):
            for key, item in value.items():
                check_value(item, f"{path}.{key}" if path else str(key))
        elif isinstance(value, list):
            for index, item in enumerate(value):
                check_value(item, f"{path}[{index}]")
        elif isinstance(value, (int, float)):
            if np.isnan(value):
                raise DataQualityError(f"NaN value found in {path}")
            if np.isinf(value):
                raise DataQualityError(f"Infinite value found in {path}")

    check_value(report, '')
