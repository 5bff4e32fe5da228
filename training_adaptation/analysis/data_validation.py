"""Data validation for training stress values coming from upstream stores.

Activity sources are outside our control, so bad values are replaced with a
safe suggestion instead of raising. Load modelling must keep working when a
single record is corrupt.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of data validation check."""
    is_valid: bool
    reason: Optional[str] = None
    suggested_value: Optional[float] = None


def validate_tss(value: Any) -> ValidationResult:
    """Check a single TSS value.

    Args:
        value: Raw TSS from an activity or cross-training record

    Returns:
        ValidationResult; invalid results suggest 0.0
    """
    if value is None:
        return ValidationResult(False, "Missing TSS", suggested_value=0.0)

    try:
        number = float(value)
    except (TypeError, ValueError):
        return ValidationResult(False, f"Non-numeric TSS {value!r}", suggested_value=0.0)

    if not math.isfinite(number):
        return ValidationResult(False, f"Non-finite TSS {number}", suggested_value=0.0)

    if number < 0:
        return ValidationResult(False, f"Negative TSS {number}", suggested_value=0.0)

    return ValidationResult(True, suggested_value=number)


def clean_tss(value: Any, source: str = "record") -> float:
    """Return a usable TSS, clamping bad input to zero."""
    result = validate_tss(value)
    if not result.is_valid and value is not None:
        logger.debug(f"Clamping TSS for {source}: {result.reason}")
    return result.suggested_value


def clean_positive(value: Any) -> Optional[float]:
    """Return ``value`` as a float if it is finite and strictly positive, else None."""
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def clean_non_negative(value: Any) -> Optional[float]:
    """Return ``value`` as a float if it is finite and not negative, else None."""
    number = clean_positive(value)
    if number is not None:
        return number
    try:
        return 0.0 if value is not None and float(value) == 0 else None
    except (TypeError, ValueError):
        return None
