"""
Validators for booking business rules.

Pure functions over loaded rows; callers decide which error to raise.
"""

from engine.validators.booking_validators import (
    find_overlaps,
    format_time_12h,
    validate_therapist_assignment,
    validate_therapist_blockout,
    validate_therapist_time_conflict,
)

__all__ = [
    "find_overlaps",
    "format_time_12h",
    "validate_therapist_assignment",
    "validate_therapist_blockout",
    "validate_therapist_time_conflict",
]
