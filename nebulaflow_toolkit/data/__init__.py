"""Data module for NebulaFlow toolkit - handles check-in eligibility."""

from .eligibility import (
    CheckInBlocker,
    CheckInEligibility,
    EligibilityService,
    evaluate,
)

__all__ = [
    "EligibilityService",
    "CheckInBlocker",
    "CheckInEligibility",
    "evaluate",
]
