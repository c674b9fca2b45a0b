"""NebulaFlow Toolkit - Python SDK for NebulaFlow activity reconciliation."""

__version__ = "0.1.0"

from .activities import ActivityService, ReconciliationEngine
from .data import EligibilityService

__all__ = ["ActivityService", "ReconciliationEngine", "EligibilityService"]
