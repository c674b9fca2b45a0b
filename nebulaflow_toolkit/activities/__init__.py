"""Activity models and the reconciliation service."""

from .models import (
    ActivityRecord,
    CachedEntry,
    CheckInRound,
    IncentiveKind,
    LifecycleStatus,
    ParticipationRecord,
    RoundCounters,
    Visibility,
)
from .service import (
    ActivityService,
    InvalidationReason,
    ReconciliationConfig,
    ReconciliationEngine,
)

__all__ = [
    "ActivityService",
    "ReconciliationEngine",
    "ReconciliationConfig",
    "InvalidationReason",
    "ActivityRecord",
    "CachedEntry",
    "CheckInRound",
    "IncentiveKind",
    "LifecycleStatus",
    "ParticipationRecord",
    "RoundCounters",
    "Visibility",
]
