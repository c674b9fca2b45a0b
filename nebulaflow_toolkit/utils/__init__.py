from nebulaflow_toolkit.utils.activity_utils import (
    ActivityCategory,
    OutcomeBucket,
    categorize,
    classify_outcome,
    group_by_category,
    group_by_outcome,
    status_label,
)

__all__ = [
    "ActivityCategory",
    "OutcomeBucket",
    "categorize",
    "classify_outcome",
    "group_by_category",
    "group_by_outcome",
    "status_label",
]
