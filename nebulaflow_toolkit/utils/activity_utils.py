"""Activity-specific utilities for category and outcome grouping."""

import re
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from nebulaflow_toolkit.activities.models import (
    ActivityRecord,
    CachedEntry,
    IncentiveKind,
    LifecycleStatus,
    ParticipationRecord,
    effective_status,
)


class ActivityCategory(Enum):
    PROFESSIONAL = "professional"
    SOCIAL = "social"
    LIFESTYLE = "lifestyle"
    UNCATEGORIZED = "uncategorized"


class OutcomeBucket(Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    NOT_SUCCESSFUL = "not_successful"


# Checked in order, first match wins
CATEGORY_KEYWORDS: Tuple[Tuple[ActivityCategory, Tuple[str, ...]], ...] = (
    (
        ActivityCategory.PROFESSIONAL,
        (
            "比赛", "竞赛", "团队", "黑客松", "开发", "编程", "技术", "工作",
            "项目", "hackathon", "competition", "team", "dev", "coding",
            "web3",
        ),
    ),
    (
        ActivityCategory.SOCIAL,
        (
            "社交", "社区", "交友", "聚会", "分享", "打卡群", "social",
            "community", "meetup", "friends",
        ),
    ),
    (
        ActivityCategory.LIFESTYLE,
        (
            "健身", "运动", "跑步", "早起", "阅读", "读书", "学习", "冥想",
            "喝水", "fitness", "run", "reading", "sleep", "habit",
        ),
    ),
)


def _keyword_pattern(keyword: str) -> "re.Pattern[str]":
    # Latin keywords match whole words only, CJK ones anywhere in the text
    if keyword.isascii():
        return re.compile(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])")
    return re.compile(re.escape(keyword))


_CATEGORY_PATTERNS = tuple(
    (category, tuple(_keyword_pattern(k) for k in keywords))
    for category, keywords in CATEGORY_KEYWORDS
)

KIND_FALLBACK: Dict[IncentiveKind, ActivityCategory] = {
    IncentiveKind.NFT_POOL: ActivityCategory.SOCIAL,
    IncentiveKind.DEPOSIT_POOL: ActivityCategory.LIFESTYLE,
}

STATUS_LABELS: Dict[LifecycleStatus, str] = {
    LifecycleStatus.SCHEDULED: "未开始",
    LifecycleStatus.ACTIVE: "进行中",
    LifecycleStatus.SETTLED: "已结算",
}


def categorize(record: ActivityRecord) -> ActivityCategory:
    """
    Categorize an activity from its description, falling back to its kind.

    Returns UNCATEGORIZED only when no keyword matches and the incentive
    kind is unknown.
    """
    text = (record.description or "").lower()
    for category, patterns in _CATEGORY_PATTERNS:
        if any(pattern.search(text) for pattern in patterns):
            return category
    if record.incentive_kind is None:
        return ActivityCategory.UNCATEGORIZED
    return KIND_FALLBACK[record.incentive_kind]


def classify_outcome(
    participation: Optional[ParticipationRecord],
    status: Optional[LifecycleStatus],
) -> Optional[OutcomeBucket]:
    """Bucket a participation by how it went. None when it fits no bucket."""
    if participation is None:
        return None
    if participation.eliminated:
        return OutcomeBucket.NOT_SUCCESSFUL
    if participation.joined and status in (
        LifecycleStatus.SCHEDULED,
        LifecycleStatus.ACTIVE,
    ):
        return OutcomeBucket.IN_PROGRESS
    if status == LifecycleStatus.SETTLED and participation.is_completed:
        return OutcomeBucket.COMPLETED
    return None


def group_by_category(
    records: Iterable[ActivityRecord],
) -> Dict[ActivityCategory, List[ActivityRecord]]:
    groups: Dict[ActivityCategory, List[ActivityRecord]] = {
        category: []
        for category in ActivityCategory
        if category != ActivityCategory.UNCATEGORIZED
    }
    for record in records:
        category = categorize(record)
        if category in groups:
            groups[category].append(record)
    return groups


def group_by_outcome(
    entries: Iterable[CachedEntry],
) -> Dict[OutcomeBucket, List[CachedEntry]]:
    groups: Dict[OutcomeBucket, List[CachedEntry]] = {
        bucket: [] for bucket in OutcomeBucket
    }
    for entry in entries:
        bucket = classify_outcome(
            entry.participation,
            effective_status(entry.status, entry.round_counters),
        )
        if bucket is not None:
            groups[bucket].append(entry)
    return groups


def status_label(status: Optional[LifecycleStatus]) -> str:
    return STATUS_LABELS.get(status, "未知")
