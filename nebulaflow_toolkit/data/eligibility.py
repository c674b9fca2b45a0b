"""
Check-in eligibility for round-based activities.

The rules mirror what the activity contracts enforce in ``checkIn()``, so a
client can tell in advance whether a check-in transaction would revert, and
explain one that did with the same vocabulary.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from nebulaflow_toolkit.activities.models import (
    CachedEntry,
    LifecycleStatus,
    ParticipationRecord,
    RoundCounters,
    effective_status,
)
from nebulaflow_toolkit.contracts.reader import LedgerReader
from nebulaflow_toolkit.shared.exceptions import NonRetryableException
from nebulaflow_toolkit.shared.logging import get_logger
from nebulaflow_toolkit.shared.results import (
    ErrorSeverity,
    ProcessingError,
    Result,
)
from nebulaflow_toolkit.shared.retry import DEFAULT_RETRYABLE_EXCEPTIONS

_logger = get_logger(__name__)


class CheckInBlocker(Enum):
    """Why a check-in is not possible, named after the contract reverts."""

    NOT_ACTIVE = "NOT_ACTIVE"
    NOT_PARTICIPANT = "NOT_PARTICIPANT"
    ELIMINATED = "ELIMINATED"
    CHALLENGE_FINISHED = "CHALLENGE_FINISHED"
    ROUNDS_UNKNOWN = "ROUNDS_UNKNOWN"  # client side only, counters unreadable
    MISSED_FIRST_ROUND = "MISSED_FIRST_ROUND"
    ALREADY_CHECKED = "ALREADY_CHECKED"
    SKIPPED_ROUND = "SKIPPED_ROUND"
    MISSED_PREVIOUS_ROUND = "MISSED_PREVIOUS_ROUND"  # revert only


# User-facing explanations shown by the web client
BLOCKER_MESSAGES: Dict[CheckInBlocker, str] = {
    CheckInBlocker.NOT_ACTIVE: "挑战尚未开始或已结束",
    CheckInBlocker.NOT_PARTICIPANT: "请先报名参加挑战",
    CheckInBlocker.ELIMINATED: "您已被淘汰，无法签到",
    CheckInBlocker.CHALLENGE_FINISHED: "挑战已结束",
    CheckInBlocker.ROUNDS_UNKNOWN: "暂时无法读取轮次信息",
    CheckInBlocker.MISSED_FIRST_ROUND: "您错过了第一轮签到",
    CheckInBlocker.ALREADY_CHECKED: "您已经签到过当前轮次",
    CheckInBlocker.SKIPPED_ROUND: "您跳过了轮次，无法签到",
    CheckInBlocker.MISSED_PREVIOUS_ROUND: "您错过了上一轮签到，已被淘汰",
}

# MISSED_FIRST_ROUND must be tested before the shorter names it contains
_REVERT_ORDER: Tuple[CheckInBlocker, ...] = (
    CheckInBlocker.MISSED_FIRST_ROUND,
    CheckInBlocker.MISSED_PREVIOUS_ROUND,
    CheckInBlocker.NOT_ACTIVE,
    CheckInBlocker.NOT_PARTICIPANT,
    CheckInBlocker.ELIMINATED,
    CheckInBlocker.CHALLENGE_FINISHED,
    CheckInBlocker.ALREADY_CHECKED,
    CheckInBlocker.SKIPPED_ROUND,
)


@dataclass(frozen=True)
class CheckInEligibility:
    is_today_checked_in: bool
    can_check_in: bool
    consecutive_days: int
    reason: Optional[CheckInBlocker] = None  # None when can_check_in

    @property
    def message(self) -> Optional[str]:
        return BLOCKER_MESSAGES.get(self.reason) if self.reason else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_today_checked_in": self.is_today_checked_in,
            "can_check_in": self.can_check_in,
            "consecutive_days": self.consecutive_days,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
        }


def evaluate(
    participation: Optional[ParticipationRecord],
    round_counters: Optional[RoundCounters],
    lifecycle_status: Optional[LifecycleStatus],
) -> CheckInEligibility:
    """
    Evaluate whether a participant can check in for the current round.

    Rules:
    - Checked in today: joined, and last check-in round == current round
    - Can check in: activity ACTIVE, joined, not eliminated, rounds left,
      and either first check-in during round 0 or last round < current round
    - Consecutive days: last check-in round + 1 (0 when never)

    Unknown round counters yield the all-false / zero answer.
    """
    participation = participation or ParticipationRecord.empty()
    last = participation.last_check_in_round

    if (
        round_counters is None
        or round_counters.current_round is None
        or round_counters.total_rounds is None
    ):
        return CheckInEligibility(
            is_today_checked_in=False,
            can_check_in=False,
            consecutive_days=0,
            reason=CheckInBlocker.ROUNDS_UNKNOWN,
        )

    current = round_counters.current_round
    total = round_counters.total_rounds

    is_today_checked_in = (
        participation.joined and not last.is_never and last.index == current
    )
    consecutive_days = 0 if last.is_never else last.index + 1

    if lifecycle_status != LifecycleStatus.ACTIVE:
        reason = CheckInBlocker.NOT_ACTIVE
    elif not participation.joined:
        reason = CheckInBlocker.NOT_PARTICIPANT
    elif participation.eliminated:
        reason = CheckInBlocker.ELIMINATED
    elif current >= total:
        reason = CheckInBlocker.CHALLENGE_FINISHED
    elif last.is_never:
        reason = None if current == 0 else CheckInBlocker.MISSED_FIRST_ROUND
    elif last.index == current:
        reason = CheckInBlocker.ALREADY_CHECKED
    elif last.index > current:
        # Last check-in ahead of the current round: inconsistent read
        reason = CheckInBlocker.SKIPPED_ROUND
    else:
        reason = None

    return CheckInEligibility(
        is_today_checked_in=is_today_checked_in,
        can_check_in=reason is None,
        consecutive_days=consecutive_days,
        reason=reason,
    )


def describe_revert(message: Optional[str]) -> Optional[CheckInBlocker]:
    """Map a contract revert message to a CheckInBlocker, if it is one."""
    if not message:
        return None
    upper = message.upper()
    for blocker in _REVERT_ORDER:
        if blocker.value in upper:
            return blocker
    return None


def progress_label(counters: Optional[RoundCounters]) -> Optional[Tuple[int, int]]:
    """(day, total) for "day X / N" displays, None when rounds are unknown."""
    if counters is None or not counters.is_known:
        return None
    day = min(counters.current_round + 1, counters.total_rounds)
    return day, counters.total_rounds


class EligibilityService:
    """
    Service for evaluating check-in eligibility of cached or live activities.
    """

    def __init__(self, reader: Optional[LedgerReader] = None):
        self.reader = reader

    def evaluate_entry(self, entry: CachedEntry) -> CheckInEligibility:
        """Evaluate a cached entry, correcting a lagging lifecycle flag."""
        return evaluate(
            entry.participation,
            entry.round_counters,
            effective_status(entry.status, entry.round_counters),
        )

    def evaluate_entries(
        self, entries: List[CachedEntry]
    ) -> Dict[str, CheckInEligibility]:
        return {
            entry.key: self.evaluate_entry(entry)
            for entry in entries
            if entry.key is not None
        }

    async def get_check_in_status(
        self, contract_address: str, user_address: str
    ) -> Result[CheckInEligibility]:
        """
        Read one activity straight from the ledger and evaluate it.

        Returns:
            Result[CheckInEligibility]: Failure when the activity is not
            registered or the ledger can't be read
        """
        if self.reader is None:
            raise ValueError("EligibilityService needs a reader for live checks")

        try:
            activity_id = await self.reader.get_activity_id_for_contract(
                contract_address
            )
            if activity_id == 0:
                return Result.fail_with_message(
                    source="eligibility",
                    message=f"{contract_address} is not a registered activity",
                    context={"contract_address": contract_address},
                )
            metadata = await self.reader.get_activity_metadata(activity_id)
            if metadata is None:
                return Result.fail_with_message(
                    source="eligibility",
                    message=f"Activity {activity_id} has no metadata",
                    context={"activity_id": activity_id},
                )

            kind = metadata.incentive_kind
            participation = await self.reader.get_participation(
                contract_address, user_address, kind
            )
            counters = await self.reader.get_round_counters(
                contract_address, kind
            )
            status = await self.reader.get_lifecycle_status(
                contract_address, kind
            )
        except (DEFAULT_RETRYABLE_EXCEPTIONS + (NonRetryableException,)) as e:
            _logger.error(
                "Eligibility read failed for %s: %s", contract_address, e
            )
            return Result.fail(
                ProcessingError(
                    source="eligibility",
                    message=f"Ledger read failed: {e}",
                    severity=ErrorSeverity.ERROR,
                    context={
                        "contract_address": contract_address,
                        "user_address": user_address,
                    },
                    exception=e,
                )
            )

        return Result.ok(
            evaluate(
                participation, counters, effective_status(status, counters)
            )
        )
