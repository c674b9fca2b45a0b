"""
Type definitions for NebulaFlow activities and participations.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from nebulaflow_toolkit.shared.constants import LedgerConstants

# =============================================================================
# ENUMS
# =============================================================================


class IncentiveKind(Enum):
    """Incentive model of an activity (registry `incentiveType`)."""

    DEPOSIT_POOL = 0  # Participants stake a deposit, winners split the pool
    NFT_POOL = 1  # Finishers receive an NFT


class Visibility(Enum):
    """Activity visibility (registry `isPublic`)."""

    PUBLIC = "public"
    PRIVATE = "private"


class LifecycleStatus(Enum):
    """Lifecycle of an activity contract (`viewStatus()`)."""

    SCHEDULED = LedgerConstants.STATUS_SCHEDULED  # Created, not started
    ACTIVE = LedgerConstants.STATUS_ACTIVE  # Rounds are running
    SETTLED = LedgerConstants.STATUS_SETTLED  # Ended and settled


# =============================================================================
# CHECK-IN ROUND
# =============================================================================


def is_not_checked_marker(raw: int) -> bool:
    """True when a raw uint256 is the contract's "not checked in" marker."""
    return raw >= LedgerConstants.NOT_CHECKED_THRESHOLD


@dataclass(frozen=True)
class CheckInRound:
    """
    Last round a participant checked in, or "never".

    The ledger encodes "never" inside the round counter itself. This type
    keeps that out of the rest of the code: build it with ``from_wire`` and
    compare with ``is_never`` / ``index``.
    """

    index: Optional[int] = None  # 0-based round, None means never

    @classmethod
    def never(cls) -> "CheckInRound":
        return cls(None)

    @classmethod
    def at(cls, index: int) -> "CheckInRound":
        if index < 0:
            raise ValueError(f"Round index must be >= 0, got {index}")
        return cls(index)

    @classmethod
    def from_wire(
        cls,
        raw: Optional[int],
        zero_is_never: bool = False,
        has_checked_in: Optional[bool] = None,
    ) -> "CheckInRound":
        """
        Convert a raw ``lastCheckInRound`` value.

        Args:
            raw: The uint256 read from the contract (None when unread)
            zero_is_never: The contract maps its marker to 0 before returning
                (NFT-pool contracts). A 0 then means never, unless the
                participant's ``hasCheckedIn`` flag says otherwise.
            has_checked_in: The ``hasCheckedIn`` flag from the same tuple
        """
        if raw is None:
            return cls.never()
        raw = int(raw)
        if raw < 0 or is_not_checked_marker(raw):
            return cls.never()
        if zero_is_never and raw == 0 and not has_checked_in:
            return cls.never()
        return cls(raw)

    @property
    def is_never(self) -> bool:
        return self.index is None

    def to_wire(self) -> Optional[int]:
        return self.index

    def __str__(self) -> str:
        return "never" if self.index is None else str(self.index)


# =============================================================================
# DATACLASSES
# =============================================================================


@dataclass
class ActivityRecord:
    """
    Activity metadata as registered on the ledger.

    ``id`` is 1-based and assigned by the registry; it is None only for a
    record written locally right after creation, before the registry id is
    known. ``key`` identifies the record in the local store.
    """

    id: Optional[int]  # Registry id, 0 is never valid
    contract_address: Optional[str]  # Per-activity contract
    creator_address: str = ""
    creator_display_name: str = ""
    title: str = ""
    description: str = ""
    created_at: int = 0  # Unix timestamp
    visibility: Visibility = Visibility.PUBLIC
    incentive_kind: Optional[IncentiveKind] = None

    @property
    def key(self) -> Optional[str]:
        """Store key: contract address, falling back to the numeric id."""
        if self.contract_address:
            return self.contract_address.lower()
        if self.id:
            return f"id:{self.id}"
        return None

    @property
    def is_public(self) -> bool:
        return self.visibility == Visibility.PUBLIC

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict for the display layer."""
        return {
            "id": self.id,
            "contract_address": self.contract_address,
            "creator_address": self.creator_address,
            "creator_display_name": self.creator_display_name,
            "title": self.title,
            "description": self.description,
            "created_at": self.created_at,
            "visibility": self.visibility.value,
            "incentive_kind": (
                self.incentive_kind.name if self.incentive_kind else None
            ),
        }


@dataclass
class ParticipationRecord:
    """A user's participation in one activity (`getParticipantInfo`)."""

    joined: bool = False
    eliminated: bool = False
    last_check_in_round: CheckInRound = field(default_factory=CheckInRound.never)
    reward_claimed: bool = False
    is_winner: bool = False
    has_checked_in_ever: bool = False
    is_completed: bool = False

    @classmethod
    def empty(cls) -> "ParticipationRecord":
        """Participation of a user who never joined."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "joined": self.joined,
            "eliminated": self.eliminated,
            "last_check_in_round": self.last_check_in_round.to_wire(),
            "reward_claimed": self.reward_claimed,
            "is_winner": self.is_winner,
            "has_checked_in_ever": self.has_checked_in_ever,
            "is_completed": self.is_completed,
        }


@dataclass(frozen=True)
class RoundCounters:
    """Round progress of an activity."""

    current_round: Optional[int]  # 0-based, None when unreadable
    total_rounds: Optional[int]

    @property
    def is_known(self) -> bool:
        return self.current_round is not None and self.total_rounds is not None

    @property
    def is_exhausted(self) -> bool:
        """All rounds have elapsed."""
        return self.is_known and self.current_round >= self.total_rounds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_round": self.current_round,
            "total_rounds": self.total_rounds,
        }


def effective_status(
    status: Optional[LifecycleStatus], counters: Optional[RoundCounters]
) -> Optional[LifecycleStatus]:
    """
    Lifecycle status corrected for a lagging flag.

    The contract only flips to SETTLED when someone ends the activity, so an
    ACTIVE flag with every round elapsed is judged SETTLED.
    """
    if status == LifecycleStatus.ACTIVE and counters and counters.is_exhausted:
        return LifecycleStatus.SETTLED
    return status


@dataclass
class CachedEntry:
    """
    One cached activity with the current user's participation snapshot.

    ``local_flags`` maps participation field names to the time a user
    action wrote them locally; those fields take precedence over ledger
    reads that started before that time.
    """

    activity: ActivityRecord
    participation: Optional[ParticipationRecord] = None
    status: Optional[LifecycleStatus] = None
    round_counters: Optional[RoundCounters] = None
    last_validated_at: Optional[float] = None
    local_flags: Dict[str, float] = field(default_factory=dict)

    @property
    def key(self) -> Optional[str]:
        return self.activity.key

    @property
    def pending_since(self) -> Optional[float]:
        """Time of the oldest optimistic write not yet confirmed."""
        return min(self.local_flags.values()) if self.local_flags else None

    @property
    def is_malformed(self) -> bool:
        """No id and no contract address: nothing to verify against."""
        return not self.activity.id and not self.activity.contract_address

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activity": self.activity.to_dict(),
            "participation": (
                self.participation.to_dict() if self.participation else None
            ),
            "status": self.status.name if self.status else None,
            "round_counters": (
                self.round_counters.to_dict() if self.round_counters else None
            ),
            "last_validated_at": self.last_validated_at,
            "pending": sorted(self.local_flags),
        }
