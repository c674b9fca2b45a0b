"""
Per-kind contract capabilities.

Deposit-pool and NFT-pool activities expose the same participation model
through slightly different contract surfaces. Everything that differs
between the two lives here; callers look the kind up once with
``capabilities_for`` and never branch on it themselves.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from nebulaflow_toolkit.activities.models import CheckInRound, IncentiveKind


@dataclass(frozen=True)
class ActivityKindCapabilities:
    kind: IncentiveKind
    abi_name: str
    join_function: str
    check_in_function: str
    status_function: str
    participation_function: str
    current_round_function: str
    total_rounds_function: str
    # getParticipantInfo maps the contract's NOT_CHECKED marker to 0
    zero_is_never: bool

    def decode_check_in(
        self, raw: Optional[int], has_checked_in: Optional[bool] = None
    ) -> CheckInRound:
        """Convert this kind's raw lastCheckInRound value."""
        return CheckInRound.from_wire(
            raw,
            zero_is_never=self.zero_is_never,
            has_checked_in=has_checked_in,
        )


DEPOSIT_POOL_CAPABILITIES = ActivityKindCapabilities(
    kind=IncentiveKind.DEPOSIT_POOL,
    abi_name="deposit_challenge",
    join_function="joinChallenge",
    check_in_function="checkIn",
    status_function="viewStatus",
    participation_function="getParticipantInfo",
    current_round_function="currentRound",
    total_rounds_function="totalRounds",
    zero_is_never=False,
)

NFT_POOL_CAPABILITIES = ActivityKindCapabilities(
    kind=IncentiveKind.NFT_POOL,
    abi_name="nft_activity",
    join_function="joinActivity",
    check_in_function="checkIn",
    status_function="viewStatus",
    participation_function="getParticipantInfo",
    current_round_function="getCurrentRound",
    total_rounds_function="totalRounds",
    zero_is_never=True,
)

_CAPABILITIES: Dict[IncentiveKind, ActivityKindCapabilities] = {
    IncentiveKind.DEPOSIT_POOL: DEPOSIT_POOL_CAPABILITIES,
    IncentiveKind.NFT_POOL: NFT_POOL_CAPABILITIES,
}


def capabilities_for(
    kind: Optional[IncentiveKind],
) -> ActivityKindCapabilities:
    """
    Get the capabilities of an activity kind.

    Records cached before the kind was known are read as deposit pools,
    the only kind the registry had at the time.
    """
    if kind is None:
        return DEPOSIT_POOL_CAPABILITIES
    return _CAPABILITIES[kind]
