"""
Ledger readers for the NebulaFlow activity registry and activity contracts.

``LedgerReader`` is the read-only interface the reconciliation engine talks
to. ``Web3LedgerReader`` implements it over web3.py contract calls.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from eth_utils import is_address, to_checksum_address

from nebulaflow_toolkit.activities.models import (
    ActivityRecord,
    IncentiveKind,
    LifecycleStatus,
    ParticipationRecord,
    RoundCounters,
    Visibility,
)
from nebulaflow_toolkit.contracts.kinds import capabilities_for
from nebulaflow_toolkit.shared.constants import GlobalConstants, LedgerConstants
from nebulaflow_toolkit.shared.exceptions import (
    ActivityDataException,
    ConfigurationException,
    LedgerUnavailableException,
    NonRetryableException,
)
from nebulaflow_toolkit.shared.logging import get_logger
from nebulaflow_toolkit.shared.retry import (
    RPC_RETRY_CONFIG,
    RetryConfig,
    retry_async_operation,
)
from nebulaflow_toolkit.shared.services.web3_service import Web3Service

_logger = get_logger(__name__)

REGISTRY_ABI = "activity_registry"


class LedgerReader(ABC):
    """Read-only view of the remote ledger. Every call may fail."""

    @abstractmethod
    async def get_total_activity_count(self) -> int:
        """Number of activities ever registered (ids are 1..count)."""

    @abstractmethod
    async def get_activity_metadata(
        self, activity_id: int
    ) -> Optional[ActivityRecord]:
        """Registry metadata for an id, None when the slot is empty."""

    @abstractmethod
    async def get_activity_id_for_contract(self, contract_address: str) -> int:
        """Registry id of an activity contract, 0 when unregistered."""

    @abstractmethod
    async def get_lifecycle_status(
        self, contract_address: str, kind: Optional[IncentiveKind]
    ) -> LifecycleStatus:
        ...

    @abstractmethod
    async def get_participation(
        self,
        contract_address: str,
        user_address: str,
        kind: Optional[IncentiveKind],
    ) -> ParticipationRecord:
        ...

    @abstractmethod
    async def get_round_counters(
        self, contract_address: str, kind: Optional[IncentiveKind]
    ) -> RoundCounters:
        ...


class Web3LedgerReader(LedgerReader):
    """
    LedgerReader backed by web3.py.

    Contract calls are blocking, so each one runs in the default executor and
    is retried with the RPC retry preset. Wrap calls in your own timeout: the
    retry loop stops as soon as the awaiting task is cancelled.
    """

    def __init__(
        self,
        web3_service: Optional[Web3Service] = None,
        registry_address: Optional[str] = None,
        retry_config: RetryConfig = RPC_RETRY_CONFIG,
    ):
        if registry_address is None:
            registry_address = GlobalConstants.get_registry_address()
        if not registry_address or not is_address(registry_address):
            raise ConfigurationException(
                f"Invalid or missing registry address: {registry_address!r}"
                " (set NF_REGISTRY_ADDRESS)"
            )

        self.web3_service = web3_service or Web3Service.get_instance()
        self.registry_address = to_checksum_address(registry_address)
        self.retry_config = retry_config

    def _registry(self) -> Any:
        return self.web3_service.get_contract(
            self.registry_address, REGISTRY_ABI
        )

    def _activity_contract(
        self, contract_address: str, kind: Optional[IncentiveKind]
    ) -> Any:
        return self.web3_service.get_contract(
            to_checksum_address(contract_address),
            capabilities_for(kind).abi_name,
        )

    async def _call(
        self, contract: Any, function_name: str, *args: Any
    ) -> Any:
        """Run one view function call off the event loop, with retries."""

        async def _do_call():
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(
                None, getattr(contract.functions, function_name)(*args).call
            )

        return await retry_async_operation(
            _do_call,
            operation_name=function_name,
            **self.retry_config.as_kwargs(),
        )

    async def get_total_activity_count(self) -> int:
        try:
            count = await self._call(self._registry(), "activityCount")
        except NonRetryableException:
            raise
        except Exception as e:
            raise LedgerUnavailableException(
                f"Could not read activityCount from {self.registry_address}: {e}"
            ) from e
        return int(count)

    async def get_activity_metadata(
        self, activity_id: int
    ) -> Optional[ActivityRecord]:
        raw = await self._call(
            self._registry(), "getActivityMetadata", int(activity_id)
        )
        return self.decode_activity_metadata(activity_id, raw)

    async def get_activity_id_for_contract(self, contract_address: str) -> int:
        raw = await self._call(
            self._registry(),
            "contractToActivity",
            to_checksum_address(contract_address),
        )
        return int(raw)

    async def get_lifecycle_status(
        self, contract_address: str, kind: Optional[IncentiveKind]
    ) -> LifecycleStatus:
        contract = self._activity_contract(contract_address, kind)
        raw = await self._call(contract, capabilities_for(kind).status_function)
        try:
            return LifecycleStatus(int(raw))
        except ValueError as e:
            raise ActivityDataException(
                f"Unknown lifecycle status {raw} at {contract_address}"
            ) from e

    async def get_participation(
        self,
        contract_address: str,
        user_address: str,
        kind: Optional[IncentiveKind],
    ) -> ParticipationRecord:
        capabilities = capabilities_for(kind)
        contract = self._activity_contract(contract_address, kind)
        raw = await self._call(
            contract,
            capabilities.participation_function,
            to_checksum_address(user_address),
        )
        return self.decode_participant_info(raw, kind)

    async def get_round_counters(
        self, contract_address: str, kind: Optional[IncentiveKind]
    ) -> RoundCounters:
        capabilities = capabilities_for(kind)
        contract = self._activity_contract(contract_address, kind)

        current, total = await asyncio.gather(
            self._call(contract, capabilities.current_round_function),
            self._call(contract, capabilities.total_rounds_function),
            return_exceptions=True,
        )

        # An activity that hasn't started may revert on the current round
        if isinstance(current, Exception):
            _logger.debug(
                "Current round unreadable for %s: %s", contract_address, current
            )
            current = None
        if isinstance(total, Exception):
            raise total

        return RoundCounters(
            current_round=int(current) if current is not None else None,
            total_rounds=int(total),
        )

    @staticmethod
    def decode_activity_metadata(
        activity_id: int, raw: Sequence[Any]
    ) -> Optional[ActivityRecord]:
        """
        Decode a getActivityMetadata tuple.

        Tuple layout:
            (category, incentiveType, activityContract, creator, title,
             description, createdAt, isPublic, creatorName)

        Returns None for an empty slot (zero contract address or no title),
        which is what the registry returns for an id it doesn't hold.
        """
        try:
            (
                _category,
                incentive_type,
                activity_contract,
                creator,
                title,
                description,
                created_at,
                is_public,
            ) = raw[:8]
        except (TypeError, ValueError) as e:
            raise ActivityDataException(
                f"Malformed metadata for activity {activity_id}: {e}"
            ) from e
        creator_name = raw[8] if len(raw) > 8 else ""

        if (
            not activity_contract
            or str(activity_contract).lower() == LedgerConstants.ZERO_ADDRESS
            or not title
        ):
            return None

        try:
            incentive_kind = IncentiveKind(int(incentive_type))
        except ValueError as e:
            raise ActivityDataException(
                f"Unknown incentive type {incentive_type} for activity"
                f" {activity_id}"
            ) from e

        return ActivityRecord(
            id=int(activity_id),
            contract_address=to_checksum_address(activity_contract),
            creator_address=(
                to_checksum_address(creator) if creator else ""
            ),
            creator_display_name=creator_name or "",
            title=title,
            description=description or "",
            created_at=int(created_at),
            visibility=Visibility.PUBLIC if is_public else Visibility.PRIVATE,
            incentive_kind=incentive_kind,
        )

    @staticmethod
    def decode_participant_info(
        raw: Sequence[Any], kind: Optional[IncentiveKind]
    ) -> ParticipationRecord:
        """
        Decode a getParticipantInfo tuple.

        Tuple layout:
            (joined, eliminated, lastCheckInRound, rewardClaimed, isWinner,
             hasCheckedIn, isCompleted)
        """
        try:
            (
                joined,
                eliminated,
                last_check_in,
                reward_claimed,
                is_winner,
                has_checked_in,
                is_completed,
            ) = raw
        except (TypeError, ValueError) as e:
            raise ActivityDataException(
                f"Malformed participant info: {e}"
            ) from e

        return ParticipationRecord(
            joined=bool(joined),
            eliminated=bool(eliminated),
            last_check_in_round=capabilities_for(kind).decode_check_in(
                int(last_check_in), bool(has_checked_in)
            ),
            reward_claimed=bool(reward_claimed),
            is_winner=bool(is_winner),
            has_checked_in_ever=bool(has_checked_in),
            is_completed=bool(is_completed),
        )
