"""
Pytest configuration and shared fixtures.

This module provides common fixtures and configuration for all tests,
including an in-memory ledger standing in for the activity contracts.
"""

import asyncio
from typing import Callable, Dict, List, Optional, Set, Tuple

import pytest

from nebulaflow_toolkit.activities.models import (
    ActivityRecord,
    CachedEntry,
    IncentiveKind,
    LifecycleStatus,
    ParticipationRecord,
    RoundCounters,
    Visibility,
)
from nebulaflow_toolkit.activities.service import (
    ReconciliationConfig,
    ReconciliationEngine,
)
from nebulaflow_toolkit.contracts.reader import LedgerReader
from nebulaflow_toolkit.shared.exceptions import LedgerUnavailableException
from nebulaflow_toolkit.storage.backends import MemoryBackend
from nebulaflow_toolkit.storage.record_store import LocalRecordStore


def make_address(n: int) -> str:
    """Deterministic checksum-free test address for an activity number."""
    return "0x" + f"{n:040x}"


def make_activity(
    activity_id: Optional[int],
    contract_address: Optional[str] = None,
    created_at: int = 1_700_000_000,
    title: Optional[str] = None,
    description: str = "",
    kind: Optional[IncentiveKind] = IncentiveKind.DEPOSIT_POOL,
) -> ActivityRecord:
    if contract_address is None and activity_id is not None:
        contract_address = make_address(0xA000 + activity_id)
    return ActivityRecord(
        id=activity_id,
        contract_address=contract_address,
        creator_address=make_address(0xC0FFEE),
        creator_display_name="alice",
        title=title if title is not None else f"Activity {activity_id}",
        description=description,
        created_at=created_at,
        visibility=Visibility.PUBLIC,
        incentive_kind=kind,
    )


class FakeLedger(LedgerReader):
    """
    In-memory LedgerReader.

    Activities are registered with ``register``; failures and delays are
    injected per operation so tests can exercise the engine's fail-open and
    timeout paths.
    """

    def __init__(self):
        self.activities: Dict[int, ActivityRecord] = {}
        self.count_override: Optional[int] = None
        self.participations: Dict[Tuple[str, str], ParticipationRecord] = {}
        self.statuses: Dict[str, LifecycleStatus] = {}
        self.counters: Dict[str, RoundCounters] = {}

        self.fail_count = False
        self.failing_ids: Set[int] = set()
        self.broken_ids: Set[int] = set()
        self.delays: Dict[int, float] = {}
        self.calls: List[Tuple[str, object]] = []
        self.before_count: Optional[Callable[[], object]] = None

    def register(self, record: ActivityRecord) -> ActivityRecord:
        self.activities[record.id] = record
        return record

    def set_participation(
        self, contract_address: str, user: str, record: ParticipationRecord
    ) -> None:
        self.participations[(contract_address.lower(), user.lower())] = record

    def _maybe_fail(self, activity_id: Optional[int]) -> None:
        if activity_id in self.failing_ids:
            raise LedgerUnavailableException(f"activity {activity_id} unreadable")
        if activity_id in self.broken_ids:
            raise RuntimeError(f"activity {activity_id} returned garbage")

    async def _maybe_delay(self, activity_id: Optional[int]) -> None:
        delay = self.delays.get(activity_id)
        if delay:
            await asyncio.sleep(delay)

    def _id_for(self, contract_address: str) -> int:
        for activity_id, record in self.activities.items():
            if record.contract_address.lower() == contract_address.lower():
                return activity_id
        return 0

    async def get_total_activity_count(self) -> int:
        self.calls.append(("count", None))
        if self.before_count is not None:
            result = self.before_count()
            if asyncio.iscoroutine(result):
                await result
        if self.fail_count:
            raise LedgerUnavailableException("node unreachable")
        if self.count_override is not None:
            return self.count_override
        return max(self.activities, default=0)

    async def get_activity_metadata(
        self, activity_id: int
    ) -> Optional[ActivityRecord]:
        self.calls.append(("metadata", activity_id))
        await self._maybe_delay(activity_id)
        self._maybe_fail(activity_id)
        return self.activities.get(activity_id)

    async def get_activity_id_for_contract(self, contract_address: str) -> int:
        self.calls.append(("contract_id", contract_address))
        activity_id = self._id_for(contract_address)
        await self._maybe_delay(activity_id)
        self._maybe_fail(activity_id)
        return activity_id

    async def get_lifecycle_status(self, contract_address, kind):
        return self.statuses.get(
            contract_address.lower(), LifecycleStatus.ACTIVE
        )

    async def get_participation(self, contract_address, user_address, kind):
        return self.participations.get(
            (contract_address.lower(), user_address.lower()),
            ParticipationRecord.empty(),
        )

    async def get_round_counters(self, contract_address, kind):
        return self.counters.get(
            contract_address.lower(), RoundCounters(0, 5)
        )


@pytest.fixture
def sample_user_address() -> str:
    """Sample user address for tests."""
    return "0x52f541764E6e90eeBc5c21Ff570De0e2D63766B6"


@pytest.fixture
def other_user_address() -> str:
    """A second user, for session switches."""
    return "0x7E1444BA99dcdFfE8fBdb42C02fb0DA4AAAcE4d5"


@pytest.fixture
def sample_registry_address() -> str:
    """Default local ActivityRegistry deployment."""
    return "0x59b670e9fA9D0A427751Af201D676719a970857b"


@pytest.fixture
def activity_factory() -> Callable[..., ActivityRecord]:
    return make_activity


@pytest.fixture
def address_factory() -> Callable[[int], str]:
    return make_address


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def store(backend) -> LocalRecordStore:
    return LocalRecordStore(backend)


@pytest.fixture
def engine(ledger, store) -> ReconciliationEngine:
    return ReconciliationEngine(
        ledger,
        store,
        ReconciliationConfig(
            max_concurrency=4, validation_timeout=0.5, escalate_after=3
        ),
    )


@pytest.fixture
def seed_cache(store) -> Callable[..., None]:
    """Write entries straight into the store, as a previous session would."""

    def _seed(*records: ActivityRecord, user: Optional[str] = None) -> None:
        store.for_user(user).upsert_many(
            [CachedEntry(activity=record) for record in records]
        )

    return _seed


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line("markers", "slow: mark test as slow-running")
