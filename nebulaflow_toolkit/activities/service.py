"""
ActivityService - reconciles the local activity cache with the ledger

This service handles:
1. Serving the cached activity list immediately (snapshot)
2. Validating every cached entry against the registry and pruning the ones
   the ledger explicitly disowns (stale ids, redeployed contracts)
3. Discovering activities registered since the last pass
4. Refreshing participation, lifecycle status and round counters per user
5. Folding user-action writes (join, check-in) into the cache

Failure policy:
- Ledger unreachable: nothing is pruned, the snapshot is returned as a
  failed Result (fail open)
- One entry times out or errors: the entry is kept and reported as a warning
- Only an explicit negative answer from the ledger removes an entry
"""

import asyncio
import time
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from eth_utils import is_address

from nebulaflow_toolkit.activities.models import (
    ActivityRecord,
    CachedEntry,
    CheckInRound,
    ParticipationRecord,
)
from nebulaflow_toolkit.contracts.reader import LedgerReader, Web3LedgerReader
from nebulaflow_toolkit.shared.constants import GlobalConstants, LedgerConstants
from nebulaflow_toolkit.shared.exceptions import NonRetryableException
from nebulaflow_toolkit.shared.logging import get_logger
from nebulaflow_toolkit.shared.results import (
    ErrorSeverity,
    ProcessingError,
    ReconciliationSummary,
    Result,
)
from nebulaflow_toolkit.shared.retry import DEFAULT_RETRYABLE_EXCEPTIONS
from nebulaflow_toolkit.shared.services.web3_service import Web3Service
from nebulaflow_toolkit.storage.backends import FileBackend
from nebulaflow_toolkit.storage.record_store import LocalRecordStore

_logger = get_logger(__name__)

# Failures that mean "the ledger didn't answer", as opposed to a bug
LEDGER_ERRORS = DEFAULT_RETRYABLE_EXCEPTIONS + (
    asyncio.TimeoutError,
    NonRetryableException,
)

Subscriber = Callable[[Optional[str], List[ActivityRecord]], Any]


class InvalidationReason(Enum):
    """Why the ledger disowns a cached entry."""

    ID_OUT_OF_RANGE = "id_out_of_range"  # id > ledger count (redeployed)
    UNREGISTERED_CONTRACT = "unregistered_contract"  # contractToActivity == 0
    ID_MISMATCH = "id_mismatch"  # contract registered under another id
    EMPTY_METADATA = "empty_metadata"  # zeroed registry slot
    CONTRACT_MISMATCH = "contract_mismatch"  # id now points elsewhere
    MALFORMED = "malformed"  # no id and no contract address


@dataclass
class ReconciliationConfig:
    max_concurrency: int = GlobalConstants.DEFAULT_MAX_CONCURRENCY
    validation_timeout: float = GlobalConstants.DEFAULT_VALIDATION_TIMEOUT
    escalate_after: int = GlobalConstants.DEFAULT_ESCALATE_AFTER
    discover_new: bool = True

    @classmethod
    def from_env(cls) -> "ReconciliationConfig":
        return cls(
            max_concurrency=GlobalConstants.get_max_concurrency(),
            validation_timeout=GlobalConstants.get_validation_timeout(),
            escalate_after=GlobalConstants.get_escalate_after(),
        )


@dataclass
class _Verdict:
    """Outcome of validating one cached entry."""

    entry: CachedEntry
    refreshed: Optional[CachedEntry] = None
    reason: Optional[InvalidationReason] = None
    error: Optional[Exception] = None

    @property
    def is_invalid(self) -> bool:
        return self.reason is not None


class _InvalidEntry(Exception):
    def __init__(self, reason: InvalidationReason, detail: str = ""):
        super().__init__(detail or reason.value)
        self.reason = reason


def sort_entries(entries: List[CachedEntry]) -> List[CachedEntry]:
    """Newest first, ties by ascending id, entries without id last."""
    return sorted(
        entries,
        key=lambda e: (
            -(e.activity.created_at or 0),
            e.activity.id is None,
            e.activity.id or 0,
        ),
    )


class ReconciliationEngine:
    """
    Keeps a LocalRecordStore consistent with a LedgerReader.

    One engine serves one client session. Passes are tagged with the user
    they started for and a generation number; a pass whose user is no
    longer active, or that a newer pass overtook, drops its results.
    """

    def __init__(
        self,
        reader: LedgerReader,
        store: LocalRecordStore,
        config: Optional[ReconciliationConfig] = None,
    ):
        self.reader = reader
        self.store = store
        self.config = config or ReconciliationConfig()
        self.last_summary: Optional[ReconciliationSummary] = None
        self.consecutive_failures = 0
        self._subscribers: List[Subscriber] = []
        self._active_user: Optional[str] = None
        self._generation = 0

    # ---------------------------------------------------------------------
    # Session state
    # ---------------------------------------------------------------------

    @property
    def active_user(self) -> Optional[str]:
        return self._active_user

    def set_active_user(self, user_address: Optional[str]) -> None:
        """Switch the session user; in-flight passes for others are dropped."""
        self._active_user = user_address.lower() if user_address else None

    @property
    def should_escalate(self) -> bool:
        """True once the ledger failed enough passes in a row to report."""
        return self.consecutive_failures >= self.config.escalate_after

    def subscribe(self, callback: Subscriber) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _notify(
        self, user_address: Optional[str], records: List[ActivityRecord]
    ) -> None:
        for callback in list(self._subscribers):
            try:
                callback(user_address, records)
            except Exception as e:
                _logger.error("Subscriber %r failed: %s", callback, e)

    def _store_for(self, user_address: Optional[str]) -> LocalRecordStore:
        return self.store.for_user(user_address)

    def _is_current(self, user_address: Optional[str], generation: int) -> bool:
        return (
            generation == self._generation
            and user_address == self._active_user
        )

    def snapshot(self, user_address: Optional[str] = None) -> List[CachedEntry]:
        """Cached entries for a user, sorted, without touching the ledger."""
        return sort_entries(self._store_for(user_address).get_all())

    # ---------------------------------------------------------------------
    # Reconciliation
    # ---------------------------------------------------------------------

    async def reconcile(
        self, user_address: Optional[str] = None
    ) -> Result[List[ActivityRecord]]:
        """
        Run one reconciliation pass for a user.

        Never raises for ledger failures: an unreachable ledger returns a
        failed Result carrying the cached snapshot.
        """
        user = user_address.lower() if user_address else None
        self._generation += 1
        generation = self._generation
        self._active_user = user
        started_at = time.time()

        store = self._store_for(user)
        summary = ReconciliationSummary(user_address=user)

        # Serve the cache before any ledger call
        cached = store.get_all()
        summary.entries_cached = len(cached)
        snapshot_records = [e.activity for e in sort_entries(cached)]
        self._notify(user, snapshot_records)

        # The ledger count gates everything else
        try:
            count = await asyncio.wait_for(
                self.reader.get_total_activity_count(),
                timeout=self.config.validation_timeout,
            )
        except LEDGER_ERRORS as e:
            return self._fail_open(summary, snapshot_records, e)

        self.consecutive_failures = 0
        summary.ledger_count = count

        # Validate cached entries concurrently
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        verdicts = await asyncio.gather(
            *[
                self._validate_entry(entry, count, user, semaphore)
                for entry in cached
            ]
        )

        invalid: List[_Verdict] = []
        refreshed: List[CachedEntry] = []
        known_ids: Set[int] = set()
        for verdict in verdicts:
            if verdict.is_invalid:
                invalid.append(verdict)
                continue
            if verdict.error is not None:
                key = verdict.entry.key or "?"
                summary.entries_unvalidated += 1
                summary.unvalidated_keys.append(key)
                summary.add_error(
                    ProcessingError(
                        source="validate_entry",
                        message=f"Could not validate {key}: {verdict.error}",
                        severity=ErrorSeverity.WARNING,
                        context={"key": key, "activity_id": verdict.entry.activity.id},
                        exception=verdict.error,
                    )
                )
                if verdict.entry.activity.id:
                    known_ids.add(verdict.entry.activity.id)
                continue
            summary.entries_validated += 1
            refreshed.append(verdict.refreshed)
            known_ids.add(verdict.refreshed.activity.id)

        # Pick up activities registered since the last pass
        discovered: List[CachedEntry] = []
        if self.config.discover_new:
            missing = [i for i in range(1, count + 1) if i not in known_ids]
            discovered = await self._discover(missing, user, semaphore, summary)
            summary.entries_discovered = len(discovered)

        if not self._is_current(user, generation):
            return self._superseded(summary, snapshot_records)

        # Prune in one batch, then write back what changed
        if invalid:
            invalid_keys = {v.entry.key for v in invalid if v.entry.key}
            summary.entries_removed = store.remove_all(
                lambda key, entry: entry.is_malformed or key in invalid_keys
            )
            for verdict in invalid:
                summary.removed.append(
                    {
                        "key": verdict.entry.key,
                        "id": verdict.entry.activity.id,
                        "reason": verdict.reason.value,
                    }
                )
                _logger.info(
                    "Removed cached activity %s (id=%s): %s",
                    verdict.entry.key,
                    verdict.entry.activity.id,
                    verdict.reason.value,
                )

        summary.entries_written = store.write_back(
            refreshed + discovered, started_at
        )

        # Settled list, as stored
        settled = [e.activity for e in sort_entries(store.get_all())]
        self.last_summary = summary
        _logger.debug(
            "Reconciled %d activities for %s (%d removed, %d unvalidated,"
            " %d discovered, %d written)",
            len(settled),
            user,
            summary.entries_removed,
            summary.entries_unvalidated,
            summary.entries_discovered,
            summary.entries_written,
        )
        self._notify(user, settled)

        result: Result[List[ActivityRecord]] = Result.ok(settled)
        for error in summary.errors:
            result.add_error(error)
        return result

    def _fail_open(
        self,
        summary: ReconciliationSummary,
        snapshot_records: List[ActivityRecord],
        exc: Exception,
    ) -> Result[List[ActivityRecord]]:
        self.consecutive_failures += 1
        message = f"Ledger unreachable, serving cached activities: {exc}"
        if self.should_escalate:
            _logger.error(
                "%s (%d consecutive failures)",
                message,
                self.consecutive_failures,
            )
        else:
            _logger.warning(message)

        error = ProcessingError(
            source="ledger_count",
            message=message,
            severity=ErrorSeverity.CRITICAL,
            context={"consecutive_failures": self.consecutive_failures},
            exception=exc,
        )
        summary.add_error(error)
        self.last_summary = summary
        return Result.fail(error, data=snapshot_records)

    def _superseded(
        self,
        summary: ReconciliationSummary,
        snapshot_records: List[ActivityRecord],
    ) -> Result[List[ActivityRecord]]:
        _logger.info(
            "Discarding reconciliation pass for %s: superseded",
            summary.user_address,
        )
        summary.superseded = True
        error = ProcessingError(
            source="superseded",
            message="A newer pass or another user took over",
            severity=ErrorSeverity.WARNING,
            context={"user_address": summary.user_address},
        )
        summary.add_error(error)
        return Result.fail(error, data=snapshot_records)

    async def _validate_entry(
        self,
        entry: CachedEntry,
        count: int,
        user: Optional[str],
        semaphore: asyncio.Semaphore,
    ) -> _Verdict:
        if entry.is_malformed:
            return _Verdict(entry, reason=InvalidationReason.MALFORMED)
        activity_id = entry.activity.id
        if activity_id is not None and not 1 <= activity_id <= count:
            return _Verdict(entry, reason=InvalidationReason.ID_OUT_OF_RANGE)
        address = entry.activity.contract_address
        if address and not is_address(address):
            return _Verdict(entry, reason=InvalidationReason.MALFORMED)

        async with semaphore:
            try:
                refreshed = await asyncio.wait_for(
                    self._check_against_ledger(entry, count, user),
                    timeout=self.config.validation_timeout,
                )
            except _InvalidEntry as e:
                return _Verdict(entry, reason=e.reason)
            except LEDGER_ERRORS as e:
                _logger.warning(
                    "Validation failed for %s, keeping it: %s", entry.key, e
                )
                return _Verdict(entry, error=e)
            except Exception as e:
                _logger.error(
                    "Unexpected error validating %s, keeping it: %s", entry.key, e
                )
                return _Verdict(entry, error=e)
        return _Verdict(entry, refreshed=refreshed)

    async def _check_against_ledger(
        self, entry: CachedEntry, count: int, user: Optional[str]
    ) -> CachedEntry:
        """Verify one entry; raises _InvalidEntry on an explicit negative."""
        activity = entry.activity
        activity_id = activity.id

        if activity.contract_address:
            registered = await self.reader.get_activity_id_for_contract(
                activity.contract_address
            )
            if registered == 0:
                raise _InvalidEntry(InvalidationReason.UNREGISTERED_CONTRACT)
            if activity_id is None:
                if registered > count:
                    raise _InvalidEntry(InvalidationReason.ID_OUT_OF_RANGE)
                activity_id = registered
            elif registered != activity_id:
                raise _InvalidEntry(InvalidationReason.ID_MISMATCH)

        metadata = await self.reader.get_activity_metadata(activity_id)
        if (
            metadata is None
            or not metadata.title
            or not metadata.contract_address
            or metadata.contract_address.lower() == LedgerConstants.ZERO_ADDRESS
        ):
            raise _InvalidEntry(InvalidationReason.EMPTY_METADATA)
        if (
            activity.contract_address
            and metadata.contract_address.lower()
            != activity.contract_address.lower()
        ):
            raise _InvalidEntry(InvalidationReason.CONTRACT_MISMATCH)

        return await self._read_state(metadata, user, entry)

    async def _read_state(
        self,
        metadata: ActivityRecord,
        user: Optional[str],
        base: Optional[CachedEntry] = None,
    ) -> CachedEntry:
        """Build a fresh entry from metadata plus the user's on-chain state."""
        entry = CachedEntry(
            activity=metadata,
            participation=base.participation if base else None,
            status=base.status if base else None,
            round_counters=base.round_counters if base else None,
            local_flags=dict(base.local_flags) if base else {},
        )
        if user:
            address = metadata.contract_address
            kind = metadata.incentive_kind
            status, counters, participation = await asyncio.gather(
                self.reader.get_lifecycle_status(address, kind),
                self.reader.get_round_counters(address, kind),
                self.reader.get_participation(address, user, kind),
            )
            entry.status = status
            entry.round_counters = counters
            entry.participation = participation
        entry.last_validated_at = time.time()
        return entry

    async def _discover(
        self,
        activity_ids: List[int],
        user: Optional[str],
        semaphore: asyncio.Semaphore,
        summary: ReconciliationSummary,
    ) -> List[CachedEntry]:
        async def fetch_one(activity_id: int) -> Optional[CachedEntry]:
            async with semaphore:
                try:
                    return await asyncio.wait_for(
                        self._fetch_new(activity_id, user),
                        timeout=self.config.validation_timeout,
                    )
                except Exception as e:
                    if not isinstance(e, LEDGER_ERRORS):
                        _logger.error(
                            "Unexpected error fetching activity %d: %s",
                            activity_id,
                            e,
                        )
                    summary.add_error(
                        ProcessingError(
                            source="discover_entry",
                            message=f"Could not fetch activity {activity_id}: {e}",
                            severity=ErrorSeverity.WARNING,
                            context={"activity_id": activity_id},
                            exception=e,
                        )
                    )
                    return None

        results = await asyncio.gather(*[fetch_one(i) for i in activity_ids])
        return [entry for entry in results if entry is not None]

    async def _fetch_new(
        self, activity_id: int, user: Optional[str]
    ) -> Optional[CachedEntry]:
        metadata = await self.reader.get_activity_metadata(activity_id)
        if metadata is None or not metadata.title:
            return None
        return await self._read_state(metadata, user)

    # ---------------------------------------------------------------------
    # User-action writes
    # ---------------------------------------------------------------------

    def record_join(
        self,
        user_address: str,
        activity: ActivityRecord,
        participation: Optional[ParticipationRecord] = None,
        written_at: Optional[float] = None,
    ) -> Optional[CachedEntry]:
        """
        Record a confirmed join (or a freshly created activity) locally.

        The activity is cached if it isn't yet. Without an explicit
        participation only ``joined`` is set.
        """
        store = self._store_for(user_address)
        if activity.key is None:
            raise ValueError("Activity needs an id or a contract address")
        if store.get(activity.key) is None:
            store.upsert(CachedEntry(activity=activity))

        if participation is None:
            changes: Dict[str, Any] = {"joined": True}
        else:
            changes = {
                f.name: getattr(participation, f.name)
                for f in fields(ParticipationRecord)
            }
        return store.merge_local_mutation(activity.key, changes, written_at)

    def record_check_in(
        self,
        user_address: str,
        key: str,
        round_index: int,
        written_at: Optional[float] = None,
    ) -> Optional[CachedEntry]:
        """Record a confirmed check-in for the given round."""
        return self._store_for(user_address).merge_local_mutation(
            key,
            {
                "last_check_in_round": CheckInRound.at(round_index),
                "has_checked_in_ever": True,
            },
            written_at,
        )

    async def refresh_participation(
        self, user_address: str, key: str
    ) -> Result[CachedEntry]:
        """Re-read one activity's on-chain state for a user after a mutation."""
        store = self._store_for(user_address)
        entry = store.get(key)
        if entry is None:
            return Result.fail_with_message(
                source="refresh_participation",
                message=f"Activity {key} is not cached",
                context={"key": key},
            )
        if not entry.activity.contract_address:
            return Result.fail_with_message(
                source="refresh_participation",
                message=f"Activity {key} has no contract address yet",
                severity=ErrorSeverity.WARNING,
                context={"key": key},
                data=entry,
            )

        started_at = time.time()
        try:
            refreshed = await asyncio.wait_for(
                self._read_state(entry.activity, user_address.lower(), entry),
                timeout=self.config.validation_timeout,
            )
        except LEDGER_ERRORS as e:
            _logger.warning("Could not refresh %s: %s", key, e)
            return Result.fail_with_message(
                source="refresh_participation",
                message=f"Could not refresh {key}: {e}",
                severity=ErrorSeverity.WARNING,
                context={"key": key},
                exception=e,
                data=entry,
            )

        store.write_back([refreshed], started_at)
        return Result.ok(store.get(key) or refreshed)


class ActivityService(ReconciliationEngine):
    """ReconciliationEngine wired to the configured ledger and cache."""

    @classmethod
    def from_env(
        cls,
        cache_dir: Optional[str] = None,
        rpc_url: Optional[str] = None,
    ) -> "ActivityService":
        reader = Web3LedgerReader(Web3Service.get_instance(rpc_url=rpc_url))
        store = LocalRecordStore(FileBackend(cache_dir))
        return cls(reader, store, ReconciliationConfig.from_env())
