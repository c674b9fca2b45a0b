"""
Local record store for cached activities and participations.

Layout over the backend:
- ``nebulaflow_activities``: every known activity, shared by all users,
  with its lifecycle status and round counters
- ``nebulaflow_participation:<user>``: one user's participation snapshots
  and optimistic-write flags, keyed by activity key

Every mutating call persists immediately. Reads never fail: a collection
that can't be decoded reads as empty and is logged.
"""

import threading
import time
from dataclasses import fields, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from nebulaflow_toolkit.activities.models import (
    CachedEntry,
    ParticipationRecord,
)
from nebulaflow_toolkit.shared.constants import StorageConstants
from nebulaflow_toolkit.shared.exceptions import StoreCorruptionException
from nebulaflow_toolkit.shared.logging import get_logger
from nebulaflow_toolkit.storage import codec
from nebulaflow_toolkit.storage.backends import StorageBackend

_logger = get_logger(__name__)

_PARTICIPATION_FIELDS = {f.name for f in fields(ParticipationRecord)}


def merge_participation(
    ledger: Optional[ParticipationRecord],
    local: Optional[ParticipationRecord],
    local_flags: Dict[str, float],
    pass_started_at: float,
) -> Tuple[Optional[ParticipationRecord], Dict[str, float]]:
    """
    Fold a ledger participation read into the local one.

    Fields flagged by a local write made after the read started keep their
    local value and stay flagged. Older flags are dropped: the read saw the
    ledger after that write, so the ledger value stands.
    """
    if ledger is None:
        return local, dict(local_flags)

    overrides: Dict[str, Any] = {}
    remaining: Dict[str, float] = {}
    for name, written_at in local_flags.items():
        if written_at >= pass_started_at and local is not None:
            overrides[name] = getattr(local, name)
            remaining[name] = written_at

    merged = replace(ledger, **overrides) if overrides else ledger
    return merged, remaining


def _persisted_view(entry: CachedEntry) -> CachedEntry:
    """Entry without its validation timestamp, for change detection."""
    return replace(entry, last_validated_at=None)


class LocalRecordStore:
    def __init__(
        self,
        backend: StorageBackend,
        user_address: Optional[str] = None,
        _root: Optional["LocalRecordStore"] = None,
    ):
        self.backend = backend
        self.user_address = user_address.lower() if user_address else None
        # Stores scoped to other users share the root's lock and counter
        self._root = _root or self
        self._lock = _root._lock if _root else threading.RLock()
        self._mutations = 0

    @property
    def mutation_count(self) -> int:
        """Persisted writes so far, across every user scope."""
        return self._root._mutations

    def for_user(self, user_address: Optional[str]) -> "LocalRecordStore":
        """Store over the same backend, scoped to another user."""
        return LocalRecordStore(self.backend, user_address, _root=self._root)

    @property
    def participation_key(self) -> Optional[str]:
        if not self.user_address:
            return None
        return f"{StorageConstants.PARTICIPATION_KEY_PREFIX}:{self.user_address}"

    # ---------------------------------------------------------------------
    # Raw collection IO
    # ---------------------------------------------------------------------

    def _read_shared(self) -> List[CachedEntry]:
        key = StorageConstants.ACTIVITIES_KEY
        raw = self.backend.get(key)
        if raw is None:
            return []
        try:
            return codec.decode_shared_collection(raw, key)
        except StoreCorruptionException as e:
            _logger.warning(
                "Discarding unreadable collection %s: %s", e.key, e.message
            )
            return []

    def _read_user(
        self,
    ) -> Dict[str, Tuple[Optional[ParticipationRecord], Dict[str, float]]]:
        key = self.participation_key
        if key is None:
            return {}
        raw = self.backend.get(key)
        if raw is None:
            return {}
        try:
            return codec.decode_user_collection(raw, key)
        except StoreCorruptionException as e:
            _logger.warning(
                "Discarding unreadable collection %s: %s", e.key, e.message
            )
            return {}

    def _read_entries(self) -> Dict[str, CachedEntry]:
        return self._read_entries_and_orphans()[0]

    def _read_entries_and_orphans(self) -> Tuple[Dict[str, CachedEntry], int]:
        """Entries for this user, plus the count of orphaned participations."""
        user_records = self._read_user()
        entries: Dict[str, CachedEntry] = {}
        for entry in self._read_shared():
            key = entry.key
            if key is None:
                # Nothing to key it by: keep it so validation can drop it
                key = f"malformed:{len(entries)}"
            elif key in user_records:
                participation, flags = user_records[key]
                entry.participation = participation
                entry.local_flags = flags
            entries[key] = entry
        orphaned = len(set(user_records) - set(entries))
        return entries, orphaned

    def _write_entries(self, entries: Dict[str, CachedEntry]) -> None:
        shared = [codec.encode_shared_entry(e) for e in entries.values()]
        self.backend.set(
            StorageConstants.ACTIVITIES_KEY, codec.dump_collection(shared)
        )

        if self.participation_key is not None:
            user = {
                key: codec.encode_user_entry(e)
                for key, e in entries.items()
                if e.participation is not None or e.local_flags
            }
            self.backend.set(
                self.participation_key, codec.dump_collection(user)
            )

        self._root._mutations += 1

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------

    def get_all(self) -> List[CachedEntry]:
        with self._lock:
            return list(self._read_entries().values())

    def get(self, key: str) -> Optional[CachedEntry]:
        with self._lock:
            return self._read_entries().get(key.lower())

    def upsert(self, entry: CachedEntry) -> None:
        self.upsert_many([entry])

    def upsert_many(self, entries: List[CachedEntry]) -> int:
        """Insert or replace entries in one write. Returns how many."""
        if not entries:
            return 0
        with self._lock:
            current = self._read_entries()
            for entry in entries:
                if entry.key is None:
                    raise ValueError("Cannot store an entry without id or address")
                current[entry.key] = entry
            self._write_entries(current)
        return len(entries)

    def remove(self, key: str) -> bool:
        return self.remove_all(lambda entry_key, _: entry_key == key.lower()) > 0

    def remove_all(
        self, predicate: Callable[[str, CachedEntry], bool]
    ) -> int:
        """Remove every entry matching predicate(key, entry) in one write."""
        with self._lock:
            current = self._read_entries()
            kept = {k: e for k, e in current.items() if not predicate(k, e)}
            removed = len(current) - len(kept)
            if removed:
                self._write_entries(kept)
        return removed

    def clear(self, include_activities: bool = True) -> None:
        """Drop the user's collection, and the shared one by default."""
        with self._lock:
            if self.participation_key is not None:
                self.backend.remove(self.participation_key)
            if include_activities:
                self.backend.remove(StorageConstants.ACTIVITIES_KEY)
            self._root._mutations += 1

    def merge_local_mutation(
        self,
        key: str,
        changes: Dict[str, Any],
        written_at: Optional[float] = None,
    ) -> Optional[CachedEntry]:
        """
        Apply a user-action write to one participation, field by field.

        Each changed field is flagged with the write time, so a ledger read
        already in flight won't overwrite it. Returns the updated entry, or
        None when the key isn't cached.
        """
        unknown = set(changes) - _PARTICIPATION_FIELDS
        if unknown:
            raise ValueError(f"Unknown participation fields: {sorted(unknown)}")

        written_at = time.time() if written_at is None else written_at
        with self._lock:
            current = self._read_entries()
            entry = current.get(key.lower())
            if entry is None:
                _logger.warning("Local write for uncached activity %s", key)
                return None

            base = entry.participation or ParticipationRecord.empty()
            entry.participation = replace(base, **changes)
            entry.local_flags = {
                **entry.local_flags,
                **{name: written_at for name in changes},
            }
            self._write_entries(current)
            return entry

    def write_back(
        self, refreshed: List[CachedEntry], pass_started_at: float
    ) -> int:
        """
        Write ledger-refreshed entries, keeping newer local writes.

        Entries not stored yet are inserted. Only entries whose content
        changed are written; the return value is how many changed.
        Participations whose activity was pruned, possibly during another
        user's pass, are dropped from this user's collection.
        """
        with self._lock:
            current, orphaned = self._read_entries_and_orphans()
            changed = 0
            for entry in refreshed:
                key = entry.key
                if key is None:
                    continue
                stored = current.get(key)
                id_key = (
                    f"id:{entry.activity.id}" if entry.activity.id else None
                )
                if stored is None and id_key != key and id_key in current:
                    # Locally created record that just learned its address
                    stored = current.pop(id_key)
                merged = entry
                if stored is not None:
                    participation, flags = merge_participation(
                        entry.participation,
                        stored.participation,
                        stored.local_flags,
                        pass_started_at,
                    )
                    merged = replace(
                        entry, participation=participation, local_flags=flags
                    )
                if stored is not None and _persisted_view(
                    merged
                ) == _persisted_view(stored):
                    continue
                current[key] = merged
                changed += 1

            if orphaned:
                _logger.debug(
                    "Dropping %d orphaned participations for %s",
                    orphaned,
                    self.user_address,
                )
            if changed or orphaned:
                self._write_entries(current)
        return changed
