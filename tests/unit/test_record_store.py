"""
Unit tests for the local record store and its persistence.
"""

import json
from dataclasses import replace

import pytest

from nebulaflow_toolkit.activities.models import (
    CachedEntry,
    CheckInRound,
    LifecycleStatus,
    ParticipationRecord,
    RoundCounters,
    Visibility,
)
from nebulaflow_toolkit.shared.constants import StorageConstants
from nebulaflow_toolkit.storage.backends import FileBackend, MemoryBackend
from nebulaflow_toolkit.storage.record_store import (
    LocalRecordStore,
    merge_participation,
)

BIG_TIMESTAMP = 2**70  # beyond what a JS number keeps exactly


class TestPersistence:
    """Tests for the stored layout and serialization."""

    def test_round_trip_with_big_integers(
        self, store, activity_factory, sample_user_address
    ):
        """Large integers survive as decimal strings."""
        user_store = store.for_user(sample_user_address)
        entry = CachedEntry(
            activity=activity_factory(3, created_at=BIG_TIMESTAMP),
            participation=ParticipationRecord(
                joined=True, last_check_in_round=CheckInRound.at(2**60)
            ),
            status=LifecycleStatus.ACTIVE,
            round_counters=RoundCounters(2, 7),
            last_validated_at=1234.5,
        )
        user_store.upsert(entry)

        loaded = user_store.get(entry.key)
        assert loaded == entry

        raw = json.loads(store.backend.get(StorageConstants.ACTIVITIES_KEY))
        stored = raw["entries"][0]["activity"]
        assert stored["created_at"] == str(BIG_TIMESTAMP)
        assert stored["id"] == "3"

    def test_never_is_stored_as_null(
        self, store, activity_factory, sample_user_address
    ):
        user_store = store.for_user(sample_user_address)
        entry = CachedEntry(
            activity=activity_factory(1),
            participation=ParticipationRecord(joined=True),
        )
        user_store.upsert(entry)

        raw = json.loads(store.backend.get(user_store.participation_key))
        participation = raw["entries"][entry.key]["participation"]
        assert participation["last_check_in_round"] is None
        assert user_store.get(entry.key).participation.last_check_in_round.is_never

    def test_participation_is_per_user(
        self, store, activity_factory, sample_user_address, other_user_address
    ):
        """Activities are shared; participations are scoped to their user."""
        record = activity_factory(1)
        store.for_user(sample_user_address).upsert(
            CachedEntry(
                activity=record, participation=ParticipationRecord(joined=True)
            )
        )

        other = store.for_user(other_user_address).get(record.key)
        assert other is not None
        assert other.participation is None

        anonymous = store.get(record.key)
        assert anonymous.participation is None

    def test_participation_key_lowercases_user(self, store, sample_user_address):
        user_store = store.for_user(sample_user_address)
        assert user_store.participation_key == (
            f"nebulaflow_participation:{sample_user_address.lower()}"
        )

    def test_accepts_plain_integer_fields(self, backend):
        """Older writers stored numbers as JSON integers."""
        backend.set(
            StorageConstants.ACTIVITIES_KEY,
            json.dumps(
                [
                    {
                        "activity": {
                            "id": 4,
                            "contract_address": "0x" + "ab" * 20,
                            "title": "legacy",
                            "created_at": 1700000000,
                        }
                    }
                ]
            ).encode(),
        )
        entries = LocalRecordStore(backend).get_all()
        assert len(entries) == 1
        assert entries[0].activity.id == 4
        assert entries[0].activity.created_at == 1700000000

    def test_reads_web_client_activity_list(self, backend):
        """The web client stores camelCase activities with no envelope."""
        contract = "0x" + "cd" * 20
        backend.set(
            StorageConstants.ACTIVITIES_KEY,
            json.dumps(
                [
                    {
                        "activityContract": contract,
                        "creator": "0x" + "c0" * 20,
                        "title": "每日阅读",
                        "description": "read daily",
                        "createdAt": "1700000000",
                        "isPublic": False,
                        "activityId": 3,
                    },
                    {
                        "activityContract": "0x" + "ef" * 20,
                        "creator": "0x" + "c0" * 20,
                        "title": "no id yet",
                        "description": "",
                        "createdAt": "1700000100",
                        "isPublic": True,
                    },
                ],
                ensure_ascii=False,
            ).encode("utf-8"),
        )

        store = LocalRecordStore(backend)
        record = store.get(contract).activity

        assert len(store.get_all()) == 2
        assert record.id == 3
        assert record.contract_address == contract
        assert record.created_at == 1700000000
        assert record.visibility == Visibility.PRIVATE
        assert record.incentive_kind is None
        assert store.get("0x" + "ef" * 20).activity.id is None


class TestCorruption:
    """Tests for unreadable stored collections."""

    @pytest.mark.parametrize(
        "raw",
        [
            b"{not json",
            b"\xff\xfe",
            b'{"version": 1, "entries": "nope"}',
            b'{"version": 99, "entries": []}',
            b'{"version": 1, "entries": [{"activity": {"id": "seven"}}]}',
            b'{"version": 1, "entries": [{"activity": {"id": true}}]}',
        ],
    )
    def test_corrupt_collection_reads_empty(self, backend, caplog, raw):
        backend.set(StorageConstants.ACTIVITIES_KEY, raw)
        store = LocalRecordStore(backend)
        with caplog.at_level("WARNING"):
            assert store.get_all() == []
        assert "Discarding unreadable collection" in caplog.text

    def test_corrupt_user_collection_keeps_activities(
        self, store, activity_factory, sample_user_address
    ):
        user_store = store.for_user(sample_user_address)
        record = activity_factory(1)
        user_store.upsert(
            CachedEntry(
                activity=record, participation=ParticipationRecord(joined=True)
            )
        )
        store.backend.set(user_store.participation_key, b"garbage")

        entries = user_store.get_all()
        assert [e.key for e in entries] == [record.key]
        assert entries[0].participation is None

    def test_write_after_corruption_recovers(self, backend, activity_factory):
        backend.set(StorageConstants.ACTIVITIES_KEY, b"garbage")
        store = LocalRecordStore(backend)
        store.upsert(CachedEntry(activity=activity_factory(1)))
        assert len(store.get_all()) == 1


class TestMutations:
    """Tests for upsert, removal and mutation counting."""

    def test_upsert_replaces_by_key(self, store, activity_factory):
        record = activity_factory(1, title="old")
        store.upsert(CachedEntry(activity=record))
        store.upsert(CachedEntry(activity=activity_factory(1, title="new")))

        entries = store.get_all()
        assert len(entries) == 1
        assert entries[0].activity.title == "new"

    def test_key_is_case_insensitive(self, store, activity_factory):
        record = activity_factory(1, contract_address="0x" + "AB" * 20)
        store.upsert(CachedEntry(activity=record))
        assert store.get("0x" + "ab" * 20) is not None
        assert store.get("0x" + "AB" * 20) is not None

    def test_entry_without_key_rejected(self, store, activity_factory):
        with pytest.raises(ValueError):
            store.upsert(CachedEntry(activity=activity_factory(None)))

    def test_remove_all_single_write(self, store, activity_factory):
        store.upsert_many(
            [CachedEntry(activity=activity_factory(i)) for i in range(1, 6)]
        )
        before = store.mutation_count

        removed = store.remove_all(lambda key, entry: entry.activity.id > 3)

        assert removed == 2
        assert store.mutation_count == before + 1
        assert sorted(e.activity.id for e in store.get_all()) == [1, 2, 3]

    def test_remove_nothing_writes_nothing(self, store, activity_factory):
        store.upsert(CachedEntry(activity=activity_factory(1)))
        before = store.mutation_count
        assert store.remove_all(lambda key, entry: False) == 0
        assert store.mutation_count == before

    def test_remove(self, store, activity_factory):
        record = activity_factory(1)
        store.upsert(CachedEntry(activity=record))
        assert store.remove(record.key) is True
        assert store.remove(record.key) is False
        assert store.get_all() == []

    def test_mutation_count_shared_across_users(
        self, store, activity_factory, sample_user_address
    ):
        store.for_user(sample_user_address).upsert(
            CachedEntry(activity=activity_factory(1))
        )
        assert store.mutation_count == 1

    def test_clear_user_only(self, store, activity_factory, sample_user_address):
        user_store = store.for_user(sample_user_address)
        user_store.upsert(
            CachedEntry(
                activity=activity_factory(1),
                participation=ParticipationRecord(joined=True),
            )
        )
        user_store.clear(include_activities=False)

        entries = user_store.get_all()
        assert len(entries) == 1
        assert entries[0].participation is None

    def test_clear_everything(self, store, activity_factory):
        store.upsert(CachedEntry(activity=activity_factory(1)))
        store.clear()
        assert store.get_all() == []


class TestLocalMutations:
    """Tests for optimistic user-action writes."""

    def test_merge_local_mutation_flags_fields(
        self, store, activity_factory, sample_user_address
    ):
        user_store = store.for_user(sample_user_address)
        record = activity_factory(1)
        user_store.upsert(CachedEntry(activity=record))

        entry = user_store.merge_local_mutation(
            record.key, {"joined": True}, written_at=100.0
        )

        assert entry.participation.joined is True
        assert entry.local_flags == {"joined": 100.0}
        assert entry.pending_since == 100.0
        assert user_store.get(record.key).local_flags == {"joined": 100.0}

    def test_merge_local_mutation_uncached(self, store, sample_user_address):
        user_store = store.for_user(sample_user_address)
        assert user_store.merge_local_mutation("0xabc", {"joined": True}) is None

    def test_merge_local_mutation_unknown_field(
        self, store, activity_factory, sample_user_address
    ):
        user_store = store.for_user(sample_user_address)
        record = activity_factory(1)
        user_store.upsert(CachedEntry(activity=record))
        with pytest.raises(ValueError):
            user_store.merge_local_mutation(record.key, {"bogus": 1})


class TestMergeParticipation:
    """Tests for the field-precedence merge."""

    def test_newer_local_field_wins(self):
        ledger = ParticipationRecord(joined=False)
        local = ParticipationRecord(joined=True)
        merged, flags = merge_participation(
            ledger, local, {"joined": 200.0}, pass_started_at=100.0
        )
        assert merged.joined is True
        assert flags == {"joined": 200.0}

    def test_older_local_field_superseded(self):
        ledger = ParticipationRecord(joined=False)
        local = ParticipationRecord(joined=True)
        merged, flags = merge_participation(
            ledger, local, {"joined": 50.0}, pass_started_at=100.0
        )
        assert merged.joined is False
        assert flags == {}

    def test_unflagged_fields_follow_ledger(self):
        ledger = ParticipationRecord(joined=True, eliminated=True)
        local = ParticipationRecord(joined=True, eliminated=False)
        merged, _ = merge_participation(
            ledger, local, {"joined": 200.0}, pass_started_at=100.0
        )
        assert merged.eliminated is True

    def test_no_ledger_read_keeps_local(self):
        local = ParticipationRecord(joined=True)
        merged, flags = merge_participation(None, local, {"joined": 1.0}, 100.0)
        assert merged is local
        assert flags == {"joined": 1.0}


class TestWriteBack:
    def test_unchanged_entries_not_written(self, store, activity_factory):
        entry = CachedEntry(activity=activity_factory(1), last_validated_at=1.0)
        store.upsert(entry)
        before = store.mutation_count

        refreshed = CachedEntry(activity=activity_factory(1), last_validated_at=2.0)
        assert store.write_back([refreshed], pass_started_at=0.0) == 0
        assert store.mutation_count == before

    def test_id_only_entry_rekeyed_by_address(
        self, store, activity_factory, sample_user_address
    ):
        """A locally created record keyed by id moves to its contract key."""
        user_store = store.for_user(sample_user_address)
        pending = replace(activity_factory(2), contract_address=None)
        user_store.upsert(
            CachedEntry(
                activity=pending, participation=ParticipationRecord(joined=True)
            )
        )
        assert pending.key == "id:2"

        resolved = CachedEntry(activity=activity_factory(2))
        assert user_store.write_back([resolved], pass_started_at=0.0) == 1

        keys = [e.key for e in user_store.get_all()]
        assert keys == [resolved.key]


class TestFileBackend:
    """Tests for the file-per-key backend."""

    def test_set_get_remove(self, tmp_path):
        backend = FileBackend(tmp_path / "cache")
        assert backend.get("k") is None
        backend.set("k", b"value")
        assert backend.get("k") == b"value"
        backend.remove("k")
        assert backend.get("k") is None
        backend.remove("k")  # no-op

    def test_file_names_are_hashed(self, tmp_path, sample_user_address):
        backend = FileBackend(tmp_path)
        backend.set(f"nebulaflow_participation:{sample_user_address}", b"x")
        names = [p.name for p in tmp_path.iterdir()]
        assert len(names) == 1
        assert names[0].endswith(".cache")
        assert sample_user_address.lower() not in names[0].lower()

    def test_no_temp_files_left(self, tmp_path):
        backend = FileBackend(tmp_path)
        backend.set("a", b"1")
        backend.set("a", b"2")
        assert [p.suffix for p in tmp_path.iterdir()] == [".cache"]

    def test_clear(self, tmp_path):
        backend = FileBackend(tmp_path)
        backend.set("a", b"1")
        backend.set("b", b"2")
        backend.clear()
        assert list(tmp_path.iterdir()) == []

    def test_store_over_files(self, tmp_path, activity_factory):
        record = activity_factory(1)
        LocalRecordStore(FileBackend(tmp_path)).upsert(CachedEntry(activity=record))
        # A fresh store instance sees what the previous one wrote
        reloaded = LocalRecordStore(FileBackend(tmp_path)).get(record.key)
        assert reloaded.activity == record


class TestMemoryBackend:
    def test_copies_initial_data(self):
        initial = {"k": b"v"}
        backend = MemoryBackend(initial)
        backend.remove("k")
        assert "k" in initial
        assert "k" not in backend
