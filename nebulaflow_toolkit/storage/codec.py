"""
JSON codec for cached activity records.

Integers that may exceed 2**53 (ids, timestamps, round counters) are written
as decimal strings so the cache stays readable by JavaScript clients sharing
the same storage. Decoders accept plain JSON integers as well.

Any decoding problem raises StoreCorruptionException.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from nebulaflow_toolkit.activities.models import (
    ActivityRecord,
    CachedEntry,
    CheckInRound,
    IncentiveKind,
    LifecycleStatus,
    ParticipationRecord,
    RoundCounters,
    Visibility,
)
from nebulaflow_toolkit.shared.constants import StorageConstants
from nebulaflow_toolkit.shared.exceptions import StoreCorruptionException

_PARTICIPATION_FLAGS = (
    "joined",
    "eliminated",
    "reward_claimed",
    "is_winner",
    "has_checked_in_ever",
    "is_completed",
)


def _int_to_wire(value: Optional[int]) -> Optional[str]:
    return None if value is None else str(int(value))


def _int_from_wire(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    # bool is an int subclass, but never a valid counter
    if isinstance(value, bool):
        raise StoreCorruptionException(f"{name}: expected integer, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip(), 10)
        except ValueError:
            pass
    raise StoreCorruptionException(f"{name}: not an integer: {value!r}")


def _require_dict(value: Any, name: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise StoreCorruptionException(
            f"{name}: expected object, got {type(value).__name__}"
        )
    return value


# =============================================================================
# ENCODERS
# =============================================================================


def encode_activity(record: ActivityRecord) -> Dict[str, Any]:
    return {
        "id": _int_to_wire(record.id),
        "contract_address": record.contract_address,
        "creator_address": record.creator_address,
        "creator_display_name": record.creator_display_name,
        "title": record.title,
        "description": record.description,
        "created_at": _int_to_wire(record.created_at),
        "visibility": record.visibility.value,
        "incentive_kind": (
            record.incentive_kind.value
            if record.incentive_kind is not None
            else None
        ),
    }


def encode_participation(record: ParticipationRecord) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        name: getattr(record, name) for name in _PARTICIPATION_FLAGS
    }
    data["last_check_in_round"] = _int_to_wire(
        record.last_check_in_round.to_wire()
    )
    return data


def encode_shared_entry(entry: CachedEntry) -> Dict[str, Any]:
    """Fields of an entry shared by every user (activity-level state)."""
    counters = entry.round_counters
    return {
        "activity": encode_activity(entry.activity),
        "status": entry.status.value if entry.status is not None else None,
        "round_counters": (
            {
                "current_round": _int_to_wire(counters.current_round),
                "total_rounds": _int_to_wire(counters.total_rounds),
            }
            if counters is not None
            else None
        ),
        "last_validated_at": entry.last_validated_at,
    }


def encode_user_entry(entry: CachedEntry) -> Dict[str, Any]:
    """Fields of an entry scoped to one user."""
    return {
        "participation": (
            encode_participation(entry.participation)
            if entry.participation is not None
            else None
        ),
        "local_flags": dict(entry.local_flags),
    }


def dump_collection(entries: Any) -> bytes:
    return json.dumps(
        {"version": StorageConstants.SCHEMA_VERSION, "entries": entries},
        ensure_ascii=False,
        sort_keys=True,
    ).encode("utf-8")


# =============================================================================
# DECODERS
# =============================================================================


def decode_activity(data: Any) -> ActivityRecord:
    data = _require_dict(data, "activity")
    try:
        visibility = Visibility(data.get("visibility", "public"))
        kind_value = _int_from_wire(
            data.get("incentive_kind"), "incentive_kind"
        )
        incentive_kind = (
            IncentiveKind(kind_value) if kind_value is not None else None
        )
    except ValueError as e:
        raise StoreCorruptionException(f"activity: {e}") from e

    return ActivityRecord(
        id=_int_from_wire(data.get("id"), "id"),
        contract_address=data.get("contract_address") or None,
        creator_address=data.get("creator_address") or "",
        creator_display_name=data.get("creator_display_name") or "",
        title=data.get("title") or "",
        description=data.get("description") or "",
        created_at=_int_from_wire(data.get("created_at"), "created_at") or 0,
        visibility=visibility,
        incentive_kind=incentive_kind,
    )


def decode_client_activity(data: Dict[str, Any]) -> ActivityRecord:
    """Decode the camelCase activity objects older web clients stored."""
    try:
        visibility = (
            Visibility.PUBLIC if data.get("isPublic", True) else Visibility.PRIVATE
        )
        kind_value = _int_from_wire(data.get("incentiveType"), "incentiveType")
        incentive_kind = (
            IncentiveKind(kind_value) if kind_value is not None else None
        )
    except ValueError as e:
        raise StoreCorruptionException(f"activity: {e}") from e

    return ActivityRecord(
        id=_int_from_wire(data.get("activityId"), "activityId"),
        contract_address=data.get("activityContract") or None,
        creator_address=data.get("creator") or "",
        creator_display_name=data.get("creatorName") or "",
        title=data.get("title") or "",
        description=data.get("description") or "",
        created_at=_int_from_wire(data.get("createdAt"), "createdAt") or 0,
        visibility=visibility,
        incentive_kind=incentive_kind,
    )


def decode_participation(data: Any) -> ParticipationRecord:
    data = _require_dict(data, "participation")
    last = _int_from_wire(
        data.get("last_check_in_round"), "last_check_in_round"
    )
    flags = {name: bool(data.get(name, False)) for name in _PARTICIPATION_FLAGS}
    return ParticipationRecord(
        last_check_in_round=(
            CheckInRound.never() if last is None else CheckInRound.from_wire(last)
        ),
        **flags,
    )


def decode_shared_entry(data: Any) -> CachedEntry:
    data = _require_dict(data, "entry")
    if "activity" not in data and "activityContract" in data:
        return CachedEntry(activity=decode_client_activity(data))
    activity = decode_activity(data.get("activity"))

    status_value = _int_from_wire(data.get("status"), "status")
    try:
        status = (
            LifecycleStatus(status_value) if status_value is not None else None
        )
    except ValueError as e:
        raise StoreCorruptionException(f"status: {e}") from e

    counters = None
    if data.get("round_counters") is not None:
        raw_counters = _require_dict(data["round_counters"], "round_counters")
        counters = RoundCounters(
            current_round=_int_from_wire(
                raw_counters.get("current_round"), "current_round"
            ),
            total_rounds=_int_from_wire(
                raw_counters.get("total_rounds"), "total_rounds"
            ),
        )

    validated_at = data.get("last_validated_at")
    if validated_at is not None and not isinstance(validated_at, (int, float)):
        raise StoreCorruptionException(
            f"last_validated_at: not a number: {validated_at!r}"
        )

    return CachedEntry(
        activity=activity,
        status=status,
        round_counters=counters,
        last_validated_at=validated_at,
    )


def decode_user_entry(
    data: Any,
) -> Tuple[Optional[ParticipationRecord], Dict[str, float]]:
    data = _require_dict(data, "user entry")
    participation = (
        decode_participation(data["participation"])
        if data.get("participation") is not None
        else None
    )
    raw_flags = _require_dict(data.get("local_flags") or {}, "local_flags")
    try:
        flags = {str(name): float(at) for name, at in raw_flags.items()}
    except (TypeError, ValueError) as e:
        raise StoreCorruptionException(f"local_flags: {e}") from e
    return participation, flags


def load_collection(raw: bytes, key: str) -> Any:
    """Parse a stored collection envelope and return its entries."""
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise StoreCorruptionException(f"Invalid JSON: {e}", key=key) from e

    # Older web clients stored a bare list of activity objects
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict) or "entries" not in payload:
        raise StoreCorruptionException("Missing entries envelope", key=key)
    version = payload.get("version")
    if version != StorageConstants.SCHEMA_VERSION:
        raise StoreCorruptionException(
            f"Unsupported schema version {version!r}", key=key
        )
    return payload["entries"]


def decode_shared_collection(raw: bytes, key: str) -> List[CachedEntry]:
    entries = load_collection(raw, key)
    if not isinstance(entries, list):
        raise StoreCorruptionException("Expected a list of entries", key=key)
    try:
        return [decode_shared_entry(item) for item in entries]
    except StoreCorruptionException as e:
        raise StoreCorruptionException(e.message, key=key) from e


def decode_user_collection(
    raw: bytes, key: str
) -> Dict[str, Tuple[Optional[ParticipationRecord], Dict[str, float]]]:
    entries = load_collection(raw, key)
    if not isinstance(entries, dict):
        raise StoreCorruptionException("Expected a mapping of entries", key=key)
    try:
        return {
            str(entry_key): decode_user_entry(item)
            for entry_key, item in entries.items()
        }
    except StoreCorruptionException as e:
        raise StoreCorruptionException(e.message, key=key) from e
