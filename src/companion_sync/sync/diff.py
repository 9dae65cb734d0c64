"""Change detection between locally owned records and a fresh remote fetch."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Hashable, Iterable, List, Optional, Tuple, TypeVar

E = TypeVar("E")
R = TypeVar("R")


@dataclass
class RecordDiff(Generic[E, R]):
    """
    Result of diffing existing records against incoming ones.

    Attributes:
        to_create: Incoming records with no owned counterpart
        to_update: (existing, incoming) pairs whose fields differ
        to_delete: Owned existing records absent from the incoming set
        skipped: Incoming records that failed validation
        unchanged: Number of matches that needed no write
    """
    to_create: List[R] = field(default_factory=list)
    to_update: List[Tuple[E, R]] = field(default_factory=list)
    to_delete: List[E] = field(default_factory=list)
    skipped: List[R] = field(default_factory=list)
    unchanged: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.to_create or self.to_update or self.to_delete)


def diff_records(existing: Iterable[E],
                 incoming: Iterable[R],
                 *,
                 existing_key: Callable[[E], Hashable],
                 incoming_key: Callable[[R], Hashable],
                 is_owned: Callable[[E], bool],
                 equals: Callable[[E, R], bool],
                 is_valid: Optional[Callable[[R], bool]] = None) -> RecordDiff[E, R]:
    """
    Compute create, update and delete sets for one integration.

    Only existing records passing ``is_owned`` take part; everything else is
    invisible to the diff and can never be updated or deleted. Incoming
    records failing ``is_valid`` are reported in ``skipped``; they are
    neither created nor updated, but their key still protects a matching
    owned record from deletion. When several incoming
    records share a key, the first one wins; when several owned records
    share a key, all but the first are deleted.

    Args:
        existing: Records currently in the store
        incoming: Records fetched from the remote source
        existing_key: Identity key of a stored record
        incoming_key: Identity key of a remote record
        is_owned: Ownership test for stored records
        equals: True when a stored record already reflects the remote one
        is_valid: Optional validity test for remote records

    Returns:
        RecordDiff with the computed sets
    """
    owned: Dict[Hashable, E] = {}
    duplicates: List[E] = []
    for record in existing:
        if not is_owned(record):
            continue
        key = existing_key(record)
        if key in owned:
            duplicates.append(record)
        else:
            owned[key] = record

    result: RecordDiff[E, R] = RecordDiff()
    seen = set()
    # Keys of invalid records: still present remotely, so their owned record stays
    present = set()

    for record in incoming:
        key = incoming_key(record)
        if is_valid is not None and not is_valid(record):
            present.add(key)
            result.skipped.append(record)
            continue

        if key in seen:
            continue
        seen.add(key)

        match = owned.get(key)
        if match is None:
            result.to_create.append(record)
        elif equals(match, record):
            result.unchanged += 1
        else:
            result.to_update.append((match, record))

    # Extra owned copies of one key are always stale
    result.to_delete = [record for key, record in owned.items() if key not in seen and key not in present]
    result.to_delete.extend(duplicates)
    return result


def summarize(diff: RecordDiff[Any, Any]) -> Dict[str, int]:
    return {
        "create": len(diff.to_create),
        "update": len(diff.to_update),
        "delete": len(diff.to_delete),
        "skipped": len(diff.skipped),
        "unchanged": diff.unchanged,
    }
