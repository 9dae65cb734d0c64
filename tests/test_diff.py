"""Property-based tests for the change-detection diff engine."""

from dataclasses import dataclass
from typing import Optional

from hypothesis import given, strategies as st

from companion_sync.sync.diff import diff_records, summarize


@dataclass
class Stored:
    key: str
    value: int
    owner: Optional[str]


@dataclass
class Remote:
    key: str
    value: Optional[int]


def run_diff(existing, incoming, owner="canvas"):
    return diff_records(
        existing,
        incoming,
        existing_key=lambda record: record.key,
        incoming_key=lambda record: record.key,
        is_owned=lambda record: record.owner == owner,
        equals=lambda record, remote: record.value == remote.value,
        is_valid=lambda remote: remote.value is not None,
    )


def apply_diff(existing, diff, owner="canvas"):
    """Apply a diff to an in-memory list, mimicking what the bridges do."""
    deleted = {id(record) for record in diff.to_delete}
    result = [record for record in existing if id(record) not in deleted]
    for record, remote in diff.to_update:
        record.value = remote.value
    for remote in diff.to_create:
        result.append(Stored(remote.key, remote.value, owner))
    return result


keys = st.text(alphabet="abcdef", min_size=1, max_size=3)
stored_records = st.builds(Stored, keys, st.integers(0, 5), st.sampled_from(["canvas", "teams", None]))
remote_records = st.builds(Remote, keys, st.one_of(st.none(), st.integers(0, 5)))


def test_classifies_create_update_delete_and_unchanged():
    existing = [
        Stored("a", 1, "canvas"),
        Stored("b", 2, "canvas"),
        Stored("c", 3, "canvas"),
    ]
    incoming = [Remote("a", 1), Remote("b", 5), Remote("d", 4)]

    diff = run_diff(existing, incoming)

    assert [remote.key for remote in diff.to_create] == ["d"]
    assert [(record.key, remote.value) for record, remote in diff.to_update] == [("b", 5)]
    assert [record.key for record in diff.to_delete] == ["c"]
    assert diff.unchanged == 1
    assert summarize(diff) == {"create": 1, "update": 1, "delete": 1, "skipped": 0, "unchanged": 1}


def test_invalid_incoming_is_skipped_but_still_protects_existing():
    existing = [Stored("a", 1, "canvas"), Stored("b", 1, "canvas")]
    incoming = [Remote("a", None), Remote("c", None)]

    diff = run_diff(existing, incoming)

    assert len(diff.skipped) == 2
    assert diff.to_create == []
    assert diff.to_update == []
    assert [record.key for record in diff.to_delete] == ["b"]


def test_invalid_incoming_does_not_shadow_a_valid_duplicate():
    diff = run_diff([], [Remote("a", None), Remote("a", 2)])

    assert len(diff.skipped) == 1
    assert [remote.value for remote in diff.to_create] == [2]


def test_first_incoming_duplicate_wins():
    diff = run_diff([], [Remote("a", 1), Remote("a", 2)])

    assert [remote.value for remote in diff.to_create] == [1]


def test_duplicate_owned_records_are_pruned():
    first = Stored("a", 1, "canvas")
    second = Stored("a", 1, "canvas")

    diff = run_diff([first, second], [Remote("a", 1)])

    assert diff.unchanged == 1
    assert diff.to_delete == [second]


def test_empty_incoming_deletes_every_owned_record():
    existing = [Stored("a", 1, "canvas"), Stored("b", 1, None), Stored("c", 1, "teams")]

    diff = run_diff(existing, [])

    assert [record.key for record in diff.to_delete] == ["a"]
    assert not diff.is_empty


@given(st.lists(stored_records, max_size=12), st.lists(remote_records, max_size=12))
def test_ownership_isolation(existing, incoming):
    """Records not owned by the integration are never updated or deleted."""
    diff = run_diff(existing, incoming)

    touched = [record for record, _ in diff.to_update] + diff.to_delete
    assert all(record.owner == "canvas" for record in touched)


@given(st.lists(stored_records, max_size=12), st.lists(remote_records, max_size=12))
def test_diff_is_idempotent(existing, incoming):
    """Applying a diff and diffing again against the same input yields no changes."""
    diff = run_diff(existing, incoming)
    after = apply_diff(existing, diff)

    second = run_diff(after, incoming)

    assert second.is_empty
    assert len(second.skipped) == len(diff.skipped)
