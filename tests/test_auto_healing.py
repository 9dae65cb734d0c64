"""Tests for the sync auto-healing policy (backoff plus circuit breaker)."""

from datetime import datetime, timedelta

from hypothesis import given, strategies as st

from companion_sync.sync.auto_healing import HealingState, SyncAutoHealingPolicy
from companion_sync.sync.config import AutoHealingConfig


class Clock:
    def __init__(self, start=datetime(2026, 2, 1, 12, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


CONFIG = AutoHealingConfig(
    base_backoff_seconds=30, max_backoff_seconds=600, circuit_failure_threshold=4, circuit_open_seconds=1200
)


def test_fresh_policy_allows_attempts():
    policy = SyncAutoHealingPolicy("canvas", CONFIG, now_fn=Clock())

    assert policy.can_attempt().allowed
    assert policy.state is HealingState.CLOSED


def test_failure_opens_backoff_window():
    clock = Clock()
    policy = SyncAutoHealingPolicy("canvas", CONFIG, now_fn=clock)

    policy.record_failure("HTTP 500")

    decision = policy.can_attempt()
    assert not decision.allowed
    assert decision.reason == "backoff"
    assert policy.state is HealingState.OPEN_BACKOFF

    clock.advance(seconds=30)
    assert policy.can_attempt().allowed


@given(st.integers(min_value=1, max_value=200))
def test_backoff_is_monotonic_and_capped(failures):
    policy = SyncAutoHealingPolicy("canvas", CONFIG, now_fn=Clock())

    current = policy.backoff_for(failures)
    following = policy.backoff_for(failures + 1)

    assert current <= following
    assert following <= timedelta(seconds=CONFIG.max_backoff_seconds)
    assert current >= timedelta(seconds=CONFIG.base_backoff_seconds)


def test_backoff_doubles_from_base():
    policy = SyncAutoHealingPolicy("canvas", CONFIG, now_fn=Clock())

    assert [policy.backoff_for(n).total_seconds() for n in range(1, 7)] == [30, 60, 120, 240, 480, 600]


def test_circuit_trips_at_threshold_and_blocks_past_backoff():
    clock = Clock()
    policy = SyncAutoHealingPolicy("canvas", CONFIG, now_fn=clock)

    for _ in range(4):
        policy.record_failure("timeout")

    state = policy.get_state()
    assert state.state is HealingState.CIRCUIT_OPEN
    assert state.circuit_open_until == clock.now + timedelta(seconds=1200)

    # Backoff after four failures is 240s; the circuit still blocks
    clock.advance(seconds=300)
    decision = policy.can_attempt()
    assert not decision.allowed
    assert decision.reason == "circuit_open"

    clock.advance(seconds=900)
    assert policy.can_attempt().allowed


def test_failures_while_open_do_not_extend_circuit():
    clock = Clock()
    policy = SyncAutoHealingPolicy("canvas", CONFIG, now_fn=clock)
    for _ in range(4):
        policy.record_failure("timeout")
    opened_until = policy.get_state().circuit_open_until

    clock.advance(seconds=60)
    policy.record_failure("timeout")

    assert policy.get_state().circuit_open_until == opened_until


def test_success_resets_everything():
    policy = SyncAutoHealingPolicy("canvas", CONFIG, now_fn=Clock())
    for _ in range(5):
        policy.record_failure("timeout")

    policy.record_success()

    state = policy.get_state()
    assert state.state is HealingState.CLOSED
    assert state.consecutive_failures == 0
    assert state.next_attempt_at is None
    assert state.circuit_open_until is None
    assert state.last_outcome == "success"


def test_skip_only_counts():
    policy = SyncAutoHealingPolicy("canvas", CONFIG, now_fn=Clock())
    policy.record_failure("timeout")
    before = policy.get_state()

    policy.record_skip("backoff")

    after = policy.get_state()
    assert after.skipped_attempts == 1
    assert after.last_skip_reason == "backoff"
    assert after.consecutive_failures == before.consecutive_failures
    assert after.next_attempt_at == before.next_attempt_at
    assert after.to_dict()["state"] == "open_backoff"
