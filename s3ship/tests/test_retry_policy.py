import threading

import pytest

from s3ship.services.retry_policy import RetryPolicy, event_sleep


def test_delays_grow_exponentially_until_cap():
    policy = RetryPolicy(max_attempts=6, base_delay=1.0, multiplier=2.0, max_delay=5.0)
    assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_state_transitions():
    policy = RetryPolicy(max_attempts=3, base_delay=0.5)
    state = policy.start()
    assert (state.attempt, state.next_delay, state.slept) == (1, 0.5, 0.0)
    assert state.can_retry(policy)

    state = state.advance(policy)
    assert (state.attempt, state.next_delay, state.slept) == (2, 1.0, 0.5)

    state = state.advance(policy)
    assert state.attempt == 3 and state.slept == 1.0
    assert not state.can_retry(policy)


def test_single_attempt_policy_never_retries():
    policy = RetryPolicy(max_attempts=1)
    assert not policy.start().can_retry(policy)


@pytest.mark.parametrize("kwargs", [
    {"max_attempts": 0},
    {"base_delay": -1},
    {"base_delay": 0},
    {"max_delay": 0},
    {"multiplier": 0.5},
    {"multiplier": 1.0},
])
def test_invalid_policy(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)


def test_event_sleep_wakes_on_cancel():
    event = threading.Event()
    event.set()
    assert event_sleep(10, event) is True


def test_event_sleep_without_cancel():
    assert event_sleep(0, None) is False
