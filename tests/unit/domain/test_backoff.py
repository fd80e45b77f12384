import random

import pytest

from airavat.domain.resilience import RetryPolicy, compute_delay


def test_delays_grow_exponentially_and_cap():
    """Without jitter the delay doubles per attempt until max_delay."""
    policy = RetryPolicy(initial_delay=1.0, backoff_multiplier=2.0, max_delay=30.0, jitter_enabled=False)

    delays = [compute_delay(attempt, policy) for attempt in range(1, 8)]

    assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]
    assert delays == sorted(delays)


def test_constant_delay_with_multiplier_one():
    policy = RetryPolicy(initial_delay=0.5, backoff_multiplier=1.0, jitter_enabled=False)

    assert {compute_delay(attempt, policy) for attempt in range(1, 6)} == {0.5}


def test_jitter_stays_within_bounds():
    """Jitter of 0.5 around a base of 1000 stays within [500, 1500]."""
    policy = RetryPolicy(initial_delay=1000.0, max_delay=5000.0, jitter_enabled=True, jitter_factor=0.5)
    rng = random.Random(7)

    delays = [compute_delay(1, policy, rng) for _ in range(1000)]

    assert all(500.0 <= delay <= 1500.0 for delay in delays)
    assert len(set(delays)) > 1


def test_jitter_never_exceeds_max_delay():
    policy = RetryPolicy(initial_delay=10.0, max_delay=10.0, jitter_factor=1.0)
    rng = random.Random(1)

    assert all(0.0 <= compute_delay(5, policy, rng) <= 10.0 for _ in range(500))


def test_seeded_rng_is_reproducible():
    policy = RetryPolicy()

    first = [compute_delay(n, policy, random.Random(42)) for n in range(1, 5)]
    second = [compute_delay(n, policy, random.Random(42)) for n in range(1, 5)]

    assert first == second


def test_attempt_must_be_positive():
    with pytest.raises(ValueError):
        compute_delay(0, RetryPolicy())


@pytest.mark.parametrize(
    "options",
    [
        {"max_retries": -1},
        {"initial_delay": -0.1},
        {"max_delay": -1},
        {"backoff_multiplier": 0.5},
        {"jitter_factor": 1.5},
        {"total_timeout": 0},
        {"retryable_errors": (42,)},
    ],
)
def test_invalid_policy_is_rejected(options):
    with pytest.raises(ValueError):
        RetryPolicy(**options)


def test_policy_is_immutable():
    policy = RetryPolicy()

    with pytest.raises(AttributeError):
        policy.max_retries = 10
