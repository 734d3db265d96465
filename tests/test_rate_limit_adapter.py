"""Unit tests for the in-memory rate limiter adapter.

The in-memory backend shares its semantics with the Redis backend, so these
tests pin down the admission arithmetic itself.
"""

import threading

import pytest

from rategate.adapters.rate_limit.in_memory import InMemoryRateLimiter
from rategate.adapters.rate_limit.registry import GroupRegistry


def test_login_scenario_counts_down_then_rejects(limiter: InMemoryRateLimiter) -> None:
    assert [limiter.admit("u1", "login", 1) for _ in range(3)] == [2, 1, 0]
    assert limiter.admit("u1", "login", 1) == -1


def test_capacity_returns_after_window_elapses(limiter: InMemoryRateLimiter, fake_time) -> None:
    for _ in range(4):
        limiter.admit("u1", "login", 1)

    fake_time.advance(1.1)
    assert limiter.admit("u1", "login", 1) == 2


def test_events_inside_window_are_still_counted(limiter: InMemoryRateLimiter, fake_time) -> None:
    limiter.admit("u1", "login", 1)
    fake_time.advance(0.5)
    limiter.admit("u1", "login", 1)
    fake_time.advance(0.6)

    # The first event left the window, the second has not.
    assert limiter.admit("u1", "login", 0) == 2


def test_weight_zero_reads_without_consuming(limiter: InMemoryRateLimiter) -> None:
    limiter.admit("u1", "login", 1)
    limiter.admit("u1", "login", 1)

    assert limiter.admit("u1", "login", 0) == 1
    assert limiter.admit("u1", "login", 0) == 1
    assert limiter.admit("u1", "login", 1) == 0


def test_weighted_admission_counts_every_unit(limiter: InMemoryRateLimiter) -> None:
    assert limiter.admit("u1", "login", 2) == 1
    assert limiter.admit("u1", "login", 2) == -1


def test_cumulative_weight_within_max_never_goes_negative(registry: GroupRegistry, fake_time) -> None:
    registry.register_group("withdraw", 10, 60)
    limiter = InMemoryRateLimiter(registry, clock=fake_time.time)

    results = [limiter.admit("acct", "withdraw", w) for w in (3, 1, 4, 2)]
    assert results == [7, 6, 2, 0]
    assert all(r >= 0 for r in results)
    assert limiter.admit("acct", "withdraw", 1) < 0


def test_weight_above_max_short_circuits_without_recording(limiter: InMemoryRateLimiter) -> None:
    assert limiter.admit("u1", "login", 5) == -2
    # Nothing was recorded by the oversized attempt.
    assert limiter.admit("u1", "login", 0) == 3


def test_unregistered_group_rejects_everything(limiter: InMemoryRateLimiter) -> None:
    assert limiter.admit("u1", "unknown", 1) == -1
    assert limiter.admit("u1", "unknown", 3) == -3
    assert limiter.admit("u1", "unknown", 0) == 0


def test_over_budget_usage_drains_after_window(limiter: InMemoryRateLimiter, fake_time) -> None:
    for _ in range(6):
        limiter.admit("u1", "login", 1)
    assert limiter.admit("u1", "login", 0) == -3

    fake_time.advance(1.5)
    assert limiter.admit("u1", "login", 0) == 3


def test_clear_resets_usage(limiter: InMemoryRateLimiter) -> None:
    for _ in range(5):
        limiter.admit("u1", "login", 1)

    limiter.clear("u1", "login")
    assert limiter.admit("u1", "login", 1) == 2


def test_isolated_by_key_and_group(limiter: InMemoryRateLimiter, registry: GroupRegistry) -> None:
    registry.register_group("search", 3, 1)
    for _ in range(3):
        limiter.admit("u1", "login", 1)

    assert limiter.admit("u2", "login", 1) == 2
    assert limiter.admit("u1", "search", 1) == 2


def test_policy_update_applies_to_next_admission(limiter: InMemoryRateLimiter, registry: GroupRegistry) -> None:
    limiter.admit("u1", "login", 1)
    registry.register_group("login", 10, 1)

    assert limiter.admit("u1", "login", 1) == 8


def test_negative_weight_rejected(limiter: InMemoryRateLimiter) -> None:
    with pytest.raises(ValueError):
        limiter.admit("u1", "login", -1)


def test_concurrent_admissions_never_exceed_capacity(registry: GroupRegistry, fake_time) -> None:
    registry.register_group("burst", 50, 60)
    limiter = InMemoryRateLimiter(registry, clock=fake_time.time)
    results: list[int] = []
    lock = threading.Lock()

    def worker() -> None:
        for _ in range(20):
            remaining = limiter.admit("shared", "burst", 1)
            with lock:
                results.append(remaining)

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    # 100 attempts against a budget of 50: exactly 50 fit, and every
    # post-batch count is distinct.
    assert sum(1 for r in results if r >= 0) == 50
    assert sorted(results) == list(range(-50, 50))
