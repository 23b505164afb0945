from __future__ import annotations

import allure

from agent_bridge.admission.rate_limiter import SlidingWindowRateLimiter

pytestmark = [
    allure.epic("Admission"),
    allure.feature("Rate Limiting"),
]


class _Clock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def test_admits_up_to_limit_then_rejects_within_window() -> None:
    clock = _Clock(1_000.0)
    limiter = SlidingWindowRateLimiter(max_requests=2, window_ms=1_000, clock=clock)

    assert limiter.admit("u1") is True
    clock.now += 100
    assert limiter.admit("u1") is True
    clock.now += 100
    assert limiter.admit("u1") is False
    assert limiter.admit("u2") is True


def test_window_slides_and_rejections_leave_no_trace() -> None:
    clock = _Clock(0.0)
    limiter = SlidingWindowRateLimiter(max_requests=1, window_ms=1_000, clock=clock)

    assert limiter.admit("u1") is True
    clock.now = 500
    assert limiter.admit("u1") is False
    clock.now = 1_001
    # The rejected request at t=500 must not extend the window.
    assert limiter.admit("u1") is True


def test_non_positive_limit_disables_check() -> None:
    limiter = SlidingWindowRateLimiter(max_requests=0, window_ms=1_000)

    assert limiter.enabled is False
    assert all(limiter.admit("u1") for _ in range(100))
    assert limiter.tracked_users() == 0


def test_sweep_drops_only_fully_expired_users() -> None:
    clock = _Clock(0.0)
    limiter = SlidingWindowRateLimiter(max_requests=5, window_ms=1_000, clock=clock)
    limiter.admit("old")
    clock.now = 900
    limiter.admit("fresh")
    clock.now = 1_500

    assert limiter.sweep() == 1
    assert limiter.tracked_users() == 1

    limiter.reset()
    assert limiter.tracked_users() == 0


def test_five_per_minute_denies_sixth_until_window_passes() -> None:
    clock = _Clock(0.0)
    limiter = SlidingWindowRateLimiter(max_requests=5, window_ms=60_000, clock=clock)

    for _ in range(5):
        assert limiter.admit("u1") is True
        clock.now += 1_000
    assert limiter.admit("u1") is False

    clock.now = 60_001
    assert limiter.admit("u1") is True
