from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure

from agent_bridge.admission.session_limits import SessionLimits

pytestmark = [
    allure.epic("Admission"),
    allure.feature("Session Limits"),
]

_NOW = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)


def test_turn_limit_rejects_after_max_turns() -> None:
    limits = SessionLimits(max_turns=3, max_duration_ms=0, now=lambda: _NOW)

    assert [limits.check_limits("t1") for _ in range(4)] == [True, True, True, False]
    assert limits.turns("t1") == 4
    assert limits.check_limits("t2") is True


def test_duration_limit_uses_record_created_at() -> None:
    limits = SessionLimits(max_turns=0, max_duration_ms=60_000, now=lambda: _NOW)

    assert limits.check_limits("t1", _NOW - timedelta(seconds=30)) is True
    assert limits.check_limits("t1", _NOW - timedelta(seconds=61)) is False
    assert limits.check_limits("t1", None) is True


def test_naive_created_at_is_treated_as_utc() -> None:
    limits = SessionLimits(max_turns=0, max_duration_ms=60_000, now=lambda: _NOW)
    naive = (_NOW - timedelta(minutes=5)).replace(tzinfo=None)

    assert limits.check_limits("t1", naive) is False


def test_reset_clears_counter_for_one_thread() -> None:
    limits = SessionLimits(max_turns=1, max_duration_ms=0)
    limits.check_limits("t1")
    limits.check_limits("t2")

    limits.reset("t1")

    assert limits.turns("t1") == 0
    assert limits.turns("t2") == 1
    assert limits.check_limits("t1") is True


def test_sweep_forgets_idle_counters() -> None:
    ticks = iter([0.0, 100.0, 200.0])
    limits = SessionLimits(
        max_turns=10,
        max_duration_ms=0,
        counter_ttl_seconds=150,
        clock=lambda: next(ticks),
    )
    limits.check_limits("old")
    limits.check_limits("fresh")

    assert limits.sweep() == 1
    assert limits.turns("old") == 0
    assert limits.turns("fresh") == 1


def test_cold_counter_is_seeded_from_recorded_turns() -> None:
    limits = SessionLimits(max_turns=3, max_duration_ms=0, now=lambda: _NOW)

    assert limits.check_limits("t1", None, 2) is True
    assert limits.check_limits("t1", None, 2) is False
    # A warm counter ignores the record, which lags until the worker finishes a turn.
    assert limits.turns("t1") == 4
    assert limits.check_limits("t2", None, 3) is False
