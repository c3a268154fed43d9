import asyncio
import itertools

import pytest

from peervault_e2e.backoff import BackoffPolicy, poll_with_backoff


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _poll(check, is_complete, clock, **kwargs):
    return asyncio.run(
        poll_with_backoff(check, is_complete, sleep=clock.sleep, clock=clock, **kwargs)
    )


def test_default_intervals_grow_then_cap():
    intervals = list(itertools.islice(BackoffPolicy().intervals(), 8))

    assert intervals == pytest.approx([0.05, 0.075, 0.1125, 0.16875, 0.253125, 0.3796875, 0.5, 0.5])


def test_fixed_policy_never_changes():
    assert list(itertools.islice(BackoffPolicy.fixed(0.2).intervals(), 3)) == [0.2, 0.2, 0.2]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"min_interval_s": -1},
        {"min_interval_s": 1.0, "max_interval_s": 0.5},
        {"multiplier": 0.5},
    ],
)
def test_invalid_policy_rejected(kwargs):
    with pytest.raises(ValueError):
        BackoffPolicy(**kwargs)


def test_success_on_third_check_sleeps_twice():
    clock = FakeClock()
    calls = itertools.count(1)

    async def check():
        return next(calls)

    result = _poll(check, lambda n: n >= 3, clock, timeout_s=10)

    assert result.success
    assert result.value == 3
    assert result.attempts == 3
    assert clock.sleeps == pytest.approx([0.05, 0.075])


def test_immediate_success_does_not_sleep():
    clock = FakeClock()

    async def check():
        return "ready"

    result = _poll(check, bool, clock, timeout_s=1)

    assert result.success
    assert clock.sleeps == []


def test_raising_check_is_retried():
    clock = FakeClock()
    calls = itertools.count(1)

    async def check():
        if next(calls) < 3:
            raise RuntimeError("not yet")
        return True

    result = _poll(check, bool, clock, timeout_s=10)

    assert result.success
    assert result.last_error is None
    assert result.attempts == 3


def test_timeout_returns_last_value():
    clock = FakeClock()

    async def check():
        return "stale"

    result = _poll(check, lambda v: v == "fresh", clock, timeout_s=1.0)

    assert not result.success
    assert result.value == "stale"
    assert result.elapsed_s >= 1.0
    assert max(clock.sleeps) <= 0.5
    assert result.describe_last() == "last value: 'stale'"


def test_timeout_keeps_last_error():
    clock = FakeClock()

    async def check():
        raise RuntimeError("endpoint down")

    result = _poll(check, bool, clock, timeout_s=1.0, policy=BackoffPolicy.fixed(0.25))

    assert not result.success
    assert result.value is None
    assert isinstance(result.last_error, RuntimeError)
    assert "endpoint down" in result.describe_last()
    assert result.attempts == 4
