"""Adaptive exponential-backoff polling.

Every "wait until remote state settles" helper in the harness is a
``poll_with_backoff`` call with its own check/predicate pair. Polling starts
fast and backs off towards ``max_interval_s``, so a condition that is already
true is noticed almost immediately while a slow one does not hammer the
remote endpoint.

A check that hangs is not interrupted: ``timeout_s`` bounds the loop, not an
individual in-flight check.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterator, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    min_interval_s: float = 0.05
    max_interval_s: float = 0.5
    multiplier: float = 1.5

    def __post_init__(self) -> None:
        if self.min_interval_s < 0:
            raise ValueError("min_interval_s must be non-negative")
        if self.max_interval_s < self.min_interval_s:
            raise ValueError("max_interval_s must be >= min_interval_s")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    @classmethod
    def fixed(cls, interval_s: float) -> "BackoffPolicy":
        return cls(min_interval_s=interval_s, max_interval_s=interval_s, multiplier=1.0)

    def intervals(self) -> Iterator[float]:
        """Yield sleep intervals: min, min*m, min*m^2, ... clamped at max."""

        current = self.min_interval_s
        while True:
            yield current
            current = min(current * self.multiplier, self.max_interval_s)


@dataclass
class PollResult(Generic[T]):
    success: bool
    value: Optional[T]
    last_error: Optional[BaseException]
    attempts: int
    elapsed_s: float

    def describe_last(self) -> str:
        if self.last_error is not None:
            return f"last error: {type(self.last_error).__name__}: {self.last_error}"
        return f"last value: {self.value!r}"


async def poll_with_backoff(
    check: Callable[[], Awaitable[T]],
    is_complete: Callable[[T], bool],
    *,
    timeout_s: float,
    policy: BackoffPolicy | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    clock: Callable[[], float] | None = None,
) -> PollResult[T]:
    """Run ``check`` until ``is_complete`` accepts its value or time runs out.

    Success is returned as soon as the predicate holds, without a trailing
    sleep. A check that raises is remembered in ``last_error`` and polling
    carries on; only the overall timeout ends the loop with a failed result.
    """

    policy = policy or BackoffPolicy()
    now = clock or asyncio.get_running_loop().time
    started = now()
    intervals = policy.intervals()

    last_value: Optional[T] = None
    last_error: Optional[BaseException] = None
    attempts = 0

    while now() - started < timeout_s:
        attempts += 1
        try:
            value = await check()
        except Exception as exc:  # noqa: BLE001 - transient lookups are retried
            last_error = exc
        else:
            last_value = value
            last_error = None
            if is_complete(value):
                return PollResult(True, value, None, attempts, now() - started)
        await sleep(next(intervals))

    return PollResult(False, last_value, last_error, attempts, now() - started)
