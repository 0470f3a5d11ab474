"""Bounded exponential backoff shared by every polling and retried call.

One routine, parameterized by a :class:`BackoffPolicy`, drives provider job
polling, staging status polling, the read-after-write lag check and the
storage-URL back-fill writes. The delay before attempt ``n + 1`` is
``min(initial_delay * multiplier ** n, max_delay)``; no sleep follows the
final attempt, so the total time spent sleeping never exceeds
``max_attempts * max_delay``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import Any, TypeVar

from .errors import AttemptTimeoutError, PollCancelledError, PollTimeoutError
from .logging import jlog

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


class _NotReady:
    __slots__ = ()

    def __repr__(self) -> str:
        return "NOT_READY"


NOT_READY: Any = _NotReady()
"""Sentinel returned by a poll callback while the awaited state is not reached."""


@dataclass(frozen=True)
class BackoffPolicy:
    max_attempts: int
    initial_delay: float
    max_delay: float
    multiplier: float = 2.0
    per_attempt_timeout: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0 or self.max_delay < self.initial_delay:
            raise ValueError("delays must satisfy 0 <= initial_delay <= max_delay")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    @classmethod
    def constant(cls, max_attempts: int, delay: float, **kw: Any) -> "BackoffPolicy":
        """A policy that waits the same ``delay`` between every attempt."""

        return cls(max_attempts=max_attempts, initial_delay=delay, max_delay=delay, multiplier=1.0, **kw)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the zero-based ``attempt`` failed."""

        return min(self.initial_delay * (self.multiplier**attempt), self.max_delay)

    def delays(self) -> Iterator[float]:
        """Every delay the policy can produce, in order (``max_attempts - 1`` values)."""

        for attempt in range(self.max_attempts - 1):
            yield self.delay_for(attempt)

    def worst_case_sleep(self) -> float:
        return sum(self.delays())


def _check_cancel(cancel: asyncio.Event | None, label: str) -> None:
    if cancel is not None and cancel.is_set():
        raise PollCancelledError(f"{label}: cancelled")


async def _attempt(fn: Callable[[], Awaitable[T]], policy: BackoffPolicy, label: str) -> T:
    if policy.per_attempt_timeout is None:
        return await fn()
    task = asyncio.ensure_future(fn())
    try:
        done, _ = await asyncio.wait({task}, timeout=policy.per_attempt_timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise
    if not done:
        task.cancel()
        raise AttemptTimeoutError(label, policy.per_attempt_timeout)
    return task.result()


async def poll(
    fn: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    *,
    label: str,
    retry_on: tuple[type[BaseException], ...] = (),
    cancel: asyncio.Event | None = None,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Call ``fn`` until it returns something other than :data:`NOT_READY`.

    Args:
        fn: Zero-argument coroutine function; returns :data:`NOT_READY` while
            the awaited state has not been reached.
        policy: Attempt budget and delay schedule.
        label: Identifies the loop in logs and in the timeout error.
        retry_on: Exception types treated as a not-ready answer instead of
            propagating.
        cancel: Optional event checked before every attempt and every sleep.
            An attempt running past ``policy.per_attempt_timeout`` is
            abandoned and counted as not ready.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        The first ready value produced by ``fn``.

    Raises:
        PollTimeoutError: ``max_attempts`` calls all came back not ready.
        PollCancelledError: ``cancel`` was set.
    """

    for attempt in range(policy.max_attempts):
        _check_cancel(cancel, label)
        try:
            result = await _attempt(fn, policy, label)
        except AttemptTimeoutError:
            jlog(
                "warning",
                event="poll_attempt_timeout",
                label=label,
                attempt=attempt + 1,
                timeout_s=policy.per_attempt_timeout,
            )
            result = NOT_READY
        except retry_on as exc:
            jlog("warning", event="poll_attempt_error", label=label, attempt=attempt + 1, error=str(exc))
            result = NOT_READY
        if result is not NOT_READY:
            if attempt:
                jlog("info", event="poll_ready", label=label, attempts=attempt + 1)
            return result
        if attempt + 1 >= policy.max_attempts:
            break
        delay = policy.delay_for(attempt)
        jlog("debug", event="poll_backoff", label=label, attempt=attempt + 1, delay_s=round(delay, 3))
        _check_cancel(cancel, label)
        await sleep(delay)
    jlog("warning", event="poll_exhausted", label=label, attempts=policy.max_attempts)
    raise PollTimeoutError(label, policy.max_attempts)


async def retry(
    fn: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    *,
    label: str,
    retry_on: tuple[type[BaseException], ...],
    cancel: asyncio.Event | None = None,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Call ``fn`` until it succeeds, re-raising its last error once the budget is spent.

    An attempt running past ``policy.per_attempt_timeout`` raises
    :class:`AttemptTimeoutError`, which is retried only when listed in ``retry_on``.
    """

    for attempt in range(policy.max_attempts):
        _check_cancel(cancel, label)
        try:
            return await _attempt(fn, policy, label)
        except retry_on as exc:
            if attempt + 1 >= policy.max_attempts:
                jlog("error", event="retry_exhausted", label=label, attempts=attempt + 1, error=str(exc))
                raise
            delay = policy.delay_for(attempt)
            jlog(
                "info",
                event="retry_backoff",
                label=label,
                attempt=attempt + 1,
                delay_s=round(delay, 3),
                error=str(exc),
            )
            await sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["NOT_READY", "BackoffPolicy", "poll", "retry"]
