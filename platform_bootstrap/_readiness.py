"""Bounded polling of readiness conditions.

A check is evaluated once per interval, after sleeping, until it reports
ready, reports a terminal failure, or the timeout elapses. At most
``floor(timeout / interval)`` checks run, and a condition that never
becomes ready is given up on within ``timeout + interval``.

Examples
--------
>>> clock = ManualClock()
>>> ready_at = 25.0
>>> result = wait_for(
...     lambda: clock.monotonic() >= ready_at,
...     interval=10,
...     timeout=30,
...     clock=clock,
... )
>>> result.outcome, result.attempts
(<PollOutcome.READY: 'ready'>, 3)
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, TypeAlias

from ._bootstrap_errors import ReadinessFailedError, ReadinessTimeoutError

logger = logging.getLogger(__name__)


class Readiness(StrEnum):
    """Result of evaluating a readiness check once."""

    READY = "ready"
    NOT_READY = "not-ready"
    FAILED = "failed"


class PollOutcome(StrEnum):
    """Final result of a polling loop."""

    READY = "ready"
    TIMED_OUT = "timed-out"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Probe:
    """A readiness observation plus a short description of what was seen."""

    state: Readiness
    detail: str = ""

    @classmethod
    def ready(cls, detail: str = "") -> Probe:
        return cls(Readiness.READY, detail)

    @classmethod
    def not_ready(cls, detail: str = "") -> Probe:
        return cls(Readiness.NOT_READY, detail)

    @classmethod
    def failed(cls, detail: str = "") -> Probe:
        return cls(Readiness.FAILED, detail)


CheckResult: TypeAlias = Probe | Readiness | bool
Check: TypeAlias = Callable[[], CheckResult]


@dataclass(frozen=True, slots=True)
class PollResult:
    """Summary of a finished polling loop."""

    outcome: PollOutcome
    attempts: int
    elapsed: float
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is PollOutcome.READY


class Clock(Protocol):
    """Source of monotonic time and sleeping."""

    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall-clock implementation of :class:`Clock`."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class ManualClock:
    """Clock whose time only advances when something sleeps.

    Examples
    --------
    >>> clock = ManualClock(); clock.sleep(5); clock.monotonic()
    5.0
    """

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@dataclass(frozen=True, slots=True)
class ReadinessCondition:
    """A named condition with its polling parameters."""

    description: str
    check: Check
    interval: float
    timeout: float


def _as_probe(result: CheckResult) -> Probe:
    if isinstance(result, Probe):
        return result
    if isinstance(result, Readiness):
        return Probe(result)
    return Probe.ready() if result else Probe.not_ready()


def wait_for(
    check: Check,
    *,
    interval: float,
    timeout: float,
    clock: Clock | None = None,
    description: str = "condition",
) -> PollResult:
    """Poll ``check`` until it is ready, fails, or ``timeout`` elapses.

    Parameters
    ----------
    check
        Callable returning a :class:`Probe`, a :class:`Readiness` or a bool.
    interval
        Seconds to sleep before each evaluation.
    timeout
        Overall limit in seconds.
    clock
        Time source; defaults to :class:`SystemClock`.
    description
        Used in log messages only.

    Returns
    -------
    PollResult
        Outcome, number of checks, elapsed seconds and the last detail.
    """

    if interval <= 0 or timeout <= 0:
        msg = "interval and timeout must be positive"
        raise ValueError(msg)
    clock = clock or SystemClock()
    max_attempts = max(1, math.floor(timeout / interval))
    start = clock.monotonic()
    last = Probe.not_ready()
    attempts = 0

    while attempts < max_attempts:
        remaining = timeout - (clock.monotonic() - start)
        if remaining <= 0:
            break
        clock.sleep(min(interval, remaining))
        attempts += 1
        last = _as_probe(check())
        elapsed = clock.monotonic() - start
        if last.state is Readiness.READY:
            logger.debug("%s ready after %d checks", description, attempts)
            return PollResult(PollOutcome.READY, attempts, elapsed, last.detail)
        if last.state is Readiness.FAILED:
            logger.warning("%s failed: %s", description, last.detail)
            return PollResult(PollOutcome.FAILED, attempts, elapsed, last.detail)
        logger.debug(
            "Waiting for %s (%d/%d): %s",
            description,
            attempts,
            max_attempts,
            last.detail or "not ready",
        )
        if elapsed >= timeout:
            break

    elapsed = clock.monotonic() - start
    return PollResult(PollOutcome.TIMED_OUT, attempts, elapsed, last.detail)


def await_condition(
    condition: ReadinessCondition,
    *,
    clock: Clock | None = None,
    phase: str | None = None,
    resource: str | None = None,
    remediation: str | None = None,
) -> PollResult:
    """Wait for ``condition`` and raise unless it becomes ready."""

    logger.info("Waiting for %s", condition.description)
    result = wait_for(
        condition.check,
        interval=condition.interval,
        timeout=condition.timeout,
        clock=clock,
        description=condition.description,
    )
    if result.outcome is PollOutcome.FAILED:
        msg = f"{condition.description} failed: {result.detail or 'no detail'}"
        raise ReadinessFailedError(
            msg, phase=phase, resource=resource, remediation=remediation
        )
    if result.outcome is PollOutcome.TIMED_OUT:
        raise ReadinessTimeoutError(
            f"timed out waiting for {condition.description}",
            elapsed=result.elapsed,
            last_state=result.detail,
            phase=phase,
            resource=resource,
            remediation=remediation,
        )
    return result


__all__ = [
    "Check",
    "Clock",
    "ManualClock",
    "PollOutcome",
    "PollResult",
    "Probe",
    "Readiness",
    "ReadinessCondition",
    "SystemClock",
    "await_condition",
    "wait_for",
]
