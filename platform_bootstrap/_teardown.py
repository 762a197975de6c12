"""Reverse-order deletion of everything the state store records.

Teardown never raises for a single resource: each deletion is attempted,
its outcome recorded, and the walk continues. A record is retired only once
the provider confirms the resource is gone, so a failed run can simply be
repeated. Retired records report ``already-absent`` on later runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from ._aws_provider import CloudProvider
from ._bootstrap_errors import PlatformBootstrapError
from ._readiness import Clock, Probe, wait_for
from ._resources import TEARDOWN_RANK, ResourceKind, ResourceState
from ._state_store import StateEntry, StateStore

logger = logging.getLogger(__name__)


class TeardownOutcome(StrEnum):
    """Result of tearing down one resource."""

    DELETED = "deleted"
    ALREADY_ABSENT = "already-absent"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class TeardownStep:
    """What happened to one recorded resource."""

    name: str
    kind: ResourceKind
    resource_id: str
    outcome: TeardownOutcome
    detail: str = ""


def teardown_order(entries: list[StateEntry]) -> list[StateEntry]:
    """Sort resource entries into deletion order.

    Dependants go before what they depend on: instances first, the network
    last, and reverse creation order within the same rank.
    """
    resources = [entry for entry in entries if entry.kind is not None]
    return sorted(
        resources,
        key=lambda entry: (TEARDOWN_RANK[entry.kind], -entry.sequence),
    )


def _delete_one(
    entry: StateEntry,
    provider: CloudProvider,
    *,
    interval: float,
    timeout: float,
    clock: Clock | None,
) -> TeardownStep:
    kind = entry.kind
    assert kind is not None

    def step(outcome: TeardownOutcome, detail: str = "") -> TeardownStep:
        return TeardownStep(entry.name, kind, entry.value, outcome, detail)

    if not kind.owned:
        return step(TeardownOutcome.DELETED, "reference released")

    try:
        state = provider.describe(kind, entry.value)
        if state is ResourceState.ABSENT:
            return step(TeardownOutcome.ALREADY_ABSENT)
        provider.delete(kind, entry.value)
    except PlatformBootstrapError as exc:
        return step(TeardownOutcome.FAILED, str(exc))

    def gone() -> Probe:
        try:
            current = provider.describe(kind, entry.value)
        except PlatformBootstrapError as exc:
            return Probe.not_ready(str(exc))
        if current is ResourceState.ABSENT:
            return Probe.ready()
        return Probe.not_ready(current.value)

    result = wait_for(
        gone,
        interval=interval,
        timeout=timeout,
        clock=clock,
        description=f"{kind} {entry.value} deletion",
    )
    if not result.ok:
        return step(
            TeardownOutcome.FAILED,
            f"deletion not confirmed after {result.elapsed:.0f}s ({result.detail})",
        )
    return step(TeardownOutcome.DELETED)


def teardown(
    store: StateStore,
    provider: CloudProvider,
    *,
    interval: float = 10.0,
    timeout: float = 600.0,
    clock: Clock | None = None,
) -> list[TeardownStep]:
    """Delete every recorded resource and report one step per resource.

    Resources retired by an earlier run are reported as ``already-absent``.
    Scalar entries are retired once every resource was removed cleanly.
    """

    steps = [
        TeardownStep(
            entry.name,
            entry.kind,
            entry.value,
            TeardownOutcome.ALREADY_ABSENT,
            "retired earlier",
        )
        for entry in teardown_order(store.retired())
    ]

    for entry in teardown_order(store.entries()):
        step = _delete_one(
            entry, provider, interval=interval, timeout=timeout, clock=clock
        )
        if step.outcome is TeardownOutcome.FAILED:
            logger.error("Failed to delete %s %s: %s", step.kind, step.resource_id, step.detail)
        else:
            logger.info("%s %s: %s", step.kind, step.resource_id, step.outcome)
            store.retire(entry.name)
        steps.append(step)

    if not any(step.outcome is TeardownOutcome.FAILED for step in steps):
        for entry in store.entries():
            if entry.kind is None:
                store.retire(entry.name)
    return steps


def failed_steps(steps: list[TeardownStep]) -> list[TeardownStep]:
    return [step for step in steps if step.outcome is TeardownOutcome.FAILED]


__all__ = [
    "TeardownOutcome",
    "TeardownStep",
    "failed_steps",
    "teardown",
    "teardown_order",
]
