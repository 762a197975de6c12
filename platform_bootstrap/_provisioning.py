"""Idempotent, resumable creation of cloud resources.

The driver consults the state store before touching the provider. A name
that is already recorded is reused as is; otherwise the provider is asked
for a namesake resource (left behind by a crash between create and record)
before anything new is created. Resources are recorded only after the
provider reports that they exist.

Resources are grouped. A group is complete only when every name in it is
recorded; the first incomplete group of a phase, and every group after it,
is cleared and re-created on the next run.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from ._aws_provider import CloudProvider
from ._bootstrap_errors import (
    CommandError,
    PreconditionError,
    ProvisioningError,
    ReadinessTimeoutError,
)
from ._readiness import (
    Clock,
    Probe,
    ReadinessCondition,
    await_condition,
    wait_for,
)
from ._resources import ResourceKind, ResourceRecord, ResourceSpec, ResourceState
from ._state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ResourceGroup:
    """Names that must be recorded together for a phase to reuse them."""

    name: str
    members: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class DriverSettings:
    """Polling parameters for existence and readiness waits."""

    existence_interval: float = 2.0
    existence_timeout: float = 120.0
    ready_interval: float = 10.0
    ready_timeout: float = 600.0


@dataclass(slots=True)
class ProvisioningDriver:
    """Creates resources in dependency order, resuming from the state store."""

    store: StateStore
    provider: CloudProvider
    phase: str = "infrastructure"
    settings: DriverSettings = field(default_factory=DriverSettings)
    clock: Clock | None = None
    created: list[str] = field(default_factory=list)
    adopted: list[str] = field(default_factory=list)

    def invalidate_incomplete(self, groups: Sequence[ResourceGroup]) -> list[ResourceGroup]:
        """Clear the first incomplete group and every group after it.

        Returns the groups that will be re-created.
        """
        for index, group in enumerate(groups):
            if self.store.has_complete(group.members):
                logger.info("Reusing complete group %s", group.name)
                continue
            stale = list(groups[index:])
            for pending in stale:
                self.store.clear(pending.members)
            logger.info(
                "Group %s is incomplete; re-creating %s",
                group.name,
                ", ".join(pending.name for pending in stale),
            )
            return stale
        return []

    def ensure(
        self,
        kind: ResourceKind,
        spec: ResourceSpec,
        depends_on: Sequence[ResourceRecord] = (),
    ) -> ResourceRecord:
        """Return the recorded resource ``spec.name``, creating it if needed."""

        existing = self.store.get(spec.name)
        if existing is not None:
            if existing.kind is not kind:
                msg = f"recorded as {existing.kind}, expected {kind}"
                raise ProvisioningError(msg, phase=self.phase, resource=spec.name)
            logger.info("Reusing %s %s (%s)", kind, spec.name, existing.value)
            return existing.record()

        missing = [dep.name for dep in depends_on if self.store.get(dep.name) is None]
        if missing:
            msg = f"dependencies not provisioned: {', '.join(missing)}"
            raise PreconditionError(msg, phase=self.phase, resource=spec.name)

        try:
            resource_id = self.provider.find_existing(kind, spec)
            if resource_id is not None:
                logger.info("Adopting existing %s %s (%s)", kind, spec.label, resource_id)
                self.adopted.append(spec.name)
            else:
                resource_id = self.provider.create(kind, spec)
                self.created.append(spec.name)
        except (CommandError, ProvisioningError) as exc:
            raise ProvisioningError(
                f"{kind} {spec.label} could not be created: {exc}",
                phase=self.phase,
                resource=spec.name,
                remediation="Fix the provider error and re-run; recorded resources are reused.",
            ) from exc

        self._await_existence(kind, spec.name, resource_id)
        entry = self.store.put(
            spec.name,
            resource_id,
            kind=kind,
            depends_on=[dep.name for dep in depends_on],
        )
        return entry.record()

    def _await_existence(self, kind: ResourceKind, name: str, resource_id: str) -> None:
        def check() -> Probe:
            state = self.provider.describe(kind, resource_id)
            if state is ResourceState.ABSENT:
                return Probe.not_ready("not visible yet")
            return Probe.ready(state.value)

        result = wait_for(
            check,
            interval=self.settings.existence_interval,
            timeout=self.settings.existence_timeout,
            clock=self.clock,
            description=f"{kind} {name} to exist",
        )
        if not result.ok:
            raise ReadinessTimeoutError(
                f"{kind} {resource_id} was created but never became visible",
                elapsed=result.elapsed,
                last_state=result.detail,
                phase=self.phase,
                resource=name,
            )

    def wait_until_ready(
        self,
        record: ResourceRecord,
        *,
        timeout: float | None = None,
        interval: float | None = None,
    ) -> None:
        """Block until the provider reports ``record`` as ready."""

        def check() -> Probe:
            state = self.provider.describe(record.kind, record.id)
            if state is ResourceState.READY:
                return Probe.ready(state.value)
            if state in (ResourceState.FAILED, ResourceState.ABSENT):
                return Probe.failed(state.value)
            return Probe.not_ready(state.value)

        await_condition(
            ReadinessCondition(
                description=f"{record.kind} {record.name} ({record.id}) to be ready",
                check=check,
                interval=interval or self.settings.ready_interval,
                timeout=timeout or self.settings.ready_timeout,
            ),
            clock=self.clock,
            phase=self.phase,
            resource=record.name,
        )


__all__ = [
    "DriverSettings",
    "ProvisioningDriver",
    "ResourceGroup",
]
