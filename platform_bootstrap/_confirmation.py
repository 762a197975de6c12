"""Named external confirmation steps.

Some steps can only be finished by a person (first login to the management
UI, downloading a kubeconfig). Instead of blocking on a terminal prompt, a
phase announces the step and polls a :class:`ConfirmationGate` until the
operator signals completion.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, TextIO

from ._readiness import Clock, Probe, Readiness, ReadinessCondition, await_condition

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConfirmationStep:
    """A manual step and the instructions shown to the operator."""

    name: str
    instructions: tuple[str, ...]


class ConfirmationGate(Protocol):
    """Announces manual steps and reports whether they are confirmed."""

    def request(self, step: ConfirmationStep) -> None: ...

    def check(self, step: ConfirmationStep) -> Probe: ...


class FileConfirmationGate:
    """Confirmed when ``<directory>/<step>.confirmed`` exists.

    Examples
    --------
    >>> gate = FileConfirmationGate(Path("/tmp/confirmations"))
    >>> gate.marker_for(ConfirmationStep("rancher-initial-setup", ())).name
    'rancher-initial-setup.confirmed'
    """

    def __init__(self, directory: Path, *, stream: TextIO | None = None) -> None:
        self.directory = directory
        self.stream = stream

    def marker_for(self, step: ConfirmationStep) -> Path:
        return self.directory / f"{step.name}.confirmed"

    def request(self, step: ConfirmationStep) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        stream = self.stream or sys.stdout
        print(f"\n=== Manual step: {step.name} ===", file=stream)
        for number, line in enumerate(step.instructions, start=1):
            print(f"  {number}. {line}", file=stream)
        print(f"When done, run: touch {self.marker_for(step)}", file=stream)

    def check(self, step: ConfirmationStep) -> Probe:
        if self.marker_for(step).exists():
            return Probe.ready("confirmed")
        return Probe.not_ready("awaiting operator")


class PreConfirmedGate:
    """Treats every step as already done, for unattended re-runs."""

    def request(self, step: ConfirmationStep) -> None:
        logger.info("Assuming %s is confirmed", step.name)

    def check(self, step: ConfirmationStep) -> Probe:
        return Probe.ready("assumed")


def await_confirmation(
    gate: ConfirmationGate,
    step: ConfirmationStep,
    *,
    interval: float,
    timeout: float,
    clock: Clock | None = None,
    phase: str | None = None,
) -> None:
    """Announce ``step`` unless already confirmed, then wait for it."""

    if gate.check(step).state is Readiness.READY:
        logger.info("%s already confirmed", step.name)
        return
    gate.request(step)
    await_condition(
        ReadinessCondition(
            description=f"operator confirmation of {step.name}",
            check=lambda: gate.check(step),
            interval=interval,
            timeout=timeout,
        ),
        clock=clock,
        phase=phase,
        resource=step.name,
        remediation="Complete the manual step, confirm it and re-run the phase.",
    )
