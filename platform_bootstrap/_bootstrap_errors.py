"""Exception hierarchy for the phased platform bootstrap.

Every error carries enough context for an operator to act on it: the phase
that failed, the resource involved, and the next manual step. CLIs catch
:class:`PlatformBootstrapError` and report it as a single line plus the
remediation hint.

Examples
--------
>>> raise ProvisioningError(
...     "create-vpc failed: VpcLimitExceeded",
...     phase="infrastructure",
...     resource="network-id",
...     remediation="Delete unused VPCs or request a quota increase.",
... )
"""

from __future__ import annotations


class PlatformBootstrapError(Exception):
    """Base error for bootstrap orchestration.

    Parameters
    ----------
    message
        Human-readable error message describing the failure.
    phase
        Phase name the failure belongs to, when known.
    resource
        Logical resource name (state entry) involved, when known.
    remediation
        Next manual action for the operator.
    """

    def __init__(
        self,
        message: str,
        *,
        phase: str | None = None,
        resource: str | None = None,
        remediation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.resource = resource
        self.remediation = remediation

    def __str__(self) -> str:
        prefix = f"[{self.phase}] " if self.phase else ""
        subject = f"{self.resource}: " if self.resource else ""
        return f"{prefix}{subject}{self.message}"


class PreconditionError(PlatformBootstrapError):
    """Raised before any mutation when a phase cannot start.

    Examples
    --------
    >>> raise PreconditionError("helm is not on PATH", phase="workload-cluster")
    """


class MissingArtifactError(PreconditionError):
    """Raised when a phase is started without its upstream artifact."""


class StaleArtifactError(PreconditionError):
    """Raised when an upstream artifact references resources that are gone."""


class ProvisioningError(PlatformBootstrapError):
    """Raised when the cloud provider rejects a create or delete request."""


class ReadinessTimeoutError(PlatformBootstrapError):
    """Raised when a readiness condition is not met within its timeout.

    Parameters
    ----------
    message
        Description of the awaited condition.
    elapsed
        Seconds spent waiting.
    last_state
        Last observed state reported by the check.
    """

    def __init__(
        self,
        message: str,
        *,
        elapsed: float,
        last_state: str = "",
        phase: str | None = None,
        resource: str | None = None,
        remediation: str | None = None,
    ) -> None:
        detail = f"{message} (waited {elapsed:.0f}s"
        detail += f", last state: {last_state})" if last_state else ")"
        super().__init__(
            detail, phase=phase, resource=resource, remediation=remediation
        )
        self.elapsed = elapsed
        self.last_state = last_state


class ReadinessFailedError(PlatformBootstrapError):
    """Raised when a readiness check reports a terminal failure."""


class CredentialExtractionError(PlatformBootstrapError):
    """Raised when a secret cannot be read from a remote host.

    The ``manual_steps`` attribute lists the commands an operator can run to
    retrieve the credential by hand.
    """

    def __init__(
        self,
        message: str,
        *,
        manual_steps: tuple[str, ...] = (),
        phase: str | None = None,
        resource: str | None = None,
    ) -> None:
        remediation = None
        if manual_steps:
            remediation = "Retrieve it manually:\n" + "\n".join(
                f"  {step}" for step in manual_steps
            )
        super().__init__(
            message, phase=phase, resource=resource, remediation=remediation
        )
        self.manual_steps = manual_steps


class CommandError(PlatformBootstrapError):
    """Raised when an external command exits unsuccessfully.

    Examples
    --------
    >>> raise CommandError("Command 'aws' failed: An error occurred")
    """

    def __init__(self, message: str, *, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


class StateStoreError(PlatformBootstrapError):
    """Raised when the state store is corrupt or an entry is inconsistent."""


class ArtifactError(PlatformBootstrapError):
    """Raised when a phase artifact is malformed or lacks a required field."""


class TeardownError(PlatformBootstrapError):
    """Raised by the teardown CLI when one or more deletions failed."""
