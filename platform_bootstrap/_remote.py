"""Remote command execution on provisioned hosts over SSH."""

from __future__ import annotations

import logging
import shlex
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ._bootstrap_errors import CommandError
from ._commands import CommandContext, run_command
from ._readiness import Probe

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RemoteHost:
    """Address and login details for a remote host."""

    address: str
    user: str = "ubuntu"
    identity: Path | None = None
    connect_timeout: int = 10

    @property
    def target(self) -> str:
        """Return the ``user@address`` SSH target.

        Examples
        --------
        >>> RemoteHost("203.0.113.10").target
        'ubuntu@203.0.113.10'
        """
        return f"{self.user}@{self.address}"

    def ssh_command(self) -> str:
        """Return a copy-pasteable SSH command for manual steps."""
        identity = f"-i {shlex.quote(str(self.identity))} " if self.identity else ""
        return f"ssh {identity}{self.target}"


class RemoteExecutor(Protocol):
    """Runs read-only commands on a remote host."""

    def execute(self, host: RemoteHost, command: str) -> str: ...


def ssh_args(host: RemoteHost, command: str) -> list[str]:
    """Build non-interactive ``ssh`` arguments for ``command``.

    Examples
    --------
    >>> ssh_args(RemoteHost("203.0.113.10"), "true")[-2:]
    ['ubuntu@203.0.113.10', 'true']
    """

    args = [
        "-o",
        "BatchMode=yes",
        "-o",
        "StrictHostKeyChecking=accept-new",
        "-o",
        f"ConnectTimeout={host.connect_timeout}",
    ]
    if host.identity is not None:
        args.extend(["-i", str(host.identity)])
    args.extend([host.target, command])
    return args


class SSHExecutor:
    """:class:`RemoteExecutor` backed by the ``ssh`` client."""

    def __init__(self, *, timeout: int = 60) -> None:
        self.timeout = timeout

    def execute(self, host: RemoteHost, command: str) -> str:
        logger.debug("ssh %s: %s", host.target, command)
        return run_command(
            "ssh",
            *ssh_args(host, command),
            context=CommandContext(timeout=self.timeout),
        )


def marker_probe(
    executor: RemoteExecutor, host: RemoteHost, marker: str
) -> Callable[[], Probe]:
    """Return a check that is ready once ``marker`` exists on ``host``.

    Connection failures count as not ready; the host may still be booting.
    """

    command = f"test -f {shlex.quote(marker)} && echo present || echo missing"

    def check() -> Probe:
        try:
            output = executor.execute(host, command).strip()
        except CommandError as exc:
            return Probe.not_ready(f"ssh unavailable: {exc.stderr or exc}")
        if output == "present":
            return Probe.ready(f"{marker} present")
        return Probe.not_ready(f"{marker} missing")

    return check


__all__ = [
    "RemoteExecutor",
    "RemoteHost",
    "SSHExecutor",
    "marker_probe",
    "ssh_args",
]
