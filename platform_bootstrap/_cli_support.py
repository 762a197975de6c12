"""Helpers shared by the phase entrypoints."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import TextIO

from ._bootstrap_errors import PlatformBootstrapError, PreconditionError
from ._confirmation import ConfirmationGate, FileConfirmationGate, PreConfirmedGate
from ._credentials import CredentialVault
from ._deployment_config import ComputeSettings, DeploymentConfig
from ._handoff import ArtifactStore
from ._logging import configure_logging
from ._state_store import FileStateStore


@dataclass(frozen=True, slots=True)
class Workspace:
    """Persistent stores of one deployment directory."""

    config: DeploymentConfig
    store: FileStateStore
    vault: CredentialVault
    artifacts: ArtifactStore

    @classmethod
    def open(cls, config: DeploymentConfig) -> Workspace:
        paths = config.paths
        paths.root.mkdir(parents=True, exist_ok=True)
        return cls(
            config=config,
            store=FileStateStore(paths.state_file),
            vault=CredentialVault(paths.credentials),
            artifacts=ArtifactStore(paths.artifacts),
        )


def start_run(config: DeploymentConfig, *, verbose: bool, run_name: str) -> None:
    """Configure logging for a CLI run and announce the log file."""
    log_path = configure_logging(
        verbose=verbose, log_dir=config.paths.logs, run_name=run_name
    )
    print(f"Deployment: {config.paths.root}")
    if log_path is not None:
        print(f"Log file: {log_path}")


def build_gate(config: DeploymentConfig, *, assume_confirmed: bool) -> ConfirmationGate:
    if assume_confirmed:
        return PreConfirmedGate()
    return FileConfirmationGate(config.paths.confirmations)


def check_ssh_keys(compute: ComputeSettings, *, phase: str) -> None:
    """Fail unless both halves of the SSH key pair exist."""
    missing = [
        str(path)
        for path in (compute.ssh_private_key, compute.ssh_public_key)
        if not path.is_file()
    ]
    if missing:
        msg = f"SSH key files not found: {', '.join(missing)}"
        raise PreconditionError(
            msg,
            phase=phase,
            remediation=(
                f"Generate a key with: ssh-keygen -t rsa -b 4096 -f {compute.ssh_private_key}"
            ),
        )


def report_failure(exc: PlatformBootstrapError, *, stream: TextIO | None = None) -> int:
    """Print ``exc`` and its remediation to stderr and return exit status 1."""
    stream = stream or sys.stderr
    print(f"error: {exc}", file=stream)
    if exc.remediation:
        print(f"next step: {exc.remediation}", file=stream)
    return 1


__all__ = [
    "Workspace",
    "build_gate",
    "check_ssh_keys",
    "report_failure",
    "start_run",
]
