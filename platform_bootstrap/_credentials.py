"""Capture of one-time secrets emitted by provisioned software.

A credential is observed once per owning resource (the management instance,
the Argo CD secret) and then kept in the deployment's credential directory.
Later reads return the stored record while its owner is unchanged; nothing
here ever regenerates or rotates a secret.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ._bootstrap_errors import (
    CommandError,
    CredentialExtractionError,
    StateStoreError,
)
from ._readiness import Clock, Probe, wait_for
from ._remote import RemoteExecutor, RemoteHost
from ._state_store import write_atomically

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CredentialSelector:
    """Where a secret is printed and how to pick it out.

    ``pattern`` must define a ``secret`` named group. ``manual_steps`` are
    shown to the operator when extraction gives up.
    """

    name: str
    command: str
    pattern: re.Pattern[str]
    manual_steps: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CredentialRecord:
    """A captured secret and where it came from."""

    name: str
    value: str = field(repr=False)
    source: str
    observed_at: str
    owner: str | None = None

    def to_mapping(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "source": self.source,
            "observed_at": self.observed_at,
            "owner": self.owner,
        }


RANCHER_PASSWORD_FILE = CredentialSelector(
    name="rancher-bootstrap-password",
    command="cat ~/rancher-password.txt",
    pattern=re.compile(r"Bootstrap Password:\s*(?P<secret>\S+)"),
    manual_steps=(
        "cat ~/rancher-password.txt",
        "sudo docker logs $(sudo docker ps -q --filter name=rancher) 2>&1 "
        "| grep 'Bootstrap Password:'",
    ),
)


def select_latest(output: str, pattern: re.Pattern[str]) -> str | None:
    """Return the secret from the last match of ``pattern`` in ``output``.

    Output may hold several bootstrap lines after the host was re-bootstrapped;
    the most recent one is authoritative.

    Examples
    --------
    >>> logs = "Bootstrap Password: old\\nBootstrap Password: new\\n"
    >>> select_latest(logs, RANCHER_PASSWORD_FILE.pattern)
    'new'
    >>> select_latest("", RANCHER_PASSWORD_FILE.pattern) is None
    True
    """

    matches = [match.group("secret") for match in pattern.finditer(output)]
    return matches[-1] if matches else None


class CredentialVault:
    """Owner-only JSON files under the deployment's credential directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def path_for(self, name: str) -> Path:
        return self.directory / f"{name}.json"

    def load(self, name: str) -> CredentialRecord | None:
        """Return the stored credential ``name``, if one was observed."""
        path = self.path_for(name)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            msg = f"Failed to parse credential file {path}: {exc}"
            raise StateStoreError(msg, resource=name) from exc
        fields = ("name", "value", "source", "observed_at")
        if not isinstance(payload, dict) or not all(
            isinstance(payload.get(key), str) for key in fields
        ):
            msg = f"Credential file {path} is malformed"
            raise StateStoreError(msg, resource=name)
        owner = payload.get("owner")
        if owner is not None and not isinstance(owner, str):
            msg = f"Credential file {path} has a malformed owner"
            raise StateStoreError(msg, resource=name)
        return CredentialRecord(**{key: payload[key] for key in fields}, owner=owner)

    def save(self, record: CredentialRecord) -> CredentialRecord:
        """Persist ``record`` unless a credential with that name exists.

        The first observed value wins and is returned.
        """
        existing = self.load(record.name)
        if existing is not None:
            return existing
        self.directory.mkdir(parents=True, exist_ok=True)
        self.directory.chmod(0o700)
        write_atomically(self.path_for(record.name), json.dumps(record.to_mapping()))
        logger.info("Stored credential %s at %s", record.name, self.path_for(record.name))
        return record

    def discard(self, name: str) -> bool:
        """Delete the stored credential ``name``; return whether one existed."""
        path = self.path_for(name)
        if not path.exists():
            return False
        path.unlink()
        return True

    def discard_all(self) -> int:
        """Delete every stored credential, returning how many were removed."""
        if not self.directory.exists():
            return 0
        removed = 0
        for path in self.directory.glob("*.json"):
            path.unlink()
            removed += 1
        return removed

    def observe(
        self,
        name: str,
        read: Callable[[], str | None],
        *,
        source: str,
        interval: float,
        timeout: float,
        clock: Clock | None = None,
        manual_steps: tuple[str, ...] = (),
        phase: str | None = None,
        owner: str | None = None,
    ) -> CredentialRecord:
        """Return the stored credential, or poll ``read`` until it yields one.

        ``read`` returns ``None`` while the secret is not yet available.
        ``owner`` identifies the resource that issued the secret. A stored
        record issued by another owner belongs to a replaced resource and is
        overwritten by a fresh observation.
        """
        existing = self.load(name)
        if existing is not None:
            if owner is None or existing.owner == owner:
                logger.info("Reusing stored credential %s", name)
                return existing
            logger.info(
                "Stored credential %s belongs to %s, not %s; observing it again",
                name,
                existing.owner or "an unknown owner",
                owner,
            )
            self.discard(name)

        captured: list[str] = []

        def check() -> Probe:
            value = read()
            if not value:
                return Probe.not_ready(f"{name} not yet available from {source}")
            captured.append(value)
            return Probe.ready()

        result = wait_for(
            check,
            interval=interval,
            timeout=timeout,
            clock=clock,
            description=f"credential {name}",
        )
        if not result.ok or not captured:
            msg = (
                f"could not read {name} from {source} after "
                f"{result.attempts} attempts ({result.elapsed:.0f}s)"
            )
            raise CredentialExtractionError(
                msg, manual_steps=manual_steps, phase=phase, resource=name
            )
        record = CredentialRecord(
            name=name,
            value=captured[-1],
            source=source,
            observed_at=datetime.now(UTC).isoformat(),
            owner=owner,
        )
        return self.save(record)


def extract(
    executor: RemoteExecutor, host: RemoteHost, selector: CredentialSelector
) -> str | None:
    """Run the selector's read-only command once and return the latest match.

    SSH or command failures are treated as "not available yet".
    """

    try:
        output = executor.execute(host, selector.command)
    except CommandError as exc:
        logger.debug("credential read on %s failed: %s", host.address, exc)
        return None
    return select_latest(output, selector.pattern)


def extract_credential(
    executor: RemoteExecutor,
    host: RemoteHost,
    selector: CredentialSelector,
    *,
    vault: CredentialVault,
    interval: float,
    timeout: float,
    clock: Clock | None = None,
    phase: str | None = None,
    owner: str | None = None,
) -> CredentialRecord:
    """Capture ``selector``'s secret from ``host`` once and store it."""

    manual = (host.ssh_command(), *selector.manual_steps)
    return vault.observe(
        selector.name,
        lambda: extract(executor, host, selector),
        source=f"{host.target}: {selector.command}",
        interval=interval,
        timeout=timeout,
        clock=clock,
        manual_steps=manual,
        phase=phase,
        owner=owner,
    )


__all__ = [
    "RANCHER_PASSWORD_FILE",
    "CredentialRecord",
    "CredentialSelector",
    "CredentialVault",
    "extract",
    "extract_credential",
    "select_latest",
]
