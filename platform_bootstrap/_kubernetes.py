"""``kubectl`` and ``helm`` operations against one cluster."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from ._bootstrap_errors import CommandError
from ._commands import CommandContext, run_command
from ._readiness import Probe

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HelmRelease:
    """A chart release installed with ``helm upgrade --install``."""

    name: str
    chart: str
    namespace: str
    version: str | None = None
    repo_name: str | None = None
    repo_url: str | None = None
    values_file: Path | None = None


class ClusterClient(Protocol):
    """Cluster operations used by the workload-cluster phase."""

    def apply(self, manifest: Path) -> None: ...

    def ready_nodes(self) -> int: ...

    def deployment_available(self, namespace: str, name: str) -> bool: ...

    def service_hostname(self, namespace: str, name: str) -> str | None: ...

    def secret_value(self, namespace: str, name: str, key: str) -> str | None: ...

    def secret_uid(self, namespace: str, name: str) -> str | None: ...

    def set_default_storage_class(self, name: str) -> None: ...

    def install_release(self, release: HelmRelease) -> None: ...


class KubectlClient:
    """:class:`ClusterClient` implemented with the ``kubectl`` and ``helm`` CLIs."""

    def __init__(self, kubeconfig: Path, *, timeout: int = 300) -> None:
        self.kubeconfig = kubeconfig
        self.timeout = timeout

    def _context(self) -> CommandContext:
        env = os.environ.copy()
        env["KUBECONFIG"] = str(self.kubeconfig)
        return CommandContext(env=env, timeout=self.timeout)

    def _kubectl(self, *args: str) -> str:
        return run_command("kubectl", *args, context=self._context())

    def _kubectl_json(self, *args: str) -> Any:
        stdout = self._kubectl(*args, "-o", "json")
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as exc:
            msg = f"kubectl returned invalid JSON: {exc}"
            raise CommandError(msg) from exc

    def _helm(self, *args: str) -> str:
        return run_command("helm", *args, context=self._context())

    def apply(self, manifest: Path) -> None:
        logger.info("Applying %s", manifest)
        self._kubectl("apply", "-f", str(manifest))

    def ready_nodes(self) -> int:
        payload = self._kubectl_json("get", "nodes")
        return sum(1 for node in payload.get("items", []) if _node_ready(node))

    def deployment_available(self, namespace: str, name: str) -> bool:
        try:
            payload = self._kubectl_json("get", "deployment", name, "-n", namespace)
        except CommandError:
            return False
        conditions = payload.get("status", {}).get("conditions", [])
        return any(
            condition.get("type") == "Available" and condition.get("status") == "True"
            for condition in conditions
        )

    def service_hostname(self, namespace: str, name: str) -> str | None:
        payload = self._kubectl_json("get", "service", name, "-n", namespace)
        ingress = payload.get("status", {}).get("loadBalancer", {}).get("ingress", [])
        for entry in ingress:
            address = entry.get("hostname") or entry.get("ip")
            if address:
                return address
        return None

    def secret_value(self, namespace: str, name: str, key: str) -> str | None:
        try:
            payload = self._kubectl_json("get", "secret", name, "-n", namespace)
        except CommandError:
            return None
        encoded = payload.get("data", {}).get(key)
        if not encoded:
            return None
        try:
            return base64.b64decode(encoded).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            msg = f"secret {namespace}/{name} key {key} is not valid base64 text"
            raise CommandError(msg) from exc

    def secret_uid(self, namespace: str, name: str) -> str | None:
        """Return the secret's UID, which changes when it is re-created."""
        try:
            payload = self._kubectl_json("get", "secret", name, "-n", namespace)
        except CommandError:
            return None
        return payload.get("metadata", {}).get("uid")

    def set_default_storage_class(self, name: str) -> None:
        self._kubectl(
            "patch",
            "storageclass",
            name,
            "-p",
            '{"metadata":{"annotations":{"storageclass.kubernetes.io/is-default-class":"true"}}}',
        )

    def install_release(self, release: HelmRelease) -> None:
        if release.repo_name and release.repo_url:
            self._helm("repo", "add", release.repo_name, release.repo_url, "--force-update")
            self._helm("repo", "update", release.repo_name)
        args = [
            "upgrade",
            "--install",
            release.name,
            release.chart,
            "--namespace",
            release.namespace,
            "--create-namespace",
        ]
        if release.version:
            args.extend(["--version", release.version])
        if release.values_file is not None:
            args.extend(["--values", str(release.values_file)])
        logger.info("Installing %s (%s)", release.name, release.chart)
        self._helm(*args)


def _node_ready(node: dict[str, Any]) -> bool:
    """Return whether a node object reports ``Ready=True``.

    Examples
    --------
    >>> _node_ready({"status": {"conditions": [{"type": "Ready", "status": "True"}]}})
    True
    """
    conditions = node.get("status", {}).get("conditions", [])
    return any(
        condition.get("type") == "Ready" and condition.get("status") == "True"
        for condition in conditions
    )


def nodes_probe(client: ClusterClient, expected: int) -> Callable[[], Probe]:
    """Ready once at least ``expected`` nodes report Ready."""

    def check() -> Probe:
        try:
            ready = client.ready_nodes()
        except CommandError as exc:
            return Probe.not_ready(f"cluster API unavailable: {exc}")
        detail = f"{ready}/{expected} nodes ready"
        return Probe.ready(detail) if ready >= expected else Probe.not_ready(detail)

    return check


def deployments_probe(
    client: ClusterClient, namespace: str, names: Sequence[str]
) -> Callable[[], Probe]:
    """Ready once every named deployment in ``namespace`` is Available."""

    def check() -> Probe:
        pending = [
            name for name in names if not client.deployment_available(namespace, name)
        ]
        if pending:
            return Probe.not_ready(f"waiting for {', '.join(pending)}")
        return Probe.ready(f"{len(names)} deployments available")

    return check


__all__ = [
    "ClusterClient",
    "HelmRelease",
    "KubectlClient",
    "deployments_probe",
    "nodes_probe",
]
