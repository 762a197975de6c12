"""Phase 3: create the workload cluster and install its add-ons.

Every add-on is installed with ``helm upgrade --install`` and followed by a
readiness wait, so re-running the phase after a failure converges instead of
duplicating work.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ._bootstrap_errors import CommandError, ProvisioningError
from ._confirmation import ConfirmationGate, ConfirmationStep, await_confirmation
from ._credentials import CredentialRecord, CredentialVault
from ._deployment_config import DeploymentConfig, PlatformSettings
from ._handoff import ArtifactStore, Phase, PhaseArtifact, build_artifact
from ._kubernetes import ClusterClient, HelmRelease, KubectlClient, deployments_probe, nodes_probe
from ._readiness import Clock, Probe, ReadinessCondition, await_condition

logger = logging.getLogger(__name__)

PHASE = Phase.WORKLOAD_CLUSTER.value
ARGOCD_PASSWORD = "argocd-initial-admin-password"


@dataclass(frozen=True, slots=True)
class Addon:
    """A release plus the deployments that must be Available afterwards."""

    release: HelmRelease
    deployments: tuple[str, ...] = ()
    load_balancer_service: str | None = None
    default_storage_class: str | None = None


def addons(platform: PlatformSettings, manifests: dict[str, Any]) -> list[Addon]:
    """Return the add-ons in installation order."""
    values = Path(manifests["values"])
    return [
        Addon(
            HelmRelease(
                name="cert-manager",
                chart="jetstack/cert-manager",
                namespace="cert-manager",
                version=platform.cert_manager_version,
                repo_name="jetstack",
                repo_url="https://charts.jetstack.io",
                values_file=values / "cert-manager.yaml",
            ),
            deployments=("cert-manager", "cert-manager-cainjector", "cert-manager-webhook"),
        ),
        Addon(
            HelmRelease(
                name="ingress-nginx",
                chart="ingress-nginx/ingress-nginx",
                namespace="ingress-nginx",
                version=platform.ingress_nginx_version,
                repo_name="ingress-nginx",
                repo_url="https://kubernetes.github.io/ingress-nginx",
                values_file=values / "ingress-nginx.yaml",
            ),
            deployments=("ingress-nginx-controller",),
            load_balancer_service="ingress-nginx-controller",
        ),
        Addon(
            HelmRelease(
                name="cluster-issuers",
                chart=str(manifests["cluster_issuers_chart"]),
                namespace="cert-manager",
            ),
        ),
        Addon(
            HelmRelease(
                name="argocd",
                chart="argo/argo-cd",
                namespace="argocd",
                version=platform.argocd_chart_version,
                repo_name="argo",
                repo_url="https://argoproj.github.io/argo-helm",
                values_file=values / "argocd.yaml",
            ),
            deployments=("argocd-server", "argocd-repo-server"),
            load_balancer_service="argocd-server",
        ),
        Addon(
            HelmRelease(
                name="longhorn",
                chart="longhorn/longhorn",
                namespace="longhorn-system",
                version=platform.longhorn_version,
                repo_name="longhorn",
                repo_url="https://charts.longhorn.io",
                values_file=values / "longhorn.yaml",
            ),
            deployments=("longhorn-driver-deployer",),
            default_storage_class="longhorn",
        ),
    ]


@dataclass(slots=True)
class WorkloadContext:
    """Collaborators phase 3 runs against.

    ``management_kubeconfig`` lets the phase submit the cluster descriptor
    itself; without it the operator imports the descriptor through the
    management UI and confirms.
    """

    config: DeploymentConfig
    artifacts: ArtifactStore
    vault: CredentialVault
    gate: ConfirmationGate
    workload_kubeconfig: Path
    management_kubeconfig: Path | None = None
    client_factory: Callable[[Path], ClusterClient] = KubectlClient
    clock: Clock | None = None
    installed: list[str] = field(default_factory=list)


def _create_cluster(ctx: WorkloadContext, management: PhaseArtifact) -> None:
    manifests = management.require("manifests")
    cluster_manifest = Path(manifests["cluster"])
    polling = ctx.config.polling
    if ctx.management_kubeconfig is not None:
        try:
            ctx.client_factory(ctx.management_kubeconfig).apply(cluster_manifest)
        except CommandError as exc:
            msg = f"management plane rejected {cluster_manifest}: {exc}"
            raise ProvisioningError(
                msg,
                phase=PHASE,
                resource=ctx.config.platform.cluster_name,
                remediation="Check the management kubeconfig and retry.",
            ) from exc
    else:
        await_confirmation(
            ctx.gate,
            ConfirmationStep(
                name="workload-cluster-created",
                instructions=(
                    f"Open {management.require('rancher_url')} and go to Cluster Management.",
                    f"Import YAML from {cluster_manifest} (Create > Custom).",
                    "Wait for the cluster to start provisioning.",
                ),
            ),
            interval=polling.confirmation_interval,
            timeout=polling.confirmation_timeout,
            clock=ctx.clock,
            phase=PHASE,
        )

    kubeconfig = ctx.workload_kubeconfig
    if kubeconfig.exists():
        return
    ctx.gate.request(
        ConfirmationStep(
            name="workload-kubeconfig",
            instructions=(
                f"Download the kubeconfig of {ctx.config.platform.cluster_name} from Rancher.",
                f"Save it as {kubeconfig}.",
            ),
        )
    )
    await_condition(
        ReadinessCondition(
            description=f"workload kubeconfig at {kubeconfig}",
            check=lambda: kubeconfig.exists(),
            interval=polling.confirmation_interval,
            timeout=polling.confirmation_timeout,
        ),
        clock=ctx.clock,
        phase=PHASE,
        resource="kubeconfig",
    )


def _service_probe(client: ClusterClient, namespace: str, name: str) -> Callable[[], Probe]:
    def check() -> Probe:
        try:
            hostname = client.service_hostname(namespace, name)
        except CommandError as exc:
            return Probe.not_ready(str(exc))
        if hostname:
            return Probe.ready(hostname)
        return Probe.not_ready("load balancer address pending")

    return check


def _install(ctx: WorkloadContext, client: ClusterClient, addon: Addon) -> str | None:
    polling = ctx.config.polling
    release = addon.release
    try:
        client.install_release(release)
    except CommandError as exc:
        msg = f"helm could not install {release.name}: {exc}"
        raise ProvisioningError(msg, phase=PHASE, resource=release.name) from exc

    if addon.deployments:
        await_condition(
            ReadinessCondition(
                description=f"{release.name} deployments",
                check=deployments_probe(client, release.namespace, addon.deployments),
                interval=polling.addon_interval,
                timeout=polling.addon_timeout,
            ),
            clock=ctx.clock,
            phase=PHASE,
            resource=release.name,
            remediation=f"kubectl get pods -n {release.namespace}",
        )
    address = None
    if addon.load_balancer_service:
        result = await_condition(
            ReadinessCondition(
                description=f"{addon.load_balancer_service} load balancer",
                check=_service_probe(client, release.namespace, addon.load_balancer_service),
                interval=polling.addon_interval,
                timeout=polling.addon_timeout,
            ),
            clock=ctx.clock,
            phase=PHASE,
            resource=addon.load_balancer_service,
        )
        address = result.detail
    if addon.default_storage_class:
        try:
            client.set_default_storage_class(addon.default_storage_class)
        except CommandError as exc:
            msg = f"could not mark {addon.default_storage_class} as default: {exc}"
            raise ProvisioningError(msg, phase=PHASE, resource=release.name) from exc
    ctx.installed.append(release.name)
    logger.info("%s installed", release.name)
    return address


def _apply(client: ClusterClient, manifest: Path) -> None:
    try:
        client.apply(manifest)
    except CommandError as exc:
        msg = f"could not apply {manifest}: {exc}"
        raise ProvisioningError(msg, phase=PHASE, resource=manifest.name) from exc


def _argocd_password(ctx: WorkloadContext, client: ClusterClient) -> CredentialRecord:
    """Return the Argo CD admin password issued by the current secret.

    A re-created secret has a new UID, so a password stored for an older
    one is observed again.
    """
    polling = ctx.config.polling

    def read() -> str | None:
        try:
            return client.secret_value("argocd", "argocd-initial-admin-secret", "password")
        except CommandError:
            return None

    return ctx.vault.observe(
        ARGOCD_PASSWORD,
        read,
        source="secret argocd/argocd-initial-admin-secret",
        interval=polling.credential_interval,
        timeout=polling.credential_timeout,
        clock=ctx.clock,
        manual_steps=(
            "kubectl -n argocd get secret argocd-initial-admin-secret "
            "-o jsonpath='{.data.password}' | base64 -d",
        ),
        phase=PHASE,
        owner=client.secret_uid("argocd", "argocd-initial-admin-secret"),
    )


def argocd_url(hostname: str | None, address: str | None) -> str | None:
    """Return where the Argo CD UI is reachable.

    The configured hostname is served by the ingress with TLS; otherwise the
    server's own load balancer answers plain HTTP (it runs with
    ``server.insecure``).

    Examples
    --------
    >>> argocd_url("argocd.example.com", "lb.example.com")
    'https://argocd.example.com'
    >>> argocd_url(None, "lb.example.com")
    'http://lb.example.com'
    """
    if hostname:
        return f"https://{hostname}"
    if address:
        return f"http://{address}"
    return None


def provision_workload_cluster(ctx: WorkloadContext) -> PhaseArtifact:
    """Run phase 3 to completion and write its artifact."""

    config = ctx.config
    polling = config.polling
    management = ctx.artifacts.load(Phase.MANAGEMENT_PLANE)
    manifests = management.require("manifests")

    _create_cluster(ctx, management)
    client = ctx.client_factory(ctx.workload_kubeconfig)
    await_condition(
        ReadinessCondition(
            description=f"{config.platform.cluster_name} nodes",
            check=nodes_probe(client, config.platform.pool_quantity),
            interval=polling.cluster_interval,
            timeout=polling.cluster_timeout,
        ),
        clock=ctx.clock,
        phase=PHASE,
        resource=config.platform.cluster_name,
        remediation="Check the cluster's provisioning log in Rancher.",
    )

    planned = addons(config.platform, manifests)
    addresses: dict[str, str] = {}
    for addon in planned:
        address = _install(ctx, client, addon)
        if addon.release.name == "argocd":
            _apply(client, Path(manifests["argocd_bootstrap"]))
        if address:
            addresses[addon.release.name] = address
    _apply(client, Path(manifests["sample_application"]))

    credential = _argocd_password(ctx, client)
    payload: dict[str, Any] = {
        "cluster_name": config.platform.cluster_name,
        "management_fingerprint": management.fingerprint,
        "kubeconfig": str(ctx.workload_kubeconfig),
        "ingress_address": addresses.get("ingress-nginx"),
        "argocd_hostname": config.platform.argocd_hostname,
        "argocd_url": argocd_url(config.platform.argocd_hostname, addresses.get("argocd")),
        "releases": [addon.release.name for addon in planned],
        "default_storage_class": "longhorn",
        "sample_application": "guestbook",
        "credentials": {credential.name: str(ctx.vault.path_for(credential.name))},
    }
    artifact = build_artifact(Phase.WORKLOAD_CLUSTER, payload)
    ctx.artifacts.write(artifact)
    return artifact


__all__ = [
    "ARGOCD_PASSWORD",
    "Addon",
    "WorkloadContext",
    "addons",
    "argocd_url",
    "provision_workload_cluster",
]
