"""Tests for phase 3: workload cluster add-ons and GitOps bootstrap."""

from __future__ import annotations

import io
from dataclasses import replace
from pathlib import Path

import pytest

from platform_bootstrap._bootstrap_errors import ProvisioningError, ReadinessTimeoutError
from platform_bootstrap._confirmation import FileConfirmationGate, PreConfirmedGate
from platform_bootstrap._credentials import CredentialVault
from platform_bootstrap._deployment_config import DeploymentConfig
from platform_bootstrap._handoff import ArtifactStore, Phase, build_artifact
from platform_bootstrap._phase_workload import (
    ARGOCD_PASSWORD,
    WorkloadContext,
    addons,
    argocd_url,
    provision_workload_cluster,
)
from platform_bootstrap._readiness import ManualClock
from platform_bootstrap.tests._doubles import FakeClusterClient, make_config


def _management_artifact(config: DeploymentConfig) -> dict[str, str]:
    root = config.paths.manifests
    manifests = {
        "cluster": str(root / "cluster" / "cluster-config.yaml"),
        "argocd_bootstrap": str(root / "argocd" / "argocd-install.yaml"),
        "sample_application": str(root / "argocd" / "sample-application.yaml"),
        "cluster_issuers_chart": str(root / "charts" / "cluster-issuers"),
        "monitoring_chart": str(root / "charts" / "monitoring-stack"),
        "values": str(root / "values"),
    }
    ArtifactStore(config.paths.artifacts).write(
        build_artifact(
            Phase.MANAGEMENT_PLANE,
            {"rancher_url": "https://203.0.113.10", "manifests": manifests},
        )
    )
    return manifests


class ClientRegistry:
    """Hands out one fake client per kubeconfig path."""

    def __init__(self, workload: FakeClusterClient) -> None:
        self.clients: dict[Path, FakeClusterClient] = {}
        self.workload = workload

    def __call__(self, kubeconfig: Path) -> FakeClusterClient:
        if kubeconfig.name == "kubeconfig.yaml":
            return self.workload
        return self.clients.setdefault(kubeconfig, FakeClusterClient())


def _context(
    config: DeploymentConfig,
    client: FakeClusterClient,
    *,
    management_kubeconfig: Path | None = None,
    gate=None,
) -> tuple[WorkloadContext, ClientRegistry]:
    kubeconfig = config.paths.root / "kubeconfig.yaml"
    kubeconfig.parent.mkdir(parents=True, exist_ok=True)
    kubeconfig.write_text("apiVersion: v1\n", encoding="utf-8")
    registry = ClientRegistry(client)
    ctx = WorkloadContext(
        config=config,
        artifacts=ArtifactStore(config.paths.artifacts),
        vault=CredentialVault(config.paths.credentials),
        gate=gate or PreConfirmedGate(),
        workload_kubeconfig=kubeconfig,
        management_kubeconfig=management_kubeconfig,
        client_factory=registry,
        clock=ManualClock(),
    )
    return ctx, registry


def test_addons_install_in_dependency_order(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    manifests = _management_artifact(config)
    client = FakeClusterClient()
    ctx, _ = _context(config, client)

    artifact = provision_workload_cluster(ctx)

    assert [release.name for release in client.releases] == [
        "cert-manager",
        "ingress-nginx",
        "cluster-issuers",
        "argocd",
        "longhorn",
    ]
    assert client.releases[2].chart == manifests["cluster_issuers_chart"]
    assert client.default_storage_class == "longhorn"
    assert client.applied == [
        Path(manifests["argocd_bootstrap"]),
        Path(manifests["sample_application"]),
    ]
    assert artifact.payload["ingress_address"] == "ingress.elb.example.com"
    assert artifact.payload["argocd_url"] == "http://argocd.elb.example.com"
    assert artifact.payload["releases"] == ctx.installed


def test_argocd_password_is_stored_not_published(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    _management_artifact(config)
    ctx, _ = _context(config, FakeClusterClient())

    artifact = provision_workload_cluster(ctx)

    vault = CredentialVault(config.paths.credentials)
    assert vault.load(ARGOCD_PASSWORD).value == "argo-pw"
    assert artifact.payload["credentials"] == {ARGOCD_PASSWORD: str(vault.path_for(ARGOCD_PASSWORD))}
    assert "argo-pw" not in ArtifactStore(config.paths.artifacts).path_for(
        Phase.WORKLOAD_CLUSTER
    ).read_text(encoding="utf-8")


def test_argocd_password_follows_a_recreated_secret(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    _management_artifact(config)
    provision_workload_cluster(_context(config, FakeClusterClient())[0])
    recreated = FakeClusterClient(
        secrets={("argocd", "argocd-initial-admin-secret", "password"): "argo-pw-2"},
        secret_uids={("argocd", "argocd-initial-admin-secret"): "uid-2"},
    )

    provision_workload_cluster(_context(config, recreated)[0])

    record = CredentialVault(config.paths.credentials).load(ARGOCD_PASSWORD)
    assert record.value == "argo-pw-2", "a new secret UID means a new password"
    assert record.owner == "uid-2"


def test_argocd_waits_for_its_load_balancer(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    _management_artifact(config)
    client = FakeClusterClient(hostnames={"ingress-nginx-controller": "ingress.elb.example.com"})
    ctx, _ = _context(config, client)

    with pytest.raises(ReadinessTimeoutError) as excinfo:
        provision_workload_cluster(ctx)

    assert excinfo.value.resource == "argocd-server"
    assert "longhorn" not in ctx.installed


def test_argocd_hostname_takes_precedence_over_the_load_balancer(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    config = replace(config, platform=replace(config.platform, argocd_hostname="argocd.example.com"))
    _management_artifact(config)
    ctx, _ = _context(config, FakeClusterClient())

    artifact = provision_workload_cluster(ctx)

    assert artifact.payload["argocd_url"] == "https://argocd.example.com"
    assert argocd_url(None, None) is None

def test_management_kubeconfig_submits_the_cluster_descriptor(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    manifests = _management_artifact(config)
    management_kubeconfig = tmp_path / "management.yaml"
    stream = io.StringIO()
    gate = FileConfirmationGate(config.paths.confirmations, stream=stream)
    ctx, registry = _context(
        config,
        FakeClusterClient(),
        management_kubeconfig=management_kubeconfig,
        gate=gate,
    )

    provision_workload_cluster(ctx)

    assert registry.clients[management_kubeconfig].applied == [Path(manifests["cluster"])]
    assert stream.getvalue() == "", "No manual step when the descriptor is submitted"


def test_failed_release_stops_the_phase(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    _management_artifact(config)
    client = FakeClusterClient(failing_releases={"argocd"})
    ctx, _ = _context(config, client)

    with pytest.raises(ProvisioningError, match="helm could not install argocd"):
        provision_workload_cluster(ctx)

    assert ctx.installed == ["cert-manager", "ingress-nginx", "cluster-issuers"]
    assert not ArtifactStore(config.paths.artifacts).exists(Phase.WORKLOAD_CLUSTER)


def test_cluster_without_ready_nodes_times_out(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    _management_artifact(config)
    client = FakeClusterClient(ready=0)
    ctx, _ = _context(config, client)

    with pytest.raises(ReadinessTimeoutError):
        provision_workload_cluster(ctx)

    assert client.releases == []


def test_unavailable_deployment_times_out(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    _management_artifact(config)
    client = FakeClusterClient(unavailable={"cert-manager-webhook"})
    ctx, _ = _context(config, client)

    with pytest.raises(ReadinessTimeoutError) as excinfo:
        provision_workload_cluster(ctx)

    assert excinfo.value.remediation == "kubectl get pods -n cert-manager"


def test_addon_values_files_come_from_the_manifest_directory(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    manifests = _management_artifact(config)

    planned = {addon.release.name: addon for addon in addons(config.platform, manifests)}

    assert planned["cert-manager"].release.values_file == Path(manifests["values"], "cert-manager.yaml")
    assert planned["cluster-issuers"].release.values_file is None
    assert planned["longhorn"].default_storage_class == "longhorn"
