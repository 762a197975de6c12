"""Unit tests for descriptor and manifest rendering."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from platform_bootstrap._manifests import (
    CLUSTER_MANIFEST,
    ISSUERS_CHART,
    JOIN_SECRET_PLACEHOLDER,
    build_cluster_descriptor,
    render_cluster_manifest,
    render_management_manifests,
    write_manifests,
)
from platform_bootstrap._user_data import (
    SETUP_COMPLETE_MARKER,
    render_management_user_data,
    render_node_user_data,
)
from platform_bootstrap.tests._doubles import make_config

INFRASTRUCTURE = {
    "vpc_id": "vpc-1",
    "availability_zones": ["us-east-1b", "us-east-1c", "us-east-1a"],
    "private_subnet_ids": ["subnet-a", "subnet-b", "subnet-c"],
    "node_security_group_id": "sg-nodes",
}


def test_cluster_descriptor_uses_infrastructure_ids(tmp_path: Path) -> None:
    descriptor = build_cluster_descriptor(make_config(tmp_path), INFRASTRUCTURE)

    assert descriptor["vpc_id"] == "vpc-1"
    assert descriptor["subnet_id"] == "subnet-a"
    assert descriptor["zone"] == "b", "zone letter follows the first private subnet"
    assert descriptor["security_group_ids"] == ["sg-nodes"]
    assert descriptor["kubernetes_version"] == "v1.28.5+rke2r1"
    assert descriptor["join_secret"] == JOIN_SECRET_PLACEHOLDER
    assert descriptor["node_pool"]["roles"] == ["control-plane", "etcd", "worker"]


def test_cluster_manifest_has_cluster_and_machine_config(tmp_path: Path) -> None:
    descriptor = build_cluster_descriptor(make_config(tmp_path), INFRASTRUCTURE)

    cluster, machine_config = yaml.safe_load_all(render_cluster_manifest(descriptor))

    assert cluster["kind"] == "Cluster"
    assert cluster["metadata"]["namespace"] == "fleet-default"
    pool = cluster["spec"]["rkeConfig"]["machinePools"][0]
    assert pool["machineConfigRef"]["name"] == machine_config["metadata"]["name"]
    assert pool["controlPlaneRole"] and pool["etcdRole"] and pool["workerRole"]
    assert machine_config["kind"] == "Amazonec2Config"
    assert machine_config["spec"]["subnetId"] == "subnet-a"
    assert machine_config["spec"]["zone"] == "b"
    assert machine_config["spec"]["rootSize"] == "50"


def test_management_manifests_cover_every_platform_document(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    manifests = render_management_manifests(
        config, build_cluster_descriptor(config, INFRASTRUCTURE)
    )

    assert CLUSTER_MANIFEST in manifests
    assert f"{ISSUERS_CHART}/templates/letsencrypt-prod.yaml" in manifests
    assert "charts/monitoring-stack/Chart.yaml" in manifests
    assert {"values/cert-manager.yaml", "values/longhorn.yaml"} <= set(manifests)
    issuer = yaml.safe_load(manifests[f"{ISSUERS_CHART}/templates/letsencrypt-staging.yaml"])
    assert issuer["spec"]["acme"]["email"] == config.platform.letsencrypt_email
    assert yaml.safe_load(manifests["values/cert-manager.yaml"]) == {"installCRDs": True}


def test_argocd_bootstrap_pins_the_chart_version(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    manifests = render_management_manifests(
        config, build_cluster_descriptor(config, INFRASTRUCTURE)
    )

    namespace, application = yaml.safe_load_all(manifests["argocd/argocd-install.yaml"])

    assert namespace["kind"] == "Namespace"
    assert application["spec"]["source"]["targetRevision"] == "5.51.6"
    assert application["spec"]["source"]["chart"] == "argo-cd"


def test_write_manifests_refuses_to_escape(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="outside"):
        write_manifests(tmp_path, {"../evil.yaml": "kind: Secret"})


def test_write_manifests_creates_nested_paths(tmp_path: Path) -> None:
    count = write_manifests(tmp_path, {"a/b/c.yaml": "kind: A", "d.yaml": "kind: D"})

    assert count == 2
    assert (tmp_path / "a" / "b" / "c.yaml").read_text(encoding="utf-8") == "kind: A"


def test_management_boot_script_writes_password_and_marker() -> None:
    script = render_management_user_data(rancher_version="v2.8.0", ssh_user="ubuntu")

    assert "/home/ubuntu/rancher-password.txt" in script
    assert 'echo "Rancher Bootstrap Password: $BOOTSTRAP_PASSWORD"' in script
    assert f"touch {SETUP_COMPLETE_MARKER}" in script
    assert script.index("curl -ksf https://localhost/ping") < script.index("touch")


def test_node_boot_script_installs_rke2() -> None:
    assert "get.rke2.io" in render_node_user_data(ssh_user="ubuntu")
