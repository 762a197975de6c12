"""Rendering of cluster descriptors, platform manifests and chart values.

The orchestrator only fills in the fields it owns (names, versions, network
ids, hostnames); the documents are otherwise opaque and are handed to
``kubectl`` and ``helm`` unchanged.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import yaml

from ._deployment_config import DeploymentConfig, PlatformSettings

CLUSTER_NAMESPACE = "fleet-default"
JOIN_SECRET_PLACEHOLDER = "<issued-by-management-plane>"

CLUSTER_MANIFEST = "cluster/cluster-config.yaml"
ARGOCD_BOOTSTRAP_MANIFEST = "argocd/argocd-install.yaml"
SAMPLE_APPLICATION_MANIFEST = "argocd/sample-application.yaml"
ISSUERS_CHART = "charts/cluster-issuers"
MONITORING_CHART = "charts/monitoring-stack"
VALUES_DIR = "values"


def write_manifests(output_dir: Path, manifests: Mapping[str, str]) -> int:
    """Write rendered manifests to the output directory.

    Parameters
    ----------
    output_dir
        Base directory for manifest output.
    manifests
        Map of relative paths to YAML content.

    Returns
    -------
    int
        Number of manifests written.

    Examples
    --------
    >>> write_manifests(Path("/tmp/out"), {"ns.yaml": "apiVersion: v1"})
    1
    """
    count = 0
    output_root = output_dir.resolve()
    for rel_path, content in manifests.items():
        rel = Path(rel_path)
        if rel.is_absolute() or ".." in rel.parts:
            msg = f"Refusing to write manifest outside {output_dir}"
            raise ValueError(msg)
        dest = output_dir / rel
        if not dest.resolve().is_relative_to(output_root):
            msg = f"Refusing to write manifest outside {output_dir}"
            raise ValueError(msg)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(content, encoding="utf-8")
        count += 1
    return count


def dump_documents(documents: Iterable[Mapping[str, Any]]) -> str:
    """Serialise documents as a multi-document YAML stream.

    Examples
    --------
    >>> print(dump_documents([{"kind": "A"}, {"kind": "B"}]), end="")
    kind: A
    ---
    kind: B
    """
    return "---\n".join(
        yaml.safe_dump(dict(document), sort_keys=False) for document in documents if document
    )


def build_cluster_descriptor(
    config: DeploymentConfig, infrastructure: Mapping[str, Any]
) -> dict[str, Any]:
    """Return the workload-cluster descriptor handed to phase 3.

    ``infrastructure`` is the payload of the infrastructure artifact.
    """
    platform = config.platform
    private_subnets = list(infrastructure["private_subnet_ids"])
    zones = list(infrastructure["availability_zones"])
    return {
        "name": platform.cluster_name,
        "namespace": CLUSTER_NAMESPACE,
        "kubernetes_version": platform.kubernetes_version,
        "cni": "calico",
        "pod_cidr": platform.pod_cidr,
        "service_cidr": platform.service_cidr,
        "region": config.region,
        "vpc_id": infrastructure["vpc_id"],
        "subnet_id": private_subnets[0],
        # Amazonec2Config wants the zone letter of the subnet's zone.
        "zone": zones[0].removeprefix(config.region),
        "security_group_ids": [infrastructure["node_security_group_id"]],
        "node_pool": {
            "name": "pool1",
            "quantity": platform.pool_quantity,
            "instance_type": platform.pool_instance_type,
            "root_size": config.compute.root_volume_size,
            "roles": ["control-plane", "etcd", "worker"],
        },
        "ssh_user": config.compute.ssh_user,
        "join_secret": JOIN_SECRET_PLACEHOLDER,
    }


def render_cluster_manifest(descriptor: Mapping[str, Any]) -> str:
    """Render the RKE2 ``Cluster`` and its ``Amazonec2Config`` machine config."""
    pool = descriptor["node_pool"]
    machine_config_name = f"{descriptor['name']}-{pool['name']}"
    cluster = {
        "apiVersion": "provisioning.cattle.io/v1",
        "kind": "Cluster",
        "metadata": {"name": descriptor["name"], "namespace": descriptor["namespace"]},
        "spec": {
            "kubernetesVersion": descriptor["kubernetes_version"],
            "rkeConfig": {
                "chartValues": {f"rke2-{descriptor['cni']}": {}},
                "etcd": {
                    "snapshotRetention": 5,
                    "snapshotScheduleCron": "0 */5 * * *",
                },
                "machineGlobalConfig": {
                    "cni": descriptor["cni"],
                    "cluster-cidr": descriptor["pod_cidr"],
                    "service-cidr": descriptor["service_cidr"],
                    "disable-kube-proxy": False,
                    "etcd-expose-metrics": False,
                },
                "machinePools": [
                    {
                        "name": pool["name"],
                        "quantity": pool["quantity"],
                        "unhealthyNodeTimeout": "3m",
                        "controlPlaneRole": "control-plane" in pool["roles"],
                        "etcdRole": "etcd" in pool["roles"],
                        "workerRole": "worker" in pool["roles"],
                        "machineConfigRef": {
                            "apiVersion": "rke-machine-config.cattle.io/v1",
                            "kind": "Amazonec2Config",
                            "name": machine_config_name,
                        },
                    }
                ],
                "upgradeStrategy": {
                    "controlPlaneConcurrency": "1",
                    "workerConcurrency": "1",
                },
            },
        },
    }
    machine_config = {
        "apiVersion": "rke-machine-config.cattle.io/v1",
        "kind": "Amazonec2Config",
        "metadata": {"name": machine_config_name, "namespace": descriptor["namespace"]},
        "spec": {
            "instanceType": pool["instance_type"],
            "region": descriptor["region"],
            "vpcId": descriptor["vpc_id"],
            "zone": descriptor["zone"],
            "subnetId": descriptor["subnet_id"],
            "securityGroup": list(descriptor["security_group_ids"]),
            "sshUser": descriptor["ssh_user"],
            "volumeType": "gp3",
            "rootSize": str(pool["root_size"]),
        },
    }
    return dump_documents([cluster, machine_config])


def render_argocd_bootstrap(platform: PlatformSettings) -> str:
    """Render the namespace and self-managing Argo CD ``Application``."""
    server: dict[str, Any] = {"service": {"type": "LoadBalancer"}}
    if platform.argocd_hostname:
        server["ingress"] = {
            "enabled": True,
            "ingressClassName": "nginx",
            "hosts": [platform.argocd_hostname],
            "tls": [{"secretName": "argocd-server-tls", "hosts": [platform.argocd_hostname]}],
        }
    values = {"server": server, "configs": {"params": {"server.insecure": True}}}
    namespace = {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "argocd"}}
    application = {
        "apiVersion": "argoproj.io/v1alpha1",
        "kind": "Application",
        "metadata": {
            "name": "argocd",
            "namespace": "argocd",
            "finalizers": ["resources-finalizer.argocd.argoproj.io"],
        },
        "spec": {
            "project": "default",
            "source": {
                "repoURL": "https://argoproj.github.io/argo-helm",
                "targetRevision": platform.argocd_chart_version,
                "chart": "argo-cd",
                "helm": {"values": yaml.safe_dump(values, sort_keys=False)},
            },
            "destination": {
                "server": "https://kubernetes.default.svc",
                "namespace": "argocd",
            },
            "syncPolicy": {
                "automated": {"prune": True, "selfHeal": True},
                "syncOptions": ["CreateNamespace=true"],
            },
        },
    }
    return dump_documents([namespace, application])


def _cluster_issuer(name: str, server: str, email: str) -> dict[str, Any]:
    return {
        "apiVersion": "cert-manager.io/v1",
        "kind": "ClusterIssuer",
        "metadata": {"name": name},
        "spec": {
            "acme": {
                "server": server,
                "email": email,
                "privateKeySecretRef": {"name": name},
                "solvers": [{"http01": {"ingress": {"class": "nginx"}}}],
            }
        },
    }


def render_cluster_issuers_chart(platform: PlatformSettings) -> dict[str, str]:
    """Render the Let's Encrypt staging and production issuers chart."""
    chart = {
        "apiVersion": "v2",
        "name": "cluster-issuers",
        "description": "Certificate issuers for the platform",
        "type": "application",
        "version": "0.1.0",
        "appVersion": "1.0",
    }
    issuers = {
        "letsencrypt-staging": "https://acme-staging-v02.api.letsencrypt.org/directory",
        "letsencrypt-prod": "https://acme-v02.api.letsencrypt.org/directory",
    }
    rendered = {f"{ISSUERS_CHART}/Chart.yaml": yaml.safe_dump(chart, sort_keys=False)}
    for name, server in issuers.items():
        rendered[f"{ISSUERS_CHART}/templates/{name}.yaml"] = yaml.safe_dump(
            _cluster_issuer(name, server, platform.letsencrypt_email), sort_keys=False
        )
    return rendered


def render_monitoring_chart(platform: PlatformSettings) -> dict[str, str]:
    """Render the kube-prometheus-stack wrapper chart backed by Longhorn."""

    def claim(size: str) -> dict[str, Any]:
        return {
            "volumeClaimTemplate": {
                "spec": {
                    "storageClassName": "longhorn",
                    "accessModes": ["ReadWriteOnce"],
                    "resources": {"requests": {"storage": size}},
                }
            }
        }

    chart = {
        "apiVersion": "v2",
        "name": "monitoring-stack",
        "description": "Prometheus, Grafana, and Alertmanager stack",
        "type": "application",
        "version": "0.1.0",
        "appVersion": "1.0",
        "dependencies": [
            {
                "name": "kube-prometheus-stack",
                "version": platform.monitoring_chart_version,
                "repository": "https://prometheus-community.github.io/helm-charts",
            }
        ],
    }
    values = {
        "kube-prometheus-stack": {
            "prometheus": {"prometheusSpec": {"storageSpec": claim("50Gi")}},
            "grafana": {
                "persistence": {
                    "enabled": True,
                    "storageClassName": "longhorn",
                    "size": "10Gi",
                },
                "service": {"type": "LoadBalancer"},
            },
            "alertmanager": {"alertmanagerSpec": {"storage": claim("10Gi")}},
        }
    }
    return {
        f"{MONITORING_CHART}/Chart.yaml": yaml.safe_dump(chart, sort_keys=False),
        f"{MONITORING_CHART}/values.yaml": yaml.safe_dump(values, sort_keys=False),
    }


def render_sample_application(platform: PlatformSettings) -> str:
    """Render the guestbook ``Application`` used to prove GitOps works."""
    application = {
        "apiVersion": "argoproj.io/v1alpha1",
        "kind": "Application",
        "metadata": {"name": "guestbook", "namespace": "argocd"},
        "spec": {
            "project": "default",
            "source": {
                "repoURL": platform.sample_app_repo,
                "targetRevision": "HEAD",
                "path": "guestbook",
            },
            "destination": {
                "server": "https://kubernetes.default.svc",
                "namespace": "guestbook",
            },
            "syncPolicy": {
                "automated": {"prune": True, "selfHeal": True},
                "syncOptions": ["CreateNamespace=true"],
            },
        },
    }
    return dump_documents([application])


def render_addon_values(platform: PlatformSettings) -> dict[str, str]:
    """Render ``helm --values`` files for each add-on release."""
    argocd_server: dict[str, Any] = {"service": {"type": "LoadBalancer"}}
    if platform.argocd_hostname:
        argocd_server["ingress"] = {
            "enabled": True,
            "ingressClassName": "nginx",
            "hosts": [platform.argocd_hostname],
        }
    values: dict[str, dict[str, Any]] = {
        "cert-manager": {"installCRDs": True},
        "ingress-nginx": {"controller": {"service": {"type": "LoadBalancer"}}},
        "argocd": {
            "server": argocd_server,
            "configs": {"params": {"server.insecure": True}},
        },
        "longhorn": {"defaultSettings": {"defaultDataPath": platform.longhorn_data_path}},
    }
    return {
        f"{VALUES_DIR}/{name}.yaml": yaml.safe_dump(document, sort_keys=False)
        for name, document in values.items()
    }


def render_management_manifests(
    config: DeploymentConfig, descriptor: Mapping[str, Any]
) -> dict[str, str]:
    """Render every document phase 2 hands to phase 3, keyed by relative path."""
    platform = config.platform
    manifests = {
        CLUSTER_MANIFEST: render_cluster_manifest(descriptor),
        ARGOCD_BOOTSTRAP_MANIFEST: render_argocd_bootstrap(platform),
        SAMPLE_APPLICATION_MANIFEST: render_sample_application(platform),
    }
    manifests.update(render_cluster_issuers_chart(platform))
    manifests.update(render_monitoring_chart(platform))
    manifests.update(render_addon_values(platform))
    return manifests


__all__ = [
    "ARGOCD_BOOTSTRAP_MANIFEST",
    "CLUSTER_MANIFEST",
    "ISSUERS_CHART",
    "JOIN_SECRET_PLACEHOLDER",
    "MONITORING_CHART",
    "SAMPLE_APPLICATION_MANIFEST",
    "VALUES_DIR",
    "build_cluster_descriptor",
    "dump_documents",
    "render_cluster_manifest",
    "render_management_manifests",
    "write_manifests",
]
