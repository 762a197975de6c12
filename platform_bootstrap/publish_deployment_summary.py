#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.13"
# dependencies = ["cyclopts>=2.9"]
# ///
"""Write a Markdown summary of a deployment from its phase artifacts.

The summary lists access URLs, SSH commands and where captured credentials
are stored. Secret values are never read.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from cyclopts import App, Parameter
from platform_bootstrap._bootstrap_errors import PlatformBootstrapError
from platform_bootstrap._cli_support import report_failure
from platform_bootstrap._deployment_config import (
    DeploymentConfig,
    RawDeploymentInputs,
    resolve_deployment_config,
)
from platform_bootstrap._handoff import ArtifactStore, Phase, PhaseArtifact
from platform_bootstrap._state_store import write_atomically

app = App(help="Summarise a deployment's endpoints and credential locations.")


def _credential_lines(payload: Mapping[str, Any]) -> list[str]:
    return [
        f"- `{name}`: stored in `{path}`"
        for name, path in sorted(payload.get("credentials", {}).items())
    ]


def _infrastructure_section(config: DeploymentConfig, artifact: PhaseArtifact) -> list[str]:
    payload = artifact.payload
    address = payload["management_public_address"]
    user = payload.get("ssh_user", config.compute.ssh_user)
    lines = [
        "## Infrastructure",
        "",
        f"- Region: `{payload['region']}`",
        f"- VPC: `{payload['vpc_id']}` ({payload['vpc_cidr']})",
        f"- Management host: `{payload['management_instance_id']}` at `{address}`",
        f"- SSH: `ssh -i {config.compute.ssh_private_key} {user}@{address}`",
        f"- Worker nodes: {len(payload.get('node_instance_ids', []))}",
    ]
    edge = payload.get("edge") or {}
    if edge:
        lines.append(
            f"- Load balancer: `{edge['load_balancer_dns']}` for `{edge['hostname']}`"
        )
    lines.extend(_credential_lines(payload))
    return lines


def _management_section(artifact: PhaseArtifact) -> list[str]:
    payload = artifact.payload
    cluster = payload.get("cluster", {})
    return [
        "## Management plane",
        "",
        f"- Rancher: <{payload['rancher_url']}>",
        f"- Cluster descriptor: `{payload['manifests']['cluster']}`",
        f"- Kubernetes: `{cluster.get('kubernetes_version', '')}`",
        *_credential_lines(payload),
    ]


def _workload_section(artifact: PhaseArtifact) -> list[str]:
    payload = artifact.payload
    lines = [
        "## Workload cluster",
        "",
        f"- Cluster: `{payload['cluster_name']}`",
        f"- Kubeconfig: `{payload['kubeconfig']}`",
        f"- Add-ons: {', '.join(payload.get('releases', []))}",
        f"- Default storage class: `{payload.get('default_storage_class', '')}`",
    ]
    if payload.get("ingress_address"):
        lines.append(f"- Ingress load balancer: `{payload['ingress_address']}`")
    if payload.get("argocd_url"):
        lines.append(f"- Argo CD: <{payload['argocd_url']}>")
    else:
        lines.append(
            "- Argo CD: `kubectl port-forward svc/argocd-server -n argocd 8080:80`"
        )
    lines.extend(_credential_lines(payload))
    return lines


def render_summary(config: DeploymentConfig, artifacts: ArtifactStore) -> str:
    """Render the summary from every artifact present.

    The infrastructure artifact is required; later phases are optional.
    """
    infrastructure = artifacts.load(Phase.INFRASTRUCTURE)
    lines = [
        f"# Deployment summary: {config.project_name} ({config.environment})",
        "",
        *_infrastructure_section(config, infrastructure),
    ]
    if artifacts.exists(Phase.MANAGEMENT_PLANE):
        lines.extend(["", *_management_section(artifacts.load(Phase.MANAGEMENT_PLANE))])
    if artifacts.exists(Phase.WORKLOAD_CLUSTER):
        lines.extend(["", *_workload_section(artifacts.load(Phase.WORKLOAD_CLUSTER))])
    pending = [phase.entrypoint for phase in Phase if not artifacts.exists(phase)]
    if pending:
        lines.extend(["", "## Pending", "", *[f"- run `{name}`" for name in pending]])
    return "\n".join(lines) + "\n"


@app.command()
def main(
    deployment_dir: Path | None = Parameter(),
    output: Path | None = Parameter(),
) -> int:
    """Write ``deployment-summary.md`` into the deployment directory."""
    config = resolve_deployment_config(RawDeploymentInputs(deployment_dir=deployment_dir))
    destination = output or config.paths.root / "deployment-summary.md"
    try:
        summary = render_summary(config, ArtifactStore(config.paths.artifacts))
    except PlatformBootstrapError as exc:
        return report_failure(exc)
    write_atomically(destination, summary)
    print(f"Wrote {destination}")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
