#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.13"
# dependencies = ["cyclopts>=2.9", "plumbum>=1.8", "PyYAML>=6.0"]
# ///
"""Create the workload cluster and install its add-ons (phase 3).

This script:
- submits the rendered cluster descriptor through the management plane (or
  asks the operator to import it);
- waits for the workload kubeconfig and for the nodes to become Ready;
- installs cert-manager, ingress-nginx, the cluster issuers, Argo CD and
  Longhorn, waiting for each; and
- applies the sample GitOps application and captures the Argo CD admin
  password.
"""

from __future__ import annotations

from pathlib import Path

from cyclopts import App, Parameter
from platform_bootstrap._bootstrap_errors import PlatformBootstrapError
from platform_bootstrap._cli_support import (
    Workspace,
    build_gate,
    report_failure,
    start_run,
)
from platform_bootstrap._commands import require_tools
from platform_bootstrap._deployment_config import (
    RawDeploymentInputs,
    resolve_deployment_config,
)
from platform_bootstrap._input_resolution import InputResolution, resolve_input
from platform_bootstrap._phase_workload import (
    PHASE,
    WorkloadContext,
    provision_workload_cluster,
)

app = App(help="Create the workload cluster and install platform add-ons (phase 3).")


@app.command()
def main(
    deployment_dir: Path | None = Parameter(),
    cluster_name: str | None = Parameter(),
    workload_kubeconfig: Path | None = Parameter(),
    management_kubeconfig: Path | None = Parameter(),
    assume_confirmed: bool = False,
    verbose: bool = False,
) -> int:
    """Run phase 3 against the management-plane artifact.

    ``--workload-kubeconfig`` defaults to ``<deployment>/kubeconfig.yaml``.
    With ``--management-kubeconfig`` the cluster descriptor is applied
    directly instead of being imported by hand.
    """
    config = resolve_deployment_config(
        RawDeploymentInputs(deployment_dir=deployment_dir, cluster_name=cluster_name)
    )
    start_run(config, verbose=verbose, run_name="provision-workload-cluster")
    kubeconfig = resolve_input(
        workload_kubeconfig,
        InputResolution(
            env_key="WORKLOAD_KUBECONFIG",
            default=config.paths.root / "kubeconfig.yaml",
            as_path=True,
        ),
    )
    management = resolve_input(
        management_kubeconfig,
        InputResolution(env_key="MANAGEMENT_KUBECONFIG", as_path=True),
    )

    try:
        require_tools(["kubectl", "helm"], phase=PHASE)
        workspace = Workspace.open(config)
        artifact = provision_workload_cluster(
            WorkloadContext(
                config=config,
                artifacts=workspace.artifacts,
                vault=workspace.vault,
                gate=build_gate(config, assume_confirmed=assume_confirmed),
                workload_kubeconfig=Path(kubeconfig),
                management_kubeconfig=None if management is None else Path(management),
            )
        )
    except PlatformBootstrapError as exc:
        return report_failure(exc)

    payload = artifact.payload
    print("\n--- Workload cluster ready ---")
    print(f"Cluster: {payload['cluster_name']}")
    print(f"Kubeconfig: {payload['kubeconfig']}")
    if payload.get("ingress_address"):
        print(f"Ingress load balancer: {payload['ingress_address']}")
    print(f"Releases: {', '.join(payload['releases'])}")
    for name, path in payload["credentials"].items():
        print(f"Credential {name}: {path}")
    print("\nNext: run publish_deployment_summary.")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
