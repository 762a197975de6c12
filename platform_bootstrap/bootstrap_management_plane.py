#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.13"
# dependencies = ["cyclopts>=2.9", "plumbum>=1.8", "PyYAML>=6.0", "requests>=2.31"]
# ///
"""Bring up the Rancher management plane (phase 2).

Reads the infrastructure artifact, waits for the Rancher API, captures the
bootstrap password, waits for the operator to finish the first login, and
renders the workload-cluster and platform descriptors.
"""

from __future__ import annotations

from pathlib import Path

from cyclopts import App, Parameter
from platform_bootstrap._aws_provider import AwsCliProvider
from platform_bootstrap._bootstrap_errors import PlatformBootstrapError
from platform_bootstrap._cli_support import (
    Workspace,
    build_gate,
    check_ssh_keys,
    report_failure,
    start_run,
)
from platform_bootstrap._commands import require_tools
from platform_bootstrap._deployment_config import (
    RawDeploymentInputs,
    resolve_deployment_config,
)
from platform_bootstrap._phase_management import (
    PHASE,
    ManagementContext,
    bootstrap_management_plane,
)
from platform_bootstrap._remote import SSHExecutor

app = App(help="Bootstrap the management plane and render cluster descriptors (phase 2).")


@app.command()
def main(
    deployment_dir: Path | None = Parameter(),
    region: str | None = Parameter(),
    aws_profile: str | None = Parameter(),
    ssh_key: Path | None = Parameter(),
    cluster_name: str | None = Parameter(),
    assume_confirmed: bool = False,
    verbose: bool = False,
) -> int:
    """Run phase 2 against the deployment's infrastructure artifact.

    Manual steps are confirmed by creating the marker file printed with the
    instructions; ``--assume-confirmed`` skips them on unattended re-runs.
    """
    config = resolve_deployment_config(
        RawDeploymentInputs(
            deployment_dir=deployment_dir,
            region=region,
            aws_profile=aws_profile,
            ssh_key=ssh_key,
            cluster_name=cluster_name,
        )
    )
    start_run(config, verbose=verbose, run_name="bootstrap-management-plane")
    provider = AwsCliProvider(config.region, profile=config.aws_profile)

    try:
        require_tools(["aws", "ssh"], phase=PHASE)
        check_ssh_keys(config.compute, phase=PHASE)
        provider.caller_identity()
        workspace = Workspace.open(config)
        artifact = bootstrap_management_plane(
            ManagementContext(
                config=config,
                store=workspace.store,
                provider=provider,
                executor=SSHExecutor(),
                vault=workspace.vault,
                artifacts=workspace.artifacts,
                gate=build_gate(config, assume_confirmed=assume_confirmed),
            )
        )
    except PlatformBootstrapError as exc:
        return report_failure(exc)

    payload = artifact.payload
    print("\n--- Management plane ready ---")
    print(f"Rancher: {payload['rancher_url']}")
    print(f"Cluster descriptor: {payload['manifests']['cluster']}")
    for name, path in payload["credentials"].items():
        print(f"Credential {name}: {path}")
    print("\nNext: run provision_workload_cluster.")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
