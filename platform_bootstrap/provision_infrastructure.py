#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.13"
# dependencies = ["cyclopts>=2.9", "plumbum>=1.8", "PyYAML>=6.0", "requests>=2.31"]
# ///
"""Provision the phase 1 infrastructure of a platform deployment.

This script:
- checks that ``aws`` and ``ssh`` are installed, the AWS credentials are
  valid and the SSH key pair exists;
- ensures the VPC, subnets, gateways, route tables, security groups, key
  pair and hosts, reusing everything the state file already records;
- waits for the management host to finish bootstrapping and captures the
  Rancher bootstrap password; and
- writes the infrastructure artifact consumed by
  ``bootstrap_management_plane``.
"""

from __future__ import annotations

from pathlib import Path

from cyclopts import App, Parameter
from platform_bootstrap._aws_provider import AwsCliProvider
from platform_bootstrap._bootstrap_errors import PlatformBootstrapError
from platform_bootstrap._cli_support import (
    Workspace,
    check_ssh_keys,
    report_failure,
    start_run,
)
from platform_bootstrap._commands import require_tools
from platform_bootstrap._deployment_config import (
    RawDeploymentInputs,
    resolve_deployment_config,
)
from platform_bootstrap._phase_infrastructure import (
    PHASE,
    InfrastructureContext,
    provision_infrastructure,
)
from platform_bootstrap._remote import SSHExecutor

app = App(help="Provision network, security groups and hosts (phase 1).")


@app.command()
def main(
    deployment_dir: Path | None = Parameter(),
    project_name: str | None = Parameter(),
    environment: str | None = Parameter(),
    region: str | None = Parameter(),
    aws_profile: str | None = Parameter(),
    ssh_key: Path | None = Parameter(),
    rancher_hostname: str | None = Parameter(),
    node_count: str | None = Parameter(),
    verbose: bool = False,
) -> int:
    """Provision phase 1 and write the infrastructure artifact.

    Inputs resolve from CLI parameters, then environment variables
    (``DEPLOYMENT_DIR``, ``PROJECT_NAME``, ``AWS_REGION``, ...), then
    defaults. Re-running after a failure resumes from the state file.
    """
    config = resolve_deployment_config(
        RawDeploymentInputs(
            deployment_dir=deployment_dir,
            project_name=project_name,
            environment=environment,
            region=region,
            aws_profile=aws_profile,
            ssh_key=ssh_key,
            rancher_hostname=rancher_hostname,
            node_count=node_count,
        )
    )
    start_run(config, verbose=verbose, run_name="provision-infrastructure")
    provider = AwsCliProvider(config.region, profile=config.aws_profile)

    try:
        require_tools(["aws", "ssh"], phase=PHASE)
        check_ssh_keys(config.compute, phase=PHASE)
        print(f"AWS identity: {provider.caller_identity()}")
        workspace = Workspace.open(config)
        artifact = provision_infrastructure(
            InfrastructureContext(
                config=config,
                store=workspace.store,
                provider=provider,
                executor=SSHExecutor(),
                vault=workspace.vault,
                artifacts=workspace.artifacts,
            )
        )
    except PlatformBootstrapError as exc:
        return report_failure(exc)

    payload = artifact.payload
    print("\n--- Infrastructure ready ---")
    print(f"VPC: {payload['vpc_id']}")
    print(f"Management host: {payload['management_public_address']}")
    print(f"Rancher: https://{payload['management_public_address']}")
    for name, path in payload["credentials"].items():
        print(f"Credential {name}: {path}")
    print(f"Artifact: {workspace.artifacts.path_for(artifact.phase)}")
    print("\nNext: run bootstrap_management_plane.")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
