#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.13"
# dependencies = ["cyclopts>=2.9", "plumbum>=1.8"]
# ///
"""Delete every resource recorded in a deployment's state file.

Resources are removed dependants first. A failed deletion is reported and
the walk continues; re-running the command retries only what is left.
"""

from __future__ import annotations

from pathlib import Path

from cyclopts import App, Parameter
from platform_bootstrap._aws_provider import AwsCliProvider
from platform_bootstrap._bootstrap_errors import PlatformBootstrapError, TeardownError
from platform_bootstrap._cli_support import Workspace, report_failure, start_run
from platform_bootstrap._commands import require_tools
from platform_bootstrap._deployment_config import (
    RawDeploymentInputs,
    resolve_deployment_config,
)
from platform_bootstrap._handoff import Phase
from platform_bootstrap._teardown import TeardownStep, failed_steps, teardown

PHASE = "teardown"

app = App(help="Tear down every recorded platform resource.")


def _print_steps(steps: list[TeardownStep]) -> None:
    print("\n--- Teardown ---")
    for step in steps:
        detail = f" ({step.detail})" if step.detail else ""
        print(f"{step.outcome:<15} {step.kind:<15} {step.resource_id}{detail}")


def _discard_outputs(workspace: Workspace) -> None:
    removed = [phase.value for phase in Phase if workspace.artifacts.discard(phase)]
    credentials = workspace.vault.discard_all()
    print(f"Discarded artifacts: {', '.join(removed) or 'none'}")
    print(f"Discarded credentials: {credentials}")


@app.command()
def main(
    deployment_dir: Path | None = Parameter(),
    region: str | None = Parameter(),
    aws_profile: str | None = Parameter(),
    keep_artifacts: bool = False,
    verbose: bool = False,
) -> int:
    """Delete recorded resources in reverse dependency order.

    Exits with status 1 when any deletion failed. After a clean run the
    phase artifacts and captured credentials are discarded unless
    ``--keep-artifacts`` is given.
    """
    config = resolve_deployment_config(
        RawDeploymentInputs(
            deployment_dir=deployment_dir, region=region, aws_profile=aws_profile
        )
    )
    start_run(config, verbose=verbose, run_name="teardown")
    provider = AwsCliProvider(config.region, profile=config.aws_profile)

    try:
        require_tools(["aws"], phase=PHASE)
        provider.caller_identity()
        workspace = Workspace.open(config)
        steps = teardown(
            workspace.store,
            provider,
            interval=config.polling.resource_interval,
            timeout=config.polling.resource_timeout,
        )
    except PlatformBootstrapError as exc:
        return report_failure(exc)

    _print_steps(steps)
    failures = failed_steps(steps)
    if failures:
        names = ", ".join(step.name for step in failures)
        return report_failure(
            TeardownError(
                f"{len(failures)} of {len(steps)} resources were not deleted: {names}",
                phase=PHASE,
                remediation="Fix the reported errors and re-run teardown_platform.",
            )
        )

    if not keep_artifacts:
        _discard_outputs(workspace)
    print("\nTeardown complete.")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
