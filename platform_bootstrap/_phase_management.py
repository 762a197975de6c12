"""Phase 2: bring the management plane up and describe the workload cluster."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ._aws_provider import CloudProvider
from ._bootstrap_errors import StaleArtifactError
from ._confirmation import ConfirmationGate, ConfirmationStep, await_confirmation
from ._credentials import RANCHER_PASSWORD_FILE, CredentialVault, extract_credential
from ._deployment_config import DeploymentConfig
from ._handoff import ArtifactStore, Phase, PhaseArtifact, build_artifact
from ._health import http_probe
from ._manifests import (
    ARGOCD_BOOTSTRAP_MANIFEST,
    CLUSTER_MANIFEST,
    ISSUERS_CHART,
    MONITORING_CHART,
    SAMPLE_APPLICATION_MANIFEST,
    VALUES_DIR,
    build_cluster_descriptor,
    render_management_manifests,
    write_manifests,
)
from ._phase_infrastructure import resource_groups
from ._provisioning import ResourceGroup
from ._readiness import Clock, Probe, ReadinessCondition, await_condition
from ._remote import RemoteExecutor, RemoteHost
from ._resources import ResourceKind, ResourceState
from ._state_store import StateStore

logger = logging.getLogger(__name__)

PHASE = Phase.MANAGEMENT_PLANE.value

# Artifact fields whose resources must still exist, with the state entry
# that recorded them.
REFERENCED_RESOURCES: tuple[tuple[str, str, ResourceKind], ...] = (
    ("vpc_id", "network-id", ResourceKind.NETWORK),
    ("private_subnet_ids", "private-subnet-ids", ResourceKind.SUBNET_SET),
    (
        "management_security_group_id",
        "management-security-group-id",
        ResourceKind.SECURITY_GROUP,
    ),
    ("node_security_group_id", "node-security-group-id", ResourceKind.SECURITY_GROUP),
    ("management_instance_id", "management-instance-id", ResourceKind.INSTANCE),
)


@dataclass(slots=True)
class ManagementContext:
    """Collaborators phase 2 runs against."""

    config: DeploymentConfig
    store: StateStore
    provider: CloudProvider
    executor: RemoteExecutor
    vault: CredentialVault
    artifacts: ArtifactStore
    gate: ConfirmationGate
    clock: Clock | None = None
    url_probe: Callable[..., Callable[[], Probe]] = http_probe


def _group_of(name: str, groups: list[ResourceGroup]) -> int:
    for index, group in enumerate(groups):
        if name in group.members:
            return index
    return len(groups)


def verify_references(ctx: ManagementContext, infrastructure: PhaseArtifact) -> None:
    """Fail if resources named by the infrastructure artifact are gone.

    The state groups holding a vanished resource, and every group after
    them, are cleared so that re-running phase 1 re-creates them.
    """
    groups = resource_groups(ctx.config)
    vanished: list[str] = []
    first_stale = len(groups)
    for field_name, entry_name, kind in REFERENCED_RESOURCES:
        value = infrastructure.require(field_name)
        # Sets are checked member by member; one lost subnet breaks the plan.
        members = value if isinstance(value, list) else [value]
        missing = [
            resource_id
            for resource_id in members
            if ctx.provider.describe(kind, str(resource_id)) is ResourceState.ABSENT
        ]
        if not missing:
            continue
        vanished.extend(f"{kind} {resource_id}" for resource_id in missing)
        first_stale = min(first_stale, _group_of(entry_name, groups))
    if not vanished:
        return
    for group in groups[first_stale:]:
        ctx.store.clear(group.members)
    msg = f"infrastructure artifact references missing resources: {', '.join(vanished)}"
    raise StaleArtifactError(
        msg,
        phase=PHASE,
        remediation="Re-run provision_infrastructure, then this phase.",
    )


def initial_setup_step(rancher_url: str, credential_path: str) -> ConfirmationStep:
    """Return the first-login step the operator has to complete."""
    return ConfirmationStep(
        name="rancher-initial-setup",
        instructions=(
            f"Open {rancher_url} (accept the self-signed certificate).",
            f"Log in with the bootstrap password stored in {credential_path}.",
            "Set a new admin password and confirm the server URL.",
        ),
    )


def bootstrap_management_plane(ctx: ManagementContext) -> PhaseArtifact:
    """Run phase 2 to completion and write its artifact."""

    config = ctx.config
    polling = config.polling
    infrastructure = ctx.artifacts.load(Phase.INFRASTRUCTURE)
    verify_references(ctx, infrastructure)

    address = str(infrastructure.require("management_public_address"))
    edge = infrastructure.payload.get("edge") or {}
    rancher_url = f"https://{edge.get('hostname') or address}"
    await_condition(
        ReadinessCondition(
            description=f"management API at https://{address}/ping",
            check=ctx.url_probe(
                f"https://{address}/ping", expect_text="pong", verify=False
            ),
            interval=polling.http_interval,
            timeout=polling.http_timeout,
        ),
        clock=ctx.clock,
        phase=PHASE,
        remediation=f"Check the Rancher container: ssh {config.compute.ssh_user}@{address}",
    )

    host = RemoteHost(
        address=address,
        user=str(infrastructure.payload.get("ssh_user") or config.compute.ssh_user),
        identity=config.compute.ssh_private_key,
    )
    credential = extract_credential(
        ctx.executor,
        host,
        RANCHER_PASSWORD_FILE,
        vault=ctx.vault,
        interval=polling.credential_interval,
        timeout=polling.credential_timeout,
        clock=ctx.clock,
        phase=PHASE,
        owner=str(infrastructure.require("management_instance_id")),
    )
    credential_path = str(ctx.vault.path_for(credential.name))

    await_confirmation(
        ctx.gate,
        initial_setup_step(rancher_url, credential_path),
        interval=polling.confirmation_interval,
        timeout=polling.confirmation_timeout,
        clock=ctx.clock,
        phase=PHASE,
    )

    descriptor = build_cluster_descriptor(config, infrastructure.payload)
    manifests = render_management_manifests(config, descriptor)
    written = write_manifests(config.paths.manifests, manifests)
    logger.info("Rendered %d manifests under %s", written, config.paths.manifests)

    root = config.paths.manifests
    payload: dict[str, Any] = {
        "rancher_url": rancher_url,
        "management_public_address": address,
        "infrastructure_fingerprint": infrastructure.fingerprint,
        "cluster": descriptor,
        "manifests": {
            "cluster": str(root / CLUSTER_MANIFEST),
            "argocd_bootstrap": str(root / ARGOCD_BOOTSTRAP_MANIFEST),
            "sample_application": str(root / SAMPLE_APPLICATION_MANIFEST),
            "cluster_issuers_chart": str(root / ISSUERS_CHART),
            "monitoring_chart": str(root / MONITORING_CHART),
            "values": str(root / VALUES_DIR),
        },
        "credentials": {credential.name: credential_path},
    }
    artifact = build_artifact(Phase.MANAGEMENT_PLANE, payload)
    ctx.artifacts.write(artifact)
    return artifact


__all__ = [
    "REFERENCED_RESOURCES",
    "ManagementContext",
    "bootstrap_management_plane",
    "initial_setup_step",
    "verify_references",
]
