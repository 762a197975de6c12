"""Phase 1: network, security and compute for the management plane.

Resources are ensured in strict dependency order and grouped so that a
partially recorded group is re-created whole on the next run:

* ``network``: the VPC.
* ``network-fabric``: internet gateway, subnet sets, NAT address and
  gateway, route tables, security groups.
* ``compute``: key pair, image, management host, node instances and the
  management host address.
* ``edge`` (only with a management hostname): load balancer, certificate.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ._aws_provider import CloudProvider
from ._bootstrap_errors import ProvisioningError
from ._credentials import RANCHER_PASSWORD_FILE, CredentialVault, extract_credential
from ._deployment_config import DeploymentConfig
from ._handoff import ArtifactStore, Phase, PhaseArtifact, build_artifact
from ._health import tcp_probe
from ._provisioning import DriverSettings, ProvisioningDriver, ResourceGroup
from ._readiness import Clock, Probe, ReadinessCondition, await_condition
from ._remote import RemoteExecutor, RemoteHost, marker_probe
from ._resources import ResourceKind, ResourceRecord, ResourceSpec
from ._state_store import StateStore
from ._user_data import (
    SETUP_COMPLETE_MARKER,
    render_management_user_data,
    render_node_user_data,
    write_user_data,
)

logger = logging.getLogger(__name__)

PHASE = Phase.INFRASTRUCTURE.value
MANAGEMENT_ADDRESS = "management-host-address"
AVAILABILITY_ZONES = "availability-zones"

NETWORK_GROUP = ResourceGroup("network", ("network-id",))
FABRIC_GROUP = ResourceGroup(
    "network-fabric",
    (
        AVAILABILITY_ZONES,
        "internet-gateway-id",
        "public-subnet-ids",
        "private-subnet-ids",
        "nat-address-id",
        "nat-gateway-id",
        "public-route-table-id",
        "private-route-table-id",
        "management-security-group-id",
        "node-security-group-id",
    ),
)
COMPUTE_GROUP = ResourceGroup(
    "compute",
    (
        "key-pair-id",
        "image-id",
        "management-instance-id",
        "node-instance-ids",
        MANAGEMENT_ADDRESS,
    ),
)
EDGE_GROUP = ResourceGroup(
    "edge", ("management-load-balancer-arn", "management-certificate-arn")
)

WORLD = "0.0.0.0/0"


def resource_groups(config: DeploymentConfig) -> list[ResourceGroup]:
    """Return the ordered resource groups of phase 1 for ``config``."""
    groups = [NETWORK_GROUP, FABRIC_GROUP, COMPUTE_GROUP]
    if config.platform.rancher_hostname:
        groups.append(EDGE_GROUP)
    return groups


@dataclass(slots=True)
class InfrastructureContext:
    """Collaborators phase 1 runs against."""

    config: DeploymentConfig
    store: StateStore
    provider: CloudProvider
    executor: RemoteExecutor
    vault: CredentialVault
    artifacts: ArtifactStore
    clock: Clock | None = None
    port_probe: Callable[[str, int], Callable[[], Probe]] = tcp_probe

    def driver(self) -> ProvisioningDriver:
        polling = self.config.polling
        return ProvisioningDriver(
            store=self.store,
            provider=self.provider,
            phase=PHASE,
            settings=DriverSettings(
                existence_interval=polling.existence_interval,
                existence_timeout=polling.existence_timeout,
                ready_interval=polling.resource_interval,
                ready_timeout=polling.resource_timeout,
            ),
            clock=self.clock,
        )


def _spec(config: DeploymentConfig, name: str, suffix: str, **params: Any) -> ResourceSpec:
    return ResourceSpec(name=name, label=config.label(suffix), params=params, tags=config.tags())


def availability_zones(ctx: InfrastructureContext, network: ResourceRecord) -> list[str]:
    """Return the zones the subnets are placed in, chosen once per network.

    The choice is recorded so that later runs and the cluster descriptor
    agree with the subnets that already exist.
    """
    recorded = ctx.store.get(AVAILABILITY_ZONES)
    if recorded is not None:
        return recorded.value.split(",")
    zones = ctx.provider.availability_zones(ctx.config.network.zone_count)
    if not zones:
        msg = f"no availability zones offered in {ctx.config.region}"
        raise ProvisioningError(msg, phase=PHASE, resource=AVAILABILITY_ZONES)
    ctx.store.put(AVAILABILITY_ZONES, ",".join(zones), depends_on=[network.name])
    return zones


def _ensure_network(
    ctx: InfrastructureContext, driver: ProvisioningDriver
) -> dict[str, ResourceRecord]:
    config = ctx.config
    network = driver.ensure(
        ResourceKind.NETWORK,
        _spec(config, "network-id", "vpc", cidr=config.network.vpc_cidr),
    )
    vpc_id = network.id
    internet_gateway = driver.ensure(
        ResourceKind.GATEWAY,
        _spec(config, "internet-gateway-id", "igw", type="internet", vpc_id=vpc_id),
        depends_on=[network],
    )
    zones = availability_zones(ctx, network)
    public_subnets = driver.ensure(
        ResourceKind.SUBNET_SET,
        _spec(
            config,
            "public-subnet-ids",
            "public",
            vpc_id=vpc_id,
            cidrs=config.network.public_cidrs(),
            zones=zones,
            public=True,
        ),
        depends_on=[network],
    )
    private_subnets = driver.ensure(
        ResourceKind.SUBNET_SET,
        _spec(
            config,
            "private-subnet-ids",
            "private",
            vpc_id=vpc_id,
            cidrs=config.network.private_cidrs(),
            zones=zones,
            public=False,
        ),
        depends_on=[network],
    )
    nat_address = driver.ensure(
        ResourceKind.ADDRESS,
        _spec(config, "nat-address-id", "nat-eip"),
        depends_on=[network],
    )
    nat_gateway = driver.ensure(
        ResourceKind.GATEWAY,
        _spec(
            config,
            "nat-gateway-id",
            "nat",
            type="nat",
            subnet_id=public_subnets.ids[0],
            allocation_id=nat_address.id,
        ),
        depends_on=[public_subnets, nat_address],
    )
    driver.wait_until_ready(nat_gateway)
    public_routes = driver.ensure(
        ResourceKind.ROUTE_TABLE,
        _spec(
            config,
            "public-route-table-id",
            "public-rt",
            vpc_id=vpc_id,
            routes=[{"destination": WORLD, "target": internet_gateway.id}],
            subnet_ids=public_subnets.ids,
        ),
        depends_on=[network, internet_gateway, public_subnets],
    )
    private_routes = driver.ensure(
        ResourceKind.ROUTE_TABLE,
        _spec(
            config,
            "private-route-table-id",
            "private-rt",
            vpc_id=vpc_id,
            routes=[{"destination": WORLD, "target": nat_gateway.id}],
            subnet_ids=private_subnets.ids,
        ),
        depends_on=[network, nat_gateway, private_subnets],
    )
    management_sg = driver.ensure(
        ResourceKind.SECURITY_GROUP,
        _spec(
            config,
            "management-security-group-id",
            "rancher-sg",
            vpc_id=vpc_id,
            description="Rancher management server",
            ingress=[{"port": port, "cidr": WORLD} for port in (22, 80, 443)],
        ),
        depends_on=[network],
    )
    node_sg = driver.ensure(
        ResourceKind.SECURITY_GROUP,
        _spec(
            config,
            "node-security-group-id",
            "k8s-sg",
            vpc_id=vpc_id,
            description="Kubernetes nodes",
            ingress=[
                {"port": 22, "cidr": WORLD},
                {"port": 6443, "cidr": config.network.vpc_cidr},
                {"port": 10250, "cidr": config.network.vpc_cidr},
                {"port": "30000-32767", "cidr": config.network.vpc_cidr},
            ],
        ),
        depends_on=[network],
    )
    return {
        "network": network,
        "internet_gateway": internet_gateway,
        "public_subnets": public_subnets,
        "private_subnets": private_subnets,
        "nat_address": nat_address,
        "nat_gateway": nat_gateway,
        "public_routes": public_routes,
        "private_routes": private_routes,
        "management_sg": management_sg,
        "node_sg": node_sg,
    }


def _ensure_compute(
    ctx: InfrastructureContext,
    driver: ProvisioningDriver,
    fabric: dict[str, ResourceRecord],
) -> dict[str, ResourceRecord]:
    config = ctx.config
    compute = config.compute
    key_pair = driver.ensure(
        ResourceKind.KEY_PAIR,
        _spec(config, "key-pair-id", "key", public_key_path=str(compute.ssh_public_key)),
    )
    image = driver.ensure(
        ResourceKind.IMAGE_REFERENCE,
        _spec(
            config,
            "image-id",
            "ubuntu",
            owner=compute.image_owner,
            name_filter=compute.image_name_filter,
        ),
    )
    management_script = write_user_data(
        config.paths.user_data,
        "management",
        render_management_user_data(
            rancher_version=config.platform.rancher_version, ssh_user=compute.ssh_user
        ),
    )
    node_script = write_user_data(
        config.paths.user_data, "node", render_node_user_data(ssh_user=compute.ssh_user)
    )
    shared = {
        "image_id": image.id,
        "key_name": config.label("key"),
        "block_devices": compute.block_devices(),
        "detailed_monitoring": compute.detailed_monitoring,
    }
    management = driver.ensure(
        ResourceKind.INSTANCE,
        _spec(
            config,
            "management-instance-id",
            "rancher",
            instance_type=compute.management_instance_type,
            security_group_ids=[fabric["management_sg"].id],
            subnet_id=fabric["public_subnets"].ids[0],
            user_data_path=str(management_script),
            **shared,
        ),
        depends_on=[image, key_pair, fabric["management_sg"], fabric["public_subnets"]],
    )
    nodes = driver.ensure(
        ResourceKind.INSTANCE_SET,
        _spec(
            config,
            "node-instance-ids",
            "k8s-node",
            instance_type=compute.node_instance_type,
            count=compute.node_count,
            security_group_ids=[fabric["node_sg"].id],
            subnet_ids=fabric["private_subnets"].ids,
            user_data_path=str(node_script),
            **shared,
        ),
        depends_on=[image, key_pair, fabric["node_sg"], fabric["private_subnets"]],
    )
    driver.wait_until_ready(management)
    driver.wait_until_ready(nodes)
    return {"key_pair": key_pair, "image": image, "management": management, "nodes": nodes}


def _management_address(ctx: InfrastructureContext, management: ResourceRecord) -> str:
    recorded = ctx.store.get(MANAGEMENT_ADDRESS)
    if recorded is not None:
        return recorded.value
    address = ctx.provider.endpoint(ResourceKind.INSTANCE, management.id)
    if not address:
        msg = f"management instance {management.id} has no public address"
        raise ProvisioningError(msg, phase=PHASE, resource=management.name)
    ctx.store.put(MANAGEMENT_ADDRESS, address, depends_on=[management.name])
    return address


def _ensure_edge(
    ctx: InfrastructureContext,
    driver: ProvisioningDriver,
    fabric: dict[str, ResourceRecord],
    management: ResourceRecord,
) -> dict[str, Any]:
    config = ctx.config
    hostname = config.platform.rancher_hostname
    if not hostname:
        return {}
    balancer = driver.ensure(
        ResourceKind.LOAD_BALANCER,
        _spec(
            config,
            "management-load-balancer-arn",
            "rancher-nlb",
            vpc_id=fabric["network"].id,
            subnet_ids=fabric["public_subnets"].ids,
            target_instance_id=management.id,
            ports=[80, 443],
        ),
        depends_on=[fabric["public_subnets"], management],
    )
    certificate = driver.ensure(
        ResourceKind.CERTIFICATE,
        _spec(config, "management-certificate-arn", "rancher-cert", domain=hostname),
        depends_on=[balancer],
    )
    return {
        "load_balancer_arn": balancer.id,
        "load_balancer_dns": ctx.provider.endpoint(ResourceKind.LOAD_BALANCER, balancer.id),
        "certificate_arn": certificate.id,
        "hostname": hostname,
    }


def provision_infrastructure(ctx: InfrastructureContext) -> PhaseArtifact:
    """Run phase 1 to completion and write its artifact."""

    config = ctx.config
    polling = config.polling
    driver = ctx.driver()
    driver.invalidate_incomplete(resource_groups(config))

    fabric = _ensure_network(ctx, driver)
    compute = _ensure_compute(ctx, driver, fabric)
    management = compute["management"]
    address = _management_address(ctx, management)
    edge = _ensure_edge(ctx, driver, fabric, management)

    host = RemoteHost(
        address=address,
        user=config.compute.ssh_user,
        identity=config.compute.ssh_private_key,
    )
    await_condition(
        ReadinessCondition(
            description=f"SSH on {address}",
            check=ctx.port_probe(address, 22),
            interval=polling.resource_interval,
            timeout=polling.resource_timeout,
        ),
        clock=ctx.clock,
        phase=PHASE,
        resource=management.name,
    )
    await_condition(
        ReadinessCondition(
            description=f"management host bootstrap ({SETUP_COMPLETE_MARKER})",
            check=marker_probe(ctx.executor, host, SETUP_COMPLETE_MARKER),
            interval=polling.bootstrap_interval,
            timeout=polling.bootstrap_timeout,
        ),
        clock=ctx.clock,
        phase=PHASE,
        resource=management.name,
        remediation=f"Inspect /var/log/rancher-setup.log via {host.ssh_command()}",
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
        owner=management.id,
    )

    payload: dict[str, Any] = {
        "project_name": config.project_name,
        "environment": config.environment,
        "region": config.region,
        "vpc_id": fabric["network"].id,
        "vpc_cidr": config.network.vpc_cidr,
        "availability_zones": availability_zones(ctx, fabric["network"]),
        "public_subnet_ids": fabric["public_subnets"].ids,
        "private_subnet_ids": fabric["private_subnets"].ids,
        "nat_gateway_id": fabric["nat_gateway"].id,
        "management_security_group_id": fabric["management_sg"].id,
        "node_security_group_id": fabric["node_sg"].id,
        "key_pair_id": compute["key_pair"].id,
        "image_id": compute["image"].id,
        "management_instance_id": management.id,
        "management_public_address": address,
        "node_instance_ids": compute["nodes"].ids,
        "ssh_user": config.compute.ssh_user,
        "credentials": {credential.name: str(ctx.vault.path_for(credential.name))},
        "edge": edge,
    }
    artifact = build_artifact(Phase.INFRASTRUCTURE, payload)
    ctx.artifacts.write(artifact)
    logger.info(
        "Infrastructure ready: created %d, adopted %d, reused the rest",
        len(driver.created),
        len(driver.adopted),
    )
    return artifact


__all__ = [
    "AVAILABILITY_ZONES",
    "COMPUTE_GROUP",
    "EDGE_GROUP",
    "FABRIC_GROUP",
    "MANAGEMENT_ADDRESS",
    "NETWORK_GROUP",
    "InfrastructureContext",
    "availability_zones",
    "provision_infrastructure",
    "resource_groups",
]
