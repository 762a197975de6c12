"""Cloud provider capability and its AWS CLI implementation.

The orchestrator never talks to a cloud SDK directly. Everything it needs
from the provider is captured by :class:`CloudProvider`; :class:`AwsCliProvider`
satisfies it by running the ``aws`` CLI with JSON output.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol

from ._bootstrap_errors import CommandError, PreconditionError, ProvisioningError
from ._commands import run_json
from ._resources import ResourceKind, ResourceSpec, ResourceState, join_ids

logger = logging.getLogger(__name__)

_NOT_FOUND = re.compile(r"\(([A-Za-z.]*NotFound[A-Za-z.]*)\)")


class CloudProvider(Protocol):
    """Operations the driver, phases and teardown need from a cloud."""

    def create(self, kind: ResourceKind, spec: ResourceSpec) -> str: ...

    def describe(self, kind: ResourceKind, resource_id: str) -> ResourceState: ...

    def delete(self, kind: ResourceKind, resource_id: str) -> None: ...

    def find_existing(self, kind: ResourceKind, spec: ResourceSpec) -> str | None: ...

    def availability_zones(self, count: int) -> list[str]: ...

    def endpoint(self, kind: ResourceKind, resource_id: str) -> str | None: ...

    def caller_identity(self) -> str: ...


def is_not_found(error: CommandError) -> bool:
    """Return whether an AWS CLI failure means the resource does not exist.

    Examples
    --------
    >>> is_not_found(CommandError("x", stderr="An error occurred (InvalidVpcID.NotFound) when"))
    True
    >>> is_not_found(CommandError("x", stderr="An error occurred (UnauthorizedOperation)"))
    False
    """
    return bool(_NOT_FOUND.search(error.stderr or str(error)))


def tag_specification(resource_type: str, label: str, tags: Mapping[str, str]) -> str:
    """Render an EC2 ``--tag-specifications`` shorthand value.

    Examples
    --------
    >>> tag_specification("vpc", "demo-vpc", {"Project": "demo"})
    'ResourceType=vpc,Tags=[{Key=Name,Value=demo-vpc},{Key=Project,Value=demo}]'
    """
    pairs = {"Name": label, **tags}
    rendered = ",".join(f"{{Key={key},Value={value}}}" for key, value in pairs.items())
    return f"ResourceType={resource_type},Tags=[{rendered}]"


def _member_label(label: str, index: int) -> str:
    return f"{label}-{index + 1}"


class AwsCliProvider:
    """:class:`CloudProvider` implemented with the ``aws`` command line tool."""

    def __init__(self, region: str, *, profile: str | None = None) -> None:
        self.region = region
        self.profile = profile
        self._creators: dict[ResourceKind, Callable[[ResourceSpec], str]] = {
            ResourceKind.NETWORK: self._create_network,
            ResourceKind.GATEWAY: self._create_gateway,
            ResourceKind.SUBNET_SET: self._create_subnet_set,
            ResourceKind.ADDRESS: self._create_address,
            ResourceKind.ROUTE_TABLE: self._create_route_table,
            ResourceKind.SECURITY_GROUP: self._create_security_group,
            ResourceKind.KEY_PAIR: self._create_key_pair,
            ResourceKind.IMAGE_REFERENCE: self._select_image,
            ResourceKind.INSTANCE: self._create_instance,
            ResourceKind.INSTANCE_SET: self._create_instance_set,
            ResourceKind.LOAD_BALANCER: self._create_load_balancer,
            ResourceKind.CERTIFICATE: self._create_certificate,
        }

    # -- plumbing -----------------------------------------------------------

    def _aws(self, *args: str) -> Any:
        extra = ["--region", self.region, "--output", "json"]
        if self.profile:
            extra.extend(["--profile", self.profile])
        return run_json("aws", *args, *extra)

    def _ec2(self, *args: str) -> Any:
        return self._aws("ec2", *args)

    # -- CloudProvider ------------------------------------------------------

    def caller_identity(self) -> str:
        """Return the caller ARN, failing if the CLI has no credentials."""
        try:
            payload = self._aws("sts", "get-caller-identity")
        except CommandError as exc:
            msg = "AWS credentials are not configured or are invalid"
            raise PreconditionError(
                msg, remediation="Run 'aws configure' or export AWS credentials."
            ) from exc
        return str(payload.get("Arn", ""))

    def availability_zones(self, count: int) -> list[str]:
        payload = self._ec2(
            "describe-availability-zones",
            "--filters",
            "Name=state,Values=available",
        )
        zones = sorted(zone["ZoneName"] for zone in payload.get("AvailabilityZones", []))
        if len(zones) < count:
            msg = f"region {self.region} offers {len(zones)} zones, {count} required"
            raise PreconditionError(msg)
        return zones[:count]

    def create(self, kind: ResourceKind, spec: ResourceSpec) -> str:
        logger.info("Creating %s %s", kind, spec.label)
        return self._creators[kind](spec)

    def describe(self, kind: ResourceKind, resource_id: str) -> ResourceState:
        try:
            return self._describe(kind, resource_id)
        except CommandError as exc:
            if is_not_found(exc):
                return ResourceState.ABSENT
            raise

    def delete(self, kind: ResourceKind, resource_id: str) -> None:
        logger.info("Deleting %s %s", kind, resource_id)
        try:
            self._delete(kind, resource_id)
        except CommandError as exc:
            if not is_not_found(exc):
                raise

    def find_existing(self, kind: ResourceKind, spec: ResourceSpec) -> str | None:
        try:
            return self._find(kind, spec)
        except CommandError as exc:
            if is_not_found(exc):
                return None
            raise

    def endpoint(self, kind: ResourceKind, resource_id: str) -> str | None:
        """Return the public address of an instance or DNS name of a balancer."""
        if kind is ResourceKind.INSTANCE:
            instance = self._instances(resource_id)[0]
            return instance.get("PublicIpAddress")
        if kind is ResourceKind.LOAD_BALANCER:
            payload = self._aws(
                "elbv2",
                "describe-load-balancers",
                "--load-balancer-arns",
                resource_id,
            )
            return payload["LoadBalancers"][0].get("DNSName")
        msg = f"{kind} has no endpoint"
        raise ValueError(msg)

    # -- network ------------------------------------------------------------

    def _create_network(self, spec: ResourceSpec) -> str:
        payload = self._ec2(
            "create-vpc",
            "--cidr-block",
            str(spec.params["cidr"]),
            "--tag-specifications",
            tag_specification("vpc", spec.label, spec.tags),
        )
        vpc_id = payload["Vpc"]["VpcId"]
        for attribute in ("--enable-dns-hostnames", "--enable-dns-support"):
            self._ec2(
                "modify-vpc-attribute",
                "--vpc-id",
                vpc_id,
                attribute,
                '{"Value":true}',
            )
        return vpc_id

    def _create_gateway(self, spec: ResourceSpec) -> str:
        if spec.params.get("type") == "nat":
            payload = self._ec2(
                "create-nat-gateway",
                "--subnet-id",
                str(spec.params["subnet_id"]),
                "--allocation-id",
                str(spec.params["allocation_id"]),
                "--tag-specifications",
                tag_specification("natgateway", spec.label, spec.tags),
            )
            return payload["NatGateway"]["NatGatewayId"]
        payload = self._ec2(
            "create-internet-gateway",
            "--tag-specifications",
            tag_specification("internet-gateway", spec.label, spec.tags),
        )
        gateway_id = payload["InternetGateway"]["InternetGatewayId"]
        self._ec2(
            "attach-internet-gateway",
            "--internet-gateway-id",
            gateway_id,
            "--vpc-id",
            str(spec.params["vpc_id"]),
        )
        return gateway_id

    def _create_subnet_set(self, spec: ResourceSpec) -> str:
        cidrs: Sequence[str] = spec.params["cidrs"]
        zones: Sequence[str] = spec.params["zones"]
        ids = []
        for index, (cidr, zone) in enumerate(zip(cidrs, zones, strict=True)):
            label = _member_label(spec.label, index)
            subnet_id = self._find_subnet(label, str(spec.params["vpc_id"]))
            if subnet_id is None:
                payload = self._ec2(
                    "create-subnet",
                    "--vpc-id",
                    str(spec.params["vpc_id"]),
                    "--cidr-block",
                    cidr,
                    "--availability-zone",
                    zone,
                    "--tag-specifications",
                    tag_specification("subnet", label, spec.tags),
                )
                subnet_id = payload["Subnet"]["SubnetId"]
            if spec.params.get("public"):
                self._ec2(
                    "modify-subnet-attribute",
                    "--subnet-id",
                    subnet_id,
                    "--map-public-ip-on-launch",
                )
            ids.append(subnet_id)
        return join_ids(ids)

    def _create_address(self, spec: ResourceSpec) -> str:
        payload = self._ec2(
            "allocate-address",
            "--domain",
            "vpc",
            "--tag-specifications",
            tag_specification("elastic-ip", spec.label, spec.tags),
        )
        return payload["AllocationId"]

    def _create_route_table(self, spec: ResourceSpec) -> str:
        payload = self._ec2(
            "create-route-table",
            "--vpc-id",
            str(spec.params["vpc_id"]),
            "--tag-specifications",
            tag_specification("route-table", spec.label, spec.tags),
        )
        table_id = payload["RouteTable"]["RouteTableId"]
        for route in spec.params.get("routes", ()):
            target_flag = "--nat-gateway-id" if route["target"].startswith("nat-") else "--gateway-id"
            self._ec2(
                "create-route",
                "--route-table-id",
                table_id,
                "--destination-cidr-block",
                route["destination"],
                target_flag,
                route["target"],
            )
        for subnet_id in spec.params.get("subnet_ids", ()):
            self._ec2(
                "associate-route-table",
                "--route-table-id",
                table_id,
                "--subnet-id",
                subnet_id,
            )
        return table_id

    def _create_security_group(self, spec: ResourceSpec) -> str:
        payload = self._ec2(
            "create-security-group",
            "--group-name",
            spec.label,
            "--description",
            str(spec.params.get("description", spec.label)),
            "--vpc-id",
            str(spec.params["vpc_id"]),
            "--tag-specifications",
            tag_specification("security-group", spec.label, spec.tags),
        )
        group_id = payload["GroupId"]
        for rule in spec.params.get("ingress", ()):
            self._ec2(
                "authorize-security-group-ingress",
                "--group-id",
                group_id,
                "--protocol",
                "tcp",
                "--port",
                str(rule["port"]),
                "--cidr",
                rule["cidr"],
            )
        return group_id

    def _create_key_pair(self, spec: ResourceSpec) -> str:
        payload = self._ec2(
            "import-key-pair",
            "--key-name",
            spec.label,
            "--public-key-material",
            f"fileb://{spec.params['public_key_path']}",
            "--tag-specifications",
            tag_specification("key-pair", spec.label, spec.tags),
        )
        return payload["KeyPairId"]

    def _select_image(self, spec: ResourceSpec) -> str:
        payload = self._ec2(
            "describe-images",
            "--owners",
            str(spec.params["owner"]),
            "--filters",
            f"Name=name,Values={spec.params['name_filter']}",
            "Name=state,Values=available",
        )
        images = sorted(payload.get("Images", []), key=lambda image: image["CreationDate"])
        if not images:
            msg = f"no image matches {spec.params['name_filter']!r}"
            raise ProvisioningError(msg, resource=spec.name)
        return images[-1]["ImageId"]

    def _run_instance(self, spec: ResourceSpec, label: str, subnet_id: str) -> str:
        params = spec.params
        args = [
            "run-instances",
            "--image-id",
            str(params["image_id"]),
            "--count",
            "1",
            "--instance-type",
            str(params["instance_type"]),
            "--key-name",
            str(params["key_name"]),
            "--security-group-ids",
            *params["security_group_ids"],
            "--subnet-id",
            subnet_id,
            "--block-device-mappings",
            json.dumps(params.get("block_devices", [])),
            "--tag-specifications",
            tag_specification("instance", label, spec.tags),
        ]
        if params.get("user_data_path"):
            args.extend(["--user-data", f"file://{params['user_data_path']}"])
        if params.get("detailed_monitoring"):
            args.extend(["--monitoring", "Enabled=true"])
        payload = self._ec2(*args)
        return payload["Instances"][0]["InstanceId"]

    def _create_instance(self, spec: ResourceSpec) -> str:
        return self._run_instance(spec, spec.label, str(spec.params["subnet_id"]))

    def _create_instance_set(self, spec: ResourceSpec) -> str:
        subnet_ids: Sequence[str] = spec.params["subnet_ids"]
        ids = []
        for index in range(int(spec.params["count"])):
            label = _member_label(spec.label, index)
            instance_id = self._find_instance(label)
            if instance_id is None:
                instance_id = self._run_instance(
                    spec, label, subnet_ids[index % len(subnet_ids)]
                )
            ids.append(instance_id)
        return join_ids(ids)

    def _create_load_balancer(self, spec: ResourceSpec) -> str:
        payload = self._aws(
            "elbv2",
            "create-load-balancer",
            "--name",
            spec.label,
            "--type",
            "network",
            "--scheme",
            "internet-facing",
            "--subnets",
            *spec.params["subnet_ids"],
            "--tags",
            f"Key=Name,Value={spec.label}",
        )
        arn = payload["LoadBalancers"][0]["LoadBalancerArn"]
        for port in spec.params.get("ports", ()):
            group = self._aws(
                "elbv2",
                "create-target-group",
                "--name",
                f"{spec.label}-{port}"[-32:],
                "--protocol",
                "TCP",
                "--port",
                str(port),
                "--vpc-id",
                str(spec.params["vpc_id"]),
                "--target-type",
                "instance",
            )
            group_arn = group["TargetGroups"][0]["TargetGroupArn"]
            self._aws(
                "elbv2",
                "register-targets",
                "--target-group-arn",
                group_arn,
                "--targets",
                f"Id={spec.params['target_instance_id']}",
            )
            self._aws(
                "elbv2",
                "create-listener",
                "--load-balancer-arn",
                arn,
                "--protocol",
                "TCP",
                "--port",
                str(port),
                "--default-actions",
                f"Type=forward,TargetGroupArn={group_arn}",
            )
        return arn

    def _create_certificate(self, spec: ResourceSpec) -> str:
        payload = self._aws(
            "acm",
            "request-certificate",
            "--domain-name",
            str(spec.params["domain"]),
            "--validation-method",
            "DNS",
            "--tags",
            f"Key=Name,Value={spec.label}",
        )
        return payload["CertificateArn"]

    # -- describe -----------------------------------------------------------

    def _instances(self, *instance_ids: str) -> list[dict[str, Any]]:
        payload = self._ec2(
            "describe-instances",
            "--filters",
            f"Name=instance-id,Values={','.join(instance_ids)}",
        )
        return [
            instance
            for reservation in payload.get("Reservations", [])
            for instance in reservation.get("Instances", [])
        ]

    def _describe(self, kind: ResourceKind, resource_id: str) -> ResourceState:
        match kind:
            case ResourceKind.NETWORK:
                vpcs = self._ec2("describe-vpcs", "--vpc-ids", resource_id)["Vpcs"]
                return _state_from(vpcs[0]["State"], ready=("available",))
            case ResourceKind.GATEWAY if resource_id.startswith("nat-"):
                gateways = self._ec2(
                    "describe-nat-gateways", "--nat-gateway-ids", resource_id
                )["NatGateways"]
                return _state_from(
                    gateways[0]["State"],
                    ready=("available",),
                    failed=("failed",),
                    absent=("deleted",),
                )
            case ResourceKind.GATEWAY:
                self._ec2(
                    "describe-internet-gateways",
                    "--internet-gateway-ids",
                    resource_id,
                )
                return ResourceState.READY
            case ResourceKind.SUBNET_SET:
                ids = resource_id.split(",")
                subnets = self._ec2(
                    "describe-subnets",
                    "--filters",
                    f"Name=subnet-id,Values={resource_id}",
                )["Subnets"]
                return _aggregate(
                    [_state_from(subnet["State"], ready=("available",)) for subnet in subnets],
                    expected=len(ids),
                )
            case ResourceKind.ADDRESS:
                self._ec2("describe-addresses", "--allocation-ids", resource_id)
                return ResourceState.READY
            case ResourceKind.ROUTE_TABLE:
                self._ec2("describe-route-tables", "--route-table-ids", resource_id)
                return ResourceState.READY
            case ResourceKind.SECURITY_GROUP:
                self._ec2("describe-security-groups", "--group-ids", resource_id)
                return ResourceState.READY
            case ResourceKind.KEY_PAIR:
                self._ec2("describe-key-pairs", "--key-pair-ids", resource_id)
                return ResourceState.READY
            case ResourceKind.IMAGE_REFERENCE:
                images = self._ec2("describe-images", "--image-ids", resource_id)["Images"]
                if not images:
                    return ResourceState.ABSENT
                return _state_from(images[0]["State"], ready=("available",), failed=("failed",))
            case ResourceKind.INSTANCE | ResourceKind.INSTANCE_SET:
                ids = resource_id.split(",")
                states = [
                    _instance_state(instance["State"]["Name"])
                    for instance in self._instances(*ids)
                ]
                return _aggregate(states, expected=len(ids))
            case ResourceKind.LOAD_BALANCER:
                balancers = self._aws(
                    "elbv2",
                    "describe-load-balancers",
                    "--load-balancer-arns",
                    resource_id,
                )["LoadBalancers"]
                return _state_from(
                    balancers[0]["State"]["Code"],
                    ready=("active",),
                    failed=("failed", "active_impaired"),
                )
            case ResourceKind.CERTIFICATE:
                certificate = self._aws(
                    "acm", "describe-certificate", "--certificate-arn", resource_id
                )["Certificate"]
                return _state_from(
                    certificate["Status"],
                    ready=("ISSUED",),
                    failed=("FAILED", "REVOKED", "VALIDATION_TIMED_OUT", "EXPIRED"),
                )
        msg = f"unsupported resource kind {kind}"
        raise ValueError(msg)

    # -- find ---------------------------------------------------------------

    def _find_subnet(self, label: str, vpc_id: str) -> str | None:
        subnets = self._ec2(
            "describe-subnets",
            "--filters",
            f"Name=tag:Name,Values={label}",
            f"Name=vpc-id,Values={vpc_id}",
        ).get("Subnets", [])
        return subnets[0]["SubnetId"] if subnets else None

    def _find_instance(self, label: str) -> str | None:
        payload = self._ec2(
            "describe-instances",
            "--filters",
            f"Name=tag:Name,Values={label}",
            "Name=instance-state-name,Values=pending,running",
        )
        for reservation in payload.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return instance["InstanceId"]
        return None

    def _find(self, kind: ResourceKind, spec: ResourceSpec) -> str | None:
        name_filter = f"Name=tag:Name,Values={spec.label}"
        match kind:
            case ResourceKind.NETWORK:
                vpcs = self._ec2("describe-vpcs", "--filters", name_filter).get("Vpcs", [])
                return vpcs[0]["VpcId"] if vpcs else None
            case ResourceKind.GATEWAY if spec.params.get("type") == "nat":
                gateways = self._ec2(
                    "describe-nat-gateways",
                    "--filter",
                    name_filter,
                    "Name=state,Values=pending,available",
                ).get("NatGateways", [])
                return gateways[0]["NatGatewayId"] if gateways else None
            case ResourceKind.GATEWAY:
                gateways = self._ec2(
                    "describe-internet-gateways", "--filters", name_filter
                ).get("InternetGateways", [])
                return gateways[0]["InternetGatewayId"] if gateways else None
            case ResourceKind.SUBNET_SET:
                count = len(spec.params["cidrs"])
                ids = [
                    self._find_subnet(_member_label(spec.label, index), str(spec.params["vpc_id"]))
                    for index in range(count)
                ]
                return None if None in ids else join_ids(ids)
            case ResourceKind.ADDRESS:
                addresses = self._ec2("describe-addresses", "--filters", name_filter).get(
                    "Addresses", []
                )
                return addresses[0]["AllocationId"] if addresses else None
            case ResourceKind.ROUTE_TABLE:
                tables = self._ec2(
                    "describe-route-tables",
                    "--filters",
                    name_filter,
                    f"Name=vpc-id,Values={spec.params['vpc_id']}",
                ).get("RouteTables", [])
                return tables[0]["RouteTableId"] if tables else None
            case ResourceKind.SECURITY_GROUP:
                groups = self._ec2(
                    "describe-security-groups",
                    "--filters",
                    f"Name=group-name,Values={spec.label}",
                    f"Name=vpc-id,Values={spec.params['vpc_id']}",
                ).get("SecurityGroups", [])
                return groups[0]["GroupId"] if groups else None
            case ResourceKind.KEY_PAIR:
                pairs = self._ec2(
                    "describe-key-pairs",
                    "--filters",
                    f"Name=key-name,Values={spec.label}",
                ).get("KeyPairs", [])
                return pairs[0]["KeyPairId"] if pairs else None
            case ResourceKind.IMAGE_REFERENCE:
                return None
            case ResourceKind.INSTANCE:
                return self._find_instance(spec.label)
            case ResourceKind.INSTANCE_SET:
                ids = [
                    self._find_instance(_member_label(spec.label, index))
                    for index in range(int(spec.params["count"]))
                ]
                return None if None in ids else join_ids(ids)
            case ResourceKind.LOAD_BALANCER:
                balancers = self._aws(
                    "elbv2", "describe-load-balancers", "--names", spec.label
                ).get("LoadBalancers", [])
                return balancers[0]["LoadBalancerArn"] if balancers else None
            case ResourceKind.CERTIFICATE:
                summaries = self._aws("acm", "list-certificates").get(
                    "CertificateSummaryList", []
                )
                for summary in summaries:
                    if summary.get("DomainName") == spec.params["domain"]:
                        return summary["CertificateArn"]
                return None
        msg = f"unsupported resource kind {kind}"
        raise ValueError(msg)

    # -- delete -------------------------------------------------------------

    def _delete(self, kind: ResourceKind, resource_id: str) -> None:
        match kind:
            case ResourceKind.NETWORK:
                self._ec2("delete-vpc", "--vpc-id", resource_id)
            case ResourceKind.GATEWAY if resource_id.startswith("nat-"):
                self._ec2("delete-nat-gateway", "--nat-gateway-id", resource_id)
            case ResourceKind.GATEWAY:
                gateways = self._ec2(
                    "describe-internet-gateways",
                    "--internet-gateway-ids",
                    resource_id,
                )["InternetGateways"]
                for attachment in gateways[0].get("Attachments", []):
                    self._ec2(
                        "detach-internet-gateway",
                        "--internet-gateway-id",
                        resource_id,
                        "--vpc-id",
                        attachment["VpcId"],
                    )
                self._ec2("delete-internet-gateway", "--internet-gateway-id", resource_id)
            case ResourceKind.SUBNET_SET:
                subnets = self._ec2(
                    "describe-subnets",
                    "--filters",
                    f"Name=subnet-id,Values={resource_id}",
                )["Subnets"]
                for subnet in subnets:
                    self._ec2("delete-subnet", "--subnet-id", subnet["SubnetId"])
            case ResourceKind.ADDRESS:
                self._ec2("release-address", "--allocation-id", resource_id)
            case ResourceKind.ROUTE_TABLE:
                tables = self._ec2(
                    "describe-route-tables", "--route-table-ids", resource_id
                )["RouteTables"]
                for association in tables[0].get("Associations", []):
                    if association.get("Main"):
                        continue
                    self._ec2(
                        "disassociate-route-table",
                        "--association-id",
                        association["RouteTableAssociationId"],
                    )
                self._ec2("delete-route-table", "--route-table-id", resource_id)
            case ResourceKind.SECURITY_GROUP:
                self._ec2("delete-security-group", "--group-id", resource_id)
            case ResourceKind.KEY_PAIR:
                self._ec2("delete-key-pair", "--key-pair-id", resource_id)
            case ResourceKind.IMAGE_REFERENCE:
                return
            case ResourceKind.INSTANCE | ResourceKind.INSTANCE_SET:
                live = [
                    instance["InstanceId"]
                    for instance in self._instances(*resource_id.split(","))
                    if instance["State"]["Name"] != "terminated"
                ]
                if live:
                    self._ec2("terminate-instances", "--instance-ids", *live)
            case ResourceKind.LOAD_BALANCER:
                groups = self._aws(
                    "elbv2", "describe-target-groups", "--load-balancer-arn", resource_id
                ).get("TargetGroups", [])
                self._aws("elbv2", "delete-load-balancer", "--load-balancer-arn", resource_id)
                for group in groups:
                    try:
                        self._aws(
                            "elbv2",
                            "delete-target-group",
                            "--target-group-arn",
                            group["TargetGroupArn"],
                        )
                    except CommandError as exc:
                        logger.warning(
                            "Target group %s left behind: %s", group["TargetGroupArn"], exc
                        )
            case ResourceKind.CERTIFICATE:
                self._aws("acm", "delete-certificate", "--certificate-arn", resource_id)


def _state_from(
    raw: str,
    *,
    ready: tuple[str, ...],
    failed: tuple[str, ...] = (),
    absent: tuple[str, ...] = (),
) -> ResourceState:
    if raw in ready:
        return ResourceState.READY
    if raw in failed:
        return ResourceState.FAILED
    if raw in absent:
        return ResourceState.ABSENT
    return ResourceState.PENDING


def _instance_state(raw: str) -> ResourceState:
    """Map an EC2 instance state name onto :class:`ResourceState`.

    Examples
    --------
    >>> _instance_state("running"), _instance_state("terminated")
    (<ResourceState.READY: 'ready'>, <ResourceState.ABSENT: 'absent'>)
    """
    return _state_from(
        raw,
        ready=("running",),
        failed=("stopping", "stopped"),
        absent=("terminated",),
    )


def _aggregate(states: list[ResourceState], *, expected: int) -> ResourceState:
    """Fold member states of a set resource into one state.

    Examples
    --------
    >>> _aggregate([ResourceState.READY, ResourceState.READY], expected=2)
    <ResourceState.READY: 'ready'>
    >>> _aggregate([], expected=2)
    <ResourceState.ABSENT: 'absent'>
    """
    present = [state for state in states if state is not ResourceState.ABSENT]
    if not present:
        return ResourceState.ABSENT
    if any(state is ResourceState.FAILED for state in present):
        return ResourceState.FAILED
    if len(present) == expected and all(state is ResourceState.READY for state in present):
        return ResourceState.READY
    return ResourceState.PENDING


__all__ = [
    "AwsCliProvider",
    "CloudProvider",
    "is_not_found",
    "tag_specification",
]
