"""Unit tests for the AWS CLI provider adapter."""

from __future__ import annotations

from typing import Any, TypeAlias

import pytest

from platform_bootstrap._aws_provider import AwsCliProvider
from platform_bootstrap._bootstrap_errors import CommandError, PreconditionError
from platform_bootstrap._resources import ResourceKind, ResourceSpec, ResourceState

Response: TypeAlias = dict[str, Any] | CommandError


class ScriptedAws:
    """Replacement for ``run_json`` answering by AWS sub-command."""

    def __init__(self, responses: dict[str, Response]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, ...]] = []

    def __call__(self, command: str, *args: str, **_: object) -> Any:
        assert command == "aws"
        self.calls.append(args)
        response = self.responses.get(args[1], {})
        if isinstance(response, CommandError):
            raise response
        return response

    def subcommands(self) -> list[str]:
        return [call[1] for call in self.calls]


def _not_found(code: str) -> CommandError:
    return CommandError("aws failed", stderr=f"An error occurred ({code}) when calling")


@pytest.fixture
def scripted(monkeypatch: pytest.MonkeyPatch):
    def install(responses: dict[str, Response]) -> ScriptedAws:
        fake = ScriptedAws(responses)
        monkeypatch.setattr("platform_bootstrap._aws_provider.run_json", fake)
        return fake

    return install


def test_every_call_carries_region_and_json_output(scripted) -> None:
    fake = scripted({"describe-vpcs": {"Vpcs": [{"State": "available"}]}})

    AwsCliProvider("eu-west-1", profile="ops").describe(ResourceKind.NETWORK, "vpc-1")

    assert fake.calls[0][-6:] == ("--region", "eu-west-1", "--output", "json", "--profile", "ops")


def test_create_network_enables_dns(scripted) -> None:
    fake = scripted({"create-vpc": {"Vpc": {"VpcId": "vpc-123"}}})
    spec = ResourceSpec("network-id", "demo-vpc", {"cidr": "10.0.0.0/16"}, {"Project": "demo"})

    assert AwsCliProvider("us-east-1").create(ResourceKind.NETWORK, spec) == "vpc-123"
    assert fake.subcommands() == ["create-vpc", "modify-vpc-attribute", "modify-vpc-attribute"]
    assert "ResourceType=vpc,Tags=[{Key=Name,Value=demo-vpc},{Key=Project,Value=demo}]" in fake.calls[0]


def test_not_found_means_absent(scripted) -> None:
    scripted({"describe-security-groups": _not_found("InvalidGroup.NotFound")})

    state = AwsCliProvider("us-east-1").describe(ResourceKind.SECURITY_GROUP, "sg-1")

    assert state is ResourceState.ABSENT


def test_other_describe_errors_propagate(scripted) -> None:
    scripted({"describe-vpcs": _not_found("UnauthorizedOperation")})

    with pytest.raises(CommandError):
        AwsCliProvider("us-east-1").describe(ResourceKind.NETWORK, "vpc-1")


def test_delete_of_missing_resource_is_not_an_error(scripted) -> None:
    fake = scripted({"delete-vpc": _not_found("InvalidVpcID.NotFound")})

    AwsCliProvider("us-east-1").delete(ResourceKind.NETWORK, "vpc-1")

    assert fake.subcommands() == ["delete-vpc"]


def test_nat_gateway_states(scripted) -> None:
    scripted({"describe-nat-gateways": {"NatGateways": [{"State": "pending"}]}})

    state = AwsCliProvider("us-east-1").describe(ResourceKind.GATEWAY, "nat-1")

    assert state is ResourceState.PENDING


def test_instance_set_is_ready_only_when_every_member_runs(scripted) -> None:
    scripted(
        {
            "describe-instances": {
                "Reservations": [
                    {"Instances": [{"InstanceId": "i-1", "State": {"Name": "running"}}]},
                    {"Instances": [{"InstanceId": "i-2", "State": {"Name": "pending"}}]},
                ]
            }
        }
    )

    state = AwsCliProvider("us-east-1").describe(ResourceKind.INSTANCE_SET, "i-1,i-2")

    assert state is ResourceState.PENDING


def test_find_existing_network_by_name_tag(scripted) -> None:
    fake = scripted({"describe-vpcs": {"Vpcs": [{"VpcId": "vpc-9"}]}})

    found = AwsCliProvider("us-east-1").find_existing(
        ResourceKind.NETWORK, ResourceSpec("network-id", "demo-vpc")
    )

    assert found == "vpc-9"
    assert "Name=tag:Name,Values=demo-vpc" in fake.calls[0]


def test_find_existing_subnet_set_needs_every_member(scripted) -> None:
    scripted({"describe-subnets": {"Subnets": []}})
    spec = ResourceSpec(
        "private-subnet-ids", "demo-private", {"cidrs": ["10.0.0.0/24"], "vpc_id": "vpc-1"}
    )

    assert AwsCliProvider("us-east-1").find_existing(ResourceKind.SUBNET_SET, spec) is None


def test_image_selection_picks_the_newest(scripted) -> None:
    scripted(
        {
            "describe-images": {
                "Images": [
                    {"ImageId": "ami-old", "CreationDate": "2023-01-01T00:00:00Z"},
                    {"ImageId": "ami-new", "CreationDate": "2024-06-01T00:00:00Z"},
                ]
            }
        }
    )
    spec = ResourceSpec("image-id", "demo-ubuntu", {"owner": "099720109477", "name_filter": "ubuntu/*"})

    assert AwsCliProvider("us-east-1").create(ResourceKind.IMAGE_REFERENCE, spec) == "ami-new"


def test_availability_zones_requires_enough_zones(scripted) -> None:
    scripted({"describe-availability-zones": {"AvailabilityZones": [{"ZoneName": "us-east-1a"}]}})

    with pytest.raises(PreconditionError, match="1 zones, 3 required"):
        AwsCliProvider("us-east-1").availability_zones(3)


def test_caller_identity_failure_is_a_precondition(scripted) -> None:
    scripted({"get-caller-identity": CommandError("Unable to locate credentials")})

    with pytest.raises(PreconditionError) as excinfo:
        AwsCliProvider("us-east-1").caller_identity()

    assert "aws configure" in excinfo.value.remediation


def test_instance_endpoint_is_its_public_address(scripted) -> None:
    scripted(
        {
            "describe-instances": {
                "Reservations": [{"Instances": [{"InstanceId": "i-1", "PublicIpAddress": "198.51.100.7"}]}]
            }
        }
    )

    assert AwsCliProvider("us-east-1").endpoint(ResourceKind.INSTANCE, "i-1") == "198.51.100.7"
