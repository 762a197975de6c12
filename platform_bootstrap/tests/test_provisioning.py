"""Unit tests for the resource provisioning driver."""

from __future__ import annotations

import pytest

from platform_bootstrap._bootstrap_errors import (
    PreconditionError,
    ProvisioningError,
    ReadinessFailedError,
    ReadinessTimeoutError,
)
from platform_bootstrap._provisioning import ProvisioningDriver, ResourceGroup
from platform_bootstrap._readiness import ManualClock
from platform_bootstrap._resources import (
    ResourceKind,
    ResourceRecord,
    ResourceSpec,
    ResourceState,
)
from platform_bootstrap._state_store import MemoryStateStore
from platform_bootstrap.tests._doubles import FakeCloud

NETWORK = ResourceGroup("network", ("network-id",))
FABRIC = ResourceGroup("fabric", ("subnet-ids", "security-group-id"))
COMPUTE = ResourceGroup("compute", ("instance-id",))


def _driver(cloud: FakeCloud, store: MemoryStateStore | None = None) -> ProvisioningDriver:
    return ProvisioningDriver(
        store=store or MemoryStateStore(), provider=cloud, clock=ManualClock()
    )


def _spec(name: str, label: str, **params: object) -> ResourceSpec:
    return ResourceSpec(name=name, label=label, params=params)


def _build(driver: ProvisioningDriver) -> dict[str, ResourceRecord]:
    network = driver.ensure(ResourceKind.NETWORK, _spec("network-id", "demo-vpc"))
    subnets = driver.ensure(
        ResourceKind.SUBNET_SET,
        _spec("subnet-ids", "demo-private", cidrs=["10.0.0.0/24", "10.0.1.0/24"]),
        depends_on=[network],
    )
    group = driver.ensure(
        ResourceKind.SECURITY_GROUP, _spec("security-group-id", "demo-sg"), depends_on=[network]
    )
    instance = driver.ensure(
        ResourceKind.INSTANCE,
        _spec("instance-id", "demo-rancher"),
        depends_on=[subnets, group],
    )
    return {"network": network, "subnets": subnets, "group": group, "instance": instance}


def test_ensure_creates_and_records() -> None:
    cloud = FakeCloud()
    driver = _driver(cloud)

    records = _build(driver)

    assert cloud.created_kinds() == [
        ResourceKind.NETWORK,
        ResourceKind.SUBNET_SET,
        ResourceKind.SECURITY_GROUP,
        ResourceKind.INSTANCE,
    ]
    assert len(records["subnets"].ids) == 2, "One subnet per CIDR"
    assert driver.store.get("instance-id").depends_on == ("subnet-ids", "security-group-id")


def test_second_run_reuses_every_record() -> None:
    cloud = FakeCloud()
    store = MemoryStateStore()
    first = _build(_driver(cloud, store))

    second_driver = _driver(cloud, store)
    second = _build(second_driver)

    assert len(cloud.creates) == 4, "No additional create calls"
    assert second == first
    assert second_driver.created == []


def test_dependency_order_is_reflected_in_sequence() -> None:
    store = MemoryStateStore()
    records = _build(_driver(FakeCloud(), store))

    assert records["network"].sequence < records["subnets"].sequence
    assert records["subnets"].sequence < records["instance"].sequence
    assert records["group"].sequence < records["instance"].sequence


def test_missing_dependency_fails_before_provider_calls() -> None:
    cloud = FakeCloud()
    driver = _driver(cloud)
    phantom = ResourceRecord("network-id", ResourceKind.NETWORK, "vpc-gone")

    with pytest.raises(PreconditionError, match="network-id"):
        driver.ensure(ResourceKind.SECURITY_GROUP, _spec("sg", "demo-sg"), depends_on=[phantom])

    assert cloud.creates == []


def test_kind_mismatch_is_rejected() -> None:
    store = MemoryStateStore()
    store.put("network-id", "vpc-1", kind=ResourceKind.NETWORK)

    with pytest.raises(ProvisioningError, match="recorded as network"):
        _driver(FakeCloud(), store).ensure(ResourceKind.GATEWAY, _spec("network-id", "demo-vpc"))


def test_namesake_resource_is_adopted_not_duplicated() -> None:
    cloud = FakeCloud()
    orphan = cloud.seed(ResourceKind.NETWORK, "demo-vpc")
    driver = _driver(cloud)

    record = driver.ensure(ResourceKind.NETWORK, _spec("network-id", "demo-vpc"))

    assert record.id == orphan
    assert cloud.creates == []
    assert driver.adopted == ["network-id"]


def test_create_failure_aborts_without_recording() -> None:
    cloud = FakeCloud()
    cloud.fail_create.add("demo-sg")
    store = MemoryStateStore()
    driver = _driver(cloud, store)
    network = driver.ensure(ResourceKind.NETWORK, _spec("network-id", "demo-vpc"))

    with pytest.raises(ProvisioningError) as excinfo:
        driver.ensure(
            ResourceKind.SECURITY_GROUP, _spec("security-group-id", "demo-sg"), depends_on=[network]
        )

    assert "demo-sg" in str(excinfo.value)
    assert excinfo.value.remediation, "Operator is told how to resume"
    assert store.get("security-group-id") is None
    assert store.get("network-id") is not None, "Earlier records stay valid for a resume"


def test_resource_that_never_appears_times_out() -> None:
    cloud = FakeCloud()
    original_create = cloud.create

    def create_invisible(kind: ResourceKind, spec: ResourceSpec) -> str:
        resource_id = original_create(kind, spec)
        cloud.vanish(resource_id)
        return resource_id

    cloud.create = create_invisible  # type: ignore[method-assign]
    store = MemoryStateStore()

    with pytest.raises(ReadinessTimeoutError, match="never became visible"):
        _driver(cloud, store).ensure(ResourceKind.NETWORK, _spec("network-id", "demo-vpc"))

    assert store.get("network-id") is None


def test_wait_until_ready_fails_fast_on_failed_state() -> None:
    cloud = FakeCloud()
    driver = _driver(cloud)
    record = driver.ensure(ResourceKind.INSTANCE, _spec("instance-id", "demo-rancher"))
    cloud.states[record.id] = ResourceState.FAILED

    with pytest.raises(ReadinessFailedError):
        driver.wait_until_ready(record)


def test_invalidate_clears_first_incomplete_group_and_later_ones() -> None:
    cloud = FakeCloud()
    store = MemoryStateStore()
    _build(_driver(cloud, store))
    store.clear(["security-group-id"])

    stale = _driver(cloud, store).invalidate_incomplete([NETWORK, FABRIC, COMPUTE])

    assert [group.name for group in stale] == ["fabric", "compute"]
    assert store.get("network-id") is not None
    assert store.get("subnet-ids") is None, "The whole fabric group is cleared"
    assert store.get("instance-id") is None


def test_partial_group_is_recreated_whole() -> None:
    cloud = FakeCloud()
    store = MemoryStateStore()
    first = _build(_driver(cloud, store))
    store.clear(["security-group-id"])
    cloud.adopt_namesakes = False
    cloud.creates.clear()

    driver = _driver(cloud, store)
    driver.invalidate_incomplete([NETWORK, FABRIC, COMPUTE])
    second = _build(driver)

    assert cloud.created_kinds() == [
        ResourceKind.SUBNET_SET,
        ResourceKind.SECURITY_GROUP,
        ResourceKind.INSTANCE,
    ]
    assert second["network"] == first["network"]
    assert second["subnets"].id != first["subnets"].id


def test_complete_groups_are_left_alone() -> None:
    store = MemoryStateStore()
    _build(_driver(FakeCloud(), store))

    assert _driver(FakeCloud(), store).invalidate_incomplete([NETWORK, FABRIC, COMPUTE]) == []
