"""Resource kinds and records shared by provisioning and teardown."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ResourceKind(StrEnum):
    """Kinds of cloud resource the bootstrap owns or references."""

    NETWORK = "network"
    GATEWAY = "gateway"
    SUBNET_SET = "subnet-set"
    ADDRESS = "address"
    ROUTE_TABLE = "route-table"
    SECURITY_GROUP = "security-group"
    KEY_PAIR = "key-pair"
    IMAGE_REFERENCE = "image-reference"
    INSTANCE = "instance"
    INSTANCE_SET = "instance-set"
    LOAD_BALANCER = "load-balancer"
    CERTIFICATE = "certificate"

    @property
    def owned(self) -> bool:
        """Return whether teardown must delete this kind of resource.

        Examples
        --------
        >>> ResourceKind.IMAGE_REFERENCE.owned
        False
        """
        return self is not ResourceKind.IMAGE_REFERENCE


class ResourceState(StrEnum):
    """Provider-reported lifecycle state of a resource."""

    ABSENT = "absent"
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


# Lower ranks are deleted first; ties are broken by reverse creation order.
TEARDOWN_RANK: dict[ResourceKind, int] = {
    ResourceKind.INSTANCE: 0,
    ResourceKind.INSTANCE_SET: 0,
    ResourceKind.LOAD_BALANCER: 1,
    ResourceKind.CERTIFICATE: 2,
    ResourceKind.GATEWAY: 3,
    ResourceKind.ADDRESS: 4,
    ResourceKind.ROUTE_TABLE: 5,
    ResourceKind.SECURITY_GROUP: 5,
    ResourceKind.KEY_PAIR: 5,
    ResourceKind.IMAGE_REFERENCE: 5,
    ResourceKind.SUBNET_SET: 6,
    ResourceKind.NETWORK: 7,
}

ID_SEPARATOR = ","


@dataclass(frozen=True, slots=True)
class ResourceSpec:
    """Desired resource handed to the provider.

    Parameters
    ----------
    name
        Logical state-store name, e.g. ``network-id``.
    label
        Provider-side ``Name`` tag used to detect namesake resources.
    params
        Kind-specific parameters understood by the provider adapter.
    """

    name: str
    label: str
    params: Mapping[str, Any] = field(default_factory=dict)
    tags: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ResourceRecord:
    """A provisioned resource as recorded in the state store."""

    name: str
    kind: ResourceKind
    id: str
    depends_on: tuple[str, ...] = ()
    created_at: str = ""
    sequence: int = 0

    @property
    def ids(self) -> list[str]:
        """Return the member ids of a set resource (or the single id).

        Examples
        --------
        >>> ResourceRecord("public-subnet-ids", ResourceKind.SUBNET_SET, "subnet-a,subnet-b").ids
        ['subnet-a', 'subnet-b']
        """
        return [part for part in self.id.split(ID_SEPARATOR) if part]


def join_ids(ids: list[str] | tuple[str, ...]) -> str:
    """Encode member ids of a set resource as a single state value."""
    return ID_SEPARATOR.join(ids)


__all__ = [
    "ID_SEPARATOR",
    "TEARDOWN_RANK",
    "ResourceKind",
    "ResourceRecord",
    "ResourceSpec",
    "ResourceState",
    "join_ids",
]
