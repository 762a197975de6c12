"""In-memory stand-ins for the cloud, SSH and the cluster API."""

from __future__ import annotations

import inspect
import itertools
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from platform_bootstrap._bootstrap_errors import CommandError
from platform_bootstrap._deployment_config import (
    ComputeSettings,
    DeploymentConfig,
    DeploymentPaths,
    PlatformSettings,
)
from platform_bootstrap._kubernetes import HelmRelease
from platform_bootstrap._readiness import Probe
from platform_bootstrap._remote import RemoteHost
from platform_bootstrap._resources import (
    ResourceKind,
    ResourceSpec,
    ResourceState,
    join_ids,
)

ACCOUNT_ARN = "arn:aws:iam::123456789012:user/operator"
MANAGEMENT_ADDRESS = "203.0.113.10"

_PREFIXES = {
    ResourceKind.NETWORK: "vpc",
    ResourceKind.GATEWAY: "gw",
    ResourceKind.SUBNET_SET: "subnet",
    ResourceKind.ADDRESS: "eipalloc",
    ResourceKind.ROUTE_TABLE: "rtb",
    ResourceKind.SECURITY_GROUP: "sg",
    ResourceKind.KEY_PAIR: "key",
    ResourceKind.IMAGE_REFERENCE: "ami",
    ResourceKind.INSTANCE: "i",
    ResourceKind.INSTANCE_SET: "i",
    ResourceKind.LOAD_BALANCER: "arn:nlb",
    ResourceKind.CERTIFICATE: "arn:acm",
}


class FakeCloud:
    """Provider that keeps resources in a dict and records every call."""

    def __init__(self) -> None:
        self.states: dict[str, ResourceState] = {}
        self.labels: dict[tuple[ResourceKind, str], str] = {}
        self.creates: list[tuple[ResourceKind, str]] = []
        self.deletes: list[tuple[ResourceKind, str]] = []
        self.fail_create: set[str] = set()
        self.fail_delete: set[str] = set()
        self.stuck_delete: set[str] = set()
        self.adopt_namesakes = True
        self._ids = itertools.count(1)

    def _new_id(self, kind: ResourceKind) -> str:
        return f"{_PREFIXES[kind]}-{next(self._ids):04d}"

    def seed(self, kind: ResourceKind, label: str, state: ResourceState = ResourceState.READY) -> str:
        """Create a resource out of band, as a crashed run would leave it."""
        resource_id = self._new_id(kind)
        self.states[resource_id] = state
        self.labels[(kind, label)] = resource_id
        return resource_id

    def vanish(self, resource_id: str) -> None:
        """Delete a resource behind the orchestrator's back."""
        self.states[resource_id] = ResourceState.ABSENT

    def create(self, kind: ResourceKind, spec: ResourceSpec) -> str:
        if spec.label in self.fail_create:
            msg = f"create {spec.label} failed"
            raise CommandError(msg, stderr="An error occurred (LimitExceeded)")
        self.creates.append((kind, spec.name))
        if kind is ResourceKind.SUBNET_SET:
            members = [self._new_id(kind) for _ in spec.params["cidrs"]]
        elif kind is ResourceKind.INSTANCE_SET:
            members = [self._new_id(kind) for _ in range(spec.params["count"])]
        else:
            members = [self._new_id(kind)]
        for member in members:
            self.states[member] = ResourceState.READY
        resource_id = join_ids(members)
        self.labels[(kind, spec.label)] = resource_id
        return resource_id

    def describe(self, kind: ResourceKind, resource_id: str) -> ResourceState:
        states = [
            self.states.get(member, ResourceState.ABSENT)
            for member in resource_id.split(",")
        ]
        if all(state is ResourceState.ABSENT for state in states):
            return ResourceState.ABSENT
        if ResourceState.FAILED in states:
            return ResourceState.FAILED
        if all(state is ResourceState.READY for state in states):
            return ResourceState.READY
        return ResourceState.PENDING

    def delete(self, kind: ResourceKind, resource_id: str) -> None:
        if resource_id in self.fail_delete:
            msg = f"delete {resource_id} failed"
            raise CommandError(msg, stderr="An error occurred (DependencyViolation)")
        self.deletes.append((kind, resource_id))
        if resource_id in self.stuck_delete:
            return
        for member in resource_id.split(","):
            self.states[member] = ResourceState.ABSENT

    def find_existing(self, kind: ResourceKind, spec: ResourceSpec) -> str | None:
        if not self.adopt_namesakes:
            return None
        resource_id = self.labels.get((kind, spec.label))
        if resource_id is None or self.describe(kind, resource_id) is ResourceState.ABSENT:
            return None
        return resource_id

    def availability_zones(self, count: int) -> list[str]:
        return ["us-east-1a", "us-east-1b", "us-east-1c"][:count]

    def endpoint(self, kind: ResourceKind, resource_id: str) -> str | None:
        if kind is ResourceKind.INSTANCE:
            return MANAGEMENT_ADDRESS
        if kind is ResourceKind.LOAD_BALANCER:
            return "rancher-nlb-123.elb.us-east-1.amazonaws.com"
        return None

    def caller_identity(self) -> str:
        return ACCOUNT_ARN

    def created_kinds(self) -> list[ResourceKind]:
        return [kind for kind, _ in self.creates]


class FakeExecutor:
    """Remote executor answering from scripted outputs.

    ``outputs`` maps a command substring to the answers given on successive
    calls; the last answer repeats. An answer may be a :class:`CommandError`.
    """

    def __init__(self, outputs: dict[str, list[str | CommandError]] | None = None) -> None:
        self.outputs = outputs if outputs is not None else default_outputs()
        self.calls: list[tuple[str, str]] = []

    def execute(self, host: RemoteHost, command: str) -> str:
        self.calls.append((host.address, command))
        for fragment, answers in self.outputs.items():
            if fragment not in command:
                continue
            answer = answers.pop(0) if len(answers) > 1 else answers[0]
            if isinstance(answer, CommandError):
                raise answer
            return answer
        return ""


def default_outputs(password: str = "bootstrap-pw") -> dict[str, list[str | CommandError]]:
    return {
        "test -f": ["present\n"],
        "rancher-password.txt": [f"Rancher Bootstrap Password: {password}\n"],
    }


@dataclass
class FakeClusterClient:
    """Cluster API double that reports everything healthy by default."""

    ready: int = 1
    unavailable: set[str] = field(default_factory=set)
    hostnames: dict[str, str] = field(
        default_factory=lambda: {
            "ingress-nginx-controller": "ingress.elb.example.com",
            "argocd-server": "argocd.elb.example.com",
        }
    )
    secrets: dict[tuple[str, str, str], str] = field(
        default_factory=lambda: {("argocd", "argocd-initial-admin-secret", "password"): "argo-pw"}
    )
    secret_uids: dict[tuple[str, str], str] = field(
        default_factory=lambda: {("argocd", "argocd-initial-admin-secret"): "uid-1"}
    )
    failing_releases: set[str] = field(default_factory=set)
    applied: list[Path] = field(default_factory=list)
    releases: list[HelmRelease] = field(default_factory=list)
    default_storage_class: str | None = None

    def apply(self, manifest: Path) -> None:
        self.applied.append(manifest)

    def ready_nodes(self) -> int:
        return self.ready

    def deployment_available(self, namespace: str, name: str) -> bool:
        return name not in self.unavailable

    def service_hostname(self, namespace: str, name: str) -> str | None:
        return self.hostnames.get(name)

    def secret_value(self, namespace: str, name: str, key: str) -> str | None:
        return self.secrets.get((namespace, name, key))

    def secret_uid(self, namespace: str, name: str) -> str | None:
        return self.secret_uids.get((namespace, name))

    def set_default_storage_class(self, name: str) -> None:
        self.default_storage_class = name

    def install_release(self, release: HelmRelease) -> None:
        if release.name in self.failing_releases:
            msg = f"helm upgrade {release.name} failed"
            raise CommandError(msg, stderr="Error: timed out waiting for the condition")
        self.releases.append(release)


def always_ready(*_args: object, **_kwargs: object):
    """Probe factory standing in for TCP and HTTP checks."""
    return lambda: Probe.ready("ok")


def make_config(
    tmp_path: Path,
    *,
    rancher_hostname: str | None = None,
    node_count: int = 3,
) -> DeploymentConfig:
    private_key = tmp_path / "id_rsa"
    private_key.write_text("private", encoding="utf-8")
    public_key = tmp_path / "id_rsa.pub"
    public_key.write_text("ssh-rsa AAAA test", encoding="utf-8")
    return DeploymentConfig(
        project_name="demo",
        environment="test",
        region="us-east-1",
        paths=DeploymentPaths(tmp_path / "deployment"),
        compute=ComputeSettings(
            ssh_public_key=public_key,
            ssh_private_key=private_key,
            node_count=node_count,
        ),
        platform=PlatformSettings(rancher_hostname=rancher_hostname),
    )


def call_cli(main_func: Callable[..., int], **overrides: object) -> int:
    """Call a CLI entrypoint with explicit None for unset cyclopts parameters."""

    def _is_cyclopts_parameter(default: object) -> bool:
        cls = default.__class__
        return cls.__name__ == "Parameter" and cls.__module__.startswith("cyclopts")

    params: dict[str, object] = {
        name: None
        for name, param in inspect.signature(main_func).parameters.items()
        if param.default is None or _is_cyclopts_parameter(param.default)
    }
    params.update(overrides)
    return main_func(**params)
