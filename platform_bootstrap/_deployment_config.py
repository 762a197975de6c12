"""Deployment configuration shared by every phase.

Settings resolve from CLI parameters first, then environment variables, then
the defaults below. Every phase reads the same deployment directory::

    <deployment>/
        state.json          resource records
        artifacts/          phase handoff documents
        credentials/        captured secrets (0600)
        manifests/          rendered cluster descriptors and chart values
        confirmations/      operator confirmation markers
        user-data/          instance bootstrap scripts
        logs/               per-run log files
"""

from __future__ import annotations

import ipaddress
from collections import abc as cabc
from dataclasses import dataclass, field
from pathlib import Path

from ._input_resolution import InputResolution, parse_bool, parse_int, resolve_input

DEFAULT_DEPLOYMENT_DIR = Path("deployments/default")


@dataclass(frozen=True, slots=True)
class DeploymentPaths:
    """Filesystem layout of one deployment."""

    root: Path

    @property
    def state_file(self) -> Path:
        return self.root / "state.json"

    @property
    def artifacts(self) -> Path:
        return self.root / "artifacts"

    @property
    def credentials(self) -> Path:
        return self.root / "credentials"

    @property
    def manifests(self) -> Path:
        return self.root / "manifests"

    @property
    def confirmations(self) -> Path:
        return self.root / "confirmations"

    @property
    def user_data(self) -> Path:
        return self.root / "user-data"

    @property
    def logs(self) -> Path:
        return self.root / "logs"


@dataclass(frozen=True, slots=True)
class NetworkSettings:
    """VPC address plan."""

    vpc_cidr: str = "10.0.0.0/16"
    zone_count: int = 3

    def _slash24s(self) -> list[str]:
        network = ipaddress.ip_network(self.vpc_cidr)
        if network.prefixlen > 19:
            msg = f"VPC CIDR {self.vpc_cidr} is too small for the subnet plan"
            raise SystemExit(msg)
        subnets = network.subnets(new_prefix=24)
        return [str(next(subnets)) for _ in range(10 + self.zone_count)]

    def private_cidrs(self) -> list[str]:
        """Return one private /24 per zone, starting at the first /24.

        Examples
        --------
        >>> NetworkSettings().private_cidrs()
        ['10.0.0.0/24', '10.0.1.0/24', '10.0.2.0/24']
        """
        return self._slash24s()[: self.zone_count]

    def public_cidrs(self) -> list[str]:
        """Return one public /24 per zone, offset by ten from the private ones.

        Examples
        --------
        >>> NetworkSettings().public_cidrs()
        ['10.0.10.0/24', '10.0.11.0/24', '10.0.12.0/24']
        """
        return self._slash24s()[10 : 10 + self.zone_count]


@dataclass(frozen=True, slots=True)
class ComputeSettings:
    """Instance shapes and SSH access."""

    ssh_public_key: Path
    ssh_private_key: Path
    ssh_user: str = "ubuntu"
    management_instance_type: str = "t3.large"
    node_instance_type: str = "t3.large"
    node_count: int = 3
    root_volume_size: int = 50
    data_volume_size: int = 100
    image_owner: str = "099720109477"
    image_name_filter: str = (
        "ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-amd64-server-*"
    )
    detailed_monitoring: bool = True

    def block_devices(self) -> list[dict[str, object]]:
        """Return the root and data volume mappings for ``run-instances``."""
        return [
            {
                "DeviceName": "/dev/sda1",
                "Ebs": {"VolumeSize": self.root_volume_size, "VolumeType": "gp3"},
            },
            {
                "DeviceName": "/dev/sdf",
                "Ebs": {"VolumeSize": self.data_volume_size, "VolumeType": "gp3"},
            },
        ]


@dataclass(frozen=True, slots=True)
class PlatformSettings:
    """Versions and names for the management plane and workload cluster."""

    rancher_version: str = "v2.8.0"
    rancher_hostname: str | None = None
    cluster_name: str = "ioc-platform-cluster"
    kubernetes_version: str = "v1.28.5+rke2r1"
    pod_cidr: str = "10.42.0.0/16"
    service_cidr: str = "10.43.0.0/16"
    pool_quantity: int = 1
    pool_instance_type: str = "t3.large"
    cert_manager_version: str = "v1.13.0"
    ingress_nginx_version: str = "4.8.3"
    argocd_chart_version: str = "5.51.6"
    longhorn_version: str = "1.5.3"
    monitoring_chart_version: str = "55.5.0"
    letsencrypt_email: str = "admin@example.com"
    argocd_hostname: str | None = None
    longhorn_data_path: str = "/opt/longhorn"
    sample_app_repo: str = "https://github.com/argoproj/argocd-example-apps.git"


@dataclass(frozen=True, slots=True)
class PollSettings:
    """Intervals and timeouts, in seconds, for every readiness wait."""

    existence_interval: float = 2.0
    existence_timeout: float = 120.0
    resource_interval: float = 15.0
    resource_timeout: float = 600.0
    bootstrap_interval: float = 30.0
    bootstrap_timeout: float = 1800.0
    http_interval: float = 10.0
    http_timeout: float = 600.0
    credential_interval: float = 10.0
    credential_timeout: float = 300.0
    confirmation_interval: float = 15.0
    confirmation_timeout: float = 3600.0
    cluster_interval: float = 30.0
    cluster_timeout: float = 2700.0
    addon_interval: float = 10.0
    addon_timeout: float = 600.0


@dataclass(frozen=True, slots=True)
class DeploymentConfig:
    """Everything a phase needs to know about one deployment."""

    project_name: str
    environment: str
    region: str
    paths: DeploymentPaths
    compute: ComputeSettings
    network: NetworkSettings = field(default_factory=NetworkSettings)
    platform: PlatformSettings = field(default_factory=PlatformSettings)
    polling: PollSettings = field(default_factory=PollSettings)
    aws_profile: str | None = None

    def tags(self) -> dict[str, str]:
        """Return the tags applied to every owned resource."""
        return {
            "Project": self.project_name,
            "Environment": self.environment,
            "ManagedBy": "platform-bootstrap",
        }

    def label(self, suffix: str) -> str:
        """Return the provider ``Name`` tag for a resource.

        Examples
        --------
        >>> DeploymentConfig(
        ...     "demo", "dev", "us-east-1", DeploymentPaths(Path(".")),
        ...     ComputeSettings(Path("k.pub"), Path("k")),
        ... ).label("vpc")
        'demo-vpc'
        """
        return f"{self.project_name}-{suffix}"


@dataclass(frozen=True, slots=True)
class RawDeploymentInputs:
    """Deployment inputs as given on the command line."""

    deployment_dir: Path | None = None
    project_name: str | None = None
    environment: str | None = None
    region: str | None = None
    aws_profile: str | None = None
    ssh_key: Path | None = None
    rancher_hostname: str | None = None
    cluster_name: str | None = None
    node_count: str | None = None


def _optional_text(
    value: str | Path | None,
    env_key: str,
    env: cabc.Mapping[str, str] | None,
) -> str | None:
    resolved = resolve_input(value, InputResolution(env_key=env_key), env)
    return None if resolved is None else str(resolved)


def _text(
    value: str | Path | None,
    env_key: str,
    default: str,
    env: cabc.Mapping[str, str] | None,
) -> str:
    return str(resolve_input(value, InputResolution(env_key=env_key, default=default), env))


def _int(
    value: str | None, env_key: str, default: int, env: cabc.Mapping[str, str] | None
) -> int:
    return parse_int(_optional_text(value, env_key, env), name=env_key, default=default)


def _number(env_key: str, default: float, env: cabc.Mapping[str, str] | None) -> float:
    raw = _optional_text(None, env_key, env)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        msg = f"{env_key} must be a number, got {raw!r}"
        raise SystemExit(msg) from None
    if value <= 0:
        msg = f"{env_key} must be positive, got {raw!r}"
        raise SystemExit(msg)
    return value


def resolve_poll_settings(env: cabc.Mapping[str, str] | None = None) -> PollSettings:
    """Apply ``POLL_<NAME>`` environment overrides to the default waits.

    Examples
    --------
    >>> resolve_poll_settings({"POLL_HTTP_TIMEOUT": "60"}).http_timeout
    60.0
    """
    defaults = PollSettings()
    overrides = {
        name: _number(f"POLL_{name.upper()}", getattr(defaults, name), env)
        for name in PollSettings.__dataclass_fields__
    }
    return PollSettings(**overrides)


def resolve_deployment_config(
    raw: RawDeploymentInputs,
    env: cabc.Mapping[str, str] | None = None,
) -> DeploymentConfig:
    """Resolve deployment settings from CLI inputs, environment and defaults."""

    root = resolve_input(
        raw.deployment_dir,
        InputResolution(
            env_key="DEPLOYMENT_DIR", default=DEFAULT_DEPLOYMENT_DIR, as_path=True
        ),
        env,
    )
    private_key = Path(
        resolve_input(
            raw.ssh_key,
            InputResolution(
                env_key="SSH_PRIVATE_KEY", default=Path("~/.ssh/id_rsa"), as_path=True
            ),
            env,
        )
    ).expanduser()
    public_key = resolve_input(
        None,
        InputResolution(
            env_key="SSH_PUBLIC_KEY",
            default=private_key.with_name(private_key.name + ".pub"),
            as_path=True,
        ),
        env,
    )

    network = NetworkSettings(
        vpc_cidr=_text(None, "VPC_CIDR", "10.0.0.0/16", env),
        zone_count=_int(None, "ZONE_COUNT", 3, env),
    )
    compute = ComputeSettings(
        ssh_public_key=Path(public_key),
        ssh_private_key=private_key,
        ssh_user=_text(None, "SSH_USER", "ubuntu", env),
        management_instance_type=_text(None, "MANAGEMENT_INSTANCE_TYPE", "t3.large", env),
        node_instance_type=_text(None, "NODE_INSTANCE_TYPE", "t3.large", env),
        node_count=_int(raw.node_count, "NODE_COUNT", 3, env),
        root_volume_size=_int(None, "ROOT_VOLUME_SIZE", 50, env),
        data_volume_size=_int(None, "DATA_VOLUME_SIZE", 100, env),
        detailed_monitoring=parse_bool(
            _optional_text(None, "DETAILED_MONITORING", env), default=True
        ),
    )
    defaults = PlatformSettings()
    platform = PlatformSettings(
        rancher_version=_text(None, "RANCHER_VERSION", defaults.rancher_version, env),
        rancher_hostname=_optional_text(raw.rancher_hostname, "RANCHER_HOSTNAME", env),
        cluster_name=_text(raw.cluster_name, "CLUSTER_NAME", defaults.cluster_name, env),
        kubernetes_version=_text(
            None, "KUBERNETES_VERSION", defaults.kubernetes_version, env
        ),
        pool_quantity=_int(None, "POOL_QUANTITY", defaults.pool_quantity, env),
        pool_instance_type=_text(
            None, "POOL_INSTANCE_TYPE", defaults.pool_instance_type, env
        ),
        cert_manager_version=_text(
            None, "CERT_MANAGER_VERSION", defaults.cert_manager_version, env
        ),
        letsencrypt_email=_text(
            None, "LETSENCRYPT_EMAIL", defaults.letsencrypt_email, env
        ),
        argocd_hostname=_optional_text(None, "ARGOCD_HOSTNAME", env),
    )

    return DeploymentConfig(
        project_name=_text(raw.project_name, "PROJECT_NAME", "ioc-platform-demo", env),
        environment=_text(raw.environment, "ENVIRONMENT", "demo", env),
        region=_text(raw.region, "AWS_REGION", "us-east-1", env),
        aws_profile=_optional_text(raw.aws_profile, "AWS_PROFILE", env),
        paths=DeploymentPaths(Path(root)),
        compute=compute,
        network=network,
        platform=platform,
        polling=resolve_poll_settings(env),
    )


__all__ = [
    "ComputeSettings",
    "DeploymentConfig",
    "DeploymentPaths",
    "NetworkSettings",
    "PlatformSettings",
    "PollSettings",
    "RawDeploymentInputs",
    "resolve_deployment_config",
    "resolve_poll_settings",
]
