"""Boot scripts handed to new instances.

The management host bootstraps itself: it installs Docker, mounts its data
volume, starts Rancher, writes the bootstrap password to a file and touches
a completion marker. The orchestrator only waits for that marker.
"""

from __future__ import annotations

from pathlib import Path
from string import Template

SETUP_COMPLETE_MARKER = "/tmp/rancher-setup-complete"
PASSWORD_FILE = "rancher-password.txt"

_MANAGEMENT_TEMPLATE = Template(
    """#!/bin/bash
set -euo pipefail
exec > >(tee /var/log/rancher-setup.log) 2>&1

apt-get update
apt-get install -y docker.io curl openssl
systemctl enable --now docker
usermod -aG docker $ssh_user

if ! mountpoint -q /opt/rancher-data; then
  mkfs.ext4 -F /dev/nvme1n1
  mkdir -p /opt/rancher-data
  mount /dev/nvme1n1 /opt/rancher-data
  echo '/dev/nvme1n1 /opt/rancher-data ext4 defaults 0 2' >> /etc/fstab
fi

BOOTSTRAP_PASSWORD=$$(openssl rand -hex 16)
echo "Rancher Bootstrap Password: $$BOOTSTRAP_PASSWORD" > /home/$ssh_user/$password_file
chown $ssh_user:$ssh_user /home/$ssh_user/$password_file
chmod 600 /home/$ssh_user/$password_file

docker run -d --name rancher --restart=unless-stopped \\
  -p 80:80 -p 443:443 \\
  -v /opt/rancher-data:/var/lib/rancher \\
  -e CATTLE_BOOTSTRAP_PASSWORD="$$BOOTSTRAP_PASSWORD" \\
  --privileged \\
  rancher/rancher:$rancher_version

until curl -ksf https://localhost/ping | grep -q pong; do sleep 10; done

touch $marker
"""
)

_NODE_TEMPLATE = Template(
    """#!/bin/bash
set -euo pipefail
apt-get update
apt-get install -y curl

if ! mountpoint -q /opt/kubernetes-data; then
  mkfs.ext4 -F /dev/nvme1n1
  mkdir -p /opt/kubernetes-data
  mount /dev/nvme1n1 /opt/kubernetes-data
  echo '/dev/nvme1n1 /opt/kubernetes-data ext4 defaults 0 2' >> /etc/fstab
fi
chown -R $ssh_user:$ssh_user /opt/kubernetes-data

curl -sfL https://get.rke2.io | sh -
mkdir -p /etc/rancher/rke2
"""
)


def render_management_user_data(*, rancher_version: str, ssh_user: str) -> str:
    """Return the management host boot script.

    Examples
    --------
    >>> "rancher/rancher:v2.8.0" in render_management_user_data(
    ...     rancher_version="v2.8.0", ssh_user="ubuntu"
    ... )
    True
    """
    return _MANAGEMENT_TEMPLATE.substitute(
        rancher_version=rancher_version,
        ssh_user=ssh_user,
        password_file=PASSWORD_FILE,
        marker=SETUP_COMPLETE_MARKER,
    )


def render_node_user_data(*, ssh_user: str) -> str:
    """Return the node boot script."""
    return _NODE_TEMPLATE.substitute(ssh_user=ssh_user)


def write_user_data(directory: Path, name: str, content: str) -> Path:
    """Write a boot script and return its path for ``--user-data file://``."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{name}.sh"
    path.write_text(content, encoding="utf-8")
    return path
