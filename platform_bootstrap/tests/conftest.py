from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_configure() -> None:
    project_root = Path(__file__).resolve().parents[2]
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep operator settings from leaking into resolved configuration."""
    for key in (
        "DEPLOYMENT_DIR",
        "PROJECT_NAME",
        "ENVIRONMENT",
        "AWS_REGION",
        "AWS_PROFILE",
        "SSH_PRIVATE_KEY",
        "SSH_PUBLIC_KEY",
        "RANCHER_HOSTNAME",
        "CLUSTER_NAME",
        "NODE_COUNT",
        "WORKLOAD_KUBECONFIG",
        "MANAGEMENT_KUBECONFIG",
    ):
        monkeypatch.delenv(key, raising=False)
