"""Unit tests for credential extraction and storage."""

from __future__ import annotations

import json
import stat
from pathlib import Path

import pytest

from platform_bootstrap._bootstrap_errors import CommandError, CredentialExtractionError
from platform_bootstrap._credentials import (
    RANCHER_PASSWORD_FILE,
    CredentialRecord,
    CredentialVault,
    extract,
    extract_credential,
    select_latest,
)
from platform_bootstrap._readiness import ManualClock
from platform_bootstrap._remote import RemoteHost
from platform_bootstrap.tests._doubles import FakeExecutor

HOST = RemoteHost("203.0.113.10", identity=Path("/keys/id_rsa"))


def test_select_latest_prefers_the_most_recent_line() -> None:
    logs = "\n".join(
        [
            "2024/01/01 Rancher Bootstrap Password: first",
            "2024/01/01 re-bootstrapped",
            "2024/01/02 Rancher Bootstrap Password: second",
        ]
    )

    assert select_latest(logs, RANCHER_PASSWORD_FILE.pattern) == "second"


def test_extract_reads_password_file() -> None:
    executor = FakeExecutor({"rancher-password.txt": ["Rancher Bootstrap Password: pw-1\n"]})

    assert extract(executor, HOST, RANCHER_PASSWORD_FILE) == "pw-1"
    assert executor.calls == [("203.0.113.10", "cat ~/rancher-password.txt")]


def test_extract_treats_ssh_failure_as_unavailable() -> None:
    executor = FakeExecutor({"rancher-password.txt": [CommandError("ssh: connect refused")]})

    assert extract(executor, HOST, RANCHER_PASSWORD_FILE) is None


def test_extract_credential_polls_until_the_secret_appears(tmp_path: Path) -> None:
    executor = FakeExecutor(
        {"rancher-password.txt": ["", CommandError("ssh timeout"), "Bootstrap Password: pw-2\n"]}
    )
    vault = CredentialVault(tmp_path / "credentials")
    clock = ManualClock()

    record = extract_credential(
        executor, HOST, RANCHER_PASSWORD_FILE, vault=vault, interval=10, timeout=60, clock=clock
    )

    assert record.value == "pw-2"
    assert len(executor.calls) == 3
    assert vault.load(RANCHER_PASSWORD_FILE.name) == record


def test_extract_credential_failure_lists_manual_steps(tmp_path: Path) -> None:
    executor = FakeExecutor({"rancher-password.txt": [""]})
    vault = CredentialVault(tmp_path / "credentials")

    with pytest.raises(CredentialExtractionError) as excinfo:
        extract_credential(
            executor,
            HOST,
            RANCHER_PASSWORD_FILE,
            vault=vault,
            interval=10,
            timeout=30,
            clock=ManualClock(),
            phase="management-plane",
        )

    error = excinfo.value
    assert error.manual_steps[0] == "ssh -i /keys/id_rsa ubuntu@203.0.113.10"
    assert "Retrieve it manually" in error.remediation
    assert not vault.path_for(RANCHER_PASSWORD_FILE.name).exists()


def test_stored_credential_is_returned_without_remote_reads(tmp_path: Path) -> None:
    vault = CredentialVault(tmp_path / "credentials")
    vault.save(CredentialRecord("rancher-bootstrap-password", "pw-1", "file", "2024-01-01"))
    executor = FakeExecutor({"rancher-password.txt": ["Bootstrap Password: rotated\n"]})

    record = extract_credential(
        executor,
        HOST,
        RANCHER_PASSWORD_FILE,
        vault=vault,
        interval=10,
        timeout=30,
        clock=ManualClock(),
    )

    assert record.value == "pw-1", "The first observed value wins"
    assert executor.calls == []


def test_credential_of_a_replaced_owner_is_observed_again(tmp_path: Path) -> None:
    vault = CredentialVault(tmp_path / "credentials")
    vault.save(
        CredentialRecord("rancher-bootstrap-password", "pw-1", "file", "2024-01-01", owner="i-old")
    )
    executor = FakeExecutor({"rancher-password.txt": ["Bootstrap Password: pw-new\n"]})

    record = extract_credential(
        executor,
        HOST,
        RANCHER_PASSWORD_FILE,
        vault=vault,
        interval=10,
        timeout=30,
        clock=ManualClock(),
        owner="i-new",
    )

    assert record.value == "pw-new", "A stored secret of another owner is stale"
    assert vault.load("rancher-bootstrap-password") == record
    assert record.owner == "i-new"


def test_credential_of_the_same_owner_is_reused(tmp_path: Path) -> None:
    vault = CredentialVault(tmp_path / "credentials")
    stored = vault.save(CredentialRecord("argocd-initial-admin-password", "a", "k8s", "now", "uid-1"))

    record = vault.observe(
        "argocd-initial-admin-password",
        lambda: "b",
        source="k8s",
        interval=1,
        timeout=5,
        clock=ManualClock(),
        owner="uid-1",
    )

    assert record == stored


def test_vault_files_are_owner_only(tmp_path: Path) -> None:
    vault = CredentialVault(tmp_path / "credentials")
    vault.save(CredentialRecord("argocd-initial-admin-password", "secret", "k8s", "now"))

    path = vault.path_for("argocd-initial-admin-password")
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert stat.S_IMODE(path.parent.stat().st_mode) == 0o700
    assert json.loads(path.read_text(encoding="utf-8"))["value"] == "secret"


def test_vault_loads_records_written_without_an_owner(tmp_path: Path) -> None:
    vault = CredentialVault(tmp_path / "credentials")
    vault.directory.mkdir()
    vault.path_for("a").write_text(
        json.dumps({"name": "a", "value": "1", "source": "s", "observed_at": "now"}),
        encoding="utf-8",
    )

    record = vault.load("a")

    assert record is not None
    assert record.owner is None


def test_record_repr_hides_the_secret() -> None:
    record = CredentialRecord("rancher-bootstrap-password", "hunter2", "file", "now")

    assert "hunter2" not in repr(record)


def test_discard_all_removes_stored_credentials(tmp_path: Path) -> None:
    vault = CredentialVault(tmp_path / "credentials")
    vault.save(CredentialRecord("a", "1", "s", "now"))
    vault.save(CredentialRecord("b", "2", "s", "now"))

    assert vault.discard_all() == 2
    assert vault.load("a") is None


def test_discard_removes_one_credential(tmp_path: Path) -> None:
    vault = CredentialVault(tmp_path / "credentials")
    vault.save(CredentialRecord("a", "1", "s", "now"))

    assert vault.discard("a") is True
    assert vault.discard("a") is False
    assert vault.load("a") is None
