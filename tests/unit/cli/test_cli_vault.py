"""Tests for sanctum vault."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from conftest import PASSWORD
from sanctum.cli.common import PASSWORD_ENV
from sanctum.cli.main import app
from sanctum.vault import VaultStatus

runner = CliRunner()

NEW_PASSWORD = "a much better passphrase"


@pytest.fixture
def enabled(cli_store, monkeypatch):
    """Vault set up with PASSWORD, which SANCTUM_PASSWORD supplies."""
    with cli_store.open() as orch:
        orch.setup_vault(PASSWORD)
    monkeypatch.setenv(PASSWORD_ENV, PASSWORD)
    return cli_store


def _status(cli_store) -> VaultStatus:
    with cli_store.open() as orch:
        return orch.vault.status


# ------------------------------------------------------------------
# status
# ------------------------------------------------------------------


def test_status_uninitialized(cli_store):
    result = runner.invoke(app, ["vault", "status"])
    assert result.exit_code == 0
    assert "uninitialized" in result.output
    assert "biometric unlock available (macOS)" in result.output


def test_status_locked_without_prompt(enabled, monkeypatch):
    monkeypatch.delenv(PASSWORD_ENV)
    result = runner.invoke(app, ["vault", "status"])
    assert result.exit_code == 0
    assert "locked" in result.output
    assert "Biometric: off" in result.output


# ------------------------------------------------------------------
# setup / skip
# ------------------------------------------------------------------


def test_setup_enables_encryption(cli_store, monkeypatch):
    monkeypatch.setenv(PASSWORD_ENV, PASSWORD)
    result = runner.invoke(app, ["vault", "setup"])
    assert result.exit_code == 0, result.output
    assert "Encryption enabled" in result.output
    assert _status(cli_store) is VaultStatus.LOCKED


def test_setup_encrypts_existing_documents(cli_store, write_doc, monkeypatch):
    with cli_store.open() as orch:
        orch.ingest(write_doc("lease.txt", "The rent is due on the first."))
    monkeypatch.setenv(PASSWORD_ENV, PASSWORD)
    runner.invoke(app, ["vault", "setup"])
    with cli_store.open() as orch:
        row = orch.repo.connection.execute("SELECT is_encrypted FROM chunks").fetchone()
        assert row[0] == 1


def test_setup_with_biometric(cli_store, monkeypatch):
    monkeypatch.setenv(PASSWORD_ENV, PASSWORD)
    result = runner.invoke(app, ["vault", "setup", "--biometric"])
    assert result.exit_code == 0
    with cli_store.open() as orch:
        assert orch.vault.biometric_enabled


def test_setup_rejects_short_password(cli_store, monkeypatch):
    monkeypatch.setenv(PASSWORD_ENV, "short")
    result = runner.invoke(app, ["vault", "setup"])
    assert result.exit_code == 1
    assert "at least 8 characters" in result.output
    assert _status(cli_store) is VaultStatus.UNINITIALIZED


def test_setup_twice_fails(enabled):
    result = runner.invoke(app, ["vault", "setup"])
    assert result.exit_code == 1
    assert "already enabled" in result.output


def test_skip(cli_store):
    result = runner.invoke(app, ["vault", "skip"])
    assert result.exit_code == 0
    assert "Encryption is off" in result.output
    assert _status(cli_store) is VaultStatus.DISABLED


# ------------------------------------------------------------------
# disable
# ------------------------------------------------------------------


def test_disable(enabled, write_doc, monkeypatch):
    with enabled.open() as orch:
        orch.unlock(PASSWORD)
        orch.ingest(write_doc("lease.txt", "The rent is due on the first."))
    result = runner.invoke(app, ["vault", "disable", "--yes"])
    assert result.exit_code == 0, result.output
    assert "Encryption disabled" in result.output
    assert _status(enabled) is VaultStatus.DISABLED
    with enabled.open() as orch:
        assert [d.file_name for d in orch.list_documents()] == ["lease.txt"]


def test_disable_wrong_password(enabled, monkeypatch):
    monkeypatch.setenv(PASSWORD_ENV, "not the password")
    result = runner.invoke(app, ["vault", "disable", "--yes"])
    assert result.exit_code == 1
    assert "Wrong password" in result.output
    assert _status(enabled) is VaultStatus.LOCKED


def test_disable_when_not_enabled(cli_store):
    result = runner.invoke(app, ["vault", "disable", "--yes"])
    assert result.exit_code == 1
    assert "Security is not enabled" in result.output


def test_disable_declined(enabled):
    result = runner.invoke(app, ["vault", "disable"], input="n\n")
    assert result.exit_code == 0
    assert _status(enabled) is VaultStatus.LOCKED


# ------------------------------------------------------------------
# change-password
# ------------------------------------------------------------------


def test_change_password(enabled):
    result = runner.invoke(
        app, ["vault", "change-password"], input=f"{NEW_PASSWORD}\n{NEW_PASSWORD}\n"
    )
    assert result.exit_code == 0, result.output
    assert "Password changed" in result.output
    with enabled.open() as orch:
        assert not orch.unlock(PASSWORD)
        assert orch.unlock(NEW_PASSWORD)


def test_change_password_wrong_current(enabled, monkeypatch):
    monkeypatch.setenv(PASSWORD_ENV, "not the password")
    result = runner.invoke(
        app, ["vault", "change-password"], input=f"{NEW_PASSWORD}\n{NEW_PASSWORD}\n"
    )
    assert result.exit_code == 1
    with enabled.open() as orch:
        assert orch.unlock(PASSWORD)


# ------------------------------------------------------------------
# biometric
# ------------------------------------------------------------------


def test_biometric_enable_then_disable(enabled):
    result = runner.invoke(app, ["vault", "biometric", "--enable"])
    assert result.exit_code == 0
    assert "Biometric unlock enabled" in result.output
    with enabled.open() as orch:
        assert orch.vault.biometric_enabled

    result = runner.invoke(app, ["vault", "biometric", "--disable"])
    assert result.exit_code == 0
    with enabled.open() as orch:
        assert not orch.vault.biometric_enabled


def test_biometric_when_not_enabled(cli_store):
    result = runner.invoke(app, ["vault", "biometric", "--enable"])
    assert result.exit_code == 1
