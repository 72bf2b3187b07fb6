"""Tests for platform capability selection."""

from __future__ import annotations

import base64
from unittest.mock import MagicMock, patch

from keyring.errors import KeyringError, PasswordDeleteError

from sanctum.vault.platform import (
    KeyringSecureStorage,
    PromptBiometric,
    UnavailableBiometric,
    UnavailableSecureStorage,
    select_biometric,
    select_secure_storage,
)


def test_select_biometric_linux_unavailable():
    with patch("sanctum.vault.platform.sys.platform", "linux"):
        bio = select_biometric(lambda reason: True)
    assert isinstance(bio, UnavailableBiometric)
    assert not bio.available()


def test_select_biometric_macos_without_prompt():
    with patch("sanctum.vault.platform.sys.platform", "darwin"):
        bio = select_biometric()
    assert bio.platform == "macOS"
    assert not bio.available()


def test_select_biometric_windows_with_prompt():
    with patch("sanctum.vault.platform.sys.platform", "win32"):
        bio = select_biometric(lambda reason: True)
    assert isinstance(bio, PromptBiometric)
    assert bio.platform == "Windows"
    assert bio.authenticate("unlock") is True


def test_prompt_failure_counts_as_declined():
    def broken(reason):
        raise OSError("dialog crashed")

    assert PromptBiometric("macOS", broken).authenticate("unlock") is False


def test_keyring_storage_roundtrip():
    with patch("sanctum.vault.platform.keyring") as kr:
        storage = KeyringSecureStorage()
        storage.store_key("k", b"\x01\x02")
        encoded = kr.set_password.call_args.args[2]
        assert base64.b64decode(encoded) == b"\x01\x02"
        kr.get_password.return_value = encoded
        assert storage.load_key("k") == b"\x01\x02"


def test_keyring_load_failure_returns_none():
    with patch("sanctum.vault.platform.keyring") as kr:
        kr.get_password.side_effect = KeyringError("locked")
        assert KeyringSecureStorage().load_key("k") is None


def test_keyring_delete_missing_is_ignored():
    with patch("sanctum.vault.platform.keyring") as kr:
        kr.delete_password.side_effect = PasswordDeleteError("gone")
        KeyringSecureStorage().delete_key("k")


def test_select_secure_storage_falls_back():
    backend = MagicMock(priority=0)
    with patch("sanctum.vault.platform.keyring.get_keyring", return_value=backend):
        assert isinstance(select_secure_storage(), UnavailableSecureStorage)


def test_select_secure_storage_uses_keyring():
    backend = MagicMock(priority=5)
    with patch("sanctum.vault.platform.keyring.get_keyring", return_value=backend):
        assert isinstance(select_secure_storage(), KeyringSecureStorage)
