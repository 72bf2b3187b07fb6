"""Platform capabilities used by the vault: biometric prompt and keychain.

Core logic only sees the ``Biometric`` and ``SecureStorage`` protocols. The
concrete variant is picked once at startup by ``select_biometric()`` and
``select_secure_storage()``.
"""

from __future__ import annotations

import base64
import logging
import sys
from collections.abc import Callable
from typing import Protocol

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

logger = logging.getLogger(__name__)

_SERVICE = "sanctum"

_PLATFORM_NAMES = {"darwin": "macOS", "win32": "Windows"}


class Biometric(Protocol):
    platform: str

    def available(self) -> bool: ...

    def authenticate(self, reason: str) -> bool: ...


class SecureStorage(Protocol):
    def available(self) -> bool: ...

    def store_key(self, name: str, key: bytes) -> None: ...

    def load_key(self, name: str) -> bytes | None: ...

    def delete_key(self, name: str) -> None: ...


# ---------------------------------------------------------------------------
# Biometric
# ---------------------------------------------------------------------------


class PromptBiometric:
    """Touch ID / Windows Hello through a prompt callback owned by the UI.

    The callback shows the OS dialog and returns True when the user
    authenticated.
    """

    def __init__(self, platform: str, prompt: Callable[[str], bool]) -> None:
        self.platform = platform
        self._prompt = prompt

    def available(self) -> bool:
        return True

    def authenticate(self, reason: str) -> bool:
        try:
            return bool(self._prompt(reason))
        except Exception:
            logger.exception("Biometric prompt failed")
            return False


class UnavailableBiometric:
    def __init__(self, platform: str = "none", reason: str = "not supported on this platform") -> None:
        self.platform = platform
        self.reason = reason

    def available(self) -> bool:
        return False

    def authenticate(self, reason: str) -> bool:
        return False


def select_biometric(prompt: Callable[[str], bool] | None = None) -> Biometric:
    """Pick the biometric variant for the running OS.

    Args:
        prompt: UI-supplied callable that shows the OS biometric dialog. Without
            it biometrics are reported as unavailable.
    """
    name = _PLATFORM_NAMES.get(sys.platform)
    if name is None:
        return UnavailableBiometric()
    if prompt is None:
        return UnavailableBiometric(name, "no biometric prompt registered")
    return PromptBiometric(name, prompt)


# ---------------------------------------------------------------------------
# Secure storage
# ---------------------------------------------------------------------------


class KeyringSecureStorage:
    """Keys stored base64-encoded in the OS keychain via ``keyring``."""

    def __init__(self, service: str = _SERVICE) -> None:
        self.service = service

    def available(self) -> bool:
        backend = keyring.get_keyring()
        # keyring's fail backend reports priority 0
        return getattr(backend, "priority", 0) > 0

    def store_key(self, name: str, key: bytes) -> None:
        keyring.set_password(self.service, name, base64.b64encode(key).decode("ascii"))

    def load_key(self, name: str) -> bytes | None:
        try:
            value = keyring.get_password(self.service, name)
        except KeyringError:
            logger.warning("Keychain read failed for %s", name)
            return None
        return base64.b64decode(value) if value else None

    def delete_key(self, name: str) -> None:
        try:
            keyring.delete_password(self.service, name)
        except PasswordDeleteError:
            pass  # already gone


class UnavailableSecureStorage:
    def available(self) -> bool:
        return False

    def store_key(self, name: str, key: bytes) -> None:
        raise KeyringError("secure storage is not available")

    def load_key(self, name: str) -> bytes | None:
        return None

    def delete_key(self, name: str) -> None:
        return None


def select_secure_storage() -> SecureStorage:
    storage = KeyringSecureStorage()
    try:
        if storage.available():
            return storage
    except KeyringError:
        logger.warning("Keychain backend failed to initialise")
    return UnavailableSecureStorage()
