"""The vault: holds the data-encryption key and gates access to sealed records.

A random 256-bit data-encryption key (DEK) seals every sensitive column. The
DEK is persisted only wrapped: once under an Argon2id key derived from the
user's password and, optionally, once under a random key kept in the OS
keychain for biometric unlock. The unwrapped DEK lives in process memory
between unlock and lock (or exit) and nowhere else.

Status transitions::

    UNINITIALIZED --setup--> UNLOCKED
    UNINITIALIZED --skip_setup--> DISABLED --setup--> UNLOCKED
    LOCKED --unlock_*--> UNLOCKED --lock--> LOCKED
    UNLOCKED/LOCKED --disable--> DISABLED
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from enum import Enum

from sanctum.db.models import VaultState
from sanctum.db.repository import Repository
from sanctum.errors import AuthenticationFailed, VaultError, VaultLocked
from sanctum.vault.crypto import (
    KdfParams,
    derive_key,
    generate_key,
    generate_salt,
    open_sealed,
    seal,
    unwrap_key,
    wrap_key,
)
from sanctum.vault.platform import (
    Biometric,
    SecureStorage,
    UnavailableBiometric,
    UnavailableSecureStorage,
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
BIOMETRIC_KEY_NAME = "biometric-kek"


class VaultStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    DISABLED = "disabled"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class Vault:
    """Vault bound to one store.

    Creating a Vault attaches it to *repo* as the record cipher, so every
    repository read and write from then on honours the vault's lock state.
    Lock order is repository first, then vault: the vault never calls into
    the repository while holding its own lock.

    Args:
        repo: Repository over the store holding the vault state row.
        biometric: Platform biometric capability.
        secure_storage: Platform keychain capability.
        kdf: Argon2id cost for new derivations (setup and password change).
            Unlocking always uses the parameters stored with the salt.
    """

    def __init__(
        self,
        repo: Repository,
        *,
        biometric: Biometric | None = None,
        secure_storage: SecureStorage | None = None,
        kdf: KdfParams | None = None,
    ) -> None:
        self._repo = repo
        self._biometric = biometric or UnavailableBiometric()
        self._storage = secure_storage or UnavailableSecureStorage()
        self._kdf = kdf or KdfParams()
        self._lock = threading.RLock()
        self._key: bytearray | None = None
        self._state: VaultState | None = repo.load_vault_state()
        repo.attach_cipher(self)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> VaultStatus:
        with self._lock:
            if self._state is None:
                return VaultStatus.UNINITIALIZED
            if not self._state.enabled:
                return VaultStatus.DISABLED
            return VaultStatus.UNLOCKED if self._key is not None else VaultStatus.LOCKED

    @property
    def enabled(self) -> bool:
        return self._state is not None and self._state.enabled

    @property
    def is_unlocked(self) -> bool:
        return self.status is VaultStatus.UNLOCKED

    @property
    def biometric_enabled(self) -> bool:
        return self._state is not None and self._state.biometric_enabled

    def biometric_capability(self) -> dict[str, object]:
        available = self._biometric.available() and self._storage.available()
        reason = getattr(self._biometric, "reason", None)
        if reason is None and not self._storage.available():
            reason = "no secure key storage on this system"
        return {"available": available, "platform": self._biometric.platform, "reason": reason}

    def reload(self) -> None:
        """Re-read the persisted state (after a backup import) and lock."""
        state = self._repo.load_vault_state()
        with self._lock:
            self._wipe()
            self._state = state

    # ------------------------------------------------------------------
    # Record cipher (used by the Repository)
    # ------------------------------------------------------------------

    def require_unlocked(self) -> None:
        if self.enabled and self._key is None:
            raise VaultLocked("The vault is locked")

    def encrypt(self, data: bytes) -> bytes:
        return seal(self._current_key(), data)

    def decrypt(self, data: bytes) -> bytes:
        return open_sealed(self._current_key(), data)

    def _current_key(self) -> bytes:
        # no vault lock here: the repository calls in while holding its own
        key = self._key
        if key is None:
            raise VaultLocked("The vault is locked")
        return bytes(key)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def setup(self, password: str, enable_biometric: bool = False) -> None:
        """Enable security: create the DEK, wrap it, and seal existing records.

        Raises:
            VaultError: If security is already enabled, the password is too
                short, or biometrics were requested but are unavailable.
        """
        if self.enabled:
            raise VaultError(
                "Security is already enabled",
                suggestion="Use  sanctum vault change-password  instead.",
            )
        _check_password(password)
        if enable_biometric and not self.biometric_capability()["available"]:
            raise VaultError("Biometric unlock is not available on this device")

        dek = generate_key()
        salt = generate_salt()
        state = VaultState(
            enabled=True,
            salt=salt,
            wrapped_key=wrap_key(derive_key(password, salt, self._kdf), dek),
            kdf_params=self._kdf.to_dict(),
        )
        if enable_biometric:
            state = replace(
                state, biometric_enabled=True, biometric_wrapped_key=self._enroll_biometric(dek)
            )

        try:
            with self._repo.exclusive():
                if self.enabled:
                    raise VaultError("Security is already enabled")
                with self._repo.transaction():
                    self._repo.save_vault_state(state)
                    sealed = self._repo.reseal_all(None, lambda b: seal(dek, b))
                self._swap(state, dek)
        except BaseException:
            if enable_biometric:
                self._storage.delete_key(BIOMETRIC_KEY_NAME)
            raise
        logger.info("Vault enabled; %d existing records encrypted", sealed)

    def skip_setup(self) -> None:
        """Record that the user chose to run without encryption."""
        with self._repo.exclusive():
            if self.enabled:
                raise VaultError("Security is already enabled")
            state = VaultState(enabled=False)
            self._repo.save_vault_state(state)
            self._swap(state, None)

    def unlock_with_password(self, password: str) -> bool:
        """Unwrap the DEK with *password*. Returns False on a wrong password."""
        state = self._require_enabled()
        try:
            dek = self._unwrap_with_password(state, password)
        except AuthenticationFailed:
            logger.warning("Vault unlock failed: wrong password")
            return False
        with self._lock:
            self._key = bytearray(dek)
        logger.info("Vault unlocked with password")
        return True

    def unlock_with_biometric(self) -> bool:
        """Ask the platform to authenticate and release the keychain-held key."""
        state = self._require_enabled()
        if not state.biometric_enabled or state.biometric_wrapped_key is None:
            return False
        if not self._biometric.available():
            return False
        if not self._biometric.authenticate("Unlock your Sanctum documents"):
            logger.info("Biometric authentication declined")
            return False
        kek = self._storage.load_key(BIOMETRIC_KEY_NAME)
        if kek is None:
            logger.warning("Biometric key missing from secure storage")
            return False
        try:
            dek = unwrap_key(kek, state.biometric_wrapped_key)
        except AuthenticationFailed:
            logger.warning("Biometric-wrapped key failed to unwrap")
            return False
        with self._lock:
            self._key = bytearray(dek)
        logger.info("Vault unlocked with biometrics")
        return True

    def lock(self) -> None:
        """Discard the in-memory DEK."""
        with self._lock:
            self._wipe()

    def disable(self, current_password: str) -> int:
        """Turn security off, rewriting all sealed records as plaintext.

        Returns:
            Number of records that were decrypted.

        Raises:
            AuthenticationFailed: If *current_password* is wrong.
        """
        state = self._require_enabled()
        dek = self._unwrap_with_password(state, current_password)
        new_state = VaultState(enabled=False)
        with self._repo.exclusive():
            with self._repo.transaction():
                count = self._repo.reseal_all(lambda b: open_sealed(dek, b), None)
                self._repo.save_vault_state(new_state)
            self._swap(new_state, None)
        if state.biometric_enabled:
            self._storage.delete_key(BIOMETRIC_KEY_NAME)
        logger.info("Vault disabled; %d records decrypted", count)
        return count

    def change_password(self, old_password: str, new_password: str) -> None:
        """Re-wrap the same DEK under a freshly salted key from *new_password*.

        Raises:
            AuthenticationFailed: If *old_password* is wrong.
            VaultError: If *new_password* is too short.
        """
        state = self._require_enabled()
        dek = self._unwrap_with_password(state, old_password)
        _check_password(new_password)
        salt = generate_salt()
        new_state = replace(
            state,
            salt=salt,
            wrapped_key=wrap_key(derive_key(new_password, salt, self._kdf), dek),
            kdf_params=self._kdf.to_dict(),
        )
        with self._repo.exclusive():
            self._repo.save_vault_state(new_state)
            self._swap(new_state, dek)
        logger.info("Vault password changed")

    def toggle_biometric(self, current_password: str, enable: bool) -> None:
        """Add or remove the biometric-wrapped copy of the DEK.

        Raises:
            AuthenticationFailed: If *current_password* is wrong.
            VaultError: If enabling on a device without biometrics.
        """
        state = self._require_enabled()
        dek = self._unwrap_with_password(state, current_password)
        if enable:
            if not self.biometric_capability()["available"]:
                raise VaultError("Biometric unlock is not available on this device")
            new_state = replace(
                state, biometric_enabled=True, biometric_wrapped_key=self._enroll_biometric(dek)
            )
        else:
            self._storage.delete_key(BIOMETRIC_KEY_NAME)
            new_state = replace(state, biometric_enabled=False, biometric_wrapped_key=None)
        with self._repo.exclusive():
            self._repo.save_vault_state(new_state)
            with self._lock:
                self._state = new_state
        logger.info("Biometric unlock %s", "enabled" if enable else "disabled")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_enabled(self) -> VaultState:
        if self._state is None or not self._state.enabled:
            raise VaultError(
                "Security is not enabled", suggestion="Run:  sanctum vault setup"
            )
        return self._state

    def _unwrap_with_password(self, state: VaultState, password: str) -> bytes:
        if not password or state.salt is None or state.wrapped_key is None:
            raise AuthenticationFailed("Wrong password")
        params = KdfParams.from_dict(state.kdf_params) if state.kdf_params else KdfParams()
        return unwrap_key(derive_key(password, state.salt, params), state.wrapped_key)

    def _enroll_biometric(self, dek: bytes) -> bytes:
        kek = generate_key()
        self._storage.store_key(BIOMETRIC_KEY_NAME, kek)
        return wrap_key(kek, dek)

    def _swap(self, state: VaultState, dek: bytes | None) -> None:
        with self._lock:
            old, self._key = self._key, (bytearray(dek) if dek is not None else None)
            self._state = state
            if old is not None:
                for i in range(len(old)):
                    old[i] = 0

    def _wipe(self) -> None:
        key, self._key = self._key, None
        if key is not None:
            for i in range(len(key)):
                key[i] = 0


def _check_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise VaultError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            suggestion="Choose a longer password.",
        )
