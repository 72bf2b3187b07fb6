"""Key derivation and authenticated encryption primitives.

Argon2id (argon2-cffi) derives key-encryption keys from passwords; AES-256-GCM
(cryptography) seals everything else. Sealed blobs are ``nonce || ciphertext``
with a 12-byte random nonce, and a purpose label is bound in as associated
data so a wrapped key can never be opened as a record payload or vice versa.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass

from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from sanctum.errors import AuthenticationFailed

KEY_LEN = 32
SALT_LEN = 16
NONCE_LEN = 12

AAD_WRAPPED_KEY = b"sanctum:dek:v1"
AAD_RECORD = b"sanctum:record:v1"


@dataclass(frozen=True)
class KdfParams:
    """Argon2id cost parameters; stored alongside the salt."""

    time_cost: int = 3
    memory_cost: int = 65_536  # KiB
    parallelism: int = 4

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> KdfParams:
        return cls(
            time_cost=int(data["time_cost"]),
            memory_cost=int(data["memory_cost"]),
            parallelism=int(data["parallelism"]),
        )


def generate_salt() -> bytes:
    return os.urandom(SALT_LEN)


def generate_key() -> bytes:
    return AESGCM.generate_key(bit_length=256)


def derive_key(password: str, salt: bytes, params: KdfParams) -> bytes:
    """Derive a 32-byte key from *password* and *salt* with Argon2id."""
    if not password:
        raise ValueError("password must not be empty")
    if len(salt) != SALT_LEN:
        raise ValueError(f"salt must be {SALT_LEN} bytes")
    return hash_secret_raw(
        secret=password.encode("utf-8"),
        salt=salt,
        time_cost=params.time_cost,
        memory_cost=params.memory_cost,
        parallelism=params.parallelism,
        hash_len=KEY_LEN,
        type=Type.ID,
    )


def seal(key: bytes, plaintext: bytes, aad: bytes = AAD_RECORD) -> bytes:
    """Encrypt *plaintext* under *key*; returns ``nonce || ciphertext``."""
    nonce = os.urandom(NONCE_LEN)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, aad)


def open_sealed(key: bytes, blob: bytes, aad: bytes = AAD_RECORD) -> bytes:
    """Decrypt a blob produced by ``seal()``.

    Raises:
        AuthenticationFailed: Wrong key, wrong purpose, or tampered data.
    """
    if len(blob) <= NONCE_LEN:
        raise AuthenticationFailed("Encrypted payload is truncated")
    try:
        return AESGCM(key).decrypt(blob[:NONCE_LEN], blob[NONCE_LEN:], aad)
    except InvalidTag as exc:
        raise AuthenticationFailed("Decryption failed: wrong key or corrupted data") from exc


def wrap_key(kek: bytes, dek: bytes) -> bytes:
    return seal(kek, dek, AAD_WRAPPED_KEY)


def unwrap_key(kek: bytes, wrapped: bytes) -> bytes:
    return open_sealed(kek, wrapped, AAD_WRAPPED_KEY)
