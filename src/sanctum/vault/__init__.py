"""Crypto vault: key derivation, wrapping and lock state."""

from sanctum.vault.crypto import KdfParams
from sanctum.vault.vault import Vault, VaultStatus

__all__ = ["KdfParams", "Vault", "VaultStatus"]
