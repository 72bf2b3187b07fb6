"""Domain models for the Sanctum storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

ROLES = ("user", "assistant")


@dataclass
class Document:
    file_name: str
    file_path: str
    file_type: str
    size_bytes: int = 0
    chunk_count: int = 0
    upload_timestamp: str | None = None
    id: int | None = None  # set after insert


@dataclass
class Chunk:
    document_id: int
    ordinal: int
    text: str
    embedding: np.ndarray | None = None
    id: int | None = None


@dataclass
class Conversation:
    title: str
    created_at: str | None = None
    updated_at: str | None = None
    message_count: int = 0
    id: int | None = None


@dataclass
class Citation:
    marker: int | None
    file_name: str
    document_id: int | None = None
    chunk_id: int | None = None
    ordinal: int | None = None

    def to_dict(self) -> dict:
        return {
            "marker": self.marker,
            "file_name": self.file_name,
            "document_id": self.document_id,
            "chunk_id": self.chunk_id,
            "ordinal": self.ordinal,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Citation:
        return cls(
            marker=data.get("marker"),
            file_name=str(data.get("file_name", "")),
            document_id=data.get("document_id"),
            chunk_id=data.get("chunk_id"),
            ordinal=data.get("ordinal"),
        )


@dataclass
class Message:
    conversation_id: int
    role: str
    content: str
    citations: list[Citation] = field(default_factory=list)
    created_at: str | None = None
    id: int | None = None


@dataclass
class VaultState:
    """Persisted vault configuration. Exactly one row per installation."""

    enabled: bool = False
    salt: bytes | None = None
    wrapped_key: bytes | None = None
    kdf_params: dict | None = None
    biometric_enabled: bool = False
    biometric_wrapped_key: bytes | None = None
