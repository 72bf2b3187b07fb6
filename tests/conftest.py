"""Shared pytest fixtures and fakes for the capability protocols."""

from __future__ import annotations

import hashlib
import re
import threading
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from sanctum.config import LoggingCfg, SanctumConfig, StorageCfg, VaultCfg
from sanctum.db.connection import Database
from sanctum.db.repository import Repository
from sanctum.db.schema import initialize
from sanctum.hardware import GIB, HardwareProfile
from sanctum.index import VectorIndex
from sanctum.rag.orchestrator import Orchestrator
from sanctum.vault import KdfParams, Vault

PASSWORD = "correct horse battery"

# Argon2id at minimum cost so vault tests stay fast.
FAST_KDF = KdfParams(time_cost=1, memory_cost=8, parallelism=1)


# ------------------------------------------------------------------
# Fakes
# ------------------------------------------------------------------


class FakeEmbedder:
    """Deterministic bag-of-words vectors: texts sharing words score higher."""

    def __init__(self, dimension: int = 32, fail: bool = False) -> None:
        self.dimension = dimension
        self.fail = fail
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise ConnectionError("embedding server unreachable")
        vector = [0.0] * self.dimension
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        return vector


class FakeEngine:
    """Yields a fixed token list; can pause after N tokens until resumed or stopped."""

    requires_model_file = False

    def __init__(
        self,
        tokens: list[str] | None = None,
        *,
        pause_after: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self.tokens = list(tokens if tokens is not None else ["Paris", " is", " the", " capital", "."])
        self.pause_after = pause_after
        self.error = error
        self.paused = threading.Event()
        self.resume = threading.Event()
        self.loads: list[tuple] = []
        self.prompts: list[str] = []
        self.messages: list[list[dict]] = []

    def load(self, model_path, params):
        self.loads.append((model_path, params))
        return "fake-handle"

    def generate(self, handle, prompt, *, max_tokens, should_stop, messages=None):
        self.prompts.append(prompt)
        self.messages.append(messages)
        for i, token in enumerate(self.tokens):
            if self.pause_after is not None and i == self.pause_after:
                self.paused.set()
                while not self.resume.wait(0.01):
                    if should_stop():
                        return
            if should_stop():
                return
            yield token
        if self.error is not None:
            raise self.error


class FakeParser:
    """Reads every supported file as UTF-8 text."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail

    def extract_text(self, path: Path, on_progress=None) -> str:
        if self.fail:
            raise RuntimeError("corrupt file")
        return path.read_text(encoding="utf-8")


class MemorySecureStorage:
    def __init__(self) -> None:
        self.keys: dict[str, bytes] = {}

    def available(self) -> bool:
        return True

    def store_key(self, name: str, key: bytes) -> None:
        self.keys[name] = key

    def load_key(self, name: str) -> bytes | None:
        return self.keys.get(name)

    def delete_key(self, name: str) -> None:
        self.keys.pop(name, None)


class FakeBiometric:
    platform = "macOS"

    def __init__(self, approve: bool = True) -> None:
        self.approve = approve
        self.prompts: list[str] = []

    def available(self) -> bool:
        return True

    def authenticate(self, reason: str) -> bool:
        self.prompts.append(reason)
        return self.approve


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "sanctum.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def secure_storage():
    return MemorySecureStorage()


@pytest.fixture
def biometric():
    return FakeBiometric()


@pytest.fixture
def vault(repo, biometric, secure_storage):
    return Vault(repo, biometric=biometric, secure_storage=secure_storage, kdf=FAST_KDF)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def index():
    return VectorIndex()


@pytest.fixture
def profile():
    return HardwareProfile(core_count=8, total_ram_bytes=16 * GIB, gpu_vendor="none")


@pytest.fixture
def config(tmp_path):
    return SanctumConfig(storage=StorageCfg(data_dir=tmp_path / "data"))


@pytest.fixture
def make_orchestrator(config, repo, vault, embedder, profile):
    """Build an Orchestrator over the test store with the given engine."""

    def _make(engine=None, **kwargs) -> Orchestrator:
        return Orchestrator(
            config,
            repo,
            vault,
            engine=engine or FakeEngine(),
            embedder=kwargs.pop("embedder", embedder),
            parser=kwargs.pop("parser", FakeParser()),
            profile=profile,
            **kwargs,
        )

    return _make


@pytest.fixture
def write_doc(tmp_path):
    """Write a text document into tmp_path/docs and return its path."""

    def _write(name: str, text: str) -> Path:
        path = tmp_path / "docs" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def cli_store(config, secure_storage, biometric, embedder, profile):
    """Route CLI commands to a store under tmp_path opened with fakes.

    Every command opens (and closes) its own Orchestrator over the same
    database file, so state carries across invocations the way it does
    for a real user.
    """
    config.vault = VaultCfg(kdf_time_cost=1, kdf_memory_kib=8, kdf_parallelism=1)
    config.logging = LoggingCfg(level="WARNING", file=None)
    engine = FakeEngine()

    def _open(cfg=None) -> Orchestrator:
        return Orchestrator.open(
            cfg or config,
            biometric=biometric,
            secure_storage=secure_storage,
            engine=engine,
            embedder=embedder,
            parser=FakeParser(),
            profile=profile,
        )

    with (
        patch("sanctum.cli.common.load_config", return_value=config),
        patch("sanctum.cli.common.build_orchestrator", side_effect=_open),
    ):
        yield SimpleNamespace(
            config=config, engine=engine, biometric=biometric, open=_open
        )
