"""Sanctum configuration loader.

Priority (high → low):
  1. CLI flags              (handled at call site, not in this module)
  2. Environment variables  (SANCTUM_DATA_DIR, SANCTUM_MODEL,
                             SANCTUM_EMBEDDING_MODEL, SANCTUM_LOG_LEVEL)
  3. Local sanctum.yaml     (in the working directory)
  4. Global ~/.sanctum/config.yaml
  5. Hardcoded defaults

Config files must never contain passwords or keys: the vault password is only
ever typed in, and key material lives in the vault or the OS keychain.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".sanctum"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_LOCAL_CONFIG_NAME: str = "sanctum.yaml"

# Does NOT match legitimate keys like max_tokens or kdf_time_cost.
_SECRET_KEY_RE: re.Pattern[str] = re.compile(
    r"passw(?:ord|d)"
    r"|passphrase"
    r"|^secret$"
    r"|_secret$"
    r"|^(?:encryption|master|data)_key$",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["storage", "models", "embedding", "generation", "retrieval", "chunking", "vault", "logging"]
)

_ENGINES: frozenset[str] = frozenset(["llama_cpp", "litellm"])
_RETRIEVAL_MODES: frozenset[str] = frozenset(["hybrid", "dense", "keyword"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class StorageCfg:
    """Where Sanctum keeps its database and logs (sanctum.yaml: storage:)."""

    data_dir: Path = field(default_factory=lambda: _GLOBAL_CONFIG_DIR)
    db_name: str = "sanctum.db"


@dataclass
class ModelsCfg:
    """Model catalog and cache (sanctum.yaml: models:).

    Attributes:
        cache_dir: Directory holding GGUF files. Defaults to ``<data_dir>/models``.
        selected: Catalog name of the model to use. ``None`` = hardware recommendation.
        ram_safety_margin: Fraction of RAM a model may claim (headroom for the OS
            and the embedding engine).
        catalog_file: Optional YAML file replacing the built-in catalog.
    """

    cache_dir: Path | None = None
    selected: str | None = None
    ram_safety_margin: float = 0.75
    catalog_file: Path | None = None


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (sanctum.yaml: embedding:)."""

    model: str = "ollama/nomic-embed-text"
    api_base: str | None = None


@dataclass
class GenerationCfg:
    """Local generation configuration (sanctum.yaml: generation:).

    ``engine`` picks the inference adapter: ``llama_cpp`` loads the GGUF file
    in-process; ``litellm`` streams from a local ollama server and uses
    ``litellm_model`` instead of the cached file.
    """

    engine: str = "llama_cpp"
    litellm_model: str = "ollama/qwen2.5:7b-instruct"
    api_base: str | None = None
    max_tokens: int = 1_024
    temperature: float = 0.7
    history_messages: int = 10


@dataclass
class RetrievalCfg:
    """Retrieval configuration (sanctum.yaml: retrieval:).

    Attributes:
        top_k: Chunks handed to the prompt.
        mode: 'hybrid' (dense + BM25 keyword, fused via RRF), 'dense' or 'keyword'.
    """

    top_k: int = 5
    mode: str = "hybrid"


@dataclass
class ChunkingCfg:
    """Chunk size in tokens (≈ 4 chars each) and overlap fraction."""

    chunk_size: int = 200
    overlap: float = 0.25


@dataclass
class VaultCfg:
    """Argon2id cost parameters used when a vault is set up or re-keyed."""

    kdf_time_cost: int = 3
    kdf_memory_kib: int = 65_536
    kdf_parallelism: int = 4


@dataclass
class LoggingCfg:
    level: str = "WARNING"
    file: str | None = "sanctum.log"


@dataclass
class SanctumConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    storage: StorageCfg = field(default_factory=StorageCfg)
    models: ModelsCfg = field(default_factory=ModelsCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    vault: VaultCfg = field(default_factory=VaultCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)

    @property
    def db_path(self) -> Path:
        return self.storage.data_dir / self.storage.db_name

    @property
    def model_dir(self) -> Path:
        return self.models.cache_dir or self.storage.data_dir / "models"

    @property
    def log_path(self) -> Path | None:
        if not self.logging.file:
            return None
        path = Path(self.logging.file)
        return path if path.is_absolute() else self.storage.data_dir / path


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_secrets(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any password- or key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _SECRET_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Config '{source}' contains a forbidden key '{full}'.\n"
                        f"  Passwords and keys are never read from config files.\n"
                        f"  Remove '{full}' from {source.name}."
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _read_layer(path: Path) -> dict[str, Any]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config '{path}' must be a mapping at the top level.")
    _check_no_secrets(raw, path)
    _warn_unknown_keys(raw, path)
    return raw


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _opt_path(value: Any) -> Path | None:
    return Path(value).expanduser() if value else None


def _cfg_from_dict(data: dict[str, Any]) -> SanctumConfig:
    """Build a *SanctumConfig* from a merged raw YAML dict."""
    cfg = SanctumConfig()

    if "storage" in data:
        s = data["storage"]
        cfg.storage = StorageCfg(
            data_dir=_opt_path(s.get("data_dir")) or cfg.storage.data_dir,
            db_name=str(s.get("db_name", cfg.storage.db_name)),
        )

    if "models" in data:
        m = data["models"]
        cfg.models = ModelsCfg(
            cache_dir=_opt_path(m.get("cache_dir")),
            selected=m.get("selected") or None,
            ram_safety_margin=float(m.get("ram_safety_margin", cfg.models.ram_safety_margin)),
            catalog_file=_opt_path(m.get("catalog_file")),
        )

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            api_base=e.get("api_base") or None,
        )

    if "generation" in data:
        g = data["generation"]
        cfg.generation = GenerationCfg(
            engine=str(g.get("engine", cfg.generation.engine)),
            litellm_model=str(g.get("litellm_model", cfg.generation.litellm_model)),
            api_base=g.get("api_base") or None,
            max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
            temperature=float(g.get("temperature", cfg.generation.temperature)),
            history_messages=int(g.get("history_messages", cfg.generation.history_messages)),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            mode=str(r.get("mode", cfg.retrieval.mode)),
        )

    if "chunking" in data:
        c = data["chunking"]
        cfg.chunking = ChunkingCfg(
            chunk_size=int(c.get("chunk_size", cfg.chunking.chunk_size)),
            overlap=float(c.get("overlap", cfg.chunking.overlap)),
        )

    if "vault" in data:
        v = data["vault"]
        cfg.vault = VaultCfg(
            kdf_time_cost=int(v.get("kdf_time_cost", cfg.vault.kdf_time_cost)),
            kdf_memory_kib=int(v.get("kdf_memory_kib", cfg.vault.kdf_memory_kib)),
            kdf_parallelism=int(v.get("kdf_parallelism", cfg.vault.kdf_parallelism)),
        )

    if "logging" in data:
        lg = data["logging"]
        cfg.logging = LoggingCfg(
            level=str(lg.get("level", cfg.logging.level)),
            file=lg.get("file", cfg.logging.file),
        )

    return cfg


def _validate(cfg: SanctumConfig) -> None:
    if cfg.generation.engine not in _ENGINES:
        raise ConfigError(
            f"generation.engine must be one of {', '.join(sorted(_ENGINES))}, "
            f"got '{cfg.generation.engine}'."
        )
    if not 0.0 < cfg.models.ram_safety_margin < 1.0:
        raise ConfigError("models.ram_safety_margin must be between 0 and 1 (exclusive).")
    if cfg.retrieval.top_k < 1:
        raise ConfigError("retrieval.top_k must be >= 1.")
    if cfg.retrieval.mode not in _RETRIEVAL_MODES:
        raise ConfigError(
            f"retrieval.mode must be one of {', '.join(sorted(_RETRIEVAL_MODES))}, "
            f"got '{cfg.retrieval.mode}'."
        )


def _apply_env_overrides(cfg: SanctumConfig) -> SanctumConfig:
    """Apply SANCTUM_* environment variable overrides."""
    if data_dir := os.environ.get("SANCTUM_DATA_DIR"):
        cfg.storage.data_dir = Path(data_dir).expanduser()
    if model := os.environ.get("SANCTUM_MODEL"):
        cfg.models.selected = model
    if model := os.environ.get("SANCTUM_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if level := os.environ.get("SANCTUM_LOG_LEVEL"):
        cfg.logging.level = level
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> SanctumConfig:
    """Load and return a merged *SanctumConfig*.

    Args:
        project_dir: Directory to search for *sanctum.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If a config file contains password-like fields or an
            invalid value.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        merged = _deep_merge(merged, _read_layer(global_path))

    local_path = search_dir / _LOCAL_CONFIG_NAME
    if local_path.exists():
        merged = _deep_merge(merged, _read_layer(local_path))

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.sanctum/config.yaml`` with defaults if it does not exist.

    Creates the parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# Sanctum global configuration.\n"
            "# Never put your vault password here; Sanctum always asks for it.\n"
            "\n"
            "models:\n"
            "  ram_safety_margin: 0.75\n"
            "\n"
            "embedding:\n"
            "  model: ollama/nomic-embed-text\n"
            "\n"
            "generation:\n"
            "  engine: llama_cpp\n"
            "  max_tokens: 1024\n"
            "\n"
            "retrieval:\n"
            "  top_k: 5\n"
            "  mode: hybrid\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
