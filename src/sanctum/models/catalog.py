"""Static model catalog (Qwen2.5 Instruct GGUF builds).

The built-in list can be replaced with a YAML file (``models.catalog_file``)
holding a ``models:`` list with the same keys as ``ModelDescriptor``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

GIB = 1024**3


@dataclass(frozen=True)
class ModelDescriptor:
    name: str
    file_name: str
    download_url: str
    size_bytes: int
    min_ram_bytes: int
    quality_tier: int
    layer_count: int = 40
    context_length: int = 32_768
    sha256: str | None = None


def _hf(repo: str, file_name: str) -> str:
    return f"https://huggingface.co/Qwen/{repo}/resolve/main/{file_name}"


CATALOG: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        name="qwen2.5-1.5b",
        file_name="qwen2.5-1.5b-instruct-q4_k_m.gguf",
        download_url=_hf("Qwen2.5-1.5B-Instruct-GGUF", "qwen2.5-1.5b-instruct-q4_k_m.gguf"),
        size_bytes=1_117_320_736,
        min_ram_bytes=4 * GIB,
        quality_tier=1,
        layer_count=28,
    ),
    ModelDescriptor(
        name="qwen2.5-3b",
        file_name="qwen2.5-3b-instruct-q4_k_m.gguf",
        download_url=_hf("Qwen2.5-3B-Instruct-GGUF", "qwen2.5-3b-instruct-q4_k_m.gguf"),
        size_bytes=2_104_932_768,
        min_ram_bytes=6 * GIB,
        quality_tier=2,
        layer_count=36,
    ),
    ModelDescriptor(
        name="qwen2.5-7b",
        file_name="qwen2.5-7b-instruct-q3_k_m.gguf",
        download_url=_hf("Qwen2.5-7B-Instruct-GGUF", "qwen2.5-7b-instruct-q3_k_m.gguf"),
        size_bytes=3_808_391_072,
        min_ram_bytes=8 * GIB,
        quality_tier=3,
        layer_count=28,
    ),
    ModelDescriptor(
        name="qwen2.5-14b",
        file_name="qwen2.5-14b-instruct-q4_k_m.gguf",
        download_url=_hf("Qwen2.5-14B-Instruct-GGUF", "qwen2.5-14b-instruct-q4_k_m.gguf"),
        size_bytes=8_988_110_976,
        min_ram_bytes=16 * GIB,
        quality_tier=4,
        layer_count=48,
    ),
    ModelDescriptor(
        name="qwen2.5-32b",
        file_name="qwen2.5-32b-instruct-q4_k_m.gguf",
        download_url=_hf("Qwen2.5-32B-Instruct-GGUF", "qwen2.5-32b-instruct-q4_k_m.gguf"),
        size_bytes=19_851_336_256,
        min_ram_bytes=32 * GIB,
        quality_tier=5,
        layer_count=64,
    ),
)


def load_catalog(path: Path | None = None) -> tuple[ModelDescriptor, ...]:
    """Return the catalog from *path*, or the built-in one when *path* is None.

    Raises:
        ValueError: If the file is malformed or an entry misses a required key.
    """
    if path is None:
        return CATALOG

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    entries = raw.get("models") if isinstance(raw, dict) else None
    if not isinstance(entries, list) or not entries:
        raise ValueError(f"Model catalog '{path}' must contain a non-empty 'models:' list.")

    descriptors: list[ModelDescriptor] = []
    for i, entry in enumerate(entries):
        try:
            descriptors.append(
                ModelDescriptor(
                    name=str(entry["name"]),
                    file_name=str(entry["file_name"]),
                    download_url=str(entry["download_url"]),
                    size_bytes=int(entry["size_bytes"]),
                    min_ram_bytes=int(entry["min_ram_bytes"]),
                    quality_tier=int(entry["quality_tier"]),
                    layer_count=int(entry.get("layer_count", 40)),
                    context_length=int(entry.get("context_length", 32_768)),
                    sha256=entry.get("sha256"),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Model catalog '{path}' entry #{i} is invalid: {exc}") from exc
    return tuple(descriptors)
