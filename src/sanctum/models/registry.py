"""Model registry: recommendation, local presence and cache housekeeping."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from sanctum.errors import ModelNotFound
from sanctum.hardware import HardwareProfile
from sanctum.models.catalog import CATALOG, ModelDescriptor

logger = logging.getLogger(__name__)

GIB = 1024**3

DEFAULT_SAFETY_MARGIN = 0.75

# Free disk required on top of the model file itself.
_DISK_HEADROOM = 5 * GIB


@dataclass(frozen=True)
class Compatibility:
    """How well a model suits a machine (``recommended`` > ``compatible`` > ``limited``)."""

    level: str  # recommended | compatible | limited | incompatible
    reason: str


class ModelRegistry:
    """Catalog lookups plus the on-disk model cache.

    Args:
        cache_dir: Directory holding downloaded model files.
        catalog: Model descriptors; defaults to the built-in catalog.
    """

    def __init__(self, cache_dir: Path, catalog: Iterable[ModelDescriptor] = CATALOG) -> None:
        self.cache_dir = Path(cache_dir)
        self.catalog = tuple(catalog)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, name: str) -> ModelDescriptor:
        """Return the descriptor called *name*.

        Raises:
            ModelNotFound: If no catalog entry has that name.
        """
        for descriptor in self.catalog:
            if descriptor.name == name:
                return descriptor
        raise ModelNotFound(
            f"Unknown model '{name}'",
            suggestion="Run:  sanctum models list  to see available models.",
        )

    resolve = get
    get_descriptor = get

    def recommend(
        self, profile: HardwareProfile, safety_margin: float = DEFAULT_SAFETY_MARGIN
    ) -> ModelDescriptor:
        """Pick the best model that fits in ``total_ram × safety_margin``.

        Highest quality tier wins; equal tiers prefer the smaller file. When
        nothing fits, the smallest model is returned so the user can still try.
        """
        if not 0.0 < safety_margin < 1.0:
            raise ValueError("safety_margin must be between 0 and 1 (exclusive)")
        if not self.catalog:
            raise ModelNotFound("The model catalog is empty")

        budget = profile.total_ram_bytes * safety_margin
        fitting = [d for d in self.catalog if d.min_ram_bytes <= budget]
        if not fitting:
            smallest = min(self.catalog, key=lambda d: (d.min_ram_bytes, d.size_bytes))
            logger.warning(
                "No model fits %.1f GB RAM; falling back to %s", profile.total_ram_gb, smallest.name
            )
            return smallest
        return max(fitting, key=lambda d: (d.quality_tier, -d.size_bytes))

    def compatibility(
        self,
        profile: HardwareProfile,
        descriptor: ModelDescriptor,
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
    ) -> Compatibility:
        """Rate *descriptor* against *profile* and the cache disk's free space."""
        ram = profile.total_ram_bytes
        if ram < descriptor.min_ram_bytes:
            return Compatibility(
                "incompatible",
                f"needs {descriptor.min_ram_bytes / GIB:.0f} GB RAM, have {ram / GIB:.1f} GB",
            )
        if not self.is_present(descriptor):
            free = _free_disk(self.cache_dir)
            if free is not None and free < descriptor.size_bytes + _DISK_HEADROOM:
                return Compatibility(
                    "incompatible",
                    f"needs {(descriptor.size_bytes + _DISK_HEADROOM) / GIB:.1f} GB free disk",
                )
        if descriptor == self.recommend(profile, safety_margin):
            return Compatibility("recommended", "best quality for this machine")
        if descriptor.min_ram_bytes <= ram * safety_margin:
            return Compatibility("compatible", "fits with headroom")
        return Compatibility("limited", "fits, but may be slow under memory pressure")

    # ------------------------------------------------------------------
    # Local cache
    # ------------------------------------------------------------------

    def path_for(self, descriptor: ModelDescriptor) -> Path:
        return self.cache_dir / descriptor.file_name

    def partial_path_for(self, descriptor: ModelDescriptor) -> Path:
        return self.cache_dir / f"{descriptor.file_name}.part"

    def is_present(self, descriptor: ModelDescriptor) -> bool:
        """True if the model file exists with exactly the catalog size."""
        path = self.path_for(descriptor)
        try:
            return path.is_file() and path.stat().st_size == descriptor.size_bytes
        except OSError:
            return False

    def list_local(self) -> list[ModelDescriptor]:
        """Return catalog models fully present in the cache directory."""
        if not self.cache_dir.is_dir():
            return []
        return [d for d in self.catalog if self.is_present(d)]

    def partial_bytes(self, descriptor: ModelDescriptor) -> int:
        part = self.partial_path_for(descriptor)
        return part.stat().st_size if part.exists() else 0

    def remove_local(self, descriptor: ModelDescriptor) -> bool:
        """Delete the model file and any partial download. Returns True if anything was removed."""
        removed = False
        for path in (self.path_for(descriptor), self.partial_path_for(descriptor)):
            if path.exists():
                path.unlink()
                removed = True
        if removed:
            logger.info("Removed cached model %s", descriptor.name)
        return removed

    def resolve_selected(
        self,
        selected: str | None,
        profile: HardwareProfile,
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
    ) -> ModelDescriptor:
        """Return the configured model, or the recommendation when none is configured."""
        if selected:
            return self.get(selected)
        return self.recommend(profile, safety_margin)

    def require_local(self, descriptor: ModelDescriptor) -> Path:
        """Return the model path, raising ModelNotFound when it is not fully downloaded."""
        if not self.is_present(descriptor):
            raise ModelNotFound(
                f"Model '{descriptor.name}' is not downloaded",
                suggestion=f"Run:  sanctum models download {descriptor.name}",
            )
        return self.path_for(descriptor)


def _free_disk(path: Path) -> int | None:
    existing = path
    while not existing.exists() and existing != existing.parent:
        existing = existing.parent
    try:
        return shutil.disk_usage(existing).free
    except OSError:
        return None
