"""Hardware profiler and execution-parameter rules.

``detect()`` inspects the machine once per process and caches the result; it
never raises. ``execution_parameters()`` turns a profile plus a model
descriptor into the knobs handed to the inference engine.
"""

from __future__ import annotations

import functools
import logging
import platform
import subprocess
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import psutil

from sanctum.errors import HardwareDetectionDegraded

if TYPE_CHECKING:
    from sanctum.models.catalog import ModelDescriptor

logger = logging.getLogger(__name__)

GIB = 1024**3

GPU_VENDORS = ("none", "apple", "nvidia", "amd", "intel")

# Fallback when psutil cannot report memory at all.
_CONSERVATIVE_RAM = 4 * GIB

_DRM_VENDOR_IDS = {"0x1002": "amd", "0x8086": "intel", "0x10de": "nvidia"}

# (min RAM in GiB, offload fraction); first match wins.
_APPLE_OFFLOAD = ((64, 1.00), (32, 0.95), (16, 0.90), (8, 0.65))
_DISCRETE_OFFLOAD = ((64, 1.00), (32, 0.90), (16, 0.85), (8, 0.60), (0, 0.40))

# (max RAM in GiB exclusive, context window)
_CONTEXT_TIERS = ((8, 2_048), (16, 4_096), (32, 8_192))
_MAX_CONTEXT = 16_384

# VRAM needed per byte of weights (KV cache + scratch buffers).
_VRAM_OVERHEAD = 1.2


@dataclass(frozen=True)
class HardwareProfile:
    core_count: int
    total_ram_bytes: int
    gpu_vendor: str = "none"
    gpu_vram_bytes: int | None = None
    degraded: bool = False

    @property
    def total_ram_gb(self) -> float:
        return self.total_ram_bytes / GIB


@dataclass(frozen=True)
class ExecutionParameters:
    gpu_layers: int
    context_window: int
    thread_count: int


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


@functools.cache
def detect() -> HardwareProfile:
    """Return the cached hardware profile for this process."""
    problems: list[str] = []

    try:
        cores = psutil.cpu_count(logical=False) or psutil.cpu_count() or 1
    except Exception as exc:  # psutil raises platform-specific errors
        problems.append(f"cpu count: {exc}")
        cores = 1

    try:
        ram = int(psutil.virtual_memory().total)
    except Exception as exc:
        problems.append(f"memory: {exc}")
        ram = _CONSERVATIVE_RAM

    try:
        vendor, vram = _detect_gpu()
    except Exception as exc:
        problems.append(f"gpu: {exc}")
        vendor, vram = "none", None

    if problems:
        message = "Hardware detection degraded (" + "; ".join(problems) + ")"
        logger.warning(message)
        warnings.warn(message, HardwareDetectionDegraded, stacklevel=2)

    profile = HardwareProfile(
        core_count=int(cores),
        total_ram_bytes=ram,
        gpu_vendor=vendor,
        gpu_vram_bytes=vram,
        degraded=bool(problems),
    )
    logger.info("Hardware profile: %s", profile)
    return profile


def _detect_gpu() -> tuple[str, int | None]:
    system = platform.system()
    if system == "Darwin":
        if platform.machine() == "arm64":
            return "apple", None  # unified memory
        return "none", None

    vram = _nvidia_vram()
    if vram is not None:
        return "nvidia", vram

    if system == "Linux":
        return _linux_drm_gpu()
    return "none", None


def _nvidia_vram() -> int | None:
    try:
        result = subprocess.run(
            ["nvidia-smi", "--query-gpu=memory.total", "--format=csv,noheader,nounits"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    if result.returncode != 0:
        return None
    lines = [ln.strip() for ln in result.stdout.splitlines() if ln.strip()]
    if not lines:
        return None
    # MiB, first GPU
    return int(float(lines[0])) * 1024 * 1024


def _linux_drm_gpu(drm_root: Path = Path("/sys/class/drm")) -> tuple[str, int | None]:
    """Identify the first non-NVIDIA GPU from DRM sysfs vendor ids."""
    if not drm_root.is_dir():
        return "none", None
    for card in sorted(drm_root.glob("card[0-9]")):
        vendor_file = card / "device" / "vendor"
        if not vendor_file.exists():
            continue
        vendor = _DRM_VENDOR_IDS.get(vendor_file.read_text().strip().lower())
        if vendor is None:
            continue
        vram_file = card / "device" / "mem_info_vram_total"
        vram = int(vram_file.read_text().strip()) if vram_file.exists() else None
        return vendor, vram
    return "none", None


# ---------------------------------------------------------------------------
# Execution parameters
# ---------------------------------------------------------------------------


def _ram_tier_fraction(profile: HardwareProfile) -> float:
    if profile.gpu_vendor == "none":
        return 0.0
    ram_gb = profile.total_ram_gb
    table = _APPLE_OFFLOAD if profile.gpu_vendor == "apple" else _DISCRETE_OFFLOAD
    for min_gb, fraction in table:
        if ram_gb >= min_gb:
            return fraction
    return 0.0


def offload_fraction(profile: HardwareProfile, model_size_bytes: int) -> float:
    """Fraction of model layers to place on the GPU (0.0–1.0)."""
    fraction = _ram_tier_fraction(profile)
    if profile.gpu_vendor not in ("none", "apple") and profile.gpu_vram_bytes and model_size_bytes:
        vram_fraction = min(1.0, profile.gpu_vram_bytes / (model_size_bytes * _VRAM_OVERHEAD))
        fraction = max(fraction, vram_fraction)
    return fraction


def execution_parameters(
    profile: HardwareProfile, descriptor: ModelDescriptor
) -> ExecutionParameters:
    """Derive engine parameters for *descriptor* on *profile*.

    More RAM or VRAM never yields fewer GPU layers or a smaller context window;
    GPU layers never exceed the model's layer count.
    """
    fraction = offload_fraction(profile, descriptor.size_bytes)
    gpu_layers = min(descriptor.layer_count, int(fraction * descriptor.layer_count))

    context = _MAX_CONTEXT
    for max_gb, window in _CONTEXT_TIERS:
        if profile.total_ram_gb < max_gb:
            context = window
            break
    context = min(context, descriptor.context_length)

    cores = max(1, profile.core_count)
    threads = cores - 1 if cores > 2 else cores

    return ExecutionParameters(gpu_layers=gpu_layers, context_window=context, thread_count=threads)
