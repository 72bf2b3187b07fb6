"""Model catalog, local cache and resumable downloads."""

from sanctum.models.catalog import CATALOG, ModelDescriptor, load_catalog
from sanctum.models.downloader import DownloadProgress, download
from sanctum.models.registry import ModelRegistry

__all__ = [
    "CATALOG",
    "DownloadProgress",
    "ModelDescriptor",
    "ModelRegistry",
    "download",
    "load_catalog",
]
