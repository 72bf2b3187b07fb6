"""Tests for sanctum models (downloads are patched; nothing touches the network)."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from sanctum.cli.main import app
from sanctum.errors import ModelDownloadFailed
from sanctum.models import CATALOG, DownloadProgress, ModelRegistry

# wide enough that table cells are never truncated
runner = CliRunner(env={"COLUMNS": "200"})


@pytest.fixture
def detected(profile):
    with patch("sanctum.cli.models.detect", return_value=profile):
        yield profile


@pytest.fixture
def registry(cli_store) -> ModelRegistry:
    return ModelRegistry(cli_store.config.model_dir, CATALOG)


def _events(name: str, total: int):
    yield DownloadProgress(name, "downloading", total // 2, total)
    yield DownloadProgress(name, "completed", total, total)


# ------------------------------------------------------------------
# list / recommend
# ------------------------------------------------------------------


def test_list_shows_catalog(cli_store, detected):
    with patch("sanctum.models.registry._free_disk", return_value=None):
        result = runner.invoke(app, ["models", "list"])
    assert result.exit_code == 0
    for descriptor in CATALOG:
        assert descriptor.name in result.output
    assert "recommended" in result.output


def test_list_shows_partial_download(cli_store, detected, registry):
    descriptor = registry.get("qwen2.5-1.5b")
    part = registry.partial_path_for(descriptor)
    part.parent.mkdir(parents=True)
    with open(part, "wb") as f:
        f.truncate(descriptor.size_bytes // 2)
    result = runner.invoke(app, ["models", "list"])
    assert "partial 50%" in result.output


def test_recommend(cli_store, detected):
    result = runner.invoke(app, ["models", "recommend"])
    assert result.exit_code == 0
    assert "Recommended: qwen2.5-7b" in result.output
    assert "sanctum models download qwen2.5-7b" in result.output


# ------------------------------------------------------------------
# download
# ------------------------------------------------------------------


def test_download_recommended_by_default(cli_store, detected, registry):
    descriptor = registry.get("qwen2.5-7b")
    with patch(
        "sanctum.cli.models.download", return_value=_events(descriptor.name, descriptor.size_bytes)
    ) as mock_download:
        result = runner.invoke(app, ["models", "download"])
    assert result.exit_code == 0, result.output
    assert "qwen2.5-7b ready at" in result.output
    assert mock_download.call_args.args[0] == descriptor
    assert mock_download.call_args.args[1] == registry.cache_dir


def test_download_named_model(cli_store, detected, registry):
    descriptor = registry.get("qwen2.5-1.5b")
    with patch(
        "sanctum.cli.models.download", return_value=_events(descriptor.name, descriptor.size_bytes)
    ):
        result = runner.invoke(app, ["models", "download", "qwen2.5-1.5b"])
    assert result.exit_code == 0
    assert "qwen2.5-1.5b ready at" in result.output


def test_download_unknown_model(cli_store, detected):
    result = runner.invoke(app, ["models", "download", "llama-9000"])
    assert result.exit_code == 1
    assert "Unknown model" in result.output


def test_download_interrupted_is_resumable(cli_store, detected):
    with patch("sanctum.cli.models.download", side_effect=KeyboardInterrupt):
        result = runner.invoke(app, ["models", "download", "qwen2.5-1.5b"])
    assert result.exit_code == 130
    assert "Download paused" in result.output


def test_download_failure(cli_store, detected):
    error = ModelDownloadFailed("Checksum mismatch for qwen2.5-1.5b")
    with patch("sanctum.cli.models.download", side_effect=error):
        result = runner.invoke(app, ["models", "download", "qwen2.5-1.5b"])
    assert result.exit_code == 1
    assert "Model download failed" in result.output
    assert "Checksum mismatch" in result.output


# ------------------------------------------------------------------
# remove
# ------------------------------------------------------------------


def test_remove_downloaded_model(cli_store, registry):
    descriptor = registry.get("qwen2.5-1.5b")
    path = registry.path_for(descriptor)
    path.parent.mkdir(parents=True)
    path.write_bytes(b"gguf")
    result = runner.invoke(app, ["models", "remove", "qwen2.5-1.5b", "--yes"])
    assert result.exit_code == 0
    assert "Removed qwen2.5-1.5b" in result.output
    assert not path.exists()


def test_remove_not_downloaded(cli_store):
    result = runner.invoke(app, ["models", "remove", "qwen2.5-1.5b", "--yes"])
    assert result.exit_code == 0
    assert "is not downloaded" in result.output


def test_remove_unknown_model(cli_store):
    result = runner.invoke(app, ["models", "remove", "llama-9000", "--yes"])
    assert result.exit_code == 1


def test_remove_declined(cli_store, registry):
    descriptor = registry.get("qwen2.5-1.5b")
    path = registry.path_for(descriptor)
    path.parent.mkdir(parents=True)
    path.write_bytes(b"gguf")
    result = runner.invoke(app, ["models", "remove", "qwen2.5-1.5b"], input="n\n")
    assert result.exit_code == 0
    assert path.exists()
