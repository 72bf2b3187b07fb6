"""Tests for the CLI error formatting helpers."""

from __future__ import annotations

from sanctum.cli.errors import (
    err_conversation_not_found,
    err_output_exists,
    format_error,
    warn_chat_only,
)
from sanctum.errors import ModelNotFound, VaultLocked


def test_format_error_has_category_detail_and_action():
    exc = ModelNotFound(
        "Model 'qwen2.5-7b' is not downloaded",
        suggestion="Run:  sanctum models download qwen2.5-7b",
    )
    text = format_error(exc)
    assert text.startswith("[red]Error:[/] Model not loaded: Model 'qwen2.5-7b'")
    assert text.endswith("\n  Run:  sanctum models download qwen2.5-7b")


def test_format_error_without_detail_shows_category_once():
    text = format_error(VaultLocked())
    assert "Vault locked" in text
    assert text.count("vault locked") == 0


def test_format_error_escapes_markup():
    text = format_error(ModelNotFound("Unknown model '[bold]x'"))
    assert "\\[bold]" in text


def test_conversation_not_found_suggests_list():
    assert "sanctum conversations list" in err_conversation_not_found(3)


def test_output_exists_mentions_yes():
    assert "--yes" in err_output_exists("out.md")


def test_chat_only_warning_suggests_ingest():
    assert "sanctum ingest" in warn_chat_only("No documents yet.")
