"""Tests for sanctum ask."""

from __future__ import annotations

from typer.testing import CliRunner

from conftest import PASSWORD
from sanctum.cli.common import PASSWORD_ENV
from sanctum.cli.main import app

runner = CliRunner()

LEASE = "The rent is due on the first day of each month."


def _ingest(cli_store, write_doc) -> None:
    with cli_store.open() as orch:
        orch.ingest(write_doc("lease.txt", LEASE))


def _messages(cli_store, conversation_id: int):
    with cli_store.open() as orch:
        return orch.repo.list_messages(conversation_id)


# ------------------------------------------------------------------
# Answers
# ------------------------------------------------------------------


def test_ask_streams_answer(cli_store, write_doc):
    _ingest(cli_store, write_doc)
    result = runner.invoke(app, ["ask", "When is the rent due?"])
    assert result.exit_code == 0, result.output
    assert "Paris is the capital." in result.output
    assert "Conversation 1" in result.output


def test_ask_lists_cited_sources(cli_store, write_doc):
    _ingest(cli_store, write_doc)
    cli_store.engine.tokens = ["On the first day", " [1]."]
    result = runner.invoke(app, ["ask", "When is the rent due?"])
    assert result.exit_code == 0
    assert "Sources" in result.output
    assert "[1] lease.txt, chunk 1" in result.output


def test_ask_no_sources_flag(cli_store, write_doc):
    _ingest(cli_store, write_doc)
    cli_store.engine.tokens = ["On the first day", " [1]."]
    result = runner.invoke(app, ["ask", "When is the rent due?", "--no-sources"])
    assert result.exit_code == 0
    assert "Sources" not in result.output


def test_ask_without_documents_warns_chat_only(cli_store):
    result = runner.invoke(app, ["ask", "What is the capital of France?"])
    assert result.exit_code == 0
    assert "No documents yet" in result.output
    assert "Paris is the capital." in result.output


def test_ask_persists_exchange(cli_store):
    runner.invoke(app, ["ask", "What is the capital of France?"])
    messages = _messages(cli_store, 1)
    assert [m.role for m in messages] == ["user", "assistant"]
    assert messages[1].content == "Paris is the capital."


# ------------------------------------------------------------------
# Conversations
# ------------------------------------------------------------------


def test_ask_continues_conversation(cli_store):
    runner.invoke(app, ["ask", "What is the capital of France?"])
    result = runner.invoke(app, ["ask", "And of Spain?", "-c", "1"])
    assert result.exit_code == 0
    assert len(_messages(cli_store, 1)) == 4
    # history from the first exchange reaches the prompt
    assert "What is the capital of France?" in cli_store.engine.prompts[-1]


def test_ask_unknown_conversation(cli_store):
    result = runner.invoke(app, ["ask", "Hello?", "--conversation", "42"])
    assert result.exit_code == 1
    assert "Conversation not found" in result.output


def test_ask_blank_question_fails(cli_store):
    result = runner.invoke(app, ["ask", "   "])
    assert result.exit_code == 1
    assert "Error:" in result.output


# ------------------------------------------------------------------
# Failures and locking
# ------------------------------------------------------------------


def test_ask_generation_error_exits_one(cli_store):
    cli_store.engine.error = RuntimeError("model crashed")
    result = runner.invoke(app, ["ask", "What is the capital of France?"])
    assert result.exit_code == 1
    assert "Generation failed" in result.output


def test_ask_generation_error_not_persisted(cli_store):
    cli_store.engine.error = RuntimeError("model crashed")
    runner.invoke(app, ["ask", "What is the capital of France?"])
    with cli_store.open() as orch:
        assert orch.repo.counts()["messages"] == 0


def test_ask_retrieval_failure(cli_store, write_doc, embedder):
    _ingest(cli_store, write_doc)
    embedder.fail = True
    result = runner.invoke(app, ["ask", "When is the rent due?"])
    assert result.exit_code == 1
    assert "Retrieval failed" in result.output


def test_ask_unlocks_locked_vault(cli_store, write_doc, monkeypatch):
    with cli_store.open() as orch:
        orch.setup_vault(PASSWORD)
        orch.ingest(write_doc("lease.txt", LEASE))
    monkeypatch.setenv(PASSWORD_ENV, PASSWORD)
    cli_store.engine.tokens = ["On the first day", " [1]."]
    result = runner.invoke(app, ["ask", "When is the rent due?"])
    assert result.exit_code == 0, result.output
    assert "lease.txt" in result.output


def test_ask_unlocks_with_biometric(cli_store, monkeypatch):
    with cli_store.open() as orch:
        orch.setup_vault(PASSWORD, enable_biometric=True)
    monkeypatch.delenv(PASSWORD_ENV, raising=False)
    result = runner.invoke(app, ["ask", "What is the capital of France?"])
    assert result.exit_code == 0, result.output
    assert cli_store.biometric.prompts
