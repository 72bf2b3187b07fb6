"""Tests for the ingestion pipeline: parse, chunk, embed, store, index."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from conftest import PASSWORD, FakeEmbedder, FakeParser
from sanctum.errors import IngestionFailed, UnsupportedFileType, VaultLocked
from sanctum.index import KeywordIndex
from sanctum.ingest import IngestionPipeline, TextChunker

LONG_TEXT = " ".join(f"sentence{i} about leases and rent." for i in range(200))


@pytest.fixture
def pipeline(repo, index, embedder):
    return IngestionPipeline(repo, index, embedder, parser=FakeParser())


def _nothing_stored(repo, index):
    return repo.counts()["documents"] == 0 and repo.counts()["chunks"] == 0 and len(index) == 0


def test_ingest_stores_document_chunks_and_index(pipeline, repo, index, write_doc):
    path = write_doc("lease.txt", LONG_TEXT)
    document = pipeline.ingest(path)

    assert document.id is not None
    assert document.file_type == "txt"
    assert document.chunk_count > 1
    stored = repo.get_document(document.id)
    assert stored.chunk_count == document.chunk_count
    assert stored.size_bytes == path.stat().st_size
    assert repo.get_document_text(document.id) == LONG_TEXT
    assert len(index) == document.chunk_count
    assert set(repo.chunk_ids_for_document(document.id)) == {
        cid for cid, _ in index.query(FakeEmbedder().embed("leases rent"), k=100)
    }


def test_chunk_ordinals_are_sequential(pipeline, repo, write_doc):
    document = pipeline.ingest(write_doc("lease.txt", LONG_TEXT))
    assert [c.ordinal for c in repo.list_chunks(document.id)] == list(
        range(document.chunk_count)
    )


def test_progress_stages(pipeline, write_doc):
    events = []
    pipeline.ingest(write_doc("a.txt", "short note"), on_progress=events.append)
    stages = [e.stage for e in events]
    assert stages[0] == "parsing"
    assert stages[-1] == "complete"
    assert "chunking" in stages and "embedding" in stages and "storing" in stages
    assert all(e.file_name == "a.txt" for e in events)


def test_unsupported_type_rejected_before_parsing(repo, index, embedder, write_doc):
    parser = FakeParser()
    pipeline = IngestionPipeline(repo, index, embedder, parser=parser)
    with patch.object(parser, "extract_text") as extract:
        with pytest.raises(UnsupportedFileType):
            pipeline.ingest(write_doc("sheet.xlsx", "a,b"))
    extract.assert_not_called()


def test_missing_file(pipeline, tmp_path):
    with pytest.raises(IngestionFailed, match="not found"):
        pipeline.ingest(tmp_path / "nope.txt")


def test_parser_failure_stores_nothing(repo, index, embedder, write_doc):
    pipeline = IngestionPipeline(repo, index, embedder, parser=FakeParser(fail=True))
    with pytest.raises(IngestionFailed, match="corrupt file"):
        pipeline.ingest(write_doc("a.txt", "text"))
    assert _nothing_stored(repo, index)


def test_empty_document_rejected(pipeline, repo, index, write_doc):
    with pytest.raises(IngestionFailed, match="No text found"):
        pipeline.ingest(write_doc("blank.txt", "   \n "))
    assert _nothing_stored(repo, index)


def test_embedding_failure_stores_nothing(repo, index, write_doc):
    pipeline = IngestionPipeline(repo, index, FakeEmbedder(fail=True), parser=FakeParser())
    with pytest.raises(IngestionFailed, match="Embedding failed on chunk 1/"):
        pipeline.ingest(write_doc("a.txt", LONG_TEXT))
    assert _nothing_stored(repo, index)


def test_dimension_change_rejected(repo, index, write_doc):
    IngestionPipeline(repo, index, FakeEmbedder(dimension=32), parser=FakeParser()).ingest(
        write_doc("a.txt", "first document")
    )
    other = IngestionPipeline(repo, index, FakeEmbedder(dimension=16), parser=FakeParser())
    with pytest.raises(IngestionFailed, match="does not fit the index"):
        other.ingest(write_doc("b.txt", "second document"))
    assert repo.counts()["documents"] == 1


def test_index_failure_undoes_storage(pipeline, repo, index, write_doc):
    with patch.object(index, "insert", side_effect=[None, ValueError("index full")]):
        with pytest.raises(IngestionFailed, match="Could not index"):
            pipeline.ingest(write_doc("a.txt", LONG_TEXT))
    assert repo.counts()["documents"] == 0
    assert repo.counts()["chunks"] == 0


def test_locked_vault_blocks_ingest(pipeline, vault, write_doc):
    vault.setup(PASSWORD)
    vault.lock()
    with pytest.raises(VaultLocked):
        pipeline.ingest(write_doc("a.txt", "text"))


def test_custom_chunker(repo, index, embedder, write_doc):
    pipeline = IngestionPipeline(
        repo, index, embedder, parser=FakeParser(), chunker=TextChunker(chunk_size=1000)
    )
    assert pipeline.ingest(write_doc("a.txt", LONG_TEXT[:2000])).chunk_count == 1


# ------------------------------------------------------------------
# Delete
# ------------------------------------------------------------------

def test_delete_document_removes_index_entries(pipeline, repo, index, write_doc):
    keep = pipeline.ingest(write_doc("keep.txt", "keep this one"))
    drop = pipeline.ingest(write_doc("drop.txt", LONG_TEXT))
    assert pipeline.delete_document(drop.id) is True
    assert repo.get_document(drop.id) is None
    assert len(index) == keep.chunk_count
    assert all(cid in index for cid in repo.chunk_ids_for_document(keep.id))


def test_delete_missing_document(pipeline):
    assert pipeline.delete_document(404) is False


# ------------------------------------------------------------------
# Keyword index
# ------------------------------------------------------------------

@pytest.fixture
def keywords():
    index = KeywordIndex()
    yield index
    index.close()


def test_keyword_index_follows_ingest_and_delete(repo, index, embedder, keywords, write_doc):
    pipeline = IngestionPipeline(repo, index, embedder, parser=FakeParser(), keywords=keywords)
    document = pipeline.ingest(write_doc("lease.txt", LONG_TEXT))
    assert len(keywords) == document.chunk_count
    assert keywords.query("sentence7", k=1)[0][0] in repo.chunk_ids_for_document(document.id)

    pipeline.delete_document(document.id)
    assert len(keywords) == 0


def test_index_failure_undoes_keyword_entries(repo, index, embedder, keywords, write_doc):
    pipeline = IngestionPipeline(repo, index, embedder, parser=FakeParser(), keywords=keywords)
    with patch.object(index, "insert", side_effect=[None, None, ValueError("index full")]):
        with pytest.raises(IngestionFailed, match="Could not index"):
            pipeline.ingest(write_doc("a.txt", LONG_TEXT))
    assert len(keywords) == 0
    assert len(index) == 0
    assert repo.counts()["chunks"] == 0
