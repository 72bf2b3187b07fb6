"""Ingestion: parse → chunk → embed → persist → index."""

from sanctum.ingest.chunker import TextChunker
from sanctum.ingest.parsers import (
    SUPPORTED_TYPES,
    DefaultDocumentParser,
    OcrProgress,
    detect_file_type,
)
from sanctum.ingest.pipeline import IngestionPipeline, IngestProgress

__all__ = [
    "DefaultDocumentParser",
    "IngestProgress",
    "IngestionPipeline",
    "OcrProgress",
    "SUPPORTED_TYPES",
    "TextChunker",
    "detect_file_type",
]
