"""Tests for document parsers and file-type detection."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import docx
import pytesseract
import pytest
from PIL import Image
from pypdf import PdfWriter

from sanctum.errors import IngestionFailed, UnsupportedFileType
from sanctum.ingest.parsers import DefaultDocumentParser, detect_file_type


@pytest.fixture
def parser():
    return DefaultDocumentParser()


def _recorder():
    events = []
    return events, events.append


# ------------------------------------------------------------------
# Detection
# ------------------------------------------------------------------

@pytest.mark.parametrize(
    "name,expected",
    [
        ("a.pdf", "pdf"),
        ("a.DOCX", "docx"),
        ("a.txt", "txt"),
        ("a.markdown", "md"),
        ("scan.JPEG", "image"),
        ("scan.png", "image"),
    ],
)
def test_detect_file_type(name, expected):
    assert detect_file_type(Path(name)) == expected


@pytest.mark.parametrize("name", ["a.xlsx", "a.html", "Makefile"])
def test_detect_rejects_unsupported(name):
    with pytest.raises(UnsupportedFileType):
        detect_file_type(Path(name))


# ------------------------------------------------------------------
# Formats
# ------------------------------------------------------------------

def test_plain_text(parser, tmp_path):
    path = tmp_path / "notes.md"
    path.write_text("# Title\n\nBody text", encoding="utf-8")
    assert parser.extract_text(path) == "# Title\n\nBody text"


def test_docx_paragraphs_and_tables(parser, tmp_path):
    document = docx.Document()
    document.add_paragraph("Lease agreement")
    document.add_paragraph("   ")
    table = document.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Rent"
    table.rows[0].cells[1].text = "1200"
    path = tmp_path / "lease.docx"
    document.save(str(path))

    assert parser.extract_text(path) == "Lease agreement\nRent | 1200"


def test_pdf_text_layer(parser, tmp_path):
    pages = [MagicMock(), MagicMock(), MagicMock()]
    pages[0].extract_text.return_value = "Page one"
    pages[1].extract_text.return_value = None
    pages[2].extract_text.return_value = " Page three "
    with patch("sanctum.ingest.parsers.PdfReader") as reader:
        reader.return_value.pages = pages
        text = parser.extract_text(tmp_path / "doc.pdf")
    assert text == "Page one\n\nPage three"


def test_pdf_without_text_layer_falls_back_to_ocr(parser, tmp_path):
    writer = PdfWriter()
    writer.add_blank_page(width=72, height=72)
    path = tmp_path / "scan.pdf"
    with path.open("wb") as fh:
        writer.write(fh)

    events, record = _recorder()
    assert parser.extract_text(path, record) == ""
    assert [e.stage for e in events] == ["start", "extracting", "complete"]


def test_image_ocr(parser, tmp_path):
    path = tmp_path / "receipt.png"
    Image.new("RGB", (20, 20), "white").save(path)
    events, record = _recorder()
    with patch(
        "sanctum.ingest.parsers.pytesseract.image_to_string", return_value=" Total: 42 \n"
    ) as ocr:
        text = parser.extract_text(path, record)
    assert text == "Total: 42"
    assert ocr.call_args.kwargs["lang"] == "eng"
    assert [e.stage for e in events] == ["start", "extracting", "recognizing", "complete"]
    assert events[-1].percent == 100.0


def test_image_without_tesseract(parser, tmp_path):
    path = tmp_path / "photo.jpg"
    Image.new("RGB", (20, 20), "white").save(path)
    with patch(
        "sanctum.ingest.parsers.pytesseract.image_to_string",
        side_effect=pytesseract.TesseractNotFoundError(),
    ):
        with pytest.raises(IngestionFailed, match="Tesseract"):
            parser.extract_text(path)


def test_ocr_language_is_configurable(tmp_path):
    path = tmp_path / "scan.png"
    Image.new("RGB", (20, 20), "white").save(path)
    with patch(
        "sanctum.ingest.parsers.pytesseract.image_to_string", return_value="Hallo"
    ) as ocr:
        DefaultDocumentParser(ocr_language="deu").extract_text(path)
    assert ocr.call_args.kwargs["lang"] == "deu"
