"""Document parsers: raw text out of PDF, DOCX, text and image files.

Source dispatch by extension:
  .pdf               → pypdf text layer; OCR of embedded page images when a
                       PDF has no text layer (scans)
  .docx              → python-docx paragraphs and table cells
  .txt .md .markdown → UTF-8 text
  .png .jpg .jpeg    → Tesseract OCR (pytesseract + Pillow)

OCR paths report OcrProgress events: start → extracting → recognizing → complete.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import docx
import pytesseract
from PIL import Image
from pypdf import PdfReader

from sanctum.errors import IngestionFailed, UnsupportedFileType

logger = logging.getLogger(__name__)

SUPPORTED_TYPES: dict[str, str] = {
    ".pdf": "pdf",
    ".docx": "docx",
    ".txt": "txt",
    ".md": "md",
    ".markdown": "md",
    ".png": "image",
    ".jpg": "image",
    ".jpeg": "image",
}

OCR_STAGES = ("start", "extracting", "recognizing", "complete")


@dataclass(frozen=True)
class OcrProgress:
    stage: str
    message: str
    percent: float


OcrCallback = Callable[[OcrProgress], None]


class DocumentParser(Protocol):
    def extract_text(self, path: Path, on_progress: OcrCallback | None = None) -> str: ...


def detect_file_type(path: Path) -> str:
    """Map *path* to a file type, rejecting anything unsupported.

    Raises:
        UnsupportedFileType: For extensions outside ``SUPPORTED_TYPES``.
    """
    file_type = SUPPORTED_TYPES.get(path.suffix.lower())
    if file_type is None:
        raise UnsupportedFileType(f"Unsupported file type: '{path.suffix or path.name}'")
    return file_type


class DefaultDocumentParser:
    """Parser backed by pypdf, python-docx and Tesseract.

    Args:
        ocr_language: Tesseract language code(s), e.g. ``"eng"`` or ``"eng+deu"``.
    """

    def __init__(self, ocr_language: str = "eng") -> None:
        self.ocr_language = ocr_language

    def extract_text(self, path: Path, on_progress: OcrCallback | None = None) -> str:
        file_type = detect_file_type(path)
        if file_type == "pdf":
            return self._pdf(path, on_progress)
        if file_type == "docx":
            return self._docx(path)
        if file_type == "image":
            return self._image(path, on_progress)
        return path.read_text(encoding="utf-8", errors="replace")

    # ------------------------------------------------------------------
    # Formats
    # ------------------------------------------------------------------

    def _pdf(self, path: Path, on_progress: OcrCallback | None) -> str:
        reader = PdfReader(str(path))
        pages = [(page.extract_text() or "").strip() for page in reader.pages]
        text = "\n\n".join(p for p in pages if p)
        if text.strip():
            return text

        logger.info("%s has no text layer; running OCR", path.name)
        emit = on_progress or _ignore
        emit(OcrProgress("start", f"Scanning {path.name}", 0.0))
        images: list[Image.Image] = []
        total_pages = max(1, len(reader.pages))
        for i, page in enumerate(reader.pages):
            percent = 25.0 * (i + 1) / total_pages
            emit(OcrProgress("extracting", f"Extracting images from page {i + 1}", percent))
            images.extend(img.image for img in page.images if img.image is not None)
        return self._recognize(images, path.name, emit)

    @staticmethod
    def _docx(path: Path) -> str:
        document = docx.Document(str(path))
        parts = [p.text for p in document.paragraphs if p.text.strip()]
        for table in document.tables:
            for row in table.rows:
                cells = [c.text.strip() for c in row.cells if c.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))
        return "\n".join(parts)

    def _image(self, path: Path, on_progress: OcrCallback | None) -> str:
        emit = on_progress or _ignore
        emit(OcrProgress("start", f"Scanning {path.name}", 0.0))
        emit(OcrProgress("extracting", "Loading image", 25.0))
        with Image.open(path) as img:
            img.load()
            return self._recognize([img], path.name, emit)

    def _recognize(self, images: list[Image.Image], name: str, emit: OcrCallback) -> str:
        if not images:
            emit(OcrProgress("complete", "No images found to recognise", 100.0))
            return ""
        texts: list[str] = []
        for i, img in enumerate(images):
            emit(
                OcrProgress(
                    "recognizing",
                    f"Recognising text ({i + 1}/{len(images)})",
                    25.0 + 75.0 * i / len(images),
                )
            )
            try:
                texts.append(pytesseract.image_to_string(img, lang=self.ocr_language).strip())
            except pytesseract.TesseractNotFoundError as exc:
                raise IngestionFailed(
                    "Tesseract OCR is not installed",
                    suggestion="Install Tesseract (e.g. 'brew install tesseract' or "
                    "'apt install tesseract-ocr') to read scans and images.",
                ) from exc
        emit(OcrProgress("complete", f"Recognised {len(images)} image(s) from {name}", 100.0))
        return "\n\n".join(t for t in texts if t)


def _ignore(_: OcrProgress) -> None:
    return None
