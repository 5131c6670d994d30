"""Text extraction — thin wrappers around LangChain document loaders and Tesseract."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import pytesseract
from langchain_community.document_loaders import PyPDFLoader, TextLoader
from PIL import Image, ImageFilter, ImageOps

from docrag.exceptions import DocRagError, ExtractionError

logger = logging.getLogger(__name__)

TEXT_MIME_TYPES = frozenset({"text/plain", "text/markdown", "text/x-markdown"})
PDF_MIME_TYPES = frozenset({"application/pdf"})
IMAGE_MIME_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png"})
SUPPORTED_MIME_TYPES = TEXT_MIME_TYPES | PDF_MIME_TYPES | IMAGE_MIME_TYPES

# A text layer shorter than this is treated as a scanned or empty PDF.
MIN_PDF_TEXT_CHARS = 50
LOW_TEXT_PDF_CONFIDENCE = 30.0
MIN_OCR_TEXT_CHARS = 10
OCR_MAX_SIDE = 3000


@dataclass(frozen=True)
class ExtractionResult:
    """Text pulled out of a source file.

    Attributes
    ----------
    text:
        The extracted plain text.
    method:
        How it was obtained: ``"direct"``, ``"native-pdf"``,
        ``"pdf-metadata"`` or ``"ocr"``.
    confidence:
        0-100 estimate of extraction fidelity, when known.
    """

    text: str
    method: str
    confidence: float | None = None


class Extractor(Protocol):
    def extract(self, file_path: str | Path, mime_type: str) -> ExtractionResult: ...


def preprocess_for_ocr(image: Image.Image) -> Image.Image:
    """Scale, grayscale, normalise, sharpen and binarise *image*."""
    image = ImageOps.contain(image, (OCR_MAX_SIDE, OCR_MAX_SIDE))
    image = ImageOps.autocontrast(ImageOps.grayscale(image))
    image = image.filter(ImageFilter.SHARPEN)
    return image.point(lambda px: 255 if px >= 128 else 0)


def mean_confidence(data: dict) -> float:
    """Average word confidence from ``pytesseract.image_to_data`` output.

    Tesseract reports ``-1`` for non-word boxes; those are ignored.
    """
    scores = []
    for conf, word in zip(data.get("conf", []), data.get("text", [])):
        try:
            value = float(conf)
        except (TypeError, ValueError):
            continue
        if value >= 0 and str(word).strip():
            scores.append(value)
    return round(sum(scores) / len(scores), 1) if scores else 0.0


class DocumentExtractor:
    """Extract text from plain-text, Markdown, PDF and image files.

    Images go through Tesseract (``pytesseract``); the ``tesseract``
    binary must be installed on the host.

    Parameters
    ----------
    ocr_lang:
        Tesseract language code.
    """

    def __init__(self, ocr_lang: str = "eng") -> None:
        self.ocr_lang = ocr_lang

    def extract(self, file_path: str | Path, mime_type: str) -> ExtractionResult:
        mime = (mime_type or "").split(";")[0].strip().lower()
        path = Path(file_path)
        if not path.is_file():
            raise ExtractionError(f"File not found: {path}")

        try:
            if mime in TEXT_MIME_TYPES:
                return self._extract_text_file(path)
            if mime in PDF_MIME_TYPES:
                return self._extract_pdf(path)
            if mime.startswith("image/"):
                return self._extract_image(path)
        except DocRagError:
            raise
        except Exception as exc:
            raise ExtractionError(f"Failed to extract text: {exc}") from exc

        raise ExtractionError(f"Unsupported file type: {mime or 'unknown'}")

    def _extract_text_file(self, path: Path) -> ExtractionResult:
        logger.info("Reading plain text file: %s", path)
        docs = TextLoader(str(path), encoding="utf-8", autodetect_encoding=True).load()
        text = "\n\n".join(d.page_content for d in docs)
        if not text.strip():
            raise ExtractionError("Text file is empty")
        return ExtractionResult(text=text, method="direct", confidence=100.0)

    def _extract_pdf(self, path: Path) -> ExtractionResult:
        logger.info("Extracting PDF text layer: %s", path)
        pages = PyPDFLoader(str(path)).load()
        text = "\n\n".join(p.page_content.strip() for p in pages if p.page_content.strip())
        if len(text) <= MIN_PDF_TEXT_CHARS:
            logger.warning("PDF has minimal extractable text (%d chars): %s", len(text), path)
            return ExtractionResult(
                text=text or "[Empty PDF]", method="pdf-metadata", confidence=LOW_TEXT_PDF_CONFIDENCE
            )
        logger.info("PDF extraction: %d pages, %d chars", len(pages), len(text))
        return ExtractionResult(text=text, method="native-pdf", confidence=100.0)

    def _extract_image(self, path: Path) -> ExtractionResult:
        logger.info("Starting OCR extraction: %s", path)
        with Image.open(path) as source:
            image = preprocess_for_ocr(source)
        try:
            text = pytesseract.image_to_string(image, lang=self.ocr_lang).strip()
            data = pytesseract.image_to_data(image, lang=self.ocr_lang, output_type=pytesseract.Output.DICT)
        except pytesseract.TesseractNotFoundError as exc:
            raise ExtractionError("Tesseract is not installed on this host") from exc
        if len(text) < MIN_OCR_TEXT_CHARS:
            raise ExtractionError("OCR extracted very little text")
        confidence = mean_confidence(data)
        logger.info("OCR: %d chars, %.1f%% confidence", len(text), confidence)
        return ExtractionResult(text=text, method="ocr", confidence=confidence)
