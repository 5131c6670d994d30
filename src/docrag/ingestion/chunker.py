"""Word-budgeted text chunking along paragraph or sentence boundaries.

Text is split into semantic units (paragraphs, or sentences when the
text has no paragraph breaks) which are greedily packed into chunks of
roughly ``target_words`` words.  Consecutive chunks share a trailing run
of whole units worth at most ``overlap_words`` words.  Units are never
split, so a single unit longer than the target becomes its own
oversized chunk.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass

from docrag.config import settings
from docrag.exceptions import ValidationError

logger = logging.getLogger(__name__)

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


@dataclass(frozen=True)
class ChunkerConfig:
    """Size budget for :func:`chunk_text`, in words.

    Attributes
    ----------
    target_words:
        Soft upper bound on a chunk's word count.
    overlap_words:
        Maximum words carried over from the end of one chunk to the
        start of the next.  Must be smaller than ``target_words``.
    min_words:
        Chunks with fewer words are dropped (see the whole-text fallback
        in :func:`chunk_text`).
    """

    target_words: int = settings.chunk_target_words
    overlap_words: int = settings.chunk_overlap_words
    min_words: int = settings.chunk_min_words

    def __post_init__(self) -> None:
        if self.target_words <= 0:
            raise ValidationError(f"target_words ({self.target_words}) must be > 0", field="target_words")
        if self.overlap_words < 0:
            raise ValidationError(f"overlap_words ({self.overlap_words}) must be >= 0", field="overlap_words")
        if self.overlap_words >= self.target_words:
            raise ValidationError(
                f"overlap_words ({self.overlap_words}) must be < target_words ({self.target_words})",
                field="overlap_words",
            )
        if self.min_words < 0:
            raise ValidationError(f"min_words ({self.min_words}) must be >= 0", field="min_words")


def count_words(text: str) -> int:
    return len(text.split())


def normalize_text(text: str) -> str:
    """Unicode NFC, unify line endings, collapse blank runs.

    Paragraph breaks (blank lines) survive as a single ``"\\n\\n"``; every
    other whitespace run becomes one space.
    """
    text = unicodedata.normalize("NFC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", text)  # ctrl chars
    text = re.sub(r"[^\S\n]+", " ", text)          # collapse spaces (keep \n)
    text = re.sub(r" ?\n ?", "\n", text)            # trim around newlines
    text = re.sub(r"\n{2,}", "\n\n", text)          # blank-line runs → one break
    text = re.sub(r"(?<!\n)\n(?!\n)", " ", text)    # lone newlines are soft wraps
    return text.strip()


def split_units(text: str) -> tuple[list[str], str]:
    """Split normalised *text* into units and return ``(units, joiner)``.

    Paragraphs are preferred; when the text is a single paragraph it is
    split into sentences on terminal punctuation instead.
    """
    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK.split(text) if p.strip()]
    if len(paragraphs) > 1:
        return paragraphs, "\n\n"
    sentences = [s.strip() for s in _SENTENCE_END.split(text) if s.strip()]
    return sentences, " "


def chunk_text(text: str, config: ChunkerConfig | None = None) -> list[str]:
    """Split *text* into ordered, overlapping chunks.

    Parameters
    ----------
    text:
        Raw extracted text.
    config:
        Word budget; defaults come from settings.

    Returns
    -------
    list[str]
        Chunks in document order.  Empty for empty or whitespace-only
        input.  Every chunk has at least ``min_words`` words, except that
        when nothing qualified but the whole text does, the whole
        normalised text is returned as the only chunk.
    """
    config = config or ChunkerConfig()
    if not text or not text.strip():
        return []

    normalized = normalize_text(text)
    units, joiner = split_units(normalized)
    unit_words = [count_words(u) for u in units]

    chunks: list[str] = []
    current: list[int] = []  # indices into units
    current_words = 0

    def flush() -> None:
        chunk = joiner.join(units[i] for i in current)
        if count_words(chunk) >= config.min_words:
            chunks.append(chunk)

    for idx, words in enumerate(unit_words):
        if current and current_words + words > config.target_words:
            flush()

            # Seed the next chunk with trailing units of the one just flushed.
            seed: list[int] = []
            seed_words = 0
            for prev in reversed(current):
                if seed_words + unit_words[prev] > config.overlap_words:
                    break
                seed.insert(0, prev)
                seed_words += unit_words[prev]
            current, current_words = seed, seed_words

        current.append(idx)
        current_words += words

    if current:
        flush()

    if not chunks and count_words(normalized) >= config.min_words:
        chunks.append(normalized)

    logger.debug(
        "Chunked text into %d segments (target=%d, overlap=%d, min=%d)",
        len(chunks),
        config.target_words,
        config.overlap_words,
        config.min_words,
    )
    return chunks
