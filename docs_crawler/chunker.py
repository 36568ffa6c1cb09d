"""Sliding-window chunking of extracted page text."""

from __future__ import annotations

import logging
from typing import List

from .errors import ChunkingConfigError

LOGGER = logging.getLogger(__name__)

DEFAULT_WINDOW = 500  # words, roughly 400 embedding tokens
DEFAULT_OVERLAP = 65  # words, roughly 50 tokens


def validate_window(window: int, overlap: int) -> None:
    if window <= 0:
        raise ChunkingConfigError(f"Chunk window must be positive, got {window}")
    if overlap < 0:
        raise ChunkingConfigError(f"Chunk overlap must be >= 0, got {overlap}")
    if overlap >= window:
        raise ChunkingConfigError(
            f"Chunk overlap ({overlap}) must be smaller than the window ({window})"
        )


def chunk_words(
    text: str, window: int = DEFAULT_WINDOW, overlap: int = DEFAULT_OVERLAP
) -> List[List[str]]:
    """Split ``text`` into overlapping word windows.

    Window ``i`` starts at word ``i * (window - overlap)``; the last window
    always ends at the final word. Whitespace-only text yields no windows.
    """
    validate_window(window, overlap)
    words = text.split()
    if not words:
        return []

    step = window - overlap
    windows: List[List[str]] = []
    start = 0
    while True:
        end = min(start + window, len(words))
        windows.append(words[start:end])
        if end == len(words):
            break
        start += step
    return windows


def chunk_text(
    text: str, window: int = DEFAULT_WINDOW, overlap: int = DEFAULT_OVERLAP
) -> List[str]:
    """Chunk text into overlapping windows joined with single spaces.

    Output order defines each chunk's ordinal and therefore its identifier.
    """
    chunks = [" ".join(words) for words in chunk_words(text, window, overlap)]
    LOGGER.debug(
        "Chunked %d characters into %d window(s) (window=%d, overlap=%d)",
        len(text),
        len(chunks),
        window,
        overlap,
    )
    return chunks

