"""
Text chunking service with header-context tracking.

Splitting strategy:
  - Fixed character windows of CHUNK_SIZE, advancing by CHUNK_SIZE - CHUNK_OVERLAP
  - The first known header found inside a window becomes the current header
    context and carries forward until another header is seen
  - Windows whose stripped text is MIN_CHUNK_LENGTH characters or shorter
    are dropped; kept chunks are re-indexed consecutively
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from app.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Token counting (character approximation, no external dependency)
# ---------------------------------------------------------------------------

def estimate_tokens(text: str) -> int:
    """Approximate token count as ceil(chars / 4)."""
    return math.ceil(len(text) / 4)


# ---------------------------------------------------------------------------
# Chunk object
# ---------------------------------------------------------------------------

@dataclass
class TextChunk:
    content: str
    chunk_index: int
    header_context: Optional[str] = None

    @property
    def token_count(self) -> int:
        return estimate_tokens(self.content)

    @property
    def stored_content(self) -> str:
        """Content as persisted: prefixed with ``[header]`` when one applies."""
        if self.header_context:
            return f"[{self.header_context}] {self.content}"
        return self.content

    @property
    def embedding_input(self) -> str:
        if self.header_context:
            return f"{self.header_context}: {self.content}"
        return self.content


class ChunkingService:
    """Produces overlapping fixed-width chunks from extracted source text."""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        min_length: Optional[int] = None,
    ) -> None:
        self.chunk_size = chunk_size or settings.CHUNK_SIZE
        self.chunk_overlap = settings.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        self.min_length = settings.MIN_CHUNK_LENGTH if min_length is None else min_length
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")

    def chunk_text(self, text: str, headers: Sequence[str] = ()) -> List[TextChunk]:
        """
        Chunk text into overlapping windows.

        Args:
            text:    Extracted source text.
            headers: Headings found by the parser, in document order.

        Returns:
            TextChunk list with consecutive ``chunk_index`` values.
        """
        step = self.chunk_size - self.chunk_overlap
        chunks: List[TextChunk] = []
        current_header = ""

        for start in range(0, len(text), step):
            window = text[start:start + self.chunk_size]

            for header in headers:
                if header and header in window:
                    current_header = header
                    break

            stripped = window.strip()
            if len(stripped) > self.min_length:
                chunks.append(
                    TextChunk(
                        content=stripped,
                        chunk_index=len(chunks),
                        header_context=current_header or None,
                    )
                )

        logger.info("Created %d chunks from %d chars", len(chunks), len(text))
        return chunks
