"""Fixed-window text chunking with overlap for the RAG pipeline.

Chunking is character-based so results do not depend on a tokenizer.
"""
from dataclasses import dataclass
from typing import Dict, List

import structlog

from kbchat import config
from kbchat.errors import ConfigurationError

logger = structlog.get_logger()


@dataclass(frozen=True)
class Document:
    """A knowledge file read from disk."""

    source_path: str
    raw_text: str


@dataclass(frozen=True)
class Chunk:
    """A window of a document's text with position information."""

    text: str
    source_path: str
    index: int = 0
    char_start: int = 0
    char_end: int = 0


class TextChunker:
    """Character-based text chunker with a fixed window and overlap."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)

        Raises:
            ConfigurationError: If the window size and overlap are inconsistent
        """
        self.chunk_size = chunk_size if chunk_size is not None else config.CHUNK_SIZE
        self.chunk_overlap = chunk_overlap if chunk_overlap is not None else config.CHUNK_OVERLAP

        if self.chunk_size <= 0:
            raise ConfigurationError(f"Chunk size must be positive, got {self.chunk_size}")

        if self.chunk_overlap < 0:
            raise ConfigurationError(f"Overlap must not be negative, got {self.chunk_overlap}")

        if self.chunk_overlap >= self.chunk_size:
            raise ConfigurationError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

    @property
    def stride(self) -> int:
        """Distance between the starts of consecutive chunks."""
        return self.chunk_size - self.chunk_overlap

    def chunk_text(self, text: str, source_path: str = "") -> List[Chunk]:
        """Split text into overlapping chunks.

        Chunk i starts at ``i * stride`` and holds at most ``chunk_size``
        characters. The last chunk ends exactly at the end of the text.

        Args:
            text: Text to chunk
            source_path: Source recorded on every chunk

        Returns:
            List of Chunk objects in document order
        """
        if not text:
            return []

        text_length = len(text)
        chunks = []
        start = 0

        while True:
            end = min(start + self.chunk_size, text_length)
            chunks.append(
                Chunk(
                    text=text[start:end],
                    source_path=source_path,
                    index=len(chunks),
                    char_start=start,
                    char_end=end,
                )
            )

            if end >= text_length:
                break
            start += self.stride

        logger.debug(
            "text_chunked",
            source_path=source_path,
            text_length=text_length,
            chunk_count=len(chunks),
        )

        return chunks

    def chunk_document(self, document: Document) -> List[Chunk]:
        """Split a document into chunks tagged with its source path."""
        return self.chunk_text(document.raw_text, source_path=document.source_path)

    def get_chunk_stats(self, chunks: List[Chunk]) -> Dict[str, int]:
        """Size summary of a chunk list (count, total, mean, min and max length)."""
        sizes = [len(chunk.text) for chunk in chunks] or [0]
        return {
            "chunk_count": len(chunks),
            "total_chars": sum(sizes),
            "avg_chunk_size": sum(sizes) // max(len(chunks), 1),
            "min_chunk_size": min(sizes),
            "max_chunk_size": max(sizes),
        }
