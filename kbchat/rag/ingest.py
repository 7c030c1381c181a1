"""Knowledge base discovery and loading.

Orchestrates:
- File discovery with a glob pattern
- Reading files off the event loop
- Chunking documents
"""
import asyncio
from pathlib import Path
from typing import Any, Dict, List

import structlog

from kbchat import config
from kbchat.rag.chunker import Chunk, Document, TextChunker

logger = structlog.get_logger()


class KnowledgeLoader:
    """Loads knowledge documents from disk and splits them into chunks."""

    def __init__(
        self,
        knowledge_dir: Path = None,
        pattern: str = None,
        chunker: TextChunker = None,
    ):
        """Initialize the loader.

        Args:
            knowledge_dir: Root directory of the knowledge base (default from config)
            pattern: Glob pattern relative to knowledge_dir (default from config)
            chunker: Text chunker (a default one is created if not provided)
        """
        self.knowledge_dir = Path(knowledge_dir or config.KNOWLEDGE_DIR)
        self.pattern = pattern or config.KNOWLEDGE_GLOB
        self.chunker = chunker or TextChunker()

        self.stats = self._empty_stats()
        self.chunk_stats = self.chunker.get_chunk_stats([])

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            "files_found": 0,
            "files_processed": 0,
            "files_failed": 0,
            "chunks_created": 0,
        }

    def discover_files(self) -> List[Path]:
        """Find knowledge files matching the glob pattern.

        A missing knowledge directory yields no files.
        """
        if not self.knowledge_dir.is_dir():
            logger.warning("knowledge_dir_not_found", knowledge_dir=str(self.knowledge_dir))
            return []

        files = sorted(p for p in self.knowledge_dir.glob(self.pattern) if p.is_file())

        logger.info(
            "knowledge_files_discovered",
            count=len(files),
            knowledge_dir=str(self.knowledge_dir),
            pattern=self.pattern,
        )

        return files

    async def read_document(self, file_path: Path) -> Document:
        """Read one file without blocking the event loop."""
        text = await asyncio.to_thread(file_path.read_text, encoding="utf-8")

        try:
            source_path = str(file_path.relative_to(self.knowledge_dir))
        except ValueError:
            source_path = str(file_path)

        return Document(source_path=source_path, raw_text=text)

    async def load_documents(self) -> List[Document]:
        """Read every discovered file; unreadable files are logged and skipped."""
        files = self.discover_files()
        self.stats["files_found"] = len(files)

        documents = []
        for file_path in files:
            try:
                documents.append(await self.read_document(file_path))
                self.stats["files_processed"] += 1
            except (OSError, UnicodeDecodeError) as e:
                logger.error(
                    "knowledge_file_read_failed",
                    path=str(file_path),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self.stats["files_failed"] += 1

        return documents

    async def load_chunks(self) -> List[Chunk]:
        """Load all documents and chunk them in discovery order."""
        self.stats = self._empty_stats()

        chunks = []
        for document in await self.load_documents():
            chunks.extend(self.chunker.chunk_document(document))

        self.stats["chunks_created"] = len(chunks)
        self.chunk_stats = self.chunker.get_chunk_stats(chunks)

        logger.info("knowledge_loaded", **self.stats, **self.chunk_stats)

        return chunks

    def get_stats(self) -> Dict[str, Any]:
        """Statistics of the last load."""
        return {
            **self.stats,
            "knowledge_dir": str(self.knowledge_dir),
            "pattern": self.pattern,
            "chunk_size": self.chunker.chunk_size,
            "chunk_overlap": self.chunker.chunk_overlap,
            "chunks": self.chunk_stats,
        }
