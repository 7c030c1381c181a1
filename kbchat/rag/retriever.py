"""Retriever for semantic search over the knowledge base.

Handles:
- One-time (single-flight) ingestion into the vector index
- Query embedding generation
- Top-k similarity search
- Context formatting for the LLM prompt
"""
import asyncio
import enum
from typing import Any, Dict, List, Optional

import structlog

from kbchat import config
from kbchat.errors import IngestionError, RetrievalError
from kbchat.rag.embedder import Embedder
from kbchat.rag.ingest import KnowledgeLoader
from kbchat.rag.vector_index import Embedding, SearchResult, VectorIndex, create_vector_index

logger = structlog.get_logger()


class RetrieverState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class Retriever:
    """Semantic retriever for the RAG pipeline."""

    def __init__(
        self,
        loader: Optional[KnowledgeLoader] = None,
        embedder: Optional[Embedder] = None,
        index: Optional[VectorIndex] = None,
        top_k: int = None,
        separator: str = None,
    ):
        """Initialize the retriever.

        Nothing is loaded here; ingestion happens on ``initialize()`` or on
        the first retrieval.

        Args:
            loader: Knowledge loader (default from config)
            embedder: Embedder used for chunks and queries (default from config)
            index: Vector index (backend from config.VECTOR_BACKEND)
            top_k: Number of chunks to retrieve per query (default from config)
            separator: String placed between chunks in the context
        """
        self.loader = loader or KnowledgeLoader()
        self.embedder = embedder or Embedder()
        self.index = index if index is not None else create_vector_index(config.VECTOR_BACKEND)
        self.top_k = top_k or config.RETRIEVAL_TOP_K
        self.separator = separator if separator is not None else config.CONTEXT_SEPARATOR

        self.state = RetrieverState.UNINITIALIZED
        self.last_error: Optional[str] = None
        self._lock = asyncio.Lock()
        self._failed_runs = 0

    @property
    def is_ready(self) -> bool:
        return self.state is RetrieverState.READY

    async def initialize(self) -> None:
        """Load, chunk, embed and index the knowledge base once.

        Concurrent callers share a single ingestion run and its outcome: callers
        that were waiting on a failed run get its error instead of starting
        another one. Calling again after success is a no-op; calling after a
        failure retries.

        Raises:
            IngestionError: If embedding or indexing fails
        """
        if self.is_ready:
            return

        failed_runs = self._failed_runs

        async with self._lock:
            # another caller may have finished while we waited
            if self.is_ready:
                return
            # a run failed while we waited: share its outcome
            if self._failed_runs != failed_runs:
                raise IngestionError(f"Knowledge base ingestion failed: {self.last_error}")

            self.state = RetrieverState.INITIALIZING
            logger.info("knowledge_base_loading", knowledge_dir=str(self.loader.knowledge_dir))

            try:
                chunks = await self.loader.load_chunks()

                if not chunks:
                    logger.warning("no_knowledge_chunks_found", **self.loader.get_stats())
                    self.index.build([])
                else:
                    vectors = await self.embedder.embed_documents([c.text for c in chunks])
                    self.index.build(
                        [Embedding(vector=tuple(v), chunk=c) for v, c in zip(vectors, chunks)]
                    )

            except Exception as e:
                self.state = RetrieverState.FAILED
                self._failed_runs += 1
                self.last_error = str(e)
                logger.error(
                    "knowledge_base_load_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise IngestionError(f"Knowledge base ingestion failed: {e}") from e

            self.state = RetrieverState.READY
            self.last_error = None

            logger.info(
                "retriever_ready",
                chunks_indexed=len(self.index),
                files_processed=self.loader.stats["files_processed"],
                files_failed=self.loader.stats["files_failed"],
            )

    async def retrieve(self, query: str, top_k: Optional[int] = None) -> List[SearchResult]:
        """Retrieve the chunks most similar to a query.

        Args:
            query: User query text
            top_k: Number of results to return (overrides default)

        Returns:
            SearchResult list, most similar first

        Raises:
            IngestionError: If the knowledge base cannot be loaded
            RetrievalError: If embedding or searching the query fails
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        await self.initialize()

        if len(self.index) == 0:
            logger.info("empty_index_no_results")
            return []

        top_k = top_k or self.top_k

        try:
            query_vector = await self.embedder.embed_query(query)
            results = self.index.search(query_vector, top_k)
        except Exception as e:
            logger.error(
                "retrieval_failed",
                error=str(e),
                error_type=type(e).__name__,
                query_preview=query[:100],
            )
            raise RetrievalError(f"Retrieval failed: {e}") from e

        logger.info(
            "retrieval_completed",
            query_length=len(query),
            results_returned=len(results),
            top_score=results[0].score if results else None,
        )

        return results

    async def retrieve_context(self, query: str) -> str:
        """Retrieve and format context for the LLM prompt.

        Never raises: any failure degrades to an empty context.

        Returns:
            Chunk texts joined by the separator, or "" if nothing was found
        """
        try:
            results = await self.retrieve(query)
        except Exception as e:
            logger.error(
                "context_retrieval_degraded",
                error=str(e),
                error_type=type(e).__name__,
            )
            return ""

        if not results:
            return ""

        context = self.separator.join(result.text for result in results)

        logger.debug(
            "context_formatted",
            num_chunks=len(results),
            total_chars=len(context),
        )

        return context

    def get_stats(self) -> Dict[str, Any]:
        """Get retriever state and index statistics."""
        return {
            "state": self.state.value,
            "top_k": self.top_k,
            "last_error": self.last_error,
            "index": self.index.get_stats(),
            "knowledge": self.loader.get_stats(),
        }
