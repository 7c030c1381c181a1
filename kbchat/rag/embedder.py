"""Embedding generation through the Ollama embedding endpoint."""
from typing import List, Optional

import httpx
import structlog

from kbchat import config
from kbchat.errors import EmbeddingError
from kbchat.llm_client import OllamaClient

logger = structlog.get_logger()


class Embedder:
    """Turns texts into fixed-length vectors using an Ollama embedding model."""

    def __init__(
        self,
        client: Optional[OllamaClient] = None,
        model: str = None,
        batch_size: int = None,
    ):
        """Initialize the embedder.

        Args:
            client: Ollama client (a default one is created if not provided)
            model: Embedding model name (default from config)
            batch_size: Number of texts sent per embedding request
        """
        self.client = client or OllamaClient()
        self.model = model or config.EMBEDDING_MODEL
        self.batch_size = batch_size or config.EMBED_BATCH_SIZE

    async def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        try:
            embeddings = await self.client.embed(texts, model=self.model)
        except (httpx.HTTPError, ValueError) as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        if len(embeddings) != len(texts):
            raise EmbeddingError(
                f"Expected {len(texts)} embeddings, got {len(embeddings)}"
            )

        if any(not embedding for embedding in embeddings):
            raise EmbeddingError("Empty embedding returned by the embedding service")

        return embeddings

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """Embed texts in batches, preserving input order.

        Raises:
            EmbeddingError: If any batch fails
        """
        if not texts:
            return []

        embeddings = []

        for i in range(0, len(texts), self.batch_size):
            batch = texts[i : i + self.batch_size]
            embeddings.extend(await self._embed_batch(batch))

            logger.debug(
                "embeddings_batch_generated",
                batch_size=len(batch),
                total_so_far=len(embeddings),
            )

        return embeddings

    async def embed_query(self, text: str) -> List[float]:
        """Embed a single query string."""
        return (await self._embed_batch([text]))[0]
