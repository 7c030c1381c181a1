"""In-memory vector indexes for cosine similarity search.

Handles:
- Atomic index builds from (vector, chunk) pairs
- Exact top-k cosine search with stable tie-breaking
- A numpy brute-force backend and a FAISS backend behind one interface
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

import faiss
import numpy as np
import structlog

from kbchat.errors import ConfigurationError
from kbchat.rag.chunker import Chunk

logger = structlog.get_logger()


@dataclass(frozen=True)
class Embedding:
    """A chunk together with its embedding vector."""

    vector: Tuple[float, ...]
    chunk: Chunk


@dataclass(frozen=True)
class SearchResult:
    """A single index hit."""

    embedding: Embedding
    score: float

    @property
    def text(self) -> str:
        return self.embedding.chunk.text

    @property
    def source(self) -> str:
        return self.embedding.chunk.source_path


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 if either has zero length."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def _to_matrix(embeddings: Sequence[Embedding], dtype) -> np.ndarray:
    """Stack embedding vectors into an (n, dim) matrix, checking dimensions."""
    if not embeddings:
        return np.zeros((0, 0), dtype=dtype)

    dimension = len(embeddings[0].vector)
    for embedding in embeddings:
        if len(embedding.vector) != dimension:
            raise ValueError(
                f"Embedding dimension mismatch: expected {dimension}, "
                f"got {len(embedding.vector)}"
            )

    return np.array([e.vector for e in embeddings], dtype=dtype).reshape(len(embeddings), dimension)


def _normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """L2-normalise rows, leaving zero rows at zero."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    safe = np.where(norms == 0.0, 1.0, norms)
    return matrix / safe


class VectorIndex(ABC):
    """Interface shared by all vector index backends.

    ``build`` replaces the whole index; ``search`` returns the ``k`` most
    similar entries by cosine similarity, best first, ties in insertion order.
    """

    name = "base"

    def __init__(self):
        # (embeddings, backend data) swapped as one reference on build
        self._snapshot: Tuple[Tuple[Embedding, ...], Any] = ((), None)

    def __len__(self) -> int:
        return len(self._snapshot[0])

    @property
    def dimension(self) -> int:
        embeddings = self._snapshot[0]
        return len(embeddings[0].vector) if embeddings else 0

    def build(self, embeddings: Sequence[Embedding]) -> None:
        """Replace the index contents.

        The new state is prepared in full before it is published, so a
        concurrent search sees either the old or the new index.

        Raises:
            ValueError: If vectors have different dimensions
        """
        embeddings = tuple(embeddings)
        data = self._prepare(embeddings) if embeddings else None
        self._snapshot = (embeddings, data)

        logger.info(
            "vector_index_built",
            backend=self.name,
            vector_count=len(embeddings),
            dimension=self.dimension,
        )

    def search(self, query_vector: Sequence[float], k: int) -> List[SearchResult]:
        """Return the k entries most similar to the query vector.

        Raises:
            ValueError: If k is not positive or the query dimension is wrong
        """
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}")

        embeddings, data = self._snapshot
        if not embeddings:
            return []

        dimension = len(embeddings[0].vector)
        if len(query_vector) != dimension:
            raise ValueError(
                f"Query dimension mismatch: expected {dimension}, "
                f"got {len(query_vector)}"
            )

        k = min(k, len(embeddings))
        hits = self._search(data, query_vector, k)

        return [SearchResult(embedding=embeddings[i], score=score) for i, score in hits]

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the index."""
        return {
            "backend": self.name,
            "vector_count": len(self),
            "dimension": self.dimension,
        }

    @abstractmethod
    def _prepare(self, embeddings: Tuple[Embedding, ...]) -> Any:
        """Build backend data for a non-empty set of embeddings."""

    @abstractmethod
    def _search(self, data: Any, query_vector: Sequence[float], k: int) -> List[Tuple[int, float]]:
        """Return (position, score) pairs, best first."""


class InMemoryVectorIndex(VectorIndex):
    """Exact brute-force cosine search over a numpy matrix."""

    name = "memory"

    def _prepare(self, embeddings):
        matrix = _to_matrix(embeddings, np.float64)
        return matrix, np.linalg.norm(matrix, axis=1)

    def _search(self, data, query_vector, k):
        matrix, norms = data
        query = np.asarray(query_vector, dtype=np.float64)

        denominators = norms * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.divide(
            dots,
            denominators,
            out=np.zeros_like(dots),
            where=denominators != 0.0,
        )

        # stable sort keeps insertion order among equal scores
        order = np.argsort(-scores, kind="stable")[:k]
        return [(int(i), float(scores[i])) for i in order]


class FAISSVectorIndex(VectorIndex):
    """FAISS inner-product index over L2-normalised vectors."""

    name = "faiss"

    def _prepare(self, embeddings):
        vectors = np.ascontiguousarray(
            _normalize_rows(_to_matrix(embeddings, np.float32)), dtype=np.float32
        )

        # IndexFlatIP on unit vectors = exact cosine similarity
        index = faiss.IndexFlatIP(vectors.shape[1])
        index.add(vectors)
        return index

    def _search(self, data, query_vector, k):
        query = np.ascontiguousarray(
            _normalize_rows(np.array([query_vector], dtype=np.float32)), dtype=np.float32
        )

        # rank every entry so ties at the k-th place resolve by insertion order
        scores, indices = data.search(query, data.ntotal)

        hits = [
            (int(i), float(score))
            for i, score in zip(indices[0].tolist(), scores[0].tolist())
            if i >= 0
        ]
        hits.sort(key=lambda hit: (-hit[1], hit[0]))
        return hits[:k]


_BACKENDS = {
    InMemoryVectorIndex.name: InMemoryVectorIndex,
    FAISSVectorIndex.name: FAISSVectorIndex,
}


def create_vector_index(backend: str = "memory") -> VectorIndex:
    """Create an empty vector index for the named backend.

    Raises:
        ConfigurationError: If the backend name is unknown
    """
    try:
        return _BACKENDS[backend]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown vector backend '{backend}', expected one of {sorted(_BACKENDS)}"
        ) from None
