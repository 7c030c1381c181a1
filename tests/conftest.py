"""Shared fakes and fixtures for the kbchat test suite."""
import asyncio
from pathlib import Path
from typing import List, Optional

import pytest

from kbchat.errors import EmbeddingError, GenerationError
from kbchat.generator import Done, Token
from kbchat.rag.chunker import TextChunker
from kbchat.rag.ingest import KnowledgeLoader
from kbchat.rag.retriever import Retriever
from kbchat.rag.vector_index import InMemoryVectorIndex


VOCABULARY = ["python", "cat", "weather", "ollama"]


def keyword_vector(text: str) -> List[float]:
    """Bag-of-keywords vector; texts without keywords map to the zero vector."""
    lowered = text.lower()
    return [float(lowered.count(word)) for word in VOCABULARY]


class FakeEmbedder:
    """Embedder stand-in that counts calls and can be made to fail."""

    model = "fake-embed"

    def __init__(self, delay: float = 0.0, fail: bool = False):
        self.delay = delay
        self.fail = fail
        self.document_calls = 0
        self.query_calls = 0

    async def embed_documents(self, texts):
        self.document_calls += 1
        await asyncio.sleep(self.delay)
        if self.fail:
            raise EmbeddingError("embedding service unreachable")
        return [keyword_vector(t) for t in texts]

    async def embed_query(self, text):
        self.query_calls += 1
        if self.fail:
            raise EmbeddingError("embedding service unreachable")
        return keyword_vector(text)


class FakeGenerator:
    """Generator stand-in replaying scripted events.

    ``fail_after`` raises GenerationError once that many events were yielded.
    """

    model = "fake-chat"

    def __init__(self, events=None, fail_after: Optional[int] = None):
        self.events = events if events is not None else [Token("Hello"), Token(" world"), Done()]
        self.fail_after = fail_after
        self.calls = []
        self.closed = False

    async def generate_stream(self, query, context=""):
        self.calls.append((query, context))
        try:
            for position, event in enumerate(self.events):
                if self.fail_after is not None and position == self.fail_after:
                    raise GenerationError("model server went away")
                yield event
            if self.fail_after is not None and self.fail_after >= len(self.events):
                raise GenerationError("model server went away")
        finally:
            self.closed = True


class StaticRetriever:
    """Retriever stand-in returning a fixed context."""

    def __init__(self, context: str = ""):
        self.context = context
        self.queries = []
        self.embedder = FakeEmbedder()
        self.loader = KnowledgeLoader(knowledge_dir=Path("."))

    async def initialize(self):
        return None

    async def retrieve_context(self, query):
        self.queries.append(query)
        return self.context

    def get_stats(self):
        return {"state": "ready"}


@pytest.fixture
def knowledge_dir(tmp_path: Path) -> Path:
    """Knowledge base with three small markdown documents."""
    (tmp_path / "guides").mkdir()
    (tmp_path / "python.md").write_text("Python is a programming language. Python is fun.")
    (tmp_path / "guides" / "cats.md").write_text("A cat sleeps most of the day. Every cat purrs.")
    (tmp_path / "weather.md").write_text("The weather today is sunny.")
    (tmp_path / "notes.txt").write_text("python cat weather - not matched by the glob")
    return tmp_path


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def make_retriever():
    """Factory building a real Retriever over a directory with fake embeddings."""

    def _make(directory: Path, embedder=None, top_k: int = 3) -> Retriever:
        loader = KnowledgeLoader(
            knowledge_dir=directory,
            pattern="**/*.md",
            chunker=TextChunker(chunk_size=200, chunk_overlap=20),
        )
        return Retriever(
            loader=loader,
            embedder=embedder or FakeEmbedder(),
            index=InMemoryVectorIndex(),
            top_k=top_k,
        )

    return _make
