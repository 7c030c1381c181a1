"""Unit tests for the vector index backends."""
import pytest

from kbchat.errors import ConfigurationError
from kbchat.rag.chunker import Chunk
from kbchat.rag.vector_index import (
    Embedding,
    FAISSVectorIndex,
    InMemoryVectorIndex,
    cosine_similarity,
    create_vector_index,
)


def make_embeddings(vectors):
    return [
        Embedding(vector=tuple(v), chunk=Chunk(text=f"chunk-{i}", source_path=f"doc{i}.md"))
        for i, v in enumerate(vectors)
    ]


@pytest.fixture(params=[InMemoryVectorIndex, FAISSVectorIndex], ids=["memory", "faiss"])
def index(request):
    return request.param()


class TestCosineSimilarity:
    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 5.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 1.0], [-2.0, -2.0]) == pytest.approx(-1.0)

    def test_magnitude_is_ignored(self):
        assert cosine_similarity([3.0, 4.0], [30.0, 40.0]) == pytest.approx(1.0)

    def test_zero_vector_has_zero_similarity(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [0.0, 0.0]) == 0.0


class TestVectorIndex:
    """Behaviour shared by every backend."""

    def test_empty_index_returns_empty_list(self, index):
        assert index.search([1.0, 0.0], k=3) == []
        assert len(index) == 0

    def test_identical_vector_scores_one(self, index):
        index.build(make_embeddings([[0.2, 0.4, 0.9], [1.0, 0.0, 0.0]]))

        results = index.search([0.2, 0.4, 0.9], k=1)

        assert results[0].text == "chunk-0"
        assert results[0].score == pytest.approx(1.0, abs=1e-6)

    def test_orthogonal_vector_scores_zero(self, index):
        index.build(make_embeddings([[1.0, 0.0], [0.0, 1.0]]))

        results = index.search([1.0, 0.0], k=2)

        assert [r.text for r in results] == ["chunk-0", "chunk-1"]
        assert results[1].score == pytest.approx(0.0, abs=1e-6)

    def test_results_ordered_by_similarity(self, index):
        index.build(make_embeddings([
            [0.0, 1.0],   # 90 degrees
            [1.0, 1.0],   # 45 degrees
            [1.0, 0.1],   # almost aligned
            [-1.0, 0.0],  # opposite
        ]))

        results = index.search([1.0, 0.0], k=3)

        assert [r.text for r in results] == ["chunk-2", "chunk-1", "chunk-0"]
        assert results[0].score > results[1].score > results[2].score

    def test_ties_keep_insertion_order(self, index):
        index.build(make_embeddings([[2.0, 0.0], [1.0, 0.0], [5.0, 0.0], [0.0, 1.0]]))

        results = index.search([1.0, 0.0], k=4)

        assert [r.text for r in results] == ["chunk-0", "chunk-1", "chunk-2", "chunk-3"]

    def test_ties_at_the_cutoff_keep_earliest_entries(self, index):
        index.build(make_embeddings([[0.0, 1.0]] + [[1.0, 0.0]] * 20))

        results = index.search([1.0, 0.0], k=3)

        assert [r.text for r in results] == ["chunk-1", "chunk-2", "chunk-3"]

    def test_ties_below_a_better_match_keep_insertion_order(self, index):
        index.build(make_embeddings([[1.0, 1.0], [0.0, 1.0], [1.0, 1.0], [1.0, 0.0], [2.0, 2.0]]))

        results = index.search([1.0, 0.0], k=3)

        assert [r.text for r in results] == ["chunk-3", "chunk-0", "chunk-2"]

    def test_fewer_entries_than_k_returns_all(self, index):
        index.build(make_embeddings([[1.0, 0.0], [0.0, 1.0]]))

        assert len(index.search([1.0, 1.0], k=10)) == 2

    def test_zero_vectors_do_not_fail(self, index):
        index.build(make_embeddings([[0.0, 0.0], [1.0, 0.0]]))

        results = index.search([0.0, 0.0], k=2)

        assert [r.score for r in results] == [0.0, 0.0]
        assert [r.text for r in results] == ["chunk-0", "chunk-1"]

    def test_zero_stored_vector_ranks_by_zero_score(self, index):
        index.build(make_embeddings([[0.0, 0.0], [1.0, 0.0]]))

        results = index.search([1.0, 0.0], k=2)

        assert [r.text for r in results] == ["chunk-1", "chunk-0"]
        assert results[1].score == pytest.approx(0.0)

    def test_build_replaces_previous_contents(self, index):
        index.build(make_embeddings([[1.0, 0.0], [0.0, 1.0]]))
        index.build(make_embeddings([[0.0, 0.0, 1.0]]))

        results = index.search([0.0, 0.0, 1.0], k=5)

        assert len(index) == 1
        assert index.dimension == 3
        assert len(results) == 1

    def test_build_with_no_embeddings_empties_index(self, index):
        index.build(make_embeddings([[1.0, 0.0]]))
        index.build([])

        assert index.search([1.0, 0.0], k=1) == []

    def test_non_positive_k_rejected(self, index):
        index.build(make_embeddings([[1.0, 0.0]]))

        with pytest.raises(ValueError):
            index.search([1.0, 0.0], k=0)

    def test_query_dimension_mismatch_rejected(self, index):
        index.build(make_embeddings([[1.0, 0.0]]))

        with pytest.raises(ValueError, match="dimension mismatch"):
            index.search([1.0, 0.0, 0.0], k=1)

    def test_mixed_dimensions_rejected_and_old_index_kept(self, index):
        index.build(make_embeddings([[1.0, 0.0]]))

        with pytest.raises(ValueError):
            index.build(make_embeddings([[1.0, 0.0], [1.0, 0.0, 0.0]]))

        assert len(index) == 1

    def test_search_result_exposes_chunk(self, index):
        index.build(make_embeddings([[1.0, 0.0]]))

        result = index.search([1.0, 0.0], k=1)[0]

        assert result.source == "doc0.md"
        assert result.embedding.chunk.text == "chunk-0"

    def test_stats(self, index):
        index.build(make_embeddings([[1.0, 0.0, 0.0]] * 3))

        stats = index.get_stats()

        assert stats["backend"] == index.name
        assert stats["vector_count"] == 3
        assert stats["dimension"] == 3


class TestCreateVectorIndex:
    def test_known_backends(self):
        assert isinstance(create_vector_index("memory"), InMemoryVectorIndex)
        assert isinstance(create_vector_index("faiss"), FAISSVectorIndex)

    def test_unknown_backend_rejected(self):
        with pytest.raises(ConfigurationError, match="Unknown vector backend"):
            create_vector_index("annoy")
