"""Unit tests for the similarity helpers."""

import numpy as np
import pytest

from local_embeddings.embeddings import (
    Embedding,
    cosine_similarity,
    find_closest,
    similarity_matrix,
)
from local_embeddings.errors import ConfigurationError


class TestCosineSimilarity:
    def test_identical(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite(self):
        assert cosine_similarity(Embedding([1.0, 1.0]), Embedding([-1.0, -1.0])) == pytest.approx(-1.0)

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0

    def test_length_mismatch(self):
        with pytest.raises(ConfigurationError):
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


class TestSimilarityMatrix:
    def test_square(self):
        vectors = [Embedding([1.0, 0.0]), Embedding([0.0, 1.0]), Embedding([1.0, 1.0])]
        matrix = similarity_matrix(vectors)
        assert matrix.shape == (3, 3)
        assert matrix.dtype == np.float32
        np.testing.assert_allclose(np.diag(matrix), [1.0, 1.0, 1.0], rtol=1e-6)
        assert matrix[0, 2] == pytest.approx(1 / np.sqrt(2), rel=1e-5)
        np.testing.assert_allclose(matrix, matrix.T)

    def test_rectangular(self):
        matrix = similarity_matrix([[1.0, 0.0]], [[1.0, 0.0], [0.0, 2.0]])
        np.testing.assert_allclose(matrix, [[1.0, 0.0]], atol=1e-6)

    def test_empty(self):
        assert similarity_matrix([]).shape == (0, 0)

    def test_dimension_mismatch(self):
        with pytest.raises(ConfigurationError):
            similarity_matrix([[1.0, 0.0]], [[1.0, 0.0, 0.0]])

    def test_mixed_dimensions(self):
        with pytest.raises(ConfigurationError):
            similarity_matrix([[1.0, 0.0], [1.0, 0.0, 0.0]])


class TestFindClosest:
    ITEMS = [
        ("east", [1.0, 0.0]),
        ("north", [0.0, 1.0]),
        ("north-east", [1.0, 1.0]),
        ("west", [-1.0, 0.0]),
    ]

    def test_ranked(self):
        results = find_closest(self.ITEMS, [1.0, 0.1], top_k=2)
        assert [name for name, _ in results] == ["east", "north-east"]
        assert results[0][1] >= results[1][1]

    def test_min_score(self):
        results = find_closest(self.ITEMS, [1.0, 0.0], top_k=10, min_score=0.5)
        assert {name for name, _ in results} == {"east", "north-east"}

    def test_zero_top_k(self):
        assert find_closest(self.ITEMS, [1.0, 0.0], top_k=0) == []

    def test_negative_top_k(self):
        with pytest.raises(ConfigurationError):
            find_closest(self.ITEMS, [1.0, 0.0], top_k=-1)

    def test_none_items(self):
        with pytest.raises(ConfigurationError):
            find_closest(None, [1.0, 0.0])
