# tests/test_ranking.py

import pytest
import numpy as np
from core.ranking import NeighborRanker, rank
from core.metrics import Metric
from core.exceptions import InputValidationError, UnsupportedMetricError


@pytest.fixture
def random_store():
    rng = np.random.default_rng(0)
    return {f"image/{i}.jpg": rng.random(16) for i in range(40)}


def test_rank_tie_scenario():
    """Identical vectors tie at 0.0 and keep insertion order"""
    store = {
        "img1": np.array([1.0, 0.0, 0.0]),
        "img2": np.array([0.0, 1.0, 0.0]),
        "img3": np.array([1.0, 0.0, 0.0]),
    }
    result = rank(np.array([1.0, 0.0, 0.0]), store, "Euclidean", 2)

    assert result == [("img1", 0.0), ("img3", 0.0)]


def test_rank_ascending_for_distances(random_store):
    query = np.full(16, 0.5)
    for metric in (Metric.EUCLIDEAN, Metric.BHATTACHARYYA):
        result = rank(query, random_store, metric, 20)
        scores = [s for _, s in result]
        assert len(result) == 20
        assert all(scores[i] <= scores[i + 1] for i in range(len(scores) - 1))


def test_rank_descending_for_similarities(random_store):
    query = np.full(16, 0.5)
    for metric in (Metric.COSINE_SIMILARITY, Metric.CORRELATION, Metric.INTERSECTION):
        result = rank(query, random_store, metric, 20)
        scores = [s for _, s in result]
        assert all(scores[i] >= scores[i + 1] for i in range(len(scores) - 1))


def test_rank_finds_query_first(random_store):
    query = random_store["image/17.jpg"]
    assert rank(query, random_store, "Euclidean", 1)[0] == ("image/17.jpg", 0.0)
    assert rank(query, random_store, "Cosine", 1)[0][0] == "image/17.jpg"


def test_rank_k_larger_than_store(random_store):
    query = np.full(16, 0.5)
    full = rank(query, random_store, "Euclidean", len(random_store))
    oversized = rank(query, random_store, "Euclidean", 10 * len(random_store))

    assert len(oversized) == len(random_store)
    assert oversized == full


def test_rank_descending_ties_keep_store_order():
    store = {f"image/{i}.jpg": np.array([1.0, 1.0]) for i in (3, 1, 2)}
    result = rank(np.array([2.0, 2.0]), store, "CosineSimilarity", 3)
    assert [key for key, _ in result] == ["image/3.jpg", "image/1.jpg", "image/2.jpg"]


@pytest.mark.parametrize("k", [0, -1, 2.5, "20", True, None])
def test_rank_rejects_invalid_k(random_store, k):
    with pytest.raises(InputValidationError):
        rank(np.ones(16), random_store, "Euclidean", k)


def test_rank_unknown_metric(random_store):
    with pytest.raises(UnsupportedMetricError):
        rank(np.ones(16), random_store, "Hamming", 5)


def test_threaded_ranking_matches_sequential(random_store):
    query = np.full(16, 0.3)
    sequential = NeighborRanker(n_workers=1).rank(query, random_store, "Intersection", 40)
    threaded = NeighborRanker(n_workers=4).rank(query, random_store, "Intersection", 40)

    assert threaded == sequential


def test_score_all_keeps_store_order(random_store):
    scored = NeighborRanker(n_workers=3).score_all(np.ones(16), random_store, Metric.EUCLIDEAN)
    assert [key for key, _ in scored] == list(random_store)
