# tests/test_retrieval.py

import pytest
import numpy as np
from config import SystemConfig
from core.retrieval import RetrievalService
from core.feature_store import FeatureStore, CachedFeatureStore
from core.metrics import Metric
from core.exceptions import (
    InputValidationError, QueryNotFoundError, UnsupportedMetricError, IdentifierParseError
)


@pytest.fixture
def index_root(tmp_path):
    """Two classes of ten images: ids 0-9 near [1, 0, 0], ids 100-109 near [0, 1, 0]"""
    model_dir = tmp_path / "index" / "ResNet50"
    model_dir.mkdir(parents=True)
    for i in range(10):
        (model_dir / f"{i}.txt").write_text(f"1\n{0.01 * i}\n0\n")
        (model_dir / f"{100 + i}.txt").write_text(f"0\n1\n{0.01 * i}\n")
    return tmp_path / "index"


@pytest.fixture
def config(index_root):
    config = SystemConfig()
    config.feature_store.index_root = str(index_root)
    config.retrieval.allowed_k = [5, 20]
    config.retrieval.default_k = 5
    config.retrieval.evaluation_window = 20
    return config


@pytest.fixture
def service(config):
    return RetrievalService(config)


class ExplodingStore:
    """Store that fails the test if anything is loaded"""

    def load(self, model_name):
        raise AssertionError("store must not be loaded for an invalid request")


def test_search_returns_k_neighbors(service):
    result = service.search("5.jpg", model="ResNet50", metric="Euclidean", k=5)

    assert result.query == "image/5.jpg"
    assert result.metric is Metric.EUCLIDEAN
    assert len(result.neighbors) == 5
    assert result.neighbors[0] == ("image/5.jpg", 0.0)
    assert all(int(key.split('/')[1].split('.')[0]) < 10 for key, _ in result.neighbors)


def test_search_evaluates_over_window(service):
    result = service.search("uploads/105.png", model="ResNet50", metric="Cosine", k=5)
    series = result.recall_precision

    assert len(series) == 20
    assert series.precision[:10] == pytest.approx([1.0] * 10)
    assert series.recall[9] == pytest.approx(0.10)
    assert series.recall[-1] == pytest.approx(0.10)
    assert series.precision[-1] == pytest.approx(0.5)


def test_search_window_smaller_than_k(service):
    result = service.search("3.jpg", model="ResNet50", metric="Euclidean", k=5,
                            evaluation_window=3)
    assert len(result.neighbors) == 5
    assert len(result.recall_precision) == 3
    assert result.evaluation_window == 3


def test_search_uses_defaults(service):
    result = service.search("7.jpg", model="ResNet50")
    assert result.metric is Metric.EUCLIDEAN
    assert len(result.neighbors) == 5


@pytest.mark.parametrize("metric", [m.label for m in Metric])
def test_search_all_metrics(service, metric):
    result = service.search("2.jpg", model="ResNet50", metric=metric, k=5)
    assert len(result.neighbors) == 5
    assert all(np.isfinite(score) for _, score in result.neighbors)


@pytest.mark.parametrize("kwargs,error", [
    ({'k': 7}, InputValidationError),
    ({'k': "abc"}, InputValidationError),
    ({'metric': "Manhattan"}, UnsupportedMetricError),
    ({'model': "AlexNet"}, InputValidationError),
    ({'model': ""}, InputValidationError),
    ({'query': ""}, InputValidationError),
    ({'query': "cat.jpg"}, IdentifierParseError),
    ({'evaluation_window': 0}, InputValidationError),
])
def test_invalid_requests_fail_before_loading(config, kwargs, error):
    service = RetrievalService(config, feature_store=ExplodingStore())
    request = {'query': "5.jpg", 'model': "ResNet50", 'metric': "Euclidean", 'k': 5}
    request.update(kwargs)

    with pytest.raises(error):
        service.search(**request)


def test_search_query_not_in_store(service):
    with pytest.raises(QueryNotFoundError):
        service.search("555.jpg", model="ResNet50", metric="Euclidean", k=5)


def test_search_result_to_dict(service):
    payload = service.search("101.jpg", model="ResNet50", metric="Intersection", k=5).to_dict()

    assert payload['metric'] == "Intersection"
    assert payload['model'] == "ResNet50"
    assert len(payload['neighbors']) == 5
    assert set(payload['neighbors'][0]) == {'image', 'score'}
    assert len(payload['recall_precision']) == 20
    assert set(payload['recall_precision'][0]) == {'recall', 'precision'}


def test_search_records_stage_timings(service):
    service.search("5.jpg", model="ResNet50", metric="Euclidean", k=5)
    operations = [m['stage'] for m in service.perf_logger.metrics]
    assert operations == ['load', 'rank', 'evaluate']


def test_service_caches_stores_by_default(service):
    assert isinstance(service.feature_store, CachedFeatureStore)
    service.search("5.jpg", model="ResNet50", k=5)
    assert "ResNet50" in service.feature_store


def test_service_without_cache(config):
    config.feature_store.cache_stores = False
    service = RetrievalService(config)
    assert isinstance(service.feature_store, FeatureStore)


def test_search_vector(service):
    neighbors = service.search_vector([0.0, 1.0, 0.05], model="ResNet50", metric="Euclidean", k=5)

    assert len(neighbors) == 5
    assert neighbors[0][0] == "image/105.jpg"
    assert neighbors[0][1] == pytest.approx(0.0)


def test_search_vector_rejects_nan(service):
    with pytest.raises(InputValidationError):
        service.search_vector([np.nan, 1.0, 0.0], model="ResNet50", metric="Euclidean", k=5)


def test_evaluate_model(service):
    summary = service.evaluate_model("ResNet50", metric="Euclidean", k=5)

    assert summary.n_queries == 20
    assert summary.mean_precision == pytest.approx(1.0)
    assert summary.mean_recall == pytest.approx(0.05)
    assert summary.per_class_precision == {0: pytest.approx(1.0), 1: pytest.approx(1.0)}
    assert summary.to_dict()['metric'] == "Euclidean"
