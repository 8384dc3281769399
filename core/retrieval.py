# core/retrieval.py

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging

import numpy as np
from tqdm import tqdm

from config import SystemConfig
from core.evaluation import RecallPrecisionEvaluator, RecallPrecisionSeries
from core.exceptions import InputValidationError
from core.feature_store import CachedFeatureStore, FeatureStore
from core.metrics import Metric
from core.ranking import NeighborRanker
from security.input_validation import RequestValidator
from utils.logging_config import PerformanceLogger

logger = logging.getLogger(__name__)


@dataclass
class RetrievalResult:
    """Container for one query's neighbors and its recall-precision curve"""
    query: str
    model: str
    metric: Metric
    neighbors: List[Tuple[str, float]]
    recall_precision: RecallPrecisionSeries
    evaluation_window: int

    def to_dict(self) -> dict:
        return {
            'query': self.query,
            'model': self.model,
            'metric': self.metric.label,
            'neighbors': [
                {'image': image, 'score': float(score)}
                for image, score in self.neighbors
            ],
            'evaluation_window': self.evaluation_window,
            'recall_precision': self.recall_precision.points()
        }


@dataclass
class EvaluationSummary:
    """Mean retrieval quality of a model/metric pair over every stored image"""
    model: str
    metric: Metric
    k: int
    n_queries: int
    mean_precision: float
    mean_recall: float
    per_class_precision: Dict[int, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'model': self.model,
            'metric': self.metric.label,
            'k': self.k,
            'n_queries': self.n_queries,
            'mean_precision': self.mean_precision,
            'mean_recall': self.mean_recall,
            'per_class_precision': {str(c): p for c, p in self.per_class_precision.items()}
        }


class RetrievalService:
    """
    Query pipeline: validate, load the model's features, rank, evaluate
    """

    def __init__(self, config: Optional[SystemConfig] = None,
                 feature_store=None,
                 perf_logger: Optional[PerformanceLogger] = None):
        self.config = config or SystemConfig()

        if feature_store is None:
            feature_store = FeatureStore.from_config(self.config.feature_store)
            if self.config.feature_store.cache_stores:
                feature_store = CachedFeatureStore(
                    feature_store, cache_size=self.config.feature_store.cache_size
                )
        self.feature_store = feature_store

        self.validator = RequestValidator.from_config(self.config)
        self.ranker = NeighborRanker(n_workers=self.config.retrieval.n_workers)
        self.evaluator = RecallPrecisionEvaluator(self.config.evaluation.class_size)
        self.perf_logger = perf_logger or PerformanceLogger()

    def _window(self, evaluation_window: Optional[int]) -> int:
        window = self.config.retrieval.evaluation_window if evaluation_window is None \
            else evaluation_window
        if isinstance(window, bool) or not isinstance(window, int) or window < 1:
            raise InputValidationError(f"evaluation_window must be a positive integer, got {window!r}")
        return window

    def search(self, query: str, model: str, metric=None, k=None,
               evaluation_window: Optional[int] = None) -> RetrievalResult:
        """
        Find the k nearest neighbors of a stored image and evaluate the ranking

        Args:
            query: File name or identifier of an image in the model's store
            model: Feature-extraction model name
            metric: Metric name (config default when None)
            k: Number of neighbors to return (config default when None)
            evaluation_window: Number of ranked candidates the recall-precision
                curve is computed over, independent of k

        Returns:
            RetrievalResult
        """
        request = self.validator.validate_request(
            model,
            self.config.retrieval.default_metric if metric is None else metric,
            self.config.retrieval.default_k if k is None else k,
            query
        )
        window = self._window(evaluation_window)
        query_class = self.evaluator.query_class(request.query)

        with self.perf_logger.stage('load', model=request.model):
            store = self.feature_store.load(request.model)
        query_vector = self.feature_store.resolve_query(request.query, store)

        with self.perf_logger.stage('rank', metric=request.metric.label):
            ranking = self.ranker.rank(query_vector, store, request.metric,
                                       max(request.k, window))
        with self.perf_logger.stage('evaluate'):
            series = self.evaluator.evaluate(ranking[:window], query_class)

        logger.info(
            f"{request.query} on {request.model}/{request.metric.label}: "
            f"{min(request.k, len(ranking))} neighbors, "
            f"precision@{len(series)}={series.precision[-1]:.3f}"
        )

        return RetrievalResult(
            query=self.feature_store.resolve_key(request.query),
            model=request.model,
            metric=request.metric,
            neighbors=ranking[:request.k],
            recall_precision=series,
            evaluation_window=window
        )

    def search_vector(self, query_vector, model: str, metric=None,
                      k=None) -> List[Tuple[str, float]]:
        """
        Rank a raw query vector against a model's store

        A raw vector has no ground-truth class, so no curve is produced.
        """
        model = self.validator.validate_model(model)
        metric = self.validator.validate_metric(
            self.config.retrieval.default_metric if metric is None else metric
        )
        k = self.validator.validate_k(self.config.retrieval.default_k if k is None else k)

        query_vector = np.asarray(query_vector, dtype=np.float64).ravel()
        if query_vector.size == 0:
            raise InputValidationError("Query vector is empty")
        if not np.all(np.isfinite(query_vector)):
            raise InputValidationError("Query vector holds NaN or infinite values")

        with self.perf_logger.stage('load', model=model):
            store = self.feature_store.load(model)
        with self.perf_logger.stage('rank', metric=metric.label):
            return self.ranker.rank(query_vector, store, metric, k)

    def evaluate_model(self, model: str, metric=None, k=None,
                       show_progress: bool = False) -> EvaluationSummary:
        """
        Use every stored image as a query and average precision@k and recall@k
        """
        model = self.validator.validate_model(model)
        metric = self.validator.validate_metric(
            self.config.retrieval.default_metric if metric is None else metric
        )
        k = self.validator.validate_k(self.config.retrieval.default_k if k is None else k)

        with self.perf_logger.stage('load', model=model):
            store = self.feature_store.load(model)

        precisions = []
        recalls = []
        by_class: Dict[int, List[float]] = {}
        for key in tqdm(list(store), desc=f"Evaluating {model}/{metric.label}",
                        disable=not show_progress):
            with self.perf_logger.stage('rank', metric=metric.label):
                ranking = self.ranker.rank(store[key], store, metric, k)
            with self.perf_logger.stage('evaluate'):
                series = self.evaluator.evaluate(ranking, self.evaluator.query_class(key))
            precisions.append(series.precision[-1])
            recalls.append(series.recall[-1])
            by_class.setdefault(self.evaluator.query_class(key), []).append(series.precision[-1])

        summary = EvaluationSummary(
            model=model,
            metric=metric,
            k=k,
            n_queries=len(precisions),
            mean_precision=float(np.mean(precisions)),
            mean_recall=float(np.mean(recalls)),
            per_class_precision={c: float(np.mean(p)) for c, p in sorted(by_class.items())}
        )
        logger.info(
            f"{model}/{metric.label} k={k}: mean precision {summary.mean_precision:.3f}, "
            f"mean recall {summary.mean_recall:.3f} over {summary.n_queries} queries"
        )
        return summary
