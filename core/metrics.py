# core/metrics.py

from enum import Enum
from typing import Callable, Dict, Tuple
import math
import numpy as np

from core.exceptions import NumericError, UnsupportedMetricError


class SortDirection(Enum):
    """Order in which scores rank neighbors"""
    ASCENDING = "distance"     # lower is more similar
    DESCENDING = "similarity"  # higher is more similar


class Metric(Enum):
    """
    Closed set of comparison metrics, each with its declared sort direction
    """
    EUCLIDEAN = ("Euclidean", SortDirection.ASCENDING)
    BHATTACHARYYA = ("Bhattacharyya", SortDirection.ASCENDING)
    COSINE_SIMILARITY = ("CosineSimilarity", SortDirection.DESCENDING)
    CORRELATION = ("Correlation", SortDirection.DESCENDING)
    INTERSECTION = ("Intersection", SortDirection.DESCENDING)

    def __init__(self, label: str, direction: SortDirection):
        self.label = label
        self.direction = direction

    @property
    def descending(self) -> bool:
        return self.direction is SortDirection.DESCENDING

    @classmethod
    def from_name(cls, name) -> 'Metric':
        """
        Resolve a metric from its label, enum name or a known alias

        Raises:
            UnsupportedMetricError: if the name matches no metric
        """
        if isinstance(name, cls):
            return name
        if not isinstance(name, str):
            raise UnsupportedMetricError(f"Unsupported metric: {name!r}")

        key = name.strip().lower().replace('_', '').replace(' ', '')
        for metric in cls:
            if key in (metric.label.lower(), metric.name.lower().replace('_', '')):
                return metric
        if key in _ALIASES:
            return _ALIASES[key]
        raise UnsupportedMetricError(f"Unsupported metric: {name!r}")


# Labels used by the dataset's extraction tooling
_ALIASES = {
    'euclidienne': Metric.EUCLIDEAN,
    'cosine': Metric.COSINE_SIMILARITY,
}


def _shared_prefix(a, b) -> Tuple[np.ndarray, np.ndarray]:
    """Cast both vectors to float64 and cut them to the shorter length"""
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    n = min(a.size, b.size)
    return a[:n], b[:n]


def euclidean(a, b) -> float:
    a, b = _shared_prefix(a, b)
    return float(np.sqrt(np.sum((a - b) ** 2)))


def bhattacharyya(a, b) -> float:
    """
    Bhattacharyya-style distance between two histograms

    The ratio under the outer square root is clamped to [0, 1] so that
    rounding noise on near-identical histograms can't produce NaN.
    """
    a, b = _shared_prefix(a, b)
    denominator = float(np.sum(a)) * float(np.sum(b))
    if denominator <= 0:
        raise NumericError(
            "Bhattacharyya distance undefined: histogram sums must be positive"
        )

    products = float(np.sum(a * b))
    if products < 0:
        raise NumericError(
            "Bhattacharyya distance undefined: negative bin products"
        )

    ratio = math.sqrt(products) / math.sqrt(denominator)
    ratio = min(max(ratio, 0.0), 1.0)
    return math.sqrt(1.0 - ratio)


def cosine_similarity(a, b) -> float:
    a, b = _shared_prefix(a, b)
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


def correlation(a, b) -> float:
    """
    Pearson correlation of two vectors compared as single-row histograms

    Returns 1.0 when either histogram is flat, like OpenCV's HISTCMP_CORREL.
    """
    a, b = _shared_prefix(a, b)
    if a.size == 0:
        return 1.0
    da = a - a.mean()
    db = b - b.mean()
    denominator = float(np.sum(da * da)) * float(np.sum(db * db))
    if abs(denominator) <= np.finfo(np.float64).eps:
        return 1.0
    return float(np.sum(da * db) / math.sqrt(denominator))


def intersection(a, b) -> float:
    a, b = _shared_prefix(a, b)
    return float(np.sum(np.minimum(a, b)))


_SCORERS: Dict[Metric, Callable[[np.ndarray, np.ndarray], float]] = {
    Metric.EUCLIDEAN: euclidean,
    Metric.BHATTACHARYYA: bhattacharyya,
    Metric.COSINE_SIMILARITY: cosine_similarity,
    Metric.CORRELATION: correlation,
    Metric.INTERSECTION: intersection,
}


def score(a, b, metric) -> float:
    """
    Compare two feature vectors with the given metric

    Args:
        a: First feature vector
        b: Second feature vector
        metric: Metric member or metric name

    Returns:
        Scalar score; sort it with ``metric.direction``

    Raises:
        UnsupportedMetricError: unknown metric
        NumericError: the metric produced NaN or infinity
    """
    metric = Metric.from_name(metric)
    scorer = _SCORERS.get(metric)
    if scorer is None:
        raise UnsupportedMetricError(f"No scorer registered for {metric.label}")

    result = scorer(a, b)
    if not math.isfinite(result):
        raise NumericError(f"{metric.label} produced a non-finite score: {result}")
    return result
