# core/ranking.py

from concurrent.futures import ThreadPoolExecutor
from typing import List, Mapping, Tuple
import logging

import numpy as np

from core.exceptions import InputValidationError
from core.metrics import Metric, score

logger = logging.getLogger(__name__)

RankedNeighbor = Tuple[str, float]


class NeighborRanker:
    """
    Exhaustive k-nearest-neighbor ranking over a loaded feature store
    """

    def __init__(self, n_workers: int = 1):
        self.n_workers = max(1, int(n_workers or 1))

    def score_all(self, query_vector: np.ndarray,
                  store: Mapping[str, np.ndarray],
                  metric: Metric) -> List[RankedNeighbor]:
        """
        Score the query against every stored vector, in store order
        """
        items = list(store.items())

        if self.n_workers > 1 and len(items) > 1:
            # executor.map keeps input order
            with ThreadPoolExecutor(max_workers=self.n_workers) as executor:
                scores = list(executor.map(
                    lambda item: score(query_vector, item[1], metric), items
                ))
        else:
            scores = [score(query_vector, vector, metric) for _, vector in items]

        return [(key, value) for (key, _), value in zip(items, scores)]

    def rank(self, query_vector: np.ndarray,
             store: Mapping[str, np.ndarray],
             metric,
             k: int) -> List[RankedNeighbor]:
        """
        Rank stored images by similarity to the query

        Args:
            query_vector: Query feature vector
            store: Mapping of image key to feature vector
            metric: Metric member or name
            k: Number of neighbors to keep (positive); larger than the
               store returns the whole store

        Returns:
            List of (image key, score) tuples, most similar first. Ties keep
            store iteration order.
        """
        if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k < 1:
            raise InputValidationError(f"k must be a positive integer, got {k!r}")

        metric = Metric.from_name(metric)
        scored = self.score_all(query_vector, store, metric)

        # sorted() is stable, also with reverse=True
        ranked = sorted(scored, key=lambda pair: pair[1], reverse=metric.descending)

        logger.debug(f"Ranked {len(ranked)} vectors with {metric.label}, keeping {k}")
        return ranked[:int(k)]


def rank(query_vector: np.ndarray,
         store: Mapping[str, np.ndarray],
         metric,
         k: int) -> List[RankedNeighbor]:
    """Single-threaded convenience wrapper around NeighborRanker.rank"""
    return NeighborRanker().rank(query_vector, store, metric, k)
