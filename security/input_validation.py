# security/input_validation.py

from dataclasses import dataclass
from typing import Iterable, Optional
import re

from core.exceptions import InputValidationError
from core.metrics import Metric
from utils.file_utils import base_name


@dataclass(frozen=True)
class ValidatedRequest:
    """Normalized retrieval request"""
    model: str
    metric: Metric
    k: int
    query: str


class RequestValidator:
    """
    Validate retrieval requests before any feature store is touched
    """

    MAX_NAME_LENGTH = 255

    def __init__(self, allowed_models: Iterable[str],
                 allowed_k: Optional[Iterable[int]] = None):
        self.allowed_models = set(allowed_models)
        # None accepts any positive k
        self.allowed_k = set(allowed_k) if allowed_k is not None else None

    @classmethod
    def from_config(cls, config) -> 'RequestValidator':
        """Build from a SystemConfig"""
        return cls(config.feature_store.models, config.retrieval.allowed_k)

    def validate_model(self, model) -> str:
        if not isinstance(model, str) or not model.strip():
            raise InputValidationError("Missing model name")
        model = model.strip()
        if self.allowed_models and model not in self.allowed_models:
            raise InputValidationError(
                f"Unknown model '{model}'; expected one of {sorted(self.allowed_models)}"
            )
        return model

    def validate_metric(self, metric) -> Metric:
        if metric is None or (isinstance(metric, str) and not metric.strip()):
            raise InputValidationError("Missing metric name")
        # UnsupportedMetricError is an InputValidationError
        return Metric.from_name(metric)

    def validate_k(self, k) -> int:
        if k is None or (isinstance(k, str) and not k.strip()):
            raise InputValidationError("Missing k")
        if isinstance(k, bool):
            raise InputValidationError(f"Invalid k: {k!r}")
        if isinstance(k, float) and not k.is_integer():
            raise InputValidationError(f"k is not an integer: {k!r}")
        try:
            k = int(k)
        except (TypeError, ValueError):
            raise InputValidationError(f"k is not an integer: {k!r}") from None
        if k < 1:
            raise InputValidationError(f"k must be positive, got {k}")
        if self.allowed_k is not None and k not in self.allowed_k:
            raise InputValidationError(f"k must be one of {sorted(self.allowed_k)}, got {k}")
        return k

    @staticmethod
    def sanitize_query_name(query) -> str:
        """
        Reduce a query file name to its base name
        """
        if not isinstance(query, str) or not query.strip():
            raise InputValidationError("Missing query image")

        name = base_name(query)
        if not name or name in ('.', '..'):
            raise InputValidationError(f"Invalid query image name: {query!r}")
        if len(name) > RequestValidator.MAX_NAME_LENGTH:
            raise InputValidationError("Query image name too long")
        if re.search(r'[\x00-\x1f]', name):
            raise InputValidationError("Query image name contains control characters")
        return name

    def validate_request(self, model, metric, k, query) -> ValidatedRequest:
        """
        Validate all request fields

        Raises:
            InputValidationError: on the first invalid field
        """
        return ValidatedRequest(
            model=self.validate_model(model),
            metric=self.validate_metric(metric),
            k=self.validate_k(k),
            query=self.sanitize_query_name(query),
        )
