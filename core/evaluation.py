# core/evaluation.py

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple
import re

from core.exceptions import IdentifierParseError, InputValidationError
from utils.file_utils import base_name

# Dataset convention: images are numbered so that each run of 100
# consecutive numbers forms one class
GROUND_TRUTH_CLASS_SIZE = 100

_NUMERIC_PREFIX = re.compile(r'^\s*(\d+)')


def image_number(identifier: str) -> int:
    """
    Numeric id at the start of an identifier's base name

    'image/512.jpg' -> 512, 'C:\\db\\7_a.png' -> 7
    """
    if not isinstance(identifier, str):
        raise IdentifierParseError(f"Identifier must be a string, got {identifier!r}")

    match = _NUMERIC_PREFIX.match(base_name(identifier))
    if match is None:
        raise IdentifierParseError(f"No numeric image id in {identifier!r}")
    return int(match.group(1))


def image_class(identifier: str, class_size: int = GROUND_TRUTH_CLASS_SIZE) -> int:
    """Ground-truth class of an image: floor(id / class_size)"""
    return image_number(identifier) // class_size


@dataclass
class RecallPrecisionSeries:
    """Cumulative recall and precision, one entry per rank position"""
    recall: List[float] = field(default_factory=list)
    precision: List[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.recall)

    def points(self) -> List[Dict[str, float]]:
        """Curve as a list of {'recall', 'precision'} points"""
        return [
            {'recall': r, 'precision': p}
            for r, p in zip(self.recall, self.precision)
        ]


class RecallPrecisionEvaluator:
    """
    Builds the recall-precision curve of a ranking against the query's class

    Recall divides by ``class_size``, the number of relevant images the
    dataset holds per class, not by the number found in the ranking.
    """

    def __init__(self, class_size: int = GROUND_TRUTH_CLASS_SIZE):
        if class_size < 1:
            raise InputValidationError(f"class_size must be positive, got {class_size}")
        self.class_size = class_size

    def evaluate(self, ranked_neighbors: Sequence[Tuple[str, float]],
                 query_class: int) -> RecallPrecisionSeries:
        series = RecallPrecisionSeries()
        true_positive = 0
        false_positive = 0

        for identifier, _ in ranked_neighbors:
            if image_class(identifier, self.class_size) == query_class:
                true_positive += 1
            else:
                false_positive += 1

            series.recall.append(true_positive / self.class_size)
            series.precision.append(true_positive / (true_positive + false_positive))

        return series

    def query_class(self, identifier: str) -> int:
        return image_class(identifier, self.class_size)


def evaluate(ranked_neighbors: Sequence[Tuple[str, float]],
             query_class: int,
             class_size: int = GROUND_TRUTH_CLASS_SIZE) -> RecallPrecisionSeries:
    return RecallPrecisionEvaluator(class_size).evaluate(ranked_neighbors, query_class)
